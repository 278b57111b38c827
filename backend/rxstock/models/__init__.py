from .tenancy import Tenant, Branch, User
from .inventory import Product
from .audits import StockAudit, StockAuditItem, StockCorrection, CorrectionOutboxEntry

__all__ = [
    'Tenant', 'Branch', 'User',
    'Product',
    'StockAudit', 'StockAuditItem', 'StockCorrection', 'CorrectionOutboxEntry',
]
