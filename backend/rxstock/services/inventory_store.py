# Overview: Inventory store adapter; product reads and quantity corrections.

from __future__ import annotations

from ..extensions import db
from ..models import Product
from ..models.inventory import PRODUCT_STATUS_ACTIVE
from .audit_errors import AuditNotFound, ValidationFailed
from .audit_records import ProductRecord
from .concurrency import lock_for_update, run_store_call


class SqlInventoryStore:
    """
    Product quantities backed by the products table.

    Every call is branch-scoped: a product id from another branch is
    reported as not found.
    """

    def __init__(self, *, timeout: float | None = None, attempts: int | None = None):
        self.timeout = timeout
        self.attempts = attempts

    def _call(self, operation: str, func, *, write: bool = True):
        return run_store_call(operation, func, write=write, timeout=self.timeout, attempts=self.attempts)

    def _product_query(self, branch_id: int, product_id: int):
        return db.session.query(Product).filter_by(id=product_id, branch_id=branch_id)

    def get_product(self, branch_id: int, product_id: int) -> ProductRecord:
        def _op():
            product = self._product_query(branch_id, product_id).first()
            if product is None:
                raise AuditNotFound(f"Product {product_id} not found in branch {branch_id}")
            return ProductRecord.from_model(product)

        return self._call("get_product", _op, write=False)

    def list_active_products(self, branch_id: int) -> list[ProductRecord]:
        def _op():
            products = (
                db.session.query(Product)
                .filter_by(branch_id=branch_id, status=PRODUCT_STATUS_ACTIVE)
                .order_by(Product.name.asc(), Product.id.asc())
                .all()
            )
            return [ProductRecord.from_model(p) for p in products]

        return self._call("list_active_products", _op, write=False)

    def update_product_quantity(self, branch_id: int, product_id: int, quantity: int) -> None:
        """
        Set Product.quantity to an absolute value (the physical count).

        Setting an absolute value makes the call safe to repeat.
        """
        if quantity < 0:
            raise ValidationFailed("Quantity cannot be negative")

        def _op():
            product = lock_for_update(self._product_query(branch_id, product_id)).first()
            if product is None:
                raise AuditNotFound(f"Product {product_id} not found in branch {branch_id}")
            if product.quantity != quantity:
                product.quantity = quantity

        self._call("update_product_quantity", _op)
