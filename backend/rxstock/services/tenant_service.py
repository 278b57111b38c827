"""
Tenant Service: Tenant Validation and Scoping Helpers

Every request is scoped to a tenant and one of its branches. Branch and user
ids arrive as headers from the upstream gateway, so they are checked against
the tenant before any audit operation runs.

USAGE:
    from rxstock.services.tenant_service import require_branch_in_tenant

    branch = require_branch_in_tenant(branch_id, tenant_id)
"""

from ..extensions import db
from ..models import Branch, Tenant, User


class TenantAccessError(Exception):
    """Raised when a branch or user does not belong to the requesting tenant."""
    pass


def require_active_tenant(tenant_id: int) -> Tenant:
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None or not tenant.is_active:
        raise TenantAccessError(f"Tenant {tenant_id} not found or inactive")
    return tenant


def require_branch_in_tenant(branch_id: int, tenant_id: int) -> Branch:
    """
    Validate that a branch belongs to the specified tenant.

    A branch of another tenant is reported exactly like a missing one.
    """
    branch = db.session.query(Branch).filter_by(id=branch_id, tenant_id=tenant_id).first()
    if branch is None:
        raise TenantAccessError(f"Branch {branch_id} not found")
    return branch


def require_user_in_tenant(user_id: int, tenant_id: int) -> User:
    user = db.session.query(User).filter_by(id=user_id, tenant_id=tenant_id).first()
    if user is None or not user.is_active:
        raise TenantAccessError(f"User {user_id} not found or inactive")
    return user
