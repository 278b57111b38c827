# Overview: Request context decorator for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services.audit_errors import ValidationFailed
from .services.tenant_service import (
    TenantAccessError,
    require_active_tenant,
    require_branch_in_tenant,
    require_user_in_tenant,
)
from .validation import parse_id


CONTEXT_HEADERS = {
    "tenant_id": "X-Tenant-Id",
    "branch_id": "X-Branch-Id",
    "actor_id": "X-User-Id",
}


def require_context(f):
    """
    Establish tenant context from gateway headers.

    Sets the following Flask g attributes:
    - g.tenant_id: The tenant (pharmacy business) ID
    - g.branch_id: The branch the request operates on
    - g.actor_id: The acting user, recorded on audits and corrections

    Returns 400 for missing or malformed headers and 403 when the branch or
    user does not belong to the tenant. Authentication happens upstream.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            context = {
                key: parse_id(request.headers.get(header), header)
                for key, header in CONTEXT_HEADERS.items()
            }
        except ValidationFailed as e:
            return jsonify({"error": str(e)}), 400

        try:
            require_active_tenant(context["tenant_id"])
            require_branch_in_tenant(context["branch_id"], context["tenant_id"])
            require_user_in_tenant(context["actor_id"], context["tenant_id"])
        except TenantAccessError as e:
            return jsonify({"error": "Access denied", "message": str(e)}), 403

        g.tenant_id = context["tenant_id"]
        g.branch_id = context["branch_id"]
        g.actor_id = context["actor_id"]

        return f(*args, **kwargs)

    return decorated_function
