# Overview: Request decorators that establish the acting user from gateway headers.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User
from .models.auth import ROLE_RIDER, ROLE_VENDOR_ADMIN, VALID_ROLES

TENANT_SCOPED_ROLES = frozenset({ROLE_VENDOR_ADMIN, ROLE_RIDER})


def _header_int(name: str):
    raw = request.headers.get(name)
    if raw is None or raw.strip() == "":
        return None
    raw = raw.strip()
    if not raw.isdigit():
        raise ValueError(name)
    return int(raw)


def require_actor(f):
    """
    Require an authenticated actor and establish its context.

    Tokens are verified by the upstream auth gateway, which forwards:
    - X-User-Id:   acting user id (required)
    - X-User-Role: USER, VENDOR_ADMIN, RIDER or SUPER_ADMIN (required)
    - X-Vendor-Id / X-Branch-Id: optional; must equal the account's own

    Sets g.actor (User), g.actor_id, g.actor_role, g.vendor_id, g.branch_id.

    SECURITY: Returns 401 when headers are missing or malformed, the user
    does not exist or is deactivated, the role or tenant headers do not
    match the account, or a vendor admin/rider account has no vendor.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            user_id = _header_int("X-User-Id")
            vendor_id = _header_int("X-Vendor-Id")
            branch_id = _header_int("X-Branch-Id")
        except ValueError as e:
            return jsonify({"error": f"Invalid header: {e}"}), 401

        role = (request.headers.get("X-User-Role") or "").strip().upper()

        if user_id is None or not role:
            return jsonify({"error": "Authentication required"}), 401
        if role not in VALID_ROLES:
            return jsonify({"error": "Invalid role"}), 401

        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            return jsonify({"error": "Invalid or inactive user"}), 401
        if user.role != role:
            return jsonify({"error": "Role does not match account"}), 401

        # Tenant scope comes from the account; forwarded headers may only repeat it
        if vendor_id is not None and vendor_id != user.vendor_id:
            return jsonify({"error": "Vendor does not match account"}), 401
        if branch_id is not None and branch_id != user.branch_id:
            return jsonify({"error": "Branch does not match account"}), 401
        if role in TENANT_SCOPED_ROLES and user.vendor_id is None:
            return jsonify({"error": "Account has no vendor"}), 401

        g.actor = user
        g.actor_id = user.id
        g.actor_role = role
        g.vendor_id = user.vendor_id
        g.branch_id = user.branch_id

        return f(*args, **kwargs)

    return decorated_function


def require_roles(*roles: str):
    """
    Require the actor's role to be one of roles.

    Must be stacked under @require_actor.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "actor_role"):
                return jsonify({"error": "Authentication required"}), 401
            if g.actor_role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "code": "FORBIDDEN",
                    "required_roles": sorted(roles),
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator
