"""
Permission Decorators — principal-aware RBAC decorators for route protection.

Usage:
    @governance_bp.route("/settings", methods=["PUT"])
    @require_permission("can_manage_governance")
    def update_settings():
        ...

    @intake_bp.route("/submissions/<int:sid>/governance/start", methods=["POST"])
    @require_permission("can_manage_governance", "can_manage_intake")
    def start_review(sid):
        ...

Multiple keys are any-of. Admins bypass every check.
"""

import functools
import logging

from flask import jsonify

from atlas.services.permission_service import current_principal, has_any_permission

logger = logging.getLogger(__name__)


def require_permission(*codenames: str):
    """
    Decorator: require the principal to hold at least ONE of the listed permissions.

    401 when no principal is bound to the request, 403 when the permission
    is missing.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            principal = current_principal()
            if principal is None:
                return jsonify({
                    "error": "Authentication required",
                    "code": "ERR_UNAUTHORIZED",
                }), 401

            if not has_any_permission(principal, codenames):
                logger.warning(
                    "User %s denied: missing any of %s on %s",
                    principal.oid, codenames, f.__name__,
                )
                body = {"error": "Permission denied", "code": "ERR_FORBIDDEN"}
                if len(codenames) == 1:
                    body["required"] = codenames[0]
                else:
                    body["required_any"] = list(codenames)
                return jsonify(body), 403

            return f(*args, **kwargs)
        return decorated
    return decorator


def require_principal(f):
    """Decorator: require an authenticated principal, no specific permission."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if current_principal() is None:
            return jsonify({
                "error": "Authentication required",
                "code": "ERR_UNAUTHORIZED",
            }), 401
        return f(*args, **kwargs)
    return decorated
