"""
Auth Middleware — resolves the request principal and sets ``g.principal``.

Priority order:
  1. JWT (Authorization: Bearer <token>)      →  g.principal from ``sub`` / ``roles``
  2. Identity headers (X-User-Oid, X-User-Roles)  →  only when TRUST_HEADER_PRINCIPAL

With ``API_AUTH_ENABLED`` on, API requests that resolve no principal are
answered with 401 before reaching a view.
"""

import logging

import jwt as pyjwt
from flask import g, jsonify, request

from atlas.services.jwt_service import decode_access_token
from atlas.services.permission_service import Principal

logger = logging.getLogger(__name__)

# Paths that skip auth entirely
AUTH_SKIP_PREFIXES = (
    "/api/v1/health",
)

USER_OID_HEADER = "X-User-Oid"
USER_ROLES_HEADER = "X-User-Roles"
USER_NAME_HEADER = "X-User-Name"


def _split_roles(raw) -> tuple[str, ...]:
    if not raw:
        return ()
    if isinstance(raw, str):
        raw = raw.split(",")
    return tuple(r.strip() for r in raw if isinstance(r, str) and r.strip())


def _principal_from_token(token: str) -> Principal | None:
    try:
        payload = decode_access_token(token)
    except pyjwt.ExpiredSignatureError:
        logger.info("Rejected expired access token path=%s", request.path)
        return None
    except pyjwt.InvalidTokenError as exc:
        logger.warning("Rejected invalid access token path=%s: %s", request.path, exc)
        return None
    oid = payload.get("sub")
    if not oid:
        return None
    return Principal(oid=str(oid), roles=_split_roles(payload.get("roles")), name=payload.get("name"))


def _principal_from_headers() -> Principal | None:
    oid = (request.headers.get(USER_OID_HEADER) or "").strip()
    if not oid:
        return None
    return Principal(
        oid=oid,
        roles=_split_roles(request.headers.get(USER_ROLES_HEADER)),
        name=request.headers.get(USER_NAME_HEADER),
    )


def init_jwt_middleware(app):
    """Register the auth middleware as a before_request hook."""

    @app.before_request
    def _resolve_principal():
        g.principal = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return None
        for prefix in AUTH_SKIP_PREFIXES:
            if path.startswith(prefix):
                return None

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            g.principal = _principal_from_token(auth_header[7:])
        elif app.config.get("TRUST_HEADER_PRINCIPAL"):
            g.principal = _principal_from_headers()

        if g.principal is None and app.config.get("API_AUTH_ENABLED") and request.method != "OPTIONS":
            return jsonify({"error": "Authentication required", "code": "ERR_UNAUTHORIZED"}), 401
        return None
