"""
Permission Service — static role → permission lookup for governance actions.

The authenticated principal arrives from the identity adapter
(``atlas.middleware.jwt_auth``) as ``{oid, roles[]}``; permissions are
resolved from ``GOVERNANCE_ROLE_PERMISSIONS`` in app config.

Deny-by-default:
  - unknown roles grant nothing
  - ``admin`` is a superuser role and holds every permission
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from flask import current_app, g, has_app_context

logger = logging.getLogger(__name__)

SUPERUSER_ROLES = {"admin"}

PERMISSION_KEYS = frozenset({
    "can_manage_governance",
    "can_view_governance_queue",
    "can_vote_governance",
    "can_decide_governance",
    "can_manage_intake",
})


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as seen by the governance core."""
    oid: str
    roles: tuple[str, ...] = field(default_factory=tuple)
    name: str | None = None

    def to_dict(self) -> dict:
        return {"oid": self.oid, "roles": list(self.roles), "name": self.name}


def _role_map() -> dict:
    if has_app_context():
        return current_app.config.get("GOVERNANCE_ROLE_PERMISSIONS") or {}
    return {}


def is_admin(principal: Principal | None) -> bool:
    if principal is None:
        return False
    return any(r.lower() in SUPERUSER_ROLES for r in principal.roles)


def get_permissions(principal: Principal | None) -> set[str]:
    """Return the set of permission keys held by *principal*."""
    if principal is None:
        return set()
    if is_admin(principal):
        return set(PERMISSION_KEYS)
    mapping = _role_map()
    perms: set[str] = set()
    for role in principal.roles:
        perms.update(mapping.get(role, ()))
    return perms


def has_permission(principal: Principal | None, key: str) -> bool:
    return key in get_permissions(principal)


def has_any_permission(principal: Principal | None, keys) -> bool:
    perms = get_permissions(principal)
    return any(k in perms for k in keys)


def current_principal() -> Principal | None:
    """Principal bound to the current request by the auth middleware."""
    return getattr(g, "principal", None)
