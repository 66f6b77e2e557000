"""
Identity adapter, role → permission lookup and request guards.
"""

import jwt as pyjwt
import pytest

from atlas.services import jwt_service
from atlas.services.permission_service import (
    PERMISSION_KEYS,
    Principal,
    get_permissions,
    has_any_permission,
    has_permission,
    is_admin,
)

SETTINGS = "/api/v1/governance/settings"


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestHealth:
    def test_health_needs_no_principal(self, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "API_AUTH_ENABLED", True)
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"


class TestAuthEnforcement:
    def test_missing_principal_401_when_enabled(self, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "API_AUTH_ENABLED", True)
        res = client.get(SETTINGS)
        assert res.status_code == 401
        assert res.get_json() == {"error": "Authentication required", "code": "ERR_UNAUTHORIZED"}

    def test_valid_bearer_token(self, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "API_AUTH_ENABLED", True)
        token = jwt_service.generate_access_token("u-admin", ["governance_admin"], name="Ada Admin")
        res = client.get(SETTINGS, headers=_bearer(token))
        assert res.status_code == 200

    def test_token_roles_drive_permissions(self, client):
        token = jwt_service.generate_access_token("u-m1", ["governance_member"])
        res = client.put(SETTINGS, json={"governance_enabled": True}, headers=_bearer(token))
        assert res.status_code == 403
        assert res.get_json()["required"] == "can_manage_governance"

    def test_expired_token_rejected(self, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "JWT_ACCESS_EXPIRES", -60)
        token = jwt_service.generate_access_token("u-admin", ["governance_admin"])
        res = client.get(SETTINGS, headers=_bearer(token))
        assert res.status_code == 401

    def test_tampered_token_rejected(self, client):
        forged = pyjwt.encode(
            {"sub": "u-admin", "roles": ["admin"], "type": "access"},
            "not-the-server-secret-but-long-enough", algorithm="HS256",
        )
        assert client.get(SETTINGS, headers=_bearer(forged)).status_code == 401

    def test_wrong_token_type_rejected(self, client, app):
        token = pyjwt.encode(
            {"sub": "u-admin", "roles": ["admin"], "type": "refresh"},
            app.config["JWT_SECRET_KEY"], algorithm="HS256",
        )
        with pytest.raises(pyjwt.InvalidTokenError):
            jwt_service.decode_access_token(token)
        assert client.get(SETTINGS, headers=_bearer(token)).status_code == 401

    def test_bearer_wins_over_headers(self, client, headers):
        token = jwt_service.generate_access_token("u-m1", ["governance_member"])
        h = {**headers("u-admin", "governance_admin"), **_bearer(token)}
        res = client.put(SETTINGS, json={"governance_enabled": True}, headers=h)
        assert res.status_code == 403

    def test_headers_ignored_when_untrusted(self, client, app, headers, monkeypatch):
        monkeypatch.setitem(app.config, "TRUST_HEADER_PRINCIPAL", False)
        res = client.get(SETTINGS, headers=headers("u-admin", "governance_admin"))
        assert res.status_code == 401

    def test_token_payload(self):
        token = jwt_service.generate_access_token("u-chair", ["governance_chair"], name="Cleo Chair")
        payload = jwt_service.decode_access_token(token)
        assert payload["sub"] == "u-chair"
        assert payload["roles"] == ["governance_chair"]
        assert payload["name"] == "Cleo Chair"
        assert payload["type"] == "access"
        assert payload["exp"] - payload["iat"] == 900


class TestPermissions:
    def test_role_map(self):
        chair = Principal(oid="u-chair", roles=("governance_chair",))
        assert get_permissions(chair) == {
            "can_view_governance_queue", "can_vote_governance", "can_decide_governance",
        }
        assert has_permission(chair, "can_decide_governance")
        assert not has_permission(chair, "can_manage_governance")

    def test_roles_union(self):
        p = Principal(oid="u-1", roles=("governance_member", "intake_manager"))
        assert has_permission(p, "can_manage_intake")
        assert has_permission(p, "can_vote_governance")
        assert not has_permission(p, "can_decide_governance")

    def test_unknown_role_grants_nothing(self):
        p = Principal(oid="u-1", roles=("janitor",))
        assert get_permissions(p) == set()
        assert not has_any_permission(p, PERMISSION_KEYS)

    def test_admin_holds_everything(self, client, headers):
        admin = Principal(oid="u-root", roles=("Admin",))
        assert is_admin(admin)
        assert get_permissions(admin) == set(PERMISSION_KEYS)
        res = client.put(SETTINGS, json={"governance_enabled": True}, headers=headers("u-root", "admin"))
        assert res.status_code == 200

    def test_no_principal(self):
        assert get_permissions(None) == set()
        assert not is_admin(None)

    def test_header_roles_trimmed(self, client):
        res = client.put(SETTINGS, json={"governance_enabled": True},
                         headers={"X-User-Oid": "u-admin", "X-User-Roles": " intake_manager , governance_admin "})
        assert res.status_code == 200


class TestRequestGuards:
    def test_non_json_body_rejected(self, client, headers):
        res = client.put(SETTINGS, data="governance_enabled=true", content_type="text/plain",
                         headers=headers("u-admin", "governance_admin"))
        assert res.status_code == 415

    def test_unknown_route_json_404(self, client):
        res = client.get("/api/v1/nowhere")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"
