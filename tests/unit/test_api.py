"""
Tests for the HTTP adapter
==========================

Routes, principal extraction, error bodies and request provenance.
"""

import json
import logging

import pytest
from fastapi.testclient import TestClient

from rbac_engine.db.session import get_db
from rbac_engine.main import app
from rbac_engine.models import AuditLog
from rbac_engine.services.cache_service import permission_cache


@pytest.fixture
def client(seeded, session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    permission_cache.clear()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    permission_cache.clear()


class TestPrincipalExtraction:
    def test_anonymous_is_visitor(self, client):
        response = client.get("/api/rbac/me/permissions")
        assert response.status_code == 200
        body = response.json()
        assert body["principal_id"] == "visitor"
        assert body["permissions"] == ["cases:view_public", "content:view_public", "stats:view_public"]

    def test_bearer_token_principal(self, client, auth_headers):
        response = client.get("/api/rbac/me/permissions", headers=auth_headers("admin-1"))
        assert response.json()["principal_id"] == "admin-1"
        assert "rbac:manage" in response.json()["permissions"]

    def test_invalid_token_is_401(self, client):
        response = client.get("/api/rbac/me/permissions", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_my_roles(self, client, auth_headers):
        assert client.get("/api/rbac/me/roles").json() == {
            "principal_id": "visitor", "roles": ["visitor"], "level": 0,
        }
        body = client.get("/api/rbac/me/roles", headers=auth_headers("admin-1")).json()
        assert body["roles"] == ["admin"]
        assert body["level"] == 80


class TestGuardedRoutes:
    def test_visitor_forbidden(self, client):
        """Visitors lack rbac:manage."""
        response = client.get("/api/rbac/roles")
        assert response.status_code == 403
        assert response.json() == {"code": "FORBIDDEN", "detail": "Insufficient permissions"}

    def test_list_roles(self, client, auth_headers):
        response = client.get("/api/rbac/roles", headers=auth_headers("admin-1"))
        assert response.status_code == 200
        assert "moderator" in [r["name"] for r in response.json()]

    def test_permissions_by_module(self, client, auth_headers):
        response = client.get("/api/rbac/permissions/by-module", headers=auth_headers("admin-1"))
        groups = {g["module"]["name"]: g["permissions"] for g in response.json()}
        assert "cases:approve" in [p["name"] for p in groups["cases"]]

    def test_role_detail(self, client, auth_headers, role_named):
        moderator = role_named("moderator")
        response = client.get(f"/api/rbac/roles/{moderator.id}", headers=auth_headers("admin-1"))
        assert response.status_code == 200
        assert "cases:approve" in [p["name"] for p in response.json()["permissions"]]

    def test_missing_role_is_404(self, client, auth_headers):
        response = client.get("/api/rbac/roles/9999", headers=auth_headers("admin-1"))
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_principals_with_roles(self, client, auth_headers):
        response = client.get(
            "/api/rbac/users", params={"page": 1, "page_size": 1}, headers=auth_headers("admin-1"),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert body["principals"][0]["principal_id"] == "admin-1"
        assert body["principals"][0]["roles"][0]["role_name"] == "admin"

    def test_principals_with_roles_requires_manage(self, client, auth_headers):
        assert client.get("/api/rbac/users", headers=auth_headers("someone")).status_code == 403


class TestMutations:
    def test_anonymous_mutation_is_401(self, client, db):
        response = client.post("/api/rbac/roles", json={"name": "analyst", "display_name": "Analyst"})
        assert response.status_code == 401
        assert response.json() == {"code": "UNAUTHENTICATED", "detail": "Authentication required"}
        assert db.query(AuditLog).filter_by(action="role_created").count() == 0

    def test_create_role(self, client, auth_headers):
        response = client.post(
            "/api/rbac/roles",
            json={"name": "analyst", "display_name": "Analyst"},
            headers=auth_headers("admin-1"),
        )
        assert response.status_code == 201
        assert response.json()["is_system"] is False

    def test_duplicate_is_409(self, client, auth_headers):
        response = client.post(
            "/api/rbac/roles",
            json={"name": "moderator", "display_name": "Again"},
            headers=auth_headers("admin-1"),
        )
        assert response.status_code == 409
        assert response.json()["code"] == "CONFLICT"

    def test_blank_name_is_422(self, client, auth_headers):
        response = client.post(
            "/api/rbac/roles",
            json={"name": " ", "display_name": "Blank"},
            headers=auth_headers("admin-1"),
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_protected_delete_is_403(self, client, auth_headers, role_named):
        response = client.delete(
            f"/api/rbac/roles/{role_named('admin').id}", headers=auth_headers("admin-1"),
        )
        assert response.status_code == 403
        assert response.json()["code"] == "PROTECTED"

    def test_set_permissions_and_check(self, client, auth_headers, role_named, permission_named):
        """Replacing a role's permissions is visible on the next check."""
        moderator = role_named("moderator")
        update = permission_named("cases:update")
        client.post(
            "/api/rbac/users/U1/roles",
            json={"role_id": moderator.id},
            headers=auth_headers("admin-1"),
        )
        response = client.put(
            f"/api/rbac/roles/{moderator.id}/permissions",
            json={"permission_ids": [update.id]},
            headers=auth_headers("admin-1"),
        )
        assert response.status_code == 200
        assert [p["name"] for p in response.json()["permissions"]] == ["cases:update"]

        mine = client.get("/api/rbac/me/permissions", headers=auth_headers("U1")).json()
        assert mine["permissions"] == ["cases:update"]

    def test_provenance_is_audited(self, client, auth_headers, db):
        headers = auth_headers("admin-1")
        headers.update({"X-Forwarded-For": "203.0.113.9, 10.0.0.1", "User-Agent": "u" * 600})
        client.post("/api/rbac/roles", json={"name": "analyst", "display_name": "Analyst"}, headers=headers)
        entry = db.query(AuditLog).filter_by(action="role_created").one()
        assert entry.ip_address == "203.0.113.9"
        assert len(entry.user_agent) == 500
        assert json.loads(entry.detail_json)["name"] == "analyst"

    def test_assign_and_revoke(self, client, auth_headers, role_named):
        donor = role_named("donor")
        headers = auth_headers("admin-1")
        assert client.post("/api/rbac/users/u5/roles", json={"role_id": donor.id}, headers=headers).status_code == 201
        roles = client.get("/api/rbac/users/u5/roles", headers=headers).json()
        assert [r["role_name"] for r in roles] == ["donor"]
        assert client.delete(f"/api/rbac/users/u5/roles/{donor.id}", headers=headers).status_code == 200
        assert client.get("/api/rbac/users/u5/roles", headers=headers).json() == []


class TestAdminRoutes:
    def test_audit_requires_audit_read(self, client, auth_headers):
        assert client.get("/api/admin/audit", headers=auth_headers("someone")).status_code == 403

    def test_audit_query(self, client, auth_headers):
        response = client.get(
            "/api/admin/audit", params={"action": "role_assigned"}, headers=auth_headers("root"),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["logs"][0]["target_id"] == "admin-1"

    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok"}
        assert client.get("/api/admin/health").json()["database"] == "ok"

    def test_request_id_header(self, client):
        response = client.get("/api/health", headers={"X-Request-Id": "abc"})
        assert response.headers["X-Request-Id"] == "abc"

    def test_access_log_names_principal(self, client, auth_headers, caplog):
        caplog.set_level(logging.INFO, logger="rbac_engine.access")
        client.get("/api/rbac/me/permissions", headers=auth_headers("admin-1"))
        client.get("/api/health")
        lines = [r.getMessage() for r in caplog.records if r.name == "rbac_engine.access"]
        assert "principal=admin-1" in lines[0]
        assert "principal=-" in lines[1]
