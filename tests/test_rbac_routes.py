"""
tests/test_rbac_routes.py -- Integration tests for permission-gated routes.

Coverage:
  - 401 without a token, 403 with a token lacking the route's permission
  - 200 once the caller's role grants the permission (re-resolved per request)
  - admin:full_access passes every gate
  - roles / permissions CRUD and user administration happy paths
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from tests.conftest import ApiContext, register_and_login


def _role_id(api: ApiContext, name: str, permissions: list[str]) -> int:
    role = api.service.roles.get_role_by_name(name) or api.service.roles.create_role(name, None, permissions)
    return role.id


class TestGate:
    def test_no_token_401(self, client: TestClient) -> None:
        resp = client.get("/api/v1/roles")
        assert resp.status_code == 401
        assert resp.json()["success"] is False

    def test_missing_permission_403(self, client: TestClient, api: ApiContext) -> None:
        data = register_and_login(client, "norole@example.com")
        client.cookies.clear()
        resp = client.get("/api/v1/roles", headers=api.bearer(data["access_token"]))
        assert resp.status_code == 403
        assert resp.json() == {"success": False, "message": "Access denied. Missing permissions: roles:read"}

    def test_roleless_account_cannot_administer(self, client: TestClient, api: ApiContext) -> None:
        """Every permission-gated write is closed to an account with no role."""
        data = register_and_login(client, "climber@example.com")
        client.cookies.clear()
        headers = api.bearer(data["access_token"])
        own_id = data["user"]["id"]
        admin_role = api.service.roles.get_role_by_name("admin")

        resp = client.post("/api/v1/permissions", json={"name": "reports:export"}, headers=headers)
        assert resp.status_code == 403
        resp = client.post("/api/v1/roles", json={"name": "mine", "permissions": ["admin:full_access"]}, headers=headers)
        assert resp.status_code == 403
        resp = client.put(f"/api/v1/users/{own_id}/role", json={"role_id": admin_role.id}, headers=headers)
        assert resp.status_code == 403
        assert resp.json() == {"success": False, "message": "Access denied. Missing permissions: users:update"}
        assert client.get("/api/v1/users", headers=headers).status_code == 403
        assert api.service.accounts.find_by_id(own_id).role_id is None

    def test_public_routes_need_no_token(self, client: TestClient) -> None:
        assert client.get("/api/v1/auth/providers").status_code == 200
        assert client.get("/api/v1/auth/exists", params={"email": "x@example.com"}).status_code == 200
        resp = client.post("/api/v1/auth/register", json={"email": "open@example.com", "password": "secret123"})
        assert resp.status_code == 201

    def test_granted_after_role_assignment(self, client: TestClient, api: ApiContext) -> None:
        data = register_and_login(client, "reader@example.com")
        client.cookies.clear()
        headers = api.bearer(data["access_token"])
        assert client.get("/api/v1/roles", headers=headers).status_code == 403

        api.service.accounts.assign_role(data["user"]["id"], _role_id(api, "role-reader", ["roles:read"]))
        assert client.get("/api/v1/roles", headers=headers).status_code == 200
        # roles:read does not imply roles:create
        resp = client.post("/api/v1/roles", json={"name": "nope"}, headers=headers)
        assert resp.status_code == 403

    def test_full_access_passes_every_gate(self, client: TestClient, api: ApiContext) -> None:
        for path in ("/api/v1/roles", "/api/v1/permissions", "/api/v1/users"):
            assert client.get(path, headers=api.bearer()).status_code == 200, path


class TestRolesApi:
    def test_role_crud(self, client: TestClient, api: ApiContext) -> None:
        headers = api.bearer()
        resp = client.post(
            "/api/v1/roles",
            json={"name": "editor", "description": "Edits", "permissions": ["blogs:update", "blogs:read"]},
            headers=headers,
        )
        assert resp.status_code == 201, resp.text
        role = resp.json()["data"]
        assert role["permissions"] == ["blogs:read", "blogs:update"]

        resp = client.post("/api/v1/roles", json={"name": "editor"}, headers=headers)
        assert resp.status_code == 409

        resp = client.patch(f"/api/v1/roles/{role['id']}", json={"description": "Edits blogs"}, headers=headers)
        assert resp.json()["data"]["description"] == "Edits blogs"

        resp = client.put(
            f"/api/v1/roles/{role['id']}/permissions", json={"permissions": ["blogs:read"]}, headers=headers
        )
        assert resp.json()["data"]["permissions"] == ["blogs:read"]

        assert client.delete(f"/api/v1/roles/{role['id']}", headers=headers).status_code == 200
        names = [r["name"] for r in client.get("/api/v1/roles", headers=headers).json()["data"]]
        assert "editor" not in names
        assert client.post(f"/api/v1/roles/{role['id']}/restore", headers=headers).status_code == 200

    def test_unknown_permission_400(self, client: TestClient, api: ApiContext) -> None:
        resp = client.post("/api/v1/roles", json={"name": "bad", "permissions": ["blogs:fly"]}, headers=api.bearer())
        assert resp.status_code == 400

    def test_role_not_found(self, client: TestClient, api: ApiContext) -> None:
        assert client.get("/api/v1/roles/99999", headers=api.bearer()).status_code == 404

    def test_permission_crud(self, client: TestClient, api: ApiContext) -> None:
        headers = api.bearer()
        resp = client.post("/api/v1/permissions", json={"name": "reports:export"}, headers=headers)
        assert resp.status_code == 201
        perm_id = resp.json()["data"]["id"]
        assert client.post("/api/v1/permissions", json={"name": "badname"}, headers=headers).status_code == 400
        assert client.delete(f"/api/v1/permissions/{perm_id}", headers=headers).status_code == 204
        assert client.delete(f"/api/v1/permissions/{perm_id}", headers=headers).status_code == 404


class TestUsersApi:
    def test_assign_role_and_list(self, client: TestClient, api: ApiContext) -> None:
        data = register_and_login(client, "assignee@example.com")
        client.cookies.clear()
        role_id = _role_id(api, "user-reader", ["users:read"])
        resp = client.put(f"/api/v1/users/{data['user']['id']}/role", json={"role_id": role_id}, headers=api.bearer())
        assert resp.status_code == 200
        assert resp.json()["data"]["role_id"] == role_id

        resp = client.get("/api/v1/users", headers=api.bearer(data["access_token"]))
        assert resp.status_code == 200
        assert "hashed_password" not in resp.json()["data"][0]
        # users:view_deleted is not part of the role
        resp = client.get("/api/v1/users", params={"include_deleted": True}, headers=api.bearer(data["access_token"]))
        assert resp.status_code == 403

    def test_assign_unknown_role_404(self, client: TestClient, api: ApiContext) -> None:
        data = register_and_login(client, "lonely@example.com")
        resp = client.put(f"/api/v1/users/{data['user']['id']}/role", json={"role_id": 99999}, headers=api.bearer())
        assert resp.status_code == 404

    def test_delete_revokes_sessions_and_restore(self, client: TestClient, api: ApiContext) -> None:
        data = register_and_login(client, "doomed@example.com")
        session_id = client.cookies.get("sessionId")
        client.cookies.clear()
        user_id = data["user"]["id"]

        resp = client.delete(f"/api/v1/users/{user_id}", headers=api.bearer())
        assert resp.status_code == 200
        assert resp.json()["data"]["deleted_at"] is not None
        assert api.service.check_session(session_id) is None
        assert client.get("/api/v1/auth/exists", params={"email": "doomed@example.com"}).json()["data"]["exists"] is False

        resp = client.post(f"/api/v1/users/{user_id}/restore", headers=api.bearer())
        assert resp.status_code == 200
        assert resp.json()["data"]["deleted_at"] is None

    def test_cannot_delete_self(self, client: TestClient, api: ApiContext) -> None:
        resp = client.delete(f"/api/v1/users/{api.admin_id}", headers=api.bearer())
        assert resp.status_code == 400
