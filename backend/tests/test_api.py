"""End-to-end API tests through the ASGI app."""

from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from taskhub.db.session import get_db_session
from taskhub.main import create_app

API = "/api/v1"


@pytest.fixture
def app(session_factory):
    """Application wired to the per-test database."""
    application = create_app()

    async def _db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db_session] = _db_session
    application.state.session_factory = session_factory
    return application


@pytest.fixture
async def client(app):
    """HTTP client bound to the test application."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def admin(client):
    """Registers a pro tenant and returns the admin's auth headers and ids."""
    response = await client.post(
        f"{API}/tenants",
        json={"email": "admin@initech.io", "name": "Ada Admin", "company_name": "Initech", "plan": "pro"},
    )
    assert response.status_code == 201
    data = response.json()["data"]
    return {
        "headers": _auth(data["access_token"]),
        "user_id": data["user"]["id"],
        "tenant_id": data["tenant"]["id"],
    }


async def _create_project(client, headers, name="Roadmap") -> dict:
    response = await client.post(f"{API}/projects", json={"name": name}, headers=headers)
    assert response.status_code == 201
    return response.json()["data"]


async def _create_task(client, headers, project_id, title="Task", **extra) -> dict:
    response = await client.post(
        f"{API}/projects/{project_id}/tasks", json={"title": title, **extra}, headers=headers
    )
    assert response.status_code == 201
    return response.json()["data"]


# -----------------------------------------------------------------------------
# Health and auth
# -----------------------------------------------------------------------------
class TestHealthAndAuth:

    async def test_health(self, client):
        response = await client.get(f"{API}/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert len(response.headers["X-Request-ID"]) == 32

    async def test_readiness_reports_database_and_realtime(self, client):
        response = await client.get(f"{API}/health/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"] == {"database": "healthy"}
        assert body["realtime"] == {"pending_events": 0, "connections": 0}

    async def test_readiness_is_503_when_database_fails(self, app, client):
        class BrokenSession:
            async def __aenter__(self):
                raise ConnectionRefusedError("database offline")

            async def __aexit__(self, *exc):
                return False

        app.state.session_factory = BrokenSession

        response = await client.get(f"{API}/health/ready")

        assert response.status_code == 503
        assert response.json()["checks"]["database"].startswith("unhealthy")

    async def test_caller_request_id_is_echoed(self, client):
        response = await client.get(f"{API}/health", headers={"X-Request-ID": "edge-42.a:b"})
        assert response.headers["X-Request-ID"] == "edge-42.a:b"

    @pytest.mark.parametrize("incoming", ["has spaces", "semi;colon", "x" * 129])
    async def test_unusable_request_id_is_replaced(self, client, incoming):
        response = await client.get(f"{API}/health", headers={"X-Request-ID": incoming})

        echoed = response.headers["X-Request-ID"]
        assert echoed != incoming
        assert len(echoed) == 32

    async def test_missing_token_is_401_envelope(self, client):
        response = await client.get(f"{API}/projects")
        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": {"code": "AUTHENTICATION_FAILED", "message": "Not authenticated"},
        }

    async def test_garbage_token_is_401(self, client):
        response = await client.get(f"{API}/projects", headers=_auth("not-a-jwt"))
        assert response.status_code == 401

    async def test_register_returns_usable_token(self, client, admin):
        response = await client.get(f"{API}/projects", headers=admin["headers"])
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": [], "count": 0}


# -----------------------------------------------------------------------------
# Project and task flow
# -----------------------------------------------------------------------------
class TestTaskFlow:

    async def test_create_update_and_complete(self, client, admin):
        headers = admin["headers"]
        project = await _create_project(client, headers)
        assert project["owner_id"] == admin["user_id"]
        assert project["members"][0]["role"] == "manager"

        task = await _create_task(client, headers, project["id"], "Draft plan", tags=["Plan", "plan"])
        assert task["status"] == "todo"
        assert task["tags"] == ["plan"]

        response = await client.patch(
            f"{API}/tasks/{task['id']}/status", json={"status": "done"}, headers=headers
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "done"
        assert body["data"]["completed_at"] is not None

        response = await client.get(f"{API}/projects/{project['id']}", headers=headers)
        assert response.json()["data"]["metadata"]["completed_tasks"] == 1
        assert response.json()["data"]["progress"] == 100

        response = await client.get(f"{API}/tasks/{task['id']}/activity", headers=headers)
        actions = [entry["action"] for entry in response.json()["data"]]
        assert actions == ["created", "updated"]

    async def test_partial_update_leaves_other_fields(self, client, admin):
        headers = admin["headers"]
        project = await _create_project(client, headers)
        task = await _create_task(client, headers, project["id"], "Keep me", description="Body")

        response = await client.put(
            f"{API}/tasks/{task['id']}", json={"priority": "high"}, headers=headers
        )

        assert response.status_code == 200
        assert response.json()["data"]["priority"] == "high"
        assert response.json()["data"]["description"] == "Body"

    async def test_dependencies_and_can_start(self, client, admin):
        headers = admin["headers"]
        project = await _create_project(client, headers)
        a = await _create_task(client, headers, project["id"], "A")
        b = await _create_task(client, headers, project["id"], "B")

        response = await client.post(
            f"{API}/tasks/{a['id']}/dependencies",
            json={"dependency_task_id": b["id"], "type": "blocked-by"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["data"]["dependencies"] == [{"task_id": b["id"], "type": "blocked-by"}]

        response = await client.get(f"{API}/tasks/{a['id']}/can-start", headers=headers)
        assert response.json()["data"]["can_start"] is False

        response = await client.delete(
            f"{API}/tasks/{a['id']}/dependencies/{b['id']}", headers=headers
        )
        assert response.json()["data"]["dependencies"] == []

    async def test_self_dependency_is_400_envelope(self, client, admin):
        headers = admin["headers"]
        project = await _create_project(client, headers)
        task = await _create_task(client, headers, project["id"])

        response = await client.post(
            f"{API}/tasks/{task['id']}/dependencies",
            json={"dependency_task_id": task["id"]},
            headers=headers,
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "VALIDATION_ERROR"
        assert body["error"]["message"] == "Task cannot be same as dependency task"

    async def test_comments_are_paginated(self, client, admin):
        headers = admin["headers"]
        project = await _create_project(client, headers)
        task = await _create_task(client, headers, project["id"])
        for text in ("one", "two", "three"):
            response = await client.post(
                f"{API}/tasks/{task['id']}/comments", json={"text": text}, headers=headers
            )
            assert response.status_code == 201

        response = await client.get(
            f"{API}/tasks/{task['id']}/comments",
            params={"page": 2, "page_size": 2},
            headers=headers,
        )

        body = response.json()
        assert [c["text"] for c in body["data"]] == ["three"]
        assert body["pagination"] == {"page": 2, "page_size": 2, "total": 3, "pages": 2}

    async def test_unknown_task_is_404(self, client, admin):
        response = await client.get(f"{API}/tasks/{uuid4()}", headers=admin["headers"])
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"


# -----------------------------------------------------------------------------
# Roles and tenants
# -----------------------------------------------------------------------------
class TestRolesOverHttp:

    async def test_member_cannot_delete_task(self, client, admin):
        headers = admin["headers"]
        project = await _create_project(client, headers)
        task = await _create_task(client, headers, project["id"])

        response = await client.post(
            f"{API}/tenants/users",
            json={"email": "dev@initech.io", "name": "Dev"},
            headers=headers,
        )
        assert response.status_code == 201
        member = response.json()["data"]
        member_headers = _auth(member["access_token"])

        response = await client.post(
            f"{API}/projects/{project['id']}/members",
            json={"user_id": member["user"]["id"]},
            headers=headers,
        )
        assert response.status_code == 201

        response = await client.delete(f"{API}/tasks/{task['id']}", headers=member_headers)
        assert response.status_code == 403
        assert response.json()["error"]["message"] == "Only project managers can delete tasks"

        response = await client.delete(f"{API}/tasks/{task['id']}", headers=headers)
        assert response.status_code == 200

    async def test_deactivated_user_token_is_rejected(self, client, admin):
        headers = admin["headers"]
        response = await client.post(
            f"{API}/tenants/users",
            json={"email": "temp@initech.io", "name": "Temp"},
            headers=headers,
        )
        temp = response.json()["data"]

        response = await client.delete(f"{API}/tenants/users/{temp['user']['id']}", headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["is_active"] is False

        response = await client.get(f"{API}/projects", headers=_auth(temp["access_token"]))
        assert response.status_code == 401

    async def test_other_tenant_cannot_see_project(self, client, admin):
        project = await _create_project(client, admin["headers"])
        response = await client.post(
            f"{API}/tenants", json={"email": "rival@globex.io", "name": "Rival"}
        )
        rival_headers = _auth(response.json()["data"]["access_token"])

        response = await client.get(f"{API}/projects/{project['id']}", headers=rival_headers)

        assert response.status_code == 404

    async def test_ai_disabled_without_provider(self, client, admin):
        headers = admin["headers"]
        project = await _create_project(client, headers)
        await _create_task(client, headers, project["id"])

        response = await client.post(f"{API}/projects/{project['id']}/ai/prioritize", headers=headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "AI_FEATURE_DISABLED"


# -----------------------------------------------------------------------------
# Notifications
# -----------------------------------------------------------------------------
class TestNotificationsOverHttp:

    async def _member_with_assignment(self, client, admin) -> dict:
        headers = admin["headers"]
        project = await _create_project(client, headers)
        response = await client.post(
            f"{API}/tenants/users",
            json={"email": "dana@initech.io", "name": "Dana"},
            headers=headers,
        )
        member = response.json()["data"]
        await client.post(
            f"{API}/projects/{project['id']}/members",
            json={"user_id": member["user"]["id"]},
            headers=headers,
        )
        await _create_task(
            client, headers, project["id"], "Review copy", assignees=[member["user"]["id"]]
        )
        return _auth(member["access_token"])

    async def test_list_and_mark_one_read(self, client, admin):
        member_headers = await self._member_with_assignment(client, admin)

        response = await client.get(f"{API}/notifications", headers=member_headers)
        assert response.status_code == 200
        body = response.json()
        assert sorted(n["notification_type"] for n in body["data"]) == [
            "project_member_added",
            "task_assigned",
        ]
        assert body["unread_count"] == 2
        assert body["pagination"]["total"] == 2

        target = body["data"][0]["id"]
        response = await client.put(f"{API}/notifications/{target}/read", headers=member_headers)
        assert response.status_code == 200
        assert response.json()["data"]["is_read"] is True

        response = await client.get(
            f"{API}/notifications", params={"unread_only": "true"}, headers=member_headers
        )
        unread_ids = [n["id"] for n in response.json()["data"]]
        assert len(unread_ids) == 1 and target not in unread_ids
        assert response.json()["unread_count"] == 1

    async def test_mark_all_read(self, client, admin):
        member_headers = await self._member_with_assignment(client, admin)

        response = await client.put(f"{API}/notifications/read-all", headers=member_headers)

        assert response.status_code == 200
        assert response.json()["data"] == {"count": 2}
        assert response.json()["message"] == "Marked 2 notifications as read"

    async def test_cannot_mark_someone_elses(self, client, admin):
        member_headers = await self._member_with_assignment(client, admin)
        response = await client.get(f"{API}/notifications", headers=member_headers)
        target = response.json()["data"][0]["id"]

        response = await client.put(f"{API}/notifications/{target}/read", headers=admin["headers"])

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    async def test_requires_authentication(self, client):
        response = await client.get(f"{API}/notifications")
        assert response.status_code == 401
