"""
Unit tests for the HTTP API.

The app runs its real lifespan with the in-memory backend.
"""

import pytest
from fastapi.testclient import TestClient

from src.api.v1.app import create_app, status_for_exception
from src.api.v1.dependencies import get_session_manager
from src.config.settings import Settings
from src.domain.session.cache import SessionCache
from src.domain.session.manager import SessionLifecycleManager
from src.domain.session.storage.memory import InMemorySessionGateway
from src.shared.exceptions import (
    ConcurrentModificationError,
    ConfigurationError,
    PersistenceError,
    SessionNotFoundError,
    TerminalStateError,
    ValidationError,
)


class UnavailableGateway(InMemorySessionGateway):
    async def get_by_session_id(self, session_id):
        raise PersistenceError("database unavailable")


@pytest.fixture
def app():
    return create_app(Settings(storage_backend="memory", cors_enabled=False))


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def create(client, user_id="user-1", **body):
    body.setdefault("user_id", user_id)
    response = client.post("/v1/sessions", json=body)
    assert response.status_code == 201
    return response.json()


class TestSystemEndpoints:
    def test_health(self, client):
        response = client.get("/v1/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["storage_backend"] == "memory"


class TestSessionEndpoints:
    """Test the session lifecycle over HTTP."""

    def test_create_and_get(self, client):
        created = create(client, initial_data={"topic": "geology"}, title="Rocks")

        response = client.get(f"/v1/sessions/{created['session_id']}")

        assert response.status_code == 200
        body = response.json()
        assert body["lifecycle_state"] == "active"
        assert body["context_data"] == {"topic": "geology"}
        assert body["title"] == "Rocks"
        assert body["messages"] is None

    def test_unknown_session_is_404(self, client):
        response = client.get("/v1/sessions/session_missing")

        assert response.status_code == 404
        assert response.json()["error"] == "SessionNotFoundError"

    def test_invalid_request_is_422(self, client):
        assert client.post("/v1/sessions", json={"user_id": ""}).status_code == 422

    def test_duplicate_session_id_is_422(self, client):
        create(client, session_id="session_fixed")

        response = client.post(
            "/v1/sessions", json={"user_id": "user-2", "session_id": "session_fixed"}
        )

        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"

    def test_illegal_transitions_are_409(self, client):
        sid = create(client)["session_id"]

        assert client.post(f"/v1/sessions/{sid}/pause", json={"reason": "break"}).status_code == 200
        assert client.post(f"/v1/sessions/{sid}/pause").status_code == 409
        assert client.post(f"/v1/sessions/{sid}/resume").status_code == 200
        assert client.post(f"/v1/sessions/{sid}/complete", json={"data": {"id": 1}}).status_code == 200

        response = client.post(
            f"/v1/sessions/{sid}/messages", json={"type": "user", "content": "wait"}
        )
        assert response.status_code == 409
        assert response.json()["error"] == "TerminalStateError"

    def test_content_endpoints(self, client):
        sid = create(client)["session_id"]

        client.post(
            f"/v1/sessions/{sid}/messages",
            json={"type": "assistant", "content": "Outline", "metadata": {"tokens_used": 40}},
        )
        client.patch(f"/v1/sessions/{sid}/context", json={"data": {"modules": 3}})
        client.put(f"/v1/sessions/{sid}/workflow-state", json={"state": "final_review"})
        response = client.post(f"/v1/sessions/{sid}/usage", json={"tokens": 10, "cost": 0.01})

        body = response.json()
        assert body["message_count"] == 1
        assert body["context_data"] == {"modules": 3}
        assert body["current_state"] == "final_review"
        assert body["progress"] == pytest.approx(0.9)
        assert body["total_tokens"] == 50

        full = client.get(f"/v1/sessions/{sid}", params={"include_messages": True}).json()
        assert full["messages"][0]["content"] == "Outline"

    def test_delete(self, client):
        sid = create(client)["session_id"]

        response = client.delete(f"/v1/sessions/{sid}")

        assert response.status_code == 200
        assert response.json()["deleted"] is True
        assert client.get(f"/v1/sessions/{sid}").status_code == 404

    def test_batch_and_user_listing(self, client):
        first = create(client)["session_id"]
        second = create(client)["session_id"]
        client.post(f"/v1/sessions/{first}/pause")

        batch = client.post(
            "/v1/sessions/batch", json={"session_ids": [first, second, "session_missing"]}
        ).json()
        assert batch["count"] == 2

        active = client.get("/v1/users/user-1/sessions", params={"active_only": True}).json()
        assert [s["session_id"] for s in active["sessions"]] == [second]

        everything = client.get("/v1/users/user-1/sessions").json()
        assert everything["count"] == 2

    def test_active_listing_honours_offset(self, client):
        create(client)
        create(client)

        params = {"active_only": True, "limit": 1}
        first_page = client.get("/v1/users/user-1/sessions", params=params).json()
        second_page = client.get(
            "/v1/users/user-1/sessions", params={**params, "offset": 1}
        ).json()

        assert first_page["count"] == second_page["count"] == 1
        assert first_page["sessions"][0]["session_id"] != second_page["sessions"][0]["session_id"]


class TestPortabilityEndpoints:
    """Test export, import, sync and analytics over HTTP."""

    def test_export_import(self, client):
        sid = create(client, initial_data={"topic": "music"})["session_id"]
        client.post(f"/v1/sessions/{sid}/messages", json={"type": "user", "content": "hi"})

        snapshot = client.get(f"/v1/sessions/{sid}/export").json()
        assert snapshot["export_version"] == "1.0"

        response = client.post("/v1/sessions/import", json={"snapshot": snapshot})

        assert response.status_code == 201
        imported = response.json()
        assert imported["session_id"] != sid
        assert imported["context_data"] == {"topic": "music"}
        assert imported["message_count"] == 1

    def test_import_malformed_is_422(self, client):
        response = client.post("/v1/sessions/import", json={"snapshot": {"user_id": "x"}})

        assert response.status_code == 422

    def test_sync(self, client):
        sid = create(client)["session_id"]

        response = client.post(f"/v1/sessions/{sid}/sync", json={})

        assert response.status_code == 200
        body = response.json()
        assert body["needs_update"] is True
        assert body["conflict_detected"] is False

    def test_analytics(self, client):
        sid = create(client)["session_id"]

        body = client.get(f"/v1/sessions/{sid}/analytics").json()

        assert 0.0 <= body["engagement_score"] <= 1.0
        assert body["session_id"] == sid


class TestMaintenanceEndpoints:
    def test_sweep_with_nothing_idle(self, client):
        create(client)

        response = client.post("/v1/maintenance/sweep", json={"idle_seconds": 3600})

        assert response.status_code == 200
        assert response.json() == {"abandoned": 0}


class TestErrorMapping:
    """Test domain exception to status code mapping."""

    @pytest.mark.parametrize(
        "exc, expected",
        [
            (SessionNotFoundError("s"), 404),
            (TerminalStateError("done"), 409),
            (ConcurrentModificationError("stale"), 409),
            (ValidationError("bad"), 422),
            (PersistenceError("down"), 503),
            (ConfigurationError("missing"), 500),
        ],
    )
    def test_status_for_exception(self, exc, expected):
        assert status_for_exception(exc) == expected

    def test_storage_outage_is_503(self, app):
        manager = SessionLifecycleManager(UnavailableGateway(), SessionCache())
        app.dependency_overrides[get_session_manager] = lambda: manager

        with TestClient(app) as client:
            response = client.get("/v1/sessions/session_any")

        assert response.status_code == 503
        assert response.json()["error"] == "PersistenceError"
