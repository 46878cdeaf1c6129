from __future__ import annotations

from fastapi.testclient import TestClient

from fadebot.adapters.mock import MockAdapter
from fadebot.config import Settings
from fadebot.errors import StoreError
from fadebot.runtime import build_context
from fadebot.web import create_app

USER = "301122334455667788"
SCOPE = "918273645546372819"
SCOPES = {
    "scopes": [
        {
            "id": SCOPE,
            "name": "Signal Lost",
            "members": [{"id": USER, "username": "nightjar", "tags": ["The Marked"], "status": "online"}],
        }
    ]
}


def _client(clock) -> TestClient:
    settings = Settings(STORE="memory", MOCK_LATENCY_MS_RANGE=(0, 0))
    ctx = build_context(settings, adapter=MockAdapter(settings, scopes=SCOPES), clock=clock)
    return TestClient(create_app(ctx))


def test_health_reports_configuration(clock):
    with _client(clock) as client:
        body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["store"] == "ok"
    assert body["max_rounds"] == 3
    assert body["night_hours"] == "21:00-06:00"


def test_selection_then_inbound_flow(clock):
    with _client(clock) as client:
        selected = client.post("/selection/run").json()
        assert selected[0]["status"] == "contacted"

        reply = client.post("/inbound", json={"user_id": USER, "content": "who are you?"})
        assert reply.status_code == 200
        assert reply.json()["round"] == 1

        summary = client.get(f"/users/{USER}/summary").json()
        assert summary["total_turns"] == 2

        stats = client.get(f"/scopes/{SCOPE}/stats").json()
        assert stats["total_selections"] == 1


def test_inbound_rejects_malformed_user_id(clock):
    with _client(clock) as client:
        response = client.post("/inbound", json={"user_id": "abc", "content": "hi"})
    assert response.status_code == 422


def test_repair_and_reset_routes(clock):
    with _client(clock) as client:
        client.post("/selection/run")
        assert client.get("/diagnostics/corrupted").json() == []
        assert client.post("/diagnostics/fix-corrupted").json()["fixed"] == 0
        assert client.post(f"/users/{USER}/diagnose").json()["active"] == 1
        assert client.post(f"/users/{USER}/collapse").json()["completed_ids"] == []
        assert client.delete(f"/users/{USER}/history").json() == {"turns_deleted": 0}
        assert client.delete(f"/users/{USER}").json()["sessions_deleted"] == 1


def test_store_failure_maps_to_503(clock):
    settings = Settings(STORE="memory", MOCK_LATENCY_MS_RANGE=(0, 0))
    ctx = build_context(settings, adapter=MockAdapter(settings, scopes=SCOPES), clock=clock)

    def broken(scope_id):
        raise StoreError("database is locked")

    ctx.diagnostics.selection_stats = broken
    with TestClient(create_app(ctx)) as client:
        response = client.get(f"/scopes/{SCOPE}/stats")
    assert response.status_code == 503
