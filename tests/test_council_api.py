"""
Integration tests for the council REST routers.

Covers: health, templates (list, validate), personas (list, get, update),
sessions (list, snapshot, export) using FastAPI TestClient with a fake
utterance generator and a temporary persona directory.
"""
from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from council_api.main import create_app
from tests.conftest import FakeGenerator


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def client(config):
    app = create_app(config, generator=FakeGenerator())
    with TestClient(app) as c:
        yield c


@pytest.fixture
def critic(persona_dir) -> dict:
    return json.loads((persona_dir / "critic.json").read_text(encoding="utf-8"))


def _create_session(client, **fields) -> str:
    with client.websocket_connect("/ws/council") as ws:
        ws.send_json({"type": "create", **fields})
        created = ws.receive_json()
    assert created["type"] == "created"
    return created["sessionId"]


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["sessions"] == 0
    assert data["connections"] == 0


def test_routes_unavailable_before_startup(config):
    client = TestClient(create_app(config, generator=FakeGenerator()))
    resp = client.get("/council/personas")
    assert resp.status_code == 503


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

class TestTemplates:
    def test_list(self, client):
        resp = client.get("/council/templates")
        assert resp.status_code == 200
        data = resp.json()
        assert set(data) == {"standard", "quick", "freeForAll"}
        assert data["quick"]["rounds"][0]["name"] == "Pitch"

    def test_validate_custom(self, client):
        resp = client.post("/council/templates", json={
            "name": "Lightning",
            "description": "One fast round",
            "rounds": [{"name": "Go", "durationSeconds": 90, "prompt": "All agents: go"}],
        })
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["template"]["name"] == "Lightning"
        assert data["template"]["rounds"][0]["durationSeconds"] == 90

    def test_missing_name(self, client):
        resp = client.post("/council/templates", json={"rounds": [{"name": "Go"}]})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid template data: name is required"

    def test_empty_rounds(self, client):
        resp = client.post("/council/templates", json={"name": "Empty", "rounds": []})
        assert resp.status_code == 400

    def test_bad_round(self, client):
        resp = client.post("/council/templates", json={
            "name": "Broken",
            "rounds": [{"name": "Go", "durationSeconds": 0, "prompt": "go"}],
        })
        assert resp.status_code == 400
        assert resp.json()["detail"].startswith("Invalid round data")

    def test_invalid_json(self, client):
        resp = client.post(
            "/council/templates",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid JSON body"


# ---------------------------------------------------------------------------
# Personas
# ---------------------------------------------------------------------------

class TestPersonas:
    def test_list(self, client):
        resp = client.get("/council/personas")
        assert resp.status_code == 200
        roles = [p["role"] for p in resp.json()]
        assert len(roles) == 7
        assert "cognitive-load" in roles

    def test_get(self, client):
        resp = client.get("/council/personas/critic")
        assert resp.status_code == 200
        data = resp.json()
        assert data["emoji"] == "🎯"
        assert "coreIdentity" in data

    def test_get_unknown(self, client):
        resp = client.get("/council/personas/ghost")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Persona not found"

    def test_update(self, client, critic):
        critic["responseGuidelines"] = "Name one risk. Then stop."
        resp = client.put("/council/personas/critic", json=critic)
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        again = client.get("/council/personas/critic").json()
        assert again["responseGuidelines"] == "Name one risk. Then stop."

    def test_update_missing_field(self, client, critic):
        del critic["model"]
        resp = client.put("/council/personas/critic", json=critic)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Missing required field: model"

    def test_update_unknown_role(self, client, critic):
        critic["role"] = "ghost"
        resp = client.put("/council/personas/ghost", json=critic)
        assert resp.status_code == 404

    def test_bulk_update(self, client, critic):
        critic["name"] = "Chief Critic"
        resp = client.put("/council/personas", json=[critic])
        assert resp.status_code == 200
        assert [p["name"] for p in resp.json()["personas"]] == ["Chief Critic"]

    def test_bulk_update_requires_list(self, client, critic):
        resp = client.put("/council/personas", json=critic)
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

class TestSessions:
    def test_list_empty(self, client):
        resp = client.get("/council/sessions")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_get_unknown(self, client):
        resp = client.get("/council/sessions/council-missing")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Session not found: council-missing"

    def test_snapshot(self, client):
        session_id = _create_session(client, template="quick", contextPrompt="Tools for nurses")

        resp = client.get(f"/council/sessions/{session_id}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["sessionId"] == session_id
        assert data["status"] == "configuring"
        assert data["messages"] == []
        assert data["timerState"] is None
        assert data["config"]["contextPrompt"] == "Tools for nurses"

        listed = client.get("/council/sessions").json()
        assert [s["id"] for s in listed] == [session_id]
        assert client.get("/health").json()["sessions"] == 1

    def test_export_markdown(self, client):
        session_id = _create_session(client, template="quick", contextPrompt="Tools for nurses")

        resp = client.get(f"/council/sessions/{session_id}/export")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/markdown")
        assert f'filename="{session_id}.md"' in resp.headers["content-disposition"]
        assert resp.text.startswith(f"# Council Session {session_id}")
        assert "> Tools for nurses" in resp.text

    def test_export_jsonl(self, client):
        session_id = _create_session(client, template="freeForAll")

        resp = client.get(f"/council/sessions/{session_id}/export", params={"format": "jsonl"})
        assert resp.status_code == 200
        header = json.loads(resp.text.splitlines()[0])
        assert header["_session_id"] == session_id
        assert header["_free_for_all"] is True

    def test_export_unknown_format(self, client):
        session_id = _create_session(client, template="quick")
        resp = client.get(f"/council/sessions/{session_id}/export", params={"format": "pdf"})
        assert resp.status_code == 422

    def test_export_unknown_session(self, client):
        resp = client.get("/council/sessions/council-missing/export")
        assert resp.status_code == 404
