"""Tests for the admin API."""

import pytest
from fastapi.testclient import TestClient

from server.app import create_app
from server.config import Settings
from server.registry import ServerRegistry


def flow(condition="params.role === 'admin'"):
    return {
        "nodes": [
            {"id": "ep", "type": "endpointNode", "data": {"method": "GET", "path": "/items/:role"}},
            {"id": "cond", "type": "conditionalNode", "data": {"condition": condition}},
            {"id": "ok", "type": "responseNode", "data": {"statusCode": 200, "responseBody": '{"ok":true}'}},
            {"id": "no", "type": "responseNode", "data": {"statusCode": 403, "responseBody": '{"ok":false}'}},
        ],
        "edges": [
            {"source": "ep", "target": "cond"},
            {"source": "cond", "target": "ok", "sourceHandle": "true"},
            {"source": "cond", "target": "no", "sourceHandle": "false"},
        ],
    }


def api_payload(enabled=True):
    return {
        "id": "api-1",
        "connectionId": "conn-1",
        "port": 0,
        "enabled": enabled,
        "endpoints": [{"id": "ep", "path": "/items/:role", "enabled": True, "flow": flow()}],
    }


@pytest.fixture
def settings(tmp_path):
    return Settings(custom_api_host="127.0.0.1", port_grace_delay=0.01, sqlite_data_dir=tmp_path)


@pytest.fixture
def client(settings):
    return TestClient(create_app(settings, ServerRegistry(settings)))


class TestHealth:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestFlowRoutes:
    """Test flow validation and test runs."""

    def test_validate_valid(self, client):
        response = client.post("/api/flows/validate", json={"endpointId": "ep", "flow": flow()})
        assert response.json() == {"valid": True, "problems": []}

    def test_validate_invalid(self, client):
        broken = flow()
        broken["edges"].append({"source": "ok", "target": "no"})
        response = client.post("/api/flows/validate", json={"endpointId": "ep", "flow": broken})
        payload = response.json()

        assert payload["valid"] is False
        assert "response node ok has outgoing edges" in payload["problems"]

    def test_execute_returns_trace(self, client):
        response = client.post(
            "/api/flows/execute",
            json={
                "endpoint": {"id": "ep", "path": "/items/:role", "flow": flow()},
                "params": {"role": "user"},
            },
        )
        payload = response.json()

        assert response.status_code == 200
        assert payload["statusCode"] == 403
        assert payload["data"] == {"ok": False}
        assert [step["nodeId"] for step in payload["steps"]] == ["ep", "cond", "no"]

    def test_execute_without_flow(self, client):
        response = client.post("/api/flows/execute", json={"endpoint": {"id": "ep", "path": "/x"}})
        assert response.status_code == 400


class TestServerRoutes:
    """Test server lifecycle routes."""

    def test_unknown_server(self, client):
        assert client.get("/api/servers/nope/status").json()["isRunning"] is False
        assert client.get("/api/servers/nope/logs").status_code == 404
        assert client.post("/api/servers/nope/stop").json()["success"] is False
        assert client.get("/api/servers/nope/endpoints/ep/executions").json() == []
        assert client.get("/api/servers/nope/endpoints/ep/executions/x").status_code == 404

    def test_disabled_api(self, client):
        response = client.post("/api/servers/start", json=api_payload(enabled=False))
        assert response.json() == {"success": True, "message": "Server is not enabled", "error": None}

    def test_invalid_api_payload(self, client):
        response = client.post("/api/servers/start", json={"id": "api-1"})
        assert response.status_code == 422

    def test_start_and_stop(self, settings):
        with TestClient(create_app(settings, ServerRegistry(settings))) as client:
            started = client.post("/api/servers/start", json=api_payload()).json()
            assert started["success"], started

            status = client.get("/api/servers/conn-1/status").json()
            assert status["isRunning"]
            assert status["endpointCount"] == 1

            logs = client.get("/api/servers/conn-1/logs", params={"level": "info"}).json()
            assert all(entry["level"] == "info" for entry in logs)

            assert client.delete("/api/servers/conn-1/logs").json()["success"]
            stopped = client.post("/api/servers/conn-1/stop").json()
            assert stopped["message"] == "Server stopped"
