"""Lifecycle tests for the server registry, with real listeners on localhost."""

import socket

import httpx
import pytest

from flowengine.errors import ServerNotRunningError
from flowengine.models.api_config import APIDetails
from server.config import Settings
from server.custom_server import CustomServer, is_port_in_use
from server.registry import ServerRegistry

HOST = "127.0.0.1"


def make_api(port=0, enabled=True, paths=("/ping",)):
    endpoints = [
        {
            "id": f"ep-{index}",
            "name": f"Endpoint {index}",
            "path": path,
            "method": "GET",
            "enabled": True,
            "flow": {
                "nodes": [
                    {"id": f"ep-{index}", "type": "endpointNode", "data": {"path": path}},
                    {
                        "id": "r",
                        "type": "responseNode",
                        "data": {"statusCode": 200, "responseBody": f'{{"path":"{path}"}}'},
                    },
                ],
                "edges": [{"source": f"ep-{index}", "target": "r"}],
            },
        }
        for index, path in enumerate(paths)
    ]
    return APIDetails.model_validate(
        {
            "id": "api-1",
            "connectionId": "conn-1",
            "port": port,
            "enabled": enabled,
            "endpoints": endpoints,
        }
    )


@pytest.fixture
def settings():
    return Settings(custom_api_host=HOST, port_grace_delay=0.01)


@pytest.fixture
async def registry(settings):
    registry = ServerRegistry(settings)
    yield registry
    await registry.close_all()


@pytest.fixture
def occupied_port():
    """A port held by another listener for the duration of a test."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind((HOST, 0))
    listener.listen()
    yield listener.getsockname()[1]
    listener.close()


def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((HOST, 0))
        return sock.getsockname()[1]


async def get(server, path):
    async with httpx.AsyncClient(base_url=f"http://{HOST}:{server.port}") as client:
        return await client.get(path)


class TestStartStop:
    """Test starting and stopping servers through the registry."""

    async def test_start_serves_requests(self, registry):
        result = await registry.start(make_api())
        server = registry.get("conn-1")

        assert result.success
        assert result.message == f"Server started on port {server.port}"
        response = await get(server, "/ping")
        assert response.json() == {"path": "/ping"}
        assert registry.status("conn-1")["isRunning"]

    async def test_port_in_use(self, registry, occupied_port):
        """A busy port fails the start and leaves the registry unchanged."""
        result = await registry.start(make_api(port=occupied_port))

        assert not result.success
        assert "port in use" in result.error
        assert registry.get("conn-1") is None
        assert registry.connection_ids() == []

    async def test_already_running(self, registry):
        await registry.start(make_api())
        result = await registry.start(make_api())
        assert not result.success
        assert result.error == "Server is already running"

    async def test_disabled_api_stops_server(self, registry):
        await registry.start(make_api())
        result = await registry.start(make_api(enabled=False))

        assert result.success
        assert result.message == "Server stopped"
        assert not registry.get("conn-1").is_running

    async def test_disabled_api_not_started(self, registry):
        result = await registry.start(make_api(enabled=False))
        assert result.message == "Server is not enabled"
        assert registry.get("conn-1") is None

    async def test_stop_releases_port(self, registry):
        await registry.start(make_api())
        port = registry.get("conn-1").port
        result = await registry.stop("conn-1")

        assert result.success
        assert not is_port_in_use(HOST, port)
        assert not (await registry.stop("conn-1")).success

    async def test_restart(self, registry):
        await registry.start(make_api())
        first = registry.get("conn-1")
        result = await registry.restart(make_api(paths=("/pong",)))
        second = registry.get("conn-1")

        assert result.message == "Server restarted"
        assert second is not first
        assert not first.is_running
        assert (await get(second, "/pong")).status_code == 200


class TestReconcile:
    """Test applying changed endpoint definitions."""

    async def test_routes_rebuilt_in_place(self, registry):
        await registry.start(make_api())
        server = registry.get("conn-1")
        port = server.port

        result = await registry.reconcile(make_api(paths=("/ping", "/pong")))

        assert result.success
        assert registry.get("conn-1") is server
        assert server.port == port
        assert (await get(server, "/pong")).json() == {"path": "/pong"}

    async def test_port_change_to_busy_port(self, registry, occupied_port):
        await registry.start(make_api())
        server = registry.get("conn-1")

        result = await registry.reconcile(make_api(port=occupied_port))

        assert not result.success
        assert "port in use" in result.error
        assert server.is_running
        assert (await get(server, "/ping")).status_code == 200

    async def test_port_change_binds_before_stopping(self, registry, occupied_port, monkeypatch):
        """A bind failure on the new port leaves the old listener serving."""
        await registry.start(make_api())
        server = registry.get("conn-1")
        port = server.port
        monkeypatch.setattr("server.custom_server.is_port_in_use", lambda host, port: False)

        result = await registry.reconcile(make_api(port=occupied_port))

        assert not result.success
        assert "port in use" in result.error
        assert server.port == port
        assert server.api.port == 0
        assert (await get(server, "/ping")).status_code == 200

    async def test_failed_port_change_restores_previous_port(self, registry, monkeypatch):
        port, new_port = free_port(), free_port()
        await registry.start(make_api(port=port))
        server = registry.get("conn-1")
        serve = server._serve
        calls = []

        async def fail_once(sock):
            calls.append(sock.getsockname()[1])
            if len(calls) == 1:
                sock.close()
                raise RuntimeError("server failed to start")
            await serve(sock)

        monkeypatch.setattr(server, "_serve", fail_once)

        result = await registry.reconcile(make_api(port=new_port, paths=("/pong",)))

        assert not result.success
        assert result.error == "server failed to start"
        assert calls == [new_port, port]
        assert server.is_running
        assert server.port == port
        assert server.api.port == port
        assert (await get(server, "/ping")).status_code == 200
        assert not is_port_in_use(HOST, new_port)


    async def test_stopped_server_is_started(self, registry):
        result = await registry.reconcile(make_api())
        assert result.success
        assert registry.get("conn-1").is_running

    async def test_reconcile_requires_running_server(self, settings):
        server = CustomServer(make_api(), settings)
        with pytest.raises(ServerNotRunningError):
            await server.reconcile(make_api())


class TestLogs:
    """Test log access through the registry."""

    async def test_logs_and_clear(self, registry):
        await registry.start(make_api())
        await get(registry.get("conn-1"), "/ping")

        assert registry.get_logs("conn-1")
        assert registry.clear_logs("conn-1").success
        assert registry.get_logs("conn-1") == []
        assert registry.get_logs("unknown") is None
        assert not registry.clear_logs("unknown").success

    async def test_flow_execution_logs(self, registry):
        await registry.start(make_api())
        await get(registry.get("conn-1"), "/ping")

        logs = registry.get_flow_execution_logs("conn-1", "ep-0")
        assert len(logs) == 1
        assert registry.get_flow_execution_log("conn-1", "ep-0", logs[0].execution_id) == logs[0]
        assert not registry.delete_flow_execution_log("conn-1", "ep-0", "missing")
        registry.clear_flow_execution_logs("conn-1", "ep-0")
        assert registry.get_flow_execution_logs("conn-1", "ep-0") == []
