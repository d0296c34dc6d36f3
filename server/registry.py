"""Registry of running custom API servers, one per database connection."""

import asyncio
from typing import Callable

from pydantic import BaseModel

from flowengine.models.api_config import APIDetails
from flowengine.models.server_log import FlowExecutionLog, LogEntry, LogLevel
from flowengine.runtime.database import DatabaseClient
from flowengine.utils.logging import get_logger
from server.config import Settings, get_settings
from server.custom_server import CustomServer

logger = get_logger(__name__)

DatabaseResolver = Callable[[str], DatabaseClient | None]


class OperationResult(BaseModel):
    """outcome of a registry operation."""

    success: bool
    message: str | None = None
    error: str | None = None


class ServerRegistry:
    """Owns the CustomServer of every connection.

    Created by the host application and passed to whoever needs it.
    Operations that start, stop or replace a server are serialized per
    connection id, so two listeners never race for one port.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        database_resolver: DatabaseResolver | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.database_resolver = database_resolver
        self._servers: dict[str, CustomServer] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, connection_id: str) -> asyncio.Lock:
        if connection_id not in self._locks:
            self._locks[connection_id] = asyncio.Lock()
        return self._locks[connection_id]

    def get(self, connection_id: str) -> CustomServer | None:
        return self._servers.get(connection_id)

    def connection_ids(self) -> list[str]:
        return list(self._servers)

    def _create_server(self, api: APIDetails) -> CustomServer:
        database = None
        if self.database_resolver is not None:
            database = self.database_resolver(api.connection_id)
        return CustomServer(api, self.settings, database=database)

    # --- Lifecycle ---

    async def _start_locked(self, api: APIDetails) -> OperationResult:
        current = self._servers.get(api.connection_id)

        if not api.enabled:
            if current is not None and current.is_running:
                await current.stop()
                return OperationResult(success=True, message="Server stopped")
            return OperationResult(success=True, message="Server is not enabled")

        if current is not None and current.is_running:
            return OperationResult(success=False, error="Server is already running")

        server = self._create_server(api)
        try:
            await server.start()
        except Exception as e:
            logger.warning("Failed to start server for connection %s: %s", api.connection_id, e)
            return OperationResult(success=False, error=str(e) or "Failed to start server")

        self._servers[api.connection_id] = server
        return OperationResult(success=True, message=f"Server started on port {server.port}")

    async def _stop_locked(self, connection_id: str) -> OperationResult:
        current = self._servers.get(connection_id)
        if current is None or not current.is_running:
            return OperationResult(success=False, error="No server running")
        await current.stop()
        return OperationResult(success=True, message="Server stopped")

    async def start(self, api: APIDetails) -> OperationResult:
        """Start the server of an API; a disabled API stops its running server instead."""
        async with self._lock(api.connection_id):
            return await self._start_locked(api)

    async def stop(self, connection_id: str) -> OperationResult:
        async with self._lock(connection_id):
            return await self._stop_locked(connection_id)

    async def restart(self, api: APIDetails) -> OperationResult:
        """Stop the running server, then start a fresh one from ``api``."""
        async with self._lock(api.connection_id):
            if not api.enabled:
                return await self._start_locked(api)
            await self._stop_locked(api.connection_id)
            result = await self._start_locked(api)
        if result.success:
            return OperationResult(success=True, message="Server restarted")
        return result

    async def reconcile(self, api: APIDetails) -> OperationResult:
        """Bring the server in line with a changed API definition.

        A running server rebuilds its routes and keeps its listener when
        the port is unchanged; a stopped one is started.
        """
        async with self._lock(api.connection_id):
            current = self._servers.get(api.connection_id)
            if current is None or not current.is_running or not api.enabled:
                return await self._start_locked(api)
            try:
                await current.reconcile(api)
            except Exception as e:
                logger.warning("Failed to reconcile server for connection %s: %s", api.connection_id, e)
                return OperationResult(success=False, error=str(e))
            return OperationResult(success=True, message=f"Server updated on port {current.port}")

    async def close_all(self) -> None:
        """Stop every server; used at host shutdown."""
        for connection_id in list(self._servers):
            async with self._lock(connection_id):
                await self._servers[connection_id].stop()
        self._servers.clear()

    # --- Status and logs ---

    def status(self, connection_id: str) -> dict:
        server = self._servers.get(connection_id)
        if server is None:
            return {"isRunning": False, "port": None, "endpointCount": 0, "logCount": 0}
        return server.get_status()

    def get_logs(
        self,
        connection_id: str,
        limit: int | None = None,
        level: LogLevel | None = None,
    ) -> list[LogEntry] | None:
        """Log entries of a connection's server, or None when it has none."""
        server = self._servers.get(connection_id)
        if server is None:
            return None
        return server.get_logs(limit=limit, level=level)

    def clear_logs(self, connection_id: str) -> OperationResult:
        server = self._servers.get(connection_id)
        if server is None or not server.is_running:
            return OperationResult(success=False, error="Server is not running")
        server.clear_logs()
        return OperationResult(success=True, message="Logs cleared successfully")

    def get_flow_execution_logs(self, connection_id: str, endpoint_id: str) -> list[FlowExecutionLog]:
        server = self._servers.get(connection_id)
        if server is None:
            return []
        return server.get_flow_execution_logs(endpoint_id)

    def get_flow_execution_log(
        self, connection_id: str, endpoint_id: str, execution_id: str
    ) -> FlowExecutionLog | None:
        server = self._servers.get(connection_id)
        if server is None:
            return None
        return server.get_flow_execution_log(endpoint_id, execution_id)

    def clear_flow_execution_logs(self, connection_id: str, endpoint_id: str | None = None) -> None:
        server = self._servers.get(connection_id)
        if server is not None:
            server.clear_flow_execution_logs(endpoint_id)

    def delete_flow_execution_log(self, connection_id: str, endpoint_id: str, execution_id: str) -> bool:
        server = self._servers.get(connection_id)
        return server is not None and server.delete_flow_execution_log(endpoint_id, execution_id)
