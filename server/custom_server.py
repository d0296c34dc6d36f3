"""Dynamic HTTP server serving the endpoints of one custom API.

Each enabled endpoint becomes a route on a FastAPI app; requests are
turned into an execution context and run through the endpoint's flow
graph. The app is served by uvicorn on the host's event loop, behind a
switch so routes can be rebuilt without closing the listener.
"""

import asyncio
import contextlib
import errno
import json
import re
import socket
from typing import Any

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from flowengine.errors import BindError, ConfigError, ServerNotRunningError
from flowengine.models.api_config import APIDetails, APIEndpoint
from flowengine.models.execution import ExecutionContext, StepStatus
from flowengine.models.server_log import FlowExecutionLog, LogEntry, LogLevel
from flowengine.runtime.database import DatabaseClient
from flowengine.runtime.graph import validate
from flowengine.runtime.interpreter import FlowInterpreter
from flowengine.utils.identifiers import (
    generate_execution_id,
    generate_instance_id,
    utc_timestamp,
)
from server.config import Settings, get_settings
from server.log_buffer import FlowExecutionLogStore, LogBuffer

_EXPRESS_PARAM_RE = re.compile(r":([A-Za-z_][A-Za-z0-9_]*)")


def to_route_path(path: str) -> str:
    """Convert an Express-style path (``/users/:id``) to a FastAPI route path."""
    route = _EXPRESS_PARAM_RE.sub(r"{\1}", path.strip())
    if not route.startswith("/"):
        route = "/" + route
    return route


def is_port_in_use(host: str, port: int) -> bool:
    """Check a port with a throwaway bind that is released immediately."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    with socket.socket(family, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                return True
            raise
    return False


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind the listening socket handed to uvicorn."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        if e.errno == errno.EADDRINUSE:
            raise BindError(port) from e
        raise
    sock.set_inheritable(True)
    return sock


class AppSwitch:
    """ASGI app forwarding every request to a replaceable app."""

    def __init__(self, app: FastAPI) -> None:
        self.app = app

    async def __call__(self, scope, receive, send) -> None:
        await self.app(scope, receive, send)


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the host process."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


async def _read_body(request: Request) -> Any:
    """Parse a JSON body; other content is passed through as text.

    Raises:
        ValueError: if a JSON content type carries malformed JSON.
    """
    raw = await request.body()
    if not raw:
        return None
    content_type = request.headers.get("content-type", "")
    if "json" in content_type:
        return json.loads(raw)
    return raw.decode("utf-8", errors="replace")


def _query_dict(request: Request) -> dict[str, Any]:
    """Query parameters; repeated keys become lists."""
    query: dict[str, Any] = {}
    for key in dict.fromkeys(request.query_params.keys()):
        values = request.query_params.getlist(key)
        query[key] = values[0] if len(values) == 1 else values
    return query


class CustomServer:
    """One listener serving the enabled endpoints of a custom API.

    Usage:
        server = CustomServer(api, settings, database=client)
        await server.start()
        ...
        await server.stop()
    """

    def __init__(
        self,
        api: APIDetails,
        settings: Settings | None = None,
        database: DatabaseClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.api = api
        self.database = database
        self.instance_id = generate_instance_id()
        self.logs = LogBuffer(
            capacity=self.settings.log_buffer_size,
            logger_name=f"server.{api.connection_id}",
        )
        self.flow_logs = FlowExecutionLogStore(self.settings.flow_log_limit)
        self.rejected_endpoints: dict[str, list[str]] = {}

        self._server: _EmbeddedServer | None = None
        self._serve_task: asyncio.Task | None = None
        self._socket: socket.socket | None = None
        self._bound_port: int | None = None

        self._switch = AppSwitch(self.build_app())
        self.log("info", f"Created CustomServer instance {self.instance_id} for port {api.port}")

    # --- Properties ---

    @property
    def app(self) -> FastAPI:
        """the app currently answering requests."""
        return self._switch.app

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def port(self) -> int:
        """bound port while running, configured port otherwise."""
        return self._bound_port if self._bound_port is not None else self.api.port

    @property
    def request_timeout(self) -> float:
        return self.api.timeout or self.settings.default_request_timeout

    # --- App construction ---

    def build_app(self) -> FastAPI:
        """Create a FastAPI app with middleware and one route per servable endpoint."""
        app = FastAPI(
            title=self.api.name,
            version=self.api.version,
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )
        self._setup_cors(app)
        # registered after CORS so it runs first and sees preflight requests
        self._setup_request_logging(app)
        self._setup_routes(app)
        return app

    def _setup_cors(self, app: FastAPI) -> None:
        if not self.api.cors_enabled:
            self.log("info", "CORS is disabled")
            return
        cors = self.api.cors_status()
        app.add_middleware(
            CORSMiddleware,
            # no explicit origin list means allow all
            allow_origins=cors["origins"] or ["*"],
            allow_credentials=True,
            allow_methods=cors["methods"],
            allow_headers=cors["headers"],
        )
        self.log("info", "CORS middleware configured", cors)

    def _origin_allowed(self, origin: str) -> bool:
        origins = self.api.cors_origins
        return not origins or "*" in origins or origin in origins

    def _setup_request_logging(self, app: FastAPI) -> None:
        @app.middleware("http")
        async def log_requests(request: Request, call_next):
            origin = request.headers.get("origin")
            if request.method == "OPTIONS" and "access-control-request-method" in request.headers:
                self.log(
                    "info",
                    f"Preflight request: {request.method} {request.url.path}",
                    {
                        "origin": origin,
                        "method": request.headers.get("access-control-request-method"),
                        "headers": request.headers.get("access-control-request-headers"),
                    },
                )
            else:
                self.log(
                    "info",
                    f"{request.method} {request.url.path}",
                    {
                        "method": request.method,
                        "path": request.url.path,
                        "query": dict(request.query_params),
                        "headers": dict(request.headers),
                        "ip": request.client.host if request.client else None,
                    },
                )
            if origin and self.api.cors_enabled and not self._origin_allowed(origin):
                self.log(
                    "warn",
                    f"CORS blocked request from origin: {origin}",
                    {"allowedOrigins": self.api.cors_origins, "requestedOrigin": origin},
                )
            return await call_next(request)

    def _setup_routes(self, app: FastAPI) -> None:
        self.rejected_endpoints = {}
        for endpoint in self.api.enabled_endpoints:
            if endpoint.has_flow:
                try:
                    validate(endpoint.flow, endpoint.id)
                except ConfigError as e:
                    self.rejected_endpoints[endpoint.id] = e.problems
                    self.log(
                        "error",
                        f"Endpoint {endpoint.name} ({endpoint.method} {endpoint.path}) not registered: {e}",
                        {"endpointId": endpoint.id, "problems": e.problems},
                    )
                    continue
            app.add_api_route(
                to_route_path(endpoint.path),
                self._make_handler(endpoint),
                methods=[endpoint.method],
                include_in_schema=False,
            )

        async def root() -> PlainTextResponse:
            return PlainTextResponse("Hello World")

        app.add_api_route("/", root, methods=["GET"], include_in_schema=False)

    def _make_handler(self, endpoint: APIEndpoint):
        async def handle(request: Request) -> Response:
            return await self.execute_endpoint(endpoint, request)

        return handle

    # --- Request handling ---

    async def execute_endpoint(self, endpoint: APIEndpoint, request: Request) -> Response:
        """Run an endpoint's flow for one request and build the HTTP response."""
        execution_id = generate_execution_id()
        self.log(
            "info",
            f"Executing endpoint: {endpoint.name} ({endpoint.method} {endpoint.path})",
        )

        try:
            body = await _read_body(request)
        except ValueError as e:
            self.log("warn", f"Invalid JSON body for endpoint: {endpoint.name}", {"error": str(e)})
            return JSONResponse(
                status_code=400,
                content={"message": "invalid JSON body", "error": str(e)},
            )

        params = dict(request.path_params)
        query = _query_dict(request)
        headers = dict(request.headers)
        request_data = {
            "method": request.method,
            "path": request.url.path,
            "params": params,
            "query": query,
            "body": body,
            "headers": headers,
        }

        if not endpoint.has_flow:
            return JSONResponse(
                status_code=200,
                content=jsonable_encoder(
                    {
                        "message": f"Endpoint {endpoint.name} executed (no flow defined)",
                        "method": endpoint.method,
                        "path": endpoint.path,
                        "timestamp": utc_timestamp(),
                        "params": params,
                        "queryParams": query,
                        "body": body,
                        "headers": headers,
                    }
                ),
            )

        self.flow_logs.store(
            FlowExecutionLog(
                execution_id=execution_id,
                endpoint_id=endpoint.id,
                status=StepStatus.executing,
                request_data=request_data,
            )
        )

        try:
            interpreter = FlowInterpreter(
                database=self.database,
                condition_failure_policy=self.api.condition_failure_policy,
            )
            context = ExecutionContext(params=params, query=query, body=body, headers=headers)
            result = await interpreter.execute(
                endpoint.flow,
                context,
                entry_id=endpoint.id,
                endpoint_name=endpoint.name,
                parameters=endpoint.parameters,
                timeout=self.request_timeout,
            )
            payload = jsonable_encoder(result.response_payload())
        except Exception as e:
            self.flow_logs.store(
                FlowExecutionLog(
                    execution_id=execution_id,
                    endpoint_id=endpoint.id,
                    status=StepStatus.error,
                    status_code=500,
                    message="Internal server error",
                    error=str(e),
                    request_data=request_data,
                )
            )
            self.log(
                "error",
                f"Error executing endpoint: {endpoint.name}",
                {"error": str(e), "executionId": execution_id},
            )
            return JSONResponse(
                status_code=500,
                content={"message": "Internal server error", "error": str(e)},
            )

        self.flow_logs.store(
            FlowExecutionLog(
                execution_id=execution_id,
                endpoint_id=endpoint.id,
                status=StepStatus.error if result.status_code >= 400 else StepStatus.completed,
                status_code=result.status_code,
                message=result.message,
                error=result.error,
                request_data=request_data,
                response_data=payload,
                steps=result.steps,
            )
        )
        self.log(
            "error" if result.status_code >= 500 else "info",
            f"Flow execution completed for endpoint: {endpoint.name}",
            {
                "statusCode": result.status_code,
                "hasData": result.data is not None,
                "message": result.message,
                "executionId": execution_id,
            },
        )
        return JSONResponse(status_code=result.status_code, content=payload)

    # --- Lifecycle ---

    async def start(self) -> None:
        """Bind the configured port and start serving.

        Raises:
            BindError: if the port is still in use after the grace delay.
            RuntimeError: if the server is already running.
        """
        if self.is_running:
            raise RuntimeError(f"server instance {self.instance_id} is already running")

        host, port = self.settings.custom_api_host, self.api.port
        await asyncio.sleep(self.settings.port_grace_delay)
        if port and is_port_in_use(host, port):
            self.log("warn", f"Port {port} is in use, retrying")
            await asyncio.sleep(self.settings.port_grace_delay)
            if is_port_in_use(host, port):
                self.log("error", f"Port {port} is in use")
                raise BindError(port)

        await self._serve(bind_socket(host, port))

    async def _serve(self, sock: socket.socket) -> None:
        """Run uvicorn on an already bound socket; the socket is closed on failure."""
        config = uvicorn.Config(
            self._switch,
            lifespan="off",
            log_level="warning",
            access_log=False,
        )
        server = _EmbeddedServer(config)
        task = asyncio.create_task(server.serve(sockets=[sock]))
        while not server.started:
            if task.done():
                sock.close()
                error = task.exception()
                raise RuntimeError(f"server failed to start: {error}")
            await asyncio.sleep(0.01)

        self._server = server
        self._serve_task = task
        self._socket = sock
        self._bound_port = sock.getsockname()[1]
        self.log("info", f"Custom server instance {self.instance_id} is running on port {self._bound_port}")
        self.log("info", f"Server has {len(self.api.endpoints)} endpoints configured")

    async def stop(self) -> None:
        """Close the listener; calling it on a stopped server does nothing."""
        if self._server is None:
            return
        self.log("info", f"Stopping custom server instance {self.instance_id}...")
        self._server.should_exit = True
        try:
            await self._serve_task
        finally:
            if self._socket is not None:
                self._socket.close()
            self._server = None
            self._serve_task = None
            self._socket = None
            self._bound_port = None
        self.log("info", f"Custom server instance {self.instance_id} stopped")

    async def reconcile(self, api: APIDetails) -> None:
        """Apply a new configuration to a running server.

        Routes are always rebuilt. The listener is kept when the port is
        unchanged. Otherwise the new port is bound before the old listener
        closes; if serving on it fails, the previous configuration is
        restored on its old port.

        Raises:
            ServerNotRunningError: if the server was never started.
            BindError: if the new port is in use; the server keeps running.
        """
        if not self.is_running:
            raise ServerNotRunningError(f"server instance {self.instance_id} is not running")

        if api.port != self.api.port:
            host = self.settings.custom_api_host
            try:
                if api.port and is_port_in_use(host, api.port):
                    raise BindError(api.port)
                sock = bind_socket(host, api.port)
            except BindError:
                self.log("error", f"Port {api.port} is in use")
                raise

            previous = self.api
            await self.stop()
            self.api = api
            self._switch.app = self.build_app()
            try:
                await self._serve(sock)
            except Exception as e:
                self.log("error", f"Failed to move to port {api.port}, restoring port {previous.port}", {"error": str(e)})
                self.api = previous
                self._switch.app = self.build_app()
                await self.start()
                raise
        else:
            self.api = api
            self._switch.app = self.build_app()

        self.log(
            "info",
            "API details updated",
            {
                "port": self.port,
                "endpointCount": len(self.api.endpoints),
                "corsEnabled": self.api.cors_enabled,
            },
        )

    # --- Logs and status ---

    def log(self, level: LogLevel, message: str, data: Any = None) -> None:
        self.logs.append(level, message, data)

    def get_logs(self, limit: int | None = None, level: LogLevel | None = None) -> list[LogEntry]:
        return self.logs.entries(limit=limit, level=level)

    def clear_logs(self) -> None:
        self.logs.clear()

    def get_flow_execution_logs(self, endpoint_id: str) -> list[FlowExecutionLog]:
        """Execution records for an endpoint, newest first."""
        return self.flow_logs.list_logs(endpoint_id)

    def get_flow_execution_log(self, endpoint_id: str, execution_id: str) -> FlowExecutionLog | None:
        return self.flow_logs.get(endpoint_id, execution_id)

    def get_latest_flow_execution_log(self, endpoint_id: str) -> FlowExecutionLog | None:
        return self.flow_logs.latest(endpoint_id)

    def delete_flow_execution_log(self, endpoint_id: str, execution_id: str) -> bool:
        return self.flow_logs.delete(endpoint_id, execution_id)

    def clear_flow_execution_logs(self, endpoint_id: str | None = None) -> None:
        self.flow_logs.clear(endpoint_id)

    def get_status(self) -> dict:
        return {
            "isRunning": self.is_running,
            "port": self.port,
            "endpointCount": len(self.api.endpoints),
            "logCount": len(self.logs),
            "instanceId": self.instance_id,
            "rejectedEndpoints": self.rejected_endpoints,
        }

    def __repr__(self) -> str:
        state = "running" if self.is_running else "stopped"
        return f"CustomServer(connection_id={self.api.connection_id!r}, port={self.port}, {state})"
