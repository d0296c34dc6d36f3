"""API routes for starting, stopping and inspecting custom API servers."""

from fastapi import APIRouter, Depends, HTTPException, Request

from flowengine.models.api_config import APIDetails
from flowengine.models.server_log import FlowExecutionLog, LogEntry, LogLevel
from server.registry import OperationResult, ServerRegistry

router = APIRouter()


def get_registry(request: Request) -> ServerRegistry:
    """the registry owned by the admin app."""
    return request.app.state.registry


@router.post("/servers/start")
async def start_server(api: APIDetails, registry: ServerRegistry = Depends(get_registry)) -> OperationResult:
    """start the server of an API (stops it when the API is disabled)."""
    return await registry.start(api)


@router.post("/servers/restart")
async def restart_server(api: APIDetails, registry: ServerRegistry = Depends(get_registry)) -> OperationResult:
    """stop then start a server with a possibly updated configuration."""
    return await registry.restart(api)


@router.post("/servers/reconcile")
async def reconcile_server(api: APIDetails, registry: ServerRegistry = Depends(get_registry)) -> OperationResult:
    """apply changed endpoint definitions to a server."""
    return await registry.reconcile(api)


@router.post("/servers/{connection_id}/stop")
async def stop_server(connection_id: str, registry: ServerRegistry = Depends(get_registry)) -> OperationResult:
    return await registry.stop(connection_id)


@router.get("/servers/{connection_id}/status")
def server_status(connection_id: str, registry: ServerRegistry = Depends(get_registry)) -> dict:
    return registry.status(connection_id)


@router.get("/servers/{connection_id}/logs")
def server_logs(
    connection_id: str,
    limit: int | None = None,
    level: LogLevel | None = None,
    registry: ServerRegistry = Depends(get_registry),
) -> list[LogEntry]:
    """get log entries of a server, oldest first."""
    logs = registry.get_logs(connection_id, limit=limit, level=level)
    if logs is None:
        raise HTTPException(status_code=404, detail=f"Server not found: {connection_id}")
    return logs


@router.delete("/servers/{connection_id}/logs")
def clear_server_logs(connection_id: str, registry: ServerRegistry = Depends(get_registry)) -> OperationResult:
    return registry.clear_logs(connection_id)


@router.get("/servers/{connection_id}/endpoints/{endpoint_id}/executions")
def list_executions(
    connection_id: str,
    endpoint_id: str,
    registry: ServerRegistry = Depends(get_registry),
) -> list[FlowExecutionLog]:
    """flow execution records of an endpoint, newest first."""
    return registry.get_flow_execution_logs(connection_id, endpoint_id)


@router.get("/servers/{connection_id}/endpoints/{endpoint_id}/executions/{execution_id}")
def get_execution(
    connection_id: str,
    endpoint_id: str,
    execution_id: str,
    registry: ServerRegistry = Depends(get_registry),
) -> FlowExecutionLog:
    execution_log = registry.get_flow_execution_log(connection_id, endpoint_id, execution_id)
    if execution_log is None:
        raise HTTPException(status_code=404, detail=f"Execution not found: {execution_id}")
    return execution_log


@router.delete("/servers/{connection_id}/endpoints/{endpoint_id}/executions")
def clear_executions(
    connection_id: str,
    endpoint_id: str,
    registry: ServerRegistry = Depends(get_registry),
) -> dict:
    registry.clear_flow_execution_logs(connection_id, endpoint_id)
    return {"cleared": endpoint_id}


@router.delete("/servers/{connection_id}/endpoints/{endpoint_id}/executions/{execution_id}")
def delete_execution(
    connection_id: str,
    endpoint_id: str,
    execution_id: str,
    registry: ServerRegistry = Depends(get_registry),
) -> dict:
    if not registry.delete_flow_execution_log(connection_id, endpoint_id, execution_id):
        raise HTTPException(status_code=404, detail=f"Execution not found: {execution_id}")
    return {"deleted": execution_id}
