"""API routes for checking and test-running endpoint flows.

The workbench's flow tester runs a graph against hand-written request
data and shows the resulting step trace.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from flowengine.errors import ConfigError
from flowengine.models.api_config import APIEndpoint
from flowengine.models.base import CamelModel
from flowengine.models.execution import ConditionFailurePolicy, ExecutionContext, ExecutionResult
from flowengine.models.flow_graph import FlowGraph
from flowengine.runtime.graph import validate
from flowengine.runtime.interpreter import FlowInterpreter
from server.registry import ServerRegistry
from server.server_routes import get_registry

router = APIRouter()


class ValidateFlowRequest(CamelModel):
    """request body for validating a flow graph."""

    endpoint_id: str
    flow: FlowGraph


class ValidateFlowResponse(CamelModel):
    valid: bool
    problems: list[str] = []


class FlowTestRequest(CamelModel):
    """request body for a test run of an endpoint's flow."""

    endpoint: APIEndpoint
    connection_id: str | None = None
    params: dict[str, Any] = {}
    query: dict[str, Any] = {}
    body: Any = None
    headers: dict[str, str] = {}
    condition_failure_policy: ConditionFailurePolicy = ConditionFailurePolicy.visit_all
    timeout: float | None = None


@router.post("/flows/validate")
def validate_flow(request: ValidateFlowRequest) -> ValidateFlowResponse:
    """check a flow graph's structure without running it."""
    try:
        validate(request.flow, request.endpoint_id)
    except ConfigError as e:
        return ValidateFlowResponse(valid=False, problems=e.problems)
    return ValidateFlowResponse(valid=True)


@router.post("/flows/execute")
async def execute_flow(
    request: FlowTestRequest,
    registry: ServerRegistry = Depends(get_registry),
) -> ExecutionResult:
    """run an endpoint's flow against the supplied request data."""
    endpoint = request.endpoint
    if not endpoint.has_flow:
        raise HTTPException(status_code=400, detail=f"Endpoint has no flow: {endpoint.id}")

    database = None
    if request.connection_id and registry.database_resolver is not None:
        database = registry.database_resolver(request.connection_id)

    interpreter = FlowInterpreter(
        database=database,
        condition_failure_policy=request.condition_failure_policy,
    )
    context = ExecutionContext(
        params=dict(request.params),
        query=dict(request.query),
        body=request.body,
        headers={key.lower(): value for key, value in request.headers.items()},
    )
    return await interpreter.execute(
        endpoint.flow,
        context,
        entry_id=endpoint.id,
        endpoint_name=endpoint.name,
        parameters=endpoint.parameters,
        timeout=request.timeout or registry.settings.default_request_timeout,
    )
