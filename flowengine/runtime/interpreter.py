"""Depth-first interpreter for endpoint flow graphs.

A run starts at the endpoint node, processes each node in turn and follows
outgoing edges until a response node yields a result. Every visited node
leaves a NodeExecutionStep in the trace, whatever the outcome.
"""

import asyncio
import time
from typing import Any

from flowengine.errors import (
    ConditionError,
    ConfigError,
    NodeExecutionError,
    ParameterError,
    TemplateError,
)
from flowengine.models.execution import (
    ConditionFailurePolicy,
    ExecutionContext,
    ExecutionResult,
    NodeExecutionStep,
    StepStatus,
)
from flowengine.models.flow_graph import APIParameter, FlowGraph, FlowNode, NodeKind
from flowengine.runtime.condition import evaluate
from flowengine.runtime.database import DatabaseClient, build_select
from flowengine.runtime.graph import children_of, find_entry
from flowengine.runtime.template import INVALID_BODY_MESSAGE, render_strict
from flowengine.utils.logging import get_logger

logger = get_logger(__name__)

FLOW_SUCCESS_MESSAGE = "flow executed successfully"
NODE_ERROR_MESSAGE = "node execution error"
TIMEOUT_MESSAGE = "flow execution timed out"
DEFAULT_RESULT_KEY = "result"


def _coerce(param: APIParameter, value: Any) -> Any:
    """Convert a raw request value to the parameter's declared type."""
    if value is None or isinstance(value, (list, dict)):
        return value
    kind = param.type.lower()
    try:
        if kind == "integer":
            if isinstance(value, bool):
                raise ValueError(value)
            return int(value)
        if kind == "number":
            if isinstance(value, bool):
                raise ValueError(value)
            if isinstance(value, (int, float)):
                return value
            try:
                return int(value)
            except ValueError:
                return float(value)
        if kind == "boolean":
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in ("true", "1", "yes"):
                return True
            if text in ("false", "0", "no"):
                return False
            raise ValueError(value)
    except (TypeError, ValueError):
        raise ParameterError(f"parameter '{param.name}' must be of type {kind}") from None
    return value


class _FlowRun:
    """State of a single execution: the context, the trace, the current path."""

    def __init__(
        self,
        interpreter: "FlowInterpreter",
        graph: FlowGraph,
        context: ExecutionContext,
        entry_id: str,
        endpoint_name: str | None,
        parameters: list[APIParameter],
    ) -> None:
        self.interpreter = interpreter
        self.graph = graph
        self.context = context
        self.entry_id = entry_id
        self.endpoint_name = endpoint_name
        self.parameters = parameters
        self.steps: list[NodeExecutionStep] = []
        self._on_path: set[str] = set()
        self._started: dict[int, float] = {}

    async def start(self) -> ExecutionResult:
        entry = find_entry(self.graph, self.entry_id)
        if entry is None:
            return ExecutionResult(
                status_code=500,
                message="no entry node",
                error="flow execution failed: no entry node",
            )
        result = await self._step(entry)
        if result is None:
            return ExecutionResult(status_code=200, message=FLOW_SUCCESS_MESSAGE)
        return result

    def abort(self, reason: str) -> None:
        """Mark every unfinished step as failed."""
        now = time.perf_counter()
        aborted = False
        for step in self.steps:
            if step.status == StepStatus.executing:
                step.status = StepStatus.error
                step.error = reason
                step.execution_time_ms = (now - self._started.get(id(step), now)) * 1000
                aborted = True
        if not aborted:
            self.steps.append(
                NodeExecutionStep(
                    node_id=self.entry_id,
                    node_kind="flow",
                    node_name=self.endpoint_name or "flow",
                    status=StepStatus.error,
                    error=reason,
                )
            )

    def _node_name(self, node: FlowNode) -> str:
        if node.kind == NodeKind.endpoint and self.endpoint_name:
            return self.endpoint_name
        return node.name

    def _finish(self, step: NodeExecutionStep, error: Exception | None = None) -> None:
        if error is not None:
            step.status = StepStatus.error
            step.error = str(error)
        elif step.status != StepStatus.error:
            step.status = StepStatus.completed
        started = self._started.pop(id(step), time.perf_counter())
        step.execution_time_ms = (time.perf_counter() - started) * 1000

    async def _step(self, node: FlowNode) -> ExecutionResult | None:
        if node.id in self._on_path:
            raise ConfigError(f"cycle detected at node {node.id}")

        step = NodeExecutionStep(
            node_id=node.id,
            node_kind=node.kind.value,
            node_name=self._node_name(node),
            status=StepStatus.executing,
            input=self.context.snapshot(),
        )
        self.steps.append(step)
        self._started[id(step)] = time.perf_counter()
        self._on_path.add(node.id)
        try:
            try:
                result, children = await self._process(node, step)
            except ParameterError as e:
                self._finish(step, e)
                return ExecutionResult(
                    status_code=400,
                    message="invalid request parameters",
                    error=str(e),
                )
            except TemplateError as e:
                logger.warning("Response node %s rendered invalid JSON: %s", node.id, e)
                self._finish(step, e)
                return ExecutionResult(
                    status_code=500,
                    data={"error": INVALID_BODY_MESSAGE},
                    message=NODE_ERROR_MESSAGE,
                    error=str(e),
                )
            except Exception as e:
                logger.warning("Node %s (%s) failed: %s", node.id, node.kind.value, e)
                self._finish(step, e)
                return ExecutionResult(
                    status_code=500,
                    message=NODE_ERROR_MESSAGE,
                    error=str(e),
                )
            self._finish(step)

            if result is not None:
                return result
            if not children:
                return ExecutionResult(status_code=200, message=FLOW_SUCCESS_MESSAGE)
            for child in children:
                child_result = await self._step(child)
                if child_result is not None:
                    return child_result
            return None
        finally:
            self._on_path.discard(node.id)

    async def _process(
        self, node: FlowNode, step: NodeExecutionStep
    ) -> tuple[ExecutionResult | None, list[FlowNode]]:
        if node.kind == NodeKind.endpoint:
            return self._process_endpoint(node, step)
        if node.kind == NodeKind.conditional:
            return self._process_conditional(node, step)
        if node.kind == NodeKind.database_select:
            return await self._process_database_select(node, step)
        if node.kind == NodeKind.response:
            return self._process_response(node, step)
        raise NodeExecutionError(node.id, f"unsupported node kind: {node.kind}")

    def _process_endpoint(self, node: FlowNode, step: NodeExecutionStep):
        declared = list(node.data.parameters)
        names = {(param.location, param.name) for param in declared}
        declared += [p for p in self.parameters if (p.location, p.name) not in names]

        missing = []
        for param in declared:
            target = self.context.params if param.location == "path" else self.context.query
            if target.get(param.name) is not None:
                target[param.name] = _coerce(param, target[param.name])
            elif param.default_value is not None:
                target[param.name] = _coerce(param, param.default_value)
            elif param.required:
                missing.append(param.name)
        if missing:
            raise ParameterError(f"missing required parameter(s): {', '.join(missing)}")

        step.output = {
            "message": "endpoint processed",
            "params": dict(self.context.params),
            "query": dict(self.context.query),
        }
        return None, children_of(node.id, self.graph)

    def _process_conditional(self, node: FlowNode, step: NodeExecutionStep):
        condition = node.data.condition
        try:
            outcome = evaluate(condition, self.context)
        except ConditionError as e:
            logger.warning("Condition of node %s failed: %s", node.id, e)
            step.status = StepStatus.error
            step.error = str(e)
            step.output = {"condition": condition, "error": e.reason, "path": "error"}
            if self.interpreter.condition_failure_policy == ConditionFailurePolicy.fail:
                return (
                    ExecutionResult(
                        status_code=500,
                        message="condition evaluation failed",
                        error=str(e),
                    ),
                    [],
                )
            return None, children_of(node.id, self.graph)

        path = "true" if outcome else "false"
        step.output = {"condition": condition, "result": outcome, "path": path}
        return None, children_of(node.id, self.graph, branch=path)

    async def _process_database_select(self, node: FlowNode, step: NodeExecutionStep):
        database = self.interpreter.database
        if database is None:
            raise NodeExecutionError(node.id, "no database client configured for this API")
        sql, params = build_select(node.data, self.context, database.paramstyle)
        rows = await database.fetch_all(sql, params)
        key = node.data.query_name or DEFAULT_RESULT_KEY
        self.context.bind(key, rows)
        step.output = {"query": sql, "params": params, "queryName": key, "rowCount": len(rows)}
        return None, children_of(node.id, self.graph)

    def _process_response(self, node: FlowNode, step: NodeExecutionStep):
        data = render_strict(node.data.response_body, self.context)
        step.output = {"statusCode": node.data.status_code, "responseBody": data}
        return ExecutionResult(status_code=node.data.status_code, data=data), []


class FlowInterpreter:
    """Executes flow graphs; holds no per-request state.

    Usage:
        interpreter = FlowInterpreter(database=client)
        result = await interpreter.execute(graph, context, entry_id=endpoint.id)
    """

    def __init__(
        self,
        database: DatabaseClient | None = None,
        condition_failure_policy: ConditionFailurePolicy = ConditionFailurePolicy.visit_all,
    ) -> None:
        self.database = database
        self.condition_failure_policy = ConditionFailurePolicy(condition_failure_policy)

    async def execute(
        self,
        graph: FlowGraph,
        context: ExecutionContext,
        entry_id: str,
        endpoint_name: str | None = None,
        parameters: list[APIParameter] | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult:
        """Run the graph for one request.

        Args:
            graph: the endpoint's flow graph, read only.
            context: request context; nodes may extend it.
            entry_id: id of the owning endpoint, which is also the entry node id.
            endpoint_name: display name for the entry node's trace step.
            parameters: parameters declared on the endpoint definition, merged
                after those declared on the entry node.
            timeout: seconds before the run is cancelled with a 504.

        Returns:
            the result with the full step trace; never raises for flow failures.
        """
        run = _FlowRun(self, graph, context, entry_id, endpoint_name, parameters or [])
        try:
            if timeout is None:
                result = await run.start()
            else:
                result = await asyncio.wait_for(run.start(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Flow for endpoint %s timed out after %ss", entry_id, timeout)
            run.abort(f"{TIMEOUT_MESSAGE} after {timeout}s")
            result = ExecutionResult(
                status_code=504,
                message=TIMEOUT_MESSAGE,
                error=f"{TIMEOUT_MESSAGE} after {timeout}s",
            )
        except Exception as e:
            logger.error("Flow execution error for endpoint %s: %s", entry_id, e)
            result = ExecutionResult(
                status_code=500,
                message=NODE_ERROR_MESSAGE,
                error=str(e),
            )
        result.steps = run.steps
        return result
