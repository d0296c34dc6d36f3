"""Request-scoped execution state and the trace produced by a flow run."""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import Field

from flowengine.models.base import CamelModel
from flowengine.utils.identifiers import utc_timestamp

# context keys filled from the inbound request
REQUEST_NAMESPACES = ("params", "query", "body", "headers")


class StepStatus(str, Enum):
    """Lifecycle of a node within one execution."""

    pending = "pending"
    executing = "executing"
    completed = "completed"
    error = "error"


class ConditionFailurePolicy(str, Enum):
    """What to do when a conditional node's expression cannot be evaluated."""

    visit_all = "visit_all"  # follow every outgoing edge, first result wins
    fail = "fail"  # answer 500


@dataclass
class ExecutionContext:
    """Mutable bag of request facets threaded through node processing.

    Nodes may add named values (e.g. a result set) via ``bind``; those live
    in ``derived`` and are visible to templates and conditions next to the
    request namespaces.
    """

    params: dict[str, Any] = field(default_factory=dict)
    query: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    derived: dict[str, Any] = field(default_factory=dict)

    def scope(self) -> dict[str, Any]:
        """flat mapping of every name visible to expressions."""
        return {
            **self.derived,
            "params": self.params,
            "query": self.query,
            "body": self.body,
            "headers": self.headers,
        }

    def lookup(self, namespace: str) -> tuple[bool, Any]:
        """Return (found, value) for a top-level context name."""
        if namespace in REQUEST_NAMESPACES:
            return True, getattr(self, namespace)
        if namespace in self.derived:
            return True, self.derived[namespace]
        return False, None

    def bind(self, name: str, value: Any) -> None:
        """Add a derived value; request namespaces cannot be shadowed."""
        if name in REQUEST_NAMESPACES:
            raise ValueError(f"cannot bind reserved context name: {name}")
        self.derived[name] = value

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of the scope, safe to store in a trace."""
        return copy.deepcopy(self.scope())


class NodeExecutionStep(CamelModel):
    """Trace entry describing one visited node."""

    node_id: str
    node_kind: str
    node_name: str
    status: StepStatus = StepStatus.pending
    input: Any = None
    output: Any = None
    error: str | None = None
    execution_time_ms: float = 0.0
    timestamp: str = Field(default_factory=utc_timestamp)


class ExecutionResult(CamelModel):
    """Outcome of one flow run plus its step trace."""

    status_code: int
    data: Any = None
    message: str | None = None
    error: str | None = None
    steps: list[NodeExecutionStep] = []

    def response_payload(self) -> Any:
        """JSON body sent to the HTTP client."""
        if self.data is not None:
            return self.data
        return {"message": self.message, "error": self.error}
