"""Log records kept in memory by a running custom API server."""

from typing import Any, Literal

from pydantic import Field

from flowengine.models.base import CamelModel
from flowengine.models.execution import NodeExecutionStep, StepStatus
from flowengine.utils.identifiers import generate_log_id, utc_timestamp

LogLevel = Literal["debug", "info", "warn", "error"]


class LogEntry(CamelModel):
    """a server log line with optional structured data."""

    id: str = Field(default_factory=generate_log_id)
    timestamp: str = Field(default_factory=utc_timestamp)
    level: LogLevel
    message: str
    data: Any = None


class FlowExecutionLog(CamelModel):
    """record of one endpoint flow execution, kept for the status panel."""

    execution_id: str
    endpoint_id: str
    timestamp: str = Field(default_factory=utc_timestamp)
    status: StepStatus
    status_code: int | None = None
    message: str | None = None
    error: str | None = None
    request_data: dict[str, Any] | None = None
    response_data: Any = None
    steps: list[NodeExecutionStep] = []
