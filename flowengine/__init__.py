"""Endpoint flow execution engine for user-defined custom APIs."""

from flowengine.errors import (
    BindError,
    ConditionError,
    ConfigError,
    DatabaseError,
    FlowError,
    NodeExecutionError,
    ParameterError,
    ServerNotRunningError,
    TemplateError,
)
from flowengine.models import (
    APIDetails,
    APIEndpoint,
    ExecutionContext,
    ExecutionResult,
    FlowGraph,
    NodeExecutionStep,
)
from flowengine.runtime import FlowInterpreter

__all__ = [
    # Errors
    "FlowError",
    "ConfigError",
    "ConditionError",
    "NodeExecutionError",
    "ParameterError",
    "TemplateError",
    "DatabaseError",
    "BindError",
    "ServerNotRunningError",
    # Models
    "APIDetails",
    "APIEndpoint",
    "ExecutionContext",
    "ExecutionResult",
    "FlowGraph",
    "NodeExecutionStep",
    # High-level APIs
    "FlowInterpreter",
]
