"""Core data models for the flow engine."""

from flowengine.models.api_config import APIDetails, APIEndpoint
from flowengine.models.execution import (
    ConditionFailurePolicy,
    ExecutionContext,
    ExecutionResult,
    NodeExecutionStep,
    StepStatus,
)
from flowengine.models.flow_graph import (
    APIParameter,
    ConditionalNodeData,
    DatabaseSelectNodeData,
    EndpointNodeData,
    FlowEdge,
    FlowGraph,
    FlowNode,
    NodeKind,
    ResponseNodeData,
    SelectCondition,
)
from flowengine.models.server_log import FlowExecutionLog, LogEntry

__all__ = [
    # Configuration
    "APIDetails",
    "APIEndpoint",
    "APIParameter",
    # Flow graph
    "FlowGraph",
    "FlowNode",
    "FlowEdge",
    "NodeKind",
    "EndpointNodeData",
    "ConditionalNodeData",
    "DatabaseSelectNodeData",
    "ResponseNodeData",
    "SelectCondition",
    # Execution
    "ConditionFailurePolicy",
    "ExecutionContext",
    "ExecutionResult",
    "NodeExecutionStep",
    "StepStatus",
    # Server logs
    "FlowExecutionLog",
    "LogEntry",
]
