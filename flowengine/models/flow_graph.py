"""Data model for persisted endpoint flow graphs.

A flow graph is authored in the visual workbench and stored with its
endpoint. The engine only reads it: nodes carry typed per-kind
configuration, edges carry an optional branch selector.
"""

import json
from enum import Enum
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator

from flowengine.models.base import CamelModel


class NodeKind(str, Enum):
    """Kinds of nodes a flow graph may contain."""

    endpoint = "endpoint"
    conditional = "conditional"
    database_select = "database_select"
    response = "response"


# node type names used by the workbench editor
AUTHORING_KINDS = {
    "endpointNode": NodeKind.endpoint,
    "conditionalNode": NodeKind.conditional,
    "databaseSelectNode": NodeKind.database_select,
    "responseNode": NodeKind.response,
}

BRANCHES = ("true", "false")


def normalize_kind(raw: Any) -> Any:
    """Map a workbench node type name onto a NodeKind value."""
    if isinstance(raw, NodeKind):
        return raw
    if raw in AUTHORING_KINDS:
        return AUTHORING_KINDS[raw]
    return raw


class APIParameter(CamelModel):
    """a declared path or query parameter of an endpoint."""

    name: str
    location: Literal["path", "query"] = Field("query", alias="in")
    type: str = "string"  # "string", "integer", "number", "boolean"
    required: bool = False
    default_value: Any = None
    description: str | None = None


class EndpointNodeData(CamelModel):
    """configuration of the entry node."""

    method: str = "GET"
    path: str = "/"
    parameters: list[APIParameter] = []


class ConditionalNodeData(CamelModel):
    """configuration of a true/false branch node."""

    name: str = "Conditional"
    condition: str = ""


class SelectCondition(CamelModel):
    """a single filter predicate of a database select node."""

    column: str
    operator: str = "equals"
    value: Any = None  # may contain template tokens
    logical_operator: Literal["WHERE", "AND", "OR"] = "AND"


class DatabaseSelectNodeData(CamelModel):
    """configuration of a read against the connected database."""

    name: str = "Database Select"
    table_name: str = ""
    query_name: str | None = None
    columns: list[str] | None = None
    conditions: list[SelectCondition] = []
    limit: int | None = Field(None, ge=1)
    order_by: str | None = None
    order_direction: Literal["ASC", "DESC"] = "ASC"
    is_custom_query: bool = False
    custom_query: str | None = None

    @field_validator("columns", mode="before")
    @classmethod
    def split_columns(cls, value: Any) -> Any:
        """accept the editor's comma separated column string."""
        if isinstance(value, str):
            columns = [col.strip() for col in value.split(",")]
            return [col for col in columns if col] or None
        return value

    @field_validator("order_direction", mode="before")
    @classmethod
    def upper_direction(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class ResponseNodeData(CamelModel):
    """configuration of a terminal response node."""

    status_code: int = 200
    response_body: str = "{}"  # JSON template
    description: str | None = None

    @field_validator("response_body", mode="before")
    @classmethod
    def encode_structured_body(cls, value: Any) -> Any:
        if value is None:
            return "{}"
        if not isinstance(value, str):
            return json.dumps(value)
        return value


NODE_DATA_MODELS = {
    NodeKind.endpoint: EndpointNodeData,
    NodeKind.conditional: ConditionalNodeData,
    NodeKind.database_select: DatabaseSelectNodeData,
    NodeKind.response: ResponseNodeData,
}

NodeData = EndpointNodeData | ConditionalNodeData | DatabaseSelectNodeData | ResponseNodeData


class FlowNode(CamelModel):
    """a typed node of a flow graph."""

    id: str
    kind: NodeKind
    data: NodeData

    @model_validator(mode="before")
    @classmethod
    def normalize_authoring_format(cls, values: Any) -> Any:
        """Resolve the node kind and parse data with the matching model.

        The workbench stores the kind as the node's ``type`` and again as
        ``data.type``; an explicit ``kind`` wins over both.
        """
        if not isinstance(values, dict):
            return values
        values = dict(values)
        data = values.get("data")
        if data is None:
            data = {}
        raw_kind = values.get("kind") or values.get("type")
        if raw_kind is None and isinstance(data, dict):
            raw_kind = data.get("type")
        kind = normalize_kind(raw_kind)
        values["kind"] = kind
        model = NODE_DATA_MODELS.get(kind) if isinstance(kind, str) else None
        if model is not None and isinstance(data, dict):
            values["data"] = model.model_validate(data)
        return values

    @property
    def name(self) -> str:
        """display name used in execution traces."""
        if self.kind == NodeKind.response:
            return "Response Node"
        if self.kind == NodeKind.endpoint:
            return f"{self.data.method} {self.data.path}"
        return self.data.name


class FlowEdge(CamelModel):
    """a directed edge; ``branch`` is set only on edges leaving a conditional node."""

    id: str
    source: str
    target: str
    branch: str | None = None

    @model_validator(mode="before")
    @classmethod
    def read_source_handle(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        values = dict(values)
        if values.get("branch") is None:
            handle = values.get("sourceHandle", values.get("source_handle"))
            if handle in BRANCHES:
                values["branch"] = handle
        if isinstance(values.get("branch"), bool):
            values["branch"] = "true" if values["branch"] else "false"
        if not values.get("id"):
            values["id"] = f"{values.get('source')}->{values.get('target')}"
        return values


class FlowGraph(CamelModel):
    """nodes plus edges, as persisted in an endpoint definition."""

    nodes: list[FlowNode] = []
    edges: list[FlowEdge] = []

    @model_validator(mode="before")
    @classmethod
    def accept_connections(cls, values: Any) -> Any:
        """older definitions store edges under ``connections``."""
        if isinstance(values, dict) and "edges" not in values and "connections" in values:
            values = dict(values)
            values["edges"] = values.pop("connections")
        return values

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def get_node(self, node_id: str) -> FlowNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None
