"""Configuration of a custom API and its endpoints."""

from typing import Any, Literal

from pydantic import Field, field_validator

from flowengine.models.base import CamelModel
from flowengine.models.execution import ConditionFailurePolicy
from flowengine.models.flow_graph import APIParameter, FlowGraph

HttpMethod = Literal["GET", "POST", "PUT", "DELETE", "PATCH"]

DEFAULT_CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]
DEFAULT_CORS_HEADERS = ["Content-Type", "Authorization", "X-Requested-With"]


class APIEndpoint(CamelModel):
    """an HTTP endpoint whose behavior is described by a flow graph."""

    id: str
    name: str = ""
    path: str
    full_path: str | None = None
    method: HttpMethod = "GET"
    description: str | None = None
    parameters: list[APIParameter] = []
    flow: FlowGraph | None = None
    enabled: bool = False

    @field_validator("method", mode="before")
    @classmethod
    def upper_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @property
    def has_flow(self) -> bool:
        return self.flow is not None and not self.flow.is_empty


class APIDetails(CamelModel):
    """a custom API served by one server instance per database connection."""

    id: str
    name: str = "untitled"
    description: str | None = None
    connection_id: str
    version: str = "1.0.0"
    port: int = Field(3000, ge=0, le=65535)  # 0 binds an ephemeral port
    enabled: bool = False
    endpoints: list[APIEndpoint] = []

    # seconds; the server default applies when unset
    timeout: float | None = Field(None, gt=0)

    cors_enabled: bool = True
    cors_origins: list[str] = []
    cors_methods: list[str] = []
    cors_headers: list[str] = []

    condition_failure_policy: ConditionFailurePolicy = ConditionFailurePolicy.visit_all

    @property
    def enabled_endpoints(self) -> list[APIEndpoint]:
        return [endpoint for endpoint in self.endpoints if endpoint.enabled]

    def cors_status(self) -> dict:
        """effective CORS settings, with defaults filled in."""
        return {
            "enabled": self.cors_enabled,
            "origins": self.cors_origins,
            "methods": self.cors_methods or DEFAULT_CORS_METHODS,
            "headers": self.cors_headers or DEFAULT_CORS_HEADERS,
        }
