"""Exception types raised by the flow engine and the custom API servers."""


class FlowError(Exception):
    """Base class for all flow engine errors."""


class ConfigError(FlowError):
    """A flow graph or API configuration is malformed."""

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        self.problems = problems or [message]
        super().__init__(message)


class ConditionError(FlowError):
    """A conditional node's expression could not be evaluated."""

    def __init__(self, expression: str, reason: str) -> None:
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid condition: {expression} ({reason})")


class NodeExecutionError(FlowError):
    """A node failed while processing a request."""

    def __init__(self, node_id: str, message: str) -> None:
        self.node_id = node_id
        super().__init__(message)


class ParameterError(FlowError):
    """A request parameter is missing or cannot be coerced to its declared type."""


class TemplateError(FlowError):
    """A response body is not valid JSON after token substitution."""


class DatabaseError(FlowError):
    """The database collaborator failed to run a query."""


class BindError(FlowError):
    """The configured port is already in use."""

    def __init__(self, port: int) -> None:
        self.port = port
        super().__init__(f"port in use: {port}")


class ServerNotRunningError(RuntimeError):
    """A server operation that needs a live listener was called before start()."""
