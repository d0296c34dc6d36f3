"""ID generation and timestamp utilities."""

import uuid
from datetime import datetime, timezone


def generate_execution_id() -> str:
    """Generate a unique flow execution ID (UUID4)."""
    return str(uuid.uuid4())


def generate_log_id() -> str:
    """Generate a unique log entry ID (UUID4)."""
    return str(uuid.uuid4())


def generate_instance_id() -> str:
    """Generate a server instance ID (16-char hex string)."""
    return uuid.uuid4().hex[:16]


def utc_timestamp() -> str:
    """Generate an ISO8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat()
