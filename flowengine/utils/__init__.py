"""Utility functions for the flow engine."""

from flowengine.utils.identifiers import (
    generate_execution_id,
    generate_instance_id,
    generate_log_id,
    utc_timestamp,
)
from flowengine.utils.logging import get_logger, setup_logging

__all__ = [
    "generate_execution_id",
    "generate_instance_id",
    "generate_log_id",
    "utc_timestamp",
    "get_logger",
    "setup_logging",
]
