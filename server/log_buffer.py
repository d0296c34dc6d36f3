"""In-memory log storage owned by a custom API server."""

import threading
from collections import OrderedDict, deque
from typing import Any

from flowengine.models.server_log import FlowExecutionLog, LogEntry, LogLevel
from flowengine.utils.logging import get_logger

_LEVELS = {
    "debug": 10,
    "info": 20,
    "warn": 30,
    "error": 40,
}


class LogBuffer:
    """Bounded ring buffer of server log entries; the oldest are evicted first.

    Appends are serialized with a lock so handlers running in worker
    threads can log safely. Entries are mirrored to the stdlib logger.
    """

    def __init__(self, capacity: int = 1000, logger_name: str = "server") -> None:
        self.capacity = capacity
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._logger = get_logger(logger_name)

    def append(self, level: LogLevel, message: str, data: Any = None) -> LogEntry:
        """Record a log entry."""
        entry = LogEntry(level=level, message=message, data=data)
        with self._lock:
            self._entries.append(entry)
        self._logger.log(_LEVELS[level], message)
        return entry

    def entries(self, limit: int | None = None, level: LogLevel | None = None) -> list[LogEntry]:
        """Entries oldest first, optionally filtered by level and cut to the last ``limit``."""
        with self._lock:
            entries = list(self._entries)
        if level:
            entries = [entry for entry in entries if entry.level == level]
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class FlowExecutionLogStore:
    """Latest flow execution records per endpoint, newest kept."""

    def __init__(self, limit_per_endpoint: int = 100) -> None:
        self.limit_per_endpoint = limit_per_endpoint
        self._logs: dict[str, OrderedDict[str, FlowExecutionLog]] = {}
        self._lock = threading.Lock()

    def store(self, execution_log: FlowExecutionLog) -> None:
        """Insert or replace a record; evicts the oldest beyond the limit."""
        with self._lock:
            endpoint_logs = self._logs.setdefault(execution_log.endpoint_id, OrderedDict())
            endpoint_logs.pop(execution_log.execution_id, None)
            endpoint_logs[execution_log.execution_id] = execution_log
            while len(endpoint_logs) > self.limit_per_endpoint:
                endpoint_logs.popitem(last=False)

    def list_logs(self, endpoint_id: str) -> list[FlowExecutionLog]:
        """Records for an endpoint, newest first."""
        with self._lock:
            logs = list(self._logs.get(endpoint_id, {}).values())
        return list(reversed(logs))

    def get(self, endpoint_id: str, execution_id: str) -> FlowExecutionLog | None:
        with self._lock:
            return self._logs.get(endpoint_id, {}).get(execution_id)

    def latest(self, endpoint_id: str) -> FlowExecutionLog | None:
        logs = self.list_logs(endpoint_id)
        return logs[0] if logs else None

    def delete(self, endpoint_id: str, execution_id: str) -> bool:
        """Remove one record; False when it does not exist."""
        with self._lock:
            return self._logs.get(endpoint_id, {}).pop(execution_id, None) is not None

    def clear(self, endpoint_id: str | None = None) -> None:
        """Drop records for one endpoint, or for all when no id is given."""
        with self._lock:
            if endpoint_id is None:
                self._logs.clear()
            else:
                self._logs.pop(endpoint_id, None)
