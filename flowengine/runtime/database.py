"""Database access for database select nodes.

The engine does not own database connections: a server is handed a
``DatabaseClient`` for its connection and calls it with parameterized
SQL built here. ``SqliteDatabaseClient`` is the bundled implementation.
"""

import asyncio
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Sequence

from flowengine.errors import ConfigError, DatabaseError
from flowengine.models.execution import ExecutionContext
from flowengine.models.flow_graph import DatabaseSelectNodeData, SelectCondition
from flowengine.runtime.template import TOKEN_RE, resolve, resolve_value

TABLE_PLACEHOLDER = "{tableName}"


class DatabaseClient(ABC):
    """Contract for running reads against a connected database."""

    # DB-API paramstyle of the driver: "qmark", "format" or "numeric"
    paramstyle = "qmark"

    @abstractmethod
    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a read and return its rows as dicts."""


def quote_identifier(name: str) -> str:
    """Quote a (possibly schema-qualified) identifier."""
    if not name or not name.strip():
        raise ConfigError("empty identifier")
    parts = name.strip().split(".")
    return ".".join('"' + part.replace('"', '""') + '"' for part in parts)


def _placeholder(paramstyle: str, index: int) -> str:
    if paramstyle == "format":
        return "%s"
    if paramstyle == "numeric":
        return f"${index}"
    return "?"


def _as_list(value: Any) -> list:
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [value]


class _Params:
    """Collects bound values and hands out placeholders."""

    def __init__(self, paramstyle: str) -> None:
        self.paramstyle = paramstyle
        self.values: list[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return _placeholder(self.paramstyle, len(self.values))


def _predicate(condition: SelectCondition, context: ExecutionContext, params: _Params) -> str:
    column = quote_identifier(condition.column)
    operator = condition.operator.strip().lower()
    value = resolve_value(condition.value, context)

    comparisons = {
        "equals": "=",
        "not equals": "<>",
        "greater than": ">",
        "less than": "<",
        "greater than or equal": ">=",
        "less than or equal": "<=",
        "like": "LIKE",
        "not like": "NOT LIKE",
    }
    if operator in comparisons:
        return f"{column} {comparisons[operator]} {params.add(value)}"
    if operator == "is null":
        return f"{column} IS NULL"
    if operator == "is not null":
        return f"{column} IS NOT NULL"
    if operator == "is true":
        return f"{column} = {params.add(True)}"
    if operator == "is false":
        return f"{column} = {params.add(False)}"

    patterns = {
        "contains": ("LIKE", "%{}%"),
        "not contains": ("NOT LIKE", "%{}%"),
        "starts with": ("LIKE", "{}%"),
        "ends with": ("LIKE", "%{}"),
    }
    if operator in patterns:
        keyword, pattern = patterns[operator]
        return f"{column} {keyword} {params.add(pattern.format(value))}"

    if operator in ("in", "not in"):
        items = _as_list(value)
        if not items:
            return "1 = 0" if operator == "in" else "1 = 1"
        placeholders = ", ".join(params.add(item) for item in items)
        keyword = "IN" if operator == "in" else "NOT IN"
        return f"{column} {keyword} ({placeholders})"

    if operator in ("between", "not between"):
        bounds = _as_list(value)
        if len(bounds) != 2:
            raise ConfigError(f"'{operator}' on {condition.column} needs exactly two values")
        keyword = "BETWEEN" if operator == "between" else "NOT BETWEEN"
        return f"{column} {keyword} {params.add(bounds[0])} AND {params.add(bounds[1])}"

    raise ConfigError(f"unsupported filter operator: {condition.operator}")


def build_select(
    data: DatabaseSelectNodeData,
    context: ExecutionContext,
    paramstyle: str = "qmark",
) -> tuple[str, list[Any]]:
    """Build the parameterized read configured on a database select node."""
    if data.is_custom_query and data.custom_query and data.custom_query.strip():
        return build_custom_query(data.custom_query, data.table_name, context, paramstyle)

    params = _Params(paramstyle)
    columns = ", ".join(quote_identifier(col) for col in data.columns) if data.columns else "*"
    sql = f"SELECT {columns} FROM {quote_identifier(data.table_name)}"

    clauses = []
    for index, condition in enumerate(data.conditions):
        predicate = _predicate(condition, context, params)
        if index == 0:
            clauses.append(predicate)
        else:
            connector = "OR" if condition.logical_operator == "OR" else "AND"
            clauses.append(f"{connector} {predicate}")
    if clauses:
        sql += " WHERE " + " ".join(clauses)

    if data.order_by:
        sql += f" ORDER BY {quote_identifier(data.order_by)} {data.order_direction}"
    if data.limit:
        sql += f" LIMIT {int(data.limit)}"
    return sql, params.values


def build_custom_query(
    query: str,
    table_name: str,
    context: ExecutionContext,
    paramstyle: str = "qmark",
) -> tuple[str, list[Any]]:
    """Prepare a hand-written query.

    ``{tableName}`` is replaced by the quoted table name and every
    ``{{namespace.key}}`` token becomes a bound parameter, never SQL text.
    """
    params = _Params(paramstyle)
    sql = TOKEN_RE.sub(lambda m: params.add(resolve(m.group(1), context)[1]), query)
    if TABLE_PLACEHOLDER in sql:
        sql = sql.replace(TABLE_PLACEHOLDER, quote_identifier(table_name))
    return sql, params.values


class SqliteDatabaseClient(DatabaseClient):
    """Runs reads against a SQLite file in a worker thread."""

    paramstyle = "qmark"

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _run(conn: sqlite3.Connection, sql: str, params: Sequence[Any]) -> list[dict[str, Any]]:
        try:
            rows = conn.execute(sql, list(params)).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        conn = self._connect()
        try:
            return await asyncio.to_thread(self._run, conn, sql, params)
        except asyncio.CancelledError:
            # abort the statement still running in the worker thread
            conn.interrupt()
            raise
        except sqlite3.Error as e:
            raise DatabaseError(str(e)) from e

    def __repr__(self) -> str:
        return f"SqliteDatabaseClient(path={str(self.path)!r})"


def sqlite_resolver(data_dir: Path | str) -> Callable[[str], DatabaseClient | None]:
    """Map a connection id onto ``<data_dir>/<connection_id>.db`` when that file exists."""
    base = Path(data_dir)

    def resolve_connection(connection_id: str) -> DatabaseClient | None:
        path = base / f"{connection_id}.db"
        if not path.exists():
            return None
        return SqliteDatabaseClient(path)

    return resolve_connection
