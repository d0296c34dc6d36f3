"""Tests for SQL building and the bundled SQLite client."""

import sqlite3

import pytest

from flowengine.errors import ConfigError, DatabaseError
from flowengine.models.execution import ExecutionContext
from flowengine.models.flow_graph import DatabaseSelectNodeData
from flowengine.runtime.database import (
    DatabaseClient,
    SqliteDatabaseClient,
    build_custom_query,
    build_select,
    quote_identifier,
    sqlite_resolver,
)


def select(**data):
    return DatabaseSelectNodeData.model_validate({"tableName": "users", **data})


@pytest.fixture
def context():
    return ExecutionContext(params={"id": "2"}, query={"role": "admin", "ids": [1, 3]})


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "conn-1.db"
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT, role TEXT)")
    conn.executemany(
        "INSERT INTO users (id, name, role) VALUES (?, ?, ?)",
        [(1, "Ann", "admin"), (2, "Bob", "user"), (3, "Cid", "admin")],
    )
    conn.commit()
    conn.close()
    return path


class TestQuoteIdentifier:
    def test_quotes_and_escapes(self):
        assert quote_identifier("users") == '"users"'
        assert quote_identifier("public.users") == '"public"."users"'
        assert quote_identifier('we"ird') == '"we""ird"'

    def test_empty_rejected(self):
        with pytest.raises(ConfigError):
            quote_identifier(" ")


class TestBuildSelect:
    """Test SQL generated for database select nodes."""

    def test_plain_select(self, context):
        sql, params = build_select(select(), context)
        assert sql == 'SELECT * FROM "users"'
        assert params == []

    def test_conditions_are_bound(self, context):
        """Values from the context should become parameters, never SQL text."""
        data = select(
            columns="id, name",
            conditions=[
                {"column": "role", "operator": "equals", "value": "{{query.role}}"},
                {"column": "id", "operator": "greater than", "value": 1, "logicalOperator": "OR"},
            ],
            orderBy="name",
            orderDirection="desc",
            limit=10,
        )
        sql, params = build_select(data, context)
        assert sql == (
            'SELECT "id", "name" FROM "users" WHERE "role" = ? OR "id" > ? '
            'ORDER BY "name" DESC LIMIT 10'
        )
        assert params == ["admin", 1]

    def test_pattern_and_list_operators(self, context):
        data = select(
            conditions=[
                {"column": "name", "operator": "starts with", "value": "A"},
                {"column": "id", "operator": "in", "value": "{{query.ids}}"},
                {"column": "id", "operator": "between", "value": "1, 5"},
                {"column": "role", "operator": "is not null"},
            ]
        )
        sql, params = build_select(data, context, paramstyle="format")
        assert sql == (
            'SELECT * FROM "users" WHERE "name" LIKE %s AND "id" IN (%s, %s) '
            'AND "id" BETWEEN %s AND %s AND "role" IS NOT NULL'
        )
        assert params == ["A%", 1, 3, "1", "5"]

    def test_numeric_placeholders(self, context):
        data = select(conditions=[{"column": "id", "operator": "equals", "value": "{{params.id}}"}])
        sql, params = build_select(data, context, paramstyle="numeric")
        assert sql.endswith('WHERE "id" = $1')
        assert params == ["2"]

    def test_unknown_operator(self, context):
        data = select(conditions=[{"column": "id", "operator": "approximately", "value": 1}])
        with pytest.raises(ConfigError):
            build_select(data, context)

    def test_custom_query(self, context):
        data = select(
            isCustomQuery=True,
            customQuery="SELECT name FROM {tableName} WHERE id = {{params.id}}",
        )
        sql, params = build_select(data, context)
        assert sql == 'SELECT name FROM "users" WHERE id = ?'
        assert params == ["2"]

    def test_custom_query_never_inlines_values(self):
        context = ExecutionContext(params={"id": "1; DROP TABLE users"})
        sql, params = build_custom_query("SELECT * FROM t WHERE id = {{params.id}}", "t", context)
        assert "DROP" not in sql
        assert params == ["1; DROP TABLE users"]


class TestSqliteDatabaseClient:
    """Test the SQLite client against a real database file."""

    async def test_fetch_all(self, db_path, context):
        client = SqliteDatabaseClient(db_path)
        data = select(
            conditions=[{"column": "role", "operator": "equals", "value": "{{query.role}}"}],
            orderBy="id",
        )
        rows = await client.fetch_all(*build_select(data, context))
        assert rows == [
            {"id": 1, "name": "Ann", "role": "admin"},
            {"id": 3, "name": "Cid", "role": "admin"},
        ]

    async def test_errors_are_wrapped(self, db_path):
        client = SqliteDatabaseClient(db_path)
        with pytest.raises(DatabaseError):
            await client.fetch_all('SELECT * FROM "missing"')

    def test_resolver(self, db_path):
        resolve_connection = sqlite_resolver(db_path.parent)
        assert isinstance(resolve_connection("conn-1"), SqliteDatabaseClient)
        assert resolve_connection("conn-2") is None

    def test_client_contract_is_abstract(self):
        """A client must implement fetch_all before it can be created."""
        with pytest.raises(TypeError):
            DatabaseClient()

        class Incomplete(DatabaseClient):
            paramstyle = "format"

        with pytest.raises(TypeError):
            Incomplete()
