"""Tests for token substitution in response bodies and select values."""

import pytest

from flowengine.errors import TemplateError
from flowengine.models.execution import ExecutionContext
from flowengine.runtime.template import (
    INVALID_BODY_MESSAGE,
    render,
    render_strict,
    render_text,
    resolve,
    resolve_value,
    substitute,
)


@pytest.fixture
def context():
    context = ExecutionContext(
        params={"id": "42"},
        query={"page": 2, "tags": ["a", "b"]},
        body={"user": {"name": 'Ann "The Admin"', "age": 31}},
        headers={"x-api-key": "secret"},
    )
    context.bind("users", [{"id": 1, "name": "Ann"}, {"id": 2, "name": "Bob"}])
    return context


class TestResolve:
    """Test dotted path lookup."""

    def test_nested_path(self, context):
        assert resolve("body.user.age", context) == (True, 31)

    def test_list_index(self, context):
        assert resolve("users.1.name", context) == (True, "Bob")

    def test_header_case_insensitive(self, context):
        assert resolve("headers.X-API-Key", context) == (True, "secret")

    def test_missing(self, context):
        assert resolve("body.user.email", context) == (False, None)
        assert resolve("session.id", context) == (False, None)


class TestRender:
    """Test JSON-aware rendering."""

    def test_whole_string_token_keeps_string(self, context):
        assert render('{"id":"{{params.id}}"}', context) == {"id": "42"}

    def test_whole_string_token_keeps_type(self, context):
        """A quoted token referencing a number or list should not be stringified."""
        body = '{"page":"{{query.page}}","tags":"{{query.tags}}","users":"{{users}}"}'
        assert render(body, context) == {
            "page": 2,
            "tags": ["a", "b"],
            "users": [{"id": 1, "name": "Ann"}, {"id": 2, "name": "Bob"}],
        }

    def test_bare_token(self, context):
        assert render('{"age": {{body.user.age}}}', context) == {"age": 31}

    def test_embedded_token_is_escaped(self, context):
        """Quotes inside a substituted value should not break the document."""
        assert render('{"greeting":"Hi {{body.user.name}}!"}', context) == {
            "greeting": 'Hi Ann "The Admin"!'
        }

    def test_missing_value_renders_null(self, context):
        assert render('{"email":"{{body.user.email}}"}', context) == {"email": None}
        assert render('{"note":"x{{body.nothing}}y"}', context) == {"note": "xy"}

    def test_tokens_with_whitespace(self, context):
        assert render('{"id":"{{ params.id }}"}', context) == {"id": "42"}

    def test_invalid_json_yields_error_object(self, context):
        assert render('{"id": {{params.id}', context) == {"error": INVALID_BODY_MESSAGE}

    def test_render_strict_raises(self, context):
        with pytest.raises(TemplateError):
            render_strict("not json", context)

    def test_bare_body_token(self, context):
        assert render('{"echo": {{body}}}', context) == {"echo": context.body}

    def test_substitute_leaves_plain_text(self, context):
        assert substitute('{"a": 1}', context) == '{"a": 1}'


class TestResolveValue:
    """Test rendering of plain values used in select conditions."""

    def test_single_token_keeps_type(self, context):
        assert resolve_value("{{query.page}}", context) == 2

    def test_mixed_text(self, context):
        assert resolve_value("user-{{params.id}}", context) == "user-42"

    def test_non_string_passthrough(self, context):
        assert resolve_value(7, context) == 7

    def test_render_text(self, context):
        assert render_text("page {{query.page}} of {{query.tags}}{{query.none}}", context) == (
            'page 2 of ["a", "b"]'
        )
