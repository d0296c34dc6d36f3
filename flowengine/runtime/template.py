"""Token substitution for response bodies.

Response bodies are JSON documents containing ``{{namespace.key}}`` tokens.
Tokens are replaced by the JSON encoding of the referenced context value,
then the document is parsed. A token that forms a whole JSON string literal
(``"{{params.id}}"``) is replaced together with its quotes, so strings stay
strings and numbers become numbers; a token inside a longer string literal
is replaced by the value's text.
"""

import json
import re
from typing import Any

from flowengine.errors import TemplateError
from flowengine.models.execution import ExecutionContext
from flowengine.utils.logging import get_logger

logger = get_logger(__name__)

INVALID_BODY_MESSAGE = "invalid response body format"

TOKEN_RE = re.compile(r"\{\{\s*([A-Za-z_$][\w$]*(?:\.[\w$-]+)*)\s*\}\}")

# a JSON string literal, or a token outside of any string literal
_SCAN_RE = re.compile(r'"(?:[^"\\]|\\.)*"|' + TOKEN_RE.pattern)


def resolve(path: str, context: ExecutionContext) -> tuple[bool, Any]:
    """Walk a dotted path through the context.

    Returns (found, value). List elements are addressed by index
    (``users.0.name``); header names match case-insensitively.
    """
    namespace, *keys = path.split(".")
    found, value = context.lookup(namespace)
    if not found:
        return False, None
    for key in keys:
        if isinstance(value, dict):
            if key in value:
                value = value[key]
            elif namespace == "headers" and key.lower() in value:
                value = value[key.lower()]
            else:
                return False, None
        elif isinstance(value, (list, tuple)) and key.isdigit() and int(key) < len(value):
            value = value[int(key)]
        else:
            return False, None
    return True, value


def _encode(value: Any) -> str:
    return json.dumps(value, default=str)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return _encode(value)


def _substitute_literal(literal: str, context: ExecutionContext) -> str:
    inner = literal[1:-1]
    whole = TOKEN_RE.fullmatch(inner)
    if whole:
        _, value = resolve(whole.group(1), context)
        return _encode(value)

    def replace(match: re.Match) -> str:
        _, value = resolve(match.group(1), context)
        # re-escape so the surrounding string literal stays valid
        return json.dumps(_as_text(value))[1:-1]

    return '"' + TOKEN_RE.sub(replace, inner) + '"'


def substitute(template: str, context: ExecutionContext) -> str:
    """Replace every token in a JSON template, returning the JSON text."""

    def replace(match: re.Match) -> str:
        if match.group(1) is None:
            return _substitute_literal(match.group(0), context)
        _, value = resolve(match.group(1), context)
        return _encode(value)

    return _SCAN_RE.sub(replace, template)


def render_strict(template: str, context: ExecutionContext) -> Any:
    """Substitute tokens and parse the result as JSON.

    Raises:
        TemplateError: if the substituted text is not valid JSON.
    """
    text = substitute(template, context)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise TemplateError(f"{INVALID_BODY_MESSAGE}: {e.msg} at position {e.pos}") from e


def render(template: str, context: ExecutionContext) -> Any:
    """Like render_strict, but answers a structured error object instead of raising."""
    try:
        return render_strict(template, context)
    except TemplateError as e:
        logger.warning("Error parsing response body: %s", e)
        return {"error": INVALID_BODY_MESSAGE}


def render_text(template: str, context: ExecutionContext) -> str:
    """Replace every token by its value's text; missing values become empty."""
    return TOKEN_RE.sub(lambda m: _as_text(resolve(m.group(1), context)[1]), template)


def resolve_value(template: Any, context: ExecutionContext) -> Any:
    """Render a plain (non-JSON) value.

    A value made of a single token keeps the referenced value's type;
    otherwise tokens are replaced by their text.
    """
    if not isinstance(template, str):
        return template
    whole = TOKEN_RE.fullmatch(template.strip())
    if whole:
        return resolve(whole.group(1), context)[1]
    return render_text(template, context)
