"""Evaluation of conditional node expressions.

Expressions are written in the JavaScript-like syntax of the workbench
(``params.role === 'admin' && query.page > 1``). They are rewritten into
the equivalent Python expression and run by simpleeval against a scope
holding only the request context and a few pure helpers, so no builtins,
imports, or private attributes are reachable.

Request values usually arrive as strings, so comparisons follow
JavaScript: ``<``, ``>``, ``<=``, ``>=`` and loose ``==``/``!=`` convert a
numeric string before comparing it to a number, while ``===``/``!==``
compare without conversion.
"""

import ast
import json
import math
import operator
import re
import time
from types import SimpleNamespace
from typing import Any

from simpleeval import DEFAULT_OPERATORS, EvalWithCompoundTypes, FeatureNotAvailable

from flowengine.errors import ConditionError
from flowengine.models.execution import ExecutionContext

_JS_TOKEN_RE = re.compile(
    r"""
    (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<op>===|!==|&&|\|\||!(?!=)|~)
  | (?P<word>[A-Za-z_][\w]*)
    """,
    re.VERBOSE,
)

# strict equality maps onto Python's identity operators, which the
# evaluator reimplements; ``!`` maps onto ``~`` because it binds tighter
# than comparisons, as in JavaScript
_OPERATORS = {
    "===": " is ",
    "!==": " is not ",
    "&&": " and ",
    "||": " or ",
    "!": "~",
}

_LITERALS = {
    "true": "True",
    "false": "False",
    "null": "None",
    "undefined": "None",
}


def translate(expression: str) -> str:
    """Rewrite JavaScript operators and literals into Python syntax.

    Raises:
        ValueError: for the bitwise ``~`` operator, which conditions do not support.
    """

    def replace(match: re.Match) -> str:
        if match.group("string") is not None:
            return match.group("string")
        op = match.group("op")
        if op == "~":
            raise ValueError("bitwise operator ~ is not supported")
        if op is not None:
            return _OPERATORS[op]
        word = match.group("word")
        # property names after a dot are left alone
        if match.start() > 0 and expression[match.start() - 1] == ".":
            return word
        return _LITERALS.get(word, word)

    return _JS_TOKEN_RE.sub(replace, expression).strip()


def _js_string(value: Any = "") -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _js_number(value: Any = 0) -> float | int:
    if value is None:
        return 0
    if isinstance(value, (bool, int, float)):
        return value
    text = str(value).strip()
    if not text:
        return 0
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return math.nan


def _js_boolean(value: Any = None) -> bool:
    if isinstance(value, (dict, list)):
        return True
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equals(left: Any, right: Any) -> bool:
    """JavaScript ``===``: no conversion; objects and arrays compare by identity."""
    if _is_number(left) and _is_number(right):
        return left == right
    if type(left) is not type(right):
        return False
    if isinstance(left, (dict, list)):
        return left is right
    return left == right


def _loose_equals(left: Any, right: Any) -> bool:
    """JavaScript ``==``: null only equals null; primitives of mixed type compare as numbers."""
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, (dict, list)) or isinstance(right, (dict, list)):
        return left is right
    if type(left) is type(right) or (_is_number(left) and _is_number(right)):
        return left == right
    return _js_number(left) == _js_number(right)


def _relational(compare):
    """JavaScript ``<``-style comparison: strings compare as text, anything else as numbers."""

    def apply(left: Any, right: Any) -> bool:
        if isinstance(left, str) and isinstance(right, str):
            return compare(left, right)
        left, right = _js_number(left), _js_number(right)
        if isinstance(left, float) and math.isnan(left):
            return False
        if isinstance(right, float) and math.isnan(right):
            return False
        return compare(left, right)

    return apply


OPERATORS = {
    **DEFAULT_OPERATORS,
    ast.Eq: _loose_equals,
    ast.NotEq: lambda left, right: not _loose_equals(left, right),
    ast.Is: _strict_equals,
    ast.IsNot: lambda left, right: not _strict_equals(left, right),
    ast.Gt: _relational(operator.gt),
    ast.Lt: _relational(operator.lt),
    ast.GtE: _relational(operator.ge),
    ast.LtE: _relational(operator.le),
    ast.Invert: lambda value: not _js_boolean(value),
}


UTILITIES = {
    "Math": SimpleNamespace(
        abs=abs,
        ceil=math.ceil,
        floor=math.floor,
        max=max,
        min=min,
        pow=pow,
        round=round,
        sqrt=math.sqrt,
        PI=math.pi,
        E=math.e,
    ),
    "JSON": SimpleNamespace(
        stringify=lambda value: json.dumps(value, default=str),
        parse=json.loads,
    ),
    "Object": SimpleNamespace(
        keys=lambda obj: list(obj.keys()),
        values=lambda obj: list(obj.values()),
        entries=lambda obj: [list(item) for item in obj.items()],
    ),
    "Array": SimpleNamespace(isArray=lambda value: isinstance(value, list)),
    "Date": SimpleNamespace(now=lambda: int(time.time() * 1000)),
    "String": _js_string,
    "Number": _js_number,
    "Boolean": _js_boolean,
}

FUNCTIONS = {
    "String": _js_string,
    "Number": _js_number,
    "Boolean": _js_boolean,
}

_MISSING = object()


def _sequence_member(target: str | list | tuple, name: str) -> Any:
    """JavaScript-style members of strings and arrays."""
    if name == "length":
        return len(target)
    if name == "includes":
        return lambda item: item in target
    if name == "indexOf":
        if isinstance(target, str):
            return target.find
        return lambda item: target.index(item) if item in target else -1
    if isinstance(target, str):
        members = {
            "startsWith": target.startswith,
            "endsWith": target.endswith,
            "toLowerCase": target.lower,
            "toUpperCase": target.upper,
            "trim": target.strip,
        }
        return members.get(name, _MISSING)
    if name == "join":
        return lambda separator=",": separator.join(_js_string(item) for item in target)
    return _MISSING


class _ContextEvaluator(EvalWithCompoundTypes):
    """simpleeval evaluator with JavaScript member access semantics.

    Reading a missing key of an object yields None, like ``undefined``.
    Header names match case-insensitively, as they do in templates.
    """

    def __init__(self, names=None, functions=None, headers=None):
        super().__init__(operators=OPERATORS, functions=functions, names=names)
        self._headers = headers

    def _member(self, target: dict, key: Any) -> Any:
        if key in target:
            return target[key]
        if target is self._headers and isinstance(key, str):
            return target.get(key.lower())
        return None

    def _eval_attribute(self, node):
        if node.attr.startswith("_"):
            raise FeatureNotAvailable(f"access to private attribute {node.attr} is not allowed")
        target = self._eval(node.value)
        if isinstance(target, dict):
            return self._member(target, node.attr)
        if isinstance(target, (str, list, tuple)):
            member = _sequence_member(target, node.attr)
            if member is not _MISSING:
                return member
        if target is None:
            raise TypeError(f"cannot read properties of null (reading '{node.attr}')")
        return super()._eval_attribute(node)

    def _eval_subscript(self, node):
        container = self._eval(node.value)
        key = self._eval(node.slice)
        if isinstance(container, dict) and isinstance(key, (str, int, float, bool)):
            return self._member(container, key)
        if isinstance(container, (list, str)) and isinstance(key, int) and not isinstance(key, bool):
            return container[key] if 0 <= key < len(container) else None
        return super()._eval_subscript(node)


def evaluate(expression: str, context: ExecutionContext) -> bool:
    """Evaluate a boolean expression against the request context.

    Raises:
        ConditionError: on syntax errors, unknown names, or any failure
            raised while evaluating.
    """
    if not expression or not expression.strip():
        raise ConditionError(expression, "empty expression")

    names = {**UTILITIES, **context.scope()}
    evaluator = _ContextEvaluator(names=names, functions=FUNCTIONS, headers=context.headers)
    try:
        result = evaluator.eval(translate(expression))
    except Exception as e:
        raise ConditionError(expression, str(e) or type(e).__name__) from e
    return _js_boolean(result)
