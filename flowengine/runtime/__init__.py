"""Flow execution: graph checks, templating, conditions, database reads, interpreter."""

from flowengine.runtime.condition import evaluate
from flowengine.runtime.database import DatabaseClient, SqliteDatabaseClient, build_select
from flowengine.runtime.graph import children_of, find_entry, validate
from flowengine.runtime.interpreter import FlowInterpreter
from flowengine.runtime.template import render, render_strict, render_text

__all__ = [
    "evaluate",
    "DatabaseClient",
    "SqliteDatabaseClient",
    "build_select",
    "children_of",
    "find_entry",
    "validate",
    "FlowInterpreter",
    "render",
    "render_strict",
    "render_text",
]
