"""Shared pydantic base for wire-format models."""

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Model serialized with camelCase keys, as the authoring tool stores them.

    Python code uses the snake_case attribute names; both spellings are
    accepted on input.
    """

    model_config = {
        "populate_by_name": True,
        "alias_generator": to_camel,
    }
