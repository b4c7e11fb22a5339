"""
Base model for JSON shapes exchanged with the frontend.

The browser client speaks camelCase (``contentType``, ``dateFilter``) while the
Python side and the database use snake_case. Models deriving from CamelModel
serialize with camelCase aliases and accept either spelling on input.
"""

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "extra": "ignore",
    }
