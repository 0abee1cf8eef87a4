"""
Schema Base
===========
Shared pydantic base for camelCase wire models.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Python attribute names, camelCase JSON keys; accepts either on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
