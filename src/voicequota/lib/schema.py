from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

__all__ = ("PydanticBaseModel",)


class PydanticBaseModel(BaseModel):
    """Base model with camel case config."""

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
    )
