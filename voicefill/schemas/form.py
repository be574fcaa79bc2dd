"""
Data models for form fields and their values.
"""

import re
from enum import Enum
from typing import Optional

from pydantic import ConfigDict, Field, field_validator, model_validator

from voicefill.schemas.base import WireModel

# Multiselect answers are stored as a single string of option values.
MULTISELECT_SEPARATOR = ","

# field id -> committed value
FieldValue = dict[str, str]


class FieldType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    EMAIL = "email"
    PHONE = "phone"
    DATE = "date"
    TIME = "time"
    SELECT = "select"
    MULTISELECT = "multiselect"
    TEXTAREA = "textarea"
    VOICE = "voice"


class FieldOption(WireModel):
    model_config = ConfigDict(frozen=True)

    value: str
    label: str


class FieldSpec(WireModel):
    """One field of the form being filled. Immutable for the fill session."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    type: FieldType = FieldType.TEXT
    label: str = ""
    required: bool = False
    options: Optional[list[FieldOption]] = None

    # Declared constraints, all optional
    pattern: Optional[str] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    max_length: Optional[int] = Field(default=None, ge=1)

    @field_validator("pattern")
    @classmethod
    def _compilable_pattern(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"Invalid pattern {value!r}: {e}") from e
        return value

    @model_validator(mode="after")
    def _default_label(self) -> "FieldSpec":
        if not self.label:
            # Frozen model: bypass __setattr__ for the derived default
            object.__setattr__(self, "label", self.id.replace("_", " ").capitalize())
        return self

    @property
    def has_options(self) -> bool:
        return bool(self.options) and self.type in (FieldType.SELECT, FieldType.MULTISELECT)


def index_fields(fields: list[FieldSpec]) -> dict[str, FieldSpec]:
    """Map field id -> field, rejecting duplicate ids."""
    indexed: dict[str, FieldSpec] = {}
    for field in fields:
        if field.id in indexed:
            raise ValueError(f"Duplicate field id: {field.id!r}")
        indexed[field.id] = field
    return indexed
