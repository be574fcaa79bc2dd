"""
Data models for extraction, clarification and validation results.
"""

from typing import Optional

from pydantic import Field, field_validator

from voicefill.schemas.base import WireModel
from voicefill.schemas.form import FieldSpec, FieldValue


class ClarificationPrompt(WireModel):
    """A directed follow-up question for one field."""
    field_id: str
    question: str
    options: Optional[list[str]] = None


class ExtractionResult(WireModel):
    """Partial field values found in a transcript."""
    field_values: FieldValue = Field(default_factory=dict)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    needs_clarification: bool = False
    clarification_prompt: Optional[ClarificationPrompt] = None

    @field_validator("field_values", mode="before")
    @classmethod
    def _stringify_values(cls, value: object) -> object:
        # Services sometimes answer numbers or nulls; FieldValue is str-only
        if isinstance(value, dict):
            return {
                str(k): ("" if v is None else str(v))
                for k, v in value.items()
            }
        return value


class ValidationOutcome(WireModel):
    """
    Result of checking one candidate value.

    On a valid outcome, ``suggestion`` is the auto-corrected value to
    commit. On an invalid one it is only a hint for the respondent.
    """
    is_valid: bool
    error: Optional[str] = None
    suggestion: Optional[str] = None


class ExtractionRequest(WireModel):
    transcript: str
    fields: list[FieldSpec]
    current_values: FieldValue = Field(default_factory=dict)


class ValidationRequest(WireModel):
    field: FieldSpec
    value: str


class ClarifyRequest(WireModel):
    field: FieldSpec
    transcript: str = ""
    context: FieldValue = Field(default_factory=dict)
