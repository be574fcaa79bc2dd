"""
API Router: AI Service Endpoints.

Serves the in-process heuristic engine under the same wire contract the
remote extraction/validation backends speak, so one deployment of this
service can act as the "AI service" for another.
"""

from __future__ import annotations

from fastapi import APIRouter

from voicefill.config import get_settings
from voicefill.logging_config import get_logger
from voicefill.schemas.extraction import (
    ClarificationPrompt,
    ClarifyRequest,
    ExtractionRequest,
    ExtractionResult,
    ValidationOutcome,
    ValidationRequest,
)
from voicefill.services.clarification import build_clarification_prompt
from voicefill.services.field_extraction import extract_fields
from voicefill.services.field_validator import validate

logger = get_logger(__name__)
router = APIRouter(prefix="/ai", tags=["AI"])


@router.post("/process", response_model=ExtractionResult, response_model_exclude_none=True)
async def process_transcript(body: ExtractionRequest) -> ExtractionResult:
    """Extract field values from a transcript."""
    result = extract_fields(body.transcript, body.fields, body.current_values)
    logger.info(
        "ai_process",
        field_count=len(body.fields),
        fields_extracted=len(result.field_values),
        confidence=result.confidence,
    )
    return result


@router.post("/validate", response_model=ValidationOutcome, response_model_exclude_none=True)
async def validate_value(body: ValidationRequest) -> ValidationOutcome:
    """Check one value against its field."""
    outcome = validate(body.field, body.value, suggestion_domain=get_settings().email_suggestion_domain)
    logger.info("ai_validate", field_id=body.field.id, is_valid=outcome.is_valid)
    return outcome


@router.post("/clarify", response_model=ClarificationPrompt, response_model_exclude_none=True)
async def clarify_field(body: ClarifyRequest) -> ClarificationPrompt:
    """Question to ask the respondent about one field."""
    return build_clarification_prompt(body.field)
