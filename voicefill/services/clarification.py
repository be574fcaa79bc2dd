"""
Clarification Controller.

When extraction cannot fill a required field, the session asks the
respondent a directed question about that one field. The controller
tracks that sub-dialog:

    idle -> awaiting_response -> resolved | cancelled -> idle

Only one question can be open at a time. Answers are validated before
anything is committed; a rejected answer keeps the question open.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Optional

from voicefill.errors import SessionStateError, ValidationServiceError
from voicefill.logging_config import get_logger
from voicefill.schemas.extraction import ClarificationPrompt
from voicefill.schemas.form import FieldSpec
from voicefill.schemas.session import ClarificationOutcome
from voicefill.services.field_validator import FieldValidatorBackend
from voicefill.services.field_values import FieldValueStore

logger = get_logger(__name__)


class ClarificationState(str, Enum):
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


def build_clarification_prompt(field: FieldSpec) -> ClarificationPrompt:
    """Question for one field, multiple-choice when the field has options."""
    if field.has_options:
        return ClarificationPrompt(
            field_id=field.id,
            question=f"Please choose from the following options for {field.label}:",
            options=[option.label for option in field.options or []],
        )
    return ClarificationPrompt(
        field_id=field.id,
        question=f"Could you please provide the {field.label}?",
    )


class ClarificationController:
    """
    Runs the clarification sub-dialog for one fill session.

    Args:
        fields: The form's fields by id.
        values: Store the resolved answer is committed into.
        validator: Checks answers before they are committed.
        reset_transcript: Called after a successful resolution so the
            next capture starts from a clean transcript.
    """

    def __init__(
        self,
        fields: dict[str, FieldSpec],
        values: FieldValueStore,
        validator: FieldValidatorBackend,
        reset_transcript: Optional[Callable[[], None]] = None,
    ) -> None:
        self._fields = fields
        self._values = values
        self._validator = validator
        self._reset_transcript = reset_transcript

        self.state = ClarificationState.IDLE
        self._prompt: Optional[ClarificationPrompt] = None
        self._validating = False
        self.last_error: Optional[str] = None
        self.last_suggestion: Optional[str] = None

    @property
    def prompt(self) -> Optional[ClarificationPrompt]:
        return self._prompt

    @property
    def active(self) -> bool:
        return self.state == ClarificationState.AWAITING_RESPONSE

    def open(self, prompt: ClarificationPrompt) -> bool:
        """
        Show a question. Returns False (and changes nothing) when one is
        already open or the prompt targets an unknown field.
        """
        if self.state != ClarificationState.IDLE:
            logger.warning(
                "clarification_ignored",
                active_field=self._prompt.field_id if self._prompt else None,
                incoming_field=prompt.field_id,
            )
            return False
        if prompt.field_id not in self._fields:
            logger.warning("clarification_unknown_field", field_id=prompt.field_id)
            return False

        self._prompt = prompt
        self.last_error = None
        self.last_suggestion = None
        self.state = ClarificationState.AWAITING_RESPONSE
        logger.info("clarification_opened", field_id=prompt.field_id, has_options=bool(prompt.options))
        return True

    async def respond(self, answer: str) -> ClarificationOutcome:
        """
        Validate an answer and commit it if it passes.

        Raises:
            SessionStateError: No question is open, or another answer is
                still being validated.
        """
        if self.state != ClarificationState.AWAITING_RESPONSE or self._prompt is None:
            raise SessionStateError("No clarification is awaiting a response")
        if self._validating:
            raise SessionStateError("A response is already being validated")

        prompt = self._prompt
        field = self._fields[prompt.field_id]

        self._validating = True
        try:
            outcome = await self._validator.validate(field, answer)
        except ValidationServiceError as e:
            self.last_error = "Failed to validate response. Please try again."
            logger.error("clarification_validation_failed", field_id=field.id, error=str(e))
            return ClarificationOutcome(resolved=False, field_id=field.id, error=self.last_error)
        finally:
            self._validating = False

        if self._prompt is not prompt:
            # Cancelled while the answer was being validated
            return ClarificationOutcome(
                resolved=False,
                field_id=field.id,
                validation=outcome,
                error="Clarification was cancelled",
            )

        if not outcome.is_valid:
            self.last_error = outcome.error or "Invalid response"
            self.last_suggestion = outcome.suggestion
            logger.info("clarification_rejected", field_id=field.id, error=self.last_error)
            return ClarificationOutcome(
                resolved=False,
                field_id=field.id,
                validation=outcome,
                error=self.last_error,
            )

        value = outcome.suggestion or answer.strip()
        if value:
            self._values.commit(field.id, value)
        else:
            # Optional field left blank: nothing to write, keep what is there
            value = self._values.get(field.id) or None
        self._prompt = None
        self.last_error = None
        self.last_suggestion = None
        self.state = ClarificationState.RESOLVED
        logger.info("clarification_resolved", field_id=field.id, corrected=outcome.suggestion is not None)

        if self._reset_transcript is not None:
            self._reset_transcript()
        self.state = ClarificationState.IDLE
        return ClarificationOutcome(resolved=True, field_id=field.id, value=value, validation=outcome)

    def cancel(self) -> bool:
        """Drop the open question without committing anything."""
        if self.state != ClarificationState.AWAITING_RESPONSE:
            return False
        field_id = self._prompt.field_id if self._prompt else None
        self._prompt = None
        self.last_error = None
        self.last_suggestion = None
        self.state = ClarificationState.CANCELLED
        logger.info("clarification_cancelled", field_id=field_id)
        self.state = ClarificationState.IDLE
        return True
