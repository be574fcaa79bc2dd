"""
Field Validator.

Checks a candidate answer against a field's declared type and
constraints. ``validate`` is pure and synchronous; it never touches
the session's field values, callers apply the outcome.

A remote validator with the same contract can be swapped in for
richer, AI-backed checks (``HttpValidationService``).
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import ValidationError

from voicefill.config import Backend, Settings, get_settings
from voicefill.errors import ValidationServiceError
from voicefill.logging_config import get_logger
from voicefill.schemas.extraction import ValidationOutcome, ValidationRequest
from voicefill.schemas.form import MULTISELECT_SEPARATOR, FieldSpec, FieldType
from voicefill.services.spoken import (
    EMAIL_RE,
    find_spoken_email,
    format_number,
    parse_number,
    spoken_digits,
    strip_phone_separators,
)

logger = get_logger(__name__)

MIN_PHONE_DIGITS = 10


def validate(
    field: FieldSpec,
    value: str,
    suggestion_domain: Optional[str] = None,
) -> ValidationOutcome:
    """
    Check ``value`` against ``field``.

    Args:
        field: The targeted field.
        value: Candidate answer, as typed or dictated.
        suggestion_domain: Domain appended to build an email hint.
            Defaults to ``Settings.email_suggestion_domain``.
    """
    candidate = (value or "").strip()

    if not candidate:
        if field.required:
            return ValidationOutcome(is_valid=False, error=f"{field.label} is required")
        return ValidationOutcome(is_valid=True)

    if field.type == FieldType.EMAIL:
        outcome = _validate_email(candidate, suggestion_domain)
    elif field.type == FieldType.PHONE:
        outcome = _validate_phone(candidate)
    elif field.has_options:
        outcome = _validate_options(field, candidate)
    else:
        outcome = ValidationOutcome(is_valid=True)

    if not outcome.is_valid:
        return outcome

    committed = outcome.suggestion or candidate
    constraint_error = _check_constraints(field, committed)
    if constraint_error:
        return ValidationOutcome(is_valid=False, error=constraint_error)

    if committed != value:
        return ValidationOutcome(is_valid=True, suggestion=committed)
    return ValidationOutcome(is_valid=True)


def _validate_email(candidate: str, suggestion_domain: Optional[str]) -> ValidationOutcome:
    if "@" in candidate and EMAIL_RE.match(candidate):
        return ValidationOutcome(is_valid=True)

    spoken = find_spoken_email(candidate)
    if spoken and EMAIL_RE.match(spoken):
        return ValidationOutcome(is_valid=True, suggestion=spoken)

    domain = suggestion_domain or get_settings().email_suggestion_domain
    hint = None
    if "@" not in candidate and " " not in candidate:
        hint = f"{candidate}@{domain}"
    return ValidationOutcome(
        is_valid=False,
        error="Please enter a valid email address",
        suggestion=hint,
    )


def _validate_phone(candidate: str) -> ValidationOutcome:
    spoken = spoken_digits(candidate)
    digits = strip_phone_separators(spoken)
    if re.search(rf"\d{{{MIN_PHONE_DIGITS},}}", digits):
        if spoken != candidate and digits.isdigit():
            # Dictated ("five five five ..."): hand back the digits
            return ValidationOutcome(is_valid=True, suggestion=digits)
        return ValidationOutcome(is_valid=True)
    return ValidationOutcome(is_valid=False, error="Please enter a valid phone number")


def _validate_options(field: FieldSpec, candidate: str) -> ValidationOutcome:
    options = field.options or []
    lookup: dict[str, str] = {}
    for option in options:
        lookup[option.value.strip().lower()] = option.value
        lookup[option.label.strip().lower()] = option.value

    if field.type == FieldType.MULTISELECT:
        parts = [p.strip() for p in candidate.split(MULTISELECT_SEPARATOR) if p.strip()]
    else:
        parts = [candidate]

    resolved: list[str] = []
    for part in parts:
        match = lookup.get(part.lower())
        if match is None:
            choices = ", ".join(o.label for o in options)
            return ValidationOutcome(
                is_valid=False,
                error=f"Please choose one of: {choices}",
            )
        if match not in resolved:
            resolved.append(match)

    return ValidationOutcome(is_valid=True, suggestion=MULTISELECT_SEPARATOR.join(resolved))


def _check_constraints(field: FieldSpec, value: str) -> Optional[str]:
    """Declared constraints. Returns an error message or None."""
    if field.max_length is not None and len(value) > field.max_length:
        return f"{field.label} must be at most {field.max_length} characters"

    if field.pattern is not None and not re.fullmatch(field.pattern, value):
        return f"{field.label} is not in the expected format"

    if field.min_value is not None or field.max_value is not None:
        number = parse_number(value)
        if number is None:
            return f"{field.label} must be a number"
        if field.min_value is not None and number < field.min_value:
            return f"{field.label} must be at least {format_number(field.min_value)}"
        if field.max_value is not None and number > field.max_value:
            return f"{field.label} must be at most {format_number(field.max_value)}"

    return None


class FieldValidatorBackend(ABC):
    """Where clarification answers get validated."""

    @abstractmethod
    async def validate(self, field: FieldSpec, value: str) -> ValidationOutcome:
        ...


class LocalValidator(FieldValidatorBackend):
    """Runs the pure rules above in-process."""

    def __init__(self, suggestion_domain: Optional[str] = None) -> None:
        self._suggestion_domain = suggestion_domain

    async def validate(self, field: FieldSpec, value: str) -> ValidationOutcome:
        return validate(field, value, suggestion_domain=self._suggestion_domain)


class HttpValidationService(FieldValidatorBackend):
    """
    Remote validation: POST ``{field, value}`` to ``/ai/validate``.

    The local rules still run first; a value the rules reject is not
    sent to the service.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def validate(self, field: FieldSpec, value: str) -> ValidationOutcome:
        local = validate(field, value)
        if not local.is_valid:
            return local

        payload = ValidationRequest(field=field, value=local.suggestion or value).to_wire()
        try:
            if self._client is not None:
                response = await self._client.post(
                    f"{self._base_url}/ai/validate", json=payload, headers=self._headers(),
                    timeout=self._timeout,
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(
                        f"{self._base_url}/ai/validate", json=payload, headers=self._headers(),
                    )
            response.raise_for_status()
            remote = ValidationOutcome.model_validate(response.json())
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.error("validation_service_error", field_id=field.id, error=str(e))
            raise ValidationServiceError(f"Failed to validate response: {e}") from e

        if remote.is_valid and remote.suggestion is None and local.suggestion:
            return local
        return remote


def create_validator_backend(settings: Settings | None = None) -> FieldValidatorBackend:
    """Pick the validator configured by ``Settings.validation_backend``."""
    settings = settings or get_settings()
    if settings.validation_backend == Backend.REMOTE:
        return HttpValidationService(
            base_url=settings.ai_api_url,
            api_key=settings.ai_api_key,
            timeout=settings.validation_timeout_seconds,
        )
    return LocalValidator(suggestion_domain=settings.email_suggestion_domain)
