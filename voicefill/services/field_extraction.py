"""
Field Extraction Service.

Turns free-form speech into structured field values. Two backends share
the ``ExtractionBackend`` contract:

- ``HeuristicExtractor`` runs type-aware pattern matching in-process
  (email/phone patterns, option matching, label-anchored free text).
- ``HttpExtractionService`` asks the AI extraction service over HTTP
  and schema-validates its answer.

Both preserve values the respondent already has when nothing new is
found, score their confidence, and ask for clarification of the first
required field still left unfilled.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
from pydantic import ValidationError

from voicefill.config import Backend, Settings, get_settings
from voicefill.errors import ExtractionServiceError
from voicefill.logging_config import get_logger
from voicefill.schemas.extraction import ExtractionRequest, ExtractionResult
from voicefill.schemas.form import MULTISELECT_SEPARATOR, FieldSpec, FieldType, FieldValue
from voicefill.services.clarification import build_clarification_prompt
from voicefill.services.spoken import (
    find_spoken_email,
    format_number,
    parse_number,
    spoken_digits,
)

logger = get_logger(__name__)

# Per-field confidence by how the value was found
PATTERN_CONFIDENCE = 0.9   # email/phone pattern or option match
ANCHORED_CONFIDENCE = 0.7  # text following the field's label
PRESERVED_CONFIDENCE = 1.0  # already confirmed, carried over

MIN_PHONE_DIGITS = 7

# Words between a label and its value ("name *is* Alex")
LINKING_WORDS = frozenset({"is", "was", "are", "be", "it's", "its", "equals", "of", "like", "would"})
# Words that end a single-line value ("Alex *and* ...", "Alex *my* email")
CONNECTOR_WORDS = frozenset({"and", "my", "our", "the", "also", "then", "so", "a", "an", "your", "um", "uh", "is"})
# Dropped from the front of labels when building anchors ("Your Name" -> "name")
LABEL_FILLER = frozenset({"your", "the", "a", "an", "my", "please", "enter"})

_PHONE_RUN_RE = re.compile(r"\+?\d[\d\s().-]*\d")
_EDGE_PUNCT_RE = re.compile(r"^[^\w@+]+|[^\w@]+$")


class ExtractionBackend(ABC):
    """Maps a transcript onto form fields."""

    @abstractmethod
    async def extract(
        self,
        transcript: str,
        fields: list[FieldSpec],
        current_values: FieldValue,
    ) -> ExtractionResult:
        """
        Raises:
            ExtractionServiceError: The backend failed or answered garbage.
        """
        ...

    async def aclose(self) -> None:
        return None


# -- Heuristic extraction --


@dataclass(frozen=True)
class _Token:
    raw: str   # as spoken, edge punctuation removed
    norm: str  # lowercase


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    for piece in text.split():
        raw = _EDGE_PUNCT_RE.sub("", piece)
        if raw:
            tokens.append(_Token(raw=raw, norm=raw.lower()))
    return tokens


def _phrase(text: str) -> tuple[str, ...]:
    return tuple(t.norm for t in _tokenize(text.replace("_", " ").replace("-", " ")))


def _anchor_phrases(field: FieldSpec) -> list[tuple[str, ...]]:
    """Phrases that introduce a field's value, longest first."""
    label = list(_phrase(field.label))
    while label and label[0] in LABEL_FILLER:
        label.pop(0)
    candidates = [tuple(label), _phrase(field.id)]
    phrases: list[tuple[str, ...]] = []
    for candidate in candidates:
        if candidate and candidate not in phrases:
            phrases.append(candidate)
    return sorted(phrases, key=len, reverse=True)


def _find_phrase(tokens: list[_Token], phrase: tuple[str, ...], taken: set[int]) -> Optional[int]:
    size = len(phrase)
    for start in range(len(tokens) - size + 1):
        span = range(start, start + size)
        if any(i in taken for i in span):
            continue
        if all(tokens[start + k].norm == phrase[k] for k in range(size)):
            return start
    return None


def _locate_anchors(tokens: list[_Token], fields: list[FieldSpec]) -> dict[str, tuple[int, int]]:
    """First occurrence of each field's anchor as (start, end) token indexes.

    Longer phrases claim their tokens first, so "company name" is not
    also read as the anchor of a "name" field.
    """
    wanted = [
        (phrase, field.id)
        for field in fields
        for phrase in _anchor_phrases(field)
    ]
    wanted.sort(key=lambda item: len(item[0]), reverse=True)

    taken: set[int] = set()
    anchors: dict[str, tuple[int, int]] = {}
    for phrase, field_id in wanted:
        if field_id in anchors:
            continue
        start = _find_phrase(tokens, phrase, taken)
        if start is None:
            continue
        end = start + len(phrase)
        anchors[field_id] = (start, end)
        taken.update(range(start, end))
    return anchors


def _anchored_tokens(
    tokens: list[_Token],
    field_id: str,
    anchors: dict[str, tuple[int, int]],
) -> list[_Token]:
    """Tokens between a field's anchor and the next anchor."""
    if field_id not in anchors:
        return []
    _, end = anchors[field_id]
    stop = len(tokens)
    for other_id, (other_start, _) in anchors.items():
        if other_id != field_id and end <= other_start < stop:
            stop = other_start

    span = tokens[end:stop]
    while span and span[0].norm in LINKING_WORDS:
        span = span[1:]
    return span


def _single_line(span: list[_Token]) -> list[_Token]:
    for i, token in enumerate(span):
        if i > 0 and token.norm in CONNECTOR_WORDS:
            return span[:i]
    return span


def _trim_connectors(span: list[_Token]) -> list[_Token]:
    while span and span[-1].norm in CONNECTOR_WORDS:
        span = span[:-1]
    return span


def _match_options(field: FieldSpec, tokens: list[_Token]) -> list[str]:
    """Option values whose label or value appears as whole words."""
    matched: list[str] = []
    for option in field.options or []:
        for phrase in (_phrase(option.label), _phrase(option.value)):
            if phrase and _find_phrase(tokens, phrase, set()) is not None:
                matched.append(option.value)
                break
    return matched


def _find_phone(text: str) -> Optional[str]:
    for match in _PHONE_RUN_RE.finditer(spoken_digits(text)):
        run = match.group(0)
        digits = re.sub(r"\D", "", run)
        if len(digits) >= MIN_PHONE_DIGITS:
            return ("+" if run.startswith("+") else "") + digits
    return None


def _extract_one(
    field: FieldSpec,
    text: str,
    tokens: list[_Token],
    anchors: dict[str, tuple[int, int]],
) -> Optional[str]:
    if field.type == FieldType.EMAIL:
        return find_spoken_email(text)

    if field.type == FieldType.PHONE:
        return _find_phone(text)

    if field.type == FieldType.SELECT and field.options:
        matched = _match_options(field, tokens)
        return matched[0] if matched else None

    if field.type == FieldType.MULTISELECT and field.options:
        matched = _match_options(field, tokens)
        return MULTISELECT_SEPARATOR.join(matched) if matched else None

    span = _anchored_tokens(tokens, field.id, anchors)
    if field.type == FieldType.NUMBER:
        for token in span:
            number = parse_number(token.raw)
            if number is not None:
                return format_number(number)
        return None

    if field.type not in (FieldType.TEXTAREA, FieldType.VOICE):
        span = _single_line(span)
    span = _trim_connectors(span)
    if not span:
        return None
    return " ".join(t.raw for t in span)


def extract_fields(
    transcript: str,
    fields: list[FieldSpec],
    current_values: Optional[FieldValue] = None,
) -> ExtractionResult:
    """
    Heuristic, synchronous extraction.

    Fields already holding a value keep it unless a new one is found:
    extraction never erases confirmed data.
    """
    current_values = current_values or {}
    tokens = _tokenize(transcript)
    anchors = _locate_anchors(tokens, fields)

    values: FieldValue = {}
    scores: list[float] = []
    unfilled: list[FieldSpec] = []

    for field in fields:
        found = _extract_one(field, transcript, tokens, anchors) if tokens else None
        current = current_values.get(field.id, "")

        if found:
            values[field.id] = found
            pattern_based = field.type in (FieldType.EMAIL, FieldType.PHONE) or field.has_options
            scores.append(PATTERN_CONFIDENCE if pattern_based else ANCHORED_CONFIDENCE)
        elif current:
            values[field.id] = current
            scores.append(PRESERVED_CONFIDENCE)
        elif field.required:
            unfilled.append(field)
            scores.append(0.0)

    confidence = round(sum(scores) / len(scores), 3) if scores else 0.0

    result = ExtractionResult(field_values=values, confidence=confidence)
    if unfilled:
        result.needs_clarification = True
        result.clarification_prompt = build_clarification_prompt(unfilled[0])
    return result


class HeuristicExtractor(ExtractionBackend):
    """In-process extraction (no network)."""

    async def extract(
        self,
        transcript: str,
        fields: list[FieldSpec],
        current_values: FieldValue,
    ) -> ExtractionResult:
        logger.info(
            "extraction_started",
            backend="heuristic",
            transcript_length=len(transcript),
            field_count=len(fields),
        )
        result = extract_fields(transcript, fields, current_values)
        logger.info(
            "extraction_complete",
            backend="heuristic",
            fields_extracted=len(result.field_values),
            confidence=result.confidence,
            needs_clarification=result.needs_clarification,
        )
        return result


# -- Remote extraction --


class HttpExtractionService(ExtractionBackend):
    """
    AI extraction over HTTP.

    POSTs ``{transcript, fields, currentValues}`` to ``/ai/process`` and
    validates the JSON answer against ``ExtractionResult``. Any non-2xx
    status, transport failure, timeout, or malformed payload surfaces as
    ``ExtractionServiceError``. Requests are never retried here; the
    next transcript commit is the retry.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def extract(
        self,
        transcript: str,
        fields: list[FieldSpec],
        current_values: FieldValue,
    ) -> ExtractionResult:
        logger.info(
            "extraction_started",
            backend="http",
            transcript_length=len(transcript),
            field_count=len(fields),
        )
        payload = ExtractionRequest(
            transcript=transcript,
            fields=fields,
            current_values=current_values,
        ).to_wire()

        try:
            response = await self._get_client().post(
                f"{self._base_url}/ai/process",
                json=payload,
                headers=self._headers(),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            logger.error("extraction_timeout", timeout=self._timeout)
            raise ExtractionServiceError("Extraction service timed out") from e
        except httpx.HTTPError as e:
            logger.error("extraction_transport_error", error=str(e))
            raise ExtractionServiceError(f"Failed to reach extraction service: {e}") from e

        if response.status_code >= 300:
            logger.error(
                "extraction_http_error",
                status=response.status_code,
                body=response.text[:200],
            )
            raise ExtractionServiceError(
                f"Extraction service returned HTTP {response.status_code}"
            )

        try:
            result = ExtractionResult.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error("extraction_malformed_payload", error=str(e))
            raise ExtractionServiceError("Extraction service returned a malformed payload") from e

        result = _complete_clarification(result, fields, current_values)
        logger.info(
            "extraction_complete",
            backend="http",
            fields_extracted=len(result.field_values),
            confidence=result.confidence,
            needs_clarification=result.needs_clarification,
        )
        return result

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def _complete_clarification(
    result: ExtractionResult,
    fields: list[FieldSpec],
    current_values: FieldValue,
) -> ExtractionResult:
    """Fill in a prompt when the service asked for clarification without one."""
    if not result.needs_clarification or result.clarification_prompt is not None:
        return result

    for field in fields:
        if field.required and not (result.field_values.get(field.id) or current_values.get(field.id)):
            result.clarification_prompt = build_clarification_prompt(field)
            return result

    logger.warning("clarification_without_target", confidence=result.confidence)
    result.needs_clarification = False
    return result


def create_extraction_backend(settings: Settings | None = None) -> ExtractionBackend:
    """Pick the backend configured by ``Settings.extraction_backend``."""
    settings = settings or get_settings()
    if settings.extraction_backend == Backend.REMOTE:
        return HttpExtractionService(
            base_url=settings.ai_api_url,
            api_key=settings.ai_api_key,
            timeout=settings.extraction_timeout_seconds,
        )
    return HeuristicExtractor()
