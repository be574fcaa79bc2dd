"""Tests for the HTTP extraction backend, using httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from voicefill.config import Backend, Settings
from voicefill.errors import ExtractionServiceError
from voicefill.services.field_extraction import (
    HeuristicExtractor,
    HttpExtractionService,
    create_extraction_backend,
)


def _run(handler, fields, transcript="my name is Alex", current_values=None, api_key=""):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            service = HttpExtractionService("http://ai.test/", api_key=api_key, client=client)
            return await service.extract(transcript, fields, current_values or {})

    return asyncio.run(run())


class TestHttpExtractionService:
    def test_posts_wire_payload(self, contact_fields) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"fieldValues": {"name": "Alex", "email": "alex@example.com"}, "confidence": 0.95},
            )

        result = _run(handler, contact_fields, current_values={"name": "Al"}, api_key="secret")

        assert seen["url"] == "http://ai.test/ai/process"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["transcript"] == "my name is Alex"
        assert seen["body"]["currentValues"] == {"name": "Al"}
        assert [f["id"] for f in seen["body"]["fields"]] == ["name", "email"]
        assert result.field_values == {"name": "Alex", "email": "alex@example.com"}
        assert result.confidence == 0.95
        assert result.needs_clarification is False

    def test_non_string_values_are_stringified(self, contact_fields) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"fieldValues": {"name": 42, "email": None}, "confidence": 0.5})

        result = _run(handler, contact_fields)
        assert result.field_values == {"name": "42", "email": ""}

    def test_missing_prompt_is_filled_in(self, contact_fields) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"fieldValues": {"name": "Alex"}, "confidence": 0.6, "needsClarification": True},
            )

        result = _run(handler, contact_fields)
        assert result.needs_clarification is True
        assert result.clarification_prompt.field_id == "email"

    def test_clarification_without_target_is_dropped(self, contact_fields) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "fieldValues": {"name": "Alex", "email": "a@b.com"},
                    "confidence": 0.6,
                    "needsClarification": True,
                },
            )

        result = _run(handler, contact_fields)
        assert result.needs_clarification is False
        assert result.clarification_prompt is None

    def test_service_prompt_kept(self, contact_fields) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "fieldValues": {},
                    "confidence": 0.2,
                    "needsClarification": True,
                    "clarificationPrompt": {"fieldId": "name", "question": "Who are you?"},
                },
            )

        result = _run(handler, contact_fields)
        assert result.clarification_prompt.question == "Who are you?"

    def test_http_error_status(self, contact_fields) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        with pytest.raises(ExtractionServiceError, match="HTTP 500"):
            _run(handler, contact_fields)

    def test_malformed_payload(self, contact_fields) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"fieldValues": {}, "confidence": 7})

        with pytest.raises(ExtractionServiceError, match="malformed"):
            _run(handler, contact_fields)

    def test_not_json(self, contact_fields) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        with pytest.raises(ExtractionServiceError):
            _run(handler, contact_fields)

    def test_timeout(self, contact_fields) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ExtractionServiceError, match="timed out"):
            _run(handler, contact_fields)

    def test_transport_error(self, contact_fields) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ExtractionServiceError, match="Failed to reach"):
            _run(handler, contact_fields)


class TestBackendFactory:
    def test_local(self) -> None:
        assert isinstance(create_extraction_backend(Settings(_env_file=None)), HeuristicExtractor)

    def test_remote(self) -> None:
        settings = Settings(_env_file=None, extraction_backend=Backend.REMOTE, ai_api_url="http://ai.test")
        backend = create_extraction_backend(settings)
        assert isinstance(backend, HttpExtractionService)
        asyncio.run(backend.aclose())
