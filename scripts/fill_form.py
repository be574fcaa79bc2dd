"""
CLI tool to fill a form from spoken-style transcript lines.

Each input line is treated as one final recognition result. When the
session asks a clarification question, the answer is read from the
terminal (an empty answer skips the question).

Usage:
    python scripts/fill_form.py <form.json> [transcript.txt]

Examples:
    # Form fields as a JSON list (or {"fields": [...]}), transcript on stdin
    echo "my name is Jane Doe email jane@example.com" | python scripts/fill_form.py form.json

    # Use the remote extraction service
    VOICEFILL_EXTRACTION_BACKEND=remote python scripts/fill_form.py form.json notes.txt
"""

import argparse
import asyncio
import json
import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from dotenv import load_dotenv
load_dotenv(".env.local")

from voicefill.config import get_settings
from voicefill.logging_config import get_logger, setup_logging
from voicefill.schemas.form import FieldSpec
from voicefill.schemas.session import SessionState
from voicefill.services.session_orchestrator import SessionOrchestrator
from voicefill.services.speech_capability import PushSpeechCapability
from voicefill.services.speech_capture import SpeechCaptureSession

setup_logging()
logger = get_logger(__name__)

POLL_SECONDS = 0.02


def load_fields(path: str) -> list[FieldSpec]:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("fields", [])
    return [FieldSpec.model_validate(item) for item in data]


async def settle(orchestrator: SessionOrchestrator, debounce_seconds: float) -> None:
    """Wait out the debounce window and any in-flight extraction."""
    await asyncio.sleep(debounce_seconds + POLL_SECONDS)
    while orchestrator.pending_extractions:
        await asyncio.sleep(POLL_SECONDS)


async def ask(orchestrator: SessionOrchestrator) -> None:
    """Answer clarification questions until the session moves on."""
    while orchestrator.state == SessionState.CLARIFYING:
        prompt = orchestrator.clarification.prompt
        if prompt is None:
            break
        print(f"\n? {prompt.question}")
        for option in prompt.options or []:
            print(f"  - {option}")

        try:
            answer = (await asyncio.to_thread(input, "> ")).strip()
        except EOFError:
            # Transcript came in on stdin; nothing left to answer with
            answer = ""
        if not answer:
            orchestrator.cancel(keep_recording=True)
            break

        outcome = await orchestrator.respond(answer, keep_recording=True)
        if not outcome.resolved:
            print(f"  {outcome.error}")
            if outcome.validation and outcome.validation.suggestion:
                print(f"  Did you mean {outcome.validation.suggestion}?")


async def fill_form(fields: list[FieldSpec], lines: list[str]) -> dict[str, str]:
    """Run one fill session over ``lines`` and return the submitted values."""
    settings = get_settings()
    capability = PushSpeechCapability(language=settings.speech_language)
    orchestrator = SessionOrchestrator(
        fields=fields,
        capture=SpeechCaptureSession(capability, debounce_ms=settings.debounce_ms),
        settings=settings,
    )

    try:
        orchestrator.start()
        for line in lines:
            if not line.strip():
                continue
            capability.push_result(True, line)
            await settle(orchestrator, settings.debounce_seconds)
            await ask(orchestrator)

        orchestrator.stop()
        await settle(orchestrator, 0)
        for notice in orchestrator.notices:
            print(f"! {notice.message}", file=sys.stderr)
        return dict(orchestrator.submit())
    finally:
        await orchestrator.aclose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Fill a form from transcript lines")
    parser.add_argument("form", help="JSON file with the form's fields")
    parser.add_argument("transcript", nargs="?", help="Transcript file (default: stdin)")
    args = parser.parse_args()

    fields = load_fields(args.form)
    if args.transcript:
        with open(args.transcript, encoding="utf-8") as f:
            lines = f.read().splitlines()
    else:
        lines = sys.stdin.read().splitlines()

    values = asyncio.run(fill_form(fields, lines))
    print(json.dumps(values, indent=2))


if __name__ == "__main__":
    main()
