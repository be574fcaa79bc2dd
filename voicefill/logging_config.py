"""
Logging setup.

Everything logs through structlog: JSON lines in production, a console
renderer in development. Correlation ids live in structlog's own context
variables, so whatever is bound with
``structlog.contextvars.bound_contextvars`` (``trace_id`` per HTTP
request, ``session_id`` per fill session) lands on every entry logged
inside that block, including entries from stdlib loggers.

Usage:
    from voicefill.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("extraction_started", seq=3, transcript_length=42)
"""

from __future__ import annotations

import logging
import sys
import uuid
from typing import Optional

import structlog

from voicefill.config import get_settings

QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "uvicorn.access")


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


def setup_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """
    Configure structlog and route stdlib records (uvicorn, httpx) through it.

    Args:
        level: Root log level. Defaults to ``Settings.log_level``.
        json_logs: Render JSON lines. Defaults to on in production.
    """
    settings = get_settings()
    level = (level or settings.log_level).upper()
    if json_logs is None:
        json_logs = settings.is_production

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if json_logs:
        renderers: list[structlog.types.Processor] = [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
