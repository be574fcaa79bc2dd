"""
API Middleware.

Request ID injection and structured access logging for every incoming
API request.
"""

from __future__ import annotations

import time
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from voicefill.logging_config import get_logger, new_request_id

logger = get_logger(__name__)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Propagate ``X-Request-ID`` and time every request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or new_request_id()
        start = time.monotonic()

        with structlog.contextvars.bound_contextvars(trace_id=request_id):
            response = await call_next(request)
            elapsed_ms = round((time.monotonic() - start) * 1000, 1)

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time-Ms"] = str(elapsed_ms)
            logger.info(
                "api_request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                elapsed_ms=elapsed_ms,
            )
        return response
