"""
FastAPI API Server.

REST API for voice-driven form filling: fill sessions fed by the
respondent's browser recognizer, plus the ``/ai`` extraction and
validation endpoints.

Start with:
    uvicorn voicefill.api_server:app --reload --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from dotenv import load_dotenv
load_dotenv(".env.local")

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from voicefill.api import sessions
from voicefill.api.ai import router as ai_router
from voicefill.api.middleware import RequestIdMiddleware
from voicefill.config import get_settings
from voicefill.logging_config import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle hooks."""
    settings = get_settings()
    logger.info(
        "api_server_starting",
        environment=settings.environment.value,
        extraction_backend=settings.extraction_backend.value,
    )
    yield
    await sessions.registry.aclose()
    logger.info("api_server_stopping")


app = FastAPI(
    title="Voice Form Fill API",
    description="Voice-driven, AI-assisted form filling",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions.router)
app.include_router(ai_router)


@app.get("/health", tags=["System"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "service": "voicefill"}


@app.get("/", tags=["System"])
async def root() -> dict[str, str]:
    """API root."""
    return {
        "service": "Voice Form Fill",
        "version": "0.1.0",
        "docs": "/docs",
    }
