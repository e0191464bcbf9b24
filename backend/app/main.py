"""Persona Cognition FastAPI Application.

Entry point for the backend server. The lifespan builds the provider
registry, the dispatcher and media clients, the memory service and the
cognition pipeline, then wires them into the routers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.agents.cognition import AgentCognition
from app.api.health import router as health_router
from app.api.health import set_dependencies as set_health_deps
from app.api.v1.chat import router as chat_router
from app.api.v1.chat import set_dependencies as set_chat_deps
from app.api.v1.emotion import router as emotion_router
from app.api.v1.memory import router as memory_router
from app.api.v1.memory import set_dependencies as set_memory_deps
from app.api.v1.providers import router as providers_router
from app.api.v1.providers import set_dependencies as set_provider_deps
from app.config import settings
from app.db.database import create_db_and_tables, engine
from app.llm.dispatcher import AiDispatcher
from app.memory.service import MemoryService
from app.providers.media import MediaGenerator
from app.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    create_db_and_tables()

    registry = ProviderRegistry.from_settings(settings)
    dispatcher = AiDispatcher(registry)
    media = MediaGenerator(registry)
    memory = MemoryService(engine)
    cognition = AgentCognition(dispatcher, memory)

    set_health_deps(registry, dispatcher)
    set_chat_deps(cognition)
    set_memory_deps(memory)
    set_provider_deps(registry, media)

    configured = registry.configured_providers()
    if configured:
        logger.info("Providers configured: %s", ", ".join(configured))
    else:
        logger.warning("No provider API key set; chat replies will use the fallback message")

    yield

    # Shutdown: finish background memory writes, then close HTTP clients
    await cognition.drain()
    await dispatcher.aclose()
    await media.aclose()


app = FastAPI(
    title="Persona Cognition",
    description="Emotion, memory, personality and multi-provider dispatch for AI persona agents",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


# Global exception handler: internal details never reach the client
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    if isinstance(exc, HTTPException):
        raise exc
    logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error."},
    )


# Routes
app.include_router(health_router)
app.include_router(chat_router)
app.include_router(emotion_router)
app.include_router(memory_router)
app.include_router(providers_router)


@app.get("/")
async def root():
    return {"name": "Persona Cognition", "version": "0.1.0", "status": "running"}
