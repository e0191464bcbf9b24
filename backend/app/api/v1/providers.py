"""Providers API — catalog status and media generation.

GET  /api/v1/providers                 — configured / capabilities per provider
POST /api/v1/providers/images          — image generation (OpenAI or RunwayML)
POST /api/v1/providers/videos          — RunwayML video generation (polls to completion)
POST /api/v1/providers/speech          — ElevenLabs text-to-speech (audio/mpeg)
POST /api/v1/providers/transcriptions  — AssemblyAI transcription (polls to completion)
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field

from app.config import ProviderId
from app.llm.errors import DispatchError, UnconfiguredError
from app.models.media import MediaResult, Transcript
from app.providers.media import MediaGenerator
from app.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/providers", tags=["providers"])

_registry: ProviderRegistry | None = None
_media: MediaGenerator | None = None


def set_dependencies(registry: ProviderRegistry, media: MediaGenerator) -> None:
    global _registry, _media
    _registry = registry
    _media = media


def _get_registry() -> ProviderRegistry:
    if _registry is None:
        raise HTTPException(status_code=503, detail="Provider registry not initialized")
    return _registry


def _get_media() -> MediaGenerator:
    if _media is None:
        raise HTTPException(status_code=503, detail="Media generation not initialized")
    return _media


def _http_error(e: DispatchError) -> HTTPException:
    """Map a dispatch failure onto a generic HTTP error. Detail stays in the logs."""
    logger.error("Media request failed (%s): %s", e.provider, e)
    if isinstance(e, UnconfiguredError):
        return HTTPException(status_code=503, detail=f"Provider {e.provider} is not configured")
    return HTTPException(status_code=502, detail=e.user_message)


# === Request / Response Models ===


class ImageRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=4000)
    provider: ProviderId | None = None
    size: str = Field(default="1024x1024", pattern=r"^\d+x\d+$")


class VideoRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=4000)
    duration: int = Field(default=10, ge=1, le=60)
    model: str | None = None


class SpeechRequest(BaseModel):
    text: str = Field(min_length=1, max_length=5000)
    voice_id: str | None = None
    stability: float = Field(default=0.5, ge=0.0, le=1.0)
    similarity_boost: float = Field(default=0.5, ge=0.0, le=1.0)


class TranscriptionRequest(BaseModel):
    audio_url: str = Field(min_length=1, max_length=2000)


class ProviderStatusResponse(BaseModel):
    providers: dict[str, dict]
    configured: list[str]


# === Endpoints ===


@router.get("", response_model=ProviderStatusResponse)
def provider_status() -> ProviderStatusResponse:
    registry = _get_registry()
    return ProviderStatusResponse(providers=registry.status(), configured=registry.configured_providers())


@router.post("/images", response_model=MediaResult)
async def generate_image(request: ImageRequest) -> MediaResult:
    try:
        return await _get_media().generate_image(request.prompt, provider=request.provider, size=request.size)
    except DispatchError as e:
        raise _http_error(e) from e


@router.post("/videos", response_model=MediaResult)
async def generate_video(request: VideoRequest) -> MediaResult:
    try:
        return await _get_media().generate_video(request.prompt, duration=request.duration, model=request.model)
    except DispatchError as e:
        raise _http_error(e) from e


@router.post("/speech")
async def synthesize_speech(request: SpeechRequest) -> Response:
    try:
        audio = await _get_media().synthesize_speech(
            request.text,
            voice_id=request.voice_id,
            stability=request.stability,
            similarity_boost=request.similarity_boost,
        )
    except DispatchError as e:
        raise _http_error(e) from e
    return Response(content=audio, media_type="audio/mpeg")


@router.post("/transcriptions", response_model=Transcript)
async def transcribe(request: TranscriptionRequest) -> Transcript:
    try:
        return await _get_media().transcribe_audio(request.audio_url)
    except DispatchError as e:
        raise _http_error(e) from e
