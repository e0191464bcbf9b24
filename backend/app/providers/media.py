"""Media generation — images, video, speech synthesis and transcription.

Vendors:
  openai      POST images/generations            → data[0].url
  runwayml    POST generations/images            → image_url
              POST generations/videos            → poll generations/{id}
  elevenlabs  POST text-to-speech/{voice_id}     → audio bytes
  assemblyai  POST upload, POST transcript       → poll transcript/{id}

Long-running jobs are polled every ``poll_interval`` seconds for at most
``max_polls`` checks. All calls use the generation timeout.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from app.config import settings
from app.llm.errors import (
    ConnectionFailedError,
    DispatchError,
    MalformedResponseError,
    ProviderTimeoutError,
    UnconfiguredError,
    error_for_status,
)
from app.models.media import MediaResult, Transcript
from app.providers.adapters import auth_headers
from app.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

PENDING_STATUSES = frozenset({"processing", "queued", "pending", "running"})


class GenerationFailedError(DispatchError):
    """The vendor reported the job as failed."""


class MediaGenerator:
    """Specialty media calls, sharing the registry and error taxonomy of chat dispatch."""

    def __init__(
        self,
        registry: ProviderRegistry,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        poll_interval: float | None = None,
        max_polls: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self._owns_client = client is None
        self.timeout = timeout or settings.generation_timeout
        self.client = client or httpx.AsyncClient(timeout=self.timeout)
        self.poll_interval = settings.media_poll_interval if poll_interval is None else poll_interval
        self.max_polls = max_polls or settings.media_poll_max_attempts
        self._sleep = sleep

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _request(self, provider: str, method: str, path: str, payload: dict | None = None) -> httpx.Response:
        config = self.registry.get(provider)
        if config is None or not config.configured:
            raise UnconfiguredError(f"{provider} is not configured", provider)
        url = f"{config.base_url.rstrip('/')}/{path.lstrip('/')}"
        try:
            response = await self.client.request(
                method, url, json=payload, headers=auth_headers(config), timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"{provider} timed out after {self.timeout:.0f}s", provider) from e
        except httpx.TransportError as e:
            raise ConnectionFailedError(f"{provider} connection failed: {e}", provider) from e
        if not response.is_success:
            raise error_for_status(response.status_code, response.text, provider)
        return response

    async def _json(self, provider: str, method: str, path: str, payload: dict | None = None) -> dict[str, Any]:
        response = await self._request(provider, method, path, payload)
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(f"{provider} returned invalid JSON", provider) from e
        if not isinstance(data, dict):
            raise MalformedResponseError(f"{provider} returned unexpected payload", provider)
        return data

    # --- Images ---

    async def generate_image(self, prompt: str, provider: str | None = None, size: str = "1024x1024") -> MediaResult:
        """Generate one image. Defaults to OpenAI, then RunwayML."""
        if provider is None:
            provider = next(
                (p for p in ("openai", "runwayml") if self.registry.is_configured(p)),
                "openai",
            )
        if provider == "openai":
            data = await self._json(provider, "POST", "images/generations", {
                "model": "dall-e-3",
                "prompt": prompt,
                "n": 1,
                "size": size,
            })
            url = (data.get("data") or [{}])[0].get("url")
            return MediaResult(provider="openai", kind="image", url=url)
        if provider == "runwayml":
            width, _, height = size.partition("x")
            data = await self._json(provider, "POST", "generations/images", {
                "model": "stable-diffusion",
                "prompt": prompt,
                "width": int(width or 512),
                "height": int(height or 512),
                "steps": 20,
            })
            return MediaResult(provider="runwayml", kind="image", url=data.get("image_url"), job_id=data.get("id"))
        raise DispatchError(f"Image generation not supported for {provider}", provider)

    # --- Video ---

    async def generate_video(self, prompt: str, duration: int = 10, model: str | None = None) -> MediaResult:
        """Submit a RunwayML video job and poll until it completes or fails."""
        config = self.registry.get("runwayml")
        data = await self._json("runwayml", "POST", "generations/videos", {
            "model": model or (config.default_model if config else ""),
            "prompt": prompt,
            "duration": duration,
        })
        job_id = data.get("id")
        status = data.get("status", "completed")
        polls = 0
        while status in PENDING_STATUSES:
            if polls >= self.max_polls:
                raise ProviderTimeoutError(f"RunwayML generation {job_id} timed out after {polls} polls", "runwayml")
            await self._sleep(self.poll_interval)
            polls += 1
            data = await self._json("runwayml", "GET", f"generations/{job_id}")
            status = data.get("status", "")
            logger.debug("RunwayML job %s status=%s (poll %d)", job_id, status, polls)
        if status == "failed":
            raise GenerationFailedError(f"RunwayML generation failed: {data.get('error')}", "runwayml")
        return MediaResult(
            provider="runwayml", kind="video",
            url=data.get("video_url") or data.get("image_url"),
            job_id=job_id, status=status, polls=polls,
        )

    # --- Speech ---

    async def synthesize_speech(
        self,
        text: str,
        voice_id: str | None = None,
        stability: float = 0.5,
        similarity_boost: float = 0.5,
    ) -> bytes:
        """ElevenLabs text-to-speech. Returns the raw audio bytes."""
        config = self.registry.get("elevenlabs")
        voice = voice_id or settings.elevenlabs_default_voice_id
        response = await self._request("elevenlabs", "POST", f"text-to-speech/{voice}", {
            "text": text,
            "model_id": config.default_model if config else "",
            "voice_settings": {"stability": stability, "similarity_boost": similarity_boost},
        })
        logger.info("Synthesized %d bytes of speech (voice=%s)", len(response.content), voice)
        return response.content

    async def transcribe_audio(self, audio_url: str) -> Transcript:
        """AssemblyAI upload, transcript submission and polling."""
        config = self.registry.get("assemblyai")
        upload = await self._json("assemblyai", "POST", "upload", {"audio_url": audio_url})
        job = await self._json("assemblyai", "POST", "transcript", {
            "audio_url": upload.get("upload_url") or audio_url,
            "model": config.default_model if config else "",
        })
        job_id = job.get("id", "")
        polls = 0
        while True:
            data = await self._json("assemblyai", "GET", f"transcript/{job_id}")
            status = data.get("status")
            if status == "completed":
                return Transcript(job_id=job_id, text=data.get("text"), polls=polls)
            if status == "error":
                raise GenerationFailedError(f"Transcription failed: {data.get('error')}", "assemblyai")
            polls += 1
            if polls >= self.max_polls:
                raise ProviderTimeoutError(f"Transcription {job_id} timed out after {polls} polls", "assemblyai")
            await self._sleep(self.poll_interval)
