"""Media generation results (image, video, speech, transcription)."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from app.config import ProviderId

MediaKind = Literal["image", "video", "audio", "transcript"]


class MediaResult(BaseModel):
    provider: ProviderId
    kind: MediaKind
    url: str | None = None
    job_id: str | None = None
    status: str = "completed"
    polls: int = 0


class Transcript(BaseModel):
    provider: ProviderId = "assemblyai"
    job_id: str
    text: str | None = None
    polls: int = 0
