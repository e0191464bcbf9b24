"""Provider and completion models.

ProviderConfig is the immutable catalog entry built at startup.
CompletionRequest / CompletionResult are the normalized shapes every adapter
translates to and from its provider-specific wire format.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from app.config import ProviderId

AuthStyle = Literal["bearer", "x-api-key", "query", "xi-api-key", "raw"]
Capability = Literal["chat", "stream", "image", "audio", "video"]
Role = Literal["system", "user", "assistant"]


class ProviderConfig(BaseModel):
    """Catalog entry for one third-party AI provider."""

    model_config = ConfigDict(frozen=True)

    id: ProviderId
    base_url: str
    api_key: str = ""
    auth_style: AuthStyle = "bearer"
    default_model: str = ""
    supported_models: frozenset[str] = frozenset()
    capabilities: frozenset[Capability] = frozenset()
    extra_headers: tuple[tuple[str, str], ...] = ()

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities


class ChatMessage(BaseModel):
    role: Role
    content: str


class CompletionOptions(BaseModel):
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    stream: bool = False
    provider: ProviderId | None = None  # Explicit override, wins over affinity


class CompletionRequest(BaseModel):
    """One inbound turn, owned by the dispatcher for the request lifetime."""

    agent_id: str
    message: str
    history: list[ChatMessage] = Field(default_factory=list)
    system_prompt: str | None = None
    options: CompletionOptions = Field(default_factory=CompletionOptions)

    @property
    def input_size(self) -> int:
        return len(self.message)


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0


class CompletionResult(BaseModel):
    content: str | None = None
    provider: ProviderId
    model: str = ""
    usage: Usage | None = None
    raw: Any = None


class StreamResult(BaseModel):
    """Outcome of a streamed dispatch.

    A stream interrupted after the first chunk is a partial success.
    """

    provider: ProviderId
    model: str = ""
    chunks: int = 0
    content: str = ""
    partial: bool = False
    cancelled: bool = False


class DispatchAttempt(BaseModel):
    """One provider attempt, reported to the observability sink."""

    agent_id: str
    provider: ProviderId
    attempt: int = 1
    status: int | None = None  # HTTP status, None on transport failure
    latency_ms: float = 0.0
    input_size: int = 0
    error: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
