"""Chat API — one agent turn, blocking or streamed.

POST /api/v1/agents/{agent_id}/chat         — full reply as JSON
POST /api/v1/agents/{agent_id}/chat/stream  — SSE: chunk events, then done

Dispatch failures surface as a generic reply (``degraded: true``), never as 5xx.
"""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from typing import Any

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from app.agents.cognition import AgentCognition, CognitionReply
from app.config import ProviderId
from app.models.provider import ChatMessage, CompletionOptions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["chat"])

_cognition: AgentCognition | None = None


def set_dependencies(cognition: AgentCognition) -> None:
    """Wire up the cognition pipeline (called from main.py lifespan)."""
    global _cognition
    _cognition = cognition


def _get_cognition() -> AgentCognition:
    if _cognition is None:
        raise HTTPException(status_code=503, detail="Cognition pipeline not initialized")
    return _cognition


# === Request / Response Models ===


class ChatRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=8000)
    history: list[ChatMessage] = Field(default_factory=list, max_length=100)
    context: dict[str, Any] = Field(default_factory=dict)
    provider: ProviderId | None = None
    model: str | None = None
    max_tokens: int | None = Field(default=None, ge=1, le=32000)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)

    def options(self) -> CompletionOptions:
        return CompletionOptions(
            provider=self.provider,
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )


# === Endpoints ===


@router.post("/agents/{agent_id}/chat", response_model=CognitionReply)
async def chat(agent_id: str, request: ChatRequest) -> CognitionReply:
    cognition = _get_cognition()
    return await cognition.respond(
        agent_id,
        request.user_id,
        request.message,
        history=request.history,
        context=request.context,
        options=request.options(),
    )


@router.post("/agents/{agent_id}/chat/stream")
async def chat_stream(agent_id: str, request: ChatRequest) -> StreamingResponse:
    cognition = _get_cognition()

    async def event_generator():
        events = cognition.respond_stream(
            agent_id,
            request.user_id,
            request.message,
            history=request.history,
            context=request.context,
            options=request.options(),
        )
        async with aclosing(events):
            async for event in events:
                yield f"data: {json.dumps(event)}\n\n"
        yield "data: [DONE]\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
