"""AgentCognition — one chat turn through emotion, memory, dispatch and personality.

Flow per turn:
  analyze(message) → MemoryService.retrieve → AiDispatcher (system prompt
  carries emotion + memories) → PersonalityEngine.adapt_response → reply

The memory write and Interaction record run in a background task after the
reply is produced; ``drain()`` awaits outstanding writes (shutdown, tests).
Dispatch failures never reach the caller as exceptions: the reply becomes the
error's generic user message.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import aclosing
from typing import Any

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from app.engines import emotion_analyzer
from app.engines.personality_engine import PersonalityEngine, initialize_traits
from app.llm.dispatcher import AiDispatcher, StreamProgress
from app.llm.errors import DispatchError
from app.memory.service import MemoryService
from app.models.emotion import EmotionAnalysis
from app.models.memory import AgentMemory, RetrievalContext
from app.models.personality import AdaptationContext, PersonalityTraits
from app.models.provider import ChatMessage, CompletionOptions, CompletionRequest

logger = logging.getLogger(__name__)

MEMORY_CONTEXT_LIMIT = 5

# Agent id → personality preset
AGENT_KINDS: dict[str, str] = {
    "emotisense": "mood_engine",
    "carebot": "mood_engine",
    "dreamweaver": "storyteller",
    "cinegen": "storyteller",
    "neochat": "neochat",
    "memora": "neochat",
}


class CognitionReply(BaseModel):
    agent_id: str
    reply: str
    emotion: EmotionAnalysis
    provider: str | None = None
    model: str = ""
    memories_used: int = 0
    degraded: bool = False  # True when the reply is the generic fallback
    partial: bool = False


class AgentCognition:
    """Wires the engines, memory and dispatcher for one agent turn.

    Usage:
        cognition = AgentCognition(dispatcher, MemoryService(engine))
        reply = await cognition.respond("emotisense", "u1", "I feel stuck at work")
    """

    def __init__(
        self,
        dispatcher: AiDispatcher,
        memory: MemoryService,
        personality: PersonalityEngine | None = None,
        traits: Mapping[str, PersonalityTraits] | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.memory = memory
        self.personality = personality or PersonalityEngine()
        self._traits = dict(traits or {})
        self._pending: set[asyncio.Task] = set()

    def traits_for(self, agent_id: str, agent_kind: str | None = None) -> PersonalityTraits:
        if agent_id in self._traits:
            return self._traits[agent_id]
        return initialize_traits(agent_kind or AGENT_KINDS.get(agent_id, agent_id))

    # --- Turn ---

    async def respond(
        self,
        agent_id: str,
        user_id: str,
        message: str,
        history: Sequence[ChatMessage] | None = None,
        context: Mapping[str, Any] | None = None,
        options: CompletionOptions | None = None,
    ) -> CognitionReply:
        context = context or {}
        analysis = emotion_analyzer.analyze(message, context)
        memories = await self._recall(agent_id, user_id, analysis)
        request = self._build_request(agent_id, message, history, analysis, memories, context, options)

        try:
            result = await self.dispatcher.complete(request)
        except DispatchError as e:
            logger.error("Dispatch failed for %s/%s: %s", agent_id, user_id, e)
            reply = CognitionReply(
                agent_id=agent_id, reply=e.user_message, emotion=analysis,
                memories_used=len(memories), degraded=True,
            )
            self._remember(agent_id, user_id, message, reply)
            return reply

        text = self._adapt(agent_id, result.content or "", analysis, context)
        reply = CognitionReply(
            agent_id=agent_id, reply=text, emotion=analysis,
            provider=result.provider, model=result.model, memories_used=len(memories),
        )
        self._remember(agent_id, user_id, message, reply)
        return reply

    async def respond_stream(
        self,
        agent_id: str,
        user_id: str,
        message: str,
        history: Sequence[ChatMessage] | None = None,
        context: Mapping[str, Any] | None = None,
        options: CompletionOptions | None = None,
    ) -> AsyncIterator[dict]:
        """Yield ``chunk`` events as text arrives, then one ``done`` event.

        The ``done`` event carries the personality-adapted full reply. A
        failure before any chunk yields an ``error`` event with the generic
        message instead.
        """
        context = context or {}
        analysis = emotion_analyzer.analyze(message, context)
        memories = await self._recall(agent_id, user_id, analysis)
        request = self._build_request(agent_id, message, history, analysis, memories, context, options)

        progress = StreamProgress()
        try:
            async with aclosing(self.dispatcher.stream_chunks(request, progress)) as chunks:
                async for chunk in chunks:
                    yield {"type": "chunk", "content": chunk}
        except DispatchError as e:
            logger.error("Stream dispatch failed for %s/%s: %s", agent_id, user_id, e)
            reply = CognitionReply(
                agent_id=agent_id, reply=e.user_message, emotion=analysis,
                memories_used=len(memories), degraded=True,
            )
            self._remember(agent_id, user_id, message, reply)
            yield {"type": "error", "message": e.user_message}
            return

        text = self._adapt(agent_id, "".join(progress.pieces), analysis, context)
        reply = CognitionReply(
            agent_id=agent_id, reply=text, emotion=analysis,
            provider=progress.provider, model=progress.model,
            memories_used=len(memories), partial=progress.partial,
        )
        self._remember(agent_id, user_id, message, reply)
        yield {"type": "done", **reply.model_dump(mode="json")}

    # --- Steps ---

    async def _recall(self, agent_id: str, user_id: str, analysis: EmotionAnalysis) -> list[AgentMemory]:
        try:
            memories = await asyncio.to_thread(
                self.memory.retrieve, agent_id, user_id,
                RetrievalContext(current_emotion=analysis.primary_emotion),
            )
        except SQLAlchemyError as e:
            logger.warning("Memory retrieval failed for %s/%s: %s", agent_id, user_id, e)
            return []
        return memories[:MEMORY_CONTEXT_LIMIT]

    def _build_request(
        self,
        agent_id: str,
        message: str,
        history: Sequence[ChatMessage] | None,
        analysis: EmotionAnalysis,
        memories: list[AgentMemory],
        context: Mapping[str, Any],
        options: CompletionOptions | None,
    ) -> CompletionRequest:
        return CompletionRequest(
            agent_id=agent_id,
            message=message,
            history=list(history or []),
            system_prompt=build_system_prompt(agent_id, analysis, memories, context.get("system_prompt")),
            options=options or CompletionOptions(),
        )

    def _adapt(self, agent_id: str, draft: str, analysis: EmotionAnalysis, context: Mapping[str, Any]) -> str:
        stage = context.get("relationship_stage")
        return self.personality.adapt_response(
            draft,
            self.traits_for(agent_id, context.get("agent_kind")),
            AdaptationContext(
                emotion=analysis.primary_emotion,
                relationship_stage=stage if stage in ("first_interaction", "established", "deep_relationship") else None,
            ),
        )

    # --- Background writes ---

    def _remember(self, agent_id: str, user_id: str, message: str, reply: CognitionReply) -> None:
        task = asyncio.create_task(self._write_memory(agent_id, user_id, message, reply))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write_memory(self, agent_id: str, user_id: str, message: str, reply: CognitionReply) -> None:
        emotion = reply.emotion
        try:
            await asyncio.to_thread(
                self.memory.store, agent_id, user_id,
                {"type": "context", "content": message, "emotional_context": emotion.primary_emotion},
            )
            await asyncio.to_thread(
                self.memory.record_interaction,
                agent_id, user_id, message, reply.reply, emotion.primary_emotion, None,
                {
                    "provider": reply.provider,
                    "model": reply.model,
                    "intensity": emotion.intensity,
                    "degraded": reply.degraded,
                    "partial": reply.partial,
                },
            )
        except SQLAlchemyError as e:
            logger.error("Memory write failed for %s/%s: %s", agent_id, user_id, e)

    async def drain(self) -> None:
        """Wait for all pending memory writes."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def build_system_prompt(
    agent_id: str,
    analysis: EmotionAnalysis,
    memories: Sequence[AgentMemory],
    base: str | None = None,
) -> str:
    """System prompt carrying the detected emotion and recalled memories."""
    lines = [base or f"You are {agent_id}, a helpful AI companion."]
    lines.append(
        f"The user currently seems {analysis.primary_emotion} "
        f"(intensity {analysis.intensity}/10). Respond in a {analysis.suggested_tone.replace('_', ' ')} tone."
    )
    if analysis.transition:
        lines.append(analysis.transition.acknowledgment)
    if memories:
        lines.append("What you remember about this user:")
        lines.extend(f"- [{m.memory_type}] {m.text}" for m in memories)
    return "\n".join(lines)
