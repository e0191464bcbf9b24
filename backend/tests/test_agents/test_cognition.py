"""Tests for AgentCognition: full turn, degraded fallback, streaming, memory writes."""

from __future__ import annotations

import json
import random
from unittest.mock import MagicMock

import httpx
import pytest
from conftest import make_dispatcher, make_registry
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from app.agents.cognition import AgentCognition, build_system_prompt
from app.engines import emotion_analyzer
from app.engines.personality_engine import PersonalityEngine, initialize_traits
from app.llm.errors import FALLBACK_MESSAGE
from app.memory.service import MemoryService
from app.models.memory import AgentMemory, Interaction
from app.models.personality import PersonalityTraits

NEUTRAL_MESSAGE = "The train leaves at noon"
OPENAI_REPLY = {"model": "gpt-4", "choices": [{"message": {"content": "See you there."}}]}


def _cognition(memory, handler, *providers: str) -> AgentCognition:
    dispatcher = make_dispatcher(make_registry(*providers), handler)
    return AgentCognition(
        dispatcher,
        memory,
        personality=PersonalityEngine(rng=random.Random(1)),
        traits={"neochat": PersonalityTraits(agreeableness=5)},
    )


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json=OPENAI_REPLY)


def _interactions(engine) -> list[Interaction]:
    with Session(engine) as session:
        return list(session.exec(select(Interaction)).all())


class TestRespond:
    @pytest.mark.asyncio
    async def test_successful_turn(self, memory_service, db_engine):
        cognition = _cognition(memory_service, _ok, "openai")
        reply = await cognition.respond("neochat", "u1", NEUTRAL_MESSAGE)
        await cognition.drain()

        assert reply.reply == "See you there."
        assert reply.provider == "openai"
        assert reply.model == "gpt-4"
        assert reply.degraded is False
        assert reply.emotion.primary_emotion == "neutral"

        stored = memory_service.retrieve("neochat", "u1")
        assert [m.memory_type for m in stored] == ["context"]
        assert stored[0].text == NEUTRAL_MESSAGE

        [interaction] = _interactions(db_engine)
        assert interaction.agent_response == "See you there."
        assert interaction.details["provider"] == "openai"
        assert interaction.details["degraded"] is False

    @pytest.mark.asyncio
    async def test_memories_reach_system_prompt(self, memory_service):
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json=OPENAI_REPLY)

        memory_service.store("neochat", "u1", {"type": "fact", "content": "Has a dog named Rex"})
        cognition = _cognition(memory_service, handler, "openai")
        reply = await cognition.respond("neochat", "u1", NEUTRAL_MESSAGE)
        await cognition.drain()

        system = seen[0]["messages"][0]
        assert system["role"] == "system"
        assert "- [fact] Has a dog named Rex" in system["content"]
        assert reply.memories_used == 1

    @pytest.mark.asyncio
    async def test_memory_context_capped(self, memory_service):
        for i in range(7):
            memory_service.store("neochat", "u1", {"type": "fact", "content": f"Fact number {i}"})
        cognition = _cognition(memory_service, _ok, "openai")
        reply = await cognition.respond("neochat", "u1", NEUTRAL_MESSAGE)
        await cognition.drain()
        assert reply.memories_used == 5

    @pytest.mark.asyncio
    async def test_reply_adapted_to_emotion(self, memory_service):
        cognition = _cognition(memory_service, _ok, "openai")
        reply = await cognition.respond("neochat", "u1", "I feel so sad today")
        await cognition.drain()

        assert reply.emotion.primary_emotion == "sad"
        assert reply.reply.endswith("See you there.")
        assert reply.reply != "See you there."

    @pytest.mark.asyncio
    async def test_degraded_when_no_provider(self, memory_service, db_engine):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no HTTP call expected")

        cognition = _cognition(memory_service, handler)
        reply = await cognition.respond("neochat", "u1", NEUTRAL_MESSAGE)
        await cognition.drain()

        assert reply.reply == FALLBACK_MESSAGE
        assert reply.degraded is True
        assert reply.provider is None
        [interaction] = _interactions(db_engine)
        assert interaction.details["degraded"] is True

    @pytest.mark.asyncio
    async def test_memory_failure_does_not_break_turn(self):
        memory = MagicMock(spec=MemoryService)
        memory.retrieve.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
        memory.store.side_effect = OperationalError("INSERT", {}, Exception("database is locked"))

        cognition = _cognition(memory, _ok, "openai")
        reply = await cognition.respond("neochat", "u1", NEUTRAL_MESSAGE)
        await cognition.drain()

        assert reply.reply == "See you there."
        assert reply.memories_used == 0
        memory.record_interaction.assert_not_called()


class TestRespondStream:
    @pytest.mark.asyncio
    async def test_chunks_then_done(self, memory_service):
        def handler(request: httpx.Request) -> httpx.Response:
            body = "".join(
                f'data: {{"choices":[{{"delta":{{"content":"{p}"}}}}]}}\n\n' for p in ("See you ", "there.")
            )
            return httpx.Response(200, content=(body + "data: [DONE]\n\n").encode())

        cognition = _cognition(memory_service, handler, "openai")
        events = [e async for e in cognition.respond_stream("neochat", "u1", NEUTRAL_MESSAGE)]
        await cognition.drain()

        assert [e["type"] for e in events] == ["chunk", "chunk", "done"]
        assert [e["content"] for e in events[:2]] == ["See you ", "there."]
        done = events[-1]
        assert done["reply"] == "See you there."
        assert done["provider"] == "openai"
        assert done["partial"] is False
        assert done["emotion"]["primary_emotion"] == "neutral"

    @pytest.mark.asyncio
    async def test_error_event_when_no_provider(self, memory_service, db_engine):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no HTTP call expected")

        cognition = _cognition(memory_service, handler)
        events = [e async for e in cognition.respond_stream("neochat", "u1", NEUTRAL_MESSAGE)]
        await cognition.drain()

        assert events == [{"type": "error", "message": FALLBACK_MESSAGE}]
        assert len(_interactions(db_engine)) == 1

    @pytest.mark.asyncio
    async def test_abort_closes_provider_stream(self, memory_service):
        closed: list[bool] = []

        async def chunks(request, progress=None):
            try:
                yield "See you "
                yield "there."
            finally:
                closed.append(True)

        cognition = _cognition(memory_service, _ok, "openai")
        cognition.dispatcher.stream_chunks = chunks
        stream = cognition.respond_stream("neochat", "u1", NEUTRAL_MESSAGE)
        assert (await stream.__anext__())["content"] == "See you "
        await stream.aclose()

        assert closed == [True]


class TestTraits:
    def test_agent_kind_mapping(self, memory_service):
        cognition = AgentCognition(MagicMock(), memory_service)
        assert cognition.traits_for("emotisense") == initialize_traits("mood_engine")
        assert cognition.traits_for("dreamweaver") == initialize_traits("storyteller")

    def test_explicit_kind_and_override(self, memory_service):
        custom = PersonalityTraits(wisdom=2)
        cognition = AgentCognition(MagicMock(), memory_service, traits={"memora": custom})
        assert cognition.traits_for("memora") is custom
        assert cognition.traits_for("somebody", "zen_agent") == initialize_traits("zen_agent")


class TestSystemPrompt:
    def test_emotion_and_transition(self):
        analysis = emotion_analyzer.analyze("I am so sad", {"previous_emotion": "happy"})
        prompt = build_system_prompt("carebot", analysis, [])
        assert prompt.startswith("You are carebot, a helpful AI companion.")
        assert "The user currently seems sad" in prompt
        assert analysis.transition.acknowledgment in prompt
        assert "What you remember" not in prompt

    def test_memories_and_base(self):
        memory = AgentMemory(agent_id="memora", user_id="u1", memory_type="preference", content={"text": "Likes tea"})
        prompt = build_system_prompt("memora", emotion_analyzer.analyze("hello"), [memory], base="Custom base.")
        lines = prompt.splitlines()
        assert lines[0] == "Custom base."
        assert lines[-1] == "- [preference] Likes tea"
