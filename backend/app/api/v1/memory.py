"""Agent Memory API — store, recall and curate per-(agent, user) memories.

POST   /api/v1/memory/{agent_id}/{user_id}                 — store one memory
GET    /api/v1/memory/{agent_id}/{user_id}                 — retrieve (filtered, decayed)
GET    /api/v1/memory/{agent_id}/{user_id}/clusters/{theme}
GET    /api/v1/memory/{agent_id}/{user_id}/summary
GET    /api/v1/memory/{agent_id}/{user_id}/emotional-context
POST   /api/v1/memory/items/{memory_id}/feedback           — rating-driven importance update
DELETE /api/v1/memory/items/{memory_id}                    — forget (tombstone)
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from app.memory.service import MemoryService
from app.models.memory import (
    MEMORY_TYPES,
    AgentMemory,
    EmotionalContextSummary,
    MemoryCluster,
    MemoryFeedback,
    MemoryInput,
    MemorySummary,
    RetrievalContext,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/memory", tags=["memory"])

_memory: MemoryService | None = None


def set_dependencies(memory: MemoryService) -> None:
    global _memory
    _memory = memory


def _get_memory() -> MemoryService:
    if _memory is None:
        raise HTTPException(status_code=503, detail="Memory not initialized")
    return _memory


# === Request / Response models ===


class StoreMemoryRequest(BaseModel):
    type: str
    content: Any = None
    emotional_context: str = "neutral"


class MemoryListResponse(BaseModel):
    agent_id: str
    user_id: str
    memories: list[AgentMemory]
    total: int


class ForgetResponse(BaseModel):
    memory_id: str
    forgotten: bool


# === Endpoints ===


@router.post("/{agent_id}/{user_id}", response_model=AgentMemory, status_code=201)
def store_memory(agent_id: str, user_id: str, request: StoreMemoryRequest) -> AgentMemory:
    memory = _get_memory().store(agent_id, user_id, MemoryInput(**request.model_dump()))
    if memory is None:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid memory: type must be one of {list(MEMORY_TYPES)} and content must not be empty",
        )
    return memory


@router.get("/{agent_id}/{user_id}", response_model=MemoryListResponse)
def retrieve_memories(
    agent_id: str,
    user_id: str,
    memory_types: list[str] | None = Query(default=None),
    emotional_context: str | None = None,
    min_importance: int | None = Query(default=None, ge=0, le=10),
    days_back: int | None = Query(default=None, ge=1),
    current_emotion: str | None = None,
    limit: int | None = Query(default=None, ge=1, le=50),
) -> MemoryListResponse:
    context = RetrievalContext(
        memory_types=memory_types,
        emotional_context=emotional_context,
        min_importance=min_importance,
        days_back=days_back,
        current_emotion=current_emotion,
        limit=limit,
    )
    memories = _get_memory().retrieve(agent_id, user_id, context)
    return MemoryListResponse(agent_id=agent_id, user_id=user_id, memories=memories, total=len(memories))


@router.get("/{agent_id}/{user_id}/clusters/{theme}", response_model=MemoryCluster)
def cluster_memories(agent_id: str, user_id: str, theme: str) -> MemoryCluster:
    cluster = _get_memory().cluster_by_theme(agent_id, user_id, theme)
    if cluster is None:
        raise HTTPException(status_code=404, detail=f"No memories found for theme '{theme}'")
    return cluster


@router.get("/{agent_id}/{user_id}/summary", response_model=MemorySummary)
def memory_summary(
    agent_id: str,
    user_id: str,
    days: int = Query(default=30, ge=1, le=3650),
) -> MemorySummary:
    return _get_memory().summary(agent_id, user_id, days=days)


@router.get("/{agent_id}/{user_id}/emotional-context", response_model=EmotionalContextSummary)
def emotional_context(agent_id: str, user_id: str, emotion: str | None = None) -> EmotionalContextSummary:
    return _get_memory().emotional_context(agent_id, user_id, emotion)


@router.delete("/items/{memory_id}", response_model=ForgetResponse)
def forget_memory(memory_id: str, reason: str = Query(default="user_request", max_length=200)) -> ForgetResponse:
    if not _get_memory().forget(memory_id, reason):
        raise HTTPException(status_code=404, detail=f"Memory {memory_id} not found")
    return ForgetResponse(memory_id=memory_id, forgotten=True)


@router.post("/items/{memory_id}/feedback", response_model=AgentMemory)
def memory_feedback(memory_id: str, feedback: MemoryFeedback) -> AgentMemory:
    memory = _get_memory().update_importance(memory_id, feedback)
    if memory is None:
        raise HTTPException(status_code=404, detail=f"Memory {memory_id} not found")
    return memory
