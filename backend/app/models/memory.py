"""Memory models — per-(agent, user) memories and interaction records.

SQLite stores both tables:
- agent_memory: typed memories with importance, tags and emotional context
- interaction: one row per chat turn (user message, agent reply, rating)

Memories are never physically deleted. Forgetting and archiving overwrite the
content with a tombstone and force importance to 0.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field
from sqlmodel import JSON, Column, SQLModel
from sqlmodel import Field as SQLField

MemoryType = Literal[
    "goal",
    "fact",
    "preference",
    "quirk",
    "context",
    "insight",
    "reminder",
    "experience",
    "relationship",
    "learning",
]

MEMORY_TYPES: tuple[str, ...] = (
    "goal",
    "fact",
    "preference",
    "quirk",
    "context",
    "insight",
    "reminder",
    "experience",
    "relationship",
    "learning",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentMemory(SQLModel, table=True):
    """A memory an agent keeps about one user."""

    __tablename__ = "agent_memory"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    agent_id: str = SQLField(index=True)
    user_id: str = SQLField(index=True)
    memory_type: str
    content: dict = SQLField(default_factory=dict, sa_column=Column(JSON))
    emotional_context: str = "neutral"
    importance_score: int = SQLField(default=5, ge=0, le=10)
    tags: list = SQLField(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = SQLField(default_factory=_utcnow, index=True)
    updated_at: datetime = SQLField(default_factory=_utcnow)

    @property
    def forgotten(self) -> bool:
        return bool(self.content.get("forgotten") or self.content.get("archived"))

    @property
    def text(self) -> str:
        if self.forgotten:
            return "No content"
        return str(self.content.get("text") or self.content)


class Interaction(SQLModel, table=True):
    """One chat turn. Referenced by the cognition core, not owned by it."""

    __tablename__ = "interaction"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    agent_id: str = SQLField(index=True)
    user_id: str = SQLField(index=True)
    user_message: str = ""
    agent_response: str = ""
    emotional_context: str = "neutral"
    rating: int | None = None
    details: dict = SQLField(default_factory=dict, sa_column=Column("metadata", JSON))
    created_at: datetime = SQLField(default_factory=_utcnow)


class MemoryInput(BaseModel):
    """Payload accepted by MemoryService.store."""

    type: str
    content: Any = None
    emotional_context: str = "neutral"


class RetrievalContext(BaseModel):
    memory_types: list[str] | None = None
    emotional_context: str | None = None
    min_importance: int | None = None
    days_back: int | None = None
    current_emotion: str | None = None
    limit: int | None = None


class MemoryFeedback(BaseModel):
    rating: int | None = None


class ClusterPatterns(BaseModel):
    temporal_pattern: str
    emotional_pattern: str
    content_pattern: str


class MemoryCluster(BaseModel):
    theme: str
    memories: list[AgentMemory] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)
    patterns: ClusterPatterns
    recommendations: list[str] = Field(default_factory=list)


class MemorySummary(BaseModel):
    total_memories: int = 0
    memory_types: dict[str, int] = Field(default_factory=dict)
    emotional_distribution: dict[str, int] = Field(default_factory=dict)
    average_importance: float | None = None
    most_important: list[AgentMemory] = Field(default_factory=list)
    recent_activity: list[AgentMemory] = Field(default_factory=list)


class EmotionalContextSummary(BaseModel):
    dominant_emotions: dict[str, float] = Field(default_factory=dict)
    emotional_trends: dict[str, dict[str, int]] = Field(default_factory=dict)
    trigger_patterns: dict[str, dict[str, int]] = Field(default_factory=dict)
    coping_strategies: list[str] = Field(default_factory=list)
