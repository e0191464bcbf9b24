"""MemoryService — store, score, decay, filter and cluster agent memories.

Operates on the AgentMemory / Interaction SQL models. Each call opens its own
Session so the service can be used from worker threads (asyncio.to_thread)
while requests read concurrently.

Importance on store:
  5 base, +2 non-neutral emotional context, +1 preference, +3 achievement, max 10

Retrieval decay (per record, after filtering and sorting):
  decay  = 1 - days_old * DECAY_RATE / 100
  dropped only when importance * decay < threshold AND decay < 0.5
"""

from __future__ import annotations

import json
import logging
import re
from collections import Counter
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError
from sqlalchemy import String, case, cast, func, not_, or_, update
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from app.config import settings
from app.models.memory import (
    MEMORY_TYPES,
    AgentMemory,
    ClusterPatterns,
    EmotionalContextSummary,
    Interaction,
    MemoryCluster,
    MemoryFeedback,
    MemoryInput,
    MemorySummary,
    RetrievalContext,
)

logger = logging.getLogger(__name__)

POSITIVE_CONTEXTS = ("happy", "calm", "confident")
_NON_WORD = re.compile(r"\W+")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(dt: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _tombstoned():
    """SQL predicate for forgotten or archived rows."""
    text = cast(AgentMemory.content, String)
    return or_(text.like('%"forgotten": true%'), text.like('%"archived": true%'))


def _like_pattern(value: str) -> str:
    """Escape LIKE wildcards in the JSON-encoded form of ``value``."""
    encoded = json.dumps(value)[1:-1]
    return encoded.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def extract_tags(content: Any) -> list[str]:
    """First 5 words longer than 3 chars. Only string content yields tags."""
    if not isinstance(content, str):
        return []
    words = _NON_WORD.split(content.lower())
    return [w for w in words if len(w) > 3][:5]


def calculate_importance(memory_type: str, emotional_context: str | None) -> int:
    score = 5
    if emotional_context != "neutral":
        score += 2
    if memory_type == "preference":
        score += 1
    if memory_type == "achievement":
        score += 3
    return min(score, 10)


def rating_delta(rating: int | None) -> int:
    if rating in (4, 5):
        return 2
    if rating == 3:
        return 1
    if rating in (1, 2):
        return -1
    return 0


def decay_factor(created_at: datetime, now: datetime, rate: float) -> float:
    days_old = (now - _aware(created_at)).total_seconds() / 86400
    return 1 - (days_old * rate / 100)


def _time_bucket(hour: int) -> str:
    if 6 <= hour <= 11:
        return "morning"
    if 12 <= hour <= 17:
        return "afternoon"
    if 18 <= hour <= 21:
        return "evening"
    return "night"


class MemoryService:
    """Per-(agent, user) memory store.

    Usage:
        service = MemoryService(engine)
        service.store("memora", "u1", {"type": "preference", "content": "Likes green tea"})
        service.retrieve("memora", "u1", RetrievalContext(current_emotion="calm"))
    """

    def __init__(
        self,
        engine: Engine,
        now: Callable[[], datetime] = _utcnow,
        importance_threshold: int | None = None,
        decay_rate: float | None = None,
        max_results: int | None = None,
        archive_after_days: int | None = None,
    ) -> None:
        self.engine = engine
        self._now = now
        self.importance_threshold = (
            settings.memory_importance_threshold if importance_threshold is None else importance_threshold
        )
        self.decay_rate = settings.memory_decay_rate if decay_rate is None else decay_rate
        self.max_results = max_results or settings.max_memories_per_session
        self.archive_after_days = archive_after_days or settings.memory_archive_after_days

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    # === Store ===

    def store(
        self, agent_id: str, user_id: str, memory_data: MemoryInput | Mapping[str, Any] | None,
    ) -> AgentMemory | None:
        """Validate, score, tag and insert a memory, then run the archive sweep.

        Returns None (nothing stored) for an unknown type or empty content.
        """
        data = self._validate(memory_data)
        if data is None:
            logger.info("Rejected memory for %s/%s: invalid type or empty content", agent_id, user_id)
            return None

        now = self._now()
        memory = AgentMemory(
            agent_id=agent_id,
            user_id=user_id,
            memory_type=data.type,
            content=self._wrap_content(data.content, now),
            emotional_context=data.emotional_context,
            importance_score=calculate_importance(data.type, data.emotional_context),
            tags=extract_tags(data.content),
            created_at=now,
            updated_at=now,
        )
        with self._session() as session:
            session.add(memory)
            session.commit()
            archived = self._archive_stale(session, agent_id, user_id, now)
            session.commit()
        if archived:
            logger.info("Archived %d stale memories for %s/%s", archived, agent_id, user_id)
        return memory

    @staticmethod
    def _validate(memory_data: MemoryInput | Mapping[str, Any] | None) -> MemoryInput | None:
        if isinstance(memory_data, MemoryInput):
            data = memory_data
        elif isinstance(memory_data, Mapping):
            try:
                data = MemoryInput(
                    type=str(memory_data.get("type") or ""),
                    content=memory_data.get("content"),
                    emotional_context=memory_data.get("emotional_context") or "neutral",
                )
            except ValueError:
                return None
        else:
            return None
        if data.type not in MEMORY_TYPES:
            return None
        content = data.content
        if content is None:
            return None
        if isinstance(content, str) and not content.strip():
            return None
        if isinstance(content, (dict, list)) and not content:
            return None
        return data

    @staticmethod
    def _wrap_content(content: Any, now: datetime) -> dict:
        if isinstance(content, dict):
            return content
        return {"text": str(content).strip(), "context": "user_interaction", "stored_at": now.isoformat()}

    def _archive_stale(self, session: Session, agent_id: str, user_id: str, now: datetime) -> int:
        cutoff = now - timedelta(days=self.archive_after_days)
        result = session.execute(
            update(AgentMemory)
            .where(
                AgentMemory.agent_id == agent_id,
                AgentMemory.user_id == user_id,
                AgentMemory.created_at < cutoff,
                AgentMemory.importance_score < 3,
            )
            .values(
                content={"archived": True, "archived_at": now.isoformat()},
                tags=[],
                importance_score=0,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # === Retrieve ===

    def retrieve(
        self, agent_id: str, user_id: str, context: RetrievalContext | Mapping[str, Any] | None = None,
    ) -> list[AgentMemory]:
        """Filtered, sorted, capped and decayed memories for the pair."""
        ctx = self._retrieval_context(context)
        now = self._now()

        statement = select(AgentMemory).where(
            AgentMemory.agent_id == agent_id,
            AgentMemory.user_id == user_id,
            not_(_tombstoned()),
        )
        if ctx.memory_types:
            statement = statement.where(AgentMemory.memory_type.in_(ctx.memory_types))  # type: ignore[attr-defined]
        if ctx.emotional_context:
            statement = statement.where(AgentMemory.emotional_context == ctx.emotional_context)
        min_importance = self.importance_threshold if ctx.min_importance is None else ctx.min_importance
        statement = statement.where(AgentMemory.importance_score >= min_importance)
        if ctx.days_back:
            statement = statement.where(AgentMemory.created_at > now - timedelta(days=ctx.days_back))

        ordering = [AgentMemory.importance_score.desc(), AgentMemory.created_at.desc()]  # type: ignore[attr-defined]
        if ctx.current_emotion:
            ordering.insert(0, case((AgentMemory.emotional_context == ctx.current_emotion, 0), else_=1))
        limit = min(ctx.limit or self.max_results, self.max_results)
        statement = statement.order_by(*ordering).limit(limit)

        with self._session() as session:
            memories = list(session.exec(statement).all())
        return [m for m in memories if not self._decayed(m, now)]

    @staticmethod
    def _retrieval_context(context: RetrievalContext | Mapping[str, Any] | None) -> RetrievalContext:
        if isinstance(context, RetrievalContext):
            return context
        if not isinstance(context, Mapping):
            return RetrievalContext()
        try:
            return RetrievalContext(**context)
        except ValidationError as e:
            logger.warning("Ignoring malformed retrieval context: %s", e.errors(include_url=False))
            return RetrievalContext()

    def _decayed(self, memory: AgentMemory, now: datetime) -> bool:
        factor = decay_factor(memory.created_at, now, self.decay_rate)
        return memory.importance_score * factor < self.importance_threshold and factor < 0.5

    # === Feedback / forget ===

    def update_importance(
        self, memory_id: str, feedback: MemoryFeedback | Mapping[str, Any] | None,
    ) -> AgentMemory | None:
        """Apply a rating-driven delta in a single UPDATE, clamped to [0, 10].

        Forgotten and archived rows are left untouched and returned as-is.
        """
        if feedback is None:
            return None
        rating = feedback.rating if isinstance(feedback, MemoryFeedback) else feedback.get("rating")
        delta = rating_delta(rating if isinstance(rating, int) else None)

        with self._session() as session:
            if delta:
                adjusted = AgentMemory.importance_score + delta
                session.execute(
                    update(AgentMemory)
                    .where(AgentMemory.id == memory_id, not_(_tombstoned()))
                    .values(
                        importance_score=case((adjusted > 10, 10), (adjusted < 0, 0), else_=adjusted),
                        updated_at=self._now(),
                    )
                    .execution_options(synchronize_session=False)
                )
                session.commit()
            return session.get(AgentMemory, memory_id)

    def forget(self, memory_id: str, reason: str = "user_request") -> bool:
        """Overwrite content with a tombstone and force importance to 0."""
        with self._session() as session:
            memory = session.get(AgentMemory, memory_id)
            if memory is None:
                return False
            now = self._now()
            memory.content = {"forgotten": True, "reason": reason, "forgotten_at": now.isoformat()}
            memory.tags = []
            memory.importance_score = 0
            memory.updated_at = now
            session.add(memory)
            session.commit()
        logger.info("Forgot memory %s (%s)", memory_id, reason)
        return True

    # === Clusters ===

    def cluster_by_theme(self, agent_id: str, user_id: str, theme: str) -> MemoryCluster | None:
        """Top 10 memories mentioning a theme in content or tags, with template insights."""
        if not theme or not theme.strip():
            return None
        # Content and tags are stored as ASCII-escaped JSON text
        needle = _like_pattern(theme.strip())
        tag = _like_pattern(theme.strip().lower())
        statement = (
            select(AgentMemory)
            .where(
                AgentMemory.agent_id == agent_id,
                AgentMemory.user_id == user_id,
                not_(_tombstoned()),
                or_(
                    cast(AgentMemory.content, String).ilike(f"%{needle}%", escape="\\"),
                    cast(AgentMemory.tags, String).ilike(f'%"{tag}"%', escape="\\"),
                ),
            )
            .order_by(AgentMemory.importance_score.desc())  # type: ignore[attr-defined]
            .limit(10)
        )
        with self._session() as session:
            memories = list(session.exec(statement).all())
        if not memories:
            return None
        return MemoryCluster(
            theme=theme,
            memories=memories,
            insights=self._cluster_insights(memories),
            patterns=ClusterPatterns(
                temporal_pattern=self._temporal_pattern(memories),
                emotional_pattern=self._emotional_pattern(memories),
                content_pattern=self._content_pattern(memories),
            ),
            recommendations=self._cluster_recommendations(memories),
        )

    @staticmethod
    def _cluster_insights(memories: list[AgentMemory]) -> list[str]:
        insights = []
        emotions = Counter(m.emotional_context for m in memories)
        if emotions:
            dominant = max(emotions, key=emotions.__getitem__)
            insights.append(f"This theme is often associated with {dominant} feelings")
        if len(memories) > 3:
            insights.append("This is a recurring theme in your conversations")
        if sum(m.importance_score for m in memories) / len(memories) > 7:
            insights.append("This theme holds significant importance for you")
        return insights

    @staticmethod
    def _temporal_pattern(memories: list[AgentMemory]) -> str:
        hours = Counter(_aware(m.created_at).hour for m in memories)
        if not hours:
            return "No clear temporal pattern"
        dominant = max(hours, key=hours.__getitem__)
        return f"Most active during {_time_bucket(dominant)} hours"

    @staticmethod
    def _emotional_pattern(memories: list[AgentMemory]) -> str:
        emotions = [m.emotional_context for m in memories]
        pairs = list(dict.fromkeys(zip(emotions, emotions[1:])))
        if not pairs:
            return "Single emotional context"
        return "Common emotional transitions: " + ", ".join(f"{a} → {b}" for a, b in pairs[:2])

    @staticmethod
    def _content_pattern(memories: list[AgentMemory]) -> str:
        tags = Counter(tag for m in memories for tag in (m.tags or []))
        common = [tag for tag, _ in sorted(tags.items(), key=lambda kv: -kv[1])[:3]]
        return f"Common themes: {', '.join(common)}"

    @staticmethod
    def _cluster_recommendations(memories: list[AgentMemory]) -> list[str]:
        recs = []
        emotions = {m.emotional_context for m in memories}
        if emotions & {"anxious", "stressed"}:
            recs.append("Consider exploring stress management techniques")
        if emotions & {"happy", "excited"}:
            recs.append("This theme seems to bring you joy - explore it further")
        if len(memories) > 5:
            recs.append("This is clearly important to you - consider deeper exploration")
        return recs

    # === Summaries ===

    def emotional_context(self, agent_id: str, user_id: str, emotion: str | None = None) -> EmotionalContextSummary:
        """Emotion distribution, 7-day daily trends, trigger words and coping strategies."""
        statement = select(AgentMemory).where(
            AgentMemory.agent_id == agent_id,
            AgentMemory.user_id == user_id,
        )
        if emotion:
            statement = statement.where(AgentMemory.emotional_context == emotion)
        with self._session() as session:
            memories = [m for m in session.exec(statement.order_by(AgentMemory.created_at)).all() if not m.forgotten]

        counts = Counter(m.emotional_context for m in memories)
        total = sum(counts.values())
        dominant = {
            e: round(c / total * 100, 1)
            for e, c in sorted(counts.items(), key=lambda kv: -kv[1])[:3]
        } if total else {}

        week_ago = self._now() - timedelta(days=7)
        trends: dict[str, dict[str, int]] = {}
        for m in memories:
            created = _aware(m.created_at)
            if created > week_ago:
                day = trends.setdefault(created.date().isoformat(), {})
                day[m.emotional_context] = day.get(m.emotional_context, 0) + 1

        triggers: dict[str, Counter] = {}
        for m in memories:
            if m.emotional_context != "neutral":
                triggers.setdefault(m.emotional_context, Counter()).update(extract_tags(m.text))
        trigger_patterns = {
            e: dict(sorted(words.items(), key=lambda kv: -kv[1])[:3]) for e, words in triggers.items()
        }

        strategies: list[str] = []
        for m in memories:
            if m.emotional_context in POSITIVE_CONTEXTS and m.importance_score > 7:
                strategy = m.content.get("strategy") or m.content.get("context")
                if strategy and strategy not in strategies:
                    strategies.append(strategy)

        return EmotionalContextSummary(
            dominant_emotions=dominant,
            emotional_trends=trends,
            trigger_patterns=trigger_patterns,
            coping_strategies=strategies[:5],
        )

    def summary(self, agent_id: str, user_id: str, days: int = 30) -> MemorySummary:
        """Counts and highlights for memories created in the last ``days`` days."""
        since = self._now() - timedelta(days=days)
        scope = (
            AgentMemory.agent_id == agent_id,
            AgentMemory.user_id == user_id,
            AgentMemory.created_at > since,
        )
        with self._session() as session:
            total = session.exec(select(func.count(AgentMemory.id)).where(*scope)).one()
            type_rows = session.exec(
                select(AgentMemory.memory_type, func.count(AgentMemory.id)).where(*scope).group_by(AgentMemory.memory_type)
            ).all()
            emotion_rows = session.exec(
                select(AgentMemory.emotional_context, func.count(AgentMemory.id))
                .where(*scope)
                .group_by(AgentMemory.emotional_context)
            ).all()
            average = session.exec(select(func.avg(AgentMemory.importance_score)).where(*scope)).one()
            most_important = session.exec(
                select(AgentMemory).where(*scope).order_by(AgentMemory.importance_score.desc()).limit(3)  # type: ignore[attr-defined]
            ).all()
            recent = session.exec(
                select(AgentMemory).where(*scope).order_by(AgentMemory.created_at.desc()).limit(5)  # type: ignore[attr-defined]
            ).all()

        return MemorySummary(
            total_memories=total,
            memory_types={row[0]: row[1] for row in type_rows},
            emotional_distribution={row[0]: row[1] for row in emotion_rows},
            average_importance=round(float(average), 2) if average is not None else None,
            most_important=list(most_important),
            recent_activity=list(recent),
        )

    # === Interactions ===

    def record_interaction(
        self,
        agent_id: str,
        user_id: str,
        user_message: str,
        agent_response: str,
        emotional_context: str = "neutral",
        rating: int | None = None,
        details: dict | None = None,
    ) -> Interaction:
        interaction = Interaction(
            agent_id=agent_id,
            user_id=user_id,
            user_message=user_message,
            agent_response=agent_response,
            emotional_context=emotional_context,
            rating=rating,
            details=details or {},
            created_at=self._now(),
        )
        with self._session() as session:
            session.add(interaction)
            session.commit()
        return interaction

    def ratings(self, agent_id: str, limit: int = 100) -> list[int]:
        """Recent non-null interaction ratings for an agent."""
        statement = (
            select(Interaction.rating)
            .where(Interaction.agent_id == agent_id, Interaction.rating.is_not(None))  # type: ignore[union-attr]
            .order_by(Interaction.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        with self._session() as session:
            return [r for r in session.exec(statement).all() if r is not None]
