"""Personality models — the 7-dimension trait vector and adaptation context."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

TRAIT_DIMENSIONS: tuple[str, ...] = (
    "openness",
    "conscientiousness",
    "extraversion",
    "agreeableness",
    "neuroticism",
    "playfulness",
    "wisdom",
)

RelationshipStage = Literal["first_interaction", "established", "deep_relationship"]


class PersonalityTraits(BaseModel):
    """One vector per agent. Set at creation, adjusted only by explicit deltas."""

    openness: int = Field(default=6, ge=1, le=10)
    conscientiousness: int = Field(default=6, ge=1, le=10)
    extraversion: int = Field(default=6, ge=1, le=10)
    agreeableness: int = Field(default=7, ge=1, le=10)
    neuroticism: int = Field(default=4, ge=1, le=10)
    playfulness: int = Field(default=5, ge=1, le=10)
    wisdom: int = Field(default=6, ge=1, le=10)

    def as_dict(self) -> dict[str, int]:
        return {dim: getattr(self, dim) for dim in TRAIT_DIMENSIONS}

    def apply(self, deltas: dict[str, int]) -> PersonalityTraits:
        """Return a copy with the suggested absolute values applied."""
        updates = {k: max(1, min(10, int(v))) for k, v in deltas.items() if k in TRAIT_DIMENSIONS}
        return self.model_copy(update=updates)


class AdaptationContext(BaseModel):
    emotion: str | None = None
    relationship_stage: RelationshipStage | None = None


class FeedbackCounters(BaseModel):
    too_formal: int = 0
    too_casual: int = 0
    not_empathetic: int = 0
    too_verbose: int = 0
