"""Emotion analysis models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

Emotion = Literal[
    "happy",
    "sad",
    "angry",
    "anxious",
    "excited",
    "calm",
    "frustrated",
    "confused",
    "confident",
    "neutral",
]
TransitionType = Literal["positive_shift", "negative_shift", "improvement", "decline", "neutral_shift"]
Significance = Literal["minor", "moderate", "significant", "major"]


class EmotionTransition(BaseModel):
    from_emotion: str
    to_emotion: str
    type: TransitionType
    significance: Significance
    acknowledgment: str


class EmotionAnalysis(BaseModel):
    """Classification of a single message. Computed fresh per message, never persisted."""

    primary_emotion: str = "neutral"
    secondary_emotions: list[str] = Field(default_factory=list, max_length=2)
    intensity: int = Field(default=5, ge=0, le=10)
    sentiment_score: float = 0.0
    context_tag: str = "general"
    confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    indicators: list[str] = Field(default_factory=list, max_length=5)
    suggested_tone: str = "balanced"
    transition: EmotionTransition | None = None


class EmotionTrend(BaseModel):
    direction: Literal["improving", "declining", "stable"]
    magnitude: float
    recent_positivity: float
    earlier_positivity: float


class EmotionStability(BaseModel):
    stability_level: Literal["high", "moderate", "low"]
    volatility_score: float
    recommendations: list[str] = Field(default_factory=list)


class EmotionPattern(BaseModel):
    dominant_emotions: dict[str, float] = Field(default_factory=dict)
    volatility: float = 0.0
    trend: EmotionTrend | None = None  # None with fewer than 5 entries
    stability: EmotionStability | None = None
    recommendations: list[str] = Field(default_factory=list)


class SupportStrategy(BaseModel):
    immediate_actions: list[str] = Field(default_factory=list)
    communication_approach: str = "balanced and adaptive"
    helpful_phrases: list[str] = Field(default_factory=list)
    avoid_phrases: list[str] = Field(default_factory=list)
    escalation_indicators: list[str] = Field(default_factory=list)
    follow_up_suggestions: list[str] = Field(default_factory=list)
