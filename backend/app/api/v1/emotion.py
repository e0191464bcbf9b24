"""Emotion and personality API — stateless engine endpoints.

POST /api/v1/emotion/analyze      — classify one message
POST /api/v1/emotion/pattern      — pattern over an emotion history
POST /api/v1/emotion/transition   — classify a previous → current shift
GET  /api/v1/emotion/support      — support strategy for an emotion
POST /api/v1/personality/adapt    — rewrite a draft with a trait vector
POST /api/v1/personality/compatibility
POST /api/v1/personality/adjustments
GET  /api/v1/personality/{agent_kind}
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from app.engines import emotion_analyzer
from app.engines.personality_engine import (
    PersonalityEngine,
    compatibility,
    initialize_traits,
    insights,
    suggest_adjustments,
)
from app.models.emotion import EmotionAnalysis, EmotionPattern, EmotionTransition, SupportStrategy
from app.models.personality import AdaptationContext, FeedbackCounters, PersonalityTraits

router = APIRouter(prefix="/api/v1", tags=["emotion"])

_personality = PersonalityEngine()


# === Request / Response Models ===


class AnalyzeRequest(BaseModel):
    text: str = Field(default="", max_length=8000)
    context: dict[str, Any] = Field(default_factory=dict)


class PatternRequest(BaseModel):
    history: list[str] = Field(default_factory=list, max_length=1000)


class TransitionRequest(BaseModel):
    previous: str
    current: str


class TransitionResponse(BaseModel):
    transition: EmotionTransition | None = None


class AdaptRequest(BaseModel):
    draft: str = Field(max_length=16000)
    traits: dict[str, Any] = Field(default_factory=dict)
    agent_kind: str | None = None
    context: AdaptationContext = Field(default_factory=AdaptationContext)


class AdaptResponse(BaseModel):
    response: str


class CompatibilityRequest(BaseModel):
    user_preferences: dict[str, Any] = Field(default_factory=dict)
    agent_traits: dict[str, Any] = Field(default_factory=dict)


class CompatibilityResponse(BaseModel):
    score: float


class AdjustmentsRequest(BaseModel):
    feedback: FeedbackCounters = Field(default_factory=FeedbackCounters)
    traits: dict[str, Any] = Field(default_factory=dict)


class AdjustmentsResponse(BaseModel):
    adjustments: dict[str, int]


class PersonalityProfile(BaseModel):
    agent_kind: str
    traits: PersonalityTraits
    description: str
    insights: list[str]


# === Emotion ===


@router.post("/emotion/analyze", response_model=EmotionAnalysis)
def analyze(request: AnalyzeRequest) -> EmotionAnalysis:
    return emotion_analyzer.analyze(request.text, request.context)


@router.post("/emotion/pattern", response_model=EmotionPattern)
def pattern(request: PatternRequest) -> EmotionPattern:
    return emotion_analyzer.analyze_pattern(request.history)


@router.post("/emotion/transition", response_model=TransitionResponse)
def transition(request: TransitionRequest) -> TransitionResponse:
    return TransitionResponse(transition=emotion_analyzer.detect_transition(request.previous, request.current))


@router.get("/emotion/support", response_model=SupportStrategy)
def support(
    emotion: str = Query(..., min_length=1, max_length=50),
    intensity: int = Query(default=5, ge=0, le=10),
) -> SupportStrategy:
    return emotion_analyzer.support_strategy(emotion, intensity)


# === Personality ===


@router.post("/personality/adapt", response_model=AdaptResponse)
def adapt(request: AdaptRequest) -> AdaptResponse:
    traits: Any = request.traits or initialize_traits(request.agent_kind)
    return AdaptResponse(response=_personality.adapt_response(request.draft, traits, request.context))


@router.post("/personality/compatibility", response_model=CompatibilityResponse)
def personality_compatibility(request: CompatibilityRequest) -> CompatibilityResponse:
    return CompatibilityResponse(score=compatibility(request.user_preferences, request.agent_traits))


@router.post("/personality/adjustments", response_model=AdjustmentsResponse)
def personality_adjustments(request: AdjustmentsRequest) -> AdjustmentsResponse:
    return AdjustmentsResponse(adjustments=suggest_adjustments(request.feedback, request.traits))


@router.get("/personality/{agent_kind}", response_model=PersonalityProfile)
def personality_profile(agent_kind: str) -> PersonalityProfile:
    traits = initialize_traits(agent_kind)
    return PersonalityProfile(
        agent_kind=agent_kind,
        traits=traits,
        description=_personality.describe(traits),
        insights=insights(traits),
    )
