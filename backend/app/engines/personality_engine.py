"""PersonalityEngine — trait presets and trait-driven response rewriting.

Each agent carries a 7-dimension trait vector (1–10). ``adapt_response`` runs
a fixed pipeline over a draft reply:

  1. tone         agreeableness>7 empathy opener, neuroticism>6 softening,
                  wisdom>7 reflective opener (p=THOUGHTFUL_DEPTH_PROBABILITY)
  2. formality    conscientiousness + (10 - playfulness): ≤8 casual, ≥15 formal
  3. emoji        mean(playfulness, extraversion): ≤3 strip, ≥8 add one
  4. structure    openness>7 & wisdom>6 transition word (p=SENTENCE_FLOW_PROBABILITY),
                  conscientiousness>8 numbers multi-line replies
  5. emotion      comfort / positivity boost / calming opener
  6. relationship welcome (p=WELCOME_PROBABILITY), intimacy (p=INTIMACY_PROBABILITY)

Randomized steps draw from an injectable ``random.Random`` so tests can force
either branch.
"""

from __future__ import annotations

import logging
import random
import re
from collections.abc import Mapping, Sequence
from typing import Any

from app.models.personality import (
    TRAIT_DIMENSIONS,
    AdaptationContext,
    FeedbackCounters,
    PersonalityTraits,
)

logger = logging.getLogger(__name__)

THOUGHTFUL_DEPTH_PROBABILITY = 0.3
SENTENCE_FLOW_PROBABILITY = 0.4
WELCOME_PROBABILITY = 0.5
INTIMACY_PROBABILITY = 0.3

# === Presets ===

PERSONALITY_PRESETS: dict[str, dict[str, int]] = {
    "mood_engine": {
        "openness": 8, "conscientiousness": 7, "extraversion": 6, "agreeableness": 9,
        "neuroticism": 7, "playfulness": 5, "wisdom": 8,
    },
    "rapstar_ai": {
        "openness": 9, "conscientiousness": 6, "extraversion": 9, "agreeableness": 7,
        "neuroticism": 4, "playfulness": 9, "wisdom": 6,
    },
    "storyteller": {
        "openness": 10, "conscientiousness": 8, "extraversion": 7, "agreeableness": 8,
        "neuroticism": 5, "playfulness": 7, "wisdom": 9,
    },
    "zen_agent": {
        "openness": 7, "conscientiousness": 9, "extraversion": 3, "agreeableness": 10,
        "neuroticism": 2, "playfulness": 3, "wisdom": 10,
    },
    "neochat": {
        "openness": 8, "conscientiousness": 8, "extraversion": 7, "agreeableness": 9,
        "neuroticism": 3, "playfulness": 6, "wisdom": 8,
    },
}

DEFAULT_PRESET: dict[str, int] = PersonalityTraits().as_dict()

TRAIT_DESCRIPTORS: dict[str, dict[str, tuple[str, ...]]] = {
    "openness": {"low": ("conventional", "practical", "traditional", "cautious"),
                 "high": ("creative", "imaginative", "adventurous", "curious")},
    "conscientiousness": {"low": ("spontaneous", "flexible", "casual", "relaxed"),
                          "high": ("organized", "methodical", "responsible", "disciplined")},
    "extraversion": {"low": ("reserved", "quiet", "introspective", "thoughtful"),
                     "high": ("outgoing", "energetic", "sociable", "enthusiastic")},
    "agreeableness": {"low": ("direct", "competitive", "analytical", "frank"),
                      "high": ("empathetic", "supportive", "harmonious", "understanding")},
    "neuroticism": {"low": ("calm", "resilient", "stable", "confident"),
                    "high": ("sensitive", "reactive", "emotional", "expressive")},
    "playfulness": {"low": ("serious", "formal", "professional", "straightforward"),
                    "high": ("playful", "humorous", "witty", "entertaining")},
    "wisdom": {"low": ("practical", "immediate", "surface-level", "direct"),
               "high": ("philosophical", "deep", "reflective", "insightful")},
}

# === Phrase tables ===

EMPATHY_PHRASES = ("i understand", "i can sense", "i hear you", "that sounds", "i imagine", "it seems like", "i can feel")
EMPATHY_OPENER = "I can sense what you're going through. "

DEPTH_STARTERS = (
    "In my experience, ", "I've found that ", "It's worth considering that ",
    "What's interesting is that ", "I've observed that ",
)

FLOW_TRANSITIONS = ("Moreover, ", "Furthermore, ", "Additionally, ", "What's more, ", "Beyond that, ")

COMFORT_PHRASES = (
    "Take your time with this. ", "Be gentle with yourself. ",
    "It's okay to feel this way. ", "You're not alone in this. ",
)
CALMING_PHRASES = (
    "Let's take a breath together. ", "I hear your frustration. ",
    "It's understandable to feel this way. ",
)
WELCOME_PHRASES = ("Welcome! ", "I'm so glad you're here! ", "It's wonderful to meet you! ")
INTIMACY_PHRASES = (
    "I know this is important to you. ", "Given what you've shared with me, ",
    "Understanding your journey, ",
)

SOFTENING_RULES = (
    (re.compile(r"\byou should\b", re.IGNORECASE), "you might consider"),
    (re.compile(r"\bmust\b", re.IGNORECASE), "could"),
    (re.compile(r"\bobviously\b", re.IGNORECASE), "perhaps"),
)
CASUAL_RULES = (
    (re.compile(r"\bI would\b"), "I'd"),
    (re.compile(r"\byou will\b"), "you'll"),
    (re.compile(r"\bcannot\b"), "can't"),
    (re.compile(r"\bdo not\b"), "don't"),
)
FORMAL_RULES = (
    (re.compile(r"\bI'd\b"), "I would"),
    (re.compile(r"\byou'll\b"), "you will"),
    (re.compile(r"\bcan't\b"), "cannot"),
    (re.compile(r"\bdon't\b"), "do not"),
    (re.compile(r"\bwanna\b"), "want to"),
    (re.compile(r"\bgonna\b"), "going to"),
)
POSITIVITY_RULES = (
    (re.compile(r"\bgood\b", re.IGNORECASE), "fantastic"),
    (re.compile(r"\bokay\b", re.IGNORECASE), "wonderful"),
    (re.compile(r"\bnice\b", re.IGNORECASE), "amazing"),
)

_EMOJI = "[\U0001F300-\U0001FAFF\u2600-\u27BF]\uFE0F?"
EMOJI_PATTERN = re.compile(_EMOJI)
EMOJI_CLUSTER = re.compile(f"(?:{_EMOJI}){{2,}}")
TRAILING_EMOJI = re.compile(f"([.!?])\\s*{_EMOJI}")

# First matching keyword pattern wins
EMOJI_MAP = (
    (re.compile(r"\b(great|awesome|amazing|wonderful)\b", re.IGNORECASE), " ✨"),
    (re.compile(r"\b(help|support|assist)\b", re.IGNORECASE), " 🤝"),
    (re.compile(r"\b(understand|feel|sense)\b", re.IGNORECASE), " 💙"),
    (re.compile(r"\b(create|make|build)\b", re.IGNORECASE), " 🎨"),
    (re.compile(r"\b(peace|calm|zen)\b", re.IGNORECASE), " 🕊️"),
)

COMFORT_MARKERS = re.compile(r"take your time|gentle|okay|alone", re.IGNORECASE)
CALMING_MARKERS = re.compile(r"breath|understand|hear|frustrat", re.IGNORECASE)
LIST_MARKERS = re.compile(r"^\d+\.|\*|-", re.MULTILINE)


def _clamp(value: int) -> int:
    return max(1, min(10, value))


def coerce_traits(traits: PersonalityTraits | Mapping[str, Any] | None) -> dict[str, int]:
    """Complete trait dict: unknown keys dropped, missing or invalid ones take defaults."""
    if isinstance(traits, PersonalityTraits):
        return traits.as_dict()
    result = dict(DEFAULT_PRESET)
    if not isinstance(traits, Mapping):
        return result
    for dim in TRAIT_DIMENSIONS:
        value = traits.get(dim)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            result[dim] = _clamp(int(value))
    return result


def _lower_first(text: str) -> str:
    if re.match(r"I\b", text):
        return text
    return text[:1].lower() + text[1:]


def initialize_traits(agent_kind: str | None) -> PersonalityTraits:
    """Preset trait vector for an agent kind, the default preset otherwise."""
    preset = PERSONALITY_PRESETS.get(agent_kind or "", DEFAULT_PRESET)
    return PersonalityTraits(**preset)


class PersonalityEngine:
    """Trait-driven response rewriting.

    Usage:
        engine = PersonalityEngine(rng=random.Random(7))
        reply = engine.adapt_response(draft, initialize_traits("zen_agent"), context)
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        thoughtful_depth_probability: float = THOUGHTFUL_DEPTH_PROBABILITY,
        sentence_flow_probability: float = SENTENCE_FLOW_PROBABILITY,
        welcome_probability: float = WELCOME_PROBABILITY,
        intimacy_probability: float = INTIMACY_PROBABILITY,
    ) -> None:
        self.rng = rng or random.Random()
        self.thoughtful_depth_probability = thoughtful_depth_probability
        self.sentence_flow_probability = sentence_flow_probability
        self.welcome_probability = welcome_probability
        self.intimacy_probability = intimacy_probability

    # --- Pipeline ---

    def adapt_response(
        self,
        draft: str | None,
        traits: PersonalityTraits | Mapping[str, Any] | None,
        context: AdaptationContext | Mapping[str, Any] | None = None,
    ) -> str:
        if not isinstance(draft, str) or not draft:
            return draft or ""
        t = coerce_traits(traits)
        ctx = _coerce_context(context)

        text = self._apply_tone(draft, t)
        text = self._adjust_formality(text, t)
        text = self._adjust_emoji(text, t)
        text = self._adapt_structure(text, t)
        text = self._apply_emotion(text, ctx.emotion)
        text = self._apply_relationship(text, ctx.relationship_stage)
        return text

    def _apply_tone(self, text: str, t: dict[str, int]) -> str:
        if t["agreeableness"] > 7:
            lowered = text.lower()
            if not any(p in lowered for p in EMPATHY_PHRASES):
                text = EMPATHY_OPENER + text
        if t["neuroticism"] > 6:
            for pattern, replacement in SOFTENING_RULES:
                text = pattern.sub(replacement, text)
        if t["wisdom"] > 7:
            if self.rng.random() < self.thoughtful_depth_probability and not text.startswith(DEPTH_STARTERS):
                text = self.rng.choice(DEPTH_STARTERS) + _lower_first(text)
        return text

    def _adjust_formality(self, text: str, t: dict[str, int]) -> str:
        score = t["conscientiousness"] + (10 - t["playfulness"])
        if score <= 8:
            rules = CASUAL_RULES
        elif score >= 15:
            rules = FORMAL_RULES
        else:
            return text
        for pattern, replacement in rules:
            text = pattern.sub(replacement, text)
        return text

    def _adjust_emoji(self, text: str, t: dict[str, int]) -> str:
        tendency = (t["playfulness"] + t["extraversion"]) / 2
        if tendency <= 3:
            text = EMOJI_CLUSTER.sub("", text)
            return TRAILING_EMOJI.sub(r"\1", text)
        if tendency >= 8 and not EMOJI_PATTERN.search(text):
            for pattern, emoji in EMOJI_MAP:
                if pattern.search(text):
                    return text + emoji
        return text

    def _adapt_structure(self, text: str, t: dict[str, int]) -> str:
        if t["openness"] > 7 and t["wisdom"] > 6:
            sentences = text.split(". ")
            if len(sentences) > 2 and self.rng.random() < self.sentence_flow_probability:
                sentences[1] = self.rng.choice(FLOW_TRANSITIONS) + _lower_first(sentences[1])
                text = ". ".join(sentences)
        if t["conscientiousness"] > 8 and len(text) >= 100 and "\n" in text and not LIST_MARKERS.search(text):
            lines = [line for line in text.split("\n") if line]
            if len(lines) > 2:
                text = "\n".join(f"{i}. {line}" for i, line in enumerate(lines, 1))
        return text

    def _apply_emotion(self, text: str, emotion: str | None) -> str:
        if emotion in ("sad", "anxious"):
            if not COMFORT_MARKERS.search(text):
                text = self.rng.choice(COMFORT_PHRASES) + text
        elif emotion in ("excited", "happy"):
            for pattern, replacement in POSITIVITY_RULES:
                text = pattern.sub(replacement, text)
        elif emotion in ("frustrated", "angry"):
            if not CALMING_MARKERS.search(text):
                text = self.rng.choice(CALMING_PHRASES) + text
        return text

    def _apply_relationship(self, text: str, stage: str | None) -> str:
        if stage == "first_interaction":
            if self.rng.random() < self.welcome_probability and not text.lower().startswith(("welcome", "hello", "hi")):
                text = self.rng.choice(WELCOME_PHRASES) + text
        elif stage == "deep_relationship":
            if self.rng.random() < self.intimacy_probability:
                text = self.rng.choice(INTIMACY_PHRASES) + _lower_first(text)
        return text

    # --- Analytics ---

    def describe(self, traits: PersonalityTraits | Mapping[str, Any] | None) -> str:
        """Comma-separated descriptors for the high (>7) and low (<4) dimensions."""
        parts = []
        for dim, score in coerce_traits(traits).items():
            if score > 7:
                parts.append(self.rng.choice(TRAIT_DESCRIPTORS[dim]["high"]))
            elif score < 4:
                parts.append(self.rng.choice(TRAIT_DESCRIPTORS[dim]["low"]))
        return ", ".join(parts)


def _coerce_context(context: AdaptationContext | Mapping[str, Any] | None) -> AdaptationContext:
    if isinstance(context, AdaptationContext):
        return context
    if not isinstance(context, Mapping):
        return AdaptationContext()
    stage = context.get("relationship_stage")
    emotion = context.get("emotion")
    return AdaptationContext(
        emotion=emotion if isinstance(emotion, str) else None,
        relationship_stage=stage if stage in ("first_interaction", "established", "deep_relationship") else None,
    )


def compatibility(
    user_prefs: PersonalityTraits | Mapping[str, Any] | None,
    agent_traits: PersonalityTraits | Mapping[str, Any] | None,
) -> float:
    """Mean of 1 - |diff|/10 over shared dimensions. 0.5 when nothing is comparable."""
    a = user_prefs.as_dict() if isinstance(user_prefs, PersonalityTraits) else user_prefs
    b = agent_traits.as_dict() if isinstance(agent_traits, PersonalityTraits) else agent_traits
    if not isinstance(a, Mapping) or not isinstance(b, Mapping) or not a or not b:
        return 0.5

    total, dims = 0.0, 0
    for dim in TRAIT_DIMENSIONS:
        x, y = a.get(dim), b.get(dim)
        if not isinstance(x, (int, float)) or not isinstance(y, (int, float)):
            continue
        total += 1.0 - abs(x - y) / 10.0
        dims += 1
    if dims == 0:
        return 0.5
    return round(total / dims, 2)


def suggest_adjustments(
    feedback: FeedbackCounters | Mapping[str, Any] | None,
    traits: PersonalityTraits | Mapping[str, Any] | None,
) -> dict[str, int]:
    """Suggested absolute trait values from feedback tallies. Never auto-applied."""
    if isinstance(feedback, FeedbackCounters):
        counts = feedback.model_dump()
    elif isinstance(feedback, Mapping):
        counts = {k: v for k, v in feedback.items() if isinstance(v, int)}
    else:
        return {}
    t = coerce_traits(traits)
    adjustments: dict[str, int] = {}

    if counts.get("too_formal", 0) > 3:
        adjustments["playfulness"] = _clamp(t["playfulness"] + 1)
        adjustments["extraversion"] = _clamp(t["extraversion"] + 1)
    if counts.get("too_casual", 0) > 3:
        adjustments["conscientiousness"] = _clamp(t["conscientiousness"] + 1)
        adjustments["playfulness"] = _clamp(t["playfulness"] - 1)
    if counts.get("not_empathetic", 0) > 2:
        adjustments["agreeableness"] = _clamp(t["agreeableness"] + 2)
        adjustments["neuroticism"] = _clamp(t["neuroticism"] + 1)
    if counts.get("too_verbose", 0) > 3:
        adjustments["conscientiousness"] = _clamp(t["conscientiousness"] - 1)
    return adjustments


def insights(traits: PersonalityTraits | Mapping[str, Any] | None, ratings: Sequence[float] | None = None) -> list[str]:
    """Template insights from trait combinations and the average user rating."""
    t = coerce_traits(traits)
    found = []
    if t["agreeableness"] > 8 and t["wisdom"] > 7:
        found.append("This agent combines deep empathy with philosophical wisdom")
    if t["playfulness"] > 8 and t["openness"] > 7:
        found.append("This agent brings creative energy and humor to interactions")
    if t["conscientiousness"] > 8 and t["wisdom"] > 6:
        found.append("This agent provides structured guidance with thoughtful insight")

    rated = [r for r in (ratings or []) if isinstance(r, (int, float))]
    if rated:
        avg = sum(rated) / len(rated)
        if avg > 4.5:
            found.append("Users consistently rate interactions highly")
        elif avg < 3.0:
            found.append("There may be opportunities to better align with user needs")
    return found
