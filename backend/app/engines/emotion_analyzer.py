"""EmotionAnalyzer — lexical emotion classification and pattern analytics.

Deterministic, rule-based scoring over fixed keyword tables (no LLM calls).

Scoring per core emotion (substring match on normalized text):
  +10  emotion name present
  +8   per synonym
  +5×n per intensity keyword (low=1, medium=2, high=3)
  +6   per physical indicator

Every function degrades to a documented default on blank or unexpected input
instead of raising.
"""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from collections.abc import Mapping, Sequence
from typing import Any

from app.models.emotion import (
    EmotionAnalysis,
    EmotionPattern,
    EmotionStability,
    EmotionTransition,
    EmotionTrend,
    SupportStrategy,
)

logger = logging.getLogger(__name__)

# === Tables ===

CORE_EMOTIONS: dict[str, dict[str, Any]] = {
    "happy": {
        "synonyms": ("joyful", "excited", "cheerful", "delighted", "pleased", "glad", "content", "satisfied"),
        "intensity": {
            "low": ("okay", "good", "fine", "pleased"),
            "medium": ("happy", "glad", "cheerful", "satisfied"),
            "high": ("ecstatic", "thrilled", "overjoyed", "elated", "jubilant"),
        },
        "physical": ("smiling", "laughing", "dancing", "celebrating"),
    },
    "sad": {
        "synonyms": ("unhappy", "depressed", "melancholy", "sorrowful", "gloomy", "downcast", "dejected"),
        "intensity": {
            "low": ("down", "blue", "disappointed"),
            "medium": ("sad", "unhappy", "upset"),
            "high": ("devastated", "heartbroken", "despairing"),
        },
        "physical": ("crying", "tears", "weeping", "sobbing"),
    },
    "angry": {
        "synonyms": ("mad", "furious", "irritated", "annoyed", "frustrated", "enraged", "livid"),
        "intensity": {
            "low": ("annoyed", "bothered", "irritated"),
            "medium": ("angry", "mad", "upset"),
            "high": ("furious", "enraged", "livid", "incensed"),
        },
        "physical": ("yelling", "shouting", "clenched fists"),
    },
    "anxious": {
        "synonyms": ("worried", "nervous", "stressed", "fearful", "apprehensive", "uneasy", "tense"),
        "intensity": {
            "low": ("concerned", "worried", "uneasy"),
            "medium": ("anxious", "nervous", "stressed"),
            "high": ("panicked", "terrified", "petrified"),
        },
        "physical": ("shaking", "trembling", "sweating", "racing heart"),
    },
    "excited": {
        "synonyms": ("enthusiastic", "eager", "thrilled", "pumped", "energetic", "animated"),
        "intensity": {
            "low": ("interested", "curious", "eager"),
            "medium": ("excited", "enthusiastic"),
            "high": ("ecstatic", "pumped", "fired up"),
        },
        "physical": ("jumping", "bouncing", "clapping", "energetic"),
    },
    "calm": {
        "synonyms": ("peaceful", "relaxed", "serene", "tranquil", "composed", "centered"),
        "intensity": {
            "low": ("okay", "settled"),
            "medium": ("calm", "relaxed", "peaceful"),
            "high": ("serene", "tranquil", "blissful"),
        },
        "physical": ("breathing deeply", "relaxed", "meditative"),
    },
    "frustrated": {
        "synonyms": ("exasperated", "aggravated", "annoyed", "blocked", "stuck"),
        "intensity": {
            "low": ("annoyed", "bothered"),
            "medium": ("frustrated", "stuck"),
            "high": ("exasperated", "aggravated"),
        },
        "physical": ("sighing", "groaning", "head in hands"),
    },
    "confused": {
        "synonyms": ("puzzled", "perplexed", "bewildered", "lost", "uncertain", "unclear"),
        "intensity": {
            "low": ("uncertain", "unsure"),
            "medium": ("confused", "puzzled"),
            "high": ("bewildered", "perplexed", "lost"),
        },
        "physical": ("scratching head", "frowning", "questioning"),
    },
    "confident": {
        "synonyms": ("sure", "certain", "assured", "self-assured", "determined", "ready"),
        "intensity": {
            "low": ("sure", "ready"),
            "medium": ("confident", "certain"),
            "high": ("unstoppable", "invincible"),
        },
        "physical": ("standing tall", "shoulders back"),
    },
}

TIER_MULTIPLIERS = {"low": 1, "medium": 2, "high": 3}

EMOTIONAL_CONTEXTS: dict[str, tuple[str, ...]] = {
    "work_stress": ("deadline", "pressure", "boss", "work", "project", "meeting"),
    "relationship_joy": ("love", "partner", "family", "friend", "together"),
    "achievement_pride": ("accomplished", "finished", "completed", "success", "won"),
    "loss_grief": ("lost", "gone", "missing", "death", "goodbye"),
    "future_anxiety": ("tomorrow", "later", "future", "worried", "scared"),
    "health_concern": ("sick", "illness", "doctor", "medical", "pain"),
    "financial_worry": ("money", "bills", "debt", "expensive", "cost"),
    "creative_excitement": ("create", "making", "art", "writing", "music"),
}

# Scanned in order; the first tier with any hit decides the intensity
INTENSITY_MODIFIERS: tuple[tuple[int, tuple[str, ...]], ...] = (
    (10, ("extremely", "incredibly", "absolutely", "completely", "totally")),
    (8, ("very", "really", "quite", "pretty", "much", "so")),
    (6, ("somewhat", "kinda", "little", "bit", "rather")),
    (3, ("slightly", "barely", "hardly")),
)

POSITIVE_WORDS = ("good", "great", "awesome", "amazing", "wonderful", "fantastic", "excellent", "love", "like", "enjoy", "happy")
NEGATIVE_WORDS = ("bad", "terrible", "awful", "horrible", "hate", "dislike", "sad", "angry", "frustrated", "disappointed")

INDICATOR_PATTERNS = (
    re.compile(r"i feel (.*)"),
    re.compile(r"i am (.*)"),
    re.compile(r"this makes me (.*)"),
    re.compile(r"i m so (.*)"),
    re.compile(r"i m really (.*)"),
)

POSITIVE_EMOTIONS = frozenset({"happy", "excited", "calm", "confident"})
NEGATIVE_EMOTIONS = frozenset({"sad", "angry", "anxious", "frustrated"})

# Valence/arousal-like coordinates for transition distance
EMOTION_POSITIONS: dict[str, tuple[int, int]] = {
    "happy": (8, 8), "excited": (9, 7), "calm": (7, 9),
    "confident": (8, 8), "sad": (2, 3), "angry": (3, 2),
    "anxious": (2, 4), "frustrated": (4, 3), "confused": (5, 5),
}

TRANSITION_ACKNOWLEDGMENTS = {
    "improvement": "I notice your mood has lifted! That's wonderful to see.",
    "decline": "I sense your energy has shifted. That's completely normal.",
    "positive_shift": "I love seeing this positive energy flow!",
    "negative_shift": "I'm here with you through these feelings.",
    "neutral_shift": "I notice your emotional energy has changed.",
}

_SYNONYM_LEXICON: tuple[str, ...] = tuple(s for data in CORE_EMOTIONS.values() for s in data["synonyms"])
_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Lowercase, punctuation to spaces, collapse whitespace."""
    cleaned = _PUNCTUATION.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", cleaned).strip()


# === Scoring ===


def score_emotions(clean: str) -> dict[str, int]:
    """Full scores for every core emotion with a positive score, in table order."""
    scores: dict[str, int] = {}
    for emotion, data in CORE_EMOTIONS.items():
        score = 10 if emotion in clean else 0
        score += sum(8 for s in data["synonyms"] if s in clean)
        for tier, words in data["intensity"].items():
            score += sum(5 * TIER_MULTIPLIERS[tier] for w in words if w in clean)
        score += sum(6 for p in data["physical"] if p in clean)
        if score > 0:
            scores[emotion] = score
    return scores


def detect_primary_emotion(clean: str) -> str:
    scores = score_emotions(clean)
    if not scores:
        return "neutral"
    # max() keeps the first maximum, so ties resolve in table order
    return max(scores, key=scores.__getitem__)


def detect_secondary_emotions(clean: str) -> list[str]:
    """Lenient synonym-only scoring (+3 each), score ≥5, top 2. May include the primary."""
    scores = {}
    for emotion, data in CORE_EMOTIONS.items():
        score = sum(3 for s in data["synonyms"] if s in clean)
        if score >= 5:
            scores[emotion] = score
    ranked = sorted(scores, key=lambda e: -scores[e])
    return ranked[:2]


def calculate_intensity(clean: str, raw: str) -> int:
    """Modifier tiers short-circuit; otherwise base 5 plus caps and exclamation boosts."""
    for level, words in INTENSITY_MODIFIERS:
        if any(w in clean for w in words):
            return level

    intensity = 5
    if raw:
        caps_ratio = sum(1 for ch in raw if ch.isupper()) / len(raw)
        if caps_ratio > 0.3:
            intensity += 2
    intensity += min(raw.count("!"), 3)
    return min(intensity, 10)


def calculate_sentiment(clean: str) -> float:
    words = clean.split()
    if not words:
        return 0.0
    positive = sum(1 for w in POSITIVE_WORDS if w in clean)
    negative = sum(1 for w in NEGATIVE_WORDS if w in clean)
    return (positive - negative) / len(words)


def identify_context(clean: str) -> str:
    scores = {}
    for context, keywords in EMOTIONAL_CONTEXTS.items():
        hits = sum(1 for k in keywords if k in clean)
        if hits:
            scores[context] = hits
    if not scores:
        return "general"
    return max(scores, key=scores.__getitem__)


def calculate_confidence(clean: str) -> float:
    words = clean.split()
    if not words:
        return 0.3
    length_factor = min(len(clean) / 100.0, 1.0) * 0.3
    density = sum(1 for s in _SYNONYM_LEXICON if s in clean) / len(words)
    density_factor = min(density * 2, 0.4)
    return round(min(0.5 + length_factor + density_factor, 1.0), 2)


def extract_indicators(clean: str) -> list[str]:
    """Phrases following 'i feel', 'i am', 'this makes me', 'i'm so', 'i'm really'."""
    found: list[str] = []
    for pattern in INDICATOR_PATTERNS:
        for match in pattern.findall(clean):
            if match not in found:
                found.append(match)
    return found[:5]


def suggest_tone(emotion: str, intensity: int) -> str:
    high = intensity > 7
    if emotion in ("sad", "anxious"):
        return "deeply_supportive" if high else "gently_supportive"
    if emotion in ("angry", "frustrated"):
        return "calming_and_validating" if high else "understanding"
    if emotion in ("excited", "happy"):
        return "enthusiastically_matching" if high else "positively_encouraging"
    if emotion == "confused":
        return "clarifying_and_patient"
    if emotion == "calm":
        return "peacefully_present"
    return "balanced_and_adaptive"


# === Public API ===


def analyze(text: str | None, context: Mapping[str, Any] | None = None) -> EmotionAnalysis:
    """Classify one message.

    Args:
        text: Raw user message.
        context: Optional hints. ``time_of_day == "late_night"`` raises
            intensity by 1; ``previous_emotion`` or the last entry of
            ``conversation_history`` (dicts with an ``emotion`` key) attaches
            a transition when it differs from the detected primary emotion.

    Returns:
        EmotionAnalysis. Blank text yields the default analysis.
    """
    if not isinstance(text, str) or not text.strip():
        return EmotionAnalysis()

    clean = normalize(text)
    primary = detect_primary_emotion(clean)
    intensity = calculate_intensity(clean, text)

    analysis = EmotionAnalysis(
        primary_emotion=primary,
        secondary_emotions=detect_secondary_emotions(clean),
        intensity=intensity,
        sentiment_score=calculate_sentiment(clean),
        context_tag=identify_context(clean),
        confidence=calculate_confidence(clean),
        indicators=extract_indicators(clean),
        suggested_tone=suggest_tone(primary, intensity),
    )
    return _apply_context(analysis, context or {})


def _apply_context(analysis: EmotionAnalysis, context: Any) -> EmotionAnalysis:
    if not isinstance(context, Mapping):
        return analysis
    if context.get("time_of_day") == "late_night":
        analysis.intensity = min(analysis.intensity + 1, 10)

    previous = context.get("previous_emotion")
    if not isinstance(previous, str):
        previous = None
    history = context.get("conversation_history")
    if not previous and isinstance(history, (list, tuple)) and history:
        last = history[-1]
        emotion = last.get("emotion") if isinstance(last, Mapping) else None
        previous = emotion if isinstance(emotion, str) else None
    if previous and previous != analysis.primary_emotion:
        analysis.transition = detect_transition(previous, analysis.primary_emotion)
    return analysis


def classify_transition(prev: str, curr: str) -> str:
    polar = POSITIVE_EMOTIONS | NEGATIVE_EMOTIONS
    if prev not in polar or curr not in polar:
        return "neutral_shift"
    from_positive = prev in POSITIVE_EMOTIONS
    to_positive = curr in POSITIVE_EMOTIONS
    if from_positive and to_positive:
        return "positive_shift"
    if not from_positive and not to_positive:
        return "negative_shift"
    if to_positive:
        return "improvement"
    return "decline"


def transition_significance(prev: str, curr: str) -> str:
    x1, y1 = EMOTION_POSITIONS.get(prev, (5, 5))
    x2, y2 = EMOTION_POSITIONS.get(curr, (5, 5))
    distance = math.hypot(x1 - x2, y1 - y2)
    if distance <= 2:
        return "minor"
    if distance <= 5:
        return "moderate"
    if distance <= 8:
        return "significant"
    return "major"


def detect_transition(prev: str | None, curr: str | None) -> EmotionTransition | None:
    """Transition record between two emotions, None when they are equal."""
    if not prev or not curr or prev == curr:
        return None
    kind = classify_transition(prev, curr)
    return EmotionTransition(
        from_emotion=prev,
        to_emotion=curr,
        type=kind,
        significance=transition_significance(prev, curr),
        acknowledgment=TRANSITION_ACKNOWLEDGMENTS.get(kind, "I notice your emotional state has shifted."),
    )


# === Pattern analysis ===


def dominant_emotions(history: Sequence[str]) -> dict[str, float]:
    """Top 3 emotions by percentage of the history."""
    if not history:
        return {}
    counts = Counter(history)
    total = len(history)
    ranked = sorted(counts.items(), key=lambda kv: -kv[1])[:3]
    return {emotion: round(count / total * 100, 1) for emotion, count in ranked}


def volatility(history: Sequence[str]) -> float:
    """Percentage of adjacent pairs that change emotion. 0 below 3 entries."""
    if len(history) < 3:
        return 0.0
    changes = [1 if a != b else 0 for a, b in zip(history, history[1:])]
    return round(sum(changes) / len(changes) * 100, 1)


def _positivity(emotions: Sequence[str]) -> float:
    if not emotions:
        return 0.0
    return sum(1 for e in emotions if e in POSITIVE_EMOTIONS) / len(emotions)


def trend(history: Sequence[str]) -> EmotionTrend | None:
    """Second half vs first half positivity. None below 5 entries."""
    if len(history) < 5:
        return None
    half = len(history) // 2
    recent = _positivity(history[-half:])
    earlier = _positivity(history[:half])
    delta = recent - earlier
    if delta > 0.1:
        direction = "improving"
    elif delta < -0.1:
        direction = "declining"
    else:
        direction = "stable"
    return EmotionTrend(
        direction=direction,
        magnitude=round(abs(delta), 2),
        recent_positivity=recent,
        earlier_positivity=earlier,
    )


def stability(vol: float) -> EmotionStability:
    if vol < 20:
        level = "high"
    elif vol < 50:
        level = "moderate"
    else:
        level = "low"

    if vol <= 20:
        recs = ["Your emotional stability is excellent", "Continue your current practices"]
    elif vol <= 50:
        recs = ["Consider mindfulness practices", "Regular emotional check-ins might help"]
    else:
        recs = ["Emotional grounding techniques recommended", "Consider professional support if needed"]
    return EmotionStability(stability_level=level, volatility_score=vol, recommendations=recs)


def analyze_pattern(history: Sequence[str] | None) -> EmotionPattern:
    """Dominant emotions, volatility, trend and stability over an emotion history."""
    history = [e for e in (history or []) if isinstance(e, str)]
    if not history:
        return EmotionPattern()

    dominant = dominant_emotions(history)
    vol = volatility(history)

    recommendations = []
    if any(e in ("sad", "anxious") for e in list(dominant)[:2]):
        recommendations.append("Consider practices that support emotional well-being")
    if vol > 60:
        recommendations.append("Emotional grounding techniques might be helpful")
    if dominant.get("happy", 0) > 60:
        recommendations.append("You're maintaining great emotional balance!")

    return EmotionPattern(
        dominant_emotions=dominant,
        volatility=vol,
        trend=trend(history),
        stability=stability(vol),
        recommendations=recommendations,
    )


# === Support strategies ===

IMMEDIATE_ACTIONS = {
    "sad": {
        "low": ["Acknowledge the feeling", "Offer gentle presence"],
        "medium": ["Provide comfort", "Listen actively", "Offer hope"],
        "high": ["Immediate emotional support", "Check for safety", "Professional referral if needed"],
    },
    "anxious": {
        "low": ["Grounding techniques", "Reassurance"],
        "medium": ["Breathing exercises", "Reality checking", "Calming presence"],
        "high": ["Immediate grounding", "Crisis support", "Professional referral"],
    },
    "angry": {
        "low": ["Validate feelings", "Give space"],
        "medium": ["Active listening", "Help process emotions", "Problem-solving support"],
        "high": ["De-escalation", "Safety first", "Professional intervention"],
    },
}

COMMUNICATION_APPROACHES = {
    "sad": "gentle and empathetic",
    "angry": "calm and validating",
    "anxious": "reassuring and grounding",
    "excited": "enthusiastic and matching energy",
    "confused": "clear and patient",
    "frustrated": "understanding and solution-focused",
}

HELPFUL_PHRASES = {
    "sad": [
        "I'm here with you", "Your feelings are valid", "This is temporary",
        "You're not alone", "It's okay to feel sad",
    ],
    "anxious": [
        "You're safe right now", "Let's take this one step at a time",
        "Breathe with me", "You've handled difficult things before",
    ],
    "angry": [
        "I hear your frustration", "Your anger makes sense",
        "Let's work through this together", "You have every right to feel this way",
    ],
}

AVOID_PHRASES = {
    "sad": ["Cheer up", "Look on the bright side", "Others have it worse", "Just think positive", "Get over it"],
    "anxious": ["Calm down", "Don't worry", "Just relax", "It's all in your head"],
    "angry": ["Calm down", "You're overreacting", "Just let it go", "Don't be so angry"],
}

ESCALATION_SIGNS = {
    "sad": ["Hopelessness", "Isolation", "Self-harm mentions"],
    "angry": ["Threats", "Violence", "Extreme language"],
    "anxious": ["Panic symptoms", "Catastrophizing", "Avoidance"],
}

FOLLOW_UPS = {
    "sad": ["Check in later", "Suggest self-care", "Offer continued support"],
    "anxious": ["Practice grounding", "Regular check-ins", "Stress management"],
    "angry": ["Process the situation", "Problem-solving", "Anger management techniques"],
}


def support_strategy(emotion: str, intensity: int) -> SupportStrategy:
    if intensity > 7:
        level = "high"
    elif intensity > 4:
        level = "medium"
    else:
        level = "low"
    return SupportStrategy(
        immediate_actions=IMMEDIATE_ACTIONS.get(emotion, {}).get(level, ["Listen actively", "Provide support"]),
        communication_approach=COMMUNICATION_APPROACHES.get(emotion, "balanced and adaptive"),
        helpful_phrases=HELPFUL_PHRASES.get(emotion, ["I'm here to support you", "Tell me more about how you're feeling"]),
        avoid_phrases=AVOID_PHRASES.get(emotion, ["You shouldn't feel that way", "Just ignore it"]),
        escalation_indicators=ESCALATION_SIGNS.get(emotion, []) if intensity > 8 else [],
        follow_up_suggestions=FOLLOW_UPS.get(emotion, ["Continue conversation", "Offer ongoing support"]),
    )
