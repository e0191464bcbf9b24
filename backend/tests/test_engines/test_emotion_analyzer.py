"""Tests for the emotion analyzer — classification, transitions, patterns, support."""

from __future__ import annotations

import pytest

from app.engines import emotion_analyzer as ea
from app.models.emotion import EmotionAnalysis


# === analyze ===


class TestAnalyze:
    def test_happy_excited_scenario(self):
        result = ea.analyze("I am so incredibly happy and excited!!!")
        # happy scores 28 (name, "excited" synonym, medium tier) vs excited 20
        assert result.primary_emotion == "happy"
        assert result.intensity == 10
        assert result.sentiment_score > 0
        assert result.suggested_tone == "enthusiastically_matching"
        assert "so incredibly happy and excited" in result.indicators

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_blank_text_defaults(self, text):
        result = ea.analyze(text)
        assert result == EmotionAnalysis()
        assert result.primary_emotion == "neutral"
        assert result.intensity == 5
        assert result.sentiment_score == 0.0
        assert result.confidence == 0.3
        assert result.context_tag == "general"
        assert result.suggested_tone == "balanced"

    def test_no_keywords_is_neutral(self):
        result = ea.analyze("The train leaves at noon")
        assert result.primary_emotion == "neutral"
        assert result.suggested_tone == "balanced_and_adaptive"

    def test_work_stress_context(self):
        result = ea.analyze("My boss moved the deadline and I'm worried about the project")
        assert result.context_tag == "work_stress"
        assert result.primary_emotion == "anxious"

    def test_invariants_hold(self):
        samples = [
            "I'M FURIOUS!!!! This is terrible and I hate it",
            "feeling a bit lost and confused, kinda puzzled",
            "so sad, crying, heartbroken, devastated",
            "calm peaceful serene tranquil relaxed",
        ]
        for text in samples:
            result = ea.analyze(text)
            assert 0 <= result.intensity <= 10
            assert 0.0 <= result.confidence <= 1.0
            assert len(result.secondary_emotions) <= 2
            assert len(result.indicators) <= 5

    def test_late_night_boost(self):
        plain = ea.analyze("I feel worried")
        late = ea.analyze("I feel worried", {"time_of_day": "late_night"})
        assert late.intensity == min(plain.intensity + 1, 10)

    def test_previous_emotion_attaches_transition(self):
        result = ea.analyze("I am so happy today", {"previous_emotion": "sad"})
        assert result.transition is not None
        assert result.transition.type == "improvement"
        assert result.transition.from_emotion == "sad"

    def test_history_supplies_previous_emotion(self):
        context = {"conversation_history": [{"emotion": "calm"}, {"emotion": "angry"}]}
        result = ea.analyze("I feel happy", context)
        assert result.transition.from_emotion == "angry"

    @pytest.mark.parametrize(
        "context",
        [
            {"previous_emotion": 5},
            {"conversation_history": {"a": 1}},
            {"conversation_history": [{"emotion": ["sad"]}]},
            {"conversation_history": "sad"},
            {"conversation_history": [None]},
            "not a dict",
        ],
    )
    def test_malformed_context_is_ignored(self, context):
        result = ea.analyze("I am so happy today", context)
        assert result.primary_emotion == "happy"
        assert result.transition is None

    def test_same_emotion_no_transition(self):
        result = ea.analyze("I am happy", {"previous_emotion": "happy"})
        assert result.transition is None


class TestScoring:
    def test_normalize(self):
        assert ea.normalize("Hello,   WORLD!!") == "hello world"

    def test_tie_breaks_in_table_order(self):
        # "okay" is a low-tier word for both happy and calm
        assert ea.detect_primary_emotion("okay") == "happy"

    def test_secondary_requires_two_synonyms(self):
        assert ea.detect_secondary_emotions("worried") == []
        assert ea.detect_secondary_emotions("worried and nervous") == ["anxious"]

    def test_intensity_modifier_tiers(self):
        assert ea.calculate_intensity("extremely tired", "extremely tired") == 10
        assert ea.calculate_intensity("very tired", "very tired") == 8
        assert ea.calculate_intensity("a little tired", "a little tired") == 6
        assert ea.calculate_intensity("slightly tired", "slightly tired") == 3

    def test_intensity_caps_and_exclamations(self):
        # caps ratio > 0.3 adds 2, exclamations add at most 3
        assert ea.calculate_intensity("help", "HELP!!!!!") == 10
        assert ea.calculate_intensity("hey", "hey!") == 6
        assert ea.calculate_intensity("hey", "hey") == 5

    def test_sentiment_sign(self):
        assert ea.calculate_sentiment("this is awesome") > 0
        assert ea.calculate_sentiment("this is awful") < 0
        assert ea.calculate_sentiment("") == 0.0

    def test_confidence_bounds(self):
        assert ea.calculate_confidence("") == 0.3
        assert ea.calculate_confidence("x" * 500 + " worried nervous stressed") <= 1.0


# === Transitions ===


class TestTransitions:
    def test_equal_is_none(self):
        assert ea.detect_transition("sad", "sad") is None

    def test_types(self):
        assert ea.detect_transition("happy", "calm").type == "positive_shift"
        assert ea.detect_transition("sad", "angry").type == "negative_shift"
        assert ea.detect_transition("anxious", "confident").type == "improvement"
        assert ea.detect_transition("excited", "frustrated").type == "decline"
        assert ea.detect_transition("confused", "happy").type == "neutral_shift"

    def test_significance(self):
        assert ea.detect_transition("happy", "confident").significance == "minor"
        assert ea.detect_transition("sad", "anxious").significance == "minor"
        assert ea.detect_transition("happy", "confused").significance == "moderate"
        assert ea.detect_transition("calm", "sad").significance == "significant"
        assert ea.detect_transition("excited", "sad").significance == "major"

    def test_acknowledgment(self):
        transition = ea.detect_transition("sad", "happy")
        assert transition.acknowledgment == ea.TRANSITION_ACKNOWLEDGMENTS["improvement"]


# === Patterns ===


class TestPatterns:
    def test_empty_history(self):
        pattern = ea.analyze_pattern([])
        assert pattern.dominant_emotions == {}
        assert pattern.trend is None

    def test_dominant_top_three(self):
        history = ["happy", "happy", "sad", "calm", "angry", "happy"]
        dominant = ea.dominant_emotions(history)
        assert list(dominant)[0] == "happy"
        assert dominant["happy"] == 50.0
        assert len(dominant) == 3

    def test_volatility(self):
        assert ea.volatility(["happy", "sad"]) == 0.0
        assert ea.volatility(["happy", "happy", "happy"]) == 0.0
        assert ea.volatility(["happy", "sad", "happy"]) == 100.0

    def test_trend_needs_five(self):
        assert ea.trend(["sad"] * 4) is None

    def test_improving_trend(self):
        trend = ea.trend(["sad", "sad", "anxious", "happy", "happy", "calm"])
        assert trend.direction == "improving"
        assert trend.magnitude == 1.0

    def test_stable_trend(self):
        assert ea.trend(["happy"] * 6).direction == "stable"

    def test_stability_levels(self):
        assert ea.stability(10).stability_level == "high"
        assert ea.stability(30).stability_level == "moderate"
        assert ea.stability(80).stability_level == "low"

    def test_recommendations(self):
        pattern = ea.analyze_pattern(["sad", "anxious", "sad", "happy", "sad"])
        assert "Consider practices that support emotional well-being" in pattern.recommendations
        assert pattern.stability is not None

    def test_non_string_entries_ignored(self):
        pattern = ea.analyze_pattern(["happy", None, 3, "happy"])
        assert pattern.dominant_emotions == {"happy": 100.0}


# === Support strategies ===


class TestSupportStrategy:
    def test_high_intensity_sadness(self):
        strategy = ea.support_strategy("sad", 9)
        assert "Check for safety" in strategy.immediate_actions
        assert strategy.communication_approach == "gentle and empathetic"
        assert "Hopelessness" in strategy.escalation_indicators

    def test_escalation_only_above_eight(self):
        assert ea.support_strategy("sad", 8).escalation_indicators == []

    def test_unknown_emotion_defaults(self):
        strategy = ea.support_strategy("bored", 3)
        assert strategy.immediate_actions == ["Listen actively", "Provide support"]
        assert strategy.communication_approach == "balanced and adaptive"
