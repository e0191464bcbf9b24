"""Tests for ProviderRegistry — configuration, affinity resolution, model selection."""

from __future__ import annotations

from conftest import make_registry, make_settings

from app.providers.registry import FALLBACK_ORDER, ProviderRegistry


# === Configuration ===


class TestIsConfigured:
    def test_key_present(self):
        registry = make_registry("openai")
        assert registry.is_configured("openai") is True

    def test_key_missing(self):
        registry = make_registry("openai")
        assert registry.is_configured("anthropic") is False

    def test_whitespace_key_is_unconfigured(self):
        registry = ProviderRegistry.from_settings(make_settings(openai_api_key="   "))
        assert registry.is_configured("openai") is False

    def test_unknown_provider(self):
        assert make_registry("openai").is_configured("mistral") is False

    def test_configured_providers_lists_only_keyed(self):
        registry = make_registry("anthropic", "cohere")
        assert registry.configured_providers() == ["anthropic", "cohere"]


# === Resolution ===


class TestResolve:
    def test_empty_when_nothing_configured(self):
        assert make_registry().resolve("emotisense") == []

    def test_fallback_order_for_unknown_agent(self):
        registry = make_registry("openai")
        assert registry.resolve("some_agent") == list(FALLBACK_ORDER)

    def test_affinity_first(self):
        registry = make_registry("openai")
        candidates = registry.resolve("emotisense")
        assert candidates[0] == "anthropic"
        assert candidates.count("anthropic") == 1
        assert candidates[1:] == ["openai", "google", "huggingface", "cohere"]

    def test_google_affinity(self):
        assert make_registry("google").resolve("datavision")[0] == "google"

    def test_explicit_override_wins(self):
        registry = make_registry("openai", "cohere")
        candidates = registry.resolve("emotisense", explicit="cohere")
        assert candidates[:2] == ["cohere", "anthropic"]

    def test_no_duplicates(self):
        candidates = make_registry("openai").resolve("cinegen", explicit="openai")
        assert len(candidates) == len(set(candidates))

    def test_affinity_from_settings(self):
        registry = ProviderRegistry.from_settings(
            make_settings(openai_api_key="k", agent_affinity={"carebot": ["cohere", "anthropic"]})
        )
        assert registry.resolve("carebot")[:2] == ["cohere", "anthropic"]

    def test_resolution_has_no_side_effects(self):
        registry = make_registry("openai")
        first = registry.resolve("memora")
        second = registry.resolve("memora")
        assert first == second


# === Models ===


class TestModelFor:
    def test_provider_default(self):
        assert make_registry("openai").model_for("any", "openai") == "gpt-4"

    def test_agent_override_when_supported(self):
        registry = ProviderRegistry.from_settings(
            make_settings(openai_api_key="k", agent_models={"cinegen": "gpt-4o"})
        )
        assert registry.model_for("cinegen", "openai") == "gpt-4o"

    def test_agent_override_ignored_for_other_provider(self):
        registry = ProviderRegistry.from_settings(
            make_settings(openai_api_key="k", agent_models={"cinegen": "gpt-4o"})
        )
        assert registry.model_for("cinegen", "anthropic") == "claude-3-sonnet"


class TestStatus:
    def test_status_reports_every_provider(self):
        status = make_registry("elevenlabs").status()
        assert len(status) == 8
        assert status["elevenlabs"]["configured"] is True
        assert status["openai"]["configured"] is False
        assert "image" in status["openai"]["capabilities"]

    def test_media_vendor_capabilities(self):
        registry = make_registry("runwayml")
        assert registry.get("runwayml").supports("video")
        assert not registry.get("runwayml").supports("chat")
