"""ProviderRegistry — immutable catalog of AI providers and agent affinities.

Built once from Settings and passed explicitly to the dispatcher, so tests can
construct registries with any combination of configured providers.

Resolution order for an agent:
  1. explicit provider override (request options)
  2. the agent's affinity entry
  3. FALLBACK_ORDER
Unconfigured providers stay in the candidate list; the dispatcher skips them
without an attempt.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from app.config import ProviderId, Settings
from app.models.provider import ProviderConfig

logger = logging.getLogger(__name__)

CHAT_PROVIDERS: tuple[ProviderId, ...] = ("openai", "anthropic", "google", "huggingface", "cohere")
FALLBACK_ORDER: tuple[ProviderId, ...] = CHAT_PROVIDERS

# Agent category → preferred providers (before the fallback chain)
AGENT_AFFINITY: dict[str, tuple[ProviderId, ...]] = {
    "emotisense": ("anthropic",),
    "memora": ("anthropic",),
    "cinegen": ("openai",),
    "ideaforge": ("openai",),
    "datavision": ("google",),
    "netscope": ("google",),
}

SUPPORTED_MODELS: dict[ProviderId, frozenset[str]] = {
    "openai": frozenset({"gpt-4", "gpt-4-turbo", "gpt-4o", "gpt-3.5-turbo", "dall-e-3"}),
    "anthropic": frozenset({"claude-3-opus", "claude-3-sonnet", "claude-3-haiku"}),
    "google": frozenset({"gemini-pro", "gemini-pro-vision", "gemini-1.5-flash", "gemini-1.5-pro"}),
    "huggingface": frozenset({"microsoft/DialoGPT-large", "facebook/blenderbot-400M-distill"}),
    "cohere": frozenset({"command", "command-light", "command-nightly"}),
    "runwayml": frozenset({"gen-3-alpha-turbo", "gen3", "gen2", "stable-diffusion"}),
    "elevenlabs": frozenset({"eleven_monolingual_v1", "eleven_multilingual_v2"}),
    "assemblyai": frozenset({"best", "nano"}),
}


class ProviderRegistry:
    """Read-only provider catalog.

    Usage:
        registry = ProviderRegistry.from_settings(settings)
        registry.is_configured("openai")
        registry.resolve("emotisense")  # ["anthropic", "openai", "google", ...]
    """

    def __init__(
        self,
        providers: Iterable[ProviderConfig],
        affinity: Mapping[str, Iterable[str]] | None = None,
        agent_models: Mapping[str, str] | None = None,
    ) -> None:
        self._providers: dict[str, ProviderConfig] = {p.id: p for p in providers}
        merged: dict[str, tuple[str, ...]] = dict(AGENT_AFFINITY)
        for agent, order in (affinity or {}).items():
            merged[agent] = tuple(order)
        self._affinity = merged
        self._agent_models = dict(agent_models or {})

    @classmethod
    def from_settings(cls, s: Settings) -> ProviderRegistry:
        """Build the catalog from environment configuration."""
        chat_caps = frozenset({"chat", "stream"})
        org_headers: tuple[tuple[str, str], ...] = ()
        if s.openai_organization_id:
            org_headers = (("OpenAI-Organization", s.openai_organization_id),)
        runway_headers: tuple[tuple[str, str], ...] = ()
        if s.runwayml_team_id:
            runway_headers = (("X-Team-ID", s.runwayml_team_id),)

        providers = [
            ProviderConfig(
                id="openai", base_url=s.openai_base_url, api_key=s.openai_api_key,
                auth_style="bearer", default_model=s.openai_default_model,
                supported_models=SUPPORTED_MODELS["openai"],
                capabilities=frozenset({"chat", "stream", "image"}),
                extra_headers=org_headers,
            ),
            ProviderConfig(
                id="anthropic", base_url=s.anthropic_base_url, api_key=s.anthropic_api_key,
                auth_style="x-api-key", default_model=s.anthropic_default_model,
                supported_models=SUPPORTED_MODELS["anthropic"], capabilities=chat_caps,
                extra_headers=(("anthropic-version", "2023-06-01"),),
            ),
            ProviderConfig(
                id="google", base_url=s.google_base_url, api_key=s.google_ai_api_key,
                auth_style="query", default_model=s.google_default_model,
                supported_models=SUPPORTED_MODELS["google"], capabilities=frozenset({"chat"}),
            ),
            ProviderConfig(
                id="huggingface", base_url=s.huggingface_base_url, api_key=s.huggingface_api_key,
                auth_style="bearer", default_model=s.huggingface_default_model,
                supported_models=SUPPORTED_MODELS["huggingface"], capabilities=frozenset({"chat"}),
            ),
            ProviderConfig(
                id="cohere", base_url=s.cohere_base_url, api_key=s.cohere_api_key,
                auth_style="bearer", default_model=s.cohere_default_model,
                supported_models=SUPPORTED_MODELS["cohere"], capabilities=chat_caps,
            ),
            ProviderConfig(
                id="runwayml", base_url=s.runwayml_base_url, api_key=s.runwayml_api_key,
                auth_style="bearer", default_model=s.runwayml_default_model,
                supported_models=SUPPORTED_MODELS["runwayml"],
                capabilities=frozenset({"image", "video"}),
                extra_headers=runway_headers,
            ),
            ProviderConfig(
                id="elevenlabs", base_url=s.elevenlabs_base_url, api_key=s.elevenlabs_api_key,
                auth_style="xi-api-key", default_model=s.elevenlabs_default_model,
                supported_models=SUPPORTED_MODELS["elevenlabs"], capabilities=frozenset({"audio"}),
            ),
            ProviderConfig(
                id="assemblyai", base_url=s.assemblyai_base_url, api_key=s.assemblyai_api_key,
                auth_style="raw", default_model=s.assemblyai_default_model,
                supported_models=SUPPORTED_MODELS["assemblyai"], capabilities=frozenset({"audio"}),
            ),
        ]
        registry = cls(providers, affinity=s.agent_affinity, agent_models=s.agent_models)
        logger.info("Provider registry loaded: %s configured", ", ".join(registry.configured_providers()) or "none")
        return registry

    def get(self, provider: str) -> ProviderConfig | None:
        return self._providers.get(provider)

    def is_configured(self, provider: str) -> bool:
        config = self._providers.get(provider)
        return bool(config and config.configured)

    def configured_providers(self) -> list[str]:
        return [pid for pid, cfg in self._providers.items() if cfg.configured]

    def affinity_for(self, agent_id: str) -> tuple[str, ...]:
        return self._affinity.get(agent_id, ())

    def resolve(self, agent_id: str, explicit: str | None = None) -> list[str]:
        """Ordered candidate providers for an agent.

        Returns an empty list when nothing is configured.
        """
        if not self.configured_providers():
            return []
        order: list[str] = []
        if explicit:
            order.append(explicit)
        order.extend(self.affinity_for(agent_id))
        order.extend(FALLBACK_ORDER)

        candidates: list[str] = []
        for provider in order:
            if provider in self._providers and provider not in candidates:
                candidates.append(provider)
        return candidates

    def model_for(self, agent_id: str, provider: str) -> str:
        """Per-agent model override, else the provider default."""
        override = self._agent_models.get(agent_id)
        config = self._providers.get(provider)
        if override and config and (not config.supported_models or override in config.supported_models):
            return override
        return config.default_model if config else ""

    def status(self) -> dict[str, dict]:
        return {
            pid: {
                "configured": cfg.configured,
                "capabilities": sorted(cfg.capabilities),
                "default_model": cfg.default_model,
            }
            for pid, cfg in self._providers.items()
        }
