"""Persona cognition configuration — provider credentials, models, timeouts."""

from typing import Literal

from pydantic_settings import BaseSettings

ProviderId = Literal[
    "openai",
    "anthropic",
    "google",
    "huggingface",
    "cohere",
    "runwayml",
    "elevenlabs",
    "assemblyai",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Keys (empty = provider unconfigured)
    openai_api_key: str = ""
    openai_organization_id: str = ""
    anthropic_api_key: str = ""
    google_ai_api_key: str = ""
    huggingface_api_key: str = ""
    cohere_api_key: str = ""
    runwayml_api_key: str = ""
    runwayml_team_id: str = ""
    elevenlabs_api_key: str = ""
    elevenlabs_default_voice_id: str = "pNInz6obpgDQGcFmaJgB"
    assemblyai_api_key: str = ""

    # Base URLs
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    google_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    huggingface_base_url: str = "https://api-inference.huggingface.co/models"
    cohere_base_url: str = "https://api.cohere.ai/v1"
    runwayml_base_url: str = "https://api.runwayml.com/v1"
    elevenlabs_base_url: str = "https://api.elevenlabs.io/v1"
    assemblyai_base_url: str = "https://api.assemblyai.com/v2"

    # Default models per provider
    openai_default_model: str = "gpt-4"
    anthropic_default_model: str = "claude-3-sonnet"
    google_default_model: str = "gemini-1.5-flash"
    huggingface_default_model: str = "microsoft/DialoGPT-large"
    cohere_default_model: str = "command"
    runwayml_default_model: str = "gen-3-alpha-turbo"
    elevenlabs_default_model: str = "eleven_monolingual_v1"
    assemblyai_default_model: str = "best"

    # Per-agent overrides (JSON in env, e.g. AGENT_AFFINITY='{"carebot": ["anthropic"]}')
    agent_affinity: dict[str, list[str]] = {}
    agent_models: dict[str, str] = {}

    # Timeouts (seconds, per attempt)
    chat_timeout: float = 30.0
    generation_timeout: float = 60.0
    health_timeout: float = 10.0

    # Retry policy for transient provider errors
    max_retries: int = 3  # total attempts per provider
    retry_base_delay: float = 1.0
    retry_max_delay: float = 8.0

    # LLM defaults
    default_max_tokens: int = 4096
    default_temperature: float = 0.7

    # Media job polling
    media_poll_interval: float = 5.0
    media_poll_max_attempts: int = 120

    # Memory
    memory_importance_threshold: int = 5
    memory_decay_rate: float = 0.1
    max_memories_per_session: int = 50
    memory_archive_after_days: int = 90

    # Database
    database_url: str = "sqlite:///data/persona.db"

    # CORS (comma-separated origins)
    cors_origins: str = "http://localhost:3000"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
