"""Shared test fixtures for the persona cognition backend."""

import os
import sys
from datetime import datetime, timezone

import httpx
import pytest

# Ensure backend is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")

from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from app.config import Settings
from app.db.database import create_db_and_tables
from app.llm.dispatcher import AiDispatcher
from app.llm.sink import RecordingSink
from app.memory.service import MemoryService
from app.providers.registry import ProviderRegistry

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

ALL_KEYS = {
    "openai_api_key": "sk-openai",
    "anthropic_api_key": "sk-anthropic",
    "google_ai_api_key": "g-key",
    "huggingface_api_key": "hf-key",
    "cohere_api_key": "co-key",
    "runwayml_api_key": "rw-key",
    "elevenlabs_api_key": "el-key",
    "assemblyai_api_key": "aai-key",
}


def make_settings(**keys) -> Settings:
    """Settings with only the given API keys set (env and .env ignored)."""
    blank = {name: "" for name in ALL_KEYS}
    blank.update(keys)
    return Settings(_env_file=None, **blank)


def make_registry(*providers: str, **overrides) -> ProviderRegistry:
    """Registry with exactly ``providers`` configured."""
    keys = {name: value for name, value in ALL_KEYS.items() if name.split("_")[0] in providers}
    return ProviderRegistry.from_settings(make_settings(**keys, **overrides))


def make_dispatcher(registry: ProviderRegistry, handler, sink: RecordingSink | None = None, **kwargs) -> AiDispatcher:
    """Dispatcher over an httpx.MockTransport; backoff sleeps are recorded, not awaited."""
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    dispatcher = AiDispatcher(registry, client=client, sink=sink or RecordingSink(), sleep=fake_sleep, **kwargs)
    dispatcher.sleeps = sleeps  # type: ignore[attr-defined]
    return dispatcher


@pytest.fixture
def db_engine():
    """In-memory SQLite shared across threads (StaticPool)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def clock():
    """Mutable clock for MemoryService: set ``clock.now`` to move time."""

    class _Clock:
        now = NOW

        def __call__(self) -> datetime:
            return self.now

    return _Clock()


@pytest.fixture
def memory_service(db_engine, clock) -> MemoryService:
    return MemoryService(
        db_engine,
        now=clock,
        importance_threshold=5,
        decay_rate=0.1,
        max_results=50,
        archive_after_days=90,
    )
