"""Observability sinks for dispatch attempts.

The dispatcher reports one DispatchAttempt per provider call:
(agent, provider, status, latency, input size). Sinks must not raise.
"""

from __future__ import annotations

import logging
from typing import Protocol

from app.models.provider import DispatchAttempt

logger = logging.getLogger(__name__)


class DispatchSink(Protocol):
    def record(self, attempt: DispatchAttempt) -> None: ...


class LoggingSink:
    """Default sink — one log line per attempt."""

    def record(self, attempt: DispatchAttempt) -> None:
        if attempt.error:
            logger.warning(
                "AI API attempt failed - Agent: %s, Provider: %s, Attempt: %d, Status: %s, "
                "Latency: %.0fms, Input length: %d, Error: %s",
                attempt.agent_id, attempt.provider, attempt.attempt, attempt.status,
                attempt.latency_ms, attempt.input_size, attempt.error,
            )
        else:
            logger.info(
                "AI API Usage - Agent: %s, Provider: %s, Status: %s, Latency: %.0fms, Input length: %d",
                attempt.agent_id, attempt.provider, attempt.status,
                attempt.latency_ms, attempt.input_size,
            )


class RecordingSink:
    """Keeps attempts in memory for inspection."""

    def __init__(self) -> None:
        self.attempts: list[DispatchAttempt] = []

    def record(self, attempt: DispatchAttempt) -> None:
        self.attempts.append(attempt)

    def providers_called(self) -> list[str]:
        return [a.provider for a in self.attempts]
