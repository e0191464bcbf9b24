"""Dispatch error taxonomy.

  UnconfiguredError          → provider skipped, not fatal
  ProviderTimeoutError       → transient, retried on the same provider
  ConnectionFailedError      → transient, retried on the same provider
  RateLimitedError (429)     → transient, retried on the same provider
  ProviderError (5xx)        → transient, retried on the same provider
  AuthenticationFailedError  → not retried, dispatcher advances
  ProviderError (other 4xx)  → not retried, dispatcher advances
  MalformedResponseError     → attempt failed, dispatcher advances
  NoProviderAvailableError   → terminal, surfaced with a generic message

Every error keeps its technical detail in ``str(err)`` for logging and exposes
a safe ``user_message`` for end users.
"""

from __future__ import annotations

FALLBACK_MESSAGE = (
    "I'm sorry, but I'm experiencing technical difficulties right now. "
    "Please try again in a moment."
)


class DispatchError(Exception):
    """Base class for all provider dispatch failures."""

    transient = False

    def __init__(self, message: str = "", provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider

    @property
    def user_message(self) -> str:
        return FALLBACK_MESSAGE


class UnconfiguredError(DispatchError):
    """No credential present for the provider."""


class ProviderTimeoutError(DispatchError):
    transient = True


class RateLimitedError(DispatchError):
    transient = True


class ConnectionFailedError(DispatchError):
    """Transport failure: connect, read or protocol error."""

    transient = True


class AuthenticationFailedError(DispatchError):
    """401/403 from the provider."""


class ProviderError(DispatchError):
    """Non-2xx response. 5xx is transient; other 4xx is not."""

    def __init__(self, status: int, message: str = "", provider: str | None = None) -> None:
        super().__init__(f"{provider or 'provider'} returned {status}: {message}", provider)
        self.status = status
        self.detail = message

    @property
    def transient(self) -> bool:  # type: ignore[override]
        return self.status >= 500


class MalformedResponseError(DispatchError):
    """Response body could not be parsed as JSON."""


class NoProviderAvailableError(DispatchError):
    """Every candidate failed or none was configured."""

    def __init__(self, message: str = "", failures: list[DispatchError] | None = None) -> None:
        super().__init__(message or "No AI provider available")
        self.failures = failures or []


class StreamCancelled(Exception):
    """Raised by a stream consumer to abort delivery and close the connection."""


def is_transient(error: Exception) -> bool:
    """Whether the error should be retried on the same provider."""
    return isinstance(error, DispatchError) and bool(error.transient)


def error_for_status(status: int, body: str, provider: str) -> DispatchError:
    """Map a non-2xx HTTP status onto the taxonomy."""
    snippet = body[:500]
    if status in (401, 403):
        return AuthenticationFailedError(f"Invalid API key for {provider} ({status})", provider)
    if status == 429:
        return RateLimitedError(f"Rate limit exceeded for {provider}", provider)
    return ProviderError(status, snippet, provider)
