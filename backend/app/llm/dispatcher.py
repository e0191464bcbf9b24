"""AiDispatcher — provider selection, retry policy and streaming over httpx.

Candidates come from the registry (explicit override, then agent affinity,
then the fallback order). Unconfigured candidates are skipped without an
attempt. Each configured candidate gets up to ``max_attempts`` tries for
transient failures (timeout, transport error, 429, 5xx) with exponential
backoff; any other failure advances to the next candidate. The first success
returns immediately.

Usage:
    dispatcher = AiDispatcher(ProviderRegistry.from_settings(settings))
    result = await dispatcher.complete(CompletionRequest(agent_id="emotisense", message="hi"))

    async for chunk in dispatcher.stream_chunks(request):
        ...
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from typing import Any

import httpx

from app.config import settings
from app.llm.errors import (
    ConnectionFailedError,
    DispatchError,
    NoProviderAvailableError,
    ProviderTimeoutError,
    StreamCancelled,
    error_for_status,
    is_transient,
)
from app.llm.sink import DispatchSink, LoggingSink
from app.models.provider import (
    CompletionOptions,
    CompletionRequest,
    CompletionResult,
    DispatchAttempt,
    StreamResult,
)
from app.providers.adapters import ADAPTERS, get_adapter
from app.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Awaitable[None] | None]


async def _retry_with_backoff(
    attempt_factory: Callable[[int], Awaitable[Any]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 8.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
):
    """Retry an async call with exponential backoff.

    Args:
        attempt_factory: Callable taking the 1-based attempt number and
            returning a new coroutine each time.
        max_attempts: Total attempts, including the first.
        base_delay: Initial delay in seconds.
        max_delay: Maximum delay cap.
        sleep: Awaitable sleep, replaceable in tests.

    Returns:
        The result of the successful call.
    """
    for attempt in range(max_attempts):
        try:
            return await attempt_factory(attempt + 1)
        except DispatchError as e:
            if not is_transient(e) or attempt >= max_attempts - 1:
                raise
            delay = min(base_delay * (2 ** attempt), max_delay)
            logger.warning(
                "Provider call attempt %d/%d failed (%s), retrying in %.1fs",
                attempt + 1, max_attempts, type(e).__name__, delay,
            )
            await sleep(delay)


class StreamProgress:
    """Per-call streaming progress."""

    def __init__(self) -> None:
        self.provider: str | None = None
        self.model = ""
        self.chunks = 0
        self.pieces: list[str] = []
        self.partial = False
        self.cancelled = False

    def deliver(self, piece: str) -> None:
        self.chunks += 1
        self.pieces.append(piece)

    def to_result(self) -> StreamResult:
        return StreamResult(
            provider=self.provider,  # type: ignore[arg-type]
            model=self.model,
            chunks=self.chunks,
            content="".join(self.pieces),
            partial=self.partial,
            cancelled=self.cancelled,
        )


class AiDispatcher:
    """Dispatches completions across providers.

    The only object shared between concurrent dispatches is the
    httpx.AsyncClient. Everything else is per-call.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        client: httpx.AsyncClient | None = None,
        sink: DispatchSink | None = None,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        chat_timeout: float | None = None,
        health_timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=chat_timeout or settings.chat_timeout)
        self.sink: DispatchSink = sink or LoggingSink()
        self.max_attempts = max_attempts or settings.max_retries
        self.base_delay = settings.retry_base_delay if base_delay is None else base_delay
        self.max_delay = settings.retry_max_delay if max_delay is None else max_delay
        self.chat_timeout = chat_timeout or settings.chat_timeout
        self.health_timeout = health_timeout or settings.health_timeout
        self._sleep = sleep

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    # --- Candidate selection ---

    def _candidates(self, request: CompletionRequest) -> list[str]:
        candidates = []
        for provider in self.registry.resolve(request.agent_id, request.options.provider):
            if not self.registry.is_configured(provider):
                logger.debug("Skipping unconfigured provider %s for %s", provider, request.agent_id)
                continue
            if provider not in ADAPTERS:
                logger.debug("Skipping %s: no chat capability", provider)
                continue
            candidates.append(provider)
        return candidates

    def _model(self, request: CompletionRequest, provider: str) -> str:
        config = self.registry.get(provider)
        requested = request.options.model
        if requested and (provider == request.options.provider or (config and requested in config.supported_models)):
            return requested
        return self.registry.model_for(request.agent_id, provider)

    def _record(
        self,
        request: CompletionRequest,
        provider: str,
        attempt: int,
        status: int | None,
        started: float,
        error: Exception | None,
    ) -> None:
        self.sink.record(
            DispatchAttempt(
                agent_id=request.agent_id,
                provider=provider,  # type: ignore[arg-type]
                attempt=attempt,
                status=status,
                latency_ms=(time.monotonic() - started) * 1000,
                input_size=request.input_size,
                error=str(error) if error else None,
            )
        )

    # --- Completion ---

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        """Return the first successful completion among the candidates.

        Raises:
            NoProviderAvailableError: every candidate failed or none is configured.
        """
        failures: list[DispatchError] = []
        for provider in self._candidates(request):
            try:
                return await self._complete_on(provider, request)
            except DispatchError as e:
                failures.append(e)
                logger.warning("Provider %s failed for %s, advancing: %s", provider, request.agent_id, e)
        raise self._exhausted(request, failures)

    async def _complete_on(self, provider: str, request: CompletionRequest, timeout: float | None = None) -> CompletionResult:
        return await _retry_with_backoff(
            lambda attempt: self._attempt(provider, request, attempt, timeout or self.chat_timeout),
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            sleep=self._sleep,
        )

    async def _attempt(self, provider: str, request: CompletionRequest, attempt: int, timeout: float) -> CompletionResult:
        config = self.registry.get(provider)
        adapter = get_adapter(provider)
        model = self._model(request, provider)
        started = time.monotonic()
        status: int | None = None
        error: Exception | None = None
        try:
            response = await self.client.post(
                adapter.url(request, config, model),
                json=adapter.build_payload(request, model, stream=False),
                headers=adapter.headers(config),
                timeout=timeout,
            )
            status = response.status_code
            if not response.is_success:
                raise error_for_status(status, response.text, provider)
            return adapter.parse_response(response.content, model)
        except httpx.TimeoutException as e:
            error = ProviderTimeoutError(f"{provider} timed out after {timeout:.0f}s", provider)
            raise error from e
        except httpx.TransportError as e:
            error = ConnectionFailedError(f"{provider} connection failed: {e}", provider)
            raise error from e
        except DispatchError as e:
            error = e
            raise
        finally:
            self._record(request, provider, attempt, status, started, error)

    def _exhausted(self, request: CompletionRequest, failures: list[DispatchError]) -> NoProviderAvailableError:
        if failures:
            logger.error(
                "All providers failed for %s: %s",
                request.agent_id, "; ".join(str(f) for f in failures),
            )
        else:
            logger.error("No AI provider configured for %s", request.agent_id)
        return NoProviderAvailableError(f"No AI provider available for {request.agent_id}", failures)

    # --- Streaming ---

    async def stream(self, request: CompletionRequest, on_chunk: ChunkCallback) -> StreamResult:
        """Deliver chunks to ``on_chunk`` in network order.

        ``on_chunk`` may be sync or async. Raising StreamCancelled from it
        closes the connection and returns a result with cancelled=True.
        """
        state = StreamProgress()
        async with aclosing(self._stream(request, state)) as chunks:
            async for chunk in chunks:
                try:
                    ret = on_chunk(chunk)
                    if inspect.isawaitable(ret):
                        await ret
                except StreamCancelled:
                    state.cancelled = True
                    logger.info("Stream cancelled by consumer after %d chunks (%s)", state.chunks, state.provider)
                    break
        return state.to_result()

    def stream_chunks(self, request: CompletionRequest, progress: StreamProgress | None = None) -> AsyncIterator[str]:
        """Async generator of text chunks. Closing it closes the connection.

        Pass a StreamProgress to inspect provider, partial and content afterwards.
        """
        return self._stream(request, progress or StreamProgress())

    async def _stream(self, request: CompletionRequest, state: StreamProgress) -> AsyncIterator[str]:
        failures: list[DispatchError] = []
        for provider in self._candidates(request):
            config = self.registry.get(provider)
            if not config.supports("stream"):
                try:
                    result = await self._complete_on(provider, request)
                except DispatchError as e:
                    failures.append(e)
                    logger.warning("Provider %s failed for %s, advancing: %s", provider, request.agent_id, e)
                    continue
                state.provider, state.model = provider, result.model
                if result.content:
                    state.deliver(result.content)
                    yield result.content
                return

            for attempt in range(self.max_attempts):
                try:
                    async with aclosing(self._stream_attempt(provider, request, attempt + 1, state)) as pieces:
                        async for piece in pieces:
                            yield piece
                    return
                except DispatchError as e:
                    if state.chunks:
                        state.partial = True
                        logger.warning(
                            "Stream from %s interrupted after %d chunks, returning partial content: %s",
                            provider, state.chunks, e,
                        )
                        return
                    if is_transient(e) and attempt < self.max_attempts - 1:
                        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
                        logger.warning(
                            "Stream attempt %d/%d on %s failed (%s), retrying in %.1fs",
                            attempt + 1, self.max_attempts, provider, type(e).__name__, delay,
                        )
                        await self._sleep(delay)
                        continue
                    failures.append(e)
                    logger.warning("Provider %s failed for %s, advancing: %s", provider, request.agent_id, e)
                    break
        raise self._exhausted(request, failures)

    async def _stream_attempt(
        self, provider: str, request: CompletionRequest, attempt: int, state: StreamProgress,
    ) -> AsyncIterator[str]:
        config = self.registry.get(provider)
        adapter = get_adapter(provider)
        model = self._model(request, provider)
        started = time.monotonic()
        status: int | None = None
        error: Exception | None = None
        try:
            async with self.client.stream(
                "POST",
                adapter.url(request, config, model),
                json=adapter.build_payload(request, model, stream=True),
                headers=adapter.headers(config),
                timeout=self.chat_timeout,
            ) as response:
                status = response.status_code
                if not response.is_success:
                    body = await response.aread()
                    raise error_for_status(status, body.decode("utf-8", errors="replace"), provider)
                state.provider, state.model = provider, model
                async for line in response.aiter_lines():
                    piece = adapter.parse_stream_chunk(line)
                    if piece:
                        state.deliver(piece)
                        yield piece
        except httpx.TimeoutException as e:
            error = ProviderTimeoutError(f"{provider} stream timed out after {self.chat_timeout:.0f}s", provider)
            raise error from e
        except httpx.TransportError as e:
            error = ConnectionFailedError(f"{provider} stream connection failed: {e}", provider)
            raise error from e
        except DispatchError as e:
            error = e
            raise
        finally:
            self._record(request, provider, attempt, status, started, error)

    # --- Health ---

    async def health_check(self) -> dict[str, dict]:
        """Probe every chat provider once with a minimal request."""

        async def probe(provider: str) -> tuple[str, dict]:
            if not self.registry.is_configured(provider):
                return provider, {"status": "unconfigured"}
            request = CompletionRequest(
                agent_id="health_check",
                message="ping",
                options=CompletionOptions(max_tokens=5, provider=provider),
            )
            started = time.monotonic()
            try:
                await self._attempt(provider, request, 1, self.health_timeout)
            except DispatchError as e:
                return provider, {"status": "unhealthy", "error": str(e)}
            return provider, {"status": "healthy", "latency_ms": round((time.monotonic() - started) * 1000, 1)}

        results = await asyncio.gather(*(probe(p) for p in ADAPTERS))
        return dict(results)
