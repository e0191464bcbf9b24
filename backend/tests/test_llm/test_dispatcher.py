"""Tests for AiDispatcher — fallback, retries, error taxonomy, streaming, health."""

from __future__ import annotations

import httpx
import pytest
from conftest import make_dispatcher, make_registry

from app.llm.errors import (
    FALLBACK_MESSAGE,
    AuthenticationFailedError,
    MalformedResponseError,
    NoProviderAvailableError,
    ProviderError,
    RateLimitedError,
    StreamCancelled,
)
from app.llm.sink import RecordingSink
from app.models.provider import CompletionOptions, CompletionRequest

OPENAI_OK = {"model": "gpt-4", "choices": [{"message": {"content": "from openai"}}]}
ANTHROPIC_OK = {"content": [{"text": "from anthropic"}]}
COHERE_OK = {"generations": [{"text": "from cohere"}]}
GOOGLE_OK = {"candidates": [{"content": {"parts": [{"text": "from google"}]}}]}


def _host(request: httpx.Request) -> str:
    host = request.url.host
    if "openai" in host:
        return "openai"
    if "anthropic" in host:
        return "anthropic"
    if "cohere" in host:
        return "cohere"
    if "googleapis" in host:
        return "google"
    return "huggingface"


def _request(agent_id: str = "neochat", **options) -> CompletionRequest:
    return CompletionRequest(agent_id=agent_id, message="hello", options=CompletionOptions(**options))


# === Candidate selection ===


class TestFallback:
    @pytest.mark.asyncio
    async def test_skips_unconfigured_and_calls_next_once(self):
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(_host(request))
            return httpx.Response(200, json=ANTHROPIC_OK)

        sink = RecordingSink()
        dispatcher = make_dispatcher(make_registry("anthropic"), handler, sink=sink)
        result = await dispatcher.complete(_request())

        assert result.content == "from anthropic"
        assert result.provider == "anthropic"
        assert calls == ["anthropic"]
        assert sink.providers_called() == ["anthropic"]

    @pytest.mark.asyncio
    async def test_no_provider_configured(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no HTTP call expected")

        dispatcher = make_dispatcher(make_registry(), handler)
        with pytest.raises(NoProviderAvailableError) as exc_info:
            await dispatcher.complete(_request())
        assert exc_info.value.user_message == FALLBACK_MESSAGE
        assert exc_info.value.failures == []

    @pytest.mark.asyncio
    async def test_first_success_stops(self):
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(_host(request))
            return httpx.Response(200, json=OPENAI_OK)

        dispatcher = make_dispatcher(make_registry("openai", "anthropic", "cohere"), handler)
        await dispatcher.complete(_request())
        assert calls == ["openai"]

    @pytest.mark.asyncio
    async def test_affinity_order_used(self):
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(_host(request))
            return httpx.Response(200, json=ANTHROPIC_OK)

        dispatcher = make_dispatcher(make_registry("openai", "anthropic"), handler)
        result = await dispatcher.complete(_request("emotisense"))
        assert result.provider == "anthropic"
        assert calls == ["anthropic"]

    @pytest.mark.asyncio
    async def test_explicit_provider_override(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=COHERE_OK)

        dispatcher = make_dispatcher(make_registry("openai", "cohere"), handler)
        result = await dispatcher.complete(_request(provider="cohere", model="command-light"))
        assert result.provider == "cohere"
        assert result.model == "command-light"


# === Retry policy ===


class TestRetries:
    @pytest.mark.asyncio
    async def test_rate_limit_retried_then_advances(self):
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            provider = _host(request)
            calls.append(provider)
            if provider == "openai":
                return httpx.Response(429, text="slow down")
            return httpx.Response(200, json=ANTHROPIC_OK)

        sink = RecordingSink()
        dispatcher = make_dispatcher(make_registry("openai", "anthropic"), handler, sink=sink)
        result = await dispatcher.complete(_request())

        assert result.provider == "anthropic"
        assert calls == ["openai", "openai", "openai", "anthropic"]
        assert [a.attempt for a in sink.attempts] == [1, 2, 3, 1]
        assert [a.status for a in sink.attempts] == [429, 429, 429, 200]
        assert dispatcher.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_server_error_recovers_on_same_provider(self):
        responses = iter([httpx.Response(503, text="busy"), httpx.Response(200, json=OPENAI_OK)])

        def handler(request: httpx.Request) -> httpx.Response:
            return next(responses)

        dispatcher = make_dispatcher(make_registry("openai"), handler)
        result = await dispatcher.complete(_request())
        assert result.content == "from openai"
        assert dispatcher.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        attempts = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["n"] += 1
            if attempts["n"] == 1:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json=OPENAI_OK)

        dispatcher = make_dispatcher(make_registry("openai"), handler)
        result = await dispatcher.complete(_request())
        assert result.content == "from openai"
        assert attempts["n"] == 2

    @pytest.mark.asyncio
    async def test_connect_error_exhausts_then_fails(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        sink = RecordingSink()
        dispatcher = make_dispatcher(make_registry("openai"), handler, sink=sink)
        with pytest.raises(NoProviderAvailableError) as exc_info:
            await dispatcher.complete(_request())
        assert len(sink.attempts) == 3
        assert all(a.status is None for a in sink.attempts)
        assert len(exc_info.value.failures) == 1

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        dispatcher = make_dispatcher(make_registry("openai"), handler, max_attempts=5, base_delay=1.0, max_delay=3.0)
        with pytest.raises(NoProviderAvailableError):
            await dispatcher.complete(_request())
        assert dispatcher.sleeps == [1.0, 2.0, 3.0, 3.0]


# === Non-retryable failures ===


class TestAdvance:
    @pytest.mark.asyncio
    async def test_auth_failure_not_retried(self):
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            provider = _host(request)
            calls.append(provider)
            if provider == "openai":
                return httpx.Response(401, json={"error": "bad key"})
            return httpx.Response(200, json=ANTHROPIC_OK)

        dispatcher = make_dispatcher(make_registry("openai", "anthropic"), handler)
        result = await dispatcher.complete(_request())
        assert result.provider == "anthropic"
        assert calls == ["openai", "anthropic"]
        assert dispatcher.sleeps == []

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            provider = _host(request)
            calls.append(provider)
            if provider == "openai":
                return httpx.Response(400, text="bad request")
            return httpx.Response(200, json=ANTHROPIC_OK)

        dispatcher = make_dispatcher(make_registry("openai", "anthropic"), handler)
        await dispatcher.complete(_request())
        assert calls == ["openai", "anthropic"]

    @pytest.mark.asyncio
    async def test_malformed_body_advances(self):
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            provider = _host(request)
            calls.append(provider)
            if provider == "openai":
                return httpx.Response(200, text="not json at all")
            return httpx.Response(200, json=ANTHROPIC_OK)

        dispatcher = make_dispatcher(make_registry("openai", "anthropic"), handler)
        result = await dispatcher.complete(_request())
        assert result.provider == "anthropic"
        assert calls == ["openai", "anthropic"]

    @pytest.mark.asyncio
    async def test_all_fail_collects_failures(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if _host(request) == "openai":
                return httpx.Response(403)
            return httpx.Response(404, text="no model")

        dispatcher = make_dispatcher(make_registry("openai", "anthropic"), handler)
        with pytest.raises(NoProviderAvailableError) as exc_info:
            await dispatcher.complete(_request())
        failures = exc_info.value.failures
        assert isinstance(failures[0], AuthenticationFailedError)
        assert isinstance(failures[1], ProviderError)
        assert failures[1].status == 404
        assert exc_info.value.user_message == FALLBACK_MESSAGE

    @pytest.mark.asyncio
    async def test_sink_records_input_size_and_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401)

        sink = RecordingSink()
        dispatcher = make_dispatcher(make_registry("openai"), handler, sink=sink)
        with pytest.raises(NoProviderAvailableError):
            await dispatcher.complete(_request())
        attempt = sink.attempts[0]
        assert attempt.agent_id == "neochat"
        assert attempt.input_size == len("hello")
        assert attempt.status == 401
        assert "Invalid API key" in attempt.error


# === Streaming ===


def _sse(*pieces: str) -> bytes:
    lines = [f'data: {{"choices":[{{"delta":{{"content":"{p}"}}}}]}}\n\n' for p in pieces]
    return ("".join(lines) + "data: [DONE]\n\n").encode()


class _BrokenStream(httpx.AsyncByteStream):
    """Delivers one SSE event, then drops the connection."""

    async def __aiter__(self):
        yield b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
        raise httpx.ReadError("connection reset")


class TestStreaming:
    @pytest.mark.asyncio
    async def test_chunks_delivered_in_order(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=_sse("Hel", "lo", "!"))

        received: list[str] = []
        dispatcher = make_dispatcher(make_registry("openai"), handler)
        result = await dispatcher.stream(_request(), received.append)

        assert received == ["Hel", "lo", "!"]
        assert result.content == "Hello!"
        assert result.chunks == 3
        assert result.partial is False
        assert result.cancelled is False

    @pytest.mark.asyncio
    async def test_async_callback(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=_sse("a", "b"))

        received: list[str] = []

        async def on_chunk(chunk: str) -> None:
            received.append(chunk)

        dispatcher = make_dispatcher(make_registry("openai"), handler)
        await dispatcher.stream(_request(), on_chunk)
        assert received == ["a", "b"]

    @pytest.mark.asyncio
    async def test_interrupted_after_first_chunk_is_partial(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(200, stream=_BrokenStream())

        dispatcher = make_dispatcher(make_registry("openai"), handler)
        result = await dispatcher.stream(_request(), lambda chunk: None)

        assert result.partial is True
        assert result.content == "Hel"
        assert calls["n"] == 1

    @pytest.mark.asyncio
    async def test_retry_before_first_chunk(self):
        responses = iter([httpx.Response(429), httpx.Response(200, content=_sse("ok"))])

        def handler(request: httpx.Request) -> httpx.Response:
            return next(responses)

        dispatcher = make_dispatcher(make_registry("openai"), handler)
        result = await dispatcher.stream(_request(), lambda chunk: None)
        assert result.content == "ok"
        assert dispatcher.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_cancel_from_callback(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=_sse("one", "two", "three"))

        received: list[str] = []

        def on_chunk(chunk: str) -> None:
            received.append(chunk)
            if len(received) == 2:
                raise StreamCancelled()

        dispatcher = make_dispatcher(make_registry("openai"), handler)
        result = await dispatcher.stream(_request(), on_chunk)
        assert result.cancelled is True
        assert received == ["one", "two"]
        assert result.content == "onetwo"

    @pytest.mark.asyncio
    async def test_non_streaming_provider_delivers_one_chunk(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=GOOGLE_OK)

        received: list[str] = []
        dispatcher = make_dispatcher(make_registry("google"), handler)
        result = await dispatcher.stream(_request(), received.append)
        assert received == ["from google"]
        assert result.provider == "google"
        assert result.chunks == 1

    @pytest.mark.asyncio
    async def test_stream_falls_back_to_next_provider(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if _host(request) == "openai":
                return httpx.Response(401)
            return httpx.Response(200, content=b'data: {"delta":{"text":"claude"}}\n\n')

        dispatcher = make_dispatcher(make_registry("openai", "anthropic"), handler)
        result = await dispatcher.stream(_request(), lambda chunk: None)
        assert result.provider == "anthropic"
        assert result.content == "claude"

    @pytest.mark.asyncio
    async def test_stream_with_nothing_configured(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no HTTP call expected")

        dispatcher = make_dispatcher(make_registry(), handler)
        with pytest.raises(NoProviderAvailableError):
            await dispatcher.stream(_request(), lambda chunk: None)

    @pytest.mark.asyncio
    async def test_stream_chunks_generator(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=_sse("x", "y"))

        dispatcher = make_dispatcher(make_registry("openai"), handler)
        chunks = [c async for c in dispatcher.stream_chunks(_request())]
        assert chunks == ["x", "y"]


# === Health ===


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_statuses(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if _host(request) == "openai":
                return httpx.Response(200, json=OPENAI_OK)
            return httpx.Response(401)

        dispatcher = make_dispatcher(make_registry("openai", "anthropic"), handler)
        results = await dispatcher.health_check()

        assert results["openai"]["status"] == "healthy"
        assert "latency_ms" in results["openai"]
        assert results["anthropic"]["status"] == "unhealthy"
        assert results["google"] == {"status": "unconfigured"}
        assert set(results) == {"openai", "anthropic", "google", "huggingface", "cohere"}

    @pytest.mark.asyncio
    async def test_probe_is_not_retried(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(429)

        dispatcher = make_dispatcher(make_registry("openai"), handler)
        results = await dispatcher.health_check()
        assert results["openai"]["status"] == "unhealthy"
        assert calls["n"] == 1


class TestErrorTaxonomy:
    def test_rate_limit_transient(self):
        from app.llm.errors import error_for_status, is_transient

        assert isinstance(error_for_status(429, "", "openai"), RateLimitedError)
        assert is_transient(error_for_status(429, "", "openai"))
        assert is_transient(error_for_status(502, "", "openai"))
        assert not is_transient(error_for_status(400, "", "openai"))
        assert not is_transient(error_for_status(401, "", "openai"))
        assert not is_transient(MalformedResponseError("x"))

    def test_user_message_is_generic(self):
        err = ProviderError(500, "stack trace with secrets", "openai")
        assert "secrets" in str(err)
        assert "secrets" not in err.user_message
