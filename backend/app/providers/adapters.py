"""Provider adapters — request builders and response normalizers.

One adapter per chat provider, all implementing ProviderAdapter. Adapters are
pure transformations; network I/O belongs to the dispatcher.

Wire formats:
  openai       POST chat/completions                    choices[0].message.content
  anthropic    POST messages                            content[0].text
  google       POST models/{model}:generateContent      candidates[0].content.parts[0].text
  huggingface  POST {model}                             [0].generated_text | generated_text
  cohere       POST chat                                generations[0].text

Streaming uses SSE framing (``data: {...}`` lines, ``data: [DONE]`` sentinel);
the incremental field per provider lives in STREAM_DELTA_PATHS.
"""

from __future__ import annotations

import json
import logging
from typing import Any, ClassVar

from app.config import settings
from app.llm.errors import MalformedResponseError
from app.models.provider import (
    ChatMessage,
    CompletionRequest,
    CompletionResult,
    ProviderConfig,
    Usage,
)

logger = logging.getLogger(__name__)

SSE_PREFIX = "data: "
SSE_DONE = "[DONE]"

# provider → path to the incremental text in one parsed SSE event
STREAM_DELTA_PATHS: dict[str, tuple[str | int, ...]] = {
    "openai": ("choices", 0, "delta", "content"),
    "anthropic": ("delta", "text"),
    "cohere": ("text",),
}


def dig(data: Any, path: tuple[str | int, ...]) -> Any:
    """Follow a key/index path, returning None on any miss."""
    current = data
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
            current = current[key]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def auth_headers(config: ProviderConfig) -> dict[str, str]:
    """Credential headers for a provider's auth style."""
    headers = {"Content-Type": "application/json"}
    if config.auth_style == "bearer":
        headers["Authorization"] = f"Bearer {config.api_key}"
    elif config.auth_style == "x-api-key":
        headers["x-api-key"] = config.api_key
    elif config.auth_style == "xi-api-key":
        headers["xi-api-key"] = config.api_key
    elif config.auth_style == "raw":
        headers["authorization"] = config.api_key
    # "query": the key travels in the endpoint, no header
    headers.update(dict(config.extra_headers))
    return headers


class ProviderAdapter:
    """Common capability interface for chat providers."""

    provider: ClassVar[str] = ""
    default_max_tokens: ClassVar[int] = 4096

    def headers(self, config: ProviderConfig) -> dict[str, str]:
        return auth_headers(config)

    def endpoint(self, request: CompletionRequest, config: ProviderConfig, model: str) -> str:
        raise NotImplementedError

    def url(self, request: CompletionRequest, config: ProviderConfig, model: str) -> str:
        return f"{config.base_url.rstrip('/')}/{self.endpoint(request, config, model)}"

    def build_payload(self, request: CompletionRequest, model: str, stream: bool = False) -> dict:
        raise NotImplementedError

    def parse_response(self, raw_body: bytes | str | dict | list, model: str = "") -> CompletionResult:
        """Normalize a response body. Missing content is valid (content=None)."""
        data = self._load(raw_body)
        content = self.extract_content(data)
        return CompletionResult(
            content=content if isinstance(content, str) else None,
            provider=self.provider,  # type: ignore[arg-type]
            model=self.extract_model(data) or model,
            usage=self.extract_usage(data),
            raw=data,
        )

    def parse_stream_chunk(self, raw_chunk: str | bytes) -> str | None:
        """Extract incremental text from an SSE chunk.

        Non-data lines and the [DONE] sentinel are skipped; malformed JSON
        events are dropped without error. Returns None when the chunk
        carries no text.
        """
        path = STREAM_DELTA_PATHS.get(self.provider)
        if path is None:
            return None
        if isinstance(raw_chunk, bytes):
            raw_chunk = raw_chunk.decode("utf-8", errors="replace")

        pieces: list[str] = []
        for line in raw_chunk.split("\n"):
            line = line.rstrip("\r")
            if not line.startswith(SSE_PREFIX):
                continue
            data = line[len(SSE_PREFIX):]
            if data.strip() == SSE_DONE:
                continue
            try:
                event = json.loads(data)
            except json.JSONDecodeError:
                continue
            delta = dig(event, path)
            if isinstance(delta, str) and delta:
                pieces.append(delta)
        return "".join(pieces) if pieces else None

    # --- provider-specific extraction ---

    def extract_content(self, data: Any) -> Any:
        raise NotImplementedError

    def extract_model(self, data: Any) -> str:
        return data.get("model", "") if isinstance(data, dict) else ""

    def extract_usage(self, data: Any) -> Usage | None:
        return None

    # --- helpers ---

    def _load(self, raw_body: bytes | str | dict | list) -> Any:
        if isinstance(raw_body, (dict, list)):
            return raw_body
        try:
            return json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
            raise MalformedResponseError(f"{self.provider} returned invalid JSON: {e}", self.provider) from e

    def _max_tokens(self, request: CompletionRequest) -> int:
        return request.options.max_tokens or self.default_max_tokens

    def _temperature(self, request: CompletionRequest) -> float:
        t = request.options.temperature
        return t if t is not None else settings.default_temperature

    @staticmethod
    def message_history(request: CompletionRequest) -> list[dict]:
        """System prompt first, then history in order, then the current message."""
        messages: list[dict] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.extend(m.model_dump() for m in request.history)
        messages.append({"role": "user", "content": request.message})
        return messages

    @staticmethod
    def flatten_prompt(request: CompletionRequest) -> str:
        """Single prompt string for single-turn providers."""
        if not request.system_prompt and not request.history:
            return request.message
        parts: list[str] = []
        if request.system_prompt:
            parts.append(request.system_prompt)
        for m in request.history:
            parts.append(f"{_ROLE_LABELS.get(m.role, m.role)}: {m.content}")
        parts.append(f"User: {request.message}" if request.history else request.message)
        return "\n\n".join(parts)


_ROLE_LABELS = {"system": "System", "user": "User", "assistant": "Assistant"}


class OpenAIAdapter(ProviderAdapter):
    provider = "openai"
    default_max_tokens = 4096

    def endpoint(self, request: CompletionRequest, config: ProviderConfig, model: str) -> str:
        return "chat/completions"

    def build_payload(self, request: CompletionRequest, model: str, stream: bool = False) -> dict:
        return {
            "model": model,
            "messages": self.message_history(request),
            "max_tokens": self._max_tokens(request),
            "temperature": self._temperature(request),
            "stream": stream,
        }

    def extract_content(self, data: Any) -> Any:
        return dig(data, ("choices", 0, "message", "content"))

    def extract_usage(self, data: Any) -> Usage | None:
        usage = dig(data, ("usage",))
        if not isinstance(usage, dict):
            return None
        return Usage(
            prompt_tokens=usage.get("prompt_tokens", 0) or 0,
            completion_tokens=usage.get("completion_tokens", 0) or 0,
        )


class AnthropicAdapter(ProviderAdapter):
    provider = "anthropic"
    default_max_tokens = 4096

    def endpoint(self, request: CompletionRequest, config: ProviderConfig, model: str) -> str:
        return "messages"

    def build_payload(self, request: CompletionRequest, model: str, stream: bool = False) -> dict:
        # Messages API takes the system prompt as a top-level field, not a role
        messages = [m for m in self.message_history(request) if m["role"] != "system"]
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": self._max_tokens(request),
            "messages": messages,
            "stream": stream,
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        if request.options.temperature is not None:
            payload["temperature"] = request.options.temperature
        return payload

    def extract_content(self, data: Any) -> Any:
        return dig(data, ("content", 0, "text"))

    def extract_usage(self, data: Any) -> Usage | None:
        usage = dig(data, ("usage",))
        if not isinstance(usage, dict):
            return None
        return Usage(
            prompt_tokens=usage.get("input_tokens", 0) or 0,
            completion_tokens=usage.get("output_tokens", 0) or 0,
        )


class GoogleAdapter(ProviderAdapter):
    provider = "google"
    default_max_tokens = 4000

    def endpoint(self, request: CompletionRequest, config: ProviderConfig, model: str) -> str:
        return f"models/{model}:generateContent?key={config.api_key}"

    def build_payload(self, request: CompletionRequest, model: str, stream: bool = False) -> dict:
        return {
            "contents": [{"parts": [{"text": self.flatten_prompt(request)}]}],
            "generationConfig": {
                "maxOutputTokens": self._max_tokens(request),
                "temperature": self._temperature(request),
            },
        }

    def extract_content(self, data: Any) -> Any:
        return dig(data, ("candidates", 0, "content", "parts", 0, "text"))

    def extract_model(self, data: Any) -> str:
        return dig(data, ("modelVersion",)) or ""

    def extract_usage(self, data: Any) -> Usage | None:
        meta = dig(data, ("usageMetadata",))
        if not isinstance(meta, dict):
            return None
        return Usage(
            prompt_tokens=meta.get("promptTokenCount", 0) or 0,
            completion_tokens=meta.get("candidatesTokenCount", 0) or 0,
        )


class HuggingFaceAdapter(ProviderAdapter):
    provider = "huggingface"
    default_max_tokens = 1000

    def endpoint(self, request: CompletionRequest, config: ProviderConfig, model: str) -> str:
        return model

    def build_payload(self, request: CompletionRequest, model: str, stream: bool = False) -> dict:
        return {
            "inputs": self.flatten_prompt(request),
            "parameters": {
                "max_new_tokens": self._max_tokens(request),
                "temperature": self._temperature(request),
                "return_full_text": False,
            },
        }

    def extract_content(self, data: Any) -> Any:
        if isinstance(data, list):
            return dig(data, (0, "generated_text"))
        return dig(data, ("generated_text",))

    def extract_model(self, data: Any) -> str:
        return ""


class CohereAdapter(ProviderAdapter):
    provider = "cohere"
    default_max_tokens = 1000

    def endpoint(self, request: CompletionRequest, config: ProviderConfig, model: str) -> str:
        return "chat"

    def build_payload(self, request: CompletionRequest, model: str, stream: bool = False) -> dict:
        payload: dict[str, Any] = {
            "model": model,
            "message": request.message,
            "max_tokens": self._max_tokens(request),
            "temperature": self._temperature(request),
            "stream": stream,
        }
        if request.system_prompt:
            payload["preamble"] = request.system_prompt
        if request.history:
            payload["chat_history"] = [_cohere_turn(m) for m in request.history]
        return payload

    def extract_content(self, data: Any) -> Any:
        content = dig(data, ("generations", 0, "text"))
        if content is None:
            content = dig(data, ("text",))
        return content

    def extract_model(self, data: Any) -> str:
        return ""

    def extract_usage(self, data: Any) -> Usage | None:
        units = dig(data, ("meta", "billed_units"))
        if not isinstance(units, dict):
            return None
        return Usage(
            prompt_tokens=int(units.get("input_tokens", 0) or 0),
            completion_tokens=int(units.get("output_tokens", 0) or 0),
        )


def _cohere_turn(message: ChatMessage) -> dict:
    role = {"user": "USER", "assistant": "CHATBOT", "system": "SYSTEM"}[message.role]
    return {"role": role, "message": message.content}


ADAPTERS: dict[str, type[ProviderAdapter]] = {
    "openai": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
    "google": GoogleAdapter,
    "huggingface": HuggingFaceAdapter,
    "cohere": CohereAdapter,
}


def get_adapter(provider: str) -> ProviderAdapter:
    """Adapter for a chat provider. Raises KeyError for media-only vendors."""
    try:
        return ADAPTERS[provider]()
    except KeyError:
        raise KeyError(f"No chat adapter for provider '{provider}'") from None
