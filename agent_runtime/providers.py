from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

import httpx

from .agent import ToolChoice
from .config import get_settings
from .messages import Message, Role, ToolCallRequest
from .tools import ToolDefinition

logger = logging.getLogger("agent-runtime")


class ProviderError(RuntimeError):
    """Raised when a model provider cannot complete a request."""


class StreamingNotSupported(RuntimeError):
    """Raised by providers that cannot stream; callers fall back to `send`."""


@dataclass
class ProviderResult:
    """Normalized result from a provider."""

    text: str = ""
    tool_calls: List[ToolCallRequest] = field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class StreamChunk:
    """One increment of a streamed response. Tool calls arrive whole, never partially."""

    text: str = ""
    tool_calls: List[ToolCallRequest] = field(default_factory=list)


class BaseProvider:
    """
    Abstract model provider interface.

    `send` is synchronous; FastAPI runs sync endpoints in its thread pool and
    the streaming runner calls it from its own worker thread.
    """

    name = "base"

    def send(
        self,
        system_prompt: str,
        transcript: Sequence[Message],
        tools: Sequence[ToolDefinition],
        *,
        model: str,
        tool_choice: str = "auto",
    ) -> ProviderResult:  # pragma: no cover - interface only
        raise NotImplementedError

    def stream(
        self,
        system_prompt: str,
        transcript: Sequence[Message],
        tools: Sequence[ToolDefinition],
        *,
        model: str,
        tool_choice: str = "auto",
    ) -> Iterator[StreamChunk]:
        raise StreamingNotSupported(f"{self.name} provider does not support streaming")


class StubProvider(BaseProvider):
    """
    Deterministic provider that never calls a model.

    Replies to the latest user message (or the latest tool output) and never
    requests tools. Useful for local development and tests.
    """

    name = "stub"

    def send(self, system_prompt, transcript, tools, *, model, tool_choice="auto") -> ProviderResult:
        return ProviderResult(text=_stub_reply(transcript))

    def stream(self, system_prompt, transcript, tools, *, model, tool_choice="auto") -> Iterator[StreamChunk]:
        words = _stub_reply(transcript).split(" ")
        for i, word in enumerate(words):
            yield StreamChunk(text=word if i == 0 else " " + word)


def _stub_reply(transcript: Sequence[Message]) -> str:
    if transcript and transcript[-1].role is Role.TOOL:
        return f"Stub reply with tool output: {transcript[-1].content}"
    for msg in reversed(transcript):
        if msg.role is Role.USER:
            return f"Stub reply to: {msg.content}"
    return "Stub reply"


class OpenAICompatibleProvider(BaseProvider):
    """
    Chat-completions provider for any OpenAI-compatible endpoint.

    Supports tool calling and SSE streaming. Pass `transport` to plug in an
    `httpx.MockTransport` in tests.
    """

    name = "openai"
    api_url = "https://api.openai.com/v1/chat/completions"
    default_model = "gpt-4o-mini"
    timeout = 60.0
    max_tokens = 4096

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        *,
        api_url: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model or self.default_model
        self.api_url = api_url or self.api_url
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self._transport)

    def build_payload(
        self,
        system_prompt: str,
        transcript: Sequence[Message],
        tools: Sequence[ToolDefinition],
        *,
        model: Optional[str],
        tool_choice: str,
        stream: bool = False,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": model or self.model,
            "messages": to_chat_messages(system_prompt, transcript),
            "max_tokens": self.max_tokens,
        }
        if tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {"name": t.name, "description": t.description, "parameters": t.parameters},
                }
                for t in tools
            ]
            body["tool_choice"] = _tool_choice_payload(tool_choice)
        if stream:
            body["stream"] = True
        return body

    def send(self, system_prompt, transcript, tools, *, model, tool_choice="auto") -> ProviderResult:
        body = self.build_payload(system_prompt, transcript, tools, model=model, tool_choice=tool_choice)
        try:
            with self._client() as client:
                resp = client.post(self.api_url, headers=self._headers(), json=body)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.name} request failed: {exc}") from exc

        try:
            message = data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(f"{self.name} returned an unexpected payload") from exc

        calls = [
            ToolCallRequest(
                id=str(call.get("id") or f"call_{i}"),
                name=str(call.get("function", {}).get("name", "")),
                arguments=call.get("function", {}).get("arguments") or "{}",
            )
            for i, call in enumerate(message.get("tool_calls") or [])
        ]
        return ProviderResult(text=message.get("content") or "", tool_calls=calls)

    def stream(self, system_prompt, transcript, tools, *, model, tool_choice="auto") -> Iterator[StreamChunk]:
        body = self.build_payload(system_prompt, transcript, tools, model=model, tool_choice=tool_choice, stream=True)
        partial_calls: Dict[int, Dict[str, str]] = {}
        try:
            with self._client() as client:
                with client.stream("POST", self.api_url, headers=self._headers(), json=body) as resp:
                    resp.raise_for_status()
                    for line in resp.iter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            break
                        try:
                            event = json.loads(data)
                        except json.JSONDecodeError:
                            logger.debug("Skipping undecodable stream line: %r", data)
                            continue
                        for choice in event.get("choices") or []:
                            delta = choice.get("delta") or {}
                            _accumulate_tool_call_deltas(partial_calls, delta.get("tool_calls") or [])
                            text = delta.get("content")
                            if text:
                                yield StreamChunk(text=text)
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.name} stream failed: {exc}") from exc

        if partial_calls:
            yield StreamChunk(
                tool_calls=[
                    ToolCallRequest(id=c["id"] or f"call_{i}", name=c["name"], arguments=c["arguments"] or "{}")
                    for i, c in sorted(partial_calls.items())
                ]
            )


class OpenAIProvider(OpenAICompatibleProvider):
    name = "openai"


class OpenRouterProvider(OpenAICompatibleProvider):
    """OpenRouter: one API key, many models (OpenAI, Claude, Gemini, etc.)."""

    name = "openrouter"
    api_url = "https://openrouter.ai/api/v1/chat/completions"
    default_model = "openai/gpt-4o-mini"


class OllamaProvider(OpenAICompatibleProvider):
    """Local Ollama through its OpenAI-compatible endpoint; no API key needed."""

    name = "ollama"
    api_url = "http://localhost:11434/v1/chat/completions"
    default_model = "llama3"
    timeout = 120.0


def to_chat_messages(system_prompt: str, transcript: Sequence[Message]) -> List[Dict[str, Any]]:
    """Convert the transcript into chat-completions messages, system prompt first."""
    out: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for msg in transcript:
        if msg.role is Role.TOOL:
            out.append({"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content})
            continue
        entry: Dict[str, Any] = {"role": msg.role.value, "content": msg.content}
        if msg.role is Role.ASSISTANT:
            if msg.sender_name:
                entry["name"] = _safe_name(msg.sender_name)
            if msg.tool_calls:
                entry["tool_calls"] = [
                    {"id": c.id, "type": "function", "function": {"name": c.name, "arguments": c.arguments}}
                    for c in msg.tool_calls
                ]
        out.append(entry)
    return out


def _safe_name(name: str) -> str:
    # The chat API only accepts [a-zA-Z0-9_-] in the `name` field.
    return "".join(ch if ch.isalnum() or ch in "_-" else "_" for ch in name)[:64]


def _tool_choice_payload(tool_choice: str) -> Any:
    try:
        policy = ToolChoice(tool_choice)
    except ValueError:
        return {"type": "function", "function": {"name": tool_choice}}
    if policy is ToolChoice.NAMED:
        return ToolChoice.AUTO.value
    return policy.value


def _accumulate_tool_call_deltas(partial: Dict[int, Dict[str, str]], deltas: List[Mapping[str, Any]]) -> None:
    for delta in deltas:
        index = int(delta.get("index", 0))
        entry = partial.setdefault(index, {"id": "", "name": "", "arguments": ""})
        if delta.get("id"):
            entry["id"] = delta["id"]
        function = delta.get("function") or {}
        if function.get("name"):
            entry["name"] += function["name"]
        if function.get("arguments"):
            entry["arguments"] += function["arguments"]


@dataclass(frozen=True)
class ResolvedModel:
    provider_name: str
    model_name: str
    provider: BaseProvider


_AUTO_DETECT = (
    (("gpt-", "o1", "o3", "o4"), "openai"),
    (("llama", "mistral", "gemma", "qwen", "deepseek", "phi"), "ollama"),
)


class ModelRouter(BaseProvider):
    """
    Routes a model spec to a configured provider.

    Specs look like "gpt-4o" (auto-detected), "openai:gpt-4o-mini",
    "ollama:llama3" or "openrouter:anthropic/claude-3.5-sonnet". Unknown or
    unconfigured providers fall back to the default provider.
    """

    name = "router"

    def __init__(self, providers: Mapping[str, BaseProvider], default: str) -> None:
        if not providers:
            raise ValueError("At least one provider must be configured")
        self._providers = dict(providers)
        self.default = default if default in self._providers else next(iter(self._providers))
        logger.info("Model router initialized with providers: %s (default: %s)", sorted(self._providers), self.default)

    @property
    def provider_names(self) -> List[str]:
        return sorted(self._providers)

    def resolve(self, model_spec: Optional[str]) -> ResolvedModel:
        default_provider = self._providers[self.default]
        if not model_spec or not model_spec.strip():
            return ResolvedModel(self.default, getattr(default_provider, "model", ""), default_provider)

        prefix, sep, rest = model_spec.partition(":")
        if sep and prefix:
            provider = self._providers.get(prefix.lower())
            if provider is not None:
                return ResolvedModel(prefix.lower(), rest, provider)
            logger.warning("Unknown provider '%s', detecting provider from model name", prefix)

        lowered = model_spec.lower()
        for prefixes, provider_name in _AUTO_DETECT:
            if not lowered.startswith(prefixes):
                continue
            if provider_name in self._providers:
                return ResolvedModel(provider_name, model_spec, self._providers[provider_name])
            # The model belongs to an unconfigured provider; the default provider uses its own model.
            logger.debug("Provider '%s' not configured for model '%s'; using default", provider_name, model_spec)
            return ResolvedModel(self.default, getattr(default_provider, "model", ""), default_provider)

        return ResolvedModel(self.default, model_spec, default_provider)

    def send(self, system_prompt, transcript, tools, *, model, tool_choice="auto") -> ProviderResult:
        resolved = self.resolve(model)
        logger.debug("Using provider '%s' with model '%s'", resolved.provider_name, resolved.model_name)
        return resolved.provider.send(
            system_prompt, transcript, tools, model=resolved.model_name, tool_choice=tool_choice
        )

    def stream(self, system_prompt, transcript, tools, *, model, tool_choice="auto") -> Iterator[StreamChunk]:
        resolved = self.resolve(model)
        logger.debug("Streaming from provider '%s' with model '%s'", resolved.provider_name, resolved.model_name)
        return resolved.provider.stream(
            system_prompt, transcript, tools, model=resolved.model_name, tool_choice=tool_choice
        )


def build_provider() -> BaseProvider:
    """Factory that chooses the concrete provider implementation."""
    settings = get_settings()
    if settings.provider_name == "stub":
        return StubProvider()

    providers: Dict[str, BaseProvider] = {"stub": StubProvider()}
    openai_key = _get_env("OPENAI_API_KEY")
    if openai_key:
        providers["openai"] = OpenAIProvider(api_key=openai_key)
    openrouter_key = _get_env("OPENROUTER_API_KEY")
    if openrouter_key:
        providers["openrouter"] = OpenRouterProvider(api_key=openrouter_key, model=_get_env("OPENROUTER_MODEL"))
    ollama_url = _get_env("OLLAMA_BASE_URL")
    if ollama_url or settings.provider_name == "ollama":
        base = (ollama_url or "http://localhost:11434").rstrip("/")
        providers["ollama"] = OllamaProvider(api_url=f"{base}/v1/chat/completions")

    if settings.provider_name not in providers:
        logger.warning("Provider '%s' is not configured; using stub provider", settings.provider_name)
    return ModelRouter(providers, default=settings.provider_name)


def _get_env(name: str) -> Optional[str]:
    return os.getenv(name) or None
