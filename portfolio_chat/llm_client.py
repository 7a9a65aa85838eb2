"""Provider adapters for chat generation with streaming support.

Each supported provider is a :class:`ChatLLMClient` strategy exposing the same
two calls, ``complete`` (buffered) and ``stream_completion`` (incremental),
over a provider-agnostic :class:`~portfolio_chat.prompts.Prompt`. Provider
quirks (where the system prompt goes, what the assistant role is called,
OpenRouter's single-turn requirement) stay inside the strategy.

:func:`create_llm_client` is the registry lookup used by the handlers. When a
:class:`MemoryRouterProxy` is given, calls go through Supermemory's memory
router instead of straight to the provider: the router injects retrieved
context and stores the exchange on its side.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional

import requests

from .errors import ConfigurationError, UpstreamError
from .prompts import Prompt

logger = logging.getLogger(__name__)

DEFAULT_MODELS: Dict[str, str] = {
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-4o",
    "groq": "llama-3.3-70b-versatile",
    "openrouter": "anthropic/claude-3.5-sonnet",
    "google": "gemini-1.5-flash",
}

MEMORY_ROUTER_URLS: Dict[str, str] = {
    "anthropic": "https://api.supermemory.ai/v3/https://api.anthropic.com/v1",
    "openai": "https://api.supermemory.ai/v3/https://api.openai.com/v1",
    "groq": "https://api.supermemory.ai/v3/https://api.groq.com/openai/v1",
    "openrouter": "https://api.supermemory.ai/v3/https://openrouter.ai/api/v1",
    "google": "https://api.supermemory.ai/v3/https://generativelanguage.googleapis.com/v1beta",
}

DEFAULT_OPENROUTER_REFERER = "https://portfolio-sdk.com"
DEFAULT_OPENROUTER_TITLE = "Portfolio Chat"
ANTHROPIC_VERSION = "2023-06-01"


@dataclass(frozen=True)
class ProviderConfig:
    """Resolved connection details for one provider client."""

    provider: str
    api_key: str
    model: str
    base_url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    request_timeout: Optional[float] = None


@dataclass(frozen=True)
class MemoryRouterProxy:
    """Route generation calls through the memory router for one container."""

    api_key: str
    container: str

    def base_url(self, provider: str) -> str:
        return MEMORY_ROUTER_URLS[provider]

    def headers(self) -> Dict[str, str]:
        # The router keys stored conversations by container, not by chat session.
        return {
            "x-supermemory-api-key": self.api_key,
            "x-sm-user-id": self.container,
        }


class ChatLLMClient(ABC):
    """A text-generation strategy for one provider."""

    provider: str = ""
    default_base_url: str = ""

    def __init__(self, config: ProviderConfig, *, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self.session = session or requests.Session()

    @property
    def model(self) -> str:
        return self.config.model

    @abstractmethod
    def build_payload(self, prompt: Prompt, *, temperature: float, max_tokens: int, stream: bool) -> Dict[str, Any]:
        """Return the JSON body sent to the provider."""

    @abstractmethod
    def endpoint(self, *, stream: bool) -> str:
        """Return the URL to POST the payload to."""

    @abstractmethod
    def auth_headers(self) -> Dict[str, str]:
        """Return the provider's credential headers."""

    @abstractmethod
    def _extract_text(self, data: Dict[str, Any]) -> str:
        """Pull the full answer out of a buffered response body."""

    @abstractmethod
    def _extract_delta(self, event: Dict[str, Any]) -> str:
        """Pull the incremental text out of one streamed event."""

    def complete(self, prompt: Prompt, *, temperature: float = 0.7, max_tokens: int = 1024) -> str:
        """Return a full completion (no streaming)."""
        payload = self.build_payload(prompt, temperature=temperature, max_tokens=max_tokens, stream=False)
        logger.debug("Requesting %s completion for %d message(s)", self.provider, len(prompt.messages))
        response = self._post(payload, stream=False)
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError(f"{self.provider} returned a non-JSON response", response.status_code) from exc
        return self._extract_text(data) if isinstance(data, dict) else ""

    def stream_completion(
        self, prompt: Prompt, *, temperature: float = 0.7, max_tokens: int = 1024
    ) -> Iterator[str]:
        """Yield text from the model as it arrives."""
        payload = self.build_payload(prompt, temperature=temperature, max_tokens=max_tokens, stream=True)
        logger.info("Streaming %s completion using model %s", self.provider, self.model)
        response = self._post(payload, stream=True)
        try:
            for event in self._iter_events(response):
                token = self._extract_delta(event)
                if token:
                    yield token
        finally:
            response.close()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers.update(self.auth_headers())
        headers.update(self.config.headers)
        return headers

    def _post(self, payload: Dict[str, Any], *, stream: bool) -> requests.Response:
        try:
            response = self.session.post(
                self.endpoint(stream=stream),
                json=payload,
                headers=self._headers(),
                stream=stream,
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as exc:
            raise UpstreamError(f"Could not reach {self.provider}: {exc}") from exc

        if response.status_code >= 400:
            message = self._error_message(response)
            response.close()
            logger.error("%s returned HTTP %d: %s", self.provider, response.status_code, message)
            raise UpstreamError(message, response.status_code)
        return response

    def _error_message(self, response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, list) and body:
            body = body[0]
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if isinstance(error, str) and error:
                return error
            if body.get("message"):
                return str(body["message"])
        text = (getattr(response, "text", "") or "").strip()
        return text[:500] or f"{self.provider} returned HTTP {response.status_code}"

    def _iter_events(self, response: requests.Response) -> Iterator[Dict[str, Any]]:
        """Yield the JSON payload of each ``data:`` line of a server-sent event stream."""
        for raw_line in response.iter_lines():
            if not raw_line:
                continue
            line = raw_line.decode("utf-8") if isinstance(raw_line, bytes) else raw_line
            line = line.strip()
            if line.startswith("data:"):
                line = line[5:].strip()
            elif line.startswith(("event:", "id:", ":")):
                continue
            if not line or line == "[DONE]":
                continue

            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Skipping non-JSON stream line: %s", line)
                continue
            if isinstance(event, dict):
                yield event


class OpenAICompatibleClient(ChatLLMClient):
    """Chat-completions API shared by OpenAI, Groq and OpenRouter."""

    provider = "openai"
    default_base_url = "https://api.openai.com/v1"

    def endpoint(self, *, stream: bool) -> str:
        return f"{self.config.base_url}/chat/completions"

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def _outgoing_prompt(self, prompt: Prompt) -> Prompt:
        return prompt

    def build_payload(self, prompt: Prompt, *, temperature: float, max_tokens: int, stream: bool) -> Dict[str, Any]:
        prompt = self._outgoing_prompt(prompt)
        messages: List[Dict[str, str]] = []
        if prompt.system:
            messages.append({"role": "system", "content": prompt.system})
        messages.extend(prompt.messages)
        return {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": stream,
        }

    def _extract_text(self, data: Dict[str, Any]) -> str:
        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message") or {}
        return message.get("content", "") or ""

    def _extract_delta(self, event: Dict[str, Any]) -> str:
        choices = event.get("choices") or []
        if not choices:
            return ""
        delta = choices[0].get("delta") or {}
        return str(delta.get("content") or "")


class GroqClient(OpenAICompatibleClient):
    provider = "groq"
    default_base_url = "https://api.groq.com/openai/v1"


class OpenRouterClient(OpenAICompatibleClient):
    """OpenRouter rejects this SDK's multi-turn history, so only the current turn is sent."""

    provider = "openrouter"
    default_base_url = "https://openrouter.ai/api/v1"

    def _outgoing_prompt(self, prompt: Prompt) -> Prompt:
        logger.info("OpenRouter: dropping %d history message(s)", max(len(prompt.messages) - 1, 0))
        return prompt.stateless()


class AnthropicClient(ChatLLMClient):
    """Anthropic Messages API; system-role history is folded into ``system``."""

    provider = "anthropic"
    default_base_url = "https://api.anthropic.com/v1"

    def endpoint(self, *, stream: bool) -> str:
        return f"{self.config.base_url}/messages"

    def auth_headers(self) -> Dict[str, str]:
        return {"x-api-key": self.config.api_key, "anthropic-version": ANTHROPIC_VERSION}

    def build_payload(self, prompt: Prompt, *, temperature: float, max_tokens: int, stream: bool) -> Dict[str, Any]:
        system_parts = [prompt.system] if prompt.system else []
        messages = []
        for msg in prompt.messages:
            if msg["role"] == "system":
                system_parts.append(msg["content"])
            else:
                messages.append({"role": msg["role"], "content": msg["content"]})

        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": messages,
            "stream": stream,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        return payload

    def _extract_text(self, data: Dict[str, Any]) -> str:
        blocks = data.get("content") or []
        return "".join(
            block.get("text", "") for block in blocks if isinstance(block, dict) and block.get("type") == "text"
        )

    def _extract_delta(self, event: Dict[str, Any]) -> str:
        kind = event.get("type")
        if kind == "error":
            error = event.get("error") or {}
            raise UpstreamError(str(error.get("message") or "Anthropic stream error"))
        if kind != "content_block_delta":
            return ""
        delta = event.get("delta") or {}
        if delta.get("type") != "text_delta":
            return ""
        return str(delta.get("text") or "")


class GoogleClient(ChatLLMClient):
    """Gemini ``generateContent``; the assistant role is called ``model``."""

    provider = "google"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    def endpoint(self, *, stream: bool) -> str:
        if stream:
            return f"{self.config.base_url}/models/{self.model}:streamGenerateContent?alt=sse"
        return f"{self.config.base_url}/models/{self.model}:generateContent"

    def auth_headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self.config.api_key}

    def build_payload(self, prompt: Prompt, *, temperature: float, max_tokens: int, stream: bool) -> Dict[str, Any]:
        system_parts = [prompt.system] if prompt.system else []
        contents = []
        for msg in prompt.messages:
            if msg["role"] == "system":
                system_parts.append(msg["content"])
                continue
            role = "model" if msg["role"] == "assistant" else "user"
            contents.append({"role": role, "parts": [{"text": msg["content"]}]})

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
        }
        if system_parts:
            payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
        return payload

    def _extract_text(self, data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(str(part.get("text") or "") for part in parts if isinstance(part, dict))

    def _extract_delta(self, event: Dict[str, Any]) -> str:
        return self._extract_text(event)


PROVIDERS: Dict[str, type] = {
    "anthropic": AnthropicClient,
    "openai": OpenAICompatibleClient,
    "groq": GroqClient,
    "openrouter": OpenRouterClient,
    "google": GoogleClient,
}


def supported_providers() -> str:
    return ", ".join(PROVIDERS)


def create_llm_client(
    provider: str,
    api_key: str,
    model: Optional[str] = None,
    *,
    proxy: Optional[MemoryRouterProxy] = None,
    base_url: Optional[str] = None,
    openrouter_referer: Optional[str] = None,
    openrouter_title: Optional[str] = None,
    request_timeout: Optional[float] = None,
    session: Optional[requests.Session] = None,
) -> ChatLLMClient:
    """Look up and configure the client for ``provider``.

    Raises :class:`ConfigurationError` straight away for a missing key or an
    unknown provider, so a misconfigured handler never starts serving.
    """
    if not api_key or not api_key.strip():
        raise ConfigurationError("LLM API key is required")

    selector = (provider or "").strip().lower()
    client_cls = PROVIDERS.get(selector)
    if client_cls is None:
        raise ConfigurationError(f"Unsupported LLM provider: {provider}. Supported: {supported_providers()}")

    headers: Dict[str, str] = {}
    if selector == "openrouter":
        headers["HTTP-Referer"] = openrouter_referer or DEFAULT_OPENROUTER_REFERER
        headers["X-Title"] = openrouter_title or DEFAULT_OPENROUTER_TITLE
    if proxy is not None:
        headers.update(proxy.headers())
        resolved_base = proxy.base_url(selector)
    else:
        resolved_base = base_url or client_cls.default_base_url

    config = ProviderConfig(
        provider=selector,
        api_key=api_key,
        model=model or DEFAULT_MODELS[selector],
        base_url=resolved_base.rstrip("/"),
        headers=headers,
        request_timeout=request_timeout,
    )
    logger.info(
        "Configured %s client (model=%s, via %s)",
        selector,
        config.model,
        "memory router" if proxy is not None else "direct API",
    )
    return client_cls(config, session=session)
