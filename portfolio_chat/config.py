"""Configuration objects for the chat handlers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .errors import ConfigurationError

SUPERMEMORY_BASE_URL = "https://api.supermemory.ai"


def _require(value: Optional[str], message: str) -> None:
    if not value or not str(value).strip():
        raise ConfigurationError(message)


@dataclass
class HandlerConfig:
    """Settings for the memory-router and read-only handlers."""

    llm_provider: str = "anthropic"
    llm_api_key: str = ""
    llm_model: Optional[str] = None
    supermemory_api_key: str = ""
    supermemory_container: str = ""
    system_prompt: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 1024
    streaming: bool = True
    openrouter_referer: Optional[str] = None
    openrouter_title: Optional[str] = None
    request_timeout: Optional[float] = None

    def __post_init__(self) -> None:
        _require(self.llm_api_key, "LLM API key is required")
        _require(self.supermemory_api_key, "Supermemory API key is required")
        _require(self.supermemory_container, "Supermemory container is required")
        _require(self.llm_provider, "LLM provider is required")
        self.llm_provider = self.llm_provider.strip().lower()
        if self.max_tokens <= 0:
            raise ConfigurationError("max_tokens must be a positive integer")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, **overrides: object) -> "HandlerConfig":
        """Build a config from ``LLM_*`` / ``SUPERMEMORY_*`` variables; keyword overrides win."""
        env = os.environ if env is None else env
        values = {
            "llm_provider": env.get("LLM_PROVIDER", "anthropic"),
            "llm_api_key": env.get("LLM_API_KEY", ""),
            "llm_model": env.get("LLM_MODEL") or None,
            "supermemory_api_key": env.get("SUPERMEMORY_API_KEY", ""),
            "supermemory_container": env.get("SUPERMEMORY_CONTAINER", ""),
            "system_prompt": env.get("SYSTEM_PROMPT") or None,
            "openrouter_referer": env.get("OPENROUTER_REFERER") or None,
            "openrouter_title": env.get("OPENROUTER_TITLE") or None,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)  # type: ignore[arg-type]


@dataclass
class MemoryConfig:
    """Memory-service credentials for the manual RAG handler."""

    api_key: str = ""
    container: str = ""
    base_url: str = SUPERMEMORY_BASE_URL


@dataclass
class LLMConfig:
    """Generation settings for the manual RAG handler."""

    api_key: str = ""
    provider: str = "anthropic"
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 1024
    base_url: Optional[str] = None
    request_timeout: Optional[float] = None


@dataclass
class PortfolioConfig:
    """Settings for the manual RAG handler (retrieval and history kept by this process)."""

    memory: MemoryConfig = field(default_factory=MemoryConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)

    def __post_init__(self) -> None:
        _require(self.memory.api_key, "Supermemory API key is required")
        _require(self.memory.container, "Supermemory container is required")
        _require(self.llm.api_key, "LLM API key is required")
        if self.llm.max_tokens <= 0:
            raise ConfigurationError("max_tokens must be a positive integer")
