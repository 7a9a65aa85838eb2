"""High level orchestration for portfolio chat: retrieval, prompting, generation.

A request moves through validate -> retrieve (optional) -> assemble ->
generate, then either streams chunks or returns one buffered answer. The
three handler variants differ only in where context and history come from:

``ManualRAGService``
    Searches the memory service itself, keeps server-side session history,
    answers with Anthropic only and never streams.
``MemoryRouterService``
    Sends the conversation through the memory router, which retrieves context
    and saves the exchange on its own. Nothing is stored here.
``ReadOnlyRAGService``
    Searches the memory service itself but calls the provider directly and
    never writes conversation state anywhere.

No step retries; upstream failures surface as :class:`UpstreamError`.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

from .config import HandlerConfig, PortfolioConfig
from .errors import ConfigurationError, InvalidRequestError
from .llm_client import ChatLLMClient, MemoryRouterProxy, create_llm_client
from .models import ChatMessage, ChatRequest, ChatResponse
from .prompts import Prompt, assemble_prompt
from .retriever import RetrievalResult, SupermemoryRetriever
from .session_store import InMemorySessionStore, SessionStore

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_ERROR = "Empty response from LLM"
EMPTY_RESPONSE_MESSAGE = (
    "I apologize, but I'm having trouble generating a response. This might be because:\n\n"
    "1. The memory container is empty (no documents uploaded)\n"
    "2. There's an issue with the Memory Router connection\n"
    "3. The API configuration needs to be checked\n\n"
    "Please check the server logs for more details."
)
SOURCES_LIMIT = 3


class ChatStream:
    """An answer being streamed from the provider.

    The first chunk is pulled before the stream is handed out, so credential
    and model errors are raised while the caller can still send a proper
    error status. ``text`` holds everything yielded so far.
    """

    def __init__(self, first_chunk: str, rest: Iterator[str], session_id: str) -> None:
        self.session_id = session_id
        self.text = ""
        self._first_chunk = first_chunk
        self._rest = rest

    def __iter__(self) -> Iterator[str]:
        yield self._consume(self._first_chunk)
        try:
            for chunk in self._rest:
                yield self._consume(chunk)
        except Exception:
            logger.exception("Stream for session %s failed after %d character(s)", self.session_id, len(self.text))
            raise
        logger.info("Stream for session %s finished, length %d", self.session_id, len(self.text))

    def _consume(self, chunk: str) -> str:
        self.text += chunk
        return chunk


ChatResult = Union[ChatResponse, ChatStream]


class ChatService:
    """Core chat pipeline shared by the handler variants."""

    mode = "chat"
    description = "Portfolio chat API"
    retrieves_context = False

    def __init__(
        self,
        client: ChatLLMClient,
        *,
        provider: str,
        container: str,
        retriever: Optional[SupermemoryRetriever] = None,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        streaming: bool = True,
    ) -> None:
        self.client = client
        self.provider = provider
        self.container = container
        self.retriever = retriever
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.streaming = streaming

    def handle(self, request: ChatRequest) -> ChatResult:
        """Run one request through the pipeline."""
        message, session_id = self._validate(request)
        logger.info(
            "[%s] Received message for session %s (history=%d)",
            self.mode,
            session_id,
            len(request.history),
        )

        retrieval = self._retrieve(message)
        prompt = assemble_prompt(
            message,
            context=retrieval.context if retrieval is not None else None,
            history=self._history(session_id, request.history),
            system_prompt=self.system_prompt,
        )
        logger.info("[%s] Assembled %d message(s) for %s", self.mode, len(prompt.messages), self.provider)

        if self.streaming:
            return self._stream(prompt, session_id)
        return self._buffer(prompt, message, session_id, retrieval)

    def status(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "message": self.description,
            "provider": self.provider,
            "model": self.client.model,
            "container": self.container,
            "streaming": self.streaming,
            "mode": self.mode,
        }

    @staticmethod
    def _validate(request: ChatRequest) -> tuple:
        if not request.message or not request.session_id:
            raise InvalidRequestError("Missing message or sessionId")
        if not request.message.strip():
            raise InvalidRequestError("Message cannot be empty")
        return request.message, request.session_id

    def _retrieve(self, message: str) -> Optional[RetrievalResult]:
        if not self.retrieves_context or self.retriever is None:
            return None
        return self.retriever.retrieve(message)

    def _history(self, session_id: str, history: List[ChatMessage]) -> Iterable[ChatMessage]:
        return history

    def _remember(self, session_id: str, message: str, answer: str) -> None:
        """Persist a completed exchange; variants without server-side history do nothing."""

    def _stream(self, prompt: Prompt, session_id: str) -> ChatResult:
        chunks = iter(
            self.client.stream_completion(prompt, temperature=self.temperature, max_tokens=self.max_tokens)
        )
        first_chunk = next(chunks, None)
        if first_chunk is None:
            return self._empty_response(session_id)
        logger.info("[%s] Streaming response for session %s", self.mode, session_id)
        return ChatStream(first_chunk, chunks, session_id)

    def _buffer(
        self, prompt: Prompt, message: str, session_id: str, retrieval: Optional[RetrievalResult]
    ) -> ChatResponse:
        answer = self.client.complete(prompt, temperature=self.temperature, max_tokens=self.max_tokens)
        if not answer or not answer.strip():
            return self._empty_response(session_id)

        logger.info("[%s] Response received, length %d", self.mode, len(answer))
        self._remember(session_id, message, answer)
        sources = retrieval.documents[:SOURCES_LIMIT] if retrieval is not None else None
        return ChatResponse(answer=answer, sources=sources, session_id=session_id)

    def _empty_response(self, session_id: str) -> ChatResponse:
        logger.error(
            "[%s] Empty response from %s for session %s; check the container contents, "
            "the memory router connection and the API keys",
            self.mode,
            self.provider,
            session_id,
        )
        return ChatResponse(answer=EMPTY_RESPONSE_MESSAGE, session_id=session_id, error=EMPTY_RESPONSE_ERROR)


class MemoryRouterService(ChatService):
    """Delegate retrieval and conversation storage to the memory router."""

    mode = "memory-router"
    description = "Portfolio chat API with Memory Router"

    def __init__(self, config: HandlerConfig, *, llm_client: Optional[ChatLLMClient] = None) -> None:
        proxy = MemoryRouterProxy(config.supermemory_api_key, config.supermemory_container)
        client = llm_client or create_llm_client(
            config.llm_provider,
            config.llm_api_key,
            config.llm_model,
            proxy=proxy,
            openrouter_referer=config.openrouter_referer,
            openrouter_title=config.openrouter_title,
            request_timeout=config.request_timeout,
        )
        super().__init__(
            client,
            provider=config.llm_provider,
            container=config.supermemory_container,
            system_prompt=config.system_prompt,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            streaming=config.streaming,
        )


class ReadOnlyRAGService(ChatService):
    """Retrieve context here, generate directly, and never save the conversation."""

    mode = "read-only"
    description = "Flexible RAG API (Read-Only)"
    retrieves_context = True

    def __init__(
        self,
        config: HandlerConfig,
        *,
        llm_client: Optional[ChatLLMClient] = None,
        retriever: Optional[SupermemoryRetriever] = None,
    ) -> None:
        client = llm_client or create_llm_client(
            config.llm_provider,
            config.llm_api_key,
            config.llm_model,
            openrouter_referer=config.openrouter_referer,
            openrouter_title=config.openrouter_title,
            request_timeout=config.request_timeout,
        )
        super().__init__(
            client,
            provider=config.llm_provider,
            container=config.supermemory_container,
            retriever=retriever
            or SupermemoryRetriever(
                config.supermemory_api_key,
                config.supermemory_container,
                request_timeout=config.request_timeout,
            ),
            system_prompt=config.system_prompt,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            streaming=config.streaming,
        )


class ManualRAGService(ChatService):
    """Retrieve, prompt and remember everything in-process; Anthropic only, buffered only."""

    mode = "manual"
    description = "Portfolio chat API (Manual RAG) is running"
    retrieves_context = True

    def __init__(
        self,
        config: PortfolioConfig,
        *,
        llm_client: Optional[ChatLLMClient] = None,
        retriever: Optional[SupermemoryRetriever] = None,
        session_store: Optional[SessionStore] = None,
    ) -> None:
        if config.llm.provider.strip().lower() != "anthropic":
            raise ConfigurationError(
                f"Unsupported LLM provider for manual RAG: {config.llm.provider}. Supported: anthropic"
            )
        client = llm_client or create_llm_client(
            "anthropic",
            config.llm.api_key,
            config.llm.model,
            base_url=config.llm.base_url,
            request_timeout=config.llm.request_timeout,
        )
        super().__init__(
            client,
            provider="anthropic",
            container=config.memory.container,
            retriever=retriever
            or SupermemoryRetriever(
                config.memory.api_key,
                config.memory.container,
                base_url=config.memory.base_url,
                request_timeout=config.llm.request_timeout,
            ),
            system_prompt=config.llm.system_prompt,
            temperature=config.llm.temperature,
            max_tokens=config.llm.max_tokens,
            streaming=False,
        )
        self.session_store = session_store if session_store is not None else InMemorySessionStore()

    def _history(self, session_id: str, history: List[ChatMessage]) -> Iterable[ChatMessage]:
        # Client-held history wins when the widget sends it.
        if history:
            return history
        return self.session_store.get(session_id)

    def _remember(self, session_id: str, message: str, answer: str) -> None:
        self.session_store.append(session_id, ChatMessage(role="user", content=message, timestamp=time.time()))
        self.session_store.append(
            session_id, ChatMessage(role="assistant", content=answer, timestamp=time.time())
        )


def create_backend_handler(config: HandlerConfig, **kwargs: Any) -> ReadOnlyRAGService:
    """Recommended handler: read-only retrieval, any provider, streaming."""
    return ReadOnlyRAGService(config, **kwargs)


def create_portfolio_handler(config: HandlerConfig, **kwargs: Any) -> MemoryRouterService:
    return MemoryRouterService(config, **kwargs)


def create_manual_rag_handler(config: PortfolioConfig, **kwargs: Any) -> ManualRAGService:
    return ManualRAGService(config, **kwargs)


create_flexible_rag_handler = create_backend_handler
