"""Portfolio chat: an AI chat backend and terminal widget for portfolio sites.

The package answers questions about a person's portfolio using documents
stored in a Supermemory container and one of several LLM providers
(Anthropic, OpenAI, Groq, OpenRouter, Google). Three interchangeable
handlers are offered; ``portfolio_chat.service.create_backend_handler`` is
the recommended one. ``portfolio_chat.api.create_app`` serves a handler over
HTTP and ``portfolio_chat.widget.ChatWidget`` is the matching client.
``upload_to_supermemory`` adds text documents to the container.
"""

from .config import HandlerConfig, LLMConfig, MemoryConfig, PortfolioConfig
from .errors import ConfigurationError, InvalidRequestError, UpstreamError
from .models import ChatMessage, ChatRequest, ChatResponse
from .service import (
    ChatService,
    ManualRAGService,
    MemoryRouterService,
    ReadOnlyRAGService,
    create_backend_handler,
    create_flexible_rag_handler,
    create_manual_rag_handler,
    create_portfolio_handler,
)
from .uploader import UploadResult, upload_to_supermemory

__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChatService",
    "ConfigurationError",
    "HandlerConfig",
    "InvalidRequestError",
    "LLMConfig",
    "ManualRAGService",
    "MemoryConfig",
    "MemoryRouterService",
    "PortfolioConfig",
    "ReadOnlyRAGService",
    "UploadResult",
    "UpstreamError",
    "create_backend_handler",
    "create_flexible_rag_handler",
    "create_manual_rag_handler",
    "create_portfolio_handler",
    "upload_to_supermemory",
]
