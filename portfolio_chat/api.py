"""FastAPI entry point for a single portfolio chat handler."""

from __future__ import annotations

import argparse
import logging
import os
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
import uvicorn

from .config import HandlerConfig, LLMConfig, MemoryConfig, PortfolioConfig
from .errors import InvalidRequestError, describe_error
from .models import ChatRequest
from .service import (
    ChatService,
    ChatStream,
    create_backend_handler,
    create_manual_rag_handler,
    create_portfolio_handler,
)
from .utils import setup_logging

logger = logging.getLogger(__name__)

DEFAULT_CHAT_PATH = "/api/chat"
STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"
MODES = ("backend", "router", "manual")


def build_router(service: ChatService, path: str = DEFAULT_CHAT_PATH) -> APIRouter:
    """Expose ``service`` as ``POST path`` (chat) and ``GET path`` (status)."""
    router = APIRouter()

    @router.get(path)
    async def chat_status() -> dict:
        return service.status()

    @router.post(path)
    async def chat(request: ChatRequest):
        try:
            result = await run_in_threadpool(service.handle, request)
        except InvalidRequestError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except Exception as exc:
            status, message = describe_error(exc)
            logger.exception("[%s] Chat request failed (session_id=%s)", service.mode, request.session_id)
            raise HTTPException(status_code=status, detail=message) from exc

        if isinstance(result, ChatStream):
            return StreamingResponse(iter(result), media_type=STREAM_MEDIA_TYPE)
        return JSONResponse(result.to_payload())

    return router


def install_error_handlers(app: FastAPI) -> None:
    """Report malformed request bodies as 400 rather than FastAPI's default 422."""

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning("Rejected malformed body on %s: %s", request.url.path, exc.errors())
        return JSONResponse(status_code=400, content={"detail": "Invalid request body"})


def create_app(
    service: ChatService,
    *,
    path: str = DEFAULT_CHAT_PATH,
    log_dir: Optional[str] = None,
) -> FastAPI:
    if log_dir:
        setup_logging(log_dir, logging.INFO)

    app = FastAPI(title="Portfolio Chat", version="0.1.0")
    app.state.service = service
    install_error_handlers(app)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    app.include_router(build_router(service, path))
    return app


def add_handler_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--llm_provider", default=os.environ.get("LLM_PROVIDER", "anthropic"),
                        help="anthropic, openai, groq, openrouter or google.")
    parser.add_argument("--llm_api_key", default=os.environ.get("LLM_API_KEY"), help="Provider API key.")
    parser.add_argument("--llm_model", default=os.environ.get("LLM_MODEL"), help="Model name (provider default when omitted).")
    parser.add_argument("--supermemory_api_key", default=os.environ.get("SUPERMEMORY_API_KEY"),
                        help="Supermemory API key.")
    parser.add_argument("--supermemory_container", default=os.environ.get("SUPERMEMORY_CONTAINER"),
                        help="Supermemory container holding the portfolio documents.")
    parser.add_argument("--system_prompt", default=os.environ.get("SYSTEM_PROMPT"), help="System prompt override.")
    parser.add_argument("--temperature", type=float, default=0.7, help="Sampling temperature.")
    parser.add_argument("--max_tokens", type=int, default=1024, help="Token budget per answer.")
    parser.add_argument("--request_timeout", type=float, help="Timeout for upstream calls (seconds).")
    parser.add_argument("--disable_streaming", action="store_true", help="Return buffered JSON answers.")
    parser.add_argument("--openrouter_referer", default=os.environ.get("OPENROUTER_REFERER"),
                        help="HTTP-Referer sent to OpenRouter.")
    parser.add_argument("--openrouter_title", default=os.environ.get("OPENROUTER_TITLE"),
                        help="X-Title sent to OpenRouter.")


def service_from_args(mode: str, args: argparse.Namespace) -> ChatService:
    """Build the handler for ``mode`` from parsed CLI arguments."""
    if mode == "manual":
        config = PortfolioConfig(
            memory=MemoryConfig(api_key=args.supermemory_api_key or "", container=args.supermemory_container or ""),
            llm=LLMConfig(
                api_key=args.llm_api_key or "",
                provider=args.llm_provider,
                model=args.llm_model,
                system_prompt=args.system_prompt,
                temperature=args.temperature,
                max_tokens=args.max_tokens,
                request_timeout=args.request_timeout,
            ),
        )
        return create_manual_rag_handler(config)

    handler_config = HandlerConfig(
        llm_provider=args.llm_provider,
        llm_api_key=args.llm_api_key or "",
        llm_model=args.llm_model,
        supermemory_api_key=args.supermemory_api_key or "",
        supermemory_container=args.supermemory_container or "",
        system_prompt=args.system_prompt,
        temperature=args.temperature,
        max_tokens=args.max_tokens,
        streaming=not args.disable_streaming,
        openrouter_referer=args.openrouter_referer,
        openrouter_title=args.openrouter_title,
        request_timeout=args.request_timeout,
    )
    if mode == "router":
        return create_portfolio_handler(handler_config)
    if mode == "backend":
        return create_backend_handler(handler_config)
    raise ValueError(f"Unknown handler mode: {mode}")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve one portfolio chat handler.")
    parser.add_argument("--mode", choices=MODES, default="backend", help="Handler variant to serve.")
    parser.add_argument("--host", default="0.0.0.0", help="Host interface to bind.")
    parser.add_argument("--port", type=int, default=8004, help="Port to bind.")
    parser.add_argument("--path", default=DEFAULT_CHAT_PATH, help="Route for the chat endpoint.")
    parser.add_argument("--log_dir", help="Directory for application logs.")
    add_handler_arguments(parser)
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    service = service_from_args(args.mode, args)
    app = create_app(service, path=args.path, log_dir=args.log_dir)
    logger.info("Starting %s chat handler on %s:%d%s", args.mode, args.host, args.port, args.path)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
