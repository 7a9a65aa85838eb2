"""Unified FastAPI server exposing all three portfolio chat handlers."""

from __future__ import annotations

import argparse
import logging
from typing import Dict, Optional

from fastapi import FastAPI
import uvicorn

from portfolio_chat.api import add_handler_arguments, build_router, install_error_handlers, service_from_args
from portfolio_chat.service import ChatService
from portfolio_chat.utils import setup_logging

logger = logging.getLogger(__name__)

ROUTES: Dict[str, str] = {
    "backend": "/api/chat",
    "router": "/api/chat/router",
    "manual": "/api/chat/manual",
}


# ---------- FastAPI Factory ----------
def create_app(services: Dict[str, ChatService], log_dir: str = "./logs") -> FastAPI:
    """Mount each handler in ``services`` (keyed by mode) at its route in ``ROUTES``."""
    setup_logging(log_dir, logging.INFO)

    unknown = set(services) - set(ROUTES)
    if unknown:
        raise ValueError(f"Unknown handler mode(s): {', '.join(sorted(unknown))}")

    app = FastAPI(title="Portfolio Chat Server", version="0.1.0")
    app.state.services = services
    install_error_handlers(app)

    @app.get("/health")
    async def health() -> Dict[str, object]:
        return {
            "status": "ok",
            "handlers": {mode: ROUTES[mode] for mode in services},
        }

    for mode, service in services.items():
        logger.info("Mounting %s handler (%s) at %s", mode, service.provider, ROUTES[mode])
        app.include_router(build_router(service, ROUTES[mode]))

    return app


# ---------- CLI ----------
def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the portfolio chat server with every handler mounted.")
    parser.add_argument("--host", default="0.0.0.0", help="Host interface to bind.")
    parser.add_argument("--port", type=int, default=8010, help="Port to bind.")
    parser.add_argument("--log_dir", default="./logs", help="Directory for application logs.")
    parser.add_argument(
        "--modes",
        nargs="+",
        choices=sorted(ROUTES),
        default=["backend", "router"],
        help="Handlers to mount. The manual handler needs an Anthropic key.",
    )
    add_handler_arguments(parser)
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    services = {mode: service_from_args(mode, args) for mode in args.modes}
    app = create_app(services, args.log_dir)
    logger.info("Starting portfolio chat server on %s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
