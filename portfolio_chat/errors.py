"""Exception types shared by the handlers and their HTTP surface."""

from __future__ import annotations

from typing import Optional, Tuple

AUTH_ERROR_MESSAGE = "Invalid API key. Please check your LLM or Supermemory API key."
MODEL_NOT_FOUND_MESSAGE = "Model not found. Please check your model name."
CONTAINER_NOT_FOUND_MESSAGE = "Supermemory container not found. Please check your container name."
INTERNAL_ERROR_MESSAGE = "Internal server error"


class PortfolioChatError(Exception):
    """Base class for errors raised by this package."""


class ConfigurationError(PortfolioChatError):
    """Raised while building a handler when required settings are missing or invalid."""


class InvalidRequestError(PortfolioChatError, ValueError):
    """The caller sent a request the pipeline cannot serve (missing message or session)."""


class UpstreamError(PortfolioChatError):
    """An LLM provider or the memory service rejected a call."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def describe_error(exc: BaseException) -> Tuple[int, str]:
    """Map an exception to the HTTP status and message reported to the caller."""
    if isinstance(exc, InvalidRequestError):
        return 400, str(exc)

    status = getattr(exc, "status_code", None) or 500
    message = str(exc) or INTERNAL_ERROR_MESSAGE
    if status == 401:
        return 401, AUTH_ERROR_MESSAGE
    if status == 404:
        return 404, MODEL_NOT_FOUND_MESSAGE
    if "container" in message.lower():
        return status, CONTAINER_NOT_FOUND_MESSAGE
    return status, message
