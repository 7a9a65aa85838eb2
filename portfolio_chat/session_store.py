"""Process-lifetime conversation history, keyed by session id."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, List

from .models import ChatMessage

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGES = 20


class SessionStore(ABC):
    """Key-value history store used by handlers that keep server-side sessions."""

    @abstractmethod
    def get(self, session_id: str) -> List[ChatMessage]:
        """Return the stored turns for ``session_id`` (oldest first), or an empty list."""

    @abstractmethod
    def append(self, session_id: str, message: ChatMessage) -> None:
        """Record one turn, applying the store's truncation policy."""


class InMemorySessionStore(SessionStore):
    """Dict-backed store that keeps the most recent ``max_messages`` turns per session.

    Nothing survives a restart, and there is no locking: concurrent writers
    to the same session race and the last one wins.
    """

    def __init__(self, max_messages: int = DEFAULT_MAX_MESSAGES) -> None:
        if max_messages <= 0:
            raise ValueError("max_messages must be a positive integer")
        self.max_messages = max_messages
        self._sessions: Dict[str, List[ChatMessage]] = {}

    def get(self, session_id: str) -> List[ChatMessage]:
        return list(self._sessions.get(session_id, []))

    def append(self, session_id: str, message: ChatMessage) -> None:
        messages = self._sessions.get(session_id)
        if messages is None:
            logger.debug("Creating session %s", session_id)
            messages = []
        messages = messages + [message]
        if len(messages) > self.max_messages:
            messages = messages[-self.max_messages :]
        self._sessions[session_id] = messages

    def clear(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)
