"""Prompt assembly: system prompt, retrieved context and history into one message list."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .models import ChatMessage, normalise_content

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant for a portfolio website.\n"
    "Use the provided context from the person's resume and documents to answer questions accurately.\n"
    "Be concise, professional, and friendly. If you don't have enough information, say so honestly."
)
NO_CONTEXT_INSTRUCTION = "No specific context found. Answer based on general knowledge if appropriate."
ALLOWED_ROLES = frozenset({"user", "assistant", "system"})


@dataclass
class Prompt:
    """Provider-agnostic prompt; ``messages`` never contains the system prompt itself."""

    system: str
    messages: List[Dict[str, str]] = field(default_factory=list)

    def stateless(self) -> "Prompt":
        """Keep only the final user turn, for providers that reject multi-turn history."""
        current = [msg for msg in self.messages if msg["role"] == "user"][-1:]
        return Prompt(system=self.system.strip(), messages=[dict(msg) for msg in current])


def _role_and_content(entry: Any) -> tuple:
    if isinstance(entry, ChatMessage):
        return entry.role, entry.content
    if isinstance(entry, dict):
        return entry.get("role"), normalise_content(entry.get("content"))
    return None, ""


def filter_history(history: Iterable[Any]) -> List[Dict[str, str]]:
    """Drop blank turns and unknown roles, returning trimmed ``{role, content}`` dicts."""
    cleaned: List[Dict[str, str]] = []
    for entry in history or ():
        role, content = _role_and_content(entry)
        if role not in ALLOWED_ROLES:
            continue
        content = content.strip()
        if not content:
            continue
        cleaned.append({"role": role, "content": content})
    return cleaned


def context_instruction(context: str) -> str:
    if context:
        return (
            "Here is relevant information from the portfolio:\n\n"
            f"{context}\n\nNow answer the user's question."
        )
    return NO_CONTEXT_INSTRUCTION


def assemble_prompt(
    message: str,
    *,
    context: Optional[str] = None,
    history: Iterable[Any] = (),
    system_prompt: Optional[str] = None,
) -> Prompt:
    """Build the prompt for one turn.

    ``context=None`` means no retrieval was attempted (the memory router adds
    its own context), so the user turn is the message as typed. Any string,
    including an empty one, frames the question with the context instruction.
    """
    question = message.strip()
    if context is not None:
        question = f"{context_instruction(context)}\n\nQuestion: {question}"

    messages = filter_history(history)
    messages.append({"role": "user", "content": question})
    return Prompt(system=system_prompt or DEFAULT_SYSTEM_PROMPT, messages=messages)
