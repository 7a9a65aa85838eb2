"""Wire models for chat requests and responses.

Message content may arrive either as plain text or as a list of segments
(``"text"`` strings or ``{"type": "text", "text": ...}`` parts). It is
normalised to a single string when the model is built, so nothing past this
module ever has to look at the raw shape again.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ContentPart(BaseModel):
    type: str = "text"
    text: Optional[str] = None


MessageContent = Union[str, List[Union[str, ContentPart]]]


def normalise_content(value: Optional[MessageContent]) -> str:
    """Flatten message content into plain text.

    Segmented content is joined with single spaces; parts without text
    contribute an empty string.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        parts = []
        for part in value:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, ContentPart):
                parts.append(part.text or "")
            elif isinstance(part, dict):
                parts.append(str(part.get("text") or ""))
            else:
                parts.append("")
        return " ".join(parts)
    if isinstance(value, ContentPart):
        return value.text or ""
    if isinstance(value, dict):
        return str(value.get("text") or "")
    return str(value)


class ChatMessage(BaseModel):
    """One turn of a conversation. Order in the containing list is chronological."""

    role: str = ""
    content: str = ""
    timestamp: Optional[float] = None

    @field_validator("role", mode="before")
    @classmethod
    def _role_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("content", mode="before")
    @classmethod
    def _flatten_content(cls, value: Any) -> str:
        return normalise_content(value)


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = Field(None, description="User message to send to the model.")
    session_id: Optional[str] = Field(None, alias="sessionId", description="Chat session identifier.")
    history: List[ChatMessage] = Field(
        default_factory=list, description="Client-held prior turns, oldest first."
    )

    @field_validator("history", mode="before")
    @classmethod
    def _history_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            return value
        # Entries that are not message objects are dropped, not reported.
        return [entry for entry in value if isinstance(entry, (dict, ChatMessage))]


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    answer: str
    sources: Optional[List[Dict[str, Any]]] = None
    session_id: str = Field(..., alias="sessionId")
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
