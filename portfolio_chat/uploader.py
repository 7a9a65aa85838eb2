"""Add text documents to a Supermemory container.

This is how portfolio content gets into the container that
:class:`~portfolio_chat.retriever.SupermemoryRetriever` searches. Failures
come back as an unsuccessful :class:`UploadResult` rather than an exception.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from .config import SUPERMEMORY_BASE_URL

logger = logging.getLogger(__name__)

DEFAULT_CONTAINER = "portfolio"
DEFAULT_DOCUMENT_TYPE = "document"
MISSING_TEXT_ERROR = "Text content must be provided"


@dataclass
class UploadResult:
    success: bool
    document_id: Optional[str] = None
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.document_id is not None:
            payload["documentId"] = self.document_id
        if self.error is not None:
            payload["error"] = self.error
        return payload


def upload_to_supermemory(
    api_key: str,
    *,
    text: Optional[str],
    title: Optional[str] = None,
    type: str = DEFAULT_DOCUMENT_TYPE,
    container: Optional[str] = None,
    base_url: str = SUPERMEMORY_BASE_URL,
    session: Optional[requests.Session] = None,
    request_timeout: Optional[float] = None,
) -> UploadResult:
    """Store ``text`` as one document tagged with ``container`` (``portfolio`` by default)."""
    if not text:
        return UploadResult(success=False, error=MISSING_TEXT_ERROR)

    container = container or DEFAULT_CONTAINER
    payload = {
        "content": {"type": "text", "data": text},
        "metadata": {"title": title, "type": type or DEFAULT_DOCUMENT_TYPE},
        "tags": [container],
    }
    session = session or requests.Session()
    logger.info("Uploading %d character(s) to container %s (title=%s)", len(text), container, title)

    try:
        response = session.post(
            f"{base_url.rstrip('/')}/v1/add",
            json=payload,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=request_timeout,
        )
        if response.status_code >= 400:
            logger.error("Upload to container %s rejected with status %d", container, response.status_code)
            return UploadResult(success=False, error=f"API error: {response.status_code}")
        data = response.json()
    except (requests.RequestException, ValueError) as exc:
        logger.exception("Upload to container %s failed", container)
        return UploadResult(success=False, error=str(exc) or "Upload failed")

    document_id = None
    if isinstance(data, dict):
        document_id = data.get("memoryId") or data.get("id")
    logger.info("Uploaded document %s to container %s", document_id, container)
    return UploadResult(success=True, document_id=document_id)
