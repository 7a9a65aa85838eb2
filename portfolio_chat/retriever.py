"""Fetch portfolio documents from the Supermemory search API.

The retriever only reads: it never writes to the memory service and never
caches results, so every request sees the container's current contents.
Results come back in several shapes (full content, summaries, metadata
descriptions, chunk lists); :func:`extract_segments` flattens whatever is
present into plain text segments for the prompt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from .config import SUPERMEMORY_BASE_URL

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 5
CONTEXT_SEPARATOR = "\n\n---\n\n"


@dataclass
class RetrievalResult:
    documents: List[Dict[str, Any]] = field(default_factory=list)
    context: str = ""


def extract_segments(document: Any) -> List[str]:
    """Return the non-empty text segments of a single search result."""
    if not isinstance(document, dict):
        return []

    segments: List[str] = []
    content = document.get("content")
    if isinstance(content, str):
        segments.append(content)
    if document.get("summary"):
        segments.append(str(document["summary"]))

    metadata = document.get("metadata")
    if isinstance(metadata, dict):
        described = metadata.get("summary") or metadata.get("description")
        if described:
            segments.append(str(described))

    chunks = document.get("chunks")
    if isinstance(chunks, list):
        for chunk in chunks:
            if isinstance(chunk, dict) and isinstance(chunk.get("content"), str):
                segments.append(chunk["content"])

    return [segment for segment in segments if segment]


def build_context(documents: List[Dict[str, Any]], separator: str = CONTEXT_SEPARATOR) -> str:
    """Join the segments of every document into one context string."""
    parts: List[str] = []
    for document in documents:
        parts.extend(extract_segments(document))
    return separator.join(parts)


class SupermemoryRetriever:
    """Search one Supermemory container for documents relevant to a query."""

    def __init__(
        self,
        api_key: str,
        container: str,
        *,
        base_url: str = SUPERMEMORY_BASE_URL,
        limit: int = DEFAULT_SEARCH_LIMIT,
        session: Optional[requests.Session] = None,
        request_timeout: Optional[float] = None,
    ) -> None:
        self.api_key = api_key
        self.container = container
        self.base_url = base_url.rstrip("/")
        self.limit = limit
        self.session = session or requests.Session()
        self.request_timeout = request_timeout

    def search(self, query: str) -> List[Dict[str, Any]]:
        """Run a re-ranked document search; raises on transport or HTTP errors."""
        payload = {
            "q": query,
            "containerTags": [self.container],
            "limit": self.limit,
            "includeFullDocs": True,
            "includeSummary": True,
            "rerank": True,
        }
        logger.info("Searching container %s (limit=%d)", self.container, self.limit)
        response = self.session.post(
            f"{self.base_url}/v3/search",
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.request_timeout,
        )
        response.raise_for_status()
        data = response.json()

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            logger.warning("Search response for container %s had no results list", self.container)
            return []
        return results[: self.limit]

    def retrieve(self, query: str) -> RetrievalResult:
        """Search and build context, degrading to an empty result on any failure."""
        try:
            documents = self.search(query)
        except Exception:
            logger.exception("Document search failed for container %s; continuing without context", self.container)
            return RetrievalResult()

        context = build_context(documents)
        logger.info("Found %d document(s), context length %d", len(documents), len(context))
        return RetrievalResult(documents=documents, context=context)
