import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pytest
import requests
from requests.structures import CaseInsensitiveDict

# Ensure repo root on sys.path so ``server`` imports from the tests tree.
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portfolio_chat.config import HandlerConfig  # noqa: E402
from portfolio_chat.retriever import SupermemoryRetriever  # noqa: E402


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        json_data: Any = None,
        lines: Iterable[Any] = (),
        chunks: Iterable[bytes] = (),
        headers: Optional[Dict[str, str]] = None,
        text: str = "",
    ) -> None:
        self.status_code = status_code
        self._json = json_data
        self._lines = list(lines)
        self._chunks = list(chunks)
        self.headers = CaseInsensitiveDict(headers or {})
        self.text = text
        self.closed = False

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("no JSON body")
        return self._json

    def iter_lines(self):
        for line in self._lines:
            yield line.encode("utf-8") if isinstance(line, str) else line

    def iter_content(self, chunk_size=None):
        yield from self._chunks

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Records every POST and answers with queued responses."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def post(self, url, json=None, headers=None, stream=False, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers or {}, "stream": stream, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def sse(*events: Dict[str, Any], done: bool = False) -> List[str]:
    lines = [f"data: {json.dumps(event)}" for event in events]
    if done:
        lines.append("data: [DONE]")
    return lines


class StubLLMClient:
    """Provider stand-in that records prompts and replays canned output."""

    def __init__(self, chunks: Iterable[str] = ("Hello",), model: str = "stub-model", error: Exception = None) -> None:
        self.chunks = list(chunks)
        self.model = model
        self.error = error
        self.prompts = []
        self.calls = []

    def complete(self, prompt, *, temperature=0.7, max_tokens=1024):
        self.prompts.append(prompt)
        self.calls.append({"temperature": temperature, "max_tokens": max_tokens, "stream": False})
        if self.error:
            raise self.error
        return "".join(self.chunks)

    def stream_completion(self, prompt, *, temperature=0.7, max_tokens=1024):
        self.prompts.append(prompt)
        self.calls.append({"temperature": temperature, "max_tokens": max_tokens, "stream": True})
        if self.error:
            raise self.error
        for chunk in self.chunks:
            yield chunk


class StubRetriever(SupermemoryRetriever):
    def __init__(self, documents=None, error: Exception = None) -> None:
        super().__init__("sm-key", "portfolio", session=FakeSession())
        self.documents = documents or []
        self.error = error
        self.queries = []

    def search(self, query):
        self.queries.append(query)
        if self.error:
            raise self.error
        return self.documents


@pytest.fixture
def handler_config():
    return HandlerConfig(
        llm_provider="anthropic",
        llm_api_key="llm-key",
        supermemory_api_key="sm-key",
        supermemory_container="portfolio",
    )
