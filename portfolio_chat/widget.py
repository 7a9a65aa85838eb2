"""Terminal chat widget that talks to a portfolio chat endpoint.

:class:`ChatWidget` holds the conversation state: collapsed or expanded,
idle or sending. Each submit adds the user turn and a "thinking" placeholder,
then replaces the placeholder as the answer arrives. Streamed text goes
through :func:`append_chunk`, so the placeholder always shows everything
received so far.
"""

from __future__ import annotations

import argparse
import codecs
import json
import logging
import random
import string
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

import requests

from .models import ChatMessage

logger = logging.getLogger(__name__)

THINKING_INDICATOR = "●●●"
APOLOGY_MESSAGE = "Sorry, something went wrong. Please try again."
ERROR_BANNER = "Failed to get response. Please try again."
NO_RESPONSE_MESSAGE = "No response available."
SESSION_KEY = "portfolioSessionId"
DEFAULT_SESSION_FILE = Path.home() / ".portfolio_chat" / "session.json"
STREAMING_CONTENT_TYPES = ("text/plain", "text/event-stream")
_BASE36 = string.digits + string.ascii_lowercase


class ChatClientError(Exception):
    """The chat endpoint could not be reached or sent back something unusable."""


def _base36(number: int) -> str:
    digits = []
    while True:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
        if not number:
            return "".join(reversed(digits))


def generate_session_id(uuid_factory: Callable[[], Any] = uuid.uuid4) -> str:
    """Return a random session id, falling back to a time-based one without a UUID source."""
    try:
        return str(uuid_factory())
    except (NotImplementedError, OSError):
        suffix = _base36(random.getrandbits(52))
        return f"session_{suffix}_{_base36(int(time.time() * 1000))}"


class SessionIdStore:
    """Keeps one session id on disk so it is reused across runs."""

    def __init__(self, path: Path = DEFAULT_SESSION_FILE) -> None:
        self.path = Path(path)

    def load(self) -> str:
        stored = self._read().get(SESSION_KEY)
        if isinstance(stored, str) and stored:
            return stored

        session_id = generate_session_id()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({SESSION_KEY: session_id}), encoding="utf-8")
        logger.debug("Stored new session id in %s", self.path)
        return session_id

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable session file %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}


def append_chunk(state: str, chunk: str) -> str:
    """Reducer for streamed answers: the new state is the old text plus the chunk."""
    return state + chunk


@dataclass
class StreamAccumulator:
    """The answer built so far, plus every state it has shown."""

    text: str = ""
    states: List[str] = field(default_factory=list)

    def push(self, chunk: str) -> str:
        self.text = append_chunk(self.text, chunk)
        self.states.append(self.text)
        return self.text


def decode_stream(byte_chunks: Iterable[bytes], encoding: str = "utf-8") -> Iterator[str]:
    """Decode network reads incrementally; characters split across reads are rejoined."""
    decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
    for raw in byte_chunks:
        if not raw:
            continue
        text = decoder.decode(raw)
        if text:
            yield text
    tail = decoder.decode(b"", final=True)
    if tail:
        yield tail


@dataclass
class ChatReply:
    streaming: bool
    chunks: Iterable[str] = ()
    answer: Optional[str] = None
    error: Optional[str] = None


class HttpChatTransport:
    """POSTs chat turns to a handler endpoint and reads back JSON or streamed text."""

    def __init__(
        self,
        api_url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.api_url = api_url
        self.session = session or requests.Session()
        self.timeout = timeout

    def send(self, message: str, session_id: str, history: List[ChatMessage]) -> ChatReply:
        payload = {
            "message": message,
            "sessionId": session_id,
            "history": [entry.model_dump(exclude_none=True) for entry in history],
        }
        response = self.session.post(self.api_url, json=payload, stream=True, timeout=self.timeout)
        if response.status_code >= 400:
            response.close()
            raise ChatClientError(f"Chat API error: {response.status_code}")

        content_type = response.headers.get("content-type", "")
        if any(kind in content_type for kind in STREAMING_CONTENT_TYPES):
            return ChatReply(streaming=True, chunks=self._read_stream(response))

        try:
            data = response.json()
        except ValueError as exc:
            raise ChatClientError("Chat API returned an unreadable response") from exc
        finally:
            response.close()
        if not isinstance(data, dict):
            raise ChatClientError("Chat API returned an unexpected payload")
        return ChatReply(streaming=False, answer=data.get("answer"), error=data.get("error"))

    def _read_stream(self, response: requests.Response) -> Iterator[str]:
        try:
            yield from decode_stream(response.iter_content(chunk_size=None))
        finally:
            response.close()


class ChatWidget:
    """Chat state machine: collapsed/expanded, and idle/sending per turn."""

    def __init__(
        self,
        transport: HttpChatTransport,
        session_id: str,
        *,
        collapse_on_outside_click: bool = False,
        on_change: Optional[Callable[["ChatWidget"], None]] = None,
        max_visible: int = 50,
    ) -> None:
        self.transport = transport
        self.session_id = session_id
        self.collapse_on_outside_click = collapse_on_outside_click
        self.on_change = on_change
        self.max_visible = max_visible
        self.messages: List[ChatMessage] = []
        self.expanded = False
        self.sending = False
        self.error: Optional[str] = None

    def expand(self) -> None:
        self.expanded = True
        self._changed()

    def collapse(self) -> None:
        self.expanded = False
        self._changed()

    def focus_input(self) -> None:
        if self.messages:
            self.expand()

    def handle_outside_click(self) -> None:
        if self.collapse_on_outside_click and self.expanded:
            self.collapse()

    def visible_messages(self) -> List[ChatMessage]:
        """The tail of the transcript, so the latest turn is always in view."""
        return self.messages[-self.max_visible :]

    def submit(self, text: str) -> bool:
        """Send one message. Returns False when nothing was sent."""
        message = (text or "").strip()
        if not message or not self.session_id or self.sending:
            return False

        self.sending = True
        self.error = None
        self.expanded = True
        user_entry = ChatMessage(role="user", content=message, timestamp=time.time())
        history = self.messages + [user_entry]
        self.messages = history + [ChatMessage(role="assistant", content=THINKING_INDICATOR, timestamp=time.time())]
        self._changed()

        try:
            reply = self.transport.send(message, self.session_id, history)
            if reply.streaming:
                accumulator = StreamAccumulator()
                for chunk in reply.chunks:
                    self._replace_placeholder(accumulator.push(chunk))
                if not accumulator.text:
                    self._replace_placeholder(NO_RESPONSE_MESSAGE)
            else:
                self._replace_placeholder(reply.answer or NO_RESPONSE_MESSAGE)
        except (ChatClientError, requests.RequestException):
            logger.exception("Chat request for session %s failed", self.session_id)
            self.error = ERROR_BANNER
            self._replace_placeholder(APOLOGY_MESSAGE)
        finally:
            self.sending = False
            self._changed()
        return True

    def _replace_placeholder(self, content: str) -> None:
        self.messages = self.messages[:-1] + [
            ChatMessage(role="assistant", content=content, timestamp=time.time())
        ]
        self._changed()

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self)


class TerminalRenderer:
    """Prints the growing answer in place of the thinking indicator."""

    def __init__(self, write: Callable[[str], Any] = print) -> None:
        self.write = write
        self._printed = ""

    def __call__(self, widget: ChatWidget) -> None:
        if not widget.messages or widget.messages[-1].role != "assistant":
            return
        content = widget.messages[-1].content
        if content == THINKING_INDICATOR:
            self._printed = ""
            return
        if content.startswith(self._printed):
            delta = content[len(self._printed):]
        else:
            delta = "\n" + content
        if delta:
            self.write(delta)
            self._printed = content
        if not widget.sending:
            if widget.error:
                self.write(f"\n[{widget.error}]")
            self.write("\n")
            self._printed = ""


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Chat with a portfolio chat endpoint from the terminal.")
    parser.add_argument("--api_url", default="http://localhost:8010/api/chat", help="Chat endpoint URL.")
    parser.add_argument("--session_file", default=str(DEFAULT_SESSION_FILE), help="Where the session id is kept.")
    parser.add_argument("--timeout", type=float, help="Request timeout (seconds).")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    session_id = SessionIdStore(Path(args.session_file)).load()
    renderer = TerminalRenderer(write=lambda text: print(text, end="", flush=True))
    widget = ChatWidget(HttpChatTransport(args.api_url, timeout=args.timeout), session_id, on_change=renderer)

    print(f"Session {session_id}. Empty line or Ctrl-D to quit.")
    while True:
        try:
            text = input("> ")
        except EOFError:
            break
        if not text.strip():
            break
        widget.submit(text)


if __name__ == "__main__":
    main()
