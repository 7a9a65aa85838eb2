import json

import requests

from conftest import FakeResponse, FakeSession
from portfolio_chat.models import ChatMessage
from portfolio_chat.widget import (
    APOLOGY_MESSAGE,
    ERROR_BANNER,
    NO_RESPONSE_MESSAGE,
    SESSION_KEY,
    THINKING_INDICATOR,
    ChatReply,
    ChatWidget,
    HttpChatTransport,
    SessionIdStore,
    StreamAccumulator,
    TerminalRenderer,
    append_chunk,
    decode_stream,
    generate_session_id,
)


class ScriptedTransport:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.sent = []

    def send(self, message, session_id, history):
        self.sent.append((message, session_id, list(history)))
        if self.error:
            raise self.error
        return self.reply


def test_accumulated_states_grow_in_arrival_order():
    acc = StreamAccumulator()
    for chunk in ["Hel", "lo wo", "rld"]:
        acc.push(chunk)
    assert acc.states == ["Hel", "Hello wo", "Hello world"]
    assert acc.text == "Hel" + "lo wo" + "rld"
    assert append_chunk("", "x") == "x"


def test_decode_stream_reassembles_split_multibyte_characters():
    encoded = "héllo 👋".encode("utf-8")
    pieces = [encoded[:2], encoded[2:8], encoded[8:9], encoded[9:]]
    assert "".join(decode_stream(pieces)) == "héllo 👋"


def test_generate_session_id_falls_back_without_uuid_source():
    def broken():
        raise NotImplementedError

    assert len(generate_session_id()) == 36
    fallback = generate_session_id(broken)
    assert fallback.startswith("session_")
    assert len(fallback.split("_")) == 3


def test_session_id_is_persisted_and_reused(tmp_path):
    path = tmp_path / "nested" / "session.json"
    first = SessionIdStore(path).load()
    assert json.loads(path.read_text())[SESSION_KEY] == first
    assert SessionIdStore(path).load() == first

    path.write_text("{broken")
    assert SessionIdStore(path).load() != first


def test_streamed_reply_replaces_placeholder_progressively():
    seen = []
    transport = ScriptedTransport(ChatReply(streaming=True, chunks=iter(["Hel", "lo wo", "rld"])))
    widget = ChatWidget(transport, "s1", on_change=lambda w: seen.append((w.messages[-1].content, w.sending)))

    assert widget.submit("  hi  ") is True

    contents = [content for content, _ in seen]
    assert contents[0] == THINKING_INDICATOR
    assert [c for c in contents if c not in (THINKING_INDICATOR,)][:3] == ["Hel", "Hello wo", "Hello world"]
    assert [(m.role, m.content) for m in widget.messages] == [("user", "hi"), ("assistant", "Hello world")]
    assert widget.sending is False
    assert widget.expanded is True
    assert seen[-1] == ("Hello world", False)

    message, session_id, history = transport.sent[0]
    assert message == "hi"
    assert session_id == "s1"
    assert [(m.role, m.content) for m in history] == [("user", "hi")]


def test_buffered_reply_replaces_placeholder_once():
    widget = ChatWidget(ScriptedTransport(ChatReply(streaming=False, answer="Done")), "s1")
    widget.submit("hi")
    widget.submit("again")
    assert [m.content for m in widget.messages] == ["hi", "Done", "again", "Done"]


def test_empty_replies_show_fallback_text():
    widget = ChatWidget(ScriptedTransport(ChatReply(streaming=True, chunks=[])), "s1")
    widget.submit("hi")
    assert widget.messages[-1].content == NO_RESPONSE_MESSAGE


def test_failure_shows_apology_and_always_returns_to_idle():
    widget = ChatWidget(ScriptedTransport(error=requests.ConnectionError("offline")), "s1")
    widget.submit("hi")
    assert widget.messages[-1].content == APOLOGY_MESSAGE
    assert widget.error == ERROR_BANNER
    assert widget.sending is False


def test_blank_input_and_concurrent_sends_are_ignored():
    transport = ScriptedTransport(ChatReply(streaming=False, answer="x"))
    widget = ChatWidget(transport, "s1")
    assert widget.submit("   ") is False
    widget.sending = True
    assert widget.submit("hi") is False
    assert transport.sent == []


def test_outside_click_collapses_only_when_enabled():
    widget = ChatWidget(ScriptedTransport(), "s1")
    widget.expand()
    widget.handle_outside_click()
    assert widget.expanded is True

    widget = ChatWidget(ScriptedTransport(), "s1", collapse_on_outside_click=True)
    widget.focus_input()
    assert widget.expanded is False
    widget.messages.append(ChatMessage(role="user", content="x"))
    widget.focus_input()
    assert widget.expanded is True
    widget.handle_outside_click()
    assert widget.expanded is False


def test_visible_messages_keeps_latest_turns():
    widget = ChatWidget(ScriptedTransport(), "s1", max_visible=2)
    widget.messages = [ChatMessage(role="user", content=str(i)) for i in range(5)]
    assert [m.content for m in widget.visible_messages()] == ["3", "4"]


def test_http_transport_reads_stream_and_json():
    stream = FakeResponse(headers={"content-type": "text/plain; charset=utf-8"}, chunks=["wö".encode()[:2], "wö".encode()[2:]])
    buffered = FakeResponse(headers={"content-type": "application/json"}, json_data={"answer": "hi", "error": "e"})
    session = FakeSession(stream, buffered)
    transport = HttpChatTransport("http://api/chat", session=session)

    reply = transport.send("q", "s1", [ChatMessage(role="user", content="q")])
    assert reply.streaming is True
    assert "".join(reply.chunks) == "wö"
    assert stream.closed
    assert session.calls[0]["json"] == {"message": "q", "sessionId": "s1", "history": [{"role": "user", "content": "q"}]}

    reply = transport.send("q", "s1", [])
    assert (reply.streaming, reply.answer, reply.error) == (False, "hi", "e")


def test_http_transport_errors_reach_widget_as_apology():
    session = FakeSession(FakeResponse(status_code=500), FakeResponse(headers={"content-type": "application/json"}))
    widget = ChatWidget(HttpChatTransport("http://api/chat", session=session), "s1")

    widget.submit("one")
    assert widget.messages[-1].content == APOLOGY_MESSAGE
    widget.submit("two")
    assert widget.messages[-1].content == APOLOGY_MESSAGE
    assert widget.sending is False


def test_terminal_renderer_prints_deltas():
    out = []
    renderer = TerminalRenderer(write=out.append)
    widget = ChatWidget(ScriptedTransport(ChatReply(streaming=True, chunks=["Hel", "lo"])), "s1", on_change=renderer)
    widget.submit("hi")
    assert "".join(out) == "Hello\n"
