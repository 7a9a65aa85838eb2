import requests

from conftest import FakeResponse, FakeSession
from portfolio_chat.retriever import CONTEXT_SEPARATOR, SupermemoryRetriever, build_context, extract_segments


def test_extract_segments_in_order():
    doc = {
        "content": "Full text",
        "summary": "Short summary",
        "metadata": {"description": "From metadata"},
        "chunks": [{"content": "chunk one"}, {"content": ""}, {"content": None}, "junk", {"content": "chunk two"}],
    }
    assert extract_segments(doc) == ["Full text", "Short summary", "From metadata", "chunk one", "chunk two"]


def test_extract_segments_prefers_metadata_summary_and_skips_non_text_content():
    doc = {"content": {"type": "pdf"}, "metadata": {"summary": "meta summary", "description": "desc"}}
    assert extract_segments(doc) == ["meta summary"]
    assert extract_segments("not a document") == []


def test_build_context_joins_all_segments_with_separator():
    docs = [{"content": "a", "summary": "b"}, {"chunks": [{"content": "c"}]}, {}]
    assert build_context(docs) == CONTEXT_SEPARATOR.join(["a", "b", "c"])


def test_search_sends_reranked_query_for_container():
    session = FakeSession(FakeResponse(json_data={"results": [{"content": "doc"}]}))
    retriever = SupermemoryRetriever("sm-key", "portfolio", session=session)

    assert retriever.search("experience") == [{"content": "doc"}]

    call = session.calls[0]
    assert call["url"] == "https://api.supermemory.ai/v3/search"
    assert call["headers"]["Authorization"] == "Bearer sm-key"
    assert call["json"] == {
        "q": "experience",
        "containerTags": ["portfolio"],
        "limit": 5,
        "includeFullDocs": True,
        "includeSummary": True,
        "rerank": True,
    }
    assert call["timeout"] is None


def test_search_with_malformed_body_returns_no_documents():
    session = FakeSession(FakeResponse(json_data={"results": "oops"}), FakeResponse(json_data=["x"]))
    retriever = SupermemoryRetriever("sm-key", "portfolio", session=session)
    assert retriever.search("q") == []
    assert retriever.search("q") == []


def test_search_caps_results_at_limit():
    docs = [{"content": str(i)} for i in range(8)]
    session = FakeSession(FakeResponse(json_data={"results": docs}))
    assert len(SupermemoryRetriever("k", "c", session=session).search("q")) == 5


def test_retrieve_degrades_to_empty_context_on_failure():
    session = FakeSession(requests.ConnectionError("down"), FakeResponse(status_code=500, json_data={}))
    retriever = SupermemoryRetriever("sm-key", "portfolio", session=session)

    for _ in range(2):
        result = retriever.retrieve("anything")
        assert result.documents == []
        assert result.context == ""
