"""Tests for chat event encodings."""

from __future__ import annotations

import json

from stackmemory.chat.protocol import (
    SOURCES_SENTINEL,
    ErrorEvent,
    SourcesEvent,
    TokenEvent,
    encode_plain,
    encode_sse,
    split_sources,
    sse_done,
)
from stackmemory.db.models import RetrievalMatch

MATCH = RetrievalMatch(file_path="src/auth.ts", content="login()", similarity=0.91, chunk_index=2)


def test_plain_trailer_format():
    body = encode_plain(TokenEvent("Answer.")) + encode_plain(SourcesEvent([MATCH]))
    assert body.startswith("Answer.\n\n__SOURCES__:[")
    payload = json.loads(body.split("__SOURCES__:", 1)[1])
    assert payload == [
        {"file_path": "src/auth.ts", "content": "login()", "similarity": 0.91, "chunk_index": 2}
    ]


def test_plain_error_is_silent():
    assert encode_plain(ErrorEvent("Generation service unavailable")) == ""


def test_sse_token_is_json_encoded():
    assert encode_sse(TokenEvent('say "hi"\n')) == 'event: token\ndata: "say \\"hi\\"\\n"\n\n'


def test_sse_sources_and_error():
    sources = encode_sse(SourcesEvent([MATCH]))
    assert sources.startswith("event: sources\ndata: [")
    error = encode_sse(ErrorEvent("boom"))
    assert error == 'event: error\ndata: {"error": "boom"}\n\n'
    assert sse_done() == "event: done\ndata: {}\n\n"


def test_split_sources():
    body = "Answer." + SOURCES_SENTINEL + json.dumps([MATCH.to_dict()])
    answer, sources = split_sources(body)
    assert answer == "Answer."
    assert sources[0]["file_path"] == "src/auth.ts"


def test_split_sources_uses_last_sentinel():
    quoted = f"The marker is {SOURCES_SENTINEL}[] in docs."
    body = quoted + SOURCES_SENTINEL + "[]"
    answer, sources = split_sources(body)
    assert answer == quoted
    assert sources == []


def test_split_without_trailer():
    assert split_sources("Just text") == ("Just text", [])


def test_split_with_broken_trailer_keeps_body():
    body = "Text" + SOURCES_SENTINEL + "{not json"
    assert split_sources(body) == (body, [])
