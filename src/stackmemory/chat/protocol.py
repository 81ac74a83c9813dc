"""Chat stream events and their wire encodings.

Plain text (default): token text concatenated. When there are sources it is
followed by ``\\n\\n__SOURCES__:`` and a JSON array on the same line.

Server-Sent Events: one named event per item::

    event: token
    data: "partial text"

    event: sources
    data: [{"file_path": ..., "content": ..., "similarity": ..., "chunk_index": ...}]

    event: done
    data: {}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from stackmemory.db.models import RetrievalMatch

SOURCES_SENTINEL = "\n\n__SOURCES__:"

PLAIN_MEDIA_TYPE = "text/plain; charset=utf-8"
SSE_MEDIA_TYPE = "text/event-stream"


@dataclass(frozen=True)
class TokenEvent:
    text: str


@dataclass(frozen=True)
class SourcesEvent:
    sources: list[RetrievalMatch] = field(default_factory=list)

    def payload(self) -> list[dict]:
        return [m.to_dict() for m in self.sources]


@dataclass(frozen=True)
class ErrorEvent:
    message: str


ChatEvent = TokenEvent | SourcesEvent | ErrorEvent


def encode_plain(event: ChatEvent) -> str:
    """Encode for the plain-text transport. Errors have no plain encoding."""
    if isinstance(event, TokenEvent):
        return event.text
    if isinstance(event, SourcesEvent):
        return SOURCES_SENTINEL + json.dumps(event.payload())
    return ""


def encode_sse(event: ChatEvent) -> str:
    if isinstance(event, TokenEvent):
        return _sse("token", json.dumps(event.text))
    if isinstance(event, SourcesEvent):
        return _sse("sources", json.dumps(event.payload()))
    return _sse("error", json.dumps({"error": event.message}))


def sse_done() -> str:
    return _sse("done", "{}")


def _sse(name: str, data: str) -> str:
    return f"event: {name}\ndata: {data}\n\n"


def split_sources(body: str) -> tuple[str, list[dict]]:
    """Split a plain-text chat body into (answer, sources).

    The trailer is located at the *last* sentinel, so an answer that happens
    to quote the sentinel is still split correctly.
    """
    head, sep, tail = body.rpartition(SOURCES_SENTINEL)
    if not sep:
        return body, []
    try:
        sources = json.loads(tail)
    except json.JSONDecodeError:
        return body, []
    if not isinstance(sources, list):
        return body, []
    return head, sources
