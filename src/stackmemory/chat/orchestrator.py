"""Grounded, optionally multimodal chat turn.

    received → authorizing → gating → retrieving → media_preparing
             → generating → finalizing → closed          (failed from anywhere)

prepare() runs everything up to and including opening the upstream stream,
so every error it raises can still become an HTTP status. stream() yields
events for the open turn, writes the usage row once the model finishes and
releases any uploaded media however the stream ends.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum

from stackmemory.access.auth import CompositeAuthenticator, Credentials, Identity
from stackmemory.access.gate import UsageGate
from stackmemory.access.usage import UsageLedger, estimate_tokens
from stackmemory.chat.media import MediaPart, MediaPreparer
from stackmemory.chat.protocol import ChatEvent, ErrorEvent, SourcesEvent, TokenEvent
from stackmemory.db.models import Project, RetrievalMatch, User
from stackmemory.db.repository import Repository
from stackmemory.errors import (
    EmbeddingFailed,
    GenerationFailed,
    InvalidRequest,
    ProjectNotFound,
    StackMemoryError,
    StoreUnavailable,
)
from stackmemory.rag.assembler import build_system_prompt
from stackmemory.rag.llm_client import EmbeddingClient, GenerationClient, TokenStream
from stackmemory.rag.retriever import RetrieverConfig, is_meaningful_query, retrieve

logger = logging.getLogger(__name__)

_MEDIA_ONLY_PROMPT = "Explain this media in the context of the project."


class ChatState(str, Enum):
    RECEIVED = "received"
    AUTHORIZING = "authorizing"
    GATING = "gating"
    RETRIEVING = "retrieving"
    MEDIA_PREPARING = "media_preparing"
    GENERATING = "generating"
    FINALIZING = "finalizing"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass
class ChatRequest:
    project_id: str | None
    query: str | None = None
    media: str | None = None
    media_url: str | None = None

    @property
    def has_media(self) -> bool:
        return bool(self.media or self.media_url)

    def validate(self) -> None:
        """Raise InvalidRequest unless the request is well-formed."""
        if not self.project_id or not self.project_id.strip():
            raise InvalidRequest("projectId missing", user_message="projectId is required")
        if self.media and self.media_url:
            raise InvalidRequest(
                "both media and mediaUrl supplied",
                user_message="Provide either media or mediaUrl, not both",
            )
        if not (self.query and self.query.strip()) and not self.has_media:
            raise InvalidRequest("empty query without media", user_message="query is required")


@dataclass
class ChatTurn:
    """Per-request state carried from prepare() into stream()."""

    request: ChatRequest
    state: ChatState = ChatState.RECEIVED
    identity: Identity | None = None
    project: Project | None = None
    profile: User | None = None
    matches: list[RetrievalMatch] = field(default_factory=list)
    media: MediaPart | None = None
    system_prompt: str = ""
    upstream: TokenStream | None = None
    output: list[str] = field(default_factory=list)

    def advance(self, state: ChatState) -> None:
        logger.debug("chat %s: %s -> %s", self.request.project_id, self.state.value, state.value)
        self.state = state

    @property
    def output_chars(self) -> int:
        return sum(len(part) for part in self.output)


class ChatOrchestrator:
    """Runs chat turns against one open repository.

    Args:
        repo: Open repository.
        authenticator: Resolves the caller's identity.
        gate: Tier and quota checks.
        ledger: Usage ledger written after each completed answer.
        embedder: Embeds the query; must match the model used for indexing.
        generator: Streaming chat model.
        media: Prepares image/video attachments.
        retrieval: Threshold and count for similarity search.
    """

    def __init__(
        self,
        repo: Repository,
        authenticator: CompositeAuthenticator,
        gate: UsageGate,
        ledger: UsageLedger,
        embedder: EmbeddingClient,
        generator: GenerationClient,
        media: MediaPreparer,
        retrieval: RetrieverConfig | None = None,
    ) -> None:
        self._repo = repo
        self._auth = authenticator
        self._gate = gate
        self._ledger = ledger
        self._embedder = embedder
        self._generator = generator
        self._media = media
        self._retrieval = retrieval or RetrieverConfig()

    # ------------------------------------------------------------------
    # Phase 1: everything before the first byte
    # ------------------------------------------------------------------

    def prepare(self, request: ChatRequest, credentials: Credentials) -> ChatTurn:
        """Validate, authorize, gate, retrieve, prepare media and open the stream.

        Raises:
            StackMemoryError: Any pre-stream failure (the turn ends ``failed``).
        """
        turn = ChatTurn(request=request)
        try:
            request.validate()

            turn.advance(ChatState.AUTHORIZING)
            turn.identity = self._auth.require(credentials)
            project = self._repo.get_project(request.project_id)
            if project is None or project.owner_id != turn.identity.user_id:
                raise ProjectNotFound(f"project '{request.project_id}' not visible to {turn.identity.user_id}")
            turn.project = project

            turn.advance(ChatState.GATING)
            turn.profile = self._gate.profile(project.owner_id)
            if request.has_media:
                self._gate.require(turn.profile, "multimodal")
            self._gate.require(turn.profile, "chat")

            if is_meaningful_query(request.query, self._retrieval.min_query_chars):
                turn.advance(ChatState.RETRIEVING)
                turn.matches = self._retrieve(project.id, request.query)

            if request.has_media:
                turn.advance(ChatState.MEDIA_PREPARING)
                turn.media = self._media.prepare(media=request.media, media_url=request.media_url)

            turn.system_prompt = build_system_prompt(
                turn.matches, project.stack, turn.media.kind if turn.media else None
            )
            turn.advance(ChatState.GENERATING)
            turn.upstream = self._generator.open_stream(self._messages(turn))
        except StackMemoryError as exc:
            turn.advance(ChatState.FAILED)
            logger.info("chat rejected at %s: %s", type(exc).__name__, exc)
            if turn.media is not None:
                self._media.release(turn.media)
            raise
        return turn

    def _retrieve(self, project_id: str, query: str) -> list[RetrievalMatch]:
        try:
            matches = retrieve(project_id, query, self._repo, self._embedder, self._retrieval)
        except (EmbeddingFailed, StoreUnavailable) as exc:
            logger.warning("Retrieval failed for project %s, answering without context: %s", project_id, exc)
            return []
        logger.info("Retrieved %d chunks for project %s", len(matches), project_id)
        return matches

    def _messages(self, turn: ChatTurn) -> list[dict]:
        text = (turn.request.query or "").strip() or _MEDIA_ONLY_PROMPT
        if turn.media is None:
            user_content: str | list[dict] = text
        else:
            user_content = [{"type": "text", "text": text}, turn.media.part]
        return [
            {"role": "system", "content": turn.system_prompt},
            {"role": "user", "content": user_content},
        ]

    # ------------------------------------------------------------------
    # Phase 2: streaming
    # ------------------------------------------------------------------

    def stream(self, turn: ChatTurn) -> Iterator[ChatEvent]:
        """Yield token events, then sources (if any). Close early to cancel."""
        if turn.upstream is None or turn.state is not ChatState.GENERATING:
            raise ValueError(f"turn is not ready to stream (state {turn.state.value})")

        try:
            yield from self._relay(turn)
        finally:
            self._media.release(turn.media)

    def _relay(self, turn: ChatTurn) -> Iterator[ChatEvent]:
        try:
            for text in turn.upstream:
                turn.output.append(text)
                yield TokenEvent(text)
        except GeneratorExit:
            turn.upstream.close()
            turn.advance(ChatState.CLOSED)
            logger.warning(
                "Client disconnected from project %s after ~%d output tokens; usage not recorded",
                turn.request.project_id,
                estimate_tokens("".join(turn.output)),
            )
            raise
        except Exception as exc:
            turn.upstream.close()
            turn.advance(ChatState.FAILED)
            logger.error(
                "Stream from %s failed after %d chars: %s: %s",
                turn.upstream.model,
                turn.output_chars,
                type(exc).__name__,
                exc,
            )
            yield ErrorEvent(GenerationFailed.user_message)
            return

        turn.advance(ChatState.FINALIZING)
        self._record_usage(turn)
        if turn.matches:
            yield SourcesEvent(list(turn.matches))
        turn.advance(ChatState.CLOSED)

    def run(self, request: ChatRequest, credentials: Credentials) -> Iterator[ChatEvent]:
        """prepare() then stream(); for callers that need no status mapping."""
        return self.stream(self.prepare(request, credentials))

    def _record_usage(self, turn: ChatTurn) -> None:
        input_text = turn.system_prompt + (turn.request.query or "")
        try:
            self._ledger.record(
                "chat",
                turn.upstream.model,
                estimate_tokens(input_text),
                estimate_tokens("".join(turn.output)),
                user_id=turn.project.owner_id,
                project_id=turn.project.id,
            )
        except sqlite3.Error as exc:
            logger.error("Could not record chat usage for project %s: %s", turn.project.id, exc)
