"""Wiring: builds provider clients once and hands out per-connection components.

Provider clients (embedding, generation, file store) are process-wide.
Everything that touches SQLite is built per connection via the factory
methods, so the server can give each request its own connection.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from stackmemory.access.auth import CompositeAuthenticator
from stackmemory.access.gate import UsageGate
from stackmemory.access.usage import UsageLedger
from stackmemory.chat.media import GeminiFileStore, MediaPreparer
from stackmemory.chat.orchestrator import ChatOrchestrator
from stackmemory.config import StackMemoryConfig
from stackmemory.crawler.github import GitHubCrawler
from stackmemory.db.connection import Database
from stackmemory.db.repository import Repository
from stackmemory.db.schema import initialize
from stackmemory.ingest.chunker import FixedWindowChunker
from stackmemory.ingest.indexer import Indexer
from stackmemory.rag.insight import InsightReporter
from stackmemory.rag.llm_client import EmbeddingClient, GenerationClient
from stackmemory.rag.retriever import RetrieverConfig


@dataclass
class Services:
    config: StackMemoryConfig
    embedder: EmbeddingClient
    generator: GenerationClient
    media: MediaPreparer
    crawler_factory: Callable[[str | None], GitHubCrawler]
    check_same_thread: bool = True
    retrieval: RetrieverConfig = field(default_factory=RetrieverConfig)

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def open_repository(self) -> Repository:
        """Open a new connection, apply migrations, and wrap it. Caller closes."""
        conn = Database(self.config.database.path, check_same_thread=self.check_same_thread).connect()
        initialize(conn)
        return Repository(conn)

    @contextmanager
    def session(self) -> Iterator[Repository]:
        repo = self.open_repository()
        try:
            yield repo
        finally:
            repo.conn.close()

    # ------------------------------------------------------------------
    # Per-connection components
    # ------------------------------------------------------------------

    def ledger(self, repo: Repository) -> UsageLedger:
        return UsageLedger(repo)

    def gate(self, repo: Repository) -> UsageGate:
        return UsageGate(repo, self.ledger(repo))

    def authenticator(self, repo: Repository) -> CompositeAuthenticator:
        return CompositeAuthenticator.default(repo)

    def indexer(self, repo: Repository) -> Indexer:
        chunker = FixedWindowChunker(chunk_chars=self.config.indexing.chunk_chars)
        return Indexer(repo, self.embedder, self.ledger(repo), chunker=chunker)

    def chat(self, repo: Repository) -> ChatOrchestrator:
        return ChatOrchestrator(
            repo,
            self.authenticator(repo),
            self.gate(repo),
            self.ledger(repo),
            self.embedder,
            self.generator,
            self.media,
            self.retrieval,
        )

    def insight(self, repo: Repository) -> InsightReporter:
        return InsightReporter(repo, self.gate(repo), self.ledger(repo), self.generator)

    def crawler(self, token: str | None = None) -> GitHubCrawler:
        """Crawler using *token*, else the GITHUB_TOKEN environment variable."""
        return self.crawler_factory(token or os.environ.get("GITHUB_TOKEN"))


def build_services(cfg: StackMemoryConfig, *, check_same_thread: bool = True) -> Services:
    """Build provider clients from *cfg*. No network calls are made here."""
    file_store = GeminiFileStore(os.environ.get("GEMINI_API_KEY"))
    media = MediaPreparer(
        file_store,
        poll_interval=cfg.media.poll_interval,
        max_poll_attempts=cfg.media.max_poll_attempts,
        max_download_bytes=cfg.media.max_download_bytes,
    )

    def crawler_factory(token: str | None) -> GitHubCrawler:
        return GitHubCrawler(
            token,
            max_files=cfg.indexing.max_files,
            workers=cfg.indexing.fetch_workers,
        )

    return Services(
        config=cfg,
        embedder=EmbeddingClient(cfg.embedding.model, cfg.embedding.dimensions),
        generator=GenerationClient(
            cfg.generation.model,
            cfg.generation.fallback_model,
            max_tokens=cfg.generation.max_tokens,
            temperature=cfg.generation.temperature,
        ),
        media=media,
        crawler_factory=crawler_factory,
        check_same_thread=check_same_thread,
        retrieval=RetrieverConfig(
            match_threshold=cfg.retrieval.match_threshold,
            match_count=cfg.retrieval.match_count,
            min_query_chars=cfg.retrieval.min_query_chars,
        ),
    )
