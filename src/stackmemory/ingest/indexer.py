"""Indexer: chunk, embed and store repository files for one project.

For each file:
1. Skip empty / whitespace-only content.
2. Split into fixed windows (FixedWindowChunker).
3. Embed each chunk via EmbeddingClient. A failed chunk is logged, recorded
   and skipped; the rest of the file still goes in.
4. Replace the file's stored chunks in one transaction
   (Repository.replace_file_chunks), so old and new fragments never coexist.
5. Append one ``embedding`` usage row per stored chunk. A ledger write failure
   is logged; the chunks stay stored.

A store failure for one file is logged and recorded; the batch continues.
Only an unreachable store aborts the batch.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field

from stackmemory.access.usage import UsageLedger, estimate_tokens
from stackmemory.crawler.github import FileRecord
from stackmemory.db.models import ChunkRecord
from stackmemory.db.repository import Repository
from stackmemory.db.vectors import ensure_vec_table, model_to_slug
from stackmemory.errors import EmbeddingFailed, StoreWriteFailed
from stackmemory.ingest.base import BaseChunker
from stackmemory.ingest.chunker import FixedWindowChunker
from stackmemory.rag.llm_client import EmbeddingClient
from stackmemory.results import UnitFailure

logger = logging.getLogger(__name__)


@dataclass
class IndexSummary:
    """Result of indexing a batch of files.

    Attributes:
        chunks_stored: Chunks written across all files.
        files_indexed: Files whose chunks were replaced successfully.
        files_skipped: Empty or whitespace-only files (not failures).
        failed: Per-chunk embedding failures and per-file store failures.
    """

    chunks_stored: int = 0
    files_indexed: int = 0
    files_skipped: int = 0
    failed: list[UnitFailure] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "chunks_stored": self.chunks_stored,
            "files_indexed": self.files_indexed,
            "files_skipped": self.files_skipped,
            "failed": [f.to_dict() for f in self.failed],
        }


class Indexer:
    """Write repository files to the vector store with embeddings.

    Args:
        repo: Open Repository instance.
        embedder: Embedding client; its model picks the vec table.
        ledger: Usage ledger for per-chunk embedding rows.
        chunker: Chunker to split files (FixedWindowChunker by default).
    """

    def __init__(
        self,
        repo: Repository,
        embedder: EmbeddingClient,
        ledger: UsageLedger,
        chunker: BaseChunker | None = None,
    ) -> None:
        self._repo = repo
        self._embedder = embedder
        self._ledger = ledger
        self._chunker = chunker or FixedWindowChunker()
        self._vec_table: str | None = None

    @property
    def vec_table(self) -> str:
        if self._vec_table is None:
            self._vec_table = ensure_vec_table(
                self._repo.conn, model_to_slug(self._embedder.model), self._embedder.dimensions
            )
        return self._vec_table

    def index_files(
        self,
        project_id: str,
        files: list[FileRecord],
        *,
        user_id: str | None = None,
        on_file: Callable[[FileRecord], None] | None = None,
    ) -> IndexSummary:
        """Index *files* into *project_id* and return a summary.

        Args:
            project_id: Target project; every stored row carries it.
            files: Files to (re)index, processed in order.
            user_id: Owner charged in the usage ledger.
            on_file: Called after each file, e.g. to advance a progress bar.

        Raises:
            StoreUnavailable: If the store cannot be reached at all.
        """
        self._repo.ping()
        vec_table = self.vec_table
        summary = IndexSummary()

        for file in files:
            self._index_one(project_id, file, vec_table, summary, user_id)
            if on_file is not None:
                on_file(file)

        logger.info(
            "Indexed project %s: %d chunks from %d files (%d skipped, %d failures)",
            project_id,
            summary.chunks_stored,
            summary.files_indexed,
            summary.files_skipped,
            len(summary.failed),
        )
        return summary

    def _index_one(
        self,
        project_id: str,
        file: FileRecord,
        vec_table: str,
        summary: IndexSummary,
        user_id: str | None,
    ) -> None:
        chunks = self._chunker.split(file)
        if not chunks:
            summary.files_skipped += 1
            return

        records: list[ChunkRecord] = []
        for chunk in chunks:
            unit = f"{file.path}#{chunk.chunk_index}"
            try:
                vector = self._embedder.embed(chunk.content)
            except EmbeddingFailed as exc:
                logger.warning("Embedding failed for %s: %s", unit, exc)
                summary.failed.append(UnitFailure.from_exception(unit, exc))
                continue
            records.append(
                ChunkRecord(
                    file_path=file.path,
                    chunk_index=chunk.chunk_index,
                    content=chunk.content,
                    embedding=vector,
                    metadata=chunk.metadata,
                )
            )

        try:
            stored = self._repo.replace_file_chunks(
                project_id,
                file.path,
                records,
                embedding_model=self._embedder.model,
                vec_table=vec_table,
            )
        except StoreWriteFailed as exc:
            logger.error("Store write failed for %s: %s", file.path, exc)
            summary.failed.append(UnitFailure.from_exception(file.path, exc))
            return

        summary.files_indexed += 1
        summary.chunks_stored += stored
        try:
            for record in records:
                self._ledger.record(
                    "embedding",
                    self._embedder.model,
                    estimate_tokens(record.content),
                    0,
                    user_id=user_id,
                    project_id=project_id,
                )
        except sqlite3.Error as exc:
            logger.error("Could not record embedding usage for %s: %s", file.path, exc)
