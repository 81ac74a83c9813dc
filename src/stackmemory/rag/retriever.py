"""Dense retriever: query embedding + project-scoped sqlite-vec KNN.

  similarity = 1 - cosine_distance
  keep matches with similarity >= match_threshold, at most match_count,
  ordered by similarity descending.

Queries shorter than ``min_query_chars`` (after stripping) are treated as
non-questions ("hi", "ok") and return no matches without an embedding call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from stackmemory.db.models import RetrievalMatch
from stackmemory.db.repository import Repository
from stackmemory.db.vectors import model_to_slug, vec_table_name, vec_table_exists
from stackmemory.rag.llm_client import EmbeddingClient

logger = logging.getLogger(__name__)


@dataclass
class RetrieverConfig:
    """Configuration for similarity search.

    Attributes:
        match_threshold: Minimum similarity (1 - cosine distance) to keep a match.
        match_count: Maximum number of matches returned.
        min_query_chars: Shorter stripped queries skip retrieval entirely.
    """

    match_threshold: float = 0.5
    match_count: int = 10
    min_query_chars: int = 4


def is_meaningful_query(query: str | None, min_chars: int = 4) -> bool:
    """True if *query* is long enough to be worth a similarity search."""
    return bool(query) and len(query.strip()) >= min_chars


def retrieve(
    project_id: str,
    query: str,
    repo: Repository,
    embedder: EmbeddingClient,
    config: RetrieverConfig | None = None,
    *,
    threshold: float | None = None,
    limit: int | None = None,
) -> list[RetrievalMatch]:
    """Return chunks of *project_id* similar to *query*, best first.

    Args:
        project_id: Project to search. Required; results never cross projects.
        query: Natural-language question.
        repo: Open repository.
        embedder: Must be the same model the project was indexed with.
        config: Defaults for threshold, count and minimum query length.
        threshold: Per-call override of ``config.match_threshold``.
        limit: Per-call override of ``config.match_count``.

    Returns:
        Matches sorted by similarity descending. Empty when the query is too
        short, the project was never indexed, or nothing clears the threshold.

    Raises:
        ValueError: If *project_id* is empty.
        EmbeddingFailed: If the query cannot be embedded.
    """
    if not project_id:
        raise ValueError("project_id is required for retrieval")
    config = config or RetrieverConfig()

    if not is_meaningful_query(query, config.min_query_chars):
        logger.debug("Skipping retrieval for short query %r", query)
        return []

    vec_table = vec_table_name(model_to_slug(embedder.model))
    if not vec_table_exists(repo.conn, vec_table):
        logger.info("No index for model %s yet; project %s has no context", embedder.model, project_id)
        return []

    query_embedding = embedder.embed(query)
    matches = repo.search(
        vec_table,
        project_id,
        query_embedding,
        threshold=config.match_threshold if threshold is None else threshold,
        limit=config.match_count if limit is None else limit,
    )
    matches.sort(key=lambda m: m.similarity, reverse=True)
    return matches
