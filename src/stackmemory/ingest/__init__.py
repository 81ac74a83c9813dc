"""StackMemory ingest pipeline: chunker, indexer, project sync."""

from stackmemory.ingest.base import BaseChunker, TextChunk
from stackmemory.ingest.chunker import FixedWindowChunker
from stackmemory.ingest.indexer import Indexer, IndexSummary

__all__ = [
    "BaseChunker",
    "FixedWindowChunker",
    "IndexSummary",
    "Indexer",
    "TextChunk",
]
