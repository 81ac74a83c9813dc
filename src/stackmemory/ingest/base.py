"""Base chunker interface for repository files."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from stackmemory.crawler.github import FileRecord


@dataclass
class TextChunk:
    """A bounded slice of one file, the unit that is embedded and stored."""

    file_path: str
    chunk_index: int
    total_chunks: int
    content: str
    metadata: dict = field(default_factory=dict)


class BaseChunker(ABC):
    """Abstract base for all chunkers."""

    @abstractmethod
    def split(self, file: FileRecord) -> list[TextChunk]:
        """Split *file* into ordered chunks with sequential ``chunk_index``.

        Returns an empty list for empty or whitespace-only content.
        """
