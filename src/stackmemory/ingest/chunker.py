"""Fixed-window chunker.

Windows are exact character slices with no overlap and no stripping, so the
chunks of a file concatenated in index order reproduce the file content.
"""

from __future__ import annotations

from stackmemory.crawler.github import FileRecord
from stackmemory.ingest.base import BaseChunker, TextChunk

DEFAULT_CHUNK_CHARS = 8_000


def split_fixed_window(text: str, size: int) -> list[str]:
    """Split *text* into consecutive slices of at most *size* characters."""
    if size < 1:
        raise ValueError("size must be >= 1")
    return [text[pos : pos + size] for pos in range(0, len(text), size)]


class FixedWindowChunker(BaseChunker):
    """Splits file content into windows of ``chunk_chars`` characters.

    Args:
        chunk_chars: Maximum characters per chunk (default 8,000).
    """

    def __init__(self, chunk_chars: int = DEFAULT_CHUNK_CHARS) -> None:
        if chunk_chars < 1:
            raise ValueError("chunk_chars must be >= 1")
        self.chunk_chars = chunk_chars

    def split(self, file: FileRecord) -> list[TextChunk]:
        if not file.content.strip():
            return []

        windows = split_fixed_window(file.content, self.chunk_chars)
        total = len(windows)
        return [
            TextChunk(
                file_path=file.path,
                chunk_index=i,
                total_chunks=total,
                content=window,
                metadata={
                    "language": file.language,
                    "size": file.size,
                    "chunk_index": i,
                    "total_chunks": total,
                },
            )
            for i, window in enumerate(windows)
        ]
