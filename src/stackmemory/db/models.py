"""Domain models for the StackMemory database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field


@dataclass
class User:
    id: str
    email: str = ""
    tier: str = "free"  # free | pro | founder
    custom_limit_chat: int | None = None
    custom_limit_insight: int | None = None
    pro_trial_ends_at: str | None = None
    created_at: str | None = None


@dataclass
class StackItem:
    """One declared technology of a project, e.g. ``next`` at ``v14.1.0``."""

    name: str
    version: str | None = None

    def to_dict(self) -> dict:
        return {"name": self.name, "version": self.version}

    @classmethod
    def from_dict(cls, data: dict) -> StackItem:
        return cls(name=str(data["name"]), version=data.get("version"))


@dataclass
class Project:
    id: str
    owner_id: str
    name: str
    repo_url: str | None = None
    stack: list[StackItem] = field(default_factory=list)
    last_synced_at: str | None = None
    created_at: str | None = None

    def stack_json(self) -> str:
        return json.dumps([item.to_dict() for item in self.stack])


@dataclass
class ChunkRecord:
    """A chunk ready to persist: content plus its embedding vector."""

    file_path: str
    chunk_index: int
    content: str
    embedding: list[float]
    metadata: dict = field(default_factory=dict)


@dataclass
class StoredChunk:
    project_id: str
    file_path: str
    chunk_index: int
    content: str
    metadata: str = field(default_factory=lambda: "{}")
    embedding_model: str = ""
    created_at: str | None = None
    rowid: int | None = None

    @property
    def metadata_dict(self) -> dict:
        return json.loads(self.metadata)


@dataclass
class RetrievalMatch:
    """A chunk returned by similarity search.

    ``similarity`` is ``1 - cosine distance``; higher is closer.
    """

    file_path: str
    content: str
    similarity: float
    chunk_index: int = 0

    def to_dict(self) -> dict:
        return {
            "file_path": self.file_path,
            "content": self.content,
            "similarity": self.similarity,
            "chunk_index": self.chunk_index,
        }


@dataclass
class UsageLogEntry:
    action: str  # embedding | chat | insight | onboarding
    model: str
    input_tokens: int
    output_tokens: int
    cost_estimated: float
    user_id: str | None = None
    project_id: str | None = None
    id: int | None = None
    created_at: str | None = None
