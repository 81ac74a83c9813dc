"""Shared pytest fixtures."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import httpx
import pytest

from stackmemory.chat.media import MediaPreparer
from stackmemory.config import StackMemoryConfig
from stackmemory.crawler.github import GitHubCrawler
from stackmemory.db.connection import Database
from stackmemory.db.models import ChunkRecord, Project, User
from stackmemory.db.repository import Repository
from stackmemory.db.schema import initialize
from stackmemory.db.vectors import ensure_vec_table
from stackmemory.services import Services


class FakeEmbedder:
    """Stands in for EmbeddingClient: fixed vectors per text, 3 dimensions.

    Texts not in *vectors* get *default*. Every call is recorded in ``calls``.
    """

    def __init__(self, vectors=None, default=None, model="test/embed-3", dimensions=3):
        self.model = model
        self.dimensions = dimensions
        self.vectors = dict(vectors or {})
        self.default = default or [1.0, 0.0, 0.0]
        self.calls: list[str] = []

    def embed(self, text):
        self.calls.append(text)
        return list(self.vectors.get(text, self.default))


class FakeUpstream:
    """Stands in for TokenStream. Raises *error* after the listed tokens if given."""

    def __init__(self, tokens, model="test/chat", error=None):
        self.model = model
        self.tokens = list(tokens)
        self.error = error
        self.closed = False

    def __iter__(self):
        for token in self.tokens:
            yield token
        if self.error is not None:
            raise self.error

    def close(self):
        self.closed = True


class FakeGenerator:
    """Stands in for GenerationClient; records the messages of every call."""

    def __init__(self, tokens=("Hello", " world"), model="test/chat", error=None):
        self.model = model
        self.tokens = tokens
        self.error = error
        self.messages: list[list[dict]] = []
        self.upstreams: list[FakeUpstream] = []

    def open_stream(self, messages):
        self.messages.append(messages)
        upstream = FakeUpstream(self.tokens, self.model, self.error)
        self.upstreams.append(upstream)
        return upstream

    def complete(self, messages):
        self.messages.append(messages)
        return "".join(self.tokens), self.model


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".stackmemory.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def user(repo):
    u = User(id="user-1", email="dev@example.com", tier="free")
    repo.add_user(u)
    return u


@pytest.fixture
def project(repo, user):
    p = Project(id="proj-1", owner_id=user.id, name="demo", repo_url="https://github.com/acme/demo")
    repo.add_project(p)
    return repo.get_project(p.id)


@pytest.fixture
def indexed(repo, project):
    """*project* with one chunk of src/auth.ts stored at vector [1, 0, 0]."""
    table = ensure_vec_table(repo.conn, "test_embed_3", 3)
    repo.replace_file_chunks(
        project.id,
        "src/auth.ts",
        [ChunkRecord("src/auth.ts", 0, "export function login() {}", embedding=[1.0, 0.0, 0.0])],
        embedding_model="test/embed-3",
        vec_table=table,
    )
    return project


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def make_embedder():
    """Factory for FakeEmbedder with custom vectors."""
    return FakeEmbedder


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def make_generator():
    """Factory for FakeGenerator with custom tokens or a mid-stream error."""
    return FakeGenerator


def github_repo(request: httpx.Request) -> httpx.Response:
    """MockTransport handler serving acme/demo: one source file and a package.json."""
    path = request.url.path
    if path == "/repos/acme/demo/git/trees/main":
        return httpx.Response(
            200,
            json={"tree": [{"path": "src/app.ts", "type": "blob", "url": "https://api.github.com/blob/app"}]},
        )
    if path == "/blob/app":
        return httpx.Response(200, text="export const app = 1;")
    if path == "/repos/acme/demo/contents/package.json":
        return httpx.Response(200, text=json.dumps({"dependencies": {"next": "14.1.0"}}))
    return httpx.Response(404, json={"message": "Not Found"})


@pytest.fixture
def services(tmp_db, tmp_path, embedder, generator):
    """Services over the tmp_db file with fake providers and a mocked GitHub."""
    cfg = StackMemoryConfig()
    cfg.database.path = str(tmp_path / ".stackmemory.db")

    def crawler_factory(token):
        return GitHubCrawler(token, client=httpx.Client(transport=httpx.MockTransport(github_repo)))

    return Services(
        config=cfg,
        embedder=embedder,
        generator=generator,
        media=MagicMock(spec=MediaPreparer),
        crawler_factory=crawler_factory,
        check_same_thread=False,
    )


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Run CLI commands from tmp_path with an isolated global config."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("stackmemory.config._GLOBAL_CONFIG_PATH", tmp_path / "home" / "config.yaml")
    for name in ("STACKMEMORY_GENERATION_MODEL", "STACKMEMORY_EMBEDDING_MODEL", "STACKMEMORY_DB",
                 "STACKMEMORY_TOKEN", "STACKMEMORY_SERVER", "GITHUB_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    return tmp_path
