"""StackMemory configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (STACKMEMORY_GENERATION_MODEL, STACKMEMORY_EMBEDDING_MODEL,
                             STACKMEMORY_DB)
  3. Per-project stackmemory.yaml  (working directory)
  4. Global ~/.stackmemory/config.yaml  (model defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys or GitHub tokens; use environment
variables instead. All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".stackmemory"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "stackmemory.yaml"

# Matches: api_key, apikey, api-key, api_secret, _token (suffix), standalone token,
# standalone secret, _secret (suffix), password, passwd, credential(s).
# Does NOT match legitimate config keys like max_tokens or min_query_chars.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["database", "embedding", "generation", "retrieval", "indexing", "media", "server"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class DatabaseCfg:
    """Vector store location (stackmemory.yaml: database:)."""

    path: str = ".stackmemory.db"


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (stackmemory.yaml: embedding:).

    ``dimensions`` must match the model's output length; it sizes the
    per-model vec table on first use.
    """

    model: str = "gemini/text-embedding-004"
    dimensions: int = 768


@dataclass
class GenerationCfg:
    """Chat model configuration (stackmemory.yaml: generation:)."""

    model: str = "gemini/gemini-2.0-flash"
    fallback_model: str | None = "gemini/gemini-1.5-flash"
    max_tokens: int = 2048
    temperature: float = 0.2


@dataclass
class RetrievalCfg:
    """Similarity search defaults (stackmemory.yaml: retrieval:)."""

    match_threshold: float = 0.5
    match_count: int = 10
    min_query_chars: int = 4


@dataclass
class IndexingCfg:
    """Crawl and chunking limits (stackmemory.yaml: indexing:)."""

    chunk_chars: int = 8_000
    max_files: int = 50
    fetch_workers: int = 8


@dataclass
class MediaCfg:
    """Remote media handling (stackmemory.yaml: media:)."""

    poll_interval: float = 2.0
    max_poll_attempts: int = 30
    max_download_bytes: int = 100 * 1024 * 1024


@dataclass
class ServerCfg:
    """HTTP server binding (stackmemory.yaml: server:)."""

    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class StackMemoryConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    database: DatabaseCfg = field(default_factory=DatabaseCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    indexing: IndexingCfg = field(default_factory=IndexingCfg)
    media: MediaCfg = field(default_factory=MediaCfg)
    server: ServerCfg = field(default_factory=ServerCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: StackMemoryConfig) -> None:
    if cfg.embedding.dimensions < 1:
        raise ConfigError(
            f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}"
        )
    if not 0.0 <= cfg.retrieval.match_threshold <= 1.0:
        raise ConfigError(
            "retrieval.match_threshold must be between 0.0 and 1.0, "
            f"got {cfg.retrieval.match_threshold}"
        )
    if cfg.indexing.chunk_chars < 1:
        raise ConfigError(f"indexing.chunk_chars must be >= 1, got {cfg.indexing.chunk_chars}")
    if cfg.indexing.fetch_workers < 1:
        raise ConfigError(
            f"indexing.fetch_workers must be >= 1, got {cfg.indexing.fetch_workers}"
        )
    if cfg.media.max_poll_attempts < 1:
        raise ConfigError(
            f"media.max_poll_attempts must be >= 1, got {cfg.media.max_poll_attempts}"
        )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> StackMemoryConfig:
    """Build a *StackMemoryConfig* from a merged raw YAML dict."""
    cfg = StackMemoryConfig()

    if "database" in data:
        d = data["database"]
        cfg.database = DatabaseCfg(path=str(d.get("path", cfg.database.path)))

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
        )

    if "generation" in data:
        g = data["generation"]
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            fallback_model=g.get("fallback_model", cfg.generation.fallback_model),
            max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
            temperature=float(g.get("temperature", cfg.generation.temperature)),
        )

    if "retrieval" in data:
        r = data["retrieval"]
        cfg.retrieval = RetrievalCfg(
            match_threshold=float(r.get("match_threshold", cfg.retrieval.match_threshold)),
            match_count=int(r.get("match_count", cfg.retrieval.match_count)),
            min_query_chars=int(r.get("min_query_chars", cfg.retrieval.min_query_chars)),
        )

    if "indexing" in data:
        i = data["indexing"]
        cfg.indexing = IndexingCfg(
            chunk_chars=int(i.get("chunk_chars", cfg.indexing.chunk_chars)),
            max_files=int(i.get("max_files", cfg.indexing.max_files)),
            fetch_workers=int(i.get("fetch_workers", cfg.indexing.fetch_workers)),
        )

    if "media" in data:
        m = data["media"]
        cfg.media = MediaCfg(
            poll_interval=float(m.get("poll_interval", cfg.media.poll_interval)),
            max_poll_attempts=int(m.get("max_poll_attempts", cfg.media.max_poll_attempts)),
            max_download_bytes=int(
                m.get("max_download_bytes", cfg.media.max_download_bytes)
            ),
        )

    if "server" in data:
        s = data["server"]
        cfg.server = ServerCfg(
            host=str(s.get("host", cfg.server.host)),
            port=int(s.get("port", cfg.server.port)),
        )

    return cfg


def _apply_env_overrides(cfg: StackMemoryConfig) -> StackMemoryConfig:
    """Apply STACKMEMORY_* environment variable overrides (layer 2)."""
    if model := os.environ.get("STACKMEMORY_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("STACKMEMORY_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if db_path := os.environ.get("STACKMEMORY_DB"):
        cfg.database.path = db_path
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> StackMemoryConfig:
    """Load and return a merged *StackMemoryConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *stackmemory.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *StackMemoryConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or if a
            numeric setting is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.stackmemory/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).

    Args:
        global_config_path: Override path (for testing).

    Returns:
        Path to the global config file.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# StackMemory global configuration: model defaults only.\n"
            "# NEVER store API keys here. Use environment variables:\n"
            "#   export GEMINI_API_KEY=...\n"
            "#   export GITHUB_TOKEN=ghp_...\n"
            "\n"
            "embedding:\n"
            "  model: gemini/text-embedding-004\n"
            "  dimensions: 768\n"
            "\n"
            "generation:\n"
            "  model: gemini/gemini-2.0-flash\n"
            "  fallback_model: gemini/gemini-1.5-flash\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
