"""Forward-only migration runner for StackMemory's database schema.

Vec tables (vec_chunks_*) are NOT migration-managed. Use ensure_vec_table().
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id                    TEXT PRIMARY KEY,
    email                 TEXT NOT NULL DEFAULT '',
    tier                  TEXT NOT NULL DEFAULT 'free'
                          CHECK (tier IN ('free', 'pro', 'founder')),
    custom_limit_chat     INTEGER,
    custom_limit_insight  INTEGER,
    pro_trial_ends_at     DATETIME,
    created_at            DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS credentials (
    token_hash  TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    kind        TEXT NOT NULL CHECK (kind IN ('session', 'api')),
    label       TEXT NOT NULL DEFAULT '',
    expires_at  DATETIME,
    created_at  DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS projects (
    id              TEXT PRIMARY KEY,
    owner_id        TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name            TEXT NOT NULL,
    repo_url        TEXT,
    stack           TEXT NOT NULL DEFAULT '[]',
    last_synced_at  DATETIME,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS chunks (
    project_id       TEXT NOT NULL,
    file_path        TEXT NOT NULL,
    chunk_index      INTEGER NOT NULL,
    content          TEXT NOT NULL,
    metadata         TEXT NOT NULL DEFAULT '{}',
    embedding_model  TEXT NOT NULL,
    created_at       DATETIME NOT NULL DEFAULT (datetime('now')),
    UNIQUE (project_id, file_path, chunk_index)
);

CREATE INDEX IF NOT EXISTS idx_chunks_project_path ON chunks(project_id, file_path);

CREATE TABLE IF NOT EXISTS usage_logs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT,
    project_id      TEXT,
    action          TEXT NOT NULL
                    CHECK (action IN ('embedding', 'chat', 'insight', 'onboarding')),
    model           TEXT NOT NULL,
    input_tokens    INTEGER NOT NULL DEFAULT 0,
    output_tokens   INTEGER NOT NULL DEFAULT 0,
    cost_estimated  REAL NOT NULL DEFAULT 0,
    created_at      DATETIME NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_usage_user_action ON usage_logs(user_id, action, created_at);

CREATE TRIGGER IF NOT EXISTS usage_logs_no_update
BEFORE UPDATE ON usage_logs
BEGIN
    SELECT RAISE(ABORT, 'usage_logs is append-only');
END;

CREATE TRIGGER IF NOT EXISTS usage_logs_no_delete
BEFORE DELETE ON usage_logs
BEGIN
    SELECT RAISE(ABORT, 'usage_logs is append-only');
END;
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    Vec tables are NOT managed here. Use ensure_vec_table() instead.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied migration version (0 for a fresh database)."""
    conn.execute(_CREATE_SCHEMA_VERSION)
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row[0] is not None else 0
