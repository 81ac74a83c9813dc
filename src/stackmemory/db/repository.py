"""Repository pattern for all StackMemory database operations.

Single interface for: users, credentials, projects, chunks + vec embeddings,
similarity search, and the usage ledger. Vec tables are model-managed
(ensure_vec_table); the repository handles read + write.

Every chunk read takes a project id. There is no method that returns chunks
across projects.
"""

from __future__ import annotations

import json
import sqlite3

from stackmemory.db.models import (
    ChunkRecord,
    Project,
    RetrievalMatch,
    StackItem,
    StoredChunk,
    UsageLogEntry,
    User,
)
from stackmemory.db.vectors import list_vec_tables
from stackmemory.errors import StoreUnavailable, StoreWriteFailed


class Repository:
    """Data access layer for all StackMemory database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see stackmemory.db.schema.initialize).
        """
        self._conn = conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def ping(self) -> None:
        """Raise StoreUnavailable if the database cannot answer a trivial query."""
        try:
            self._conn.execute("SELECT 1 FROM chunks LIMIT 1").fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"vector store unreachable: {exc}") from exc

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def add_user(self, user: User) -> None:
        self._conn.execute(
            """
            INSERT INTO users (id, email, tier, custom_limit_chat, custom_limit_insight,
                               pro_trial_ends_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                user.id,
                user.email,
                user.tier,
                user.custom_limit_chat,
                user.custom_limit_insight,
                user.pro_trial_ends_at,
            ),
        )
        self._conn.commit()

    def get_user(self, user_id: str) -> User | None:
        row = self._conn.execute(
            """
            SELECT id, email, tier, custom_limit_chat, custom_limit_insight,
                   pro_trial_ends_at, created_at
            FROM users WHERE id = ?
            """,
            (user_id,),
        ).fetchone()
        return _row_to_user(row) if row else None

    def update_user_plan(
        self,
        user_id: str,
        *,
        tier: str | None = None,
        custom_limit_chat: int | None = None,
        custom_limit_insight: int | None = None,
        pro_trial_ends_at: str | None = None,
    ) -> None:
        """Update the plan columns that are not None."""
        updates = {
            "tier": tier,
            "custom_limit_chat": custom_limit_chat,
            "custom_limit_insight": custom_limit_insight,
            "pro_trial_ends_at": pro_trial_ends_at,
        }
        columns = {k: v for k, v in updates.items() if v is not None}
        if not columns:
            return
        assignments = ", ".join(f"{k} = ?" for k in columns)
        self._conn.execute(
            f"UPDATE users SET {assignments} WHERE id = ?",  # noqa: S608
            (*columns.values(), user_id),
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def add_credential(
        self,
        token_hash: str,
        user_id: str,
        kind: str,
        *,
        label: str = "",
        expires_at: str | None = None,
    ) -> None:
        """Store a hashed session or API credential for *user_id*."""
        self._conn.execute(
            """
            INSERT INTO credentials (token_hash, user_id, kind, label, expires_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (token_hash, user_id, kind, label, expires_at),
        )
        self._conn.commit()

    def find_credential_user(self, token_hash: str, kind: str) -> str | None:
        """Return the user id owning an unexpired credential, or None."""
        row = self._conn.execute(
            """
            SELECT user_id FROM credentials
            WHERE token_hash = ? AND kind = ?
              AND (expires_at IS NULL OR expires_at > datetime('now'))
            """,
            (token_hash, kind),
        ).fetchone()
        return row["user_id"] if row else None

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def add_project(self, project: Project) -> None:
        self._conn.execute(
            """
            INSERT INTO projects (id, owner_id, name, repo_url, stack)
            VALUES (?, ?, ?, ?, ?)
            """,
            (project.id, project.owner_id, project.name, project.repo_url, project.stack_json()),
        )
        self._conn.commit()

    def get_project(self, project_id: str) -> Project | None:
        row = self._conn.execute(
            """
            SELECT id, owner_id, name, repo_url, stack, last_synced_at, created_at
            FROM projects WHERE id = ?
            """,
            (project_id,),
        ).fetchone()
        return _row_to_project(row) if row else None

    def list_projects(self, owner_id: str | None = None) -> list[Project]:
        """Return projects ordered by creation time, optionally for one owner."""
        sql = (
            "SELECT id, owner_id, name, repo_url, stack, last_synced_at, created_at "
            "FROM projects"
        )
        params: tuple = ()
        if owner_id is not None:
            sql += " WHERE owner_id = ?"
            params = (owner_id,)
        sql += " ORDER BY created_at, id"
        return [_row_to_project(r) for r in self._conn.execute(sql, params).fetchall()]

    def update_stack(self, project_id: str, stack: list[StackItem]) -> None:
        self._conn.execute(
            "UPDATE projects SET stack = ? WHERE id = ?",
            (json.dumps([item.to_dict() for item in stack]), project_id),
        )
        self._conn.commit()

    def update_repo_url(self, project_id: str, repo_url: str) -> None:
        self._conn.execute(
            "UPDATE projects SET repo_url = ? WHERE id = ?", (repo_url, project_id)
        )
        self._conn.commit()

    def mark_synced(self, project_id: str) -> None:
        self._conn.execute(
            "UPDATE projects SET last_synced_at = datetime('now') WHERE id = ?",
            (project_id,),
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Chunks + vec embeddings
    # ------------------------------------------------------------------

    def replace_file_chunks(
        self,
        project_id: str,
        file_path: str,
        records: list[ChunkRecord],
        *,
        embedding_model: str,
        vec_table: str,
    ) -> int:
        """Atomically replace every stored chunk of one file.

        Deletes all chunks (and their vectors, in every vec table) stored for
        (*project_id*, *file_path*), then inserts *records*, in a single
        transaction. On failure nothing changes.

        Args:
            project_id: Owning project.
            file_path: Repository-relative path of the file.
            records: New chunks with embeddings. May be empty, which just
                clears the file.
            embedding_model: Model id stored on each chunk row.
            vec_table: Vec table for *embedding_model* (see ensure_vec_table).

        Returns:
            Number of chunks written.

        Raises:
            StoreWriteFailed: If any statement fails; the transaction is rolled back.
        """
        try:
            with self._conn:
                self._delete_file_rows(project_id, file_path)
                for record in records:
                    cur = self._conn.execute(
                        """
                        INSERT INTO chunks (project_id, file_path, chunk_index, content,
                                            metadata, embedding_model)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (
                            project_id,
                            file_path,
                            record.chunk_index,
                            record.content,
                            json.dumps(record.metadata),
                            embedding_model,
                        ),
                    )
                    self._conn.execute(
                        f"INSERT INTO {vec_table}(rowid, project_id, embedding) VALUES (?, ?, ?)",
                        (cur.lastrowid, project_id, json.dumps(record.embedding)),
                    )
        except sqlite3.Error as exc:
            raise StoreWriteFailed(
                f"could not replace chunks for '{file_path}' in project '{project_id}': {exc}"
            ) from exc
        return len(records)

    def delete_file_chunks(self, project_id: str, file_path: str) -> int:
        """Delete all chunks + vectors of one file. Returns the number of chunks removed."""
        with self._conn:
            return self._delete_file_rows(project_id, file_path)

    def _delete_file_rows(self, project_id: str, file_path: str) -> int:
        """Delete chunk rows and their vectors without committing."""
        rowids = [
            r[0]
            for r in self._conn.execute(
                "SELECT rowid FROM chunks WHERE project_id = ? AND file_path = ?",
                (project_id, file_path),
            ).fetchall()
        ]
        if not rowids:
            return 0

        placeholders = ",".join("?" * len(rowids))
        for table in list_vec_tables(self._conn):
            self._conn.execute(
                f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                rowids,
            )
        self._conn.execute(
            f"DELETE FROM chunks WHERE rowid IN ({placeholders})",  # noqa: S608
            rowids,
        )
        return len(rowids)

    def list_file_chunks(self, project_id: str, file_path: str) -> list[StoredChunk]:
        """Return the chunks of one file in chunk_index order."""
        rows = self._conn.execute(
            """
            SELECT rowid, project_id, file_path, chunk_index, content, metadata,
                   embedding_model, created_at
            FROM chunks WHERE project_id = ? AND file_path = ?
            ORDER BY chunk_index
            """,
            (project_id, file_path),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks(self, project_id: str, file_path: str | None = None) -> int:
        if file_path is None:
            return self._conn.execute(
                "SELECT COUNT(*) FROM chunks WHERE project_id = ?", (project_id,)
            ).fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE project_id = ? AND file_path = ?",
            (project_id, file_path),
        ).fetchone()[0]

    def list_file_paths(self, project_id: str) -> list[str]:
        """Return the distinct indexed file paths of a project, sorted."""
        return [
            r[0]
            for r in self._conn.execute(
                "SELECT DISTINCT file_path FROM chunks WHERE project_id = ? ORDER BY file_path",
                (project_id,),
            ).fetchall()
        ]

    def find_chunks_by_path(
        self, project_id: str, patterns: list[str], limit: int = 20
    ) -> list[StoredChunk]:
        """Return chunks whose file path matches any SQL LIKE pattern in *patterns*."""
        if not patterns:
            return []
        clause = " OR ".join("file_path LIKE ?" for _ in patterns)
        rows = self._conn.execute(
            f"""
            SELECT rowid, project_id, file_path, chunk_index, content, metadata,
                   embedding_model, created_at
            FROM chunks WHERE project_id = ? AND ({clause})
            ORDER BY file_path, chunk_index
            LIMIT ?
            """,  # noqa: S608
            (project_id, *patterns, limit),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def last_indexed_at(self, project_id: str) -> str | None:
        """Return the creation time of the newest stored chunk, or None."""
        row = self._conn.execute(
            "SELECT MAX(created_at) FROM chunks WHERE project_id = ?", (project_id,)
        ).fetchone()
        return row[0] if row else None

    def search(
        self,
        vec_table: str,
        project_id: str,
        embedding: list[float],
        *,
        threshold: float,
        limit: int = 10,
    ) -> list[RetrievalMatch]:
        """Nearest-neighbour search inside one project's partition.

        Returns matches with ``similarity >= threshold``, closest first.
        """
        vec_rows = self._conn.execute(
            f"""
            SELECT rowid, distance FROM {vec_table}
            WHERE embedding MATCH ? AND k = ? AND project_id = ?
            ORDER BY distance
            """,
            (json.dumps(embedding), limit, project_id),
        ).fetchall()

        matches: list[RetrievalMatch] = []
        for vec_row in vec_rows:
            similarity = 1.0 - vec_row["distance"]
            if similarity < threshold:
                continue
            row = self._conn.execute(
                "SELECT file_path, content, chunk_index FROM chunks "
                "WHERE rowid = ? AND project_id = ?",
                (vec_row["rowid"], project_id),
            ).fetchone()
            if row is None:
                continue
            matches.append(
                RetrievalMatch(
                    file_path=row["file_path"],
                    content=row["content"],
                    similarity=similarity,
                    chunk_index=row["chunk_index"],
                )
            )
        return matches

    # ------------------------------------------------------------------
    # Usage ledger (append-only)
    # ------------------------------------------------------------------

    def add_usage(self, entry: UsageLogEntry) -> int:
        """Append a usage row. Returns its id."""
        if entry.created_at is None:
            cur = self._conn.execute(
                """
                INSERT INTO usage_logs (user_id, project_id, action, model,
                                        input_tokens, output_tokens, cost_estimated)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.user_id,
                    entry.project_id,
                    entry.action,
                    entry.model,
                    entry.input_tokens,
                    entry.output_tokens,
                    entry.cost_estimated,
                ),
            )
        else:
            cur = self._conn.execute(
                """
                INSERT INTO usage_logs (user_id, project_id, action, model,
                                        input_tokens, output_tokens, cost_estimated,
                                        created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.user_id,
                    entry.project_id,
                    entry.action,
                    entry.model,
                    entry.input_tokens,
                    entry.output_tokens,
                    entry.cost_estimated,
                    entry.created_at,
                ),
            )
        self._conn.commit()
        return cur.lastrowid

    def count_usage(self, user_id: str, action: str, since: str) -> int:
        """Count ledger rows for (*user_id*, *action*) created at or after *since*."""
        return self._conn.execute(
            "SELECT COUNT(*) FROM usage_logs WHERE user_id = ? AND action = ? AND created_at >= ?",
            (user_id, action, since),
        ).fetchone()[0]

    def list_usage(
        self, *, user_id: str | None = None, project_id: str | None = None
    ) -> list[UsageLogEntry]:
        """Return ledger rows, oldest first, filtered by user and/or project."""
        clauses, params = _usage_filters(user_id, project_id, None)
        rows = self._conn.execute(
            "SELECT id, user_id, project_id, action, model, input_tokens, output_tokens, "
            f"cost_estimated, created_at FROM usage_logs {clauses} ORDER BY id",  # noqa: S608
            params,
        ).fetchall()
        return [_row_to_usage(r) for r in rows]

    def usage_totals(
        self,
        *,
        user_id: str | None = None,
        project_id: str | None = None,
        since: str | None = None,
    ) -> list[dict]:
        """Aggregate ledger rows per action.

        Returns:
            ``[{"action", "events", "input_tokens", "output_tokens", "cost"}]``
            ordered by action name.
        """
        clauses, params = _usage_filters(user_id, project_id, since)
        rows = self._conn.execute(
            f"""
            SELECT action, COUNT(*) AS events,
                   COALESCE(SUM(input_tokens), 0) AS input_tokens,
                   COALESCE(SUM(output_tokens), 0) AS output_tokens,
                   COALESCE(SUM(cost_estimated), 0.0) AS cost
            FROM usage_logs {clauses}
            GROUP BY action ORDER BY action
            """,  # noqa: S608
            params,
        ).fetchall()
        return [dict(r) for r in rows]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _usage_filters(
    user_id: str | None, project_id: str | None, since: str | None
) -> tuple[str, tuple]:
    conditions: list[str] = []
    params: list = []
    if user_id is not None:
        conditions.append("user_id = ?")
        params.append(user_id)
    if project_id is not None:
        conditions.append("project_id = ?")
        params.append(project_id)
    if since is not None:
        conditions.append("created_at >= ?")
        params.append(since)
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return where, tuple(params)


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        tier=row["tier"],
        custom_limit_chat=row["custom_limit_chat"],
        custom_limit_insight=row["custom_limit_insight"],
        pro_trial_ends_at=row["pro_trial_ends_at"],
        created_at=row["created_at"],
    )


def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        repo_url=row["repo_url"],
        stack=[StackItem.from_dict(item) for item in json.loads(row["stack"] or "[]")],
        last_synced_at=row["last_synced_at"],
        created_at=row["created_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> StoredChunk:
    return StoredChunk(
        rowid=row["rowid"],
        project_id=row["project_id"],
        file_path=row["file_path"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        metadata=row["metadata"],
        embedding_model=row["embedding_model"],
        created_at=row["created_at"],
    )


def _row_to_usage(row: sqlite3.Row) -> UsageLogEntry:
    return UsageLogEntry(
        id=row["id"],
        user_id=row["user_id"],
        project_id=row["project_id"],
        action=row["action"],
        model=row["model"],
        input_tokens=row["input_tokens"],
        output_tokens=row["output_tokens"],
        cost_estimated=row["cost_estimated"],
        created_at=row["created_at"],
    )
