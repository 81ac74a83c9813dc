"""SQLite connection layer with the sqlite-vec extension loaded."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

from stackmemory.errors import StoreUnavailable


class Database:
    """StackMemory SQLite database with sqlite-vec vector search support."""

    def __init__(self, db_path: Path | str, *, check_same_thread: bool = True) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
            check_same_thread: Passed to sqlite3.connect(). The HTTP server
                sets this to False because a streamed response is produced on
                threadpool workers other than the one that opened it.
        """
        self.db_path = Path(db_path)
        self.check_same_thread = check_same_thread
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, and return the connection.

        Raises:
            StoreUnavailable: If the file cannot be opened or the extension
                cannot be loaded.
        """
        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=self.check_same_thread)
            conn.row_factory = sqlite3.Row
            conn.enable_load_extension(True)
            sqlite_vec.load(conn)
            conn.enable_load_extension(False)
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"cannot open database '{self.db_path}': {exc}") from exc
        return conn

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None
