"""SQLite connection layer with sqlite-vec extension.

Connections are opened per operation and always closed on exit. Transactions
are explicit (``BEGIN IMMEDIATE`` … ``COMMIT``/``ROLLBACK``): connections run
with ``isolation_level=None`` so the sqlite3 module never opens one implicitly.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import sqlite_vec


class Database:
    """Per-project SQLite database with sqlite-vec vector functions."""

    def __init__(self, db_path: Path | str, busy_timeout: float = 30.0) -> None:
        """Store the database path. Call connect() to open a connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
            busy_timeout: Seconds to wait for a competing writer's lock.
        """
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, and return the connection."""
        conn = sqlite3.connect(
            self.db_path, timeout=self.busy_timeout, isolation_level=None
        )
        try:
            conn.row_factory = sqlite3.Row
            conn.enable_load_extension(True)
            sqlite_vec.load(conn)
            conn.enable_load_extension(False)
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
        except BaseException:
            conn.close()
            raise
        return conn

    @contextmanager
    def session(self) -> Iterator[sqlite3.Connection]:
        """Yield a fresh connection and close it on every exit path."""
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside one write transaction.

        Commits when the block exits normally; rolls back and re-raises on any
        exception, so no partial state is ever visible to other connections.
        """
        with self.session() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
