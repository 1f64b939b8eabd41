"""Forward-only migration runner for the ragvault schema.

Documents are unique per (owner_id, file_path). Embeddings reference their
document; vectors are float32 blobs compared with sqlite-vec's scalar
distance functions, so owner and metadata-hash filters apply exactly.
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
CREATE TABLE IF NOT EXISTS documents (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id            TEXT NOT NULL,
    file_path           TEXT NOT NULL,
    total_chunk_size    INTEGER NOT NULL DEFAULT 0,
    created_at          TEXT NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now')),
    updated_at          TEXT NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now')),
    UNIQUE (owner_id, file_path)
);

CREATE TABLE IF NOT EXISTS embeddings (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id     INTEGER NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    model_name      TEXT NOT NULL,
    chunk_text      TEXT NOT NULL,
    embedding       BLOB NOT NULL,
    chunk_size      INTEGER NOT NULL,
    metadata        TEXT NOT NULL DEFAULT '{}',
    metadata_hash   TEXT NOT NULL,
    created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_embeddings_document ON embeddings(document_id);
CREATE INDEX IF NOT EXISTS idx_embeddings_metadata_hash ON embeddings(metadata_hash);

CREATE TABLE IF NOT EXISTS api_usage (
    owner_id        TEXT PRIMARY KEY,
    request_count   INTEGER NOT NULL DEFAULT 0,
    last_request_at TEXT,
    updated_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now'))
);
"""

# Append-only. Each entry: (version: int, sql: str).
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version. Each migration and
    its schema_version row are applied in one transaction.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(
                f"BEGIN;\n{sql}\n"
                f"INSERT INTO schema_version (version) VALUES ({int(version)});\n"
                "COMMIT;"
            )
