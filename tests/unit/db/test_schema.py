"""Tests for database schema initialization."""

from __future__ import annotations

import sqlite3

import pytest

from ragvault.db.connection import Database
from ragvault.db.schema import CURRENT_VERSION, initialize, schema_version


def _table_columns(conn, table: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {row["name"] for row in rows}


def test_documents_columns(tmp_db):
    cols = _table_columns(tmp_db, "documents")
    assert cols == {"id", "owner_id", "file_path", "total_chunk_size", "created_at", "updated_at"}


def test_embeddings_columns(tmp_db):
    cols = _table_columns(tmp_db, "embeddings")
    assert cols == {
        "id",
        "document_id",
        "model_name",
        "chunk_text",
        "embedding",
        "chunk_size",
        "metadata",
        "metadata_hash",
        "created_at",
    }


def test_api_usage_columns(tmp_db):
    cols = _table_columns(tmp_db, "api_usage")
    assert cols == {"owner_id", "request_count", "last_request_at", "updated_at"}


def test_schema_version_recorded(tmp_db):
    assert schema_version(tmp_db) == CURRENT_VERSION


def test_schema_version_zero_on_fresh_file(tmp_path):
    with Database(tmp_path / "fresh.db").session() as conn:
        assert schema_version(conn) == 0


def test_initialize_idempotent(tmp_db):
    initialize(tmp_db)
    rows = tmp_db.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert rows == 1


def test_document_unique_per_owner_and_path(tmp_db):
    tmp_db.execute("INSERT INTO documents (owner_id, file_path) VALUES ('alice', 'a.md')")
    tmp_db.execute("INSERT INTO documents (owner_id, file_path) VALUES ('bob', 'a.md')")
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute("INSERT INTO documents (owner_id, file_path) VALUES ('alice', 'a.md')")


def test_document_delete_cascades_to_embeddings(tmp_db):
    tmp_db.execute("INSERT INTO documents (owner_id, file_path) VALUES ('alice', 'a.md')")
    doc_id = tmp_db.execute("SELECT id FROM documents").fetchone()[0]
    tmp_db.execute(
        "INSERT INTO embeddings (document_id, model_name, chunk_text, embedding, chunk_size, metadata_hash)"
        " VALUES (?, 'm', 'text', x'00000000', 4, 'h')",
        (doc_id,),
    )
    tmp_db.execute("DELETE FROM documents WHERE id = ?", (doc_id,))
    assert tmp_db.execute("SELECT COUNT(*) FROM embeddings").fetchone()[0] == 0


def test_embedding_requires_existing_document(tmp_db):
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(
            "INSERT INTO embeddings (document_id, model_name, chunk_text, embedding, chunk_size, metadata_hash)"
            " VALUES (999, 'm', 'text', x'00000000', 4, 'h')"
        )
