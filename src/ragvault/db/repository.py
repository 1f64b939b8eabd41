"""Repository pattern for all ragvault database operations.

Single interface for: documents, embeddings, k-NN search, purge statistics,
and API usage counters. Every query is scoped by owner_id. The repository
never commits: transaction boundaries belong to the caller (see
``Database.transaction``).
"""

from __future__ import annotations

import json
import sqlite3

from ragvault.db.models import (
    ChunkRecord,
    DeletionStats,
    Document,
    Embedding,
    Match,
    UsageStats,
)
from ragvault.db.vectors import DISTANCE_FUNCTION, blob_to_vector

_NOW = "strftime('%Y-%m-%d %H:%M:%f', 'now')"


class Repository:
    """Data access layer for all ragvault database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see ragvault.db.schema.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def upsert_document(self, owner_id: str, file_path: str) -> int:
        """Insert the document if absent, else only refresh updated_at.

        Returns:
            The document id.
        """
        self._conn.execute(
            f"""
            INSERT INTO documents (owner_id, file_path)
            VALUES (?, ?)
            ON CONFLICT (owner_id, file_path) DO UPDATE SET updated_at = {_NOW}
            """,
            (owner_id, file_path),
        )
        row = self._conn.execute(
            "SELECT id FROM documents WHERE owner_id = ? AND file_path = ?",
            (owner_id, file_path),
        ).fetchone()
        return row["id"]

    def add_document_size(self, document_id: int, size: int) -> None:
        self._conn.execute(
            "UPDATE documents SET total_chunk_size = total_chunk_size + ? WHERE id = ?",
            (size, document_id),
        )

    def get_document(self, owner_id: str, file_path: str) -> Document | None:
        row = self._conn.execute(
            """
            SELECT id, owner_id, file_path, total_chunk_size, created_at, updated_at
            FROM documents WHERE owner_id = ? AND file_path = ?
            """,
            (owner_id, file_path),
        ).fetchone()
        return _row_to_document(row) if row else None

    def list_documents(self, owner_id: str) -> list[Document]:
        """Return the owner's documents, newest first."""
        rows = self._conn.execute(
            """
            SELECT id, owner_id, file_path, total_chunk_size, created_at, updated_at
            FROM documents WHERE owner_id = ?
            ORDER BY created_at DESC, id DESC
            """,
            (owner_id,),
        ).fetchall()
        return [_row_to_document(r) for r in rows]

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def insert_embedding(
        self,
        document_id: int,
        model_name: str,
        chunk_text: str,
        vector_blob: bytes,
        chunk_size: int,
        metadata_json: str,
        metadata_hash: str,
    ) -> Embedding:
        """Insert one embedding row and return it as stored."""
        cur = self._conn.execute(
            """
            INSERT INTO embeddings (
                document_id, model_name, chunk_text, embedding,
                chunk_size, metadata, metadata_hash
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                document_id,
                model_name,
                chunk_text,
                vector_blob,
                chunk_size,
                metadata_json,
                metadata_hash,
            ),
        )
        row = self._conn.execute(
            """
            SELECT id, document_id, model_name, chunk_text, embedding,
                   chunk_size, metadata, metadata_hash, created_at
            FROM embeddings WHERE id = ?
            """,
            (cur.lastrowid,),
        ).fetchone()
        return _row_to_embedding(row)

    def get_embedding(self, owner_id: str, embedding_id: int) -> Embedding | None:
        row = self._conn.execute(
            """
            SELECT e.id, e.document_id, e.model_name, e.chunk_text, e.embedding,
                   e.chunk_size, e.metadata, e.metadata_hash, e.created_at
            FROM embeddings e
            JOIN documents d ON d.id = e.document_id
            WHERE e.id = ? AND d.owner_id = ?
            """,
            (embedding_id, owner_id),
        ).fetchone()
        return _row_to_embedding(row) if row else None

    def search_vec(
        self,
        owner_id: str,
        query_blob: bytes,
        model_name: str,
        limit: int,
        metadata_hash: str | None = None,
    ) -> list[Match]:
        """Exact nearest-neighbour scan. Sorted by (distance, id) ascending.

        ``metadata_hash=None`` means no metadata filter; any string (including
        the empty-object digest) filters by equality.
        """
        rows = self._conn.execute(
            f"""
            SELECT e.id, e.document_id, d.file_path, e.chunk_text, e.chunk_size,
                   e.metadata, {DISTANCE_FUNCTION}(e.embedding, ?) AS distance
            FROM embeddings e
            JOIN documents d ON d.id = e.document_id
            WHERE d.owner_id = ?
              AND e.model_name = ?
              AND (? IS NULL OR e.metadata_hash = ?)
            ORDER BY distance ASC, e.id ASC
            LIMIT ?
            """,
            (query_blob, owner_id, model_name, metadata_hash, metadata_hash, limit),
        ).fetchall()
        return [
            Match(
                id=r["id"],
                document_id=r["document_id"],
                file_path=r["file_path"],
                chunk_text=r["chunk_text"],
                chunk_size=r["chunk_size"],
                metadata=json.loads(r["metadata"]),
                distance=r["distance"],
                similarity=1.0 - r["distance"],
            )
            for r in rows
        ]

    def list_chunks(
        self, owner_id: str, metadata_hash: str | None = None
    ) -> list[ChunkRecord]:
        """Return the owner's chunks, newest first."""
        rows = self._conn.execute(
            """
            SELECT e.id, e.document_id, d.file_path, e.chunk_text, e.chunk_size,
                   e.model_name, e.metadata, e.metadata_hash, e.created_at
            FROM embeddings e
            JOIN documents d ON d.id = e.document_id
            WHERE d.owner_id = ?
              AND (? IS NULL OR e.metadata_hash = ?)
            ORDER BY e.created_at DESC, e.id DESC
            """,
            (owner_id, metadata_hash, metadata_hash),
        ).fetchall()
        return [
            ChunkRecord(
                id=r["id"],
                document_id=r["document_id"],
                file_path=r["file_path"],
                chunk_text=r["chunk_text"],
                chunk_size=r["chunk_size"],
                model_name=r["model_name"],
                metadata=json.loads(r["metadata"]),
                metadata_hash=r["metadata_hash"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Purge
    # ------------------------------------------------------------------

    def storage_stats(self, owner_id: str) -> DeletionStats:
        """Aggregate counts, bytes, and file paths of the owner's embeddings.

        Only documents that still hold at least one embedding are counted.
        """
        row = self._conn.execute(
            """
            SELECT COUNT(DISTINCT e.document_id) AS document_count,
                   COUNT(e.id) AS embedding_count,
                   COALESCE(SUM(e.chunk_size), 0) AS total_bytes
            FROM embeddings e
            JOIN documents d ON d.id = e.document_id
            WHERE d.owner_id = ?
            """,
            (owner_id,),
        ).fetchone()
        paths = self._conn.execute(
            """
            SELECT d.file_path FROM documents d
            WHERE d.owner_id = ?
              AND EXISTS (SELECT 1 FROM embeddings e WHERE e.document_id = d.id)
            ORDER BY d.created_at DESC, d.id DESC
            """,
            (owner_id,),
        ).fetchall()
        return DeletionStats(
            embedding_count=row["embedding_count"],
            document_count=row["document_count"],
            total_bytes=row["total_bytes"],
            file_paths=[r["file_path"] for r in paths],
        )

    def delete_embeddings_by_owner(self, owner_id: str) -> int:
        """Delete every embedding under the owner. Documents are kept.

        Returns the number of embedding rows deleted.
        """
        cur = self._conn.execute(
            """
            DELETE FROM embeddings
            WHERE document_id IN (SELECT id FROM documents WHERE owner_id = ?)
            """,
            (owner_id,),
        )
        self._conn.execute(
            "UPDATE documents SET total_chunk_size = 0 WHERE owner_id = ?",
            (owner_id,),
        )
        return cur.rowcount

    # ------------------------------------------------------------------
    # API usage
    # ------------------------------------------------------------------

    def increment_api_usage(self, owner_id: str) -> int:
        """Bump the owner's request counter. Returns the new count."""
        self._conn.execute(
            f"""
            INSERT INTO api_usage (owner_id, request_count, last_request_at)
            VALUES (?, 1, {_NOW})
            ON CONFLICT (owner_id) DO UPDATE SET
                request_count = api_usage.request_count + 1,
                last_request_at = {_NOW},
                updated_at = {_NOW}
            """,
            (owner_id,),
        )
        row = self._conn.execute(
            "SELECT request_count FROM api_usage WHERE owner_id = ?", (owner_id,)
        ).fetchone()
        return row["request_count"]

    def usage_stats(self, owner_id: str) -> UsageStats:
        docs = self._conn.execute(
            """
            SELECT COUNT(*) AS document_count,
                   COALESCE(SUM(total_chunk_size), 0) AS total_bytes
            FROM documents WHERE owner_id = ?
            """,
            (owner_id,),
        ).fetchone()
        chunks = self._conn.execute(
            """
            SELECT COUNT(*) FROM embeddings e
            JOIN documents d ON d.id = e.document_id
            WHERE d.owner_id = ?
            """,
            (owner_id,),
        ).fetchone()[0]
        usage = self._conn.execute(
            "SELECT request_count FROM api_usage WHERE owner_id = ?", (owner_id,)
        ).fetchone()
        return UsageStats(
            total_bytes=docs["total_bytes"],
            api_requests=usage["request_count"] if usage else 0,
            document_count=docs["document_count"],
            chunk_count=chunks,
        )


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        owner_id=row["owner_id"],
        file_path=row["file_path"],
        total_chunk_size=row["total_chunk_size"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_embedding(row: sqlite3.Row) -> Embedding:
    return Embedding(
        id=row["id"],
        document_id=row["document_id"],
        model_name=row["model_name"],
        chunk_text=row["chunk_text"],
        chunk_size=row["chunk_size"],
        metadata=json.loads(row["metadata"]),
        metadata_hash=row["metadata_hash"],
        vector=blob_to_vector(row["embedding"]),
        created_at=row["created_at"],
    )
