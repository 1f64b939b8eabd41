"""Owner-scoped embedding store: transactional ingestion, k-NN retrieval, purge.

Every public method opens its own connection and releases it on every exit
path. Ingestion and purge each run inside one transaction; the embedding
vector is computed before the transaction starts so no write lock is held
across an inference call.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Any, Mapping

import structlog

from ragvault.db.connection import Database
from ragvault.db.models import (
    ChunkRecord,
    DeletionStats,
    Document,
    Embedding,
    Match,
    UsageStats,
)
from ragvault.db.repository import Repository
from ragvault.db.schema import initialize
from ragvault.db.vectors import vector_to_blob
from ragvault.errors import DependencyError, NotFoundError, ValidationError
from ragvault.hashing import metadata_hash
from ragvault.ingest.embedder import Embedder

log = structlog.get_logger(__name__)

# Largest LIMIT SQLite can bind (signed 64-bit).
_MAX_K = 2**63 - 1


class EmbeddingStore:
    """Ingest, retrieve, list, and purge chunks for an owner scope.

    Args:
        database: Database handle; a connection is opened per operation.
        embedder: Shared embedding capability (injected, not owned).
    """

    def __init__(self, database: Database, embedder: Embedder) -> None:
        self._db = database
        self._embedder = embedder

    @property
    def model_name(self) -> str:
        return self._embedder.model_name

    def initialize(self) -> None:
        """Create or migrate the schema (idempotent)."""
        try:
            with self._db.session() as conn:
                initialize(conn)
        except sqlite3.Error as exc:
            raise DependencyError(f"Could not initialise store: {exc}") from exc

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def add(
        self,
        owner_id: str,
        file_path: str,
        chunk_text: str,
        embedding_text: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Embedding:
        """Embed and store one chunk atomically.

        The vector is computed from *embedding_text* when given, otherwise
        from *chunk_text*. The document upsert and the embedding insert commit
        together or not at all.

        Raises:
            ValidationError: Empty owner/path/chunk or unserializable metadata.
            DependencyError: Embedding capability or store failure.
        """
        _require(owner_id, "owner_id")
        _require(file_path, "file_path")
        _require(chunk_text, "chunk_text")

        meta = dict(metadata) if metadata else {}
        try:
            digest = metadata_hash(meta)
            meta_json = json.dumps(meta, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Metadata is not JSON-serializable: {exc}") from exc

        vector = self._embed_one(embedding_text if embedding_text is not None else chunk_text)
        blob = self._to_blob(vector)
        chunk_size = len(chunk_text.encode("utf-8"))

        try:
            with self._db.transaction() as conn:
                repo = Repository(conn)
                document_id = repo.upsert_document(owner_id, file_path)
                embedding = repo.insert_embedding(
                    document_id=document_id,
                    model_name=self.model_name,
                    chunk_text=chunk_text,
                    vector_blob=blob,
                    chunk_size=chunk_size,
                    metadata_json=meta_json,
                    metadata_hash=digest,
                )
                repo.add_document_size(document_id, chunk_size)
        except sqlite3.Error as exc:
            raise DependencyError(f"Could not store chunk for '{file_path}': {exc}") from exc

        log.debug(
            "embedding_added",
            owner=owner_id,
            file_path=file_path,
            embedding_id=embedding.id,
            metadata_hash=digest,
        )
        return embedding

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def top_k(
        self,
        owner_id: str,
        query_text: str,
        k: int,
        metadata_filter: Mapping[str, Any] | None = None,
    ) -> list[Match]:
        """Return at most *k* nearest chunks, nearest first.

        ``metadata_filter=None`` disables filtering; ``{}`` filters to chunks
        stored without metadata. Ties in distance are broken by row id.
        *k* above the SQLite integer range is clamped.

        Raises:
            ValidationError: Empty owner or query text.
        """
        _require(owner_id, "owner_id")
        _require(query_text, "query_text")
        if k <= 0:
            return []
        k = min(k, _MAX_K)
        digest = self._filter_hash(metadata_filter)

        blob = self._to_blob(self._embed_one(query_text))
        try:
            with self._db.session() as conn:
                return Repository(conn).search_vec(
                    owner_id, blob, self.model_name, k, metadata_hash=digest
                )
        except sqlite3.Error as exc:
            raise DependencyError(f"Nearest-neighbour query failed: {exc}") from exc

    def list_chunks(
        self,
        owner_id: str,
        metadata_filter: Mapping[str, Any] | None = None,
    ) -> list[ChunkRecord]:
        """Return every chunk in the scope, newest first."""
        _require(owner_id, "owner_id")
        digest = self._filter_hash(metadata_filter)
        try:
            with self._db.session() as conn:
                return Repository(conn).list_chunks(owner_id, metadata_hash=digest)
        except sqlite3.Error as exc:
            raise DependencyError(f"Could not list chunks: {exc}") from exc

    def get_chunk(self, owner_id: str, embedding_id: int) -> Embedding:
        """Return one chunk of the owner, or raise NotFoundError."""
        _require(owner_id, "owner_id")
        try:
            with self._db.session() as conn:
                embedding = Repository(conn).get_embedding(owner_id, embedding_id)
        except sqlite3.Error as exc:
            raise DependencyError(f"Could not read chunk {embedding_id}: {exc}") from exc
        if embedding is None:
            raise NotFoundError(f"Chunk {embedding_id} not found for owner '{owner_id}'")
        return embedding

    def list_documents(self, owner_id: str) -> list[Document]:
        _require(owner_id, "owner_id")
        try:
            with self._db.session() as conn:
                return Repository(conn).list_documents(owner_id)
        except sqlite3.Error as exc:
            raise DependencyError(f"Could not list documents: {exc}") from exc

    # ------------------------------------------------------------------
    # Purge + stats
    # ------------------------------------------------------------------

    def delete(self, owner_id: str, dry_run: bool = False) -> DeletionStats:
        """Remove every embedding in the scope, or only report it (*dry_run*).

        Returns the pre-deletion statistics in both modes. Documents are kept.
        """
        _require(owner_id, "owner_id")
        try:
            if dry_run:
                with self._db.session() as conn:
                    stats = Repository(conn).storage_stats(owner_id)
                log.info(
                    "purge_dry_run",
                    owner=owner_id,
                    embeddings=stats.embedding_count,
                    documents=stats.document_count,
                )
                return stats

            with self._db.transaction() as conn:
                repo = Repository(conn)
                stats = repo.storage_stats(owner_id)
                deleted = repo.delete_embeddings_by_owner(owner_id)
        except sqlite3.Error as exc:
            raise DependencyError(f"Purge failed for owner '{owner_id}': {exc}") from exc

        log.info(
            "embeddings_purged",
            owner=owner_id,
            embeddings=deleted,
            documents=stats.document_count,
            total_bytes=stats.total_bytes,
        )
        return stats

    def stats(self, owner_id: str) -> UsageStats:
        _require(owner_id, "owner_id")
        try:
            with self._db.session() as conn:
                return Repository(conn).usage_stats(owner_id)
        except sqlite3.Error as exc:
            raise DependencyError(f"Could not read usage stats: {exc}") from exc

    def record_request(self, owner_id: str) -> int:
        """Count one served API request for the owner. Returns the new total."""
        _require(owner_id, "owner_id")
        try:
            with self._db.transaction() as conn:
                return Repository(conn).increment_api_usage(owner_id)
        except sqlite3.Error as exc:
            raise DependencyError(f"Could not record API usage: {exc}") from exc

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _embed_one(self, text: str) -> list[float]:
        vectors = self._embedder.embed([text])
        if len(vectors) != 1:
            raise DependencyError(
                f"Embedder returned {len(vectors)} vectors for a single text"
            )
        return vectors[0]

    def _to_blob(self, vector: list[float]) -> bytes:
        try:
            return vector_to_blob(vector, self._embedder.dimensions)
        except ValueError as exc:
            raise DependencyError(f"Embedder returned an invalid vector: {exc}") from exc

    @staticmethod
    def _filter_hash(metadata_filter: Mapping[str, Any] | None) -> str | None:
        if metadata_filter is None:
            return None
        try:
            return metadata_hash(metadata_filter)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Metadata filter is not JSON-serializable: {exc}") from exc


def _require(value: str, name: str) -> None:
    if not value or not value.strip():
        raise ValidationError(f"{name} must not be empty")
