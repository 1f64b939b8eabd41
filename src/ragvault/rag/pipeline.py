"""RAG pipeline facade: admission, ingestion, retrieval, generation.

query() flow:
  1. Admission check against the shared rate limiter (when a client key is given).
  2. TopK retrieval from the owner's scope, optionally metadata-filtered.
  3. Matches become prompt documents (index, source file path, chunk text).
  4. The [system, user] message pair is streamed through the LLM client
     into the caller's sink.
  5. One API request is recorded for the owner after a successful stream.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import structlog

from ragvault.db.models import ChunkRecord, DeletionStats, Embedding, Match, UsageStats
from ragvault.errors import DependencyError, ValidationError
from ragvault.generate.templates import Document, RAGPromptBuilder
from ragvault.ingest.batch import BatchCoordinator, BatchProgress, BatchSnapshot, ChunkInput
from ragvault.rag.llm_client import LLMClient, Sink
from ragvault.ratelimit import RateLimiter
from ragvault.store import EmbeddingStore

log = structlog.get_logger(__name__)


@dataclass
class QueryResult:
    matches: list[Match]
    characters: int


class RagPipeline:
    """Every user-facing operation, each gated by the shared rate limiter.

    Args:
        store: Owner-scoped embedding store.
        llm: Streaming LLM client; only needed for :meth:`query`.
        prompt_builder: Renders retrieved documents into messages.
        batch: Batch coordinator; built from *store* when omitted.
        rate_limiter: Optional; without one every request is admitted.
        default_k: Number of documents retrieved for a query.
    """

    def __init__(
        self,
        store: EmbeddingStore,
        llm: LLMClient | None = None,
        prompt_builder: RAGPromptBuilder | None = None,
        batch: BatchCoordinator | None = None,
        rate_limiter: RateLimiter | None = None,
        default_k: int = 10,
    ) -> None:
        self.store = store
        self.llm = llm
        self.prompt_builder = prompt_builder or RAGPromptBuilder()
        self.batch = batch or BatchCoordinator(store)
        self.rate_limiter = rate_limiter
        self.default_k = default_k

    def chunk(
        self,
        owner_id: str,
        file_path: str,
        chunk_text: str,
        embedding_text: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        client_key: str | None = None,
    ) -> Embedding:
        self._admit(client_key)
        return self.store.add(
            owner_id,
            file_path,
            chunk_text,
            embedding_text=embedding_text,
            metadata=metadata,
        )

    def chunk_batch(
        self,
        owner_id: str,
        chunks: Sequence[ChunkInput],
        progress: BatchProgress | None = None,
        client_key: str | None = None,
    ) -> BatchSnapshot:
        self._admit(client_key)
        return self.batch.run_batch(owner_id, chunks, progress=progress)

    def similar(
        self,
        owner_id: str,
        text: str,
        k: int | None = None,
        metadata_filter: Mapping[str, Any] | None = None,
        client_key: str | None = None,
    ) -> list[Match]:
        self._admit(client_key)
        return self.store.top_k(
            owner_id, text, self.default_k if k is None else k, metadata_filter
        )

    def query(
        self,
        owner_id: str,
        query: str,
        sink: Sink,
        k: int | None = None,
        metadata_filter: Mapping[str, Any] | None = None,
        client_key: str | None = None,
    ) -> QueryResult:
        """Retrieve context for *query* and stream the generated answer into *sink*.

        An empty query fails with ValidationError before admission, retrieval
        or any call to the embedder or the LLM.

        Raises:
            RateLimitExceeded: The client key is over its window budget.
            ValidationError: Empty query.
            DependencyError: No LLM client, or a store, embedder, LLM, or sink
                failure.
            DecodeError: Malformed streamed chunk.
        """
        if self.llm is None:
            raise DependencyError("RagPipeline.query() requires an LLM client")
        if not query or not query.strip():
            raise ValidationError("query must not be empty")
        self._admit(client_key)

        matches = self.store.top_k(
            owner_id, query, self.default_k if k is None else k, metadata_filter
        )
        documents = [
            Document(index=str(i), source=m.file_path, content=m.chunk_text)
            for i, m in enumerate(matches)
        ]
        messages = self.prompt_builder.build_messages(documents, query)
        characters = self.llm.generate(messages, sink)
        self.store.record_request(owner_id)

        log.info(
            "query_answered",
            owner=owner_id,
            documents=len(documents),
            characters=characters,
        )
        return QueryResult(matches=matches, characters=characters)

    def list_chunks(
        self,
        owner_id: str,
        metadata_filter: Mapping[str, Any] | None = None,
        client_key: str | None = None,
    ) -> list[ChunkRecord]:
        self._admit(client_key)
        return self.store.list_chunks(owner_id, metadata_filter)

    def purge(
        self,
        owner_id: str,
        dry_run: bool = False,
        client_key: str | None = None,
    ) -> DeletionStats:
        self._admit(client_key)
        return self.store.delete(owner_id, dry_run=dry_run)

    def stats(self, owner_id: str, client_key: str | None = None) -> UsageStats:
        self._admit(client_key)
        return self.store.stats(owner_id)

    def _admit(self, client_key: str | None) -> None:
        if self.rate_limiter is not None and client_key:
            self.rate_limiter.enforce(client_key)
