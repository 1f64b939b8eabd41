"""Concurrent batch ingestion with per-chunk failure isolation.

Each chunk is ingested by its own task on a bounded thread pool. A task is
only launched once a worker slot is free, and the cancellation flag is
checked before every launch: after cancellation no new task starts, while
tasks already running finish and are awaited before the snapshot is taken.

Success and failure are both recorded through ``BatchProgress._record`` under
one lock, so ``completed + len(failed)`` always equals the number of tasks
that have finished.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Sequence

import structlog

from ragvault.errors import PartialBatchFailure, ValidationError

if TYPE_CHECKING:
    from ragvault.store import EmbeddingStore

log = structlog.get_logger(__name__)


@dataclass
class ChunkInput:
    """One chunk submitted for batch ingestion."""

    file_path: str
    chunk_text: str
    embedding_text: str | None = None
    metadata: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class BatchSnapshot:
    """Immutable result of one batch call."""

    total: int
    completed: int
    failed: tuple[str, ...] = ()
    launched: int = 0
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and self.completed == self.total

    def raise_for_failures(self) -> None:
        """Raise PartialBatchFailure if any chunk failed."""
        if self.failed:
            raise PartialBatchFailure(self)


@dataclass
class BatchProgress:
    """Mutable aggregate for one batch call. Mutated only by that batch's tasks."""

    total: int
    completed: int = 0
    failed: list[str] = field(default_factory=list)
    launched: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _cancel: threading.Event = field(default_factory=threading.Event, repr=False)

    def cancel(self) -> None:
        """Stop launching new tasks. Running tasks are not interrupted."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _launch(self) -> None:
        with self._lock:
            self.launched += 1

    def _record(self, file_path: str, error: BaseException | None) -> None:
        with self._lock:
            if error is None:
                self.completed += 1
            else:
                self.failed.append(file_path)

    def snapshot(self) -> BatchSnapshot:
        with self._lock:
            return BatchSnapshot(
                total=self.total,
                completed=self.completed,
                failed=tuple(self.failed),
                launched=self.launched,
                cancelled=self.cancelled,
            )


class BatchCoordinator:
    """Fan a list of chunks out to ``EmbeddingStore.add`` on a bounded pool.

    Args:
        store: Store used for every single-chunk ingestion.
        max_workers: Upper bound on concurrently running ingestion tasks.
    """

    def __init__(self, store: EmbeddingStore, max_workers: int = 8) -> None:
        if max_workers < 1:
            raise ValidationError(f"max_workers must be >= 1, got {max_workers}")
        self._store = store
        self._max_workers = max_workers

    def run_batch(
        self,
        owner_id: str,
        chunks: Sequence[ChunkInput],
        progress: BatchProgress | None = None,
    ) -> BatchSnapshot:
        """Ingest *chunks* concurrently and return the final aggregate.

        Pass a pre-built *progress* to keep a handle for ``progress.cancel()``
        from another thread; its ``total`` is reset to ``len(chunks)``.
        """
        progress = progress or BatchProgress(total=len(chunks))
        progress.total = len(chunks)
        if not chunks:
            return progress.snapshot()

        slots = threading.BoundedSemaphore(self._max_workers)
        futures: list[Future[None]] = []
        with ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(chunks)),
            thread_name_prefix="ragvault-batch",
        ) as pool:
            for chunk in chunks:
                slots.acquire()
                if progress.cancelled:
                    slots.release()
                    log.info(
                        "batch_cancelled",
                        owner=owner_id,
                        launched=progress.launched,
                        total=progress.total,
                    )
                    break
                progress._launch()
                future = pool.submit(self._ingest_one, owner_id, chunk, progress)
                future.add_done_callback(lambda _f: slots.release())
                futures.append(future)
            wait(futures)

        snapshot = progress.snapshot()
        log.info(
            "batch_finished",
            owner=owner_id,
            total=snapshot.total,
            completed=snapshot.completed,
            failed=len(snapshot.failed),
            cancelled=snapshot.cancelled,
        )
        return snapshot

    def _ingest_one(
        self, owner_id: str, chunk: ChunkInput, progress: BatchProgress
    ) -> None:
        try:
            self._store.add(
                owner_id,
                chunk.file_path,
                chunk.chunk_text,
                embedding_text=chunk.embedding_text,
                metadata=chunk.metadata,
            )
        except Exception as exc:
            log.warning(
                "batch_chunk_failed",
                owner=owner_id,
                file_path=chunk.file_path,
                error=str(exc),
            )
            progress._record(chunk.file_path, exc)
        else:
            progress._record(chunk.file_path, None)
