"""Error taxonomy shared by every ragvault component.

Low-level failures (sqlite3, litellm, httpx, redis, sink I/O) are wrapped at
the component boundary with ``raise ... from exc`` so callers only ever see
the classes below.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ragvault.ingest.batch import BatchSnapshot


class RagVaultError(Exception):
    """Base class for all ragvault errors."""


class ValidationError(RagVaultError):
    """Malformed or empty input (e.g. an empty message list)."""


class DependencyError(RagVaultError):
    """The store, the embedding capability, or the LLM endpoint failed."""


class DecodeError(RagVaultError):
    """A streamed LLM chunk could not be decoded."""


class NotFoundError(RagVaultError):
    """The requested row does not exist within the owner scope."""


class RateLimitExceeded(RagVaultError):
    """Admission denied by the sliding-window rate limiter.

    Attributes:
        client_key: Client identity that was denied.
        retry_after: Seconds until the window next admits a request.
    """

    def __init__(self, client_key: str, retry_after: float) -> None:
        super().__init__(
            f"Rate limit exceeded for '{client_key}'; retry in {retry_after:.1f}s"
        )
        self.client_key = client_key
        self.retry_after = retry_after


class PartialBatchFailure(RagVaultError):
    """Some chunks of a batch failed. Not fatal to the batch itself."""

    def __init__(self, snapshot: BatchSnapshot) -> None:
        super().__init__(
            f"{len(snapshot.failed)} of {snapshot.total} chunks failed: "
            + ", ".join(snapshot.failed)
        )
        self.snapshot = snapshot
