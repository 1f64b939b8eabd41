"""Embedding capability: texts in, fixed-dimension float vectors out.

The embedder is constructed once per process by the caller and injected into
the components that need it. ``embed()`` calls run concurrently under a shared
lock; ``close()`` takes the lock exclusively, so teardown waits for in-flight
reads and no read starts against a closed embedder.
"""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Protocol, Sequence

import litellm
import structlog

from ragvault.errors import DependencyError, ValidationError

log = structlog.get_logger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "ollama": None,  # Local, no key required
    "huggingface": None,
}


class Embedder(Protocol):
    """What the store and the pipeline need from an embedding model."""

    model_name: str
    dimensions: int

    def embed(self, texts: Sequence[str]) -> list[list[float]]: ...

    def close(self) -> None: ...


@dataclass
class EmbeddingConfig:
    """Configuration for embedding generation."""

    model: str = "ollama/all-minilm"
    dimensions: int = 384
    num_retries: int = 3


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        DependencyError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise DependencyError(
            f"API key not found for embedding provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


class _ReadWriteLock:
    """Many concurrent readers or one writer; a waiting writer blocks new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False
        self._writer_waiting = False

    @contextmanager
    def shared(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writer_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        with self._cond:
            self._writer_waiting = True
            while self._writer or self._readers:
                self._cond.wait()
            self._writer_waiting = False
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class LiteLLMEmbedder:
    """Embedder backed by ``litellm.embedding()``.

    Call :meth:`open` once before use (validates credentials), and
    :meth:`close` at shutdown. Both are idempotent.

    Args:
        config: Model name, vector dimensions, and retry count.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()
        if self._config.dimensions < 1:
            raise ValidationError(
                f"dimensions must be >= 1, got {self._config.dimensions}"
            )
        self.model_name = self._config.model
        self.dimensions = self._config.dimensions
        self._lock = _ReadWriteLock()
        self._opened = False
        self._closed = False

    def open(self) -> "LiteLLMEmbedder":
        with self._lock.exclusive():
            if self._closed:
                raise DependencyError("Embedder has been closed")
            if not self._opened:
                validate_api_key(self.model_name)
                self._opened = True
                log.info("embedder_opened", model=self.model_name, dimensions=self.dimensions)
        return self

    def close(self) -> None:
        with self._lock.exclusive():
            if not self._closed:
                self._closed = True
                log.info("embedder_closed", model=self.model_name)

    def __enter__(self) -> "LiteLLMEmbedder":
        return self.open()

    def __exit__(self, *args: object) -> None:
        self.close()

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Return one vector per input text, in input order.

        Raises:
            DependencyError: Embedder not open, provider failure, or a
                response with the wrong shape.
        """
        if not texts:
            return []
        with self._lock.shared():
            if self._closed or not self._opened:
                raise DependencyError("Embedder is not open")
            try:
                response = litellm.embedding(
                    model=self.model_name,
                    input=list(texts),
                    num_retries=self._config.num_retries,
                )
            except Exception as exc:
                raise DependencyError(
                    f"Embedding request to '{self.model_name}' failed: {exc}"
                ) from exc

        vectors = [item["embedding"] for item in response.data]
        if len(vectors) != len(texts):
            raise DependencyError(
                f"Embedding provider returned {len(vectors)} vectors for {len(texts)} texts"
            )
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise DependencyError(
                    f"Embedding model '{self.model_name}' returned {len(vector)} "
                    f"dimensions, expected {self.dimensions}"
                )
        return [list(map(float, v)) for v in vectors]
