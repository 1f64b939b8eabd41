"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import threading
from typing import Sequence

import pytest
import redis
import structlog

from ragvault.db.connection import Database
from ragvault.db.schema import initialize
from ragvault.errors import DependencyError
from ragvault.store import EmbeddingStore

DIMS = 4


@pytest.fixture(autouse=True)
def _reset_structlog():
    """CLI tests configure structlog against a captured stream; undo that."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".ragvault.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def database(tmp_path):
    """Database handle (schema initialized) for store-level tests."""
    db = Database(tmp_path / ".ragvault.db")
    with db.session() as conn:
        initialize(conn)
    return db


# ---------------------------------------------------------------------------
# Embedding
# ---------------------------------------------------------------------------


def text_vector(text: str, dims: int = DIMS) -> list[float]:
    """Deterministic, never-zero vector derived from the text digest."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [0.1 + digest[i] / 255.0 for i in range(dims)]


class FakeEmbedder:
    """Deterministic embedder. Texts listed in *vectors* get that exact vector."""

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        dimensions: int = DIMS,
        model_name: str = "fake/embedder",
        fail_on: set[str] | None = None,
    ) -> None:
        self.vectors = vectors or {}
        self.dimensions = dimensions
        self.model_name = model_name
        self.fail_on = fail_on or set()
        self.calls: list[list[str]] = []
        self.closed = False
        self._lock = threading.Lock()

    def open(self) -> "FakeEmbedder":
        return self

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        with self._lock:
            self.calls.append(list(texts))
        out = []
        for text in texts:
            if text in self.fail_on:
                raise DependencyError(f"embedding failed for {text!r}")
            out.append(self.vectors.get(text) or text_vector(text, self.dimensions))
        return out

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def store(database, embedder):
    return EmbeddingStore(database, embedder)


# ---------------------------------------------------------------------------
# Rate-limit store
# ---------------------------------------------------------------------------


class FakeSortedSetStore:
    """In-memory stand-in for the handful of Redis sorted-set commands used."""

    def __init__(self) -> None:
        self.sets: dict[str, dict[str, float]] = {}
        self.ttls: dict[str, int] = {}
        self._lock = threading.Lock()

    def pipeline(self, transaction: bool = True) -> "_FakePipeline":
        return _FakePipeline(self)


class _FakePipeline:
    def __init__(self, store: FakeSortedSetStore) -> None:
        self._store = store
        self._ops: list[tuple] = []

    def zremrangebyscore(self, key, lo, hi):
        self._ops.append(("zremrangebyscore", key, lo, hi))
        return self

    def zadd(self, key, mapping):
        self._ops.append(("zadd", key, mapping))
        return self

    def zrem(self, key, *members):
        self._ops.append(("zrem_members", key, members))
        return self

    def zcard(self, key):
        self._ops.append(("zcard", key))
        return self

    def zrange(self, key, start, end, withscores=False):
        self._ops.append(("zrange", key, start, end))
        return self

    def expire(self, key, seconds):
        self._ops.append(("expire", key, seconds))
        return self

    def execute(self):
        results = []
        with self._store._lock:
            for op in self._ops:
                members = self._store.sets.setdefault(op[1], {})
                if op[0] == "zremrangebyscore":
                    hi = float(op[3])
                    doomed = [m for m, s in members.items() if s <= hi]
                    for m in doomed:
                        del members[m]
                    results.append(len(doomed))
                elif op[0] == "zadd":
                    members.update(op[2])
                    results.append(len(op[2]))
                elif op[0] == "zrem_members":
                    removed = [m for m in op[2] if members.pop(m, None) is not None]
                    results.append(len(removed))
                elif op[0] == "zcard":
                    results.append(len(members))
                elif op[0] == "zrange":
                    ordered = sorted(members.items(), key=lambda kv: (kv[1], kv[0]))
                    end = None if op[3] == -1 else op[3] + 1
                    results.append([(m.encode(), s) for m, s in ordered[op[2]:end]])
                elif op[0] == "expire":
                    self._store.ttls[op[1]] = op[2]
                    results.append(True)
        return results


class UnreachableStore:
    """Every pipeline execution fails as if Redis were down."""

    def pipeline(self, transaction: bool = True):
        return _FailingPipeline()


class _FailingPipeline(_FakePipeline):
    def __init__(self) -> None:
        super().__init__(FakeSortedSetStore())

    def execute(self):
        raise redis.ConnectionError("Error 111 connecting to localhost:6379. Connection refused.")


@pytest.fixture
def sorted_set_store():
    return FakeSortedSetStore()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

_RAGVAULT_ENV = (
    "RAGVAULT_DB",
    "RAGVAULT_EMBEDDING_MODEL",
    "RAGVAULT_LLM_PROVIDER",
    "RAGVAULT_LLM_MODEL",
    "RAGVAULT_REDIS_URL",
    "RAGVAULT_LOG_LEVEL",
    "RAGVAULT_LLM_TOKEN",
)


def use_embedder(monkeypatch, **kwargs) -> None:
    """Make every CLI invocation build a FakeEmbedder(**kwargs)."""

    def factory(config):
        return FakeEmbedder(dimensions=config.dimensions, model_name=config.model, **kwargs)

    monkeypatch.setattr("ragvault.cli.runtime.LiteLLMEmbedder", factory)


@pytest.fixture
def cli_project(tmp_path, monkeypatch):
    """CWD set to a project with a 4-dim fake embedder and an isolated global config."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("ragvault.config._GLOBAL_CONFIG_PATH", tmp_path / "home" / "config.yaml")
    for name in _RAGVAULT_ENV:
        monkeypatch.delenv(name, raising=False)
    (tmp_path / "ragvault.yaml").write_text(
        f"embedding:\n  model: fake/embedder\n  dimensions: {DIMS}\n", encoding="utf-8"
    )
    use_embedder(monkeypatch)
    return tmp_path


def project_store(project_dir) -> EmbeddingStore:
    """Store on the CLI project's database, using the same fake embedder."""
    store = EmbeddingStore(Database(project_dir / ".ragvault.db"), FakeEmbedder())
    store.initialize()
    return store
