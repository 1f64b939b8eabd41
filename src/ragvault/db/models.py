"""Domain models for the ragvault database layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Document:
    id: int
    owner_id: str
    file_path: str
    total_chunk_size: int = 0
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Embedding:
    id: int
    document_id: int
    model_name: str
    chunk_text: str
    chunk_size: int
    metadata: dict[str, Any] = field(default_factory=dict)
    metadata_hash: str = ""
    vector: list[float] = field(default_factory=list, repr=False)
    created_at: str | None = None


@dataclass
class Match:
    """One TopK result: nearest first, ``similarity = 1 - distance``."""

    id: int
    document_id: int
    file_path: str
    chunk_text: str
    chunk_size: int
    metadata: dict[str, Any]
    distance: float
    similarity: float


@dataclass
class ChunkRecord:
    """One row of an owner's chunk listing."""

    id: int
    document_id: int
    file_path: str
    chunk_text: str
    chunk_size: int
    model_name: str
    metadata: dict[str, Any]
    metadata_hash: str
    created_at: str


@dataclass
class DeletionStats:
    """What a purge would remove (dry run) or removed (real run)."""

    embedding_count: int = 0
    document_count: int = 0
    total_bytes: int = 0
    file_paths: list[str] = field(default_factory=list)


@dataclass
class UsageStats:
    total_bytes: int = 0
    api_requests: int = 0
    document_count: int = 0
    chunk_count: int = 0
