"""ragvault ingest: embedding capability and concurrent batch ingestion."""

from ragvault.ingest.embedder import Embedder, EmbeddingConfig, LiteLLMEmbedder
from ragvault.ingest.batch import BatchCoordinator, BatchProgress, BatchSnapshot, ChunkInput

__all__ = [
    "Embedder",
    "EmbeddingConfig",
    "LiteLLMEmbedder",
    "BatchCoordinator",
    "BatchProgress",
    "BatchSnapshot",
    "ChunkInput",
]
