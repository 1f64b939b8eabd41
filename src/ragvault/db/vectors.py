"""Vector (de)serialization for the embeddings.embedding column.

Vectors are stored as little-endian float32 blobs (sqlite-vec's native
format) and compared with ``vec_distance_cosine``.
"""

from __future__ import annotations

import math
import struct
from typing import Sequence

from sqlite_vec import serialize_float32

DISTANCE_FUNCTION = "vec_distance_cosine"


def vector_to_blob(vector: Sequence[float], dimensions: int) -> bytes:
    """Validate *vector* against *dimensions* and return its float32 blob.

    Raises:
        ValueError: Wrong dimension count or non-finite components.
    """
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")
    if len(vector) != dimensions:
        raise ValueError(
            f"Embedding has {len(vector)} dimensions, expected {dimensions}"
        )
    values = [float(v) for v in vector]
    if not all(math.isfinite(v) for v in values):
        raise ValueError("Embedding contains NaN or infinite components")
    return serialize_float32(values)


def blob_to_vector(blob: bytes) -> list[float]:
    """Decode a float32 blob back into a list of floats."""
    count = len(blob) // 4
    return list(struct.unpack(f"<{count}f", blob))
