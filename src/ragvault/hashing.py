"""Deterministic metadata digest used for deduplication and filtered retrieval.

Keys are sorted at every nesting level; list order and value types are kept,
so ``{"a": [1, 2]}`` and ``{"a": [2, 1]}`` hash differently, as do ``1`` and
``"1"``. Not used for any security purpose.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping


def canonical_json(metadata: Mapping[str, Any] | None) -> bytes:
    """Serialize *metadata* with sorted keys and no insignificant whitespace."""
    return json.dumps(
        dict(metadata) if metadata else {},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def metadata_hash(metadata: Mapping[str, Any] | None) -> str:
    """Return the lowercase hex MD5 of the canonical form of *metadata*.

    ``None`` and ``{}`` both hash to :data:`EMPTY_METADATA_HASH`.

    Raises:
        ValueError: On cyclic structures or NaN/Infinity values.
        TypeError: On values that are not JSON-serializable.
    """
    return hashlib.md5(canonical_json(metadata)).hexdigest()


EMPTY_METADATA_HASH: str = metadata_hash({})
