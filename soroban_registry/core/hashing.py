"""
Canonical hashing primitives: stable 64-bit digests for cohort bucketing,
file SHA-256 for artifact integrity, and deterministic JSON for stored blobs.
Never use Python's built-in hash() (not stable across processes).
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Union

_CHUNK = 1 << 16


def stable_digest64(*parts: str) -> int:
    """
    Stable unsigned 64-bit integer from the "|"-joined parts.
    First 8 bytes of SHA-256, big-endian. Same parts yield the same value in every process.
    """
    payload = "|".join(parts).encode("utf-8")
    digest = hashlib.sha256(payload).digest()
    return int.from_bytes(digest[:8], byteorder="big")


def compute_file_sha256(path: Union[str, Path]) -> str:
    """Hex SHA-256 of a file's bytes, read in chunks."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


def canonical_json(obj: Any) -> str:
    """Deterministic JSON: sorted keys, compact separators, non-JSON values stringified."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


__all__ = ["canonical_json", "compute_file_sha256", "stable_digest64"]
