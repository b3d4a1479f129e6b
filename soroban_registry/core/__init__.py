"""
Stable facade: error taxonomy and hashing primitives. No store, cli, or api imports.
Do not add exports without updating __all__.
"""

from __future__ import annotations

from .errors import (
    ConflictError,
    NotFoundError,
    SorobanRegistryError,
    TransientError,
    ValidationError,
)
from .hashing import canonical_json, compute_file_sha256, stable_digest64

# Do not add exports without updating __all__.
__all__ = [
    "ConflictError",
    "NotFoundError",
    "SorobanRegistryError",
    "TransientError",
    "ValidationError",
    "canonical_json",
    "compute_file_sha256",
    "stable_digest64",
]
