"""
Target artifacts for migrations: a local wasm file resolved to its content hash,
plus a header check for WebAssembly compatibility.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Union

from soroban_registry.core.errors import ArtifactNotFound
from soroban_registry.core.hashing import compute_file_sha256

WASM_MAGIC = b"\x00asm"
WASM_VERSION_1 = b"\x01\x00\x00\x00"


@dataclass(frozen=True)
class Artifact:
    path: str
    wasm_hash: str
    compatible: bool
    size_bytes: int


def is_wasm_compatible(header: bytes) -> bool:
    """True if the first 8 bytes are the wasm magic followed by binary format version 1."""
    return header[:4] == WASM_MAGIC and header[4:8] == WASM_VERSION_1


def load_artifact(path: Union[str, Path]) -> Artifact:
    """Hash and header-check a wasm file. Raises ArtifactNotFound if the path is not a file."""
    p = Path(path)
    if not p.is_file():
        raise ArtifactNotFound(str(path))
    with open(p, "rb") as f:
        header = f.read(8)
    return Artifact(
        path=str(p),
        wasm_hash=compute_file_sha256(p),
        compatible=is_wasm_compatible(header),
        size_bytes=p.stat().st_size,
    )

