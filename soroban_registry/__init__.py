"""
Top-level public API surface. Stable facades only.
Canonical entrypoint: import soroban_registry; use soroban_registry.patches, soroban_registry.store, etc.
Does not import cli or api.
"""

from __future__ import annotations

from ._version import __version__

# Do not add exports without updating __all__.
__all__ = [
    "__version__",
]
