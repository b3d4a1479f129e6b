"""
Store: RegistryClient protocol and its SQLite / HTTP implementations.
No rollout logic. SQLite is authoritative; the HTTP client fronts the API over it.
"""

from __future__ import annotations

from .client import RegistryClient
from .http_client import HttpRegistryClient
from .resilience import RetryConfig, resilient_call
from .sqlite_store import SqliteRegistryStore

# Do not add exports without updating __all__.
__all__ = [
    "HttpRegistryClient",
    "RegistryClient",
    "RetryConfig",
    "SqliteRegistryStore",
    "resilient_call",
]
