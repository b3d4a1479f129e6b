"""
Database layer: versioned schema migrations for the SQLite registry store.
"""

from __future__ import annotations

from .migrations import run_migrations, schema_ready

__all__ = ["run_migrations", "schema_ready"]
