"""
Versioned, idempotent schema migrations for the registry store.

Versions are tracked in schema_migrations; every step uses CREATE ... IF NOT EXISTS
so re-running is safe. When upgrading an existing database file, it is copied
before each pending migration and restored if that migration fails.

Tables: publishers, contracts, patches, migration_records (append-only),
patch_notifications (append-only).
"""

from __future__ import annotations

import logging
import shutil
import sqlite3
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from soroban_registry.timeutils import now_utc_iso

logger = logging.getLogger(__name__)

Migration = Tuple[int, str, Callable[[sqlite3.Connection], None]]


def _migration_001_schema_migrations(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            applied_at_utc TEXT NOT NULL
        );
        """
    )
    conn.commit()


def _migration_002_contracts(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS publishers (
            publisher_id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS contracts (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            category TEXT,
            tags_json TEXT,
            network TEXT,
            publisher_id TEXT NOT NULL REFERENCES publishers(publisher_id),
            current_wasm_hash TEXT,
            current_version TEXT,
            is_verified INTEGER NOT NULL DEFAULT 0,
            abi_json TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_contracts_created ON contracts(created_at);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_contracts_category ON contracts(category);")
    conn.commit()


def _migration_003_patches(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS patches (
            id TEXT PRIMARY KEY,
            target_version TEXT NOT NULL,
            bytecode_hash TEXT NOT NULL,
            severity TEXT NOT NULL CHECK (severity IN ('low','medium','high','critical')),
            rollout_percentage INTEGER NOT NULL CHECK (rollout_percentage BETWEEN 0 AND 100),
            status TEXT NOT NULL CHECK (status IN ('draft','rolling_out','complete','withdrawn')),
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        """
    )
    conn.execute("DROP TRIGGER IF EXISTS patches_rollout_monotonic")
    conn.execute(
        """
        CREATE TRIGGER patches_rollout_monotonic
        BEFORE UPDATE OF rollout_percentage ON patches
        FOR EACH ROW
        WHEN NEW.rollout_percentage < OLD.rollout_percentage
        BEGIN
            SELECT RAISE(ABORT, 'rollout_percentage is monotonic; decreases not allowed');
        END
        """
    )
    conn.execute("DROP TRIGGER IF EXISTS patches_identity_immutable")
    conn.execute(
        """
        CREATE TRIGGER patches_identity_immutable
        BEFORE UPDATE ON patches
        FOR EACH ROW
        WHEN OLD.target_version IS NOT NEW.target_version
          OR OLD.bytecode_hash IS NOT NEW.bytecode_hash
          OR OLD.severity IS NOT NEW.severity
          OR OLD.created_at IS NOT NEW.created_at
        BEGIN
            SELECT RAISE(ABORT, 'patch version, hash, severity and created_at are immutable');
        END
        """
    )
    conn.execute("DROP TRIGGER IF EXISTS patches_prevent_delete")
    conn.execute(
        """
        CREATE TRIGGER patches_prevent_delete
        BEFORE DELETE ON patches
        FOR EACH ROW
        BEGIN
            SELECT RAISE(ABORT, 'patches are never deleted; withdraw instead');
        END
        """
    )
    conn.commit()


def _migration_004_migration_records(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS migration_records (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            record_id TEXT NOT NULL UNIQUE,
            contract_id TEXT NOT NULL,
            patch_id TEXT,
            dry_run INTEGER NOT NULL,
            simulate_fail INTEGER NOT NULL,
            outcome TEXT NOT NULL CHECK (outcome IN ('applied','rolled_back','failed','previewed')),
            ts_utc TEXT NOT NULL,
            from_hash TEXT,
            from_version TEXT,
            to_hash TEXT,
            to_version TEXT,
            in_cohort INTEGER,
            compatible INTEGER,
            would_change INTEGER,
            error_kind TEXT,
            error_message TEXT
        );
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_migration_records_contract ON migration_records(contract_id, patch_id);"
    )
    # At most one real applied record per (contract, patch).
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_migration_records_applied
        ON migration_records(contract_id, patch_id)
        WHERE outcome = 'applied' AND dry_run = 0 AND patch_id IS NOT NULL;
        """
    )
    for op in ("UPDATE", "DELETE"):
        name = f"migration_records_prevent_{op.lower()}"
        conn.execute(f"DROP TRIGGER IF EXISTS {name}")
        conn.execute(
            f"""
            CREATE TRIGGER {name}
            BEFORE {op} ON migration_records
            FOR EACH ROW
            BEGIN
                SELECT RAISE(ABORT, 'migration_records is append-only; {op.lower()} not allowed');
            END
            """
        )
    conn.commit()


def _migration_005_patch_notifications(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS patch_notifications (
            event_id INTEGER PRIMARY KEY AUTOINCREMENT,
            patch_id TEXT NOT NULL,
            contract_id TEXT NOT NULL,
            publisher_id TEXT,
            status TEXT NOT NULL CHECK (status IN ('delivered','failed')),
            error TEXT,
            ts_utc TEXT NOT NULL
        );
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_patch_notifications_patch ON patch_notifications(patch_id, status);"
    )
    for op in ("UPDATE", "DELETE"):
        name = f"patch_notifications_prevent_{op.lower()}"
        conn.execute(f"DROP TRIGGER IF EXISTS {name}")
        conn.execute(
            f"""
            CREATE TRIGGER {name}
            BEFORE {op} ON patch_notifications
            FOR EACH ROW
            BEGIN
                SELECT RAISE(ABORT, 'patch_notifications is append-only; {op.lower()} not allowed');
            END
            """
        )
    conn.commit()


def _migration_006_patch_withdrawal_terminal(conn: sqlite3.Connection) -> None:
    conn.execute("DROP TRIGGER IF EXISTS patches_withdrawn_terminal")
    conn.execute(
        """
        CREATE TRIGGER patches_withdrawn_terminal
        BEFORE UPDATE OF status ON patches
        FOR EACH ROW
        WHEN OLD.status = 'withdrawn' AND NEW.status <> 'withdrawn'
        BEGIN
            SELECT RAISE(ABORT, 'withdrawn is terminal; a withdrawn patch cannot return to service');
        END
        """
    )
    conn.commit()


MIGRATIONS: List[Migration] = [
    (1, "schema_migrations", _migration_001_schema_migrations),
    (2, "contracts_publishers", _migration_002_contracts),
    (3, "patches", _migration_003_patches),
    (4, "migration_records", _migration_004_migration_records),
    (5, "patch_notifications", _migration_005_patch_notifications),
    (6, "patch_withdrawal_terminal", _migration_006_patch_withdrawal_terminal),
]


def _schema_migrations_exists(conn: sqlite3.Connection) -> bool:
    cur = conn.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='schema_migrations'")
    return cur.fetchone() is not None


def _max_applied_version(conn: sqlite3.Connection) -> int:
    if not _schema_migrations_exists(conn):
        return 0
    row = conn.execute("SELECT MAX(version) FROM schema_migrations").fetchone()
    if row is None or row[0] is None:
        return 0
    return int(row[0])


def _record_migration(conn: sqlite3.Connection, version: int, name: str) -> None:
    conn.execute(
        "INSERT INTO schema_migrations (version, name, applied_at_utc) VALUES (?, ?, ?)",
        (version, name, now_utc_iso()),
    )
    conn.commit()


def _backup(db_path: Optional[str], version: int) -> Optional[str]:
    if not db_path or not Path(db_path).is_file():
        return None
    backup_path = f"{db_path}.bak.{version}.{now_utc_iso().replace(':', '-')}"
    try:
        shutil.copy2(db_path, backup_path)
    except OSError as e:
        logger.warning("Backup before migration %s failed: %s", version, e)
        return None
    return backup_path


def _restore(backup_path: Optional[str], db_path: Optional[str], version: int) -> None:
    if not backup_path or not db_path or not Path(backup_path).is_file():
        return
    try:
        shutil.copy2(backup_path, db_path)
        logger.info("Restored DB from %s after migration %s failure", backup_path, version)
    except OSError as restore_err:
        logger.error("Restore from backup failed: %s", restore_err)


def run_migrations(conn: sqlite3.Connection, db_path: Union[str, Path, None] = None) -> int:
    """
    Apply pending migrations in ascending order. Returns the schema version after the run.
    Safe to call on every startup.
    """
    path = str(db_path) if db_path else None
    max_ver = _max_applied_version(conn)
    # A fresh database has nothing worth restoring.
    upgrading = max_ver > 0
    for version, name, apply_fn in MIGRATIONS:
        if version <= max_ver:
            continue
        backup_path = _backup(path, version) if upgrading else None
        try:
            apply_fn(conn)
            _record_migration(conn, version, name)
            logger.debug("Applied migration %s: %s", version, name)
        except Exception:
            conn.rollback()
            _restore(backup_path, path, version)
            raise
        max_ver = version
    return max_ver


def schema_ready(conn: sqlite3.Connection) -> bool:
    """True if every known migration has been applied."""
    return _max_applied_version(conn) >= MIGRATIONS[-1][0]
