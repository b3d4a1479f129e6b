"""
SQLite registry store: the authoritative RegistryClient implementation.

Every method opens a short-lived connection through sqlite_conn, so no lock
outlives a call. The contract hash/version write is conditional on the stored
hash (single UPDATE, rowcount checked). Migration records and notification
records are append-only (enforced by triggers, see db/migrations.py).

Also carries the registry-side operations the read API and CLI need:
publish, search (bound parameters only), ABI lookup, stats.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional, Set, Tuple, Union

from soroban_registry.core.errors import (
    AbiNotFound,
    ConcurrentMigrationConflict,
    ContractAlreadyExists,
    ContractNotFound,
    InvalidPagination,
    PatchImmutable,
    PatchNotFound,
    PatchWithdrawn,
    RegistryUnavailable,
    RolloutRegression,
    WriteConflict,
)
from soroban_registry.core.hashing import canonical_json
from soroban_registry.db.migrations import run_migrations, schema_ready
from soroban_registry.patches.models import (
    Contract,
    DeliveryStatus,
    MigrationOutcome,
    MigrationRecord,
    NotificationRecord,
    Patch,
    PatchStatus,
)
from soroban_registry.patches.severity import Severity
from soroban_registry.timeutils import now_utc_iso

from .sqlite_session import sqlite_conn

logger = logging.getLogger(__name__)

MAX_PAGE_LIMIT = 100

_TRANSIENT_MARKERS = ("database is locked", "database is busy", "unable to open database")


def _row_to_contract(row: sqlite3.Row) -> Contract:
    tags = json.loads(row["tags_json"]) if row["tags_json"] else []
    return Contract(
        id=row["id"],
        current_wasm_hash=row["current_wasm_hash"],
        current_version=row["current_version"],
        publisher_id=row["publisher_id"],
        name=row["name"],
        description=row["description"],
        category=row["category"],
        tags=list(tags),
        network=row["network"],
        is_verified=bool(row["is_verified"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_patch(row: sqlite3.Row) -> Patch:
    return Patch(
        id=row["id"],
        target_version=row["target_version"],
        bytecode_hash=row["bytecode_hash"],
        severity=Severity.parse(row["severity"]),
        rollout_percentage=int(row["rollout_percentage"]),
        status=PatchStatus(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_record(row: sqlite3.Row) -> MigrationRecord:
    d = dict(row)
    d["timestamp"] = d.pop("ts_utc")
    d.pop("seq", None)
    return MigrationRecord.from_dict(d)


def _opt_int(v: Optional[bool]) -> Optional[int]:
    return None if v is None else int(v)


class SqliteRegistryStore:
    """
    RegistryClient backed by a single SQLite file.

    The schema is created or upgraded on construction unless create_schema=False,
    in which case a missing schema surfaces as RegistryUnavailable on first use.
    """

    def __init__(self, db_path: Union[str, Path], timeout_s: float = 5.0, create_schema: bool = True) -> None:
        self.db_path = str(db_path)
        self.timeout_s = timeout_s
        if create_schema:
            self.init_schema()

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        try:
            with sqlite_conn(self.db_path, timeout_s=self.timeout_s) as conn:
                yield conn
        except sqlite3.OperationalError as e:
            msg = str(e)
            if any(m in msg for m in _TRANSIENT_MARKERS) or "no such table" in msg:
                logger.warning("Registry store unavailable (%s): %s", self.db_path, msg)
                raise RegistryUnavailable(f"registry store unavailable: {msg}") from e
            raise

    def init_schema(self) -> int:
        """Create or upgrade the schema. Returns the schema version."""
        parent = Path(self.db_path).resolve().parent
        parent.mkdir(parents=True, exist_ok=True)
        with self._conn() as conn:
            version = run_migrations(conn, self.db_path)
        logger.debug("Schema at version %s for %s", version, self.db_path)
        return version

    def ping(self) -> bool:
        """True if the store answers and its schema is current."""
        with self._conn() as conn:
            conn.execute("SELECT 1").fetchone()
            return schema_ready(conn)

    # Contracts -----------------------------------------------------------

    def get_contract(self, contract_id: str) -> Contract:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM contracts WHERE id = ?", (contract_id,)).fetchone()
        if row is None:
            raise ContractNotFound(contract_id)
        return _row_to_contract(row)

    def write_contract_version(
        self,
        contract_id: str,
        expected_current_hash: Optional[str],
        new_hash: str,
        new_version: Optional[str],
    ) -> Contract:
        with self._conn() as conn:
            cur = conn.execute(
                """
                UPDATE contracts
                SET current_wasm_hash = ?, current_version = ?, updated_at = ?
                WHERE id = ? AND current_wasm_hash IS ?
                """,
                (new_hash, new_version, now_utc_iso(), contract_id, expected_current_hash),
            )
            conn.commit()
            if cur.rowcount == 0:
                row = conn.execute(
                    "SELECT current_wasm_hash FROM contracts WHERE id = ?", (contract_id,)
                ).fetchone()
                if row is None:
                    raise ContractNotFound(contract_id)
                logger.warning(
                    "Conditional write lost for %s: expected %s, found %s",
                    contract_id, expected_current_hash, row["current_wasm_hash"],
                )
                raise WriteConflict(contract_id, expected_current_hash, row["current_wasm_hash"])
            row = conn.execute("SELECT * FROM contracts WHERE id = ?", (contract_id,)).fetchone()
        logger.info("Contract %s now at %s (%s)", contract_id, new_hash, new_version)
        return _row_to_contract(row)

    def list_contract_ids(self) -> List[str]:
        with self._conn() as conn:
            rows = conn.execute("SELECT id FROM contracts ORDER BY id").fetchall()
        return [r["id"] for r in rows]

    def publish_contract(
        self,
        contract_id: str,
        name: str,
        publisher_id: str,
        *,
        description: Optional[str] = None,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
        network: Optional[str] = None,
        wasm_hash: Optional[str] = None,
        version: Optional[str] = None,
        abi: Optional[Any] = None,
        is_verified: bool = False,
    ) -> Contract:
        """Insert a new contract (and its publisher if unseen). ContractAlreadyExists on duplicate id."""
        now = now_utc_iso()
        with self._conn() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO publishers (publisher_id, created_at) VALUES (?, ?)",
                (publisher_id, now),
            )
            try:
                conn.execute(
                    """
                    INSERT INTO contracts (
                        id, name, description, category, tags_json, network, publisher_id,
                        current_wasm_hash, current_version, is_verified, abi_json, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        contract_id,
                        name,
                        description,
                        category,
                        canonical_json(list(tags or [])),
                        network,
                        publisher_id,
                        wasm_hash,
                        version,
                        int(bool(is_verified)),
                        canonical_json(abi) if abi is not None else None,
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise ContractAlreadyExists(contract_id) from e
            conn.commit()
        logger.info("Published contract %s (%s) for %s", contract_id, name, publisher_id)
        return self.get_contract(contract_id)

    def get_abi(self, contract_id: str) -> Any:
        with self._conn() as conn:
            row = conn.execute("SELECT abi_json FROM contracts WHERE id = ?", (contract_id,)).fetchone()
        if row is None:
            raise ContractNotFound(contract_id)
        if not row["abi_json"]:
            raise AbiNotFound(contract_id)
        return json.loads(row["abi_json"])

    def search_contracts(
        self,
        query: Optional[str] = None,
        *,
        verified_only: bool = False,
        category: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Contract], int]:
        """
        Filtered, paginated contract listing. Returns (page_items, total).
        Every filter is a bound parameter. page < 1 raises InvalidPagination;
        limit is clamped to [1, MAX_PAGE_LIMIT].
        """
        if page < 1:
            raise InvalidPagination(f"page must be >= 1, got {page}")
        limit = max(1, min(int(limit), MAX_PAGE_LIMIT))
        where: List[str] = []
        params: List[Any] = []
        if query:
            where.append("(name LIKE ? OR description LIKE ? OR id LIKE ?)")
            like = f"%{query}%"
            params.extend([like, like, like])
        if verified_only:
            where.append("is_verified = 1")
        if category:
            where.append("category = ?")
            params.append(category)
        clause = f" WHERE {' AND '.join(where)}" if where else ""
        with self._conn() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM contracts{clause}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM contracts{clause} ORDER BY created_at DESC, id LIMIT ? OFFSET ?",
                params + [limit, (page - 1) * limit],
            ).fetchall()
        return [_row_to_contract(r) for r in rows], int(total)

    def stats(self) -> Dict[str, int]:
        with self._conn() as conn:
            total = conn.execute("SELECT COUNT(*) FROM contracts").fetchone()[0]
            verified = conn.execute("SELECT COUNT(*) FROM contracts WHERE is_verified = 1").fetchone()[0]
            publishers = conn.execute("SELECT COUNT(*) FROM publishers").fetchone()[0]
        return {
            "total_contracts": int(total),
            "verified_contracts": int(verified),
            "total_publishers": int(publishers),
        }

    # Patches -------------------------------------------------------------

    def get_patch(self, patch_id: str) -> Patch:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM patches WHERE id = ?", (patch_id,)).fetchone()
        if row is None:
            raise PatchNotFound(patch_id)
        return _row_to_patch(row)

    def put_patch(self, patch: Patch) -> None:
        """
        Insert or update a patch. Raises RolloutRegression if the rollout would drop,
        PatchWithdrawn if a withdrawn patch would return to service, and
        PatchImmutable if version, hash, severity or created_at would change.
        """
        with self._conn() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO patches (
                        id, target_version, bytecode_hash, severity, rollout_percentage,
                        status, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        target_version = excluded.target_version,
                        bytecode_hash = excluded.bytecode_hash,
                        severity = excluded.severity,
                        created_at = excluded.created_at,
                        rollout_percentage = excluded.rollout_percentage,
                        status = excluded.status,
                        updated_at = excluded.updated_at
                    """,
                    (
                        patch.id,
                        patch.target_version,
                        patch.bytecode_hash,
                        patch.severity.value,
                        patch.rollout_percentage,
                        patch.status.value,
                        patch.created_at,
                        patch.updated_at or patch.created_at,
                    ),
                )
            except sqlite3.IntegrityError as e:
                conn.rollback()
                if "monotonic" in str(e):
                    row = conn.execute(
                        "SELECT rollout_percentage FROM patches WHERE id = ?", (patch.id,)
                    ).fetchone()
                    current = int(row["rollout_percentage"]) if row else 0
                    raise RolloutRegression(patch.id, current, patch.rollout_percentage) from e
                if "withdrawn is terminal" in str(e):
                    raise PatchWithdrawn(patch.id) from e
                if "immutable" in str(e):
                    raise PatchImmutable(patch.id) from e
                raise
            conn.commit()
        logger.debug("Stored patch %s (%s, %s%%)", patch.id, patch.status.value, patch.rollout_percentage)

    def list_patches(self) -> List[Patch]:
        with self._conn() as conn:
            rows = conn.execute("SELECT * FROM patches ORDER BY created_at, id").fetchall()
        return [_row_to_patch(r) for r in rows]

    # Migration audit -----------------------------------------------------

    def record_migration(self, record: MigrationRecord) -> None:
        with self._conn() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO migration_records (
                        record_id, contract_id, patch_id, dry_run, simulate_fail, outcome, ts_utc,
                        from_hash, from_version, to_hash, to_version,
                        in_cohort, compatible, would_change, error_kind, error_message
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.record_id,
                        record.contract_id,
                        record.patch_id,
                        int(record.dry_run),
                        int(record.simulate_fail),
                        record.outcome.value,
                        record.timestamp,
                        record.from_hash,
                        record.from_version,
                        record.to_hash,
                        record.to_version,
                        _opt_int(record.in_cohort),
                        _opt_int(record.compatible),
                        _opt_int(record.would_change),
                        record.error_kind,
                        record.error_message,
                    ),
                )
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise ConcurrentMigrationConflict(
                    f"an applied migration already exists for contract {record.contract_id} "
                    f"and patch {record.patch_id}",
                    contract_id=record.contract_id,
                    patch_id=record.patch_id,
                ) from e
            conn.commit()
        logger.debug("Recorded migration %s (%s)", record.record_id, record.outcome.value)

    def find_migration(
        self,
        contract_id: str,
        patch_id: Optional[str],
        target_hash: Optional[str] = None,
    ) -> Optional[MigrationRecord]:
        sql = (
            "SELECT * FROM migration_records "
            "WHERE contract_id = ? AND patch_id IS ? AND outcome = ? AND dry_run = 0"
        )
        params: List[Any] = [contract_id, patch_id, MigrationOutcome.APPLIED.value]
        if target_hash is not None:
            sql += " AND to_hash = ?"
            params.append(target_hash)
        sql += " ORDER BY seq DESC LIMIT 1"
        with self._conn() as conn:
            row = conn.execute(sql, params).fetchone()
        return _row_to_record(row) if row is not None else None

    def list_migrations(
        self,
        contract_id: Optional[str] = None,
        patch_id: Optional[str] = None,
    ) -> List[MigrationRecord]:
        where: List[str] = []
        params: List[Any] = []
        if contract_id is not None:
            where.append("contract_id = ?")
            params.append(contract_id)
        if patch_id is not None:
            where.append("patch_id = ?")
            params.append(patch_id)
        clause = f" WHERE {' AND '.join(where)}" if where else ""
        with self._conn() as conn:
            rows = conn.execute(f"SELECT * FROM migration_records{clause} ORDER BY seq", params).fetchall()
        return [_row_to_record(r) for r in rows]

    # Notifications -------------------------------------------------------

    def record_notification(self, record: NotificationRecord) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO patch_notifications (patch_id, contract_id, publisher_id, status, error, ts_utc)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record.patch_id,
                    record.contract_id,
                    record.publisher_id,
                    record.status.value,
                    record.error,
                    record.timestamp,
                ),
            )
            conn.commit()

    def notified_contract_ids(self, patch_id: str) -> Set[str]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT DISTINCT contract_id FROM patch_notifications WHERE patch_id = ? AND status = ?",
                (patch_id, DeliveryStatus.DELIVERED.value),
            ).fetchall()
        return {r["contract_id"] for r in rows}

    def list_notifications(self, patch_id: str) -> List[NotificationRecord]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM patch_notifications WHERE patch_id = ? ORDER BY event_id",
                (patch_id,),
            ).fetchall()
        return [
            NotificationRecord(
                patch_id=r["patch_id"],
                contract_id=r["contract_id"],
                publisher_id=r["publisher_id"] or "",
                status=DeliveryStatus(r["status"]),
                timestamp=r["ts_utc"],
                error=r["error"],
            )
            for r in rows
        ]
