"""SQLite store: schema migrations, append-only tables, conditional writes, search."""

from __future__ import annotations

import sqlite3
from dataclasses import replace

import pytest

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
from soroban_registry.db.migrations import MIGRATIONS, run_migrations, schema_ready
from soroban_registry.patches.models import (
    DeliveryStatus,
    MigrationOutcome,
    MigrationRecord,
    NotificationRecord,
    Patch,
    PatchStatus,
)
from soroban_registry.patches.severity import Severity
from soroban_registry.store.client import RegistryClient
from soroban_registry.store.sqlite_store import SqliteRegistryStore
from tests.fakes import make_store, publish_fleet


@pytest.fixture()
def store(tmp_path):
    return make_store(tmp_path)


def _patch(pid="patch_0000000000000001", pct=10, status=PatchStatus.ROLLING_OUT):
    return Patch(
        id=pid,
        target_version="1.2.0",
        bytecode_hash="abc123",
        severity=Severity.HIGH,
        rollout_percentage=pct,
        status=status,
        created_at="2026-01-01T00:00:00Z",
        updated_at="2026-01-01T00:00:00Z",
    )


def _record(rid, contract_id="C0000", patch_id="patch_0000000000000001", outcome=MigrationOutcome.APPLIED, dry_run=False):
    return MigrationRecord(
        record_id=rid,
        contract_id=contract_id,
        patch_id=patch_id,
        dry_run=dry_run,
        simulate_fail=False,
        outcome=outcome,
        timestamp="2026-01-01T00:00:00Z",
        from_hash="00",
        to_hash="abc123",
    )


def test_store_satisfies_protocol(store):
    assert isinstance(store, RegistryClient)


def test_migrations_are_idempotent(tmp_path):
    db = tmp_path / "m.sqlite"
    conn = sqlite3.connect(str(db))
    try:
        assert run_migrations(conn, db) == MIGRATIONS[-1][0]
        assert run_migrations(conn, db) == MIGRATIONS[-1][0]
        assert schema_ready(conn)
        versions = [r[0] for r in conn.execute("SELECT version FROM schema_migrations ORDER BY version")]
        assert versions == [m[0] for m in MIGRATIONS]
    finally:
        conn.close()
    assert list(tmp_path.glob("m.sqlite.bak.*")) == []


def test_missing_schema_is_unavailable(tmp_path):
    store = SqliteRegistryStore(tmp_path / "empty.sqlite", create_schema=False)
    with pytest.raises(RegistryUnavailable):
        store.get_contract("C1")
    assert store.ping() is False


def test_conditional_write(store):
    publish_fleet(store, 1, wasm_hash="aa")
    updated = store.write_contract_version("C0000", "aa", "bb", "2.0.0")
    assert updated.current_wasm_hash == "bb"
    assert updated.current_version == "2.0.0"

    with pytest.raises(WriteConflict) as exc:
        store.write_contract_version("C0000", "aa", "cc", "3.0.0")
    assert exc.value.details["actual_hash"] == "bb"
    assert store.get_contract("C0000").current_wasm_hash == "bb"

    with pytest.raises(ContractNotFound):
        store.write_contract_version("NOPE", "aa", "bb", None)


def test_conditional_write_from_no_hash(store):
    store.publish_contract("C1", "fresh", "G1")
    assert store.write_contract_version("C1", None, "aa", "0.1.0").current_wasm_hash == "aa"


def test_publish_duplicate_and_publishers(store):
    store.publish_contract("C1", "one", "G1", tags=["defi", "amm"], abi={"functions": ["swap"]})
    store.publish_contract("C2", "two", "G1")
    with pytest.raises(ContractAlreadyExists):
        store.publish_contract("C1", "again", "G2")
    assert store.get_contract("C1").tags == ["defi", "amm"]
    assert store.get_abi("C1") == {"functions": ["swap"]}
    with pytest.raises(AbiNotFound):
        store.get_abi("C2")
    assert store.stats() == {"total_contracts": 2, "verified_contracts": 0, "total_publishers": 1}


def test_patch_round_trip_and_monotonic_trigger(store):
    patch = _patch(pct=30)
    store.put_patch(patch)
    assert store.get_patch(patch.id) == patch
    with pytest.raises(RolloutRegression):
        store.put_patch(replace(patch, rollout_percentage=10))
    assert store.get_patch(patch.id).rollout_percentage == 30

    with sqlite3.connect(store.db_path) as conn:
        with pytest.raises(sqlite3.IntegrityError, match="immutable"):
            conn.execute("UPDATE patches SET severity = 'low' WHERE id = ?", (patch.id,))
        with pytest.raises(sqlite3.IntegrityError, match="never deleted"):
            conn.execute("DELETE FROM patches WHERE id = ?", (patch.id,))
    with pytest.raises(PatchNotFound):
        store.get_patch("patch_missing")


def test_migration_records_are_append_only(store):
    store.record_migration(_record("mig_1"))
    conn = sqlite3.connect(store.db_path)
    try:
        with pytest.raises(sqlite3.IntegrityError, match="append-only"):
            conn.execute("UPDATE migration_records SET outcome = 'failed' WHERE record_id = 'mig_1'")
        with pytest.raises(sqlite3.IntegrityError, match="append-only"):
            conn.execute("DELETE FROM migration_records WHERE record_id = 'mig_1'")
    finally:
        conn.close()


def test_one_applied_record_per_contract_and_patch(store):
    store.record_migration(_record("mig_1"))
    store.record_migration(_record("mig_2", outcome=MigrationOutcome.PREVIEWED, dry_run=True))
    store.record_migration(_record("mig_3", outcome=MigrationOutcome.FAILED))
    with pytest.raises(ConcurrentMigrationConflict):
        store.record_migration(_record("mig_4"))
    store.record_migration(_record("mig_5", patch_id=None))
    store.record_migration(_record("mig_6", patch_id=None))
    assert [r.record_id for r in store.list_migrations("C0000")] == ["mig_1", "mig_2", "mig_3", "mig_5", "mig_6"]


def test_find_migration(store):
    store.record_migration(_record("mig_1"))
    store.record_migration(_record("mig_2", outcome=MigrationOutcome.PREVIEWED, dry_run=True, patch_id="patch_x"))
    store.record_migration(_record("mig_3", patch_id=None))
    assert store.find_migration("C0000", "patch_0000000000000001").record_id == "mig_1"
    assert store.find_migration("C0000", "patch_x") is None
    assert store.find_migration("C0000", None).record_id == "mig_3"
    assert store.find_migration("C0000", None, target_hash="abc123").record_id == "mig_3"
    assert store.find_migration("C0000", None, target_hash="ffff") is None
    assert store.find_migration("C9999", None) is None


def test_notifications_are_append_only(store):
    rec = NotificationRecord("patch_1", "C1", "G1", DeliveryStatus.FAILED, "2026-01-01T00:00:00Z", error="boom")
    store.record_notification(rec)
    assert store.notified_contract_ids("patch_1") == set()
    store.record_notification(replace(rec, status=DeliveryStatus.DELIVERED, error=None))
    assert store.notified_contract_ids("patch_1") == {"C1"}
    assert [n.status for n in store.list_notifications("patch_1")] == [DeliveryStatus.FAILED, DeliveryStatus.DELIVERED]
    conn = sqlite3.connect(store.db_path)
    try:
        with pytest.raises(sqlite3.IntegrityError, match="append-only"):
            conn.execute("DELETE FROM patch_notifications")
    finally:
        conn.close()


def test_search_filters_and_pagination(store):
    for i in range(30):
        store.publish_contract(
            f"C{i:02d}",
            f"token-{i}" if i % 2 == 0 else f"vault-{i}",
            "G1",
            category="defi" if i < 10 else "nft",
            is_verified=i % 3 == 0,
        )
    items, total = store.search_contracts("token", page=1, limit=5)
    assert total == 15
    assert len(items) == 5
    _, total = store.search_contracts(None, verified_only=True)
    assert total == 10
    _, total = store.search_contracts(None, category="defi")
    assert total == 10
    items, total = store.search_contracts(None, limit=1000)
    assert total == 30
    assert len(items) == 30
    items, _ = store.search_contracts(None, page=3, limit=10)
    assert len(items) == 10
    with pytest.raises(InvalidPagination):
        store.search_contracts(None, page=0)


def test_search_binds_parameters(store):
    publish_fleet(store, 3)
    items, total = store.search_contracts("'; DROP TABLE contracts; --")
    assert (items, total) == ([], 0)
    _, total = store.search_contracts(None, category="x' OR '1'='1")
    assert total == 0
    assert len(store.list_contract_ids()) == 3


def test_withdrawn_patch_cannot_return_to_service(store):
    patch = _patch(pct=30)
    store.put_patch(patch)
    store.put_patch(replace(patch, status=PatchStatus.WITHDRAWN))
    with pytest.raises(PatchWithdrawn):
        store.put_patch(replace(patch, status=PatchStatus.ROLLING_OUT, rollout_percentage=50))
    stored = store.get_patch(patch.id)
    assert stored.status == PatchStatus.WITHDRAWN
    assert stored.rollout_percentage == 30

    with sqlite3.connect(store.db_path) as conn:
        with pytest.raises(sqlite3.IntegrityError, match="withdrawn is terminal"):
            conn.execute("UPDATE patches SET status = 'draft' WHERE id = ?", (patch.id,))


def test_put_patch_rejects_identity_changes(store):
    patch = _patch()
    store.put_patch(patch)
    for changed in (
        replace(patch, target_version="9.9.9"),
        replace(patch, bytecode_hash="ff"),
        replace(patch, severity=Severity.LOW),
    ):
        with pytest.raises(PatchImmutable):
            store.put_patch(changed)
    assert store.get_patch(patch.id) == patch
