"""MigrationEngine: validation, dry-run, simulated failure, idempotent apply."""

from __future__ import annotations

import pytest

from soroban_registry.core.errors import (
    ArtifactNotFound,
    ContractNotFound,
    NotInRolloutCohort,
    PatchNotFound,
    PatchWithdrawn,
)
from soroban_registry.patches.cohort import in_cohort
from soroban_registry.patches.migration import ArtifactTarget, MigrationEngine, PatchTarget
from soroban_registry.patches.models import MigrationOutcome
from soroban_registry.patches.registry import PatchRegistry
from tests.fakes import make_store, publish_fleet, write_wasm

OLD_HASH = "00" * 32


class CountingStore:
    """Delegates to a real store and counts contract writes."""

    def __init__(self, inner):
        self._inner = inner
        self.writes = 0

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def write_contract_version(self, *args, **kwargs):
        self.writes += 1
        return self._inner.write_contract_version(*args, **kwargs)


@pytest.fixture()
def store(tmp_path):
    s = make_store(tmp_path)
    publish_fleet(s, 40, wasm_hash=OLD_HASH)
    return s


@pytest.fixture()
def counting(store):
    return CountingStore(store)


@pytest.fixture()
def engine(counting):
    return MigrationEngine(counting)


def _member(store, patch, want=True):
    for cid in store.list_contract_ids():
        if in_cohort(cid, patch.id, patch.rollout_percentage) == want:
            return cid
    raise AssertionError("fleet has no contract on that side of the cohort")


# Artifact targets --------------------------------------------------------


def test_artifact_apply_updates_contract(store, engine, counting, tmp_path):
    new_hash = write_wasm(tmp_path / "v2.wasm", b"v2")
    record = engine.migrate("C0001", ArtifactTarget(str(tmp_path / "v2.wasm"), version="1.1.0"))

    assert record.outcome == MigrationOutcome.APPLIED
    assert record.from_hash == OLD_HASH
    assert record.to_hash == new_hash
    assert record.compatible is True
    assert record.would_change is True
    contract = store.get_contract("C0001")
    assert contract.current_wasm_hash == new_hash
    assert contract.current_version == "1.1.0"
    assert counting.writes == 1


def test_artifact_version_defaults_to_current(store, engine, tmp_path):
    write_wasm(tmp_path / "v2.wasm", b"v2")
    record = engine.migrate("C0002", ArtifactTarget(str(tmp_path / "v2.wasm")))
    assert record.to_version == "1.0.0"
    assert store.get_contract("C0002").current_version == "1.0.0"


def test_artifact_apply_twice_returns_original_record(store, engine, counting, tmp_path):
    path = str(tmp_path / "v2.wasm")
    write_wasm(tmp_path / "v2.wasm", b"v2")
    first = engine.migrate("C0003", ArtifactTarget(path))
    second = engine.migrate("C0003", ArtifactTarget(path))
    assert second == first
    assert counting.writes == 1
    applied = [r for r in store.list_migrations("C0003") if r.outcome == MigrationOutcome.APPLIED]
    assert len(applied) == 1


def test_dry_run_never_writes(store, engine, counting, tmp_path):
    path = str(tmp_path / "v2.wasm")
    new_hash = write_wasm(tmp_path / "v2.wasm", b"v2")
    for simulate_fail in (False, True):
        record = engine.migrate("C0004", ArtifactTarget(path), dry_run=True, simulate_fail=simulate_fail)
        assert record.outcome == MigrationOutcome.PREVIEWED
        assert record.dry_run is True
        assert record.would_change is True
        assert record.to_hash == new_hash
    assert counting.writes == 0
    assert store.get_contract("C0004").current_wasm_hash == OLD_HASH


def test_simulated_failure_leaves_contract_unchanged(store, engine, counting, tmp_path):
    path = str(tmp_path / "v2.wasm")
    new_hash = write_wasm(tmp_path / "v2.wasm", b"v2")
    record = engine.migrate("C0005", ArtifactTarget(path), simulate_fail=True)

    assert record.outcome == MigrationOutcome.FAILED
    assert record.error_kind == "MigrationFailed"
    assert record.error_message.startswith(f"migration of C0005 to {new_hash} failed: ")
    assert counting.writes == 0
    assert store.get_contract("C0005").current_wasm_hash == OLD_HASH
    assert store.list_migrations("C0005") == [record]


def test_failed_attempt_can_be_retried(store, engine, tmp_path):
    path = str(tmp_path / "v2.wasm")
    write_wasm(tmp_path / "v2.wasm", b"v2")
    engine.migrate("C0006", ArtifactTarget(path), simulate_fail=True)
    record = engine.migrate("C0006", ArtifactTarget(path))
    assert record.outcome == MigrationOutcome.APPLIED


def test_incompatible_artifact_fails_like_simulated(store, engine, counting, tmp_path):
    path = str(tmp_path / "bad.wasm")
    bad_hash = write_wasm(tmp_path / "bad.wasm", b"v2", valid=False)
    record = engine.migrate("C0007", ArtifactTarget(path))

    assert record.outcome == MigrationOutcome.FAILED
    assert record.compatible is False
    assert record.error_kind == "MigrationFailed"
    assert record.error_message.startswith(f"migration of C0007 to {bad_hash} failed: ")
    assert counting.writes == 0


def test_incompatible_artifact_preview_reports_problem(engine, tmp_path):
    write_wasm(tmp_path / "bad.wasm", valid=False)
    record = engine.migrate("C0008", ArtifactTarget(str(tmp_path / "bad.wasm")), dry_run=True)
    assert record.outcome == MigrationOutcome.PREVIEWED
    assert record.compatible is False
    assert record.error_kind is None
    assert "not a WebAssembly module" in record.error_message


def test_missing_inputs(engine, tmp_path):
    write_wasm(tmp_path / "v2.wasm")
    with pytest.raises(ContractNotFound):
        engine.migrate("NOPE", ArtifactTarget(str(tmp_path / "v2.wasm")))
    with pytest.raises(ArtifactNotFound):
        engine.migrate("C0001", ArtifactTarget(str(tmp_path / "missing.wasm")))
    with pytest.raises(PatchNotFound):
        engine.migrate("C0001", PatchTarget("patch_missing"))


# Patch targets -----------------------------------------------------------


def test_patch_apply_in_cohort(store, engine, counting):
    patch = PatchRegistry(store).create("1.2.0", "abc123", "high", 50)
    cid = _member(store, patch)
    record = engine.migrate(cid, PatchTarget(patch.id))

    assert record.outcome == MigrationOutcome.APPLIED
    assert record.patch_id == patch.id
    assert record.in_cohort is True
    contract = store.get_contract(cid)
    assert contract.current_wasm_hash == "abc123"
    assert contract.current_version == "1.2.0"

    again = engine.migrate(cid, PatchTarget(patch.id))
    assert again == record
    assert counting.writes == 1


def test_patch_apply_outside_cohort(store, engine, counting):
    patch = PatchRegistry(store).create("1.2.0", "abc123", "high", 50)
    cid = _member(store, patch, want=False)
    with pytest.raises(NotInRolloutCohort):
        engine.migrate(cid, PatchTarget(patch.id))
    assert counting.writes == 0
    assert store.list_migrations(cid) == []


def test_patch_dry_run_outside_cohort_is_previewed(store, engine, counting):
    patch = PatchRegistry(store).create("1.2.0", "abc123", "high", 50)
    cid = _member(store, patch, want=False)
    record = engine.migrate(cid, PatchTarget(patch.id), dry_run=True)
    assert record.outcome == MigrationOutcome.PREVIEWED
    assert record.in_cohort is False
    assert counting.writes == 0


def test_patch_with_matching_artifact(store, engine, tmp_path):
    digest = write_wasm(tmp_path / "fix.wasm", b"fix")
    patch = PatchRegistry(store).create("1.2.0", digest, "critical", 100)
    record = engine.migrate("C0010", PatchTarget(patch.id, artifact_path=str(tmp_path / "fix.wasm")))
    assert record.outcome == MigrationOutcome.APPLIED
    assert record.compatible is True
    assert store.get_contract("C0010").current_wasm_hash == digest


def test_patch_with_tampered_artifact_fails_integrity(store, engine, counting, tmp_path):
    write_wasm(tmp_path / "fix.wasm", b"tampered")
    patch = PatchRegistry(store).create("1.2.0", "abc123", "critical", 100)
    record = engine.migrate("C0011", PatchTarget(patch.id, artifact_path=str(tmp_path / "fix.wasm")))
    assert record.outcome == MigrationOutcome.FAILED
    assert "does not match patch bytecode hash abc123" in record.error_message
    assert counting.writes == 0


def test_patch_simulated_failure_then_apply(store, engine):
    patch = PatchRegistry(store).create("1.2.0", "abc123", "high", 100)
    failed = engine.migrate("C0012", PatchTarget(patch.id), simulate_fail=True)
    assert failed.outcome == MigrationOutcome.FAILED
    assert store.get_contract("C0012").current_wasm_hash == OLD_HASH
    applied = engine.migrate("C0012", PatchTarget(patch.id))
    assert applied.outcome == MigrationOutcome.APPLIED


def test_withdrawn_patch_cannot_be_applied(store, engine):
    registry = PatchRegistry(store)
    patch = registry.create("1.2.0", "abc123", "high", 100)
    registry.withdraw(patch.id)
    with pytest.raises(PatchWithdrawn):
        engine.migrate("C0013", PatchTarget(patch.id))


def test_rolled_back_is_never_produced(store, engine, tmp_path):
    patch = PatchRegistry(store).create("1.2.0", "abc123", "high", 100)
    write_wasm(tmp_path / "v2.wasm")
    engine.migrate("C0014", PatchTarget(patch.id), simulate_fail=True)
    engine.migrate("C0014", PatchTarget(patch.id), dry_run=True)
    engine.migrate("C0014", PatchTarget(patch.id))
    engine.migrate("C0015", ArtifactTarget(str(tmp_path / "v2.wasm")), simulate_fail=True)
    outcomes = {r.outcome for r in store.list_migrations()}
    assert MigrationOutcome.ROLLED_BACK not in outcomes
    assert outcomes == {MigrationOutcome.FAILED, MigrationOutcome.PREVIEWED, MigrationOutcome.APPLIED}
