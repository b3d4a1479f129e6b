"""PatchRegistry lifecycle against the SQLite store."""

from __future__ import annotations

import re

import pytest

from soroban_registry.core.errors import (
    InvalidHash,
    InvalidRollout,
    InvalidSeverity,
    InvalidVersion,
    PatchNotFound,
    PatchWithdrawn,
    RolloutRegression,
)
from soroban_registry.patches.models import PatchStatus
from soroban_registry.patches.notify import MemoryChannel, NotificationDispatcher
from soroban_registry.patches.registry import PatchRegistry
from soroban_registry.patches.severity import Severity
from tests.fakes import make_store


@pytest.fixture()
def store(tmp_path):
    return make_store(tmp_path)


@pytest.fixture()
def registry(store):
    return PatchRegistry(store)


def test_create_draft(registry, store):
    patch = registry.create("1.2.0", "ABC123", "high", 0)
    assert re.fullmatch(r"patch_[0-9a-f]{16}", patch.id)
    assert patch.status == PatchStatus.DRAFT
    assert patch.severity is Severity.HIGH
    assert patch.bytecode_hash == "abc123"
    assert store.get_patch(patch.id) == patch


@pytest.mark.parametrize("rollout,status", [(0, PatchStatus.DRAFT), (40, PatchStatus.ROLLING_OUT), (100, PatchStatus.COMPLETE)])
def test_create_status_follows_rollout(registry, rollout, status):
    assert registry.create("1.0.0", "ff", "low", rollout).status == status


def test_create_ids_are_unique(registry):
    ids = {registry.create("1.0.0", "ff", "low", 0).id for _ in range(5)}
    assert len(ids) == 5


@pytest.mark.parametrize(
    "args,err",
    [
        (("1.2.0", "abc123", "urgent", 0), InvalidSeverity),
        (("1.2.0", "abc123", "high", 101), InvalidRollout),
        (("1.2.0", "abc123", "high", -5), InvalidRollout),
        (("1.2", "abc123", "high", 0), InvalidVersion),
        (("v1.2.0", "abc123", "high", 0), InvalidVersion),
        (("1.2.0", "xyz", "high", 0), InvalidHash),
        (("1.2.0", "", "high", 0), InvalidHash),
    ],
)
def test_create_rejects_bad_input(registry, store, args, err):
    with pytest.raises(err):
        registry.create(*args)
    assert store.list_patches() == []


def test_prerelease_versions_accepted(registry):
    assert registry.create("2.0.0-rc.1+build.5", "ab", "medium", 0).target_version == "2.0.0-rc.1+build.5"


def test_set_rollout_transitions(registry):
    patch = registry.create("1.2.0", "abc123", "high", 0)
    p25 = registry.set_rollout(patch.id, 25)
    assert p25.rollout_percentage == 25
    assert p25.status == PatchStatus.ROLLING_OUT
    p100 = registry.set_rollout(patch.id, 100)
    assert p100.status == PatchStatus.COMPLETE
    assert registry.get(patch.id) == p100


def test_lowering_rollout_fails_and_leaves_state(registry):
    patch = registry.create("1.2.0", "abc123", "high", 0)
    registry.set_rollout(patch.id, 50)
    before = registry.get(patch.id)
    with pytest.raises(RolloutRegression):
        registry.set_rollout(patch.id, 10)
    assert registry.get(patch.id) == before


def test_same_rollout_is_noop(registry):
    patch = registry.set_rollout(registry.create("1.2.0", "abc123", "high", 0).id, 30)
    assert registry.set_rollout(patch.id, 30) == patch


def test_set_rollout_validates(registry):
    patch = registry.create("1.2.0", "abc123", "high", 0)
    with pytest.raises(InvalidRollout):
        registry.set_rollout(patch.id, 150)
    with pytest.raises(PatchNotFound):
        registry.set_rollout("patch_missing", 10)


def test_withdraw_is_idempotent_and_blocks_rollout(registry):
    patch = registry.create("1.2.0", "abc123", "high", 20)
    first = registry.withdraw(patch.id)
    assert first.status == PatchStatus.WITHDRAWN
    assert first.rollout_percentage == 20
    assert registry.withdraw(patch.id) == first
    with pytest.raises(PatchWithdrawn):
        registry.set_rollout(patch.id, 50)


def test_get_missing(registry):
    with pytest.raises(PatchNotFound) as exc:
        registry.get("patch_nope")
    assert exc.value.message == "No patch found with ID: patch_nope"


def test_list_sorted_by_severity_then_age(registry, monkeypatch):
    monkeypatch.setenv("SOROBAN_REGISTRY_DETERMINISTIC_TIME", "2026-01-01T00:00:00Z")
    low = registry.create("1.0.0", "aa", "low", 0)
    crit_old = registry.create("1.0.1", "bb", "critical", 0)
    monkeypatch.setenv("SOROBAN_REGISTRY_DETERMINISTIC_TIME", "2026-01-02T00:00:00Z")
    crit_new = registry.create("1.0.2", "cc", "critical", 0)
    high = registry.create("1.0.3", "dd", "high", 0)
    registry.withdraw(high.id)

    assert [p.id for p in registry.list()] == [crit_old.id, crit_new.id, high.id, low.id]
    assert [p.id for p in registry.list(include_withdrawn=False)] == [crit_old.id, crit_new.id, low.id]


class WithdrawAfterRead:
    """Delegates to a store; withdraws the patch right after the first get_patch returns."""

    def __init__(self, inner):
        self._inner = inner
        self.fired = False

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def get_patch(self, patch_id):
        patch = self._inner.get_patch(patch_id)
        if not self.fired:
            self.fired = True
            PatchRegistry(self._inner).withdraw(patch_id)
        return patch


def test_withdraw_between_read_and_write_is_kept(store):
    patch = PatchRegistry(store).create("1.2.0", "abc123", "high", 10)
    racing = PatchRegistry(WithdrawAfterRead(store))
    with pytest.raises(PatchWithdrawn):
        racing.set_rollout(patch.id, 50)

    stored = store.get_patch(patch.id)
    assert stored.status == PatchStatus.WITHDRAWN
    assert stored.rollout_percentage == 10
    with pytest.raises(PatchWithdrawn):
        NotificationDispatcher(store, MemoryChannel()).notify(patch.id)


class RaiseAfterRead:
    """Delegates to a store; raises the rollout right after the first get_patch returns."""

    def __init__(self, inner, pct):
        self._inner = inner
        self._pct = pct
        self.fired = False

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def get_patch(self, patch_id):
        patch = self._inner.get_patch(patch_id)
        if not self.fired:
            self.fired = True
            PatchRegistry(self._inner).set_rollout(patch_id, self._pct)
        return patch


def test_withdraw_survives_a_concurrent_rollout_raise(store):
    patch = PatchRegistry(store).create("1.2.0", "abc123", "high", 10)
    withdrawn = PatchRegistry(RaiseAfterRead(store, 40)).withdraw(patch.id)
    assert withdrawn.status == PatchStatus.WITHDRAWN
    assert withdrawn.rollout_percentage == 40
    assert store.get_patch(patch.id).status == PatchStatus.WITHDRAWN
