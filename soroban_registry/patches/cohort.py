"""
Rollout cohort calculator: deterministic, monotonic membership per (contract, patch).

bucket(contract_id, patch_id) is a stable value in [0, 100) derived from a 64-bit
SHA-256 prefix; a contract is in the cohort at percentage P iff bucket < P.
Because the bucket does not depend on P, raising P only ever adds members.
Pure functions: no I/O, no shared state.
"""

from __future__ import annotations

from typing import Iterable, List

from soroban_registry.core.errors import InvalidRollout
from soroban_registry.core.hashing import stable_digest64

BUCKETS = 100


def validate_percentage(rollout_percentage: object) -> int:
    """Return rollout_percentage as int or raise InvalidRollout (bools and out-of-range values rejected)."""
    if isinstance(rollout_percentage, bool) or not isinstance(rollout_percentage, int):
        raise InvalidRollout(rollout_percentage)
    if not 0 <= rollout_percentage <= 100:
        raise InvalidRollout(rollout_percentage)
    return rollout_percentage


def bucket(contract_id: str, patch_id: str) -> int:
    """Stable bucket in [0, 100) for the (contract, patch) pair."""
    return stable_digest64(contract_id, patch_id) % BUCKETS


def in_cohort(contract_id: str, patch_id: str, rollout_percentage: int) -> bool:
    pct = validate_percentage(rollout_percentage)
    return bucket(contract_id, patch_id) < pct


def cohort(contract_ids: Iterable[str], patch_id: str, rollout_percentage: int) -> List[str]:
    """Cohort members among contract_ids, in input order."""
    pct = validate_percentage(rollout_percentage)
    return [cid for cid in contract_ids if bucket(cid, patch_id) < pct]


__all__ = ["BUCKETS", "bucket", "cohort", "in_cohort", "validate_percentage"]
