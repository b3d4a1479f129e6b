"""
Rollout and migration reports as pandas DataFrames.
Read-only: everything is computed from what the RegistryClient returns.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterable

import pandas as pd

from .patches.cohort import cohort
from .patches.models import MigrationOutcome, MigrationRecord
from .timeutils import parse_utc_iso, utc_now

if TYPE_CHECKING:
    from .store.client import RegistryClient

HISTORY_COLUMNS = [
    "timestamp",
    "record_id",
    "contract_id",
    "patch_id",
    "outcome",
    "dry_run",
    "simulate_fail",
    "from_hash",
    "to_hash",
    "from_version",
    "to_version",
    "error_kind",
    "error_message",
]


def migration_history_frame(records: Iterable[MigrationRecord]) -> pd.DataFrame:
    """One row per migration record, oldest first; same-second records keep store order."""
    rows = [r.to_dict() for r in records]
    if not rows:
        return pd.DataFrame(columns=HISTORY_COLUMNS)
    df = pd.DataFrame(rows)[HISTORY_COLUMNS]
    return df.sort_values("timestamp", kind="mergesort").reset_index(drop=True)


def outcome_counts(df: pd.DataFrame, include_dry_run: bool = False) -> Dict[str, int]:
    """Counts per outcome value; every outcome is present (zero if absent)."""
    counts = {o.value: 0 for o in MigrationOutcome}
    if df.empty:
        return counts
    if not include_dry_run:
        df = df[~df["dry_run"].astype(bool)]
    for outcome, n in df["outcome"].value_counts().items():
        counts[str(outcome)] = int(n)
    return counts


def rollout_status(client: "RegistryClient", patch_id: str) -> Dict[str, Any]:
    """
    Current state of one patch's rollout: cohort size against the fleet,
    notification coverage of the cohort, and real (non-dry-run) outcomes.
    """
    patch = client.get_patch(patch_id)
    contract_ids = client.list_contract_ids()
    members = set(cohort(contract_ids, patch.id, patch.rollout_percentage))
    notified = client.notified_contract_ids(patch.id)
    history = migration_history_frame(client.list_migrations(patch_id=patch.id))
    counts = outcome_counts(history)

    applied_contracts = set()
    if not history.empty:
        applied = history[(history["outcome"] == MigrationOutcome.APPLIED.value) & ~history["dry_run"].astype(bool)]
        applied_contracts = set(applied["contract_id"])

    age_hours = (utc_now() - parse_utc_iso(patch.created_at)).total_seconds() / 3600.0
    return {
        "patch_id": patch.id,
        "target_version": patch.target_version,
        "severity": patch.severity.value,
        "status": patch.status.value,
        "rollout_percentage": patch.rollout_percentage,
        "total_contracts": len(contract_ids),
        "cohort_size": len(members),
        "notified": len(notified & members),
        "pending_notification": len(members - notified) if not patch.is_withdrawn else 0,
        "applied_contracts": len(applied_contracts),
        "outcomes": counts,
        "age_hours": round(max(age_hours, 0.0), 2),
    }
