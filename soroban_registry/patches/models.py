"""
Data contracts for patch rollout and migration.

Records are frozen dataclasses; lifecycle changes produce new instances via
dataclasses.replace. to_dict / from_dict give the wire and storage shape
shared by the SQLite store, the HTTP API and the HTTP client.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from .severity import Severity


class PatchStatus(enum.Enum):
    DRAFT = "draft"
    ROLLING_OUT = "rolling_out"
    COMPLETE = "complete"
    WITHDRAWN = "withdrawn"


class MigrationOutcome(enum.Enum):
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"
    PREVIEWED = "previewed"


class MigrationState(enum.Enum):
    """Engine states. PENDING and the outcomes are stable; VALIDATING/APPLYING exist only inside one call."""

    PENDING = "pending"
    VALIDATING = "validating"
    APPLYING = "applying"
    PREVIEWED = "previewed"
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


class DeliveryStatus(enum.Enum):
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass(frozen=True)
class Patch:
    """A versioned, hashed upgrade with a severity and a staged rollout percentage."""

    id: str
    target_version: str
    bytecode_hash: str
    severity: Severity
    rollout_percentage: int
    status: PatchStatus
    created_at: str
    updated_at: str = ""

    @property
    def is_withdrawn(self) -> bool:
        return self.status == PatchStatus.WITHDRAWN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "target_version": self.target_version,
            "bytecode_hash": self.bytecode_hash,
            "severity": self.severity.value,
            "rollout_percentage": self.rollout_percentage,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at or self.created_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Patch":
        return cls(
            id=d["id"],
            target_version=d["target_version"],
            bytecode_hash=d["bytecode_hash"],
            severity=Severity.parse(d["severity"]),
            rollout_percentage=int(d["rollout_percentage"]),
            status=PatchStatus(d["status"]),
            created_at=d["created_at"],
            updated_at=d.get("updated_at") or d["created_at"],
        )


@dataclass(frozen=True)
class Contract:
    """Registry-owned contract; the core reads it and amends only hash/version."""

    id: str
    current_wasm_hash: Optional[str]
    current_version: Optional[str]
    publisher_id: str
    name: str = ""
    description: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    network: Optional[str] = None
    is_verified: bool = False
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "current_wasm_hash": self.current_wasm_hash,
            "current_version": self.current_version,
            "publisher_id": self.publisher_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "tags": list(self.tags),
            "network": self.network,
            "is_verified": self.is_verified,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Contract":
        return cls(
            id=d["id"],
            current_wasm_hash=d.get("current_wasm_hash"),
            current_version=d.get("current_version"),
            publisher_id=d.get("publisher_id") or "",
            name=d.get("name") or "",
            description=d.get("description"),
            category=d.get("category"),
            tags=list(d.get("tags") or []),
            network=d.get("network"),
            is_verified=bool(d.get("is_verified", False)),
            created_at=d.get("created_at") or "",
            updated_at=d.get("updated_at") or "",
        )


@dataclass(frozen=True)
class MigrationRecord:
    """Append-only audit entry written at the end of every apply or dry-run attempt."""

    record_id: str
    contract_id: str
    patch_id: Optional[str]
    dry_run: bool
    simulate_fail: bool
    outcome: MigrationOutcome
    timestamp: str
    from_hash: Optional[str] = None
    from_version: Optional[str] = None
    to_hash: Optional[str] = None
    to_version: Optional[str] = None
    in_cohort: Optional[bool] = None
    compatible: Optional[bool] = None
    would_change: Optional[bool] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "contract_id": self.contract_id,
            "patch_id": self.patch_id,
            "dry_run": self.dry_run,
            "simulate_fail": self.simulate_fail,
            "outcome": self.outcome.value,
            "timestamp": self.timestamp,
            "from_hash": self.from_hash,
            "from_version": self.from_version,
            "to_hash": self.to_hash,
            "to_version": self.to_version,
            "in_cohort": self.in_cohort,
            "compatible": self.compatible,
            "would_change": self.would_change,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MigrationRecord":
        def _opt_bool(v: Any) -> Optional[bool]:
            return None if v is None else bool(v)

        return cls(
            record_id=d["record_id"],
            contract_id=d["contract_id"],
            patch_id=d.get("patch_id"),
            dry_run=bool(d["dry_run"]),
            simulate_fail=bool(d["simulate_fail"]),
            outcome=MigrationOutcome(d["outcome"]),
            timestamp=d["timestamp"],
            from_hash=d.get("from_hash"),
            from_version=d.get("from_version"),
            to_hash=d.get("to_hash"),
            to_version=d.get("to_version"),
            in_cohort=_opt_bool(d.get("in_cohort")),
            compatible=_opt_bool(d.get("compatible")),
            would_change=_opt_bool(d.get("would_change")),
            error_kind=d.get("error_kind"),
            error_message=d.get("error_message"),
        )


@dataclass(frozen=True)
class NotificationRecord:
    """One delivery attempt of a patch notice to a contract owner. Append-only."""

    patch_id: str
    contract_id: str
    publisher_id: str
    status: DeliveryStatus
    timestamp: str
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "patch_id": self.patch_id,
            "contract_id": self.contract_id,
            "publisher_id": self.publisher_id,
            "status": self.status.value,
            "timestamp": self.timestamp,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "NotificationRecord":
        return cls(
            patch_id=d["patch_id"],
            contract_id=d["contract_id"],
            publisher_id=d.get("publisher_id") or "",
            status=DeliveryStatus(d["status"]),
            timestamp=d["timestamp"],
            error=d.get("error"),
        )


@dataclass
class NotificationReport:
    """
    Partition produced by one notify pass.

    notified: cohort members delivered in this pass.
    skipped: cohort members already notified by an earlier pass (not re-sent).
    excluded: contracts outside the cohort at the current percentage.
    failed: cohort members whose delivery failed (contract_id -> error); retried next pass.
    """

    patch_id: str
    rollout_percentage: int
    notified: Set[str] = field(default_factory=set)
    skipped: Set[str] = field(default_factory=set)
    excluded: Set[str] = field(default_factory=set)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def cohort(self) -> Set[str]:
        return self.notified | self.skipped | set(self.failed)

    @property
    def deliveries(self) -> Dict[str, str]:
        """Per-contract delivery status for this pass."""
        out: Dict[str, str] = {cid: "delivered" for cid in self.notified}
        out.update({cid: "already_notified" for cid in self.skipped})
        out.update({cid: "failed" for cid in self.failed})
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "patch_id": self.patch_id,
            "rollout_percentage": self.rollout_percentage,
            "notified": sorted(self.notified),
            "skipped": sorted(self.skipped),
            "excluded_count": len(self.excluded),
            "failed": dict(sorted(self.failed.items())),
            "counts": {
                "notified": len(self.notified),
                "skipped": len(self.skipped),
                "excluded": len(self.excluded),
                "failed": len(self.failed),
            },
        }
