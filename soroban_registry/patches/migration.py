"""
MigrationEngine: move one contract to a patch or an explicit wasm artifact.

States: pending -> validating -> (previewed | applying) -> (applied | failed).
rolled_back is reserved for multi-step artifacts and is never produced here.

Guarantees:
- Idempotent: re-applying the same patch to the same contract returns the
  original applied record and writes nothing.
- Fail-before-effect: the conditional contract write is the last step of
  applying; a failed attempt leaves the contract untouched.
- Dry-run never writes the contract, whatever simulate_fail says.
Every attempt ends with a MigrationRecord appended to the store.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

from soroban_registry.core.errors import (
    ConcurrentMigrationConflict,
    MigrationFailed,
    NotInRolloutCohort,
    PatchWithdrawn,
    RegistryUnavailable,
    WriteConflict,
)
from soroban_registry.store.resilience import RetryConfig, resilient_call
from soroban_registry.timeutils import now_utc_iso

from .artifacts import Artifact, load_artifact
from .cohort import in_cohort
from .models import Contract, MigrationOutcome, MigrationRecord, MigrationState

if TYPE_CHECKING:
    from soroban_registry.store.client import RegistryClient

logger = logging.getLogger(__name__)

SIMULATED_FAILURE = "simulated failure during apply"


@dataclass(frozen=True)
class PatchTarget:
    """Apply a registered patch; artifact_path optionally supplies the wasm to check against it."""

    patch_id: str
    artifact_path: Optional[str] = None


@dataclass(frozen=True)
class ArtifactTarget:
    """Migrate to an explicit wasm file. version defaults to the contract's current version."""

    path: str
    version: Optional[str] = None


MigrationTarget = Union[PatchTarget, ArtifactTarget]


@dataclass
class _Plan:
    """Everything validation decided about one attempt."""

    contract: Contract
    patch_id: Optional[str]
    to_hash: str
    to_version: Optional[str]
    in_cohort: Optional[bool]
    compatible: Optional[bool]
    problem: Optional[str]

    @property
    def would_change(self) -> bool:
        return (
            self.contract.current_wasm_hash != self.to_hash
            or self.contract.current_version != self.to_version
        )


def _make_record_id(contract_id: str, patch_id: Optional[str], ts: str) -> str:
    payload = f"{contract_id}|{patch_id or ''}|{ts}|{uuid.uuid4().hex}"
    return f"mig_{hashlib.sha256(payload.encode('utf-8')).hexdigest()[:16]}"


def failure_message(contract_id: str, to_hash: str, reason: str) -> str:
    """Single message shape for every applying-phase failure, simulated or not."""
    return f"migration of {contract_id} to {to_hash} failed: {reason}"


class MigrationEngine:
    def __init__(self, client: "RegistryClient", conflict_recheck: Optional[RetryConfig] = None) -> None:
        self._client = client
        self._recheck = conflict_recheck or RetryConfig(max_retries=3, base_delay_s=0.1, max_delay_s=1.0)

    def migrate(
        self,
        contract_id: str,
        target: MigrationTarget,
        dry_run: bool = False,
        simulate_fail: bool = False,
    ) -> MigrationRecord:
        """
        Run one migration attempt and return its record.

        Raises ContractNotFound, PatchNotFound, PatchWithdrawn, ArtifactNotFound,
        NotInRolloutCohort (real apply outside the cohort), ConcurrentMigrationConflict
        or RegistryUnavailable. Validation and simulated failures do not raise; they
        come back as a failed record.
        """
        self._enter(contract_id, MigrationState.PENDING)
        contract = self._client.get_contract(contract_id)

        self._enter(contract_id, MigrationState.VALIDATING)
        if isinstance(target, PatchTarget):
            existing, plan = self._validate_patch(contract, target, dry_run)
        elif isinstance(target, ArtifactTarget):
            existing, plan = self._validate_artifact(contract, target)
        else:
            raise TypeError(f"Unsupported migration target: {target!r}")
        if existing is not None:
            logger.info(
                "Contract %s already migrated (%s); returning record %s",
                contract_id, existing.patch_id or existing.to_hash, existing.record_id,
            )
            return existing

        if dry_run:
            self._enter(contract_id, MigrationState.PREVIEWED)
            return self._finish(plan, MigrationOutcome.PREVIEWED, dry_run=True, simulate_fail=simulate_fail)

        self._enter(contract_id, MigrationState.APPLYING)
        try:
            self._check_applicable(plan, simulate_fail)
        except MigrationFailed as e:
            self._enter(contract_id, MigrationState.FAILED)
            logger.warning("%s", e.message)
            return self._finish(
                plan,
                MigrationOutcome.FAILED,
                dry_run=False,
                simulate_fail=simulate_fail,
                error=e,
            )

        try:
            self._client.write_contract_version(
                contract_id,
                expected_current_hash=plan.contract.current_wasm_hash,
                new_hash=plan.to_hash,
                new_version=plan.to_version,
            )
        except WriteConflict as e:
            logger.warning("Write conflict migrating %s: %s", contract_id, e.message)
            return self._resolve_conflict(plan)

        self._enter(contract_id, MigrationState.APPLIED)
        try:
            return self._finish(plan, MigrationOutcome.APPLIED, dry_run=False, simulate_fail=simulate_fail)
        except ConcurrentMigrationConflict:
            # Another writer recorded the same (contract, patch) first; its record stands.
            winner = self._client.find_migration(contract_id, plan.patch_id)
            if winner is None:
                raise
            return winner

    # Validation ----------------------------------------------------------

    def _validate_patch(self, contract: Contract, target: PatchTarget, dry_run: bool):
        patch = self._client.get_patch(target.patch_id)
        if patch.is_withdrawn:
            raise PatchWithdrawn(patch.id)
        artifact = load_artifact(target.artifact_path) if target.artifact_path else None

        existing = self._client.find_migration(contract.id, patch.id)
        if existing is not None:
            return existing, None

        member = in_cohort(contract.id, patch.id, patch.rollout_percentage)
        if not member and not dry_run:
            raise NotInRolloutCohort(contract.id, patch.id, patch.rollout_percentage)

        problem = None
        compatible = None
        if artifact is not None:
            compatible = artifact.compatible
            problem = self._artifact_problem(artifact)
            if problem is None and artifact.wasm_hash != patch.bytecode_hash:
                problem = (
                    f"artifact hash {artifact.wasm_hash} does not match patch bytecode hash "
                    f"{patch.bytecode_hash}"
                )
        plan = _Plan(
            contract=contract,
            patch_id=patch.id,
            to_hash=patch.bytecode_hash,
            to_version=patch.target_version,
            in_cohort=member,
            compatible=compatible,
            problem=problem,
        )
        return None, plan

    def _validate_artifact(self, contract: Contract, target: ArtifactTarget):
        artifact = load_artifact(target.path)
        existing = self._client.find_migration(contract.id, None, target_hash=artifact.wasm_hash)
        if existing is not None and contract.current_wasm_hash == artifact.wasm_hash:
            return existing, None
        plan = _Plan(
            contract=contract,
            patch_id=None,
            to_hash=artifact.wasm_hash,
            to_version=target.version or contract.current_version,
            in_cohort=None,
            compatible=artifact.compatible,
            problem=self._artifact_problem(artifact),
        )
        return None, plan

    @staticmethod
    def _artifact_problem(artifact: Artifact) -> Optional[str]:
        if not artifact.compatible:
            return f"artifact {artifact.path} is not a WebAssembly module (binary format version 1)"
        return None

    @staticmethod
    def _check_applicable(plan: _Plan, simulate_fail: bool) -> None:
        reason = plan.problem or (SIMULATED_FAILURE if simulate_fail else None)
        if reason is not None:
            raise MigrationFailed(
                failure_message(plan.contract.id, plan.to_hash, reason),
                contract_id=plan.contract.id,
            )

    # Conflicts -----------------------------------------------------------

    def _resolve_conflict(self, plan: _Plan) -> MigrationRecord:
        contract_id = plan.contract.id
        current = self._client.get_contract(contract_id)
        if current.current_wasm_hash != plan.to_hash:
            raise ConcurrentMigrationConflict(
                f"contract {contract_id} was migrated to {current.current_wasm_hash} "
                f"while applying {plan.to_hash}",
                contract_id=contract_id,
                actual_hash=current.current_wasm_hash,
            )

        target_hash = plan.to_hash if plan.patch_id is None else None

        def _winner() -> MigrationRecord:
            record = self._client.find_migration(contract_id, plan.patch_id, target_hash=target_hash)
            if record is None:
                raise RegistryUnavailable(
                    f"contract {contract_id} is at {plan.to_hash} but the winning migration "
                    "record is not visible yet; retry"
                )
            return record

        record = resilient_call(_winner, retry_config=self._recheck)
        logger.info("Concurrent migration of %s won by record %s", contract_id, record.record_id)
        return record

    # Records -------------------------------------------------------------

    def _finish(
        self,
        plan: _Plan,
        outcome: MigrationOutcome,
        *,
        dry_run: bool,
        simulate_fail: bool,
        error: Optional[MigrationFailed] = None,
    ) -> MigrationRecord:
        ts = now_utc_iso()
        if error is not None:
            error_kind: Optional[str] = error.kind
            error_message: Optional[str] = error.message
        else:
            # Previews carry any validation problem so the operator sees it before applying.
            error_kind = None
            error_message = plan.problem if outcome == MigrationOutcome.PREVIEWED else None
        record = MigrationRecord(
            record_id=_make_record_id(plan.contract.id, plan.patch_id, ts),
            contract_id=plan.contract.id,
            patch_id=plan.patch_id,
            dry_run=dry_run,
            simulate_fail=simulate_fail,
            outcome=outcome,
            timestamp=ts,
            from_hash=plan.contract.current_wasm_hash,
            from_version=plan.contract.current_version,
            to_hash=plan.to_hash,
            to_version=plan.to_version,
            in_cohort=plan.in_cohort,
            compatible=plan.compatible,
            would_change=plan.would_change,
            error_kind=error_kind,
            error_message=error_message,
        )
        self._client.record_migration(record)
        logger.info(
            "Migration %s of %s: %s (%s -> %s)",
            record.record_id, record.contract_id, outcome.value, record.from_hash, record.to_hash,
        )
        return record

    @staticmethod
    def _enter(contract_id: str, state: MigrationState) -> None:
        logger.debug("Migration of %s: %s", contract_id, state.value)
