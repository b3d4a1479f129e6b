"""
Shared exception types for soroban_registry.

Every error raised by the package derives from SorobanRegistryError and carries
its kind (the class name, used on the CLI error stream and in API error bodies)
and whether the caller may safely retry. Categories mirror the rollout/migration
taxonomy: not found, validation, conflict, transient.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SorobanRegistryError(Exception):
    """Base exception for soroban_registry; catch this for any package-raised error."""

    retryable = False

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class NotFoundError(SorobanRegistryError):
    pass


class ValidationError(SorobanRegistryError):
    pass


class ConflictError(SorobanRegistryError):
    pass


class TransientError(SorobanRegistryError):
    """Safe to retry by the caller; nothing was changed."""

    retryable = True


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class PatchNotFound(NotFoundError):
    def __init__(self, patch_id: str) -> None:
        super().__init__(f"No patch found with ID: {patch_id}", patch_id=patch_id)
        self.patch_id = patch_id


class ContractNotFound(NotFoundError):
    def __init__(self, contract_id: str) -> None:
        super().__init__(f"No contract found with ID: {contract_id}", contract_id=contract_id)
        self.contract_id = contract_id


class ArtifactNotFound(NotFoundError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Artifact not found: {path}", path=path)
        self.path = path


class AbiNotFound(NotFoundError):
    def __init__(self, contract_id: str) -> None:
        super().__init__("Contract has no ABI", contract_id=contract_id)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class InvalidSeverity(ValidationError):
    def __init__(self, value: str) -> None:
        super().__init__(
            f"invalid severity {value!r}; expected one of: low, medium, high, critical",
            value=value,
        )
        self.value = value


class InvalidRollout(ValidationError):
    def __init__(self, value: Any) -> None:
        super().__init__(f"rollout percentage must be an integer in [0, 100], got {value!r}", value=value)
        self.value = value


class InvalidVersion(ValidationError):
    def __init__(self, value: str) -> None:
        super().__init__(f"target version must be a semantic version (MAJOR.MINOR.PATCH), got {value!r}")


class InvalidHash(ValidationError):
    def __init__(self, value: str) -> None:
        super().__init__(f"bytecode hash must be a hex digest, got {value!r}")


class InvalidPagination(ValidationError):
    pass


class RolloutRegression(ValidationError):
    def __init__(self, patch_id: str, current: int, requested: int) -> None:
        super().__init__(
            f"rollout for {patch_id} cannot decrease from {current}% to {requested}%",
            patch_id=patch_id,
            current=current,
            requested=requested,
        )


class NotInRolloutCohort(ValidationError):
    def __init__(self, contract_id: str, patch_id: str, rollout_percentage: int) -> None:
        super().__init__(
            f"contract {contract_id} is not in the rollout cohort of {patch_id} at {rollout_percentage}%",
            contract_id=contract_id,
            patch_id=patch_id,
            rollout_percentage=rollout_percentage,
        )


class PatchWithdrawn(ValidationError):
    def __init__(self, patch_id: str) -> None:
        super().__init__(f"patch {patch_id} has been withdrawn", patch_id=patch_id)


class PatchImmutable(ValidationError):
    def __init__(self, patch_id: str) -> None:
        super().__init__(
            f"patch {patch_id}: version, hash, severity and created_at cannot change after creation",
            patch_id=patch_id,
        )


class InvalidConfig(ValidationError):
    """A config value is missing or not one of the accepted choices."""

    pass


# ---------------------------------------------------------------------------
# Conflict
# ---------------------------------------------------------------------------


class WriteConflict(ConflictError):
    """Conditional contract write lost: the stored hash no longer matches the expected one."""

    def __init__(self, contract_id: str, expected_hash: Optional[str], actual_hash: Optional[str] = None) -> None:
        super().__init__(
            f"contract {contract_id} hash changed (expected {expected_hash}, found {actual_hash})",
            contract_id=contract_id,
            expected_hash=expected_hash,
            actual_hash=actual_hash,
        )


class ConcurrentMigrationConflict(ConflictError):
    pass


class ContractAlreadyExists(ConflictError):
    def __init__(self, contract_id: str) -> None:
        super().__init__(f"Contract already published: {contract_id}", contract_id=contract_id)


# ---------------------------------------------------------------------------
# Transient
# ---------------------------------------------------------------------------


class RegistryUnavailable(TransientError):
    pass


# ---------------------------------------------------------------------------
# Applying phase
# ---------------------------------------------------------------------------


class MigrationFailed(SorobanRegistryError):
    """
    Failure inside the applying phase. Injected (simulate_fail) and genuine failures
    share this type and message shape; the engine records it as a failed outcome.
    """

    pass


__all__ = [
    "AbiNotFound",
    "ArtifactNotFound",
    "ConcurrentMigrationConflict",
    "ConflictError",
    "ContractAlreadyExists",
    "ContractNotFound",
    "InvalidConfig",
    "InvalidHash",
    "InvalidPagination",
    "InvalidRollout",
    "InvalidSeverity",
    "InvalidVersion",
    "MigrationFailed",
    "NotFoundError",
    "NotInRolloutCohort",
    "PatchImmutable",
    "PatchNotFound",
    "PatchWithdrawn",
    "RegistryUnavailable",
    "RolloutRegression",
    "SorobanRegistryError",
    "TransientError",
    "ValidationError",
    "WriteConflict",
]
