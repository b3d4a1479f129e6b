"""
RegistryClient: the narrow read/write interface the rollout core consumes.

Two implementations: SqliteRegistryStore (the authoritative backing store) and
HttpRegistryClient (talks to the registry API, which itself sits on the SQLite
store). The core never caches what these return across calls.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Set, runtime_checkable

from soroban_registry.patches.models import Contract, MigrationRecord, NotificationRecord, Patch


@runtime_checkable
class RegistryClient(Protocol):
    """Protocol for registry stores used by PatchRegistry, NotificationDispatcher and MigrationEngine."""

    # Contracts -----------------------------------------------------------

    def get_contract(self, contract_id: str) -> Contract:
        """Return the contract or raise ContractNotFound."""
        ...

    def write_contract_version(
        self,
        contract_id: str,
        expected_current_hash: Optional[str],
        new_hash: str,
        new_version: Optional[str],
    ) -> Contract:
        """
        Conditional write: set hash/version only if the stored hash equals expected_current_hash.
        Raises WriteConflict when it does not, ContractNotFound when the contract is missing.
        """
        ...

    def list_contract_ids(self) -> List[str]:
        ...

    # Patches -------------------------------------------------------------

    def get_patch(self, patch_id: str) -> Patch:
        """Return the patch or raise PatchNotFound."""
        ...

    def put_patch(self, patch: Patch) -> None:
        ...

    def list_patches(self) -> List[Patch]:
        ...

    # Migration audit -----------------------------------------------------

    def record_migration(self, record: MigrationRecord) -> None:
        ...

    def find_migration(
        self,
        contract_id: str,
        patch_id: Optional[str],
        target_hash: Optional[str] = None,
    ) -> Optional[MigrationRecord]:
        """Latest non-dry-run applied record for (contract, patch[, target_hash]) or None."""
        ...

    def list_migrations(
        self,
        contract_id: Optional[str] = None,
        patch_id: Optional[str] = None,
    ) -> List[MigrationRecord]:
        ...

    # Notifications -------------------------------------------------------

    def record_notification(self, record: NotificationRecord) -> None:
        ...

    def notified_contract_ids(self, patch_id: str) -> Set[str]:
        """Contracts with at least one delivered notice for patch_id."""
        ...
