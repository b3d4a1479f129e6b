"""
PatchRegistry: create patches and move them through their lifecycle.

draft (rollout 0) -> rolling_out (0 < rollout < 100) -> complete (100); any state -> withdrawn.
rollout_percentage never decreases. Every mutation is persisted through the
RegistryClient before returning; nothing is cached between calls.
"""

from __future__ import annotations

import hashlib
import logging
import re
import uuid
from dataclasses import replace
from typing import TYPE_CHECKING, List, Union

from soroban_registry.core.errors import InvalidHash, InvalidVersion, PatchWithdrawn, RolloutRegression
from soroban_registry.timeutils import now_utc_iso

from .cohort import validate_percentage
from .models import Patch, PatchStatus
from .severity import Severity

if TYPE_CHECKING:
    from soroban_registry.store.client import RegistryClient

logger = logging.getLogger(__name__)

_SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)
_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def validate_version(value: str) -> str:
    if not isinstance(value, str) or not _SEMVER_RE.match(value.strip()):
        raise InvalidVersion(str(value))
    return value.strip()


def validate_hash(value: str) -> str:
    """Return the hex digest lower-cased or raise InvalidHash."""
    if not isinstance(value, str) or not _HEX_RE.match(value.strip()):
        raise InvalidHash(str(value))
    return value.strip().lower()


def status_for_rollout(rollout_percentage: int) -> PatchStatus:
    if rollout_percentage == 0:
        return PatchStatus.DRAFT
    if rollout_percentage == 100:
        return PatchStatus.COMPLETE
    return PatchStatus.ROLLING_OUT


def _make_patch_id(target_version: str, bytecode_hash: str, created_at: str) -> str:
    """patch_ + 16 hex; a random nonce keeps identical submissions distinct."""
    payload = f"{target_version}|{bytecode_hash}|{created_at}|{uuid.uuid4().hex}"
    return f"patch_{hashlib.sha256(payload.encode('utf-8')).hexdigest()[:16]}"


class PatchRegistry:
    def __init__(self, client: "RegistryClient") -> None:
        self._client = client

    def create(
        self,
        target_version: str,
        bytecode_hash: str,
        severity: Union[str, Severity],
        rollout: int,
    ) -> Patch:
        """
        Register a new patch. Raises InvalidSeverity, InvalidRollout, InvalidVersion
        or InvalidHash on bad input; nothing is stored in that case.
        """
        sev = Severity.parse(severity)
        pct = validate_percentage(rollout)
        version = validate_version(target_version)
        digest = validate_hash(bytecode_hash)
        now = now_utc_iso()
        patch = Patch(
            id=_make_patch_id(version, digest, now),
            target_version=version,
            bytecode_hash=digest,
            severity=sev,
            rollout_percentage=pct,
            status=status_for_rollout(pct),
            created_at=now,
            updated_at=now,
        )
        self._client.put_patch(patch)
        logger.info(
            "Created patch %s (version %s, %s, %d%%, %s)",
            patch.id, version, sev, pct, patch.status.value,
        )
        return patch

    def set_rollout(self, patch_id: str, new_rollout: int) -> Patch:
        """
        Raise the rollout percentage. Lowering raises RolloutRegression and leaves
        the patch unchanged; the same value is a no-op.
        Raises PatchWithdrawn for a withdrawn patch, including one withdrawn between
        our read and our write.
        """
        patch = self._client.get_patch(patch_id)
        if patch.is_withdrawn:
            raise PatchWithdrawn(patch_id)
        pct = validate_percentage(new_rollout)
        if pct < patch.rollout_percentage:
            raise RolloutRegression(patch_id, patch.rollout_percentage, pct)
        if pct == patch.rollout_percentage:
            logger.debug("Rollout for %s already at %d%%", patch_id, pct)
            return patch
        updated = replace(
            patch,
            rollout_percentage=pct,
            status=status_for_rollout(pct),
            updated_at=now_utc_iso(),
        )
        self._client.put_patch(updated)
        logger.info(
            "Rollout for %s raised %d%% -> %d%% (%s)",
            patch_id, patch.rollout_percentage, pct, updated.status.value,
        )
        return updated

    def withdraw(self, patch_id: str) -> Patch:
        """
        Withdraw a patch. Idempotent; rollout_percentage is kept as-is. Withdrawal is
        terminal: the store refuses any later write that would bring the patch back.
        """
        while True:
            patch = self._client.get_patch(patch_id)
            if patch.is_withdrawn:
                return patch
            updated = replace(patch, status=PatchStatus.WITHDRAWN, updated_at=now_utc_iso())
            try:
                self._client.put_patch(updated)
            except RolloutRegression:
                # Rollout was raised after our read; withdraw the newer row. Bounded by 100%.
                logger.debug("Rollout for %s moved during withdraw; re-reading", patch_id)
                continue
            break
        logger.info("Withdrew patch %s", patch_id)
        return updated

    def get(self, patch_id: str) -> Patch:
        return self._client.get_patch(patch_id)

    def list(self, include_withdrawn: bool = True) -> List[Patch]:
        """All patches, most severe first, then oldest first."""
        patches = self._client.list_patches()
        if not include_withdrawn:
            patches = [p for p in patches if not p.is_withdrawn]
        return sorted(patches, key=lambda p: (-p.severity.rank, p.created_at, p.id))
