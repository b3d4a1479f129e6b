"""
NotificationDispatcher: tell owners of cohort members about a patch.

One pass lists every contract, partitions them by cohort membership at the
patch's current rollout percentage, and delivers a PatchNotice to each member
that has no delivered notice yet. A failed delivery is recorded and the pass
continues; that contract is retried on the next pass.

Delivery is at-least-once: two passes running at the same time can both see a
member as not yet notified and both send. Every notice carries a notice_id that
depends only on (patch, contract), so receivers can drop repeats.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, runtime_checkable

import requests

from soroban_registry.core.errors import InvalidConfig, NotFoundError, PatchWithdrawn
from soroban_registry.timeutils import now_utc_iso

from .cohort import cohort
from .models import Contract, DeliveryStatus, NotificationRecord, NotificationReport, Patch

if TYPE_CHECKING:
    from soroban_registry.store.client import RegistryClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatchNotice:
    patch_id: str
    target_version: str
    bytecode_hash: str
    severity: str
    contract_id: str
    publisher_id: str
    current_version: Optional[str]

    @classmethod
    def build(cls, patch: Patch, contract: Contract) -> "PatchNotice":
        return cls(
            patch_id=patch.id,
            target_version=patch.target_version,
            bytecode_hash=patch.bytecode_hash,
            severity=patch.severity.value,
            contract_id=contract.id,
            publisher_id=contract.publisher_id,
            current_version=contract.current_version,
        )

    @property
    def notice_id(self) -> str:
        """Same for every delivery of this patch to this contract."""
        digest = hashlib.sha256(f"{self.patch_id}|{self.contract_id}".encode("utf-8")).hexdigest()
        return f"ntc_{digest[:16]}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notice_id": self.notice_id,
            "patch_id": self.patch_id,
            "target_version": self.target_version,
            "bytecode_hash": self.bytecode_hash,
            "severity": self.severity,
            "contract_id": self.contract_id,
            "publisher_id": self.publisher_id,
            "current_version": self.current_version,
        }


@runtime_checkable
class NotificationChannel(Protocol):
    """Delivers one notice; raises on failure."""

    name: str

    def send(self, notice: PatchNotice) -> None:
        ...


class LogChannel:
    name = "log"

    def send(self, notice: PatchNotice) -> None:
        logger.warning(
            "Security patch %s (%s) for contract %s owned by %s: upgrade %s -> %s (hash %s)",
            notice.patch_id,
            notice.severity,
            notice.contract_id,
            notice.publisher_id,
            notice.current_version,
            notice.target_version,
            notice.bytecode_hash,
        )


class WebhookChannel:
    """POST each notice as JSON to a fixed URL."""

    name = "webhook"

    def __init__(self, url: str, timeout_s: float = 5.0, session: Optional[requests.Session] = None) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self._session = session or requests.Session()

    def send(self, notice: PatchNotice) -> None:
        resp = self._session.post(self.url, json=notice.to_dict(), timeout=self.timeout_s)
        resp.raise_for_status()


class MemoryChannel:
    """Collects notices in memory."""

    name = "memory"

    def __init__(self) -> None:
        self.notices: List[PatchNotice] = []

    def send(self, notice: PatchNotice) -> None:
        self.notices.append(notice)


def channel_from_config(settings: Dict[str, Any]) -> NotificationChannel:
    """Build the channel named in the notifications: section of config. Raises InvalidConfig."""
    kind = str(settings.get("channel") or "log").lower()
    if kind == "webhook":
        url = settings.get("webhook_url")
        if not url:
            raise InvalidConfig("notifications.channel is webhook but notifications.webhook_url is not set")
        return WebhookChannel(str(url), timeout_s=float(settings.get("timeout_s", 5.0)))
    if kind == "memory":
        return MemoryChannel()
    if kind == "log":
        return LogChannel()
    raise InvalidConfig(f"Unknown notification channel: {kind}")


class NotificationDispatcher:
    def __init__(self, client: "RegistryClient", channel: Optional[NotificationChannel] = None) -> None:
        self._client = client
        self._channel = channel if channel is not None else LogChannel()

    def notify(self, patch_id: str) -> NotificationReport:
        """
        Notify owners of cohort members not yet notified for patch_id.
        Raises PatchNotFound, or PatchWithdrawn for a withdrawn patch.
        """
        patch = self._client.get_patch(patch_id)
        if patch.is_withdrawn:
            raise PatchWithdrawn(patch_id)

        contract_ids = self._client.list_contract_ids()
        members = cohort(contract_ids, patch.id, patch.rollout_percentage)
        member_set = set(members)
        report = NotificationReport(
            patch_id=patch.id,
            rollout_percentage=patch.rollout_percentage,
            excluded={cid for cid in contract_ids if cid not in member_set},
        )
        already = self._client.notified_contract_ids(patch.id)

        for contract_id in members:
            if contract_id in already:
                report.skipped.add(contract_id)
                continue
            error = self._deliver(patch, contract_id)
            if error is None:
                report.notified.add(contract_id)
            else:
                report.failed[contract_id] = error

        logger.info(
            "Notify %s at %d%%: %d notified, %d already notified, %d failed, %d outside cohort",
            patch.id,
            patch.rollout_percentage,
            len(report.notified),
            len(report.skipped),
            len(report.failed),
            len(report.excluded),
        )
        return report

    def _deliver(self, patch: Patch, contract_id: str) -> Optional[str]:
        """Send one notice and record the attempt. Returns the error text on failure."""
        publisher_id = ""
        error: Optional[str] = None
        try:
            contract = self._client.get_contract(contract_id)
        except NotFoundError as e:
            error = f"{e.kind}: {e.message}"
        else:
            publisher_id = contract.publisher_id
            try:
                self._channel.send(PatchNotice.build(patch, contract))
            except Exception as e:
                # Channels are pluggable; any delivery error stays local to this contract.
                error = f"{type(e).__name__}: {e}"

        if error is not None:
            logger.warning("Delivery of %s to %s failed: %s", patch.id, contract_id, error)
        self._client.record_notification(
            NotificationRecord(
                patch_id=patch.id,
                contract_id=contract_id,
                publisher_id=publisher_id,
                status=DeliveryStatus.DELIVERED if error is None else DeliveryStatus.FAILED,
                timestamp=now_utc_iso(),
                error=error,
            )
        )
        return error
