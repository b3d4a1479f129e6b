"""
HTTP RegistryClient: talks to the registry API (soroban_registry.api) with requests.

Every call carries an explicit timeout. Timeouts, connection errors and 5xx
responses surface as RegistryUnavailable. Error bodies ({"error", "message",
"details"}) are rebuilt into the matching package exception so the kind survives
the wire. GETs are retried with exponential backoff; writes are sent once.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Set, Tuple, Type

import requests

from soroban_registry.core import errors as errors_mod
from soroban_registry.core.errors import (
    ConflictError,
    NotFoundError,
    RegistryUnavailable,
    SorobanRegistryError,
    ValidationError,
)
from soroban_registry.patches.models import Contract, MigrationRecord, NotificationRecord, Patch

from .resilience import RetryConfig, resilient_call

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 10.0


def _category_for_status(status: int) -> Type[SorobanRegistryError]:
    if status == 404:
        return NotFoundError
    if status == 409:
        return ConflictError
    if 400 <= status < 500:
        return ValidationError
    return RegistryUnavailable


def error_from_response(resp: requests.Response) -> SorobanRegistryError:
    """Rebuild the package exception described by an error response."""
    category = _category_for_status(resp.status_code)
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    kind = str(body.get("error") or category.__name__)
    message = str(body.get("message") or body.get("error") or f"HTTP {resp.status_code}")
    details = body.get("details") if isinstance(body.get("details"), dict) else {}

    cls = getattr(errors_mod, kind, None)
    if not (isinstance(cls, type) and issubclass(cls, category)):
        return category(message, **details)
    # Kind-specific constructors take ids, not messages; keep the server's message verbatim.
    err = cls.__new__(cls)
    SorobanRegistryError.__init__(err, message, **details)
    for key, value in details.items():
        setattr(err, key, value)
    return err


class HttpRegistryClient:
    """RegistryClient over the registry HTTP API."""

    def __init__(
        self,
        base_url: str,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        retry_config: Optional[RetryConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.retry_config = retry_config or RetryConfig()
        self._session = session or requests.Session()
        self._session.headers.setdefault("Accept", "application/json")

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.request(method, url, timeout=self.timeout_s, **kwargs)
        except requests.Timeout as e:
            raise RegistryUnavailable(f"timed out after {self.timeout_s}s: {method} {url}") from e
        except requests.ConnectionError as e:
            raise RegistryUnavailable(f"cannot reach registry at {self.base_url}: {e}") from e
        if resp.status_code >= 400:
            err = error_from_response(resp)
            logger.debug("%s %s -> %s %s", method, url, resp.status_code, err.kind)
            raise err
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return resilient_call(self._request, "GET", path, params=params, retry_config=self.retry_config)

    # Contracts -----------------------------------------------------------

    def get_contract(self, contract_id: str) -> Contract:
        return Contract.from_dict(self._get(f"/api/contracts/{contract_id}"))

    def write_contract_version(
        self,
        contract_id: str,
        expected_current_hash: Optional[str],
        new_hash: str,
        new_version: Optional[str],
    ) -> Contract:
        body = {
            "expected_current_hash": expected_current_hash,
            "new_hash": new_hash,
            "new_version": new_version,
        }
        data = self._request("POST", f"/api/contracts/{contract_id}/version", json=body)
        return Contract.from_dict(data)

    def list_contract_ids(self) -> List[str]:
        return list(self._get("/api/contracts/ids")["ids"])

    def publish_contract(self, contract_id: str, name: str, publisher_id: str, **fields: Any) -> Contract:
        body = {"id": contract_id, "name": name, "publisher_id": publisher_id}
        body.update({k: v for k, v in fields.items() if v is not None})
        return Contract.from_dict(self._request("POST", "/api/contracts", json=body))

    def search_contracts(
        self,
        query: Optional[str] = None,
        *,
        verified_only: bool = False,
        category: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Contract], int]:
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if query:
            params["query"] = query
        if verified_only:
            params["verified_only"] = "true"
        if category:
            params["category"] = category
        data = self._get("/api/contracts", params=params)
        return [Contract.from_dict(d) for d in data["items"]], int(data["total"])

    def get_abi(self, contract_id: str) -> Any:
        return self._get(f"/api/contracts/{contract_id}/abi")

    # Patches -------------------------------------------------------------

    def get_patch(self, patch_id: str) -> Patch:
        return Patch.from_dict(self._get(f"/api/patches/{patch_id}"))

    def put_patch(self, patch: Patch) -> None:
        self._request("PUT", f"/api/patches/{patch.id}", json=patch.to_dict())

    def list_patches(self) -> List[Patch]:
        return [Patch.from_dict(d) for d in self._get("/api/patches")["items"]]

    # Migration audit -----------------------------------------------------

    def record_migration(self, record: MigrationRecord) -> None:
        self._request("POST", "/api/migrations", json=record.to_dict())

    def find_migration(
        self,
        contract_id: str,
        patch_id: Optional[str],
        target_hash: Optional[str] = None,
    ) -> Optional[MigrationRecord]:
        # latest_applied without patch_id matches records that have no patch.
        params: Dict[str, Any] = {"contract_id": contract_id, "latest_applied": "true"}
        if patch_id is not None:
            params["patch_id"] = patch_id
        if target_hash is not None:
            params["target_hash"] = target_hash
        items = self._get("/api/migrations", params=params)["items"]
        return MigrationRecord.from_dict(items[0]) if items else None

    def list_migrations(
        self,
        contract_id: Optional[str] = None,
        patch_id: Optional[str] = None,
    ) -> List[MigrationRecord]:
        params = {k: v for k, v in (("contract_id", contract_id), ("patch_id", patch_id)) if v is not None}
        return [MigrationRecord.from_dict(d) for d in self._get("/api/migrations", params=params)["items"]]

    # Notifications -------------------------------------------------------

    def record_notification(self, record: NotificationRecord) -> None:
        self._request("POST", f"/api/patches/{record.patch_id}/notifications", json=record.to_dict())

    def notified_contract_ids(self, patch_id: str) -> Set[str]:
        return set(self._get(f"/api/patches/{patch_id}/notifications")["notified_contract_ids"])

    def list_notifications(self, patch_id: str) -> List[NotificationRecord]:
        items = self._get(f"/api/patches/{patch_id}/notifications")["items"]
        return [NotificationRecord.from_dict(d) for d in items]
