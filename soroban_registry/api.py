"""
Registry REST API using FastAPI, backed by the SQLite store.

Serves the contract catalogue (search, detail, ABI, stats) and the endpoints
HttpRegistryClient needs to run patch rollout and migrations remotely.
Errors are JSON {"error": <kind>, "message": <text>} with 404 / 400 / 409 / 503.
No auth.
"""
from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar

from fastapi import Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .core.errors import (
    ConflictError,
    NotFoundError,
    SorobanRegistryError,
    TransientError,
    ValidationError,
)
from .patches.models import MigrationRecord, NotificationRecord, Patch
from .store.sqlite_store import SqliteRegistryStore
from .timeutils import now_utc_iso

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STARTED = time.monotonic()

app = FastAPI(title="Soroban Registry API", version=__version__)


def _db_path() -> str:
    from . import config

    return config.db_path()


def _store() -> SqliteRegistryStore:
    return SqliteRegistryStore(_db_path())


def status_for_error(err: SorobanRegistryError) -> int:
    if isinstance(err, NotFoundError):
        return 404
    if isinstance(err, ValidationError):
        return 400
    if isinstance(err, ConflictError):
        return 409
    if isinstance(err, TransientError):
        return 503
    return 500


def _parse(fn: Callable[[Dict[str, Any]], T], body: Dict[str, Any]) -> T:
    try:
        return fn(body)
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"malformed request body: {type(e).__name__}: {e}") from e


@app.exception_handler(SorobanRegistryError)
def _registry_error(request: Request, exc: SorobanRegistryError) -> JSONResponse:
    status = status_for_error(exc)
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_dict(), status_code=status)


@app.exception_handler(StarletteHTTPException)
def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return JSONResponse({"error": "Route not found"}, status_code=404)
    return JSONResponse({"error": "HTTPError", "message": str(exc.detail)}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        {"error": "ValidationError", "message": "invalid request parameters", "details": {"errors": str(exc.errors())}},
        status_code=400,
    )


# Infrastructure ----------------------------------------------------------


@app.get("/health")
def health() -> JSONResponse:
    body: Dict[str, Any] = {
        "status": "ok",
        "version": __version__,
        "timestamp": now_utc_iso(),
        "uptime_secs": int(time.monotonic() - _STARTED),
    }
    try:
        ready = _store().ping()
    except SorobanRegistryError as e:
        logger.warning("Health check: store unavailable: %s", e.message)
        ready = False
    if not ready:
        body["status"] = "degraded"
        return JSONResponse(body, status_code=503)
    return JSONResponse(body)


@app.get("/api/stats")
def stats() -> Dict[str, int]:
    return _store().stats()


# Contracts ---------------------------------------------------------------


def _link_header(request: Request, page: int, total_pages: int) -> Optional[str]:
    links: List[str] = []
    if page > 1:
        links.append(f'<{request.url.include_query_params(page=page - 1)}>; rel="prev"')
    if page < total_pages:
        links.append(f'<{request.url.include_query_params(page=page + 1)}>; rel="next"')
    return ", ".join(links) or None


@app.get("/api/contracts")
def list_contracts(
    request: Request,
    query: Optional[str] = None,
    verified_only: bool = False,
    category: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> JSONResponse:
    items, total = _store().search_contracts(
        query, verified_only=verified_only, category=category, page=page, limit=limit
    )
    limit = max(1, min(limit, 100))
    total_pages = max(1, math.ceil(total / limit))
    body = {
        "items": [c.to_dict() for c in items],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
    }
    headers = {}
    link = _link_header(request, page, total_pages)
    if link:
        headers["Link"] = link
    return JSONResponse(body, headers=headers)


@app.get("/api/contracts/ids")
def contract_ids() -> Dict[str, List[str]]:
    return {"ids": _store().list_contract_ids()}


@app.get("/api/contracts/{contract_id}")
def get_contract(contract_id: str) -> Dict[str, Any]:
    return _store().get_contract(contract_id).to_dict()


@app.get("/api/contracts/{contract_id}/abi")
def get_abi(contract_id: str) -> Any:
    return _store().get_abi(contract_id)


@app.post("/api/contracts", status_code=201)
def publish_contract(body: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    def _publish(d: Dict[str, Any]):
        tags = d.get("tags") or []
        if not isinstance(tags, list):
            raise TypeError("tags must be a list")
        return _store().publish_contract(
            str(d["id"]),
            str(d["name"]),
            str(d["publisher_id"]),
            description=d.get("description"),
            category=d.get("category"),
            tags=[str(t) for t in tags],
            network=d.get("network"),
            wasm_hash=d.get("wasm_hash"),
            version=d.get("version"),
            abi=d.get("abi"),
            is_verified=bool(d.get("is_verified", False)),
        )

    return _parse(_publish, body).to_dict()


@app.post("/api/contracts/{contract_id}/version")
def write_contract_version(contract_id: str, body: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    new_hash = _parse(lambda d: str(d["new_hash"]), body)
    contract = _store().write_contract_version(
        contract_id,
        expected_current_hash=body.get("expected_current_hash"),
        new_hash=new_hash,
        new_version=body.get("new_version"),
    )
    return contract.to_dict()


# Patches -----------------------------------------------------------------


@app.get("/api/patches")
def list_patches() -> Dict[str, List[Dict[str, Any]]]:
    return {"items": [p.to_dict() for p in _store().list_patches()]}


@app.get("/api/patches/{patch_id}")
def get_patch(patch_id: str) -> Dict[str, Any]:
    return _store().get_patch(patch_id).to_dict()


@app.put("/api/patches/{patch_id}")
def put_patch(patch_id: str, body: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    patch = _parse(Patch.from_dict, body)
    if patch.id != patch_id:
        raise ValidationError(f"patch id in body ({patch.id}) does not match path ({patch_id})")
    store = _store()
    store.put_patch(patch)
    return store.get_patch(patch_id).to_dict()


@app.get("/api/patches/{patch_id}/notifications")
def list_notifications(patch_id: str) -> Dict[str, Any]:
    store = _store()
    store.get_patch(patch_id)
    return {
        "items": [n.to_dict() for n in store.list_notifications(patch_id)],
        "notified_contract_ids": sorted(store.notified_contract_ids(patch_id)),
    }


@app.post("/api/patches/{patch_id}/notifications", status_code=201)
def record_notification(patch_id: str, body: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    record = _parse(NotificationRecord.from_dict, body)
    if record.patch_id != patch_id:
        raise ValidationError(f"patch id in body ({record.patch_id}) does not match path ({patch_id})")
    store = _store()
    store.get_patch(patch_id)
    store.record_notification(record)
    return record.to_dict()


# Migrations --------------------------------------------------------------


@app.post("/api/migrations", status_code=201)
def record_migration(body: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    record = _parse(MigrationRecord.from_dict, body)
    _store().record_migration(record)
    return record.to_dict()


@app.get("/api/migrations")
def list_migrations(
    contract_id: Optional[str] = None,
    patch_id: Optional[str] = None,
    target_hash: Optional[str] = None,
    latest_applied: bool = False,
) -> Dict[str, List[Dict[str, Any]]]:
    """
    latest_applied=true returns at most the newest non-dry-run applied record for
    contract_id; an absent patch_id then matches records with no patch.
    """
    store = _store()
    if latest_applied:
        if not contract_id:
            raise ValidationError("contract_id is required with latest_applied")
        record = store.find_migration(contract_id, patch_id, target_hash=target_hash)
        return {"items": [record.to_dict()] if record else []}
    return {"items": [r.to_dict() for r in store.list_migrations(contract_id, patch_id)]}
