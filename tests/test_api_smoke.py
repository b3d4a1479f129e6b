"""Smoke tests for the registry API endpoints."""

from __future__ import annotations

import pytest
from starlette.testclient import TestClient

from soroban_registry.api import app
from tests.fakes import make_store, publish_fleet


@pytest.fixture()
def store(tmp_path, monkeypatch):
    s = make_store(tmp_path)
    monkeypatch.setattr("soroban_registry.api._db_path", lambda: s.db_path)
    return s


@pytest.fixture()
def client(store):
    return TestClient(app)


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert "version" in data
    assert "timestamp" in data
    assert data["uptime_secs"] >= 0


def test_health_degraded_when_store_unusable(tmp_path, monkeypatch):
    monkeypatch.setattr("soroban_registry.api._db_path", lambda: str(tmp_path))
    resp = TestClient(app).get("/health")
    assert resp.status_code == 503
    assert resp.json()["status"] == "degraded"


def test_stats(client, store):
    publish_fleet(store, 4)
    assert client.get("/api/stats").json() == {
        "total_contracts": 4,
        "verified_contracts": 0,
        "total_publishers": 4,
    }


def test_publish_and_get(client):
    body = {"id": "C1", "name": "amm", "publisher_id": "G1", "tags": ["defi"], "abi": {"fns": ["swap"]}}
    resp = client.post("/api/contracts", json=body)
    assert resp.status_code == 201
    assert resp.json()["tags"] == ["defi"]
    assert client.get("/api/contracts/C1").json()["name"] == "amm"
    assert client.get("/api/contracts/C1/abi").json() == {"fns": ["swap"]}
    dup = client.post("/api/contracts", json=body)
    assert dup.status_code == 409
    assert dup.json()["error"] == "ContractAlreadyExists"


def test_publish_malformed_body(client):
    resp = client.post("/api/contracts", json={"name": "no id"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "ValidationError"


def test_contract_not_found(client):
    resp = client.get("/api/contracts/NOPE")
    assert resp.status_code == 404
    assert resp.json() == {
        "error": "ContractNotFound",
        "message": "No contract found with ID: NOPE",
        "details": {"contract_id": "NOPE"},
    }


def test_abi_not_found(client, store):
    publish_fleet(store, 1)
    resp = client.get("/api/contracts/C0000/abi")
    assert resp.status_code == 404
    assert resp.json()["error"] == "AbiNotFound"


def test_list_paginates_with_link_header(client, store):
    publish_fleet(store, 25)
    resp = client.get("/api/contracts", params={"page": 2, "limit": 10})
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 25
    assert data["total_pages"] == 3
    assert len(data["items"]) == 10
    link = resp.headers["link"]
    assert 'rel="prev"' in link and 'rel="next"' in link
    assert "page=1" in link and "page=3" in link


def test_list_clamps_limit_and_rejects_bad_page(client, store):
    publish_fleet(store, 3)
    assert client.get("/api/contracts", params={"limit": 1000}).json()["limit"] == 100
    bad = client.get("/api/contracts", params={"page": 0})
    assert bad.status_code == 400
    assert bad.json()["error"] == "InvalidPagination"


def test_contract_ids(client, store):
    publish_fleet(store, 3)
    assert client.get("/api/contracts/ids").json() == {"ids": ["C0000", "C0001", "C0002"]}


def test_conditional_version_write(client, store):
    publish_fleet(store, 1, wasm_hash="aa")
    ok = client.post("/api/contracts/C0000/version", json={"expected_current_hash": "aa", "new_hash": "bb"})
    assert ok.status_code == 200
    assert ok.json()["current_wasm_hash"] == "bb"
    lost = client.post("/api/contracts/C0000/version", json={"expected_current_hash": "aa", "new_hash": "cc"})
    assert lost.status_code == 409
    assert lost.json()["error"] == "WriteConflict"


def test_patch_not_found(client):
    resp = client.get("/api/patches/patch_missing")
    assert resp.status_code == 404
    assert resp.json()["message"] == "No patch found with ID: patch_missing"
    assert client.get("/api/patches/patch_missing/notifications").status_code == 404


def test_put_patch_id_mismatch(client):
    body = {
        "id": "patch_a",
        "target_version": "1.0.0",
        "bytecode_hash": "ab",
        "severity": "low",
        "rollout_percentage": 0,
        "status": "draft",
        "created_at": "2026-01-01T00:00:00Z",
    }
    assert client.put("/api/patches/patch_b", json=body).status_code == 400
    assert client.put("/api/patches/patch_a", json=body).status_code == 200
    assert client.get("/api/patches").json()["items"][0]["id"] == "patch_a"
    body["severity"] = "apocalyptic"
    bad = client.put("/api/patches/patch_a", json=body)
    assert bad.status_code == 400
    assert bad.json()["error"] == "InvalidSeverity"


def test_latest_applied_requires_contract(client):
    resp = client.get("/api/migrations", params={"latest_applied": "true"})
    assert resp.status_code == 400
    assert client.get("/api/migrations").json() == {"items": []}


def test_unknown_route(client):
    resp = client.get("/api/nothing/here")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Route not found"}


def _patch_body(**overrides):
    body = {
        "id": "patch_a",
        "target_version": "1.0.0",
        "bytecode_hash": "ab",
        "severity": "low",
        "rollout_percentage": 10,
        "status": "rolling_out",
        "created_at": "2026-01-01T00:00:00Z",
    }
    body.update(overrides)
    return body


def test_put_patch_returns_stored_row_and_refuses_identity_changes(client):
    assert client.put("/api/patches/patch_a", json=_patch_body()).status_code == 200
    resp = client.put("/api/patches/patch_a", json=_patch_body(rollout_percentage=30))
    assert resp.status_code == 200
    assert resp.json()["rollout_percentage"] == 30

    resp = client.put("/api/patches/patch_a", json=_patch_body(target_version="9.9.9", rollout_percentage=30))
    assert resp.status_code == 400
    assert resp.json()["error"] == "PatchImmutable"
    assert client.get("/api/patches/patch_a").json()["target_version"] == "1.0.0"


def test_put_patch_cannot_revive_withdrawn(client):
    client.put("/api/patches/patch_a", json=_patch_body())
    client.put("/api/patches/patch_a", json=_patch_body(status="withdrawn"))
    resp = client.put("/api/patches/patch_a", json=_patch_body(status="rolling_out", rollout_percentage=50))
    assert resp.status_code == 400
    assert resp.json()["error"] == "PatchWithdrawn"
    assert client.get("/api/patches/patch_a").json()["status"] == "withdrawn"
