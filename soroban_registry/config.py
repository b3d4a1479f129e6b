"""
Load config from config.yaml with optional env overrides.
Single source of truth for the store location, API URL, HTTP timeouts, retry
policy, notification channel, and log level.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

# Defaults if no YAML or env
_DEFAULTS: Dict[str, Any] = {
    "store": {
        "db_path": "data/soroban_registry.sqlite",
        "api_url": "http://localhost:3001",
        "http_timeout_s": 10.0,
    },
    "retry": {
        "max_retries": 3,
        "base_delay_s": 0.5,
        "max_delay_s": 10.0,
        "backoff_factor": 1.5,
    },
    "notifications": {
        "channel": "log",
        "webhook_url": None,
        "timeout_s": 5.0,
    },
    "migration": {
        "conflict_recheck_attempts": 3,
    },
    "logging": {"level": "WARNING"},
}


def _config_yaml_path() -> Path:
    """config.yaml lives at repo root (parent of package dir) unless SOROBAN_REGISTRY_CONFIG points elsewhere."""
    explicit = os.environ.get("SOROBAN_REGISTRY_CONFIG", "").strip()
    if explicit:
        return Path(explicit)
    return Path(__file__).resolve().parent.parent / "config.yaml"


def _load_yaml() -> dict:
    config_path = _config_yaml_path()
    if not config_path.exists():
        return {}
    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data if isinstance(data, dict) else {}


def _deep_merge(base: dict, override: dict) -> dict:
    out = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _env_overrides() -> dict:
    overrides: dict = {}
    path = os.environ.get("SOROBAN_REGISTRY_DB_PATH")
    if path:
        overrides.setdefault("store", {})["db_path"] = path
    api_url = os.environ.get("SOROBAN_REGISTRY_API_URL")
    if api_url:
        overrides.setdefault("store", {})["api_url"] = api_url
    webhook = os.environ.get("SOROBAN_REGISTRY_WEBHOOK_URL")
    if webhook:
        overrides.setdefault("notifications", {})["webhook_url"] = webhook
        overrides["notifications"]["channel"] = "webhook"
    level = os.environ.get("SOROBAN_REGISTRY_LOG_LEVEL")
    if level:
        overrides.setdefault("logging", {})["level"] = level
    return overrides


def get_config() -> dict:
    """Return merged config: defaults <- config.yaml <- env."""
    merged = _deep_merge(_DEFAULTS, _load_yaml())
    merged = _deep_merge(merged, _env_overrides())
    return merged


# Convenience accessors
def db_path() -> str:
    return str(get_config()["store"]["db_path"])


def api_url() -> str:
    return str(get_config()["store"]["api_url"]).rstrip("/")


def http_timeout_s() -> float:
    return float(get_config()["store"]["http_timeout_s"])


def retry_settings() -> Dict[str, Any]:
    return dict(get_config()["retry"])


def notification_settings() -> Dict[str, Any]:
    return dict(get_config()["notifications"])


def conflict_recheck_attempts() -> int:
    return int(get_config()["migration"]["conflict_recheck_attempts"])


def log_level(override: Optional[str] = None) -> str:
    if override:
        return override.upper()
    return str(get_config()["logging"]["level"]).upper()
