"""
Clock for records and reports. SOROBAN_REGISTRY_DETERMINISTIC_TIME pins it
(ISO format, e.g. 2026-01-01T00:00:00Z) so stored timestamps are reproducible in tests.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone

_ENV = "SOROBAN_REGISTRY_DETERMINISTIC_TIME"


def parse_utc_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; a trailing Z or a missing offset means UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def utc_now() -> datetime:
    fixed = os.environ.get(_ENV, "").strip()
    if fixed:
        return parse_utc_iso(fixed)
    return datetime.now(timezone.utc)


def now_utc_iso() -> str:
    """Current UTC time, seconds precision, with a Z suffix."""
    return utc_now().isoformat(timespec="seconds").replace("+00:00", "Z")
