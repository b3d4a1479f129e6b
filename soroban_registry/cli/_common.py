"""
Shared CLI plumbing: backend selection, JSON-lines output, error -> exit code.

Exit codes: 0 ok (including idempotent no-ops), 2 validation, 3 not found,
4 conflict, 5 transient (safe to retry), 6 migration outcome failed, 1 anything else.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Callable, Union

from soroban_registry import config
from soroban_registry.core.errors import (
    ConflictError,
    InvalidRollout,
    NotFoundError,
    SorobanRegistryError,
    TransientError,
    ValidationError,
)
from soroban_registry.patches.models import MigrationOutcome, MigrationRecord
from soroban_registry.store.http_client import HttpRegistryClient
from soroban_registry.store.resilience import RetryConfig
from soroban_registry.store.sqlite_store import SqliteRegistryStore

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_VALIDATION = 2
EXIT_NOT_FOUND = 3
EXIT_CONFLICT = 4
EXIT_TRANSIENT = 5
EXIT_MIGRATION_FAILED = 6

Client = Union[SqliteRegistryStore, HttpRegistryClient]


def add_backend_args(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--api-url", default=None, help="Registry API URL (default: from config)")
    ap.add_argument("--db", default=None, help="Use this local SQLite store instead of the API")


def open_client(args: argparse.Namespace) -> Client:
    """SQLite store when --db is given, otherwise the HTTP client against --api-url / config."""
    db = getattr(args, "db", None)
    if db:
        return SqliteRegistryStore(db)
    return HttpRegistryClient(
        getattr(args, "api_url", None) or config.api_url(),
        timeout_s=config.http_timeout_s(),
        retry_config=RetryConfig.from_settings(config.retry_settings()),
    )


def parse_percentage(text: str) -> int:
    try:
        return int(str(text).strip())
    except ValueError as e:
        raise InvalidRollout(text) from e


def exit_code_for(err: SorobanRegistryError) -> int:
    if isinstance(err, ValidationError):
        return EXIT_VALIDATION
    if isinstance(err, NotFoundError):
        return EXIT_NOT_FOUND
    if isinstance(err, ConflictError):
        return EXIT_CONFLICT
    if isinstance(err, TransientError):
        return EXIT_TRANSIENT
    return EXIT_ERROR


def print_json(obj: Any) -> None:
    print(json.dumps(obj, default=str))


def print_record(record: MigrationRecord) -> int:
    """Print a migration record; exit code 6 when its outcome is failed."""
    print_json(record.to_dict())
    if record.outcome == MigrationOutcome.FAILED:
        print(f"{record.error_kind}: {record.error_message}", file=sys.stderr)
        return EXIT_MIGRATION_FAILED
    return EXIT_OK


def run(fn: Callable[[argparse.Namespace], int], args: argparse.Namespace) -> int:
    """Run a command function, turning package errors into `<Kind>: <message>` on stderr."""
    try:
        return fn(args)
    except SorobanRegistryError as e:
        print(f"{e.kind}: {e.message}", file=sys.stderr)
        return exit_code_for(e)
