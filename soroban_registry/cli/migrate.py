"""
Migrate one contract to an explicit wasm artifact.
Usage: soroban-registry migrate <contract_id> <wasm> [--simulate-fail] [--dry-run] [--version V]
Exit code 6 when the attempt is recorded as failed (simulated or genuine).
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from soroban_registry import config
from soroban_registry.patches.migration import ArtifactTarget, MigrationEngine
from soroban_registry.store.resilience import RetryConfig

from ._common import add_backend_args, open_client, print_record, run


def cmd_migrate(args: argparse.Namespace) -> int:
    engine = MigrationEngine(
        open_client(args),
        conflict_recheck=RetryConfig(max_retries=config.conflict_recheck_attempts(), base_delay_s=0.1, max_delay_s=1.0),
    )
    record = engine.migrate(
        args.contract_id,
        ArtifactTarget(args.wasm, version=args.version),
        dry_run=args.dry_run,
        simulate_fail=args.simulate_fail,
    )
    return print_record(record)


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    ap = argparse.ArgumentParser(prog="soroban-registry migrate", description="Migrate a contract to a wasm artifact")
    add_backend_args(ap)
    ap.add_argument("contract_id")
    ap.add_argument("wasm", help="Path to the target .wasm file")
    ap.add_argument("--simulate-fail", action="store_true", help="Fail during apply; contract left unchanged")
    ap.add_argument("--dry-run", action="store_true", help="Preview only; never writes the contract")
    ap.add_argument("--version", default=None, help="Version to record (default: keep the current version)")
    args = ap.parse_args(argv)
    return run(cmd_migrate, args)


if __name__ == "__main__":
    raise SystemExit(main())
