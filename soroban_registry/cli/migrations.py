"""
Migration history for one contract, oldest first, one JSON line per record.
Usage: soroban-registry migrations <contract_id> [--include-dry-run]
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from soroban_registry.reports import migration_history_frame

from ._common import EXIT_OK, add_backend_args, open_client, print_json, run


def cmd_history(args: argparse.Namespace) -> int:
    client = open_client(args)
    client.get_contract(args.contract_id)
    df = migration_history_frame(client.list_migrations(contract_id=args.contract_id))
    if not args.include_dry_run and not df.empty:
        df = df[~df["dry_run"].astype(bool)]
    for row in df.to_dict(orient="records"):
        print_json(row)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    ap = argparse.ArgumentParser(prog="soroban-registry migrations", description="Contract migration history")
    add_backend_args(ap)
    ap.add_argument("contract_id")
    ap.add_argument("--include-dry-run", action="store_true", help="Also show previewed dry-run records")
    args = ap.parse_args(argv)
    return run(cmd_history, args)


if __name__ == "__main__":
    raise SystemExit(main())
