"""
Initialize a local registry store: create the SQLite file and run migrations.
Use: soroban-registry init [--db PATH]
Default DB path comes from config (data/soroban_registry.sqlite).
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from soroban_registry import config
from soroban_registry.store.sqlite_store import SqliteRegistryStore

from ._common import run


def cmd_init(args: argparse.Namespace) -> int:
    db_path = Path(args.db or config.db_path()).resolve()
    version = SqliteRegistryStore(db_path, create_schema=False).init_schema()
    print(f"Initialized DB: {db_path} (schema version {version})")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    ap = argparse.ArgumentParser(
        prog="soroban-registry init",
        description="Create the local SQLite registry store and run migrations.",
    )
    ap.add_argument("--db", default=None, help="DB path (default: from config)")
    ap.add_argument("--api-url", default=None, help=argparse.SUPPRESS)
    args = ap.parse_args(argv)
    return run(cmd_init, args)


if __name__ == "__main__":
    raise SystemExit(main())
