"""
Launch the registry API server.
Usage: soroban-registry serve [--host 127.0.0.1] [--port 3001] [--db PATH]
"""

from __future__ import annotations

import argparse
import os
import sys
from typing import List, Optional

import uvicorn


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    parser = argparse.ArgumentParser(prog="soroban-registry serve", description="Launch the registry API")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=3001, help="Port (default: 3001)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument("--db", default=None, help="SQLite store to serve (default: from config)")
    parser.add_argument("--api-url", default=None, help=argparse.SUPPRESS)
    args = parser.parse_args(argv)

    if args.db:
        # The app reads its store location from config; env is the override layer.
        os.environ["SOROBAN_REGISTRY_DB_PATH"] = args.db

    uvicorn.run("soroban_registry.api:app", host=args.host, port=args.port, reload=args.reload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
