"""
Top-level CLI dispatcher: soroban-registry [--api-url URL] [--db PATH] [--log-level L] <command> [args...].
Global backend flags are forwarded to the command module; logging is configured once here.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from soroban_registry import __version__, config

_CONTRACT_COMMANDS = ("search", "info", "list", "publish")


def _configure_logging(level: Optional[str]) -> None:
    logging.basicConfig(
        level=getattr(logging, config.log_level(level), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    parser = argparse.ArgumentParser(
        prog="soroban-registry",
        description="Soroban contract registry: catalogue, patch rollout and migrations",
    )
    parser.add_argument("--version", action="version", version=f"soroban-registry {__version__}")
    parser.add_argument("--api-url", default=None, help="Registry API URL (default: from config)")
    parser.add_argument("--db", default=None, help="Use a local SQLite store instead of the API")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ... (default: from config)")
    subparsers = parser.add_subparsers(dest="command", help="command")
    for name, help_text in (
        ("patch", "Security patch lifecycle, notification and apply"),
        ("migrate", "Migrate a contract to a wasm artifact"),
        ("migrations", "Migration history for a contract"),
        ("search", "Search contracts"),
        ("info", "Show a contract"),
        ("list", "List contracts"),
        ("publish", "Publish a contract"),
        ("init", "Create the local SQLite store"),
        ("serve", "Run the registry API"),
    ):
        subparsers.add_parser(name, help=help_text, add_help=False)

    args, rest = parser.parse_known_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    _configure_logging(args.log_level)

    forwarded: List[str] = []
    if args.api_url:
        forwarded += ["--api-url", args.api_url]
    if args.db:
        forwarded += ["--db", args.db]

    cmd = args.command
    if cmd == "patch":
        from soroban_registry.cli import patch as mod

        return mod.main(forwarded + rest)
    if cmd == "migrate":
        from soroban_registry.cli import migrate as mod

        return mod.main(forwarded + rest)
    if cmd == "migrations":
        from soroban_registry.cli import migrations as mod

        return mod.main(forwarded + rest)
    if cmd in _CONTRACT_COMMANDS:
        from soroban_registry.cli import contracts as mod

        return mod.main(forwarded + [cmd] + rest)
    if cmd == "init":
        from soroban_registry.cli import init_db as mod

        return mod.main(forwarded + rest)
    if cmd == "serve":
        from soroban_registry.cli import serve as mod

        return mod.main(forwarded + rest)

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
