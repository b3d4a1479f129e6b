"""
CLI for the contract catalogue: search, info, list, publish.
Usage: soroban-registry search <query> [--verified-only] [--category C]
       soroban-registry info <contract_id>
       soroban-registry list [--limit N]
       soroban-registry publish <contract_id> <name> --publisher P [--wasm PATH] [--version V] ...
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from soroban_registry.core.errors import AbiNotFound
from soroban_registry.patches.artifacts import load_artifact

from ._common import EXIT_OK, add_backend_args, open_client, print_json, run


def cmd_search(args: argparse.Namespace) -> int:
    items, total = open_client(args).search_contracts(
        args.query,
        verified_only=args.verified_only,
        category=args.category,
        page=args.page,
        limit=args.limit,
    )
    for contract in items:
        print_json(contract.to_dict())
    print(f"{len(items)} of {total} contracts", file=sys.stderr)
    return EXIT_OK


def cmd_list(args: argparse.Namespace) -> int:
    items, _ = open_client(args).search_contracts(None, page=1, limit=args.limit)
    for contract in items:
        print_json(contract.to_dict())
    return EXIT_OK


def cmd_info(args: argparse.Namespace) -> int:
    client = open_client(args)
    out = client.get_contract(args.contract_id).to_dict()
    try:
        out["abi"] = client.get_abi(args.contract_id)
    except AbiNotFound:
        out["abi"] = None
    print_json(out)
    return EXIT_OK


def cmd_publish(args: argparse.Namespace) -> int:
    wasm_hash = None
    if args.wasm:
        wasm_hash = load_artifact(args.wasm).wasm_hash
    tags = [t.strip() for t in (args.tags or "").split(",") if t.strip()]
    contract = open_client(args).publish_contract(
        args.contract_id,
        args.name,
        args.publisher,
        description=args.description,
        category=args.category,
        tags=tags,
        network=args.network,
        wasm_hash=wasm_hash,
        version=args.version,
    )
    print_json(contract.to_dict())
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    ap = argparse.ArgumentParser(prog="soroban-registry", description="Contract catalogue")
    add_backend_args(ap)
    sub = ap.add_subparsers(dest="command", required=True)

    p_search = sub.add_parser("search", help="Search contracts by name, description or id")
    p_search.add_argument("query")
    p_search.add_argument("--verified-only", action="store_true")
    p_search.add_argument("--category", default=None)
    p_search.add_argument("--page", type=int, default=1)
    p_search.add_argument("--limit", type=int, default=20)
    p_search.set_defaults(run=cmd_search)

    p_info = sub.add_parser("info", help="Show one contract")
    p_info.add_argument("contract_id")
    p_info.set_defaults(run=cmd_info)

    p_list = sub.add_parser("list", help="Most recently published contracts")
    p_list.add_argument("--limit", type=int, default=20)
    p_list.set_defaults(run=cmd_list)

    p_publish = sub.add_parser("publish", help="Publish a contract")
    p_publish.add_argument("contract_id")
    p_publish.add_argument("name")
    p_publish.add_argument("--publisher", required=True, help="Publisher id (owner address)")
    p_publish.add_argument("--description", default=None)
    p_publish.add_argument("--category", default=None)
    p_publish.add_argument("--tags", default=None, help="Comma-separated tags")
    p_publish.add_argument("--network", default=None, help="mainnet | testnet | futurenet")
    p_publish.add_argument("--wasm", default=None, help="Deployed artifact; its sha256 becomes the current hash")
    p_publish.add_argument("--version", default=None)
    p_publish.set_defaults(run=cmd_publish)

    args = ap.parse_args(argv)
    return run(args.run, args)


if __name__ == "__main__":
    raise SystemExit(main())
