"""
CLI for the patch lifecycle: create, rollout, withdraw, show, list, status, notify, apply.
Usage: soroban-registry patch create <version> <hash> <severity> <rollout>
       soroban-registry patch rollout <patch_id> <percentage>
       soroban-registry patch notify <patch_id>
       soroban-registry patch apply <contract_id> <patch_id> [--dry-run] [--wasm PATH]
Output is JSON lines on stdout.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from soroban_registry import config
from soroban_registry.patches.migration import MigrationEngine, PatchTarget
from soroban_registry.patches.notify import NotificationDispatcher, channel_from_config
from soroban_registry.patches.registry import PatchRegistry
from soroban_registry.reports import rollout_status
from soroban_registry.store.resilience import RetryConfig

from ._common import EXIT_OK, add_backend_args, open_client, parse_percentage, print_json, print_record, run


def cmd_create(args: argparse.Namespace) -> int:
    registry = PatchRegistry(open_client(args))
    patch = registry.create(args.version, args.hash, args.severity, parse_percentage(args.rollout))
    print_json(patch.to_dict())
    return EXIT_OK


def cmd_rollout(args: argparse.Namespace) -> int:
    registry = PatchRegistry(open_client(args))
    patch = registry.set_rollout(args.patch_id, parse_percentage(args.percentage))
    print_json(patch.to_dict())
    return EXIT_OK


def cmd_withdraw(args: argparse.Namespace) -> int:
    patch = PatchRegistry(open_client(args)).withdraw(args.patch_id)
    print_json(patch.to_dict())
    return EXIT_OK


def cmd_show(args: argparse.Namespace) -> int:
    print_json(PatchRegistry(open_client(args)).get(args.patch_id).to_dict())
    return EXIT_OK


def cmd_list(args: argparse.Namespace) -> int:
    for patch in PatchRegistry(open_client(args)).list(include_withdrawn=not args.active):
        print_json(patch.to_dict())
    return EXIT_OK


def cmd_status(args: argparse.Namespace) -> int:
    print_json(rollout_status(open_client(args), args.patch_id))
    return EXIT_OK


def cmd_notify(args: argparse.Namespace) -> int:
    dispatcher = NotificationDispatcher(open_client(args), channel_from_config(config.notification_settings()))
    report = dispatcher.notify(args.patch_id)
    print_json(report.to_dict())
    return EXIT_OK


def cmd_apply(args: argparse.Namespace) -> int:
    engine = MigrationEngine(
        open_client(args),
        conflict_recheck=RetryConfig(max_retries=config.conflict_recheck_attempts(), base_delay_s=0.1, max_delay_s=1.0),
    )
    record = engine.migrate(
        args.contract_id,
        PatchTarget(args.patch_id, artifact_path=args.wasm),
        dry_run=args.dry_run,
    )
    return print_record(record)


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    ap = argparse.ArgumentParser(prog="soroban-registry patch", description="Security patch rollout")
    add_backend_args(ap)
    sub = ap.add_subparsers(dest="command", required=True)

    p_create = sub.add_parser("create", help="Register a new patch")
    p_create.add_argument("version", help="Target semantic version, e.g. 1.2.0")
    p_create.add_argument("hash", help="Hex bytecode hash of the target artifact")
    p_create.add_argument("severity", help="low | medium | high | critical")
    p_create.add_argument("rollout", help="Initial rollout percentage 0-100")
    p_create.set_defaults(run=cmd_create)

    p_rollout = sub.add_parser("rollout", help="Raise the rollout percentage")
    p_rollout.add_argument("patch_id")
    p_rollout.add_argument("percentage")
    p_rollout.set_defaults(run=cmd_rollout)

    p_withdraw = sub.add_parser("withdraw", help="Withdraw a patch")
    p_withdraw.add_argument("patch_id")
    p_withdraw.set_defaults(run=cmd_withdraw)

    p_show = sub.add_parser("show", help="Show one patch")
    p_show.add_argument("patch_id")
    p_show.set_defaults(run=cmd_show)

    p_list = sub.add_parser("list", help="List patches, most severe first")
    p_list.add_argument("--active", action="store_true", help="Hide withdrawn patches")
    p_list.set_defaults(run=cmd_list)

    p_status = sub.add_parser("status", help="Rollout status report")
    p_status.add_argument("patch_id")
    p_status.set_defaults(run=cmd_status)

    p_notify = sub.add_parser("notify", help="Notify owners of cohort members")
    p_notify.add_argument("patch_id")
    p_notify.set_defaults(run=cmd_notify)

    p_apply = sub.add_parser("apply", help="Apply a patch to one contract")
    p_apply.add_argument("contract_id")
    p_apply.add_argument("patch_id")
    p_apply.add_argument("--dry-run", action="store_true", help="Preview only; never writes the contract")
    p_apply.add_argument("--wasm", default=None, help="Local artifact to verify against the patch hash")
    p_apply.set_defaults(run=cmd_apply)

    args = ap.parse_args(argv)
    return run(args.run, args)


if __name__ == "__main__":
    raise SystemExit(main())
