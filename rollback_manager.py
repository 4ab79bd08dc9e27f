#!/usr/bin/env python3
"""Manage rollback points for the hardening pipeline."""

from __future__ import annotations

import sys
import tarfile
from typing import Optional

from hardening.arg_parser import create_rollback_argument_parser
from hardening.checkpoint_store import CheckpointStore
from hardening.config import HardeningConfig
from hardening.errors import AlreadyRunning, InvalidPointName, NoRollbackPoint, PartialRestoreFailure
from hardening.lock_manager import LockManager


def list_points(store: CheckpointStore) -> None:
    points = store.list_points()
    if not points:
        print("No rollback points found")
        return
    print("Available rollback points:")
    for point in points:
        print(f"  {point.point_name:<20} {point.timestamp or point.stamp:<22} {point.description}")


def run_command(command: str, point_name: Optional[str], store: CheckpointStore) -> None:
    if command == "create":
        point = store.create_point(point_name)
        store.prune()
        print(f"✓ Rollback point created: {point.path}")
    elif command == "rollback":
        result = store.restore(point_name)
        result.check()
        print(f"✓ Rolled back to {point_name} ({result.point.path})")
    elif command == "prune":
        removed = store.prune()
        print(f"✓ Removed {len(removed)} old rollback point(s)")


def main(argv: Optional[list[str]] = None) -> int:
    parser = create_rollback_argument_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = HardeningConfig.load(args.config)
    except (OSError, ValueError, TypeError) as e:
        print(f"Error: could not load configuration {args.config}: {e}", file=sys.stderr)
        return 1

    store = CheckpointStore.from_config(config)
    if args.command == "list":
        list_points(store)
        return 0

    try:
        with LockManager(config.lock_path, store.logger):
            run_command(args.command, getattr(args, "point_name", None), store)
    except (AlreadyRunning, InvalidPointName, NoRollbackPoint, PartialRestoreFailure) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (OSError, tarfile.TarError) as e:
        print(f"Error: {args.command} failed: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
