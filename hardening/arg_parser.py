#!/usr/bin/env python3

from __future__ import annotations

import argparse

import argcomplete

from hardening.cluster import DEFAULT_SYNC_INTERVAL
from hardening.config import DEFAULT_CONFIG_FILE


def _add_config_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", default=DEFAULT_CONFIG_FILE,
                        help=f"Configuration file (default: {DEFAULT_CONFIG_FILE})")


def create_deploy_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Apply the staged security hardening pipeline to this host")
    _add_config_argument(parser)
    parser.add_argument("--resume", action="store_true",
                        help="Skip stages already recorded as completed by a previous run")
    parser.add_argument("--dry-run", action="store_true",
                        help="Log the commands hardening steps would run without executing them")
    parser.add_argument("--admin-user", dest="admin_user", help="Administrative user to create")
    parser.add_argument("--admin-email", dest="admin_email", help="Address notified of the run outcome")
    parser.add_argument("--ssh-port", dest="ssh_port", type=int, help="SSH port (1024-65535)")
    parser.add_argument("--sync-cluster", dest="sync_cluster", action="store_true",
                        help="Replicate state to cluster peers after a successful run")
    argcomplete.autocomplete(parser)
    return parser


def create_rollback_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create, list, restore and prune rollback points")
    _add_config_argument(parser)

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    create_parser = subparsers.add_parser("create", help="Create a rollback point")
    create_parser.add_argument("point_name", help="Stage name, milestone, or custom_<tag>")

    rollback_parser = subparsers.add_parser("rollback", help="Restore the newest point with this name")
    rollback_parser.add_argument("point_name", help="Rollback point name")

    subparsers.add_parser("list", help="List rollback points, newest first")
    subparsers.add_parser("prune", help="Remove all but the newest points per name")

    argcomplete.autocomplete(parser)
    return parser


def create_cluster_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Replicate deployment state across cluster peers")
    _add_config_argument(parser)
    parser.add_argument("--interval", type=float, default=DEFAULT_SYNC_INTERVAL,
                        help=f"Seconds between sync rounds (default: {DEFAULT_SYNC_INTERVAL})")
    parser.add_argument("--once", action="store_true", help="Run a single sync and verify round, then exit")
    parser.add_argument("--add-node", dest="add_node", metavar="HOST", help="Register a peer host and exit")
    argcomplete.autocomplete(parser)
    return parser
