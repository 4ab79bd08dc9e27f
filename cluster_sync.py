#!/usr/bin/env python3
"""Replicate deployment state to cluster peers and watch their consistency."""

from __future__ import annotations

import sys
from typing import Optional

from hardening.arg_parser import create_cluster_argument_parser
from hardening.cluster import ClusterCoordinator
from hardening.config import HardeningConfig
from hardening.logging_utils import get_service_logger


def main(argv: Optional[list[str]] = None) -> int:
    parser = create_cluster_argument_parser()
    args = parser.parse_args(argv)

    try:
        config = HardeningConfig.load(args.config)
    except (OSError, ValueError, TypeError) as e:
        print(f"Error: could not load configuration {args.config}: {e}", file=sys.stderr)
        return 1

    logger = get_service_logger("cluster_sync", config.log_dir, use_syslog=config.syslog)
    coordinator = ClusterCoordinator(config, logger)

    if args.add_node:
        try:
            coordinator.add_node(args.add_node)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        return 0

    health = coordinator.start()
    if not health.ok:
        logger.warning(f"Cluster health check failed: {' '.join(health.unhealthy)}")

    try:
        coordinator.run_forever(args.interval, iterations=1 if args.once else None)
    except KeyboardInterrupt:
        logger.info("Cluster sync stopped")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
