#!/usr/bin/env python3
"""Run the staged hardening pipeline on this host."""

from __future__ import annotations

import sys
from typing import Optional

from hardening.arg_parser import create_deploy_argument_parser
from hardening.checkpoint_store import CheckpointStore
from hardening.cluster import ClusterCoordinator
from hardening.config import HardeningConfig
from hardening.deployment_state import DeploymentStateStore
from hardening.errors import AlreadyRunning, DeploymentInterrupted, StateStoreIOError
from hardening.lifecycle import exit_code_for_signal
from hardening.lock_manager import LockManager
from hardening.logging_utils import get_service_logger
from hardening.notifications import configs_from_settings, send_deployment_notification
from hardening.operation_log import create_operation_logger
from hardening.sequencer import DeploymentResult, StageSequencer
from hardening_steps.pipeline import default_pipeline


def main(argv: Optional[list[str]] = None) -> int:
    parser = create_deploy_argument_parser()
    args = parser.parse_args(argv)

    try:
        config = HardeningConfig.from_args(args)
    except (OSError, ValueError, TypeError) as e:
        print(f"Error: could not load configuration {args.config}: {e}", file=sys.stderr)
        return 1

    problems = config.validate()
    if problems:
        for problem in problems:
            print(f"Error: {problem}", file=sys.stderr)
        return 1

    logger = get_service_logger("deployment", config.log_dir, use_syslog=config.syslog)
    operation_log = create_operation_logger(config.log_dir)
    state = DeploymentStateStore(config.state_file, config.log_dir, config.hostname)
    checkpoints = CheckpointStore.from_config(config)
    stages, registry = default_pipeline()

    on_complete = None
    if args.sync_cluster:
        coordinator = ClusterCoordinator(config, logger)

        def on_complete(result: DeploymentResult) -> None:
            report = coordinator.sync_state()
            if not report.ok:
                logger.warning(f"Cluster sync incomplete: {', '.join(report.failed)}")

    notify_configs = configs_from_settings(config.admin_email, config.notify_webhook)

    def notify(result: DeploymentResult) -> None:
        errors = [f"{o.component}: {o.message}" for o in result.noncritical_failures]
        if result.failure_message:
            errors.append(f"{result.failed_component}: {result.failure_message}")
        send_deployment_notification(
            notify_configs, config.hostname, result.success, result.summary(),
            errors=errors, log_file=operation_log.log_file, logger=logger,
        )

    sequencer = StageSequencer(
        config, stages, registry,
        lock=LockManager(config.lock_path, logger),
        state=state,
        checkpoints=checkpoints,
        logger=logger,
        operation_log=operation_log,
        on_complete=on_complete,
        notify=notify,
    )

    try:
        result = sequencer.run(resume=args.resume)
    except AlreadyRunning as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except StateStoreIOError as e:
        print(f"FATAL: {e}", file=sys.stderr)
        print("  Action taken: run aborted, lock released", file=sys.stderr)
        print(f"  Details: {config.deployment_log}", file=sys.stderr)
        return 1
    except DeploymentInterrupted as e:
        print(f"FATAL: {e}; state marked interrupted", file=sys.stderr)
        print(f"  Details: {operation_log.log_file}", file=sys.stderr)
        return exit_code_for_signal(e.signum)

    if result.success:
        print(f"\n✓ {result.summary()}")
    else:
        print(result.fatal_message(), file=sys.stderr)
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
