"""Top-level deployment state machine.

Stages run in a fixed order under the host lock. Before each stage at or
past the checkpoint threshold, a rollback point named after the last
completed stage is taken. A failure in a critical stage restores that
point and ends the run as failed; a failure in a non-critical stage is
recorded and the run moves on to the next stage.
"""

from __future__ import annotations

import tarfile
from dataclasses import dataclass, field
from logging import Logger
from typing import Callable, Optional

from hardening.checkpoint_store import CheckpointStore, RestoreResult
from hardening.components import ComponentRegistry, DeploymentContext
from hardening.config import HardeningConfig
from hardening.deployment_state import DeploymentStateStore, DeploymentStatus
from hardening.errors import DeploymentInterrupted, NoRollbackPoint
from hardening.executor import ComponentExecutor, ExecutionOutcome
from hardening.lifecycle import exit_code_for_signal, termination_handlers
from hardening.lock_manager import LockManager
from hardening.operation_log import OperationLogger
from hardening.stages import Stage, stage_completed, stage_sort_key, validate_stage_order

INITIAL_POINT = "pre_hardening"


@dataclass
class DeploymentResult:
    status: DeploymentStatus
    completed_stages: list[str] = field(default_factory=list)
    skipped_stages: list[str] = field(default_factory=list)
    noncritical_failures: list[ExecutionOutcome] = field(default_factory=list)
    failed_stage: Optional[str] = None
    failed_component: Optional[str] = None
    failure_message: Optional[str] = None
    action: Optional[str] = None
    restore: Optional[RestoreResult] = None
    log_file: Optional[str] = None
    export_file: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == DeploymentStatus.COMPLETED

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def summary(self) -> str:
        if self.success:
            text = f"Deployment completed ({len(self.completed_stages)} stages run"
            if self.skipped_stages:
                text += f", {len(self.skipped_stages)} skipped"
            if self.noncritical_failures:
                text += f", {len(self.noncritical_failures)} non-critical failures"
            return text + ")"
        return (f"Deployment failed at stage {self.failed_stage}, component {self.failed_component}: "
                f"{self.failure_message}; {self.action}")

    def fatal_message(self) -> str:
        lines = [
            f"FATAL: stage {self.failed_stage} failed in component {self.failed_component}",
            f"  Error: {self.failure_message}",
            f"  Action taken: {self.action}",
        ]
        if self.log_file:
            lines.append(f"  Details: {self.log_file}")
        return "\n".join(lines)


class StageSequencer:
    """Runs the stage pipeline for one host.

    ``on_complete`` is called with the result after a successful run (used
    for cluster replication). ``notify`` is called with the result after
    every finished run, successful or failed.
    """

    def __init__(self, config: HardeningConfig, stages: list[Stage], registry: ComponentRegistry,
                 lock: LockManager, state: DeploymentStateStore, checkpoints: CheckpointStore,
                 logger: Logger, operation_log: Optional[OperationLogger] = None,
                 on_complete: Optional[Callable[[DeploymentResult], None]] = None,
                 notify: Optional[Callable[[DeploymentResult], None]] = None):
        validate_stage_order(stages)
        missing = registry.missing(stages)
        if missing:
            raise ValueError(f"Stages reference unregistered components: {', '.join(missing)}")

        self.config = config
        self.stages = stages
        self.registry = registry
        self.lock = lock
        self.state = state
        self.checkpoints = checkpoints
        self.logger = logger
        self.operation_log = operation_log
        self.on_complete = on_complete
        self.notify = notify

        self.context = DeploymentContext(config, state, checkpoints, logger, operation_log)
        self.executor = ComponentExecutor(state, self.context, logger)

    @property
    def log_file(self) -> Optional[str]:
        if self.operation_log:
            return self.operation_log.log_file
        return self.config.deployment_log

    def run(self, resume: bool = False) -> DeploymentResult:
        """Run the pipeline under the host lock.

        Raises:
            AlreadyRunning: another live process holds the lock
            StateStoreIOError: the state record could not be read or written
            DeploymentInterrupted: a termination signal arrived; state is
                marked interrupted and the lock released before this propagates
        """
        with self.lock:
            with termination_handlers():
                try:
                    result = self._run_stages(resume)
                    self._finish(result)
                except DeploymentInterrupted as e:
                    self._handle_interrupt(e)
                    raise
        return result

    def _run_stages(self, resume: bool) -> DeploymentResult:
        self.state.init()
        self.state.begin_run(resume)
        last_completed = self.state.last_completed_stage() if resume else None
        threshold = stage_sort_key(self.config.checkpoint_from_stage)

        result = DeploymentResult(status=DeploymentStatus.IN_PROGRESS, log_file=self.log_file)
        self.logger.info(f"Starting hardening deployment on {self.config.hostname}"
                         + (f" (resuming after {last_completed})" if last_completed else ""))

        for stage in self.stages:
            if resume and stage_completed(stage.name, last_completed):
                self.logger.info(f"Skipping stage {stage.name} (already completed)")
                result.skipped_stages.append(stage.name)
                if self.operation_log:
                    self.operation_log.log_step(stage.name, "skipped")
                continue

            self.logger.info(f"Starting stage: {stage.name}")
            point = last_completed or INITIAL_POINT

            if stage_sort_key(stage.name) >= threshold:
                checkpoint_failure = self._take_checkpoint(stage, point)
                if checkpoint_failure:
                    if stage.critical:
                        return self._abort(result, stage, checkpoint_failure,
                                           "stopped before making changes (no rollback point)")
                    result.noncritical_failures.append(checkpoint_failure)

            failure = self._run_stage(stage)
            if failure and stage.critical:
                action, restored = self._rollback(point, stage, failure)
                return self._abort(result, stage, failure, action, restored)
            if failure:
                self.logger.warning(f"Non-critical stage {stage.name} failed; continuing")
                result.noncritical_failures.append(failure)

            self.state.record_stage_completed(stage.name)
            last_completed = stage.name
            result.completed_stages.append(stage.name)
            self.logger.info(f"Stage {stage.name} completed")

        self.state.set_status(DeploymentStatus.COMPLETED)
        result.status = DeploymentStatus.COMPLETED
        self.logger.info("Deployment completed successfully")
        return result

    def _run_stage(self, stage: Stage) -> Optional[ExecutionOutcome]:
        """Run a stage's components in order; return the first failure."""
        for name in stage.components:
            outcome = self.executor.run(name, self.registry.get(name))
            if not outcome.success:
                return outcome

        if stage.verify:
            outcome = self.executor.run(f"{stage.name}:verify", self.registry.get(stage.verify))
            if not outcome.success:
                return outcome
        return None

    def _take_checkpoint(self, stage: Stage, point: str) -> Optional[ExecutionOutcome]:
        try:
            created = self.checkpoints.create_point(point, stage.checkpoint_paths)
        except (OSError, tarfile.TarError) as e:
            message = f"Could not create rollback point {point}: {e}"
            self.logger.error(message)
            self.state.record_error(f"{stage.name}:checkpoint", message)
            return ExecutionOutcome(f"{stage.name}:checkpoint", False, message)

        if self.operation_log:
            self.operation_log.create_checkpoint(point, {"stage": stage.name, "path": created.path})
        return None

    def _rollback(self, point: str, stage: Stage,
                  failure: ExecutionOutcome) -> tuple[str, Optional[RestoreResult]]:
        self.logger.error(f"Critical stage {stage.name} failed; rolling back to {point}")
        restored: Optional[RestoreResult] = None
        try:
            restored = self.checkpoints.restore(point)
        except NoRollbackPoint:
            action = f"no rollback point for {point}; manual recovery required"
            self.state.record_error("rollback", action)
        except (OSError, tarfile.TarError) as e:
            action = f"rollback to {point} failed: {e}"
            self.state.record_error("rollback", action)
        else:
            action = f"rolled back to stage {point}" if point != INITIAL_POINT else "rolled back to pre_hardening state"
            if not restored.complete:
                down = ", ".join(restored.failed_services)
                action += f" (services still down: {down})"
                self.state.record_error("rollback", f"Services not restored after rollback: {down}")

        self.logger.error(f"Rollback outcome: {action}")
        if self.operation_log:
            self.operation_log.log_rollback(point, failure.message, action)
        return action, restored

    def _abort(self, result: DeploymentResult, stage: Stage, failure: ExecutionOutcome,
               action: str, restored: Optional[RestoreResult] = None) -> DeploymentResult:
        self.state.set_status(DeploymentStatus.FAILED)
        result.status = DeploymentStatus.FAILED
        result.failed_stage = stage.name
        result.failed_component = failure.component
        result.failure_message = failure.message
        result.action = action
        result.restore = restored
        return result

    def _finish(self, result: DeploymentResult) -> None:
        result.export_file = self.state.export_snapshot()

        if result.success:
            try:
                self.checkpoints.prune()
            except OSError as e:
                self.logger.warning(f"Pruning rollback points failed: {e}")
            if self.on_complete:
                self.on_complete(result)
        else:
            self.logger.error(result.fatal_message())

        if self.operation_log:
            self.operation_log.complete(result.status.value, result.summary())
        if self.notify:
            try:
                self.notify(result)
            except Exception as e:
                self.logger.error(f"Failed to send deployment notification: {e}")

    def _handle_interrupt(self, interrupt: DeploymentInterrupted) -> None:
        self.logger.error(f"Deployment interrupted by signal {interrupt.signum}; "
                          f"exit code {exit_code_for_signal(interrupt.signum)}")
        if self.state.get_status() == DeploymentStatus.IN_PROGRESS:
            self.state.mark_interrupted()
        if self.operation_log:
            self.operation_log.complete("interrupted", f"signal {interrupt.signum}")
