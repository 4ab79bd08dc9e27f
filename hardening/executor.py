"""Runs one hardening component and records its outcome in the state store."""

from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass
from logging import Logger
from typing import Optional

from hardening.components import ComponentResult, DeploymentContext, HardeningComponent
from hardening.deployment_state import ComponentStatus, DeploymentStateStore
from hardening.errors import ComponentExecutionFailure, DeploymentInterrupted, StateStoreIOError
from hardening.system_utils import describe_exit


@dataclass
class ExecutionOutcome:
    component: str
    success: bool
    message: str = ""
    exit_code: Optional[int] = None
    duration: float = 0.0

    def as_failure(self, stage: Optional[str] = None) -> ComponentExecutionFailure:
        return ComponentExecutionFailure(self.component, self.message, self.exit_code, stage)


class ComponentExecutor:
    """Marks a component running, invokes it, and leaves it completed or failed.

    The executor does not decide whether a failure is fatal; the caller
    applies stage criticality to the returned outcome.
    """

    def __init__(self, state: DeploymentStateStore, context: DeploymentContext, logger: Logger):
        self.state = state
        self.context = context
        self.logger = logger

    def run(self, name: str, component: HardeningComponent) -> ExecutionOutcome:
        self.state.update_component(name, ComponentStatus.RUNNING)
        self._log_step(name, "started")
        self.logger.info(f"Running component {name}")
        start = time.monotonic()

        try:
            result = component.execute(self.context)
        except DeploymentInterrupted as e:
            self._finish_failed(name, f"Interrupted by signal {e.signum}", None, time.monotonic() - start)
            raise
        except StateStoreIOError:
            raise
        except subprocess.CalledProcessError as e:
            result = ComponentResult.failed(
                f"Command failed with {describe_exit(e.returncode)}", e.returncode, e.stderr or ""
            )
        except ComponentExecutionFailure as e:
            result = ComponentResult.failed(e.message, e.exit_code)
        except Exception as e:
            result = ComponentResult.failed(f"{type(e).__name__}: {e}")

        duration = time.monotonic() - start
        if result.output and self.context.operation_log:
            self.context.operation_log.log_output(name, result.output)

        if result.success:
            self.state.update_component(name, ComponentStatus.COMPLETED)
            self._log_step(name, "completed", duration=duration)
            self.logger.info(f"Component {name} completed ({duration:.1f}s)")
            return ExecutionOutcome(name, True, duration=duration)

        message = result.message or f"{name} failed"
        if result.exit_code is not None and str(result.exit_code) not in message:
            message = f"{message} ({describe_exit(result.exit_code)})"
        self._finish_failed(name, message, result.exit_code, duration)
        return ExecutionOutcome(name, False, message, result.exit_code, duration)

    def _finish_failed(self, name: str, message: str, exit_code: Optional[int], duration: float) -> None:
        self.state.update_component(name, ComponentStatus.FAILED)
        self.state.record_error(name, message)
        self._log_step(name, "failed", details=message, duration=duration)
        if self.context.operation_log:
            self.context.operation_log.log_error(
                "ComponentExecutionFailure", message, {"component": name, "exit_code": exit_code}
            )
        self.logger.error(f"Component {name} failed: {message}")

    def _log_step(self, name: str, status: str, details: Optional[str] = None,
                  duration: Optional[float] = None) -> None:
        if self.context.operation_log:
            self.context.operation_log.log_step(name, status, details, duration)
