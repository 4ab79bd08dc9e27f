"""Error taxonomy for the hardening orchestrator."""

from __future__ import annotations

from typing import Optional


class HardeningError(Exception):
    """Base class for every orchestration error."""


class AlreadyRunning(HardeningError):
    """Another live process holds the host deployment lock."""

    def __init__(self, holder_pid: Optional[int], lock_path: str):
        self.holder_pid = holder_pid
        self.lock_path = lock_path
        holder = f"PID {holder_pid}" if holder_pid is not None else "an initialising process"
        super().__init__(f"Another deployment process is running ({holder}, lock {lock_path})")


class InvalidPointName(HardeningError, ValueError):
    """Rollback point name is neither a known stage nor a custom tag."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Invalid rollback point name: {name!r}")


class NoRollbackPoint(HardeningError):
    """Restore was requested but no point with that name exists."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No rollback point found for {name}")


class ComponentExecutionFailure(HardeningError):
    """A hardening unit reported failure."""

    def __init__(self, component: str, message: str, exit_code: Optional[int] = None,
                 stage: Optional[str] = None):
        self.component = component
        self.exit_code = exit_code
        self.stage = stage
        self.message = message
        super().__init__(f"Component {component} failed: {message}")


class PartialRestoreFailure(HardeningError):
    """A restore ran but some services that were active did not come back."""

    def __init__(self, point_name: str, failed_services: list[str]):
        self.point_name = point_name
        self.failed_services = list(failed_services)
        super().__init__(
            f"Rollback to {point_name} left services down: {', '.join(self.failed_services)}"
        )


class StateStoreIOError(HardeningError):
    """The persisted deployment state could not be read or written."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Deployment state {path} unusable: {reason}")


class DeploymentInterrupted(BaseException):
    """Raised from a signal handler to unwind a run on termination.

    Derives from BaseException so hardening units catching Exception
    cannot swallow it.
    """

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"Deployment interrupted by signal {signum}")
