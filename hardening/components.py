"""Hardening component interface and the explicit component registry."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from logging import Logger
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol

from hardening.system_utils import describe_exit, run

if TYPE_CHECKING:
    from hardening.checkpoint_store import CheckpointStore
    from hardening.config import HardeningConfig
    from hardening.deployment_state import DeploymentStateStore
    from hardening.operation_log import OperationLogger
    from hardening.stages import Stage


@dataclass
class DeploymentContext:
    """Everything a hardening unit may touch during a run."""
    config: HardeningConfig
    state: DeploymentStateStore
    checkpoints: CheckpointStore
    logger: Logger
    operation_log: Optional[OperationLogger] = None

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run


@dataclass
class ComponentResult:
    success: bool
    message: str = ""
    exit_code: Optional[int] = None
    output: str = ""

    @classmethod
    def ok(cls, output: str = "") -> 'ComponentResult':
        return cls(success=True, output=output)

    @classmethod
    def failed(cls, message: str, exit_code: Optional[int] = None, output: str = "") -> 'ComponentResult':
        return cls(success=False, message=message, exit_code=exit_code, output=output)

    @classmethod
    def from_process(cls, result: subprocess.CompletedProcess) -> 'ComponentResult':
        output = "".join(part for part in (result.stdout, result.stderr) if part)
        if result.returncode == 0:
            return cls.ok(output)
        return cls.failed(f"Command failed: {describe_exit(result.returncode)}",
                          exit_code=result.returncode, output=output)


class HardeningComponent(Protocol):
    name: str

    def execute(self, context: DeploymentContext) -> ComponentResult:
        ...


class FunctionComponent:
    """Wrap a step function taking the deployment context.

    The function may return None (success), a bool or a ComponentResult.
    Exceptions propagate to the executor, which classifies them.
    """

    def __init__(self, name: str, func: Callable[[DeploymentContext], Any]):
        self.name = name
        self.func = func

    def execute(self, context: DeploymentContext) -> ComponentResult:
        outcome = self.func(context)
        if outcome is None or outcome is True:
            return ComponentResult.ok()
        if outcome is False:
            return ComponentResult.failed(f"{self.name} reported failure")
        if isinstance(outcome, ComponentResult):
            return outcome
        raise TypeError(f"{self.name} returned unsupported result {type(outcome).__name__}")

    def __repr__(self) -> str:
        return f"FunctionComponent({self.name!r})"


class ScriptComponent:
    """Run an external script; exit status 0 is success."""

    def __init__(self, name: str, command: str, timeout: Optional[float] = None):
        self.name = name
        self.command = command
        self.timeout = timeout

    def execute(self, context: DeploymentContext) -> ComponentResult:
        timeout = self.timeout if self.timeout is not None else context.config.command_timeout
        return ComponentResult.from_process(run(self.command, timeout=timeout, dry_run=context.dry_run))

    def __repr__(self) -> str:
        return f"ScriptComponent({self.name!r}, {self.command!r})"


@dataclass
class ComponentRegistry:
    """Ordered mapping from component name to implementation."""
    _components: dict[str, HardeningComponent] = field(default_factory=dict)

    def register(self, component: HardeningComponent) -> HardeningComponent:
        if component.name in self._components:
            raise ValueError(f"Component {component.name} already registered")
        self._components[component.name] = component
        return component

    def register_function(self, name: str, func: Callable[[DeploymentContext], Any]) -> HardeningComponent:
        return self.register(FunctionComponent(name, func))

    def get(self, name: str) -> HardeningComponent:
        try:
            return self._components[name]
        except KeyError:
            raise KeyError(f"Unknown component: {name}") from None

    def names(self) -> list[str]:
        return list(self._components)

    def missing(self, stages: list[Stage]) -> list[str]:
        """Names referenced by ``stages`` that are not registered."""
        missing = []
        for stage in stages:
            for name in stage.components + ((stage.verify,) if stage.verify else ()):
                if name not in self._components and name not in missing:
                    missing.append(name)
        return missing

    def __contains__(self, name: str) -> bool:
        return name in self._components

    def __len__(self) -> int:
        return len(self._components)
