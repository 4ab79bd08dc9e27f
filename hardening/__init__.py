"""hardening - Staged, resumable security hardening for Debian-family hosts."""

from __future__ import annotations

from .config import HardeningConfig
from .errors import (
    AlreadyRunning,
    ComponentExecutionFailure,
    DeploymentInterrupted,
    HardeningError,
    InvalidPointName,
    NoRollbackPoint,
    PartialRestoreFailure,
    StateStoreIOError,
)
from .system_utils import run

__all__ = [
    "HardeningConfig",
    "AlreadyRunning",
    "ComponentExecutionFailure",
    "DeploymentInterrupted",
    "HardeningError",
    "InvalidPointName",
    "NoRollbackPoint",
    "PartialRestoreFailure",
    "StateStoreIOError",
    "run",
]
