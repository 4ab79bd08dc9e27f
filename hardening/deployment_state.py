"""Persisted deployment state record, shared with the monitoring side.

The orchestrator is the only writer. Every mutation is a read-modify-write
that lands via a temporary file in the same directory followed by
os.replace(), so concurrent readers see either the old or the new document,
never a partial one. Any I/O or parse failure raises StateStoreIOError:
the run cannot make safe decisions without a trustworthy record.
"""

from __future__ import annotations

import json
import os
import shutil
import stat
import tempfile
from enum import Enum
from typing import Any, Callable, Optional

from hardening.errors import StateStoreIOError
from hardening.system_utils import file_stamp, get_hostname, utc_timestamp
from hardening.types import StateDocument

STATE_VERSION = "1.0.0"

_REQUIRED_KEYS = ("hostname", "status", "components", "errors")


class DeploymentStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    FAILED = "failed"


class ComponentStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (DeploymentStatus.COMPLETED, DeploymentStatus.FAILED, DeploymentStatus.INTERRUPTED)

# INTERRUPTED is additionally reachable from any status (abnormal exit).
_ALLOWED_TRANSITIONS: dict[DeploymentStatus, tuple[DeploymentStatus, ...]] = {
    DeploymentStatus.NOT_STARTED: (DeploymentStatus.IN_PROGRESS,),
    DeploymentStatus.IN_PROGRESS: (DeploymentStatus.COMPLETED, DeploymentStatus.FAILED),
    DeploymentStatus.COMPLETED: (DeploymentStatus.IN_PROGRESS,),
    DeploymentStatus.FAILED: (DeploymentStatus.IN_PROGRESS,),
    DeploymentStatus.INTERRUPTED: (DeploymentStatus.IN_PROGRESS,),
}


def new_state_document(hostname: str) -> StateDocument:
    return {
        "hostname": hostname,
        "last_deployment": None,
        "end_time": None,
        "components": {},
        "status": DeploymentStatus.NOT_STARTED.value,
        "last_completed_stage": None,
        "version": STATE_VERSION,
        "errors": [],
    }


def validate_state_document(state: Any) -> Optional[str]:
    """Validate state structure.

    Returns None if valid, or an error message string if invalid.
    """
    if not isinstance(state, dict):
        return f"Expected dict, got {type(state).__name__}"

    missing = [k for k in _REQUIRED_KEYS if k not in state]
    if missing:
        return f"Missing required keys: {', '.join(missing)}"

    try:
        DeploymentStatus(state["status"])
    except ValueError:
        return f"Unknown status: {state['status']!r}"

    if not isinstance(state["components"], dict):
        return "components must be a mapping"
    for name, entry in state["components"].items():
        if not isinstance(entry, dict) or "status" not in entry:
            return f"Malformed component entry: {name!r}"
        try:
            ComponentStatus(entry["status"])
        except ValueError:
            return f"Unknown status for component {name!r}: {entry['status']!r}"

    if not isinstance(state["errors"], list):
        return "errors must be a list"

    return None


class DeploymentStateStore:
    """Single-writer store for the host's deployment state record."""

    def __init__(self, state_file: str, export_dir: str, hostname: Optional[str] = None):
        self.state_file = state_file
        self.export_dir = export_dir
        self.hostname = hostname or get_hostname()

    def init(self) -> StateDocument:
        """Create the state record if absent; validate it otherwise."""
        if os.path.exists(self.state_file):
            return self.load()
        state = new_state_document(self.hostname)
        self._write(state)
        return state

    def load(self) -> StateDocument:
        try:
            with open(self.state_file, 'r') as f:
                state = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StateStoreIOError(self.state_file, str(e)) from e

        error = validate_state_document(state)
        if error:
            raise StateStoreIOError(self.state_file, error)
        return state

    def get_status(self) -> DeploymentStatus:
        return DeploymentStatus(self.load()["status"])

    def get_component_status(self, name: str) -> Optional[ComponentStatus]:
        entry = self.load()["components"].get(name)
        return ComponentStatus(entry["status"]) if entry else None

    def last_completed_stage(self) -> Optional[str]:
        return self.load().get("last_completed_stage")

    def running_components(self) -> list[str]:
        components = self.load()["components"]
        return [name for name, entry in components.items()
                if entry["status"] == ComponentStatus.RUNNING.value]

    def begin_run(self, resume: bool = False) -> StateDocument:
        """Start a new run: status in_progress, stale running components demoted.

        Components left 'running' by a killed process are marked failed with
        an error entry so that at most one component is ever running.
        """
        def mutate(state: StateDocument) -> None:
            now = utc_timestamp()
            self._check_transition(state, DeploymentStatus.IN_PROGRESS)
            for name, entry in state["components"].items():
                if entry["status"] == ComponentStatus.RUNNING.value:
                    state["components"][name] = {"status": ComponentStatus.FAILED.value, "updated_at": now}
                    state["errors"].append({
                        "component": name,
                        "message": "Component was still running when the previous run ended",
                        "timestamp": now,
                    })
            state["status"] = DeploymentStatus.IN_PROGRESS.value
            state["last_deployment"] = now
            state["end_time"] = None
            if not resume:
                state["last_completed_stage"] = None

        return self._update(mutate)

    def update_component(self, name: str, status: ComponentStatus) -> StateDocument:
        status = ComponentStatus(status)

        def mutate(state: StateDocument) -> None:
            if status == ComponentStatus.RUNNING:
                others = [n for n, e in state["components"].items()
                          if n != name and e["status"] == ComponentStatus.RUNNING.value]
                if others:
                    raise ValueError(
                        f"Cannot start {name}: {', '.join(others)} is still running"
                    )
            state["components"][name] = {"status": status.value, "updated_at": utc_timestamp()}

        return self._update(mutate)

    def record_error(self, component: str, message: str) -> StateDocument:
        def mutate(state: StateDocument) -> None:
            state["errors"].append({
                "component": component,
                "message": message,
                "timestamp": utc_timestamp(),
            })

        return self._update(mutate)

    def record_stage_completed(self, stage: str) -> StateDocument:
        def mutate(state: StateDocument) -> None:
            state["last_completed_stage"] = stage

        return self._update(mutate)

    def set_status(self, status: DeploymentStatus) -> StateDocument:
        """Move the run status forward; terminal statuses also set end_time."""
        status = DeploymentStatus(status)

        def mutate(state: StateDocument) -> None:
            self._check_transition(state, status)
            state["status"] = status.value
            if status in TERMINAL_STATUSES:
                state["end_time"] = utc_timestamp()

        return self._update(mutate)

    def mark_interrupted(self) -> StateDocument:
        return self.set_status(DeploymentStatus.INTERRUPTED)

    def export_snapshot(self) -> str:
        """Copy the current record to a timestamped read-only file in export_dir."""
        self.load()
        try:
            os.makedirs(self.export_dir, exist_ok=True)
            export_file = os.path.join(self.export_dir, f"deployment_{file_stamp()}.json")
            suffix = 1
            while os.path.exists(export_file):
                export_file = os.path.join(self.export_dir, f"deployment_{file_stamp()}_{suffix}.json")
                suffix += 1
            shutil.copyfile(self.state_file, export_file)
            os.chmod(export_file, stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH)
        except OSError as e:
            raise StateStoreIOError(self.state_file, f"export failed: {e}") from e
        return export_file

    def _check_transition(self, state: StateDocument, target: DeploymentStatus) -> None:
        current = DeploymentStatus(state["status"])
        if target == DeploymentStatus.INTERRUPTED:
            return
        if target not in _ALLOWED_TRANSITIONS[current]:
            raise ValueError(f"Invalid deployment status transition: {current.value} -> {target.value}")

    def _update(self, mutate: Callable[[StateDocument], None]) -> StateDocument:
        state = self.load()
        mutate(state)
        self._write(state)
        return state

    def _write(self, state: StateDocument) -> None:
        directory = os.path.dirname(self.state_file) or "."
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".deployment_state.", suffix=".tmp", dir=directory)
            with os.fdopen(fd, 'w') as f:
                json.dump(state, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, self.state_file)
            tmp_path = None
        except OSError as e:
            raise StateStoreIOError(self.state_file, str(e)) from e
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
