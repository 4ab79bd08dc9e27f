"""Structured audit trail for a single deployment or rollback run.

Each event is one JSON object per line, written through a rotating logger,
so the monitoring side can tail and parse the file without coordination.
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Any, Optional

from hardening.logging_utils import ensure_log_directory, get_rotating_logger, log_message
from hardening.system_utils import file_stamp, utc_timestamp


class OperationLogger:
    """Operation logger with step tracking and checkpoint/rollback records."""

    def __init__(self, operation_id: str, log_file: str):
        """Initialize operation logger.

        Args:
            operation_id: Unique identifier for the run
            log_file: Path to the JSON-lines log file
        """
        self.operation_id = operation_id
        self.log_file = log_file
        self.logger = get_rotating_logger(f"operation_{operation_id}", log_file)
        self.start_time = time.time()
        self.checkpoints: dict[str, dict[str, Any]] = {}
        self.current_step: Optional[str] = None
        self.status = "running"
        self.error_count = 0

        self._log_event("run_start", {"log_file": log_file})

    def log_step(self, step: str, status: str, details: Optional[str] = None,
                 duration: Optional[float] = None) -> None:
        """Log a step transition ('started', 'completed', 'failed', 'skipped')."""
        self.current_step = step

        event_data: dict[str, Any] = {"step": step, "status": status}
        if details:
            event_data["details"] = details
        if duration is not None:
            event_data["duration_seconds"] = round(duration, 2)

        self._log_event("step", event_data)

    def log_output(self, step: str, output: str) -> None:
        """Append textual output produced by a hardening unit."""
        if output:
            self._log_event("output", {"step": step, "output": output})

    def create_checkpoint(self, checkpoint_name: str, state: dict[str, Any]) -> None:
        """Record that a rollback point was taken."""
        checkpoint_data: dict[str, Any] = {
            "checkpoint_name": checkpoint_name,
            "state": state,
            "elapsed_time_seconds": round(time.time() - self.start_time, 2)
        }
        self.checkpoints[checkpoint_name] = checkpoint_data
        self._log_event("checkpoint", checkpoint_data)

    def log_rollback(self, to_checkpoint: str, reason: str, outcome: str) -> None:
        self.status = "rolled_back"
        self._log_event("rollback", {
            "to_checkpoint": to_checkpoint,
            "reason": reason,
            "outcome": outcome,
        })

    def log_error(self, error_type: str, error_message: str,
                  context: Optional[dict[str, Any]] = None) -> None:
        self.error_count += 1
        error_data: dict[str, Any] = {
            "error_type": error_type,
            "error_message": error_message,
            "current_step": self.current_step
        }
        if context:
            error_data["context"] = context
        self._log_event("error", error_data)

    def complete(self, status: str = "completed", summary: Optional[str] = None) -> None:
        """Close the trail with the final run status."""
        self.status = status
        completion_data: dict[str, Any] = {
            "status": status,
            "duration_seconds": round(time.time() - self.start_time, 2),
            "checkpoints_created": len(self.checkpoints),
            "errors": self.error_count,
        }
        if summary:
            completion_data["summary"] = summary
        self._log_event("run_complete", completion_data)

    def _log_event(self, event_type: str, data: dict[str, Any]) -> None:
        log_entry: dict[str, Any] = {
            "event_type": event_type,
            "operation_id": self.operation_id,
            "timestamp": utc_timestamp(),
            **data
        }
        log_message(self.logger, json.dumps(log_entry, default=str))


def create_operation_logger(log_dir: str, operation_type: str = "deployment") -> OperationLogger:
    """Create a logger for a new run under <log_dir>/operations.

    Args:
        log_dir: Base log directory from the configuration
        operation_type: Prefix for the log file ('deployment', 'rollback')

    Returns:
        New OperationLogger instance
    """
    operation_id = uuid.uuid4().hex[:8]
    log_file = ensure_log_directory(log_dir, "operations") / f"{operation_type}_{file_stamp()}_{operation_id}.log"
    return OperationLogger(operation_id, str(log_file))
