"""Host-local mutual exclusion for deployment runs.

The lock is a directory created with mkdir(2), which either creates the
directory or fails; two callers can never both succeed. Inside it a
``holder.json`` record names the owning PID. A lock is valid only while that
PID is alive (signal-0 check). A lock directory without a record is treated
as held for ``record_grace_seconds`` after its creation (the owner may be
between mkdir and writing the record) and as stale afterwards.

Reclaiming a stale lock happens under an flock(2) guard on a sidecar file so
that two processes racing to reclaim cannot delete each other's fresh lock.
"""

from __future__ import annotations

import fcntl
import json
import os
import shutil
import time
from dataclasses import dataclass
from logging import Logger
from typing import Optional

from hardening.errors import AlreadyRunning
from hardening.system_utils import utc_timestamp

RECORD_NAME = "holder.json"
DEFAULT_RECORD_GRACE_SECONDS = 10.0


def is_process_alive(pid: int) -> bool:
    """Return True if a process with this PID exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user
        return True
    return True


@dataclass
class LockRecord:
    holder_pid: int
    acquired_at: str

    def to_dict(self) -> dict:
        return {"holder_pid": self.holder_pid, "acquired_at": self.acquired_at}


class LockManager:
    """PID-bearing directory lock preventing concurrent runs on one host."""

    def __init__(self, lock_path: str, logger: Optional[Logger] = None,
                 record_grace_seconds: float = DEFAULT_RECORD_GRACE_SECONDS):
        self.lock_path = lock_path
        self.guard_path = f"{lock_path}.guard"
        self.logger = logger
        self.record_grace_seconds = record_grace_seconds
        self.held = False

    @property
    def record_path(self) -> str:
        return os.path.join(self.lock_path, RECORD_NAME)

    def read_record(self) -> Optional[LockRecord]:
        """Return the current holder record, or None if absent or unreadable."""
        try:
            with open(self.record_path, 'r') as f:
                data = json.load(f)
            return LockRecord(holder_pid=int(data["holder_pid"]), acquired_at=str(data["acquired_at"]))
        except (OSError, ValueError, KeyError, TypeError):
            return None

    def acquire(self) -> LockRecord:
        """Take the lock for the current process.

        Raises:
            AlreadyRunning: a live process holds the lock
        """
        parent = os.path.dirname(self.lock_path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        with open(self.guard_path, 'a') as guard:
            fcntl.flock(guard.fileno(), fcntl.LOCK_EX)
            try:
                try:
                    os.mkdir(self.lock_path, 0o700)
                except FileExistsError:
                    self._reclaim_if_stale()
                    os.mkdir(self.lock_path, 0o700)
                record = LockRecord(holder_pid=os.getpid(), acquired_at=utc_timestamp())
                self._write_record(record)
            finally:
                fcntl.flock(guard.fileno(), fcntl.LOCK_UN)

        self.held = True
        self._log(f"Deployment lock acquired by PID {record.holder_pid}")
        return record

    def release(self) -> None:
        """Remove the lock unconditionally."""
        shutil.rmtree(self.lock_path, ignore_errors=True)
        if self.held:
            self._log(f"Deployment lock released by PID {os.getpid()}")
        self.held = False

    def is_locked(self) -> bool:
        """True if some live process currently holds the lock."""
        if not os.path.isdir(self.lock_path):
            return False
        return not self._is_stale(self.read_record())

    def _is_stale(self, record: Optional[LockRecord]) -> bool:
        if record is None:
            try:
                age = time.time() - os.stat(self.lock_path).st_mtime
            except FileNotFoundError:
                return True
            return age > self.record_grace_seconds
        return not is_process_alive(record.holder_pid)

    def _reclaim_if_stale(self) -> None:
        record = self.read_record()
        if not self._is_stale(record):
            raise AlreadyRunning(record.holder_pid if record else None, self.lock_path)

        holder = f"PID {record.holder_pid}" if record else "an unrecorded holder"
        self._log(f"Reclaiming stale deployment lock left by {holder}")
        shutil.rmtree(self.lock_path, ignore_errors=True)

    def _write_record(self, record: LockRecord) -> None:
        tmp_path = f"{self.record_path}.tmp"
        with open(tmp_path, 'w') as f:
            json.dump(record.to_dict(), f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.record_path)

    def _log(self, message: str) -> None:
        if self.logger:
            self.logger.info(message)

    def __enter__(self) -> 'LockManager':
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
