"""Command execution and host checks shared by the orchestrator and hardening units."""

from __future__ import annotations

import os
import shlex
import socket
import subprocess
import sys
from datetime import datetime
from typing import Optional

import pytz


DEFAULT_COMMAND_TIMEOUT = 300
TIMEOUT_EXIT_CODE = 124

ISO_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
STAMP_FORMAT = "%Y%m%d_%H%M%S"


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp as stored in state and metadata records."""
    return (moment or utc_now()).strftime(ISO_FORMAT)


def file_stamp(moment: Optional[datetime] = None) -> str:
    """Sortable timestamp used in exported and archived file names."""
    return (moment or utc_now()).strftime(STAMP_FORMAT)


def get_hostname() -> str:
    return socket.gethostname()


def run(cmd: str, check: bool = False, cwd: Optional[str] = None, capture_output: bool = True,
        timeout: Optional[float] = DEFAULT_COMMAND_TIMEOUT, input: Optional[str] = None,
        quiet: bool = False, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
    """Run a shell command with a bounded runtime.

    A timeout never raises: it is reported as exit code 124 with the
    reason in stderr. Callers inspect returncode instead of relying on
    exceptions. With ``dry_run`` the command is only printed; hardening
    steps pass their context's flag here, read-only checks never do.
    """
    if not quiet:
        print(f"  Running: {cmd[:80]}..." if len(cmd) > 80 else f"  Running: {cmd}")
        sys.stdout.flush()

    if dry_run:
        if not quiet:
            print("  [DRY-RUN] Command not executed")
        return subprocess.CompletedProcess(args=[cmd], returncode=0, stdout="", stderr="")

    try:
        result = subprocess.run(cmd, shell=True, capture_output=capture_output, text=True,
                                cwd=cwd, timeout=timeout, input=input)
    except subprocess.TimeoutExpired:
        return subprocess.CompletedProcess(
            args=[cmd], returncode=TIMEOUT_EXIT_CODE, stdout="",
            stderr=f"timed out after {timeout}s"
        )

    if check and result.returncode != 0 and result.stderr:
        print(f"    Warning: {result.stderr[:200]}")
        sys.stdout.flush()
    return result


def describe_exit(returncode: Optional[int]) -> str:
    """Human-readable reason for a process exit status."""
    if returncode is None:
        return "no exit status"
    if returncode < 0:
        return f"terminated by signal {-returncode}"
    if returncode == TIMEOUT_EXIT_CODE:
        return "timed out"
    return f"exit code {returncode}"


def is_service_active(service: str, timeout: float = 30) -> bool:
    result = run(f"systemctl is-active --quiet {shlex.quote(service)}", timeout=timeout, quiet=True)
    return result.returncode == 0


def is_package_installed(package: str) -> bool:
    result = run(f"dpkg -l {shlex.quote(package)} 2>/dev/null | grep -q ^ii", quiet=True)
    return result.returncode == 0


def user_exists(username: str) -> bool:
    result = run(f"id -u {shlex.quote(username)}", quiet=True)
    return result.returncode == 0


def file_contains(filepath: str, content: str) -> bool:
    try:
        with open(filepath, 'r') as f:
            return content in f.read()
    except (FileNotFoundError, PermissionError):
        return False


def is_root() -> bool:
    return os.geteuid() == 0


def is_container() -> bool:
    """True inside a container, where kernel and firewall settings belong to the host."""
    result = run("systemd-detect-virt --container --quiet", quiet=True, timeout=10)
    return result.returncode == 0
