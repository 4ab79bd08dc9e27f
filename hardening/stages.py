"""Stage definitions and ordering for the hardening pipeline."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

_STAGE_PREFIX = re.compile(r"^(\d+)_?(.*)$")


@dataclass(frozen=True)
class Stage:
    """One ordered phase of a deployment.

    ``components`` are registry names run in listed order. ``verify`` names
    an optional post-condition check; ``checkpoint_paths`` are captured in
    addition to the baseline when a rollback point is named after this
    stage.
    """
    name: str
    components: tuple[str, ...]
    critical: bool = False
    verify: Optional[str] = None
    checkpoint_paths: tuple[str, ...] = field(default=())


def stage_sort_key(name: str) -> tuple[int, str]:
    """Order stage names by numeric prefix, then by the remainder.

    ``"9_monitoring" < "10_verify"`` under this key even though plain
    string comparison says otherwise. Names without a numeric prefix sort
    before every numbered stage.
    """
    match = _STAGE_PREFIX.match(name)
    if not match:
        return (-1, name)
    return (int(match.group(1)), match.group(2))


def stage_completed(stage_name: str, last_completed: Optional[str]) -> bool:
    """True if ``stage_name`` is at or before the recorded last completed stage."""
    if not last_completed:
        return False
    return stage_sort_key(stage_name) <= stage_sort_key(last_completed)


def validate_stage_order(stages: list[Stage]) -> None:
    """Raise ValueError unless stage names are unique and strictly increasing."""
    for previous, current in zip(stages, stages[1:]):
        if stage_sort_key(previous.name) >= stage_sort_key(current.name):
            raise ValueError(
                f"Stage {current.name} must sort after {previous.name}; "
                "stage names must be unique and in execution order"
            )


DEFAULT_STAGES: list[Stage] = [
    Stage("1_init", ("install_prerequisites",)),
    Stage("2_verify", ("preflight_check",)),
    Stage("3_backup", ("baseline_checkpoint",)),
    Stage(
        "4_users", ("create_admin_user",), critical=True,
        checkpoint_paths=(
            "/etc/passwd", "/etc/group", "/etc/shadow", "/etc/sudoers", "/etc/sudoers.d",
            "/root/.ssh", "/home/*/.ssh",
        ),
    ),
    Stage(
        "5_network", ("kernel", "network_isolation"), critical=True,
        checkpoint_paths=(
            "/etc/network", "/etc/sysctl.conf", "/etc/sysctl.d",
            "/etc/hosts.allow", "/etc/hosts.deny",
        ),
    ),
    Stage(
        "6_ssh", ("sshdconfig",), critical=True, verify="verify_sshd_config",
        checkpoint_paths=("/root/.ssh", "/home/*/.ssh"),
    ),
    Stage("7_auth", ("password", "mfa"), critical=True, checkpoint_paths=("/etc/login.defs",)),
    Stage("8_audit", ("auditd", "aide"), checkpoint_paths=("/etc/aide",)),
    Stage(
        "9_monitoring", ("security_monitoring",),
        checkpoint_paths=("/etc/fail2ban", "/etc/rsyslog.d"),
    ),
    Stage("10_verify", ("integration_tests",)),
]
