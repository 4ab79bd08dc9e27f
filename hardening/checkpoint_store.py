"""Rollback points: timestamped snapshots of configuration and service state.

Layout under the backup directory, one directory per point::

    rollback_<point_name>_<YYYYmmdd_HHMMSS_ffffff>/
        etc_backup.tar.gz     captured configuration paths (relative to /)
        service_state.txt     systemctl list-units --state=active,failed
        iptables.rules        iptables-save output (absent if unavailable)
        metadata.json         point name, UTC timestamp, description, host info

Directory names sort lexicographically in creation order, so the newest
point for a name is the greatest directory name with that prefix.
"""

from __future__ import annotations

import glob
import json
import os
import platform
import re
import shlex
import shutil
import tarfile
from dataclasses import dataclass, field
from datetime import timedelta
from logging import Logger
from typing import Optional

from hardening.errors import InvalidPointName, NoRollbackPoint, PartialRestoreFailure
from hardening.logging_utils import get_rotating_logger, log_subprocess_result
from hardening.stages import DEFAULT_STAGES, Stage
from hardening.system_utils import (
    DEFAULT_COMMAND_TIMEOUT, describe_exit, get_hostname, is_service_active, run, utc_now, utc_timestamp
)

ARCHIVE_NAME = "etc_backup.tar.gz"
SERVICE_STATE_NAME = "service_state.txt"
FIREWALL_RULES_NAME = "iptables.rules"
METADATA_NAME = "metadata.json"
CURRENT_POINTER_NAME = "current_rollback"

POINT_STAMP_FORMAT = "%Y%m%d_%H%M%S_%f"
_POINT_DIR_PATTERN = re.compile(r"^rollback_(?P<name>.+)_(?P<stamp>\d{8}_\d{6}_\d{6})$")
_CUSTOM_TAG_PATTERN = re.compile(r"^custom(_[a-z0-9][a-z0-9_-]*)?$")

DEFAULT_RETENTION = 3
DEFAULT_DEPENDENT_SERVICES = ("ssh", "fail2ban", "auditd")

BASELINE_PATHS = (
    "/etc/ssh",
    "/etc/pam.d",
    "/etc/security",
    "/etc/audit",
    "/etc/ufw",
    "/etc/systemd/system",
)
USER_SSH_PATHS = ("/root/.ssh", "/home/*/.ssh")

MILESTONE_POINTS: dict[str, str] = {
    "pre_hardening": "Initial system state",
    "post_ssh": "After SSH hardening",
    "post_firewall": "After firewall configuration",
    "post_audit": "After audit setup",
    "post_monitoring": "After monitoring setup",
    "complete": "Full deployment complete",
}


@dataclass
class PointSpec:
    """What a named rollback point captures."""
    description: str
    paths: tuple[str, ...] = BASELINE_PATHS


@dataclass
class RollbackPoint:
    point_name: str
    stamp: str
    path: str
    description: str = ""
    timestamp: Optional[str] = None

    @property
    def archive(self) -> str:
        return os.path.join(self.path, ARCHIVE_NAME)

    @property
    def service_state(self) -> str:
        return os.path.join(self.path, SERVICE_STATE_NAME)

    @property
    def firewall_rules(self) -> str:
        return os.path.join(self.path, FIREWALL_RULES_NAME)

    @classmethod
    def from_directory(cls, path: str) -> Optional['RollbackPoint']:
        match = _POINT_DIR_PATTERN.match(os.path.basename(path.rstrip("/")))
        if not match or not os.path.isdir(path):
            return None
        point = cls(point_name=match.group("name"), stamp=match.group("stamp"), path=path)
        try:
            with open(os.path.join(path, METADATA_NAME), 'r') as f:
                metadata = json.load(f)
            point.description = metadata.get("description", "")
            point.timestamp = metadata.get("timestamp")
        except (OSError, ValueError):
            pass
        return point


@dataclass
class RestoreResult:
    point: RollbackPoint
    failed_services: list[str] = field(default_factory=list)
    firewall_restored: bool = False

    @property
    def complete(self) -> bool:
        return not self.failed_services

    def check(self) -> None:
        """Raise PartialRestoreFailure if any expected service stayed down."""
        if self.failed_services:
            raise PartialRestoreFailure(self.point.point_name, self.failed_services)


def default_point_specs(stages: list[Stage] = DEFAULT_STAGES) -> dict[str, PointSpec]:
    """Known point names: every stage of the pipeline plus the milestones."""
    specs = {name: PointSpec(description) for name, description in MILESTONE_POINTS.items()}
    for stage in stages:
        specs[stage.name] = PointSpec(
            description=f"After stage {stage.name}",
            paths=BASELINE_PATHS + tuple(p for p in stage.checkpoint_paths if p not in BASELINE_PATHS),
        )
    return specs


def parse_active_services(listing: str) -> list[str]:
    """Service units reported active in a systemctl list-units listing."""
    services: list[str] = []
    for line in listing.splitlines():
        tokens = line.replace("●", " ").replace("*", " ").split()
        if len(tokens) < 3:
            continue
        unit, active = tokens[0], tokens[2]
        if unit.endswith(".service") and active == "active" and unit not in services:
            services.append(unit)
    return services


class CheckpointStore:
    """Creates, lists, restores and prunes rollback points."""

    def __init__(self, backup_dir: str, state_dir: str, log_dir: str, root: str = "/",
                 retention: int = DEFAULT_RETENTION,
                 known_points: Optional[dict[str, PointSpec]] = None,
                 services: tuple[str, ...] = DEFAULT_DEPENDENT_SERVICES,
                 command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
                 hostname: Optional[str] = None,
                 logger: Optional[Logger] = None,
                 dry_run: bool = False):
        self.backup_dir = backup_dir
        self.state_dir = state_dir
        self.root = root
        self.retention = retention
        self.known_points = known_points if known_points is not None else default_point_specs()
        self.services = services
        self.command_timeout = command_timeout
        self.hostname = hostname or get_hostname()
        self.logger = logger or get_rotating_logger("rollback", os.path.join(log_dir, "rollback.log"))
        self.dry_run = dry_run
        self._restoring: Optional[str] = None

    @classmethod
    def from_config(cls, config, stages: list[Stage] = DEFAULT_STAGES,
                    logger: Optional[Logger] = None) -> 'CheckpointStore':
        return cls(
            backup_dir=config.backup_dir,
            state_dir=config.state_dir,
            log_dir=config.log_dir,
            root=config.filesystem_root,
            retention=config.retention,
            known_points=default_point_specs(stages),
            command_timeout=config.command_timeout,
            hostname=config.hostname,
            logger=logger,
            dry_run=config.dry_run,
        )

    @property
    def current_pointer(self) -> str:
        return os.path.join(self.state_dir, CURRENT_POINTER_NAME)

    def validate_point_name(self, name: str) -> PointSpec:
        if name in self.known_points:
            return self.known_points[name]
        if name and _CUSTOM_TAG_PATTERN.match(name):
            return PointSpec(description=f"Custom rollback point {name}")
        raise InvalidPointName(name)

    def create_point(self, name: str, extra_paths: tuple[str, ...] = ()) -> RollbackPoint:
        """Snapshot the configuration paths and service state for ``name``.

        ``extra_paths`` are archived alongside the point's own paths; the
        sequencer passes the paths the next stage is about to change. Source
        paths that do not exist are skipped and listed in metadata.
        """
        spec = self.validate_point_name(name)
        paths = spec.paths + tuple(p for p in extra_paths if p not in spec.paths)
        self.logger.info(f"Creating rollback point: {name}")

        os.makedirs(self.backup_dir, exist_ok=True)
        point_dir, moment = self._new_point_directory(name)
        try:
            captured, skipped = self._archive_paths(paths, os.path.join(point_dir, ARCHIVE_NAME))
            self._capture_service_state(os.path.join(point_dir, SERVICE_STATE_NAME))
            firewall_captured = self._capture_firewall(os.path.join(point_dir, FIREWALL_RULES_NAME))

            metadata = {
                "point_name": name,
                "timestamp": utc_timestamp(moment),
                "description": spec.description,
                "system_info": {
                    "kernel": platform.release(),
                    "hostname": self.hostname,
                    "uptime": self._uptime(),
                },
                "captured_paths": captured,
                "skipped_paths": skipped,
                "firewall_captured": firewall_captured,
            }
            with open(os.path.join(point_dir, METADATA_NAME), 'w') as f:
                json.dump(metadata, f, indent=2)
        except BaseException:
            shutil.rmtree(point_dir, ignore_errors=True)
            raise

        self._update_current_pointer(point_dir)
        self.logger.info(f"Rollback point created at {point_dir}")

        point = RollbackPoint.from_directory(point_dir)
        assert point is not None
        return point

    def list_points(self, name: Optional[str] = None) -> list[RollbackPoint]:
        """All points (or those for ``name``), newest first."""
        if not os.path.isdir(self.backup_dir):
            return []
        points = []
        for entry in os.listdir(self.backup_dir):
            point = RollbackPoint.from_directory(os.path.join(self.backup_dir, entry))
            if point is None:
                continue
            if name is not None and point.point_name != name:
                continue
            points.append(point)
        points.sort(key=lambda p: (p.stamp, p.point_name), reverse=True)
        return points

    def latest(self, name: str) -> Optional[RollbackPoint]:
        points = self.list_points(name)
        return points[0] if points else None

    def restore(self, name: str) -> RestoreResult:
        """Restore the newest point for ``name`` over the live filesystem.

        Services stopped for the restore are restarted on every path. If the
        archive cannot be extracted the error is re-raised after the restart.

        Raises:
            NoRollbackPoint: nothing recorded under that name (no changes made)
            OSError, tarfile.TarError: extraction failed (services restarted)
        """
        point = self.latest(name)
        if point is None:
            self.logger.error(f"No rollback point found for {name}")
            raise NoRollbackPoint(name)

        if self.dry_run:
            self.logger.info(f"[DRY-RUN] Would restore {point.path} over {self.root}")
            return RestoreResult(point=point)

        self.logger.info(f"Initiating rollback to point: {name} ({point.path})")
        self._restoring = point.path
        firewall_restored = False
        try:
            for service in self.services:
                self._systemctl("stop", service)
            try:
                with tarfile.open(point.archive, "r:gz") as tar:
                    tar.extractall(self.root, filter="tar")
                firewall_restored = self._restore_firewall(point)
            except (OSError, tarfile.TarError) as e:
                self.logger.error(f"Restore of {point.path} failed: {e}; restarting services")
                raise
            finally:
                self._systemctl("daemon-reload")
                for service in self.services:
                    self._systemctl("restart", service)

            failed = self._verify_services(point)
        finally:
            self._restoring = None

        result = RestoreResult(point=point, failed_services=failed, firewall_restored=firewall_restored)
        if failed:
            self.logger.warning(f"Some services failed to restart: {' '.join(failed)}")
        else:
            self.logger.info(f"Rollback to {name} completed successfully")
        return result

    def prune(self) -> list[str]:
        """Keep the newest ``retention`` points per name; return removed paths."""
        protected = {os.path.realpath(p) for p in (self._restoring, self._current_target()) if p}
        names = set(self.known_points) | {p.point_name for p in self.list_points()}

        removed: list[str] = []
        for name in sorted(names):
            for point in self.list_points(name)[self.retention:]:
                if os.path.realpath(point.path) in protected:
                    continue
                shutil.rmtree(point.path)
                removed.append(point.path)
                self.logger.info(f"Pruned rollback point {point.path}")
        return removed

    def _new_point_directory(self, name: str):
        moment = utc_now()
        while True:
            point_dir = os.path.join(self.backup_dir, f"rollback_{name}_{moment.strftime(POINT_STAMP_FORMAT)}")
            try:
                os.mkdir(point_dir, 0o750)
                return point_dir, moment
            except FileExistsError:
                moment += timedelta(microseconds=1)

    def _live_paths(self, pattern: str) -> list[str]:
        live_pattern = os.path.join(self.root, pattern.lstrip("/"))
        if glob.has_magic(live_pattern):
            return sorted(glob.glob(live_pattern))
        return [live_pattern]

    def _archive_paths(self, paths: tuple[str, ...], archive_path: str) -> tuple[list[str], list[str]]:
        captured: list[str] = []
        skipped: list[str] = []
        with tarfile.open(archive_path, "w:gz") as tar:
            for pattern in paths:
                matches = [p for p in self._live_paths(pattern) if os.path.lexists(p)]
                if not matches:
                    skipped.append(pattern)
                    continue
                for live_path in matches:
                    arcname = os.path.relpath(live_path, self.root)
                    tar.add(live_path, arcname=arcname)
                    captured.append("/" + arcname)
        return captured, skipped

    def _capture_service_state(self, target: str) -> None:
        result = run("systemctl list-units --state=active,failed --no-legend --plain --no-pager",
                     timeout=self.command_timeout, quiet=True)
        if result.returncode != 0:
            self.logger.warning(f"Service state capture incomplete: {describe_exit(result.returncode)}")
        with open(target, 'w') as f:
            f.write(result.stdout or "")

    def _capture_firewall(self, target: str) -> bool:
        result = run("iptables-save", timeout=self.command_timeout, quiet=True)
        if result.returncode != 0:
            self.logger.warning(f"Firewall rules not captured: {describe_exit(result.returncode)}")
            return False
        with open(target, 'w') as f:
            f.write(result.stdout or "")
        return True

    def _restore_firewall(self, point: RollbackPoint) -> bool:
        if not os.path.exists(point.firewall_rules) or os.path.getsize(point.firewall_rules) == 0:
            self.logger.warning(f"No firewall rules stored in {point.path}")
            return False
        result = run(f"iptables-restore < {shlex.quote(point.firewall_rules)}",
                     timeout=self.command_timeout, quiet=True)
        if result.returncode != 0:
            self.logger.error(f"Firewall restore failed: {describe_exit(result.returncode)}")
            return False
        return True

    def _verify_services(self, point: RollbackPoint) -> list[str]:
        try:
            with open(point.service_state, 'r') as f:
                expected = parse_active_services(f.read())
        except FileNotFoundError:
            self.logger.warning(f"No service state listing in {point.path}")
            return []
        return [service for service in expected
                if not is_service_active(service, timeout=self.command_timeout)]

    def _systemctl(self, action: str, service: Optional[str] = None) -> None:
        cmd = f"systemctl {action}" + (f" {shlex.quote(service)}" if service else "")
        log_subprocess_result(self.logger, cmd, run(cmd, timeout=self.command_timeout, quiet=True))

    def _uptime(self) -> str:
        result = run("uptime -p", timeout=10, quiet=True)
        return (result.stdout or "").strip() if result.returncode == 0 else "unknown"

    def _update_current_pointer(self, point_dir: str) -> None:
        os.makedirs(self.state_dir, exist_ok=True)
        tmp_link = f"{self.current_pointer}.tmp"
        if os.path.lexists(tmp_link):
            os.unlink(tmp_link)
        os.symlink(point_dir, tmp_link)
        os.replace(tmp_link, self.current_pointer)

    def _current_target(self) -> Optional[str]:
        if not os.path.islink(self.current_pointer):
            return None
        return os.path.realpath(self.current_pointer)
