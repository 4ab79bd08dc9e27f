"""Loose multi-host coordination: state replication and peer checks.

Everything here is advisory. Peer failures are reported and logged but
never raise into, block or reorder a local deployment.
"""

from __future__ import annotations

import json
import os
import shlex
import time
from dataclasses import dataclass, field
from logging import Logger
from typing import Callable, Optional

from hardening.config import HardeningConfig
from hardening.deployment_state import DeploymentStateStore
from hardening.errors import StateStoreIOError
from hardening.system_utils import describe_exit, run
from hardening.types import ComponentStatusMap, StateDocument
from hardening.validators import validate_host

REMOTE_USER = "root"
SYNC_SUBDIR = "sync"
DEFAULT_SYNC_INTERVAL = 300
# Extra time granted to the subprocess over rsync's own I/O timeout
SUBPROCESS_GRACE_SECONDS = 30


@dataclass
class PeerResult:
    node: str
    ok: bool
    message: str = ""


@dataclass
class SyncReport:
    results: list[PeerResult] = field(default_factory=list)

    @property
    def failed(self) -> list[str]:
        return [r.node for r in self.results if not r.ok]

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class HealthReport:
    healthy: list[str] = field(default_factory=list)
    unhealthy: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.unhealthy


@dataclass
class ConsistencyReport:
    consistent: list[str] = field(default_factory=list)
    inconsistent: list[str] = field(default_factory=list)
    unreachable: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.inconsistent and not self.unreachable


def component_statuses(state: StateDocument) -> ComponentStatusMap:
    """Reduce a state record's components to {name: status} for comparison."""
    return {name: entry.get("status") for name, entry in state.get("components", {}).items()}


class ClusterCoordinator:
    """Replicates the local state record and logs to peers and checks on them.

    Peers receive our files under ``<state_dir>/sync/<our hostname>/`` so a
    replica never overwrites the peer's own deployment record.
    """

    def __init__(self, config: HardeningConfig, logger: Logger):
        self.config = config
        self.logger = logger
        self.hostname = config.hostname

    @property
    def sync_dir(self) -> str:
        return os.path.join(self.config.state_dir, SYNC_SUBDIR)

    def init(self) -> None:
        os.makedirs(self.sync_dir, exist_ok=True)
        os.makedirs(os.path.dirname(self.config.cluster_nodes_file) or ".", exist_ok=True)
        if not os.path.exists(self.config.cluster_nodes_file):
            open(self.config.cluster_nodes_file, 'a').close()

    def load_nodes(self) -> list[str]:
        """Members from the nodes file followed by configured extras, de-duplicated."""
        nodes: list[str] = []
        try:
            with open(self.config.cluster_nodes_file, 'r') as f:
                lines = f.read().splitlines()
        except FileNotFoundError:
            lines = []
        for line in lines + list(self.config.cluster_nodes):
            node = line.strip()
            if not node or node.startswith("#") or node in nodes:
                continue
            nodes.append(node)
        return nodes

    def add_node(self, node: str) -> bool:
        """Register ``node`` in the nodes file; False if already present."""
        if not validate_host(node):
            raise ValueError(f"Invalid cluster node name: {node}")
        self.init()
        with open(self.config.cluster_nodes_file, 'r') as f:
            existing = {line.strip() for line in f}
        if node in existing:
            return False
        with open(self.config.cluster_nodes_file, 'a') as f:
            f.write(f"{node}\n")
        self.logger.info(f"Registered cluster node {node}")
        return True

    def peers(self) -> list[str]:
        return [node for node in self.load_nodes() if node != self.hostname]

    def sync_state(self) -> SyncReport:
        """Push the state record and the log directory to every peer."""
        report = SyncReport()
        remote_base = f"{self.sync_dir}/{self.hostname}"
        for node in self.peers():
            transfers = (
                (self.config.state_file, f"{remote_base}/state/"),
                (self.config.log_dir.rstrip("/") + "/", f"{remote_base}/logs/"),
            )
            problems = []
            for source, destination in transfers:
                if not os.path.exists(source.rstrip("/")):
                    continue
                result = self._rsync(source, node, destination)
                if result.returncode != 0:
                    problems.append(f"{os.path.basename(source.rstrip('/'))}: {describe_exit(result.returncode)}")
            if problems:
                message = "; ".join(problems)
                self.logger.warning(f"Sync to {node} failed: {message}")
                report.results.append(PeerResult(node, False, message))
            else:
                report.results.append(PeerResult(node, True))
        return report

    def check_health(self) -> HealthReport:
        """Check every peer for its own state file within health_check_timeout."""
        report = HealthReport()
        remote_cmd = f"test -f {shlex.quote(self.config.state_file)}"
        for node in self.peers():
            result = self._ssh(node, remote_cmd, self.config.health_check_timeout)
            if result.returncode == 0:
                report.healthy.append(node)
            else:
                report.unhealthy.append(node)
        if report.unhealthy:
            self.logger.warning(f"Unhealthy nodes detected: {' '.join(report.unhealthy)}")
        return report

    def verify_consistency(self) -> ConsistencyReport:
        """Compare each peer's component statuses with ours.

        Raises:
            StateStoreIOError: the local record is unreadable
        """
        local = component_statuses(DeploymentStateStore(self.config.state_file, self.config.log_dir).load())
        report = ConsistencyReport()
        remote_cmd = f"cat {shlex.quote(self.config.state_file)}"
        for node in self.peers():
            result = self._ssh(node, remote_cmd, self.config.peer_timeout)
            if result.returncode != 0:
                report.unreachable.append(node)
                continue
            try:
                remote = component_statuses(json.loads(result.stdout))
            except (ValueError, AttributeError):
                report.unreachable.append(node)
                continue
            if remote == local:
                report.consistent.append(node)
            else:
                report.inconsistent.append(node)
                self.logger.warning(f"Node {node} has inconsistent state")
        if report.unreachable:
            self.logger.warning(f"Could not read state from: {' '.join(report.unreachable)}")
        return report

    def start(self) -> HealthReport:
        """Register this host, push an initial sync and check peers."""
        self.init()
        self.add_node(self.hostname)
        self.sync_state()
        return self.check_health()

    def run_forever(self, interval: float = DEFAULT_SYNC_INTERVAL, iterations: Optional[int] = None,
                    sleep: Callable[[float], None] = time.sleep) -> None:
        """Loop sync, verify, sleep. ``iterations`` bounds the loop when set."""
        count = 0
        while iterations is None or count < iterations:
            self.sync_state()
            try:
                self.verify_consistency()
            except StateStoreIOError as e:
                self.logger.error(f"Skipping consistency check: {e}")
            count += 1
            if iterations is None or count < iterations:
                sleep(interval)

    def _rsync(self, source: str, node: str, destination: str):
        timeout = self.config.peer_timeout
        cmd = (f"rsync -az --mkpath --timeout={int(timeout)} "
               f"-e 'ssh -o BatchMode=yes -o ConnectTimeout={int(timeout)}' "
               f"{shlex.quote(source)} {shlex.quote(f'{REMOTE_USER}@{node}:{destination}')}")
        return run(cmd, timeout=timeout + SUBPROCESS_GRACE_SECONDS, quiet=True)

    def _ssh(self, node: str, remote_cmd: str, timeout: float):
        cmd = (f"ssh -q -o BatchMode=yes -o ConnectTimeout={int(timeout)} "
               f"{shlex.quote(f'{REMOTE_USER}@{node}')} {shlex.quote(remote_cmd)}")
        return run(cmd, timeout=timeout, quiet=True)
