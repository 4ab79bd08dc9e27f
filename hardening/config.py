"""Deployment configuration passed explicitly to every orchestration call."""

from __future__ import annotations

import argparse
import json
import os
from dataclasses import dataclass, asdict, field, fields
from typing import Optional, Any

from hardening.system_utils import get_hostname
from hardening.validators import (
    validate_email, validate_host, validate_ssh_port, validate_username
)


DEFAULT_CONFIG_FILE = "/etc/hardening/config.json"
DEFAULT_STATE_DIR = "/var/lib/hardening"
DEFAULT_LOG_DIR = "/var/log/hardening"
DEFAULT_BACKUP_DIR = "/var/backups/hardening"
DEFAULT_CLUSTER_NODES_FILE = "/etc/hardening/cluster_nodes"
DEFAULT_SSH_PORT = 3333
DEFAULT_RETENTION = 3
DEFAULT_CHECKPOINT_FROM_STAGE = "4_users"


@dataclass
class HardeningConfig:
    admin_user: str = "admin"
    admin_email: Optional[str] = None
    ssh_port: int = DEFAULT_SSH_PORT
    hostname: str = field(default_factory=get_hostname)
    state_dir: str = DEFAULT_STATE_DIR
    log_dir: str = DEFAULT_LOG_DIR
    backup_dir: str = DEFAULT_BACKUP_DIR
    cluster_nodes_file: str = DEFAULT_CLUSTER_NODES_FILE
    cluster_nodes: list[str] = field(default_factory=list)
    checkpoint_from_stage: str = DEFAULT_CHECKPOINT_FROM_STAGE
    retention: int = DEFAULT_RETENTION
    command_timeout: int = 300
    peer_timeout: int = 30
    health_check_timeout: int = 5
    notify_webhook: Optional[str] = None
    syslog: bool = False
    filesystem_root: str = "/"
    dry_run: bool = False

    @property
    def state_file(self) -> str:
        return os.path.join(self.state_dir, "deployment_state.json")

    @property
    def lock_path(self) -> str:
        return os.path.join(self.state_dir, "deployment.lock")

    @property
    def deployment_log(self) -> str:
        return os.path.join(self.log_dir, "deployment.log")

    def validate(self) -> list[str]:
        """Return configuration problems; an empty list means usable."""
        problems: list[str] = []
        if not validate_username(self.admin_user):
            problems.append(f"Invalid admin user: {self.admin_user!r}")
        if not validate_ssh_port(self.ssh_port):
            problems.append("SSH port must be a valid port number (1024-65535)")
        if self.admin_email and not validate_email(self.admin_email):
            problems.append(f"Invalid admin email: {self.admin_email!r}")
        for node in self.cluster_nodes:
            if not validate_host(node):
                problems.append(f"Invalid cluster node: {node!r}")
        if self.retention < 1:
            problems.append("Retention must keep at least one rollback point")
        return problems

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'HardeningConfig':
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
        values = dict(data)
        if values.get('cluster_nodes') is None:
            values.pop('cluster_nodes', None)
        return cls(**values)

    @classmethod
    def load(cls, path: str = DEFAULT_CONFIG_FILE) -> 'HardeningConfig':
        """Load configuration from a JSON file; a missing file means defaults."""
        if not os.path.exists(path):
            return cls()
        with open(path, 'r') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object in {path}, got {type(data).__name__}")
        return cls.from_dict(data)

    def save(self, path: str = DEFAULT_CONFIG_FILE) -> None:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> 'HardeningConfig':
        """Load the config file named on the command line and apply overrides."""
        config = cls.load(getattr(args, 'config', None) or DEFAULT_CONFIG_FILE)

        overrides = {
            'admin_user': getattr(args, 'admin_user', None),
            'admin_email': getattr(args, 'admin_email', None),
            'ssh_port': getattr(args, 'ssh_port', None),
        }
        for key, value in overrides.items():
            if value is not None:
                setattr(config, key, value)

        if getattr(args, 'dry_run', False):
            config.dry_run = True
        return config
