"""Tests for rollback_manager.py command-line behaviour."""

from __future__ import annotations

import io
import json
import os
import subprocess
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import rollback_manager


def fake_run(cmd, **kwargs):
    if cmd.startswith("systemctl list-units"):
        return subprocess.CompletedProcess([cmd], 0, stdout="ssh.service loaded active running ssh\n", stderr="")
    return subprocess.CompletedProcess([cmd], 0, stdout="", stderr="")


class TestRollbackManagerCli(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        base = self._tmp.name
        self.root = os.path.join(base, "root")
        os.makedirs(os.path.join(self.root, "etc", "ssh"))
        with open(os.path.join(self.root, "etc", "ssh", "sshd_config"), "w") as f:
            f.write("Port 22\n")
        self.config_file = os.path.join(base, "config.json")
        with open(self.config_file, "w") as f:
            json.dump({
                "hostname": "node1",
                "state_dir": os.path.join(base, "state"),
                "log_dir": os.path.join(base, "log"),
                "backup_dir": os.path.join(base, "backups"),
                "filesystem_root": self.root,
            }, f)

        for target, kwargs in (("hardening.checkpoint_store.run", {"side_effect": fake_run}),
                               ("hardening.checkpoint_store.is_service_active", {"return_value": True})):
            p = patch(target, **kwargs)
            p.start()
            self.addCleanup(p.stop)

    def tearDown(self):
        self._tmp.cleanup()

    def cli(self, *args):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = rollback_manager.main(["--config", self.config_file, *args])
        return code, out.getvalue(), err.getvalue()

    def test_create_list_rollback(self):
        code, out, _ = self.cli("create", "6_ssh")
        self.assertEqual(code, 0)
        self.assertIn("Rollback point created", out)

        code, out, _ = self.cli("list")
        self.assertEqual(code, 0)
        self.assertIn("6_ssh", out)

        code, out, _ = self.cli("rollback", "6_ssh")
        self.assertEqual(code, 0)
        self.assertIn("Rolled back to 6_ssh", out)

    def test_invalid_point_name(self):
        code, _, err = self.cli("create", "nonsense")
        self.assertEqual(code, 1)
        self.assertIn("Invalid rollback point name", err)

    def test_rollback_without_points(self):
        code, _, err = self.cli("rollback", "auth")
        self.assertEqual(code, 1)
        self.assertIn("No rollback point", err)

    def test_missing_command(self):
        code, _, _ = self.cli()
        self.assertEqual(code, 1)

    def test_list_empty(self):
        code, out, _ = self.cli("list")
        self.assertEqual(code, 0)
        self.assertIn("No rollback points found", out)

    def test_create_prunes(self):
        for _ in range(5):
            self.assertEqual(self.cli("create", "custom_demo")[0], 0)
        backups = os.listdir(os.path.join(self._tmp.name, "backups"))
        self.assertEqual(len(backups), 3)

    def test_partial_restore_exit_code(self):
        self.cli("create", "6_ssh")
        with patch("hardening.checkpoint_store.is_service_active", return_value=False):
            code, _, err = self.cli("rollback", "6_ssh")
        self.assertEqual(code, 1)
        self.assertIn("ssh.service", err)

    def test_bad_config_file(self):
        with open(self.config_file, "w") as f:
            f.write("[")
        code, _, err = self.cli("list")
        self.assertEqual(code, 1)
        self.assertIn("could not load configuration", err)


if __name__ == '__main__':
    unittest.main()
