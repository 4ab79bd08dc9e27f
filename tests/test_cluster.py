"""Tests for hardening/cluster.py: membership, replication and peer checks."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
import tempfile
import unittest
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from hardening.cluster import ClusterCoordinator, component_statuses
from hardening.config import HardeningConfig
from hardening.deployment_state import ComponentStatus, DeploymentStateStore


def completed(returncode=0, stdout=""):
    return subprocess.CompletedProcess(["cmd"], returncode, stdout=stdout, stderr="")


class ClusterTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        base = self._tmp.name
        self.config = HardeningConfig(
            hostname="node1",
            state_dir=os.path.join(base, "state"),
            log_dir=os.path.join(base, "log"),
            cluster_nodes_file=os.path.join(base, "etc", "cluster_nodes"),
        )
        logger = logging.getLogger("test_cluster")
        logger.addHandler(logging.NullHandler())
        logger.propagate = False
        self.coordinator = ClusterCoordinator(self.config, logger)

        self.state = DeploymentStateStore(self.config.state_file, self.config.log_dir, "node1")
        self.state.init()
        self.state.begin_run()
        self.state.update_component("kernel", ComponentStatus.COMPLETED)
        os.makedirs(self.config.log_dir, exist_ok=True)

    def tearDown(self):
        self._tmp.cleanup()

    def _register(self, *nodes):
        for node in nodes:
            self.coordinator.add_node(node)


class TestMembership(ClusterTestCase):
    def test_add_node_is_idempotent(self):
        self.assertTrue(self.coordinator.add_node("node2"))
        self.assertFalse(self.coordinator.add_node("node2"))
        self.assertEqual(self.coordinator.load_nodes(), ["node2"])

    def test_invalid_node_rejected(self):
        with self.assertRaises(ValueError):
            self.coordinator.add_node("bad host;rm")

    def test_peers_exclude_self_and_merge_config(self):
        self._register("node1", "node2")
        self.config.cluster_nodes = ["node3", "node2"]
        self.assertEqual(self.coordinator.peers(), ["node2", "node3"])

    def test_missing_nodes_file(self):
        self.assertEqual(self.coordinator.load_nodes(), [])


class TestSyncState(ClusterTestCase):
    @patch("hardening.cluster.run")
    def test_one_unreachable_peer_does_not_stop_sync(self, mock_run):
        self._register("node2", "node3")
        mock_run.side_effect = lambda cmd, **kw: completed(12 if "node2" in cmd else 0)

        report = self.coordinator.sync_state()

        self.assertEqual(report.failed, ["node2"])
        self.assertFalse(report.ok)
        synced = [c.args[0] for c in mock_run.call_args_list if "node3" in c.args[0]]
        self.assertEqual(len(synced), 2)

    @patch("hardening.cluster.run", return_value=completed())
    def test_commands_are_bounded(self, mock_run):
        self._register("node2")
        self.coordinator.sync_state()

        for call in mock_run.call_args_list:
            self.assertIn("--timeout=30", call.args[0])
            self.assertEqual(call.kwargs["timeout"], 60)
        destinations = " ".join(c.args[0] for c in mock_run.call_args_list)
        self.assertIn(f"root@node2:{self.config.state_dir}/sync/node1/state/", destinations)

    @patch("hardening.cluster.run")
    def test_no_peers_no_commands(self, mock_run):
        self._register("node1")
        self.assertTrue(self.coordinator.sync_state().ok)
        mock_run.assert_not_called()


class TestHealthAndConsistency(ClusterTestCase):
    @patch("hardening.cluster.run")
    def test_unhealthy_peers_reported(self, mock_run):
        self._register("node2", "node3")
        mock_run.side_effect = lambda cmd, **kw: completed(124 if "node3" in cmd else 0)

        report = self.coordinator.check_health()

        self.assertEqual(report.healthy, ["node2"])
        self.assertEqual(report.unhealthy, ["node3"])
        self.assertEqual(mock_run.call_args_list[0].kwargs["timeout"], 5)

    @patch("hardening.cluster.run")
    def test_consistency_compares_statuses_only(self, mock_run):
        self._register("node2", "node3", "node4")
        same = {"components": {"kernel": {"status": "completed", "updated_at": "2020-01-01T00:00:00Z"}}}
        different = {"components": {"kernel": {"status": "failed", "updated_at": "2020-01-01T00:00:00Z"}}}

        def remote(cmd, **kw):
            if "node2" in cmd:
                return completed(stdout=json.dumps(same))
            if "node3" in cmd:
                return completed(stdout=json.dumps(different))
            return completed(255)

        mock_run.side_effect = remote
        report = self.coordinator.verify_consistency()

        self.assertEqual(report.consistent, ["node2"])
        self.assertEqual(report.inconsistent, ["node3"])
        self.assertEqual(report.unreachable, ["node4"])

    def test_component_statuses(self):
        state = {"components": {"a": {"status": "completed", "updated_at": "x"}}}
        self.assertEqual(component_statuses(state), {"a": "completed"})


class TestLoop(ClusterTestCase):
    @patch("hardening.cluster.run", return_value=completed(stdout="{}"))
    def test_bounded_iterations_sleep_between_rounds(self, _run):
        sleep = MagicMock()
        with patch.object(self.coordinator, "sync_state") as sync, \
                patch.object(self.coordinator, "verify_consistency") as verify:
            self.coordinator.run_forever(interval=7, iterations=3, sleep=sleep)

        self.assertEqual(sync.call_count, 3)
        self.assertEqual(verify.call_count, 3)
        self.assertEqual(sleep.call_count, 2)
        sleep.assert_called_with(7)

    @patch("hardening.cluster.run", return_value=completed())
    def test_start_registers_self(self, _run):
        report = self.coordinator.start()
        self.assertIn("node1", self.coordinator.load_nodes())
        self.assertTrue(report.ok)


if __name__ == '__main__':
    unittest.main()
