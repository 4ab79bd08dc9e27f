"""Tests for hardening/deployment_state.py: atomic writes, transitions, failures."""

from __future__ import annotations

import json
import os
import stat
import sys
import tempfile
import threading
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from hardening.deployment_state import (
    ComponentStatus,
    DeploymentStateStore,
    DeploymentStatus,
    new_state_document,
    validate_state_document,
)
from hardening.errors import StateStoreIOError


class StateStoreTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.state_file = os.path.join(self._tmp.name, "state", "deployment_state.json")
        self.export_dir = os.path.join(self._tmp.name, "log")
        self.store = DeploymentStateStore(self.state_file, self.export_dir, hostname="node1")

    def tearDown(self):
        self._tmp.cleanup()


class TestValidateStateDocument(unittest.TestCase):
    def test_new_document_is_valid(self):
        self.assertIsNone(validate_state_document(new_state_document("h")))

    def test_not_a_dict(self):
        self.assertIn("Expected dict", validate_state_document([]))

    def test_missing_keys(self):
        state = new_state_document("h")
        del state["errors"]
        self.assertIn("errors", validate_state_document(state))

    def test_unknown_component_status(self):
        state = new_state_document("h")
        state["components"]["x"] = {"status": "exploded"}
        self.assertIn("Unknown status", validate_state_document(state))


class TestInitAndRead(StateStoreTestCase):
    def test_init_creates_record(self):
        state = self.store.init()
        self.assertEqual(state["hostname"], "node1")
        self.assertEqual(self.store.get_status(), DeploymentStatus.NOT_STARTED)
        with open(self.state_file) as f:
            self.assertEqual(json.load(f)["status"], "not_started")

    def test_init_is_idempotent(self):
        self.store.init()
        self.store.begin_run()
        self.store.init()
        self.assertEqual(self.store.get_status(), DeploymentStatus.IN_PROGRESS)

    def test_hostname_not_overwritten(self):
        self.store.init()
        DeploymentStateStore(self.state_file, self.export_dir, hostname="other").init()
        self.assertEqual(self.store.load()["hostname"], "node1")

    def test_corrupt_file_raises(self):
        os.makedirs(os.path.dirname(self.state_file))
        with open(self.state_file, "w") as f:
            f.write("{not json")
        with self.assertRaises(StateStoreIOError):
            self.store.init()

    def test_missing_file_raises_on_load(self):
        with self.assertRaises(StateStoreIOError):
            self.store.load()


class TestTransitions(StateStoreTestCase):
    def setUp(self):
        super().setUp()
        self.store.init()

    def test_forward_run(self):
        self.store.begin_run()
        self.store.set_status(DeploymentStatus.COMPLETED)
        state = self.store.load()
        self.assertEqual(state["status"], "completed")
        self.assertIsNotNone(state["end_time"])

    def test_backward_transition_rejected(self):
        with self.assertRaises(ValueError):
            self.store.set_status(DeploymentStatus.COMPLETED)

    def test_interrupted_allowed_from_any_status(self):
        self.store.begin_run()
        self.store.mark_interrupted()
        self.assertEqual(self.store.get_status(), DeploymentStatus.INTERRUPTED)
        self.store.begin_run(resume=True)
        self.assertEqual(self.store.get_status(), DeploymentStatus.IN_PROGRESS)

    def test_begin_run_resets_progress_unless_resuming(self):
        self.store.begin_run()
        self.store.record_stage_completed("5_network")
        self.store.set_status(DeploymentStatus.FAILED)

        self.store.begin_run(resume=True)
        self.assertEqual(self.store.last_completed_stage(), "5_network")
        self.store.set_status(DeploymentStatus.FAILED)

        self.store.begin_run(resume=False)
        self.assertIsNone(self.store.last_completed_stage())


class TestComponents(StateStoreTestCase):
    def setUp(self):
        super().setUp()
        self.store.init()
        self.store.begin_run()

    def test_update_component(self):
        self.store.update_component("kernel", ComponentStatus.RUNNING)
        self.assertEqual(self.store.get_component_status("kernel"), ComponentStatus.RUNNING)
        self.store.update_component("kernel", ComponentStatus.COMPLETED)
        entry = self.store.load()["components"]["kernel"]
        self.assertEqual(entry["status"], "completed")
        self.assertTrue(entry["updated_at"].endswith("Z"))

    def test_only_one_running_component(self):
        self.store.update_component("kernel", ComponentStatus.RUNNING)
        with self.assertRaises(ValueError):
            self.store.update_component("sshdconfig", ComponentStatus.RUNNING)
        self.assertEqual(self.store.running_components(), ["kernel"])

    def test_stale_running_component_demoted_on_new_run(self):
        self.store.update_component("kernel", ComponentStatus.RUNNING)
        self.store.mark_interrupted()

        self.store.begin_run(resume=True)

        self.assertEqual(self.store.get_component_status("kernel"), ComponentStatus.FAILED)
        self.assertEqual(self.store.running_components(), [])
        self.assertEqual(self.store.load()["errors"][-1]["component"], "kernel")

    def test_record_error_appends(self):
        self.store.record_error("kernel", "first")
        self.store.record_error("mfa", "second")
        errors = self.store.load()["errors"]
        self.assertEqual([e["message"] for e in errors], ["first", "second"])
        self.assertEqual(errors[1]["component"], "mfa")


class TestAtomicWrites(StateStoreTestCase):
    def test_concurrent_reader_never_sees_partial_document(self):
        self.store.init()
        self.store.begin_run()
        stop = threading.Event()
        problems = []

        def reader():
            while not stop.is_set():
                try:
                    with open(self.state_file) as f:
                        state = json.load(f)
                except ValueError as e:
                    problems.append(str(e))
                    continue
                error = validate_state_document(state)
                if error:
                    problems.append(error)

        thread = threading.Thread(target=reader)
        thread.start()
        try:
            for i in range(150):
                self.store.update_component(f"component_{i}", ComponentStatus.RUNNING)
                self.store.update_component(f"component_{i}", ComponentStatus.COMPLETED)
                self.store.record_error(f"component_{i}", "x" * 500)
        finally:
            stop.set()
            thread.join()

        self.assertEqual(problems, [])

    def test_write_failure_surfaces_and_keeps_previous_record(self):
        self.store.init()
        with patch("hardening.deployment_state.os.replace", side_effect=OSError("disk full")):
            with self.assertRaises(StateStoreIOError):
                self.store.begin_run()

        self.assertEqual(self.store.get_status(), DeploymentStatus.NOT_STARTED)
        leftovers = [n for n in os.listdir(os.path.dirname(self.state_file)) if n.endswith(".tmp")]
        self.assertEqual(leftovers, [])


class TestExportSnapshot(StateStoreTestCase):
    def test_export_is_read_only_copy(self):
        self.store.init()
        export = self.store.export_snapshot()

        self.assertTrue(os.path.basename(export).startswith("deployment_"))
        mode = stat.S_IMODE(os.stat(export).st_mode)
        self.assertEqual(mode & 0o222, 0)
        with open(export) as f:
            self.assertEqual(json.load(f)["hostname"], "node1")

    def test_exports_do_not_overwrite(self):
        self.store.init()
        first = self.store.export_snapshot()
        second = self.store.export_snapshot()
        self.assertNotEqual(first, second)


if __name__ == '__main__':
    unittest.main()
