"""Tests for hardening/stages.py: ordering and resume comparisons."""

from __future__ import annotations

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from hardening.stages import DEFAULT_STAGES, Stage, stage_completed, stage_sort_key, validate_stage_order


class TestStageOrdering(unittest.TestCase):
    def test_numeric_prefix_order(self):
        self.assertLess(stage_sort_key("4_users"), stage_sort_key("5_network"))
        self.assertLess(stage_sort_key("9_monitoring"), stage_sort_key("10_verify"))

    def test_unnumbered_sorts_first(self):
        self.assertLess(stage_sort_key("setup"), stage_sort_key("1_init"))

    def test_default_pipeline_is_ordered(self):
        validate_stage_order(DEFAULT_STAGES)
        names = [s.name for s in DEFAULT_STAGES]
        self.assertEqual(names, sorted(names, key=stage_sort_key))

    def test_out_of_order_rejected(self):
        with self.assertRaises(ValueError):
            validate_stage_order([Stage("2_b", ("x",)), Stage("1_a", ("y",))])

    def test_duplicates_rejected(self):
        with self.assertRaises(ValueError):
            validate_stage_order([Stage("1_a", ("x",)), Stage("1_a", ("y",))])


class TestStageCompleted(unittest.TestCase):
    def test_nothing_completed(self):
        self.assertFalse(stage_completed("1_init", None))

    def test_resume_after_network(self):
        done = [s.name for s in DEFAULT_STAGES if stage_completed(s.name, "5_network")]
        self.assertEqual(done, ["1_init", "2_verify", "3_backup", "4_users", "5_network"])

    def test_double_digit_stage_not_treated_as_done(self):
        self.assertFalse(stage_completed("10_verify", "9_monitoring"))
        self.assertTrue(stage_completed("9_monitoring", "10_verify"))


class TestDefaultStages(unittest.TestCase):
    def test_critical_stages(self):
        critical = [s.name for s in DEFAULT_STAGES if s.critical]
        self.assertEqual(critical, ["4_users", "5_network", "6_ssh", "7_auth"])

    def test_ssh_stage_has_verification(self):
        ssh = next(s for s in DEFAULT_STAGES if s.name == "6_ssh")
        self.assertEqual(ssh.components, ("sshdconfig",))
        self.assertEqual(ssh.verify, "verify_sshd_config")


if __name__ == '__main__':
    unittest.main()
