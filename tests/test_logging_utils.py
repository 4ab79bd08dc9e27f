"""Tests for hardening/logging_utils.py: rotating logger, service logger, subprocess results."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import tempfile
import unittest
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from hardening.logging_utils import (
    ensure_log_directory,
    get_rotating_logger,
    get_service_logger,
    get_standard_formatter,
    log_subprocess_result,
)


class TestGetStandardFormatter(unittest.TestCase):
    def test_format_string(self):
        fmt = get_standard_formatter()
        self.assertIn('%(asctime)s', fmt._fmt)
        self.assertIn('%(levelname)', fmt._fmt)


class TestGetRotatingLogger(unittest.TestCase):
    def test_idempotent(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = os.path.join(tmpdir, 'test.log')
            logger1 = get_rotating_logger('hardening_test_idempotent', log_file)
            handler_count = len(logger1.handlers)
            logger2 = get_rotating_logger('hardening_test_idempotent', log_file)
            self.assertEqual(len(logger2.handlers), handler_count)

    def test_writes_to_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = os.path.join(tmpdir, 'nested', 'test.log')
            logger = get_rotating_logger('hardening_test_write', log_file)
            logger.info('stage 5_network completed')
            for h in logger.handlers:
                h.flush()
            with open(log_file, 'r') as f:
                self.assertIn('stage 5_network completed', f.read())

    def test_unwritable_directory_falls_back_to_stderr(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            blocker = os.path.join(tmpdir, 'file')
            open(blocker, 'w').close()
            logger = get_rotating_logger('hardening_test_fallback', os.path.join(blocker, 'x.log'))
            self.assertTrue(any(isinstance(h, logging.StreamHandler) for h in logger.handlers))


class TestGetServiceLogger(unittest.TestCase):
    def test_console_handler_added_once(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = get_service_logger('hardening_test_service', tmpdir)
            count = len(logger.handlers)
            get_service_logger('hardening_test_service', tmpdir)
            self.assertEqual(len(logger.handlers), count)
            self.assertTrue(os.path.exists(os.path.join(tmpdir, 'hardening_test_service.log')))

    def test_syslog_handler_added_once(self):
        class RecordingSysLogHandler(logging.Handler):
            def __init__(self, address=None):
                super().__init__()
                self.address = address

        with tempfile.TemporaryDirectory() as tmpdir, \
                patch('hardening.logging_utils.SysLogHandler', RecordingSysLogHandler):
            get_service_logger('hardening_test_syslog', tmpdir, use_syslog=True)
            logger = get_service_logger('hardening_test_syslog', tmpdir, use_syslog=True)
            syslog = [h for h in logger.handlers if isinstance(h, RecordingSysLogHandler)]
            self.assertEqual(len(syslog), 1)
            self.assertEqual(syslog[0].address, '/dev/log')

    def test_syslog_off_by_default(self):
        with tempfile.TemporaryDirectory() as tmpdir, \
                patch('hardening.logging_utils.SysLogHandler') as mock_syslog:
            get_service_logger('hardening_test_no_syslog', tmpdir)
        mock_syslog.assert_not_called()


class TestEnsureLogDirectory(unittest.TestCase):
    def test_creates_subdir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = ensure_log_directory(tmpdir, 'operations')
            self.assertTrue(path.is_dir())
            self.assertEqual(path.name, 'operations')


class TestLogSubprocessResult(unittest.TestCase):
    def test_success(self):
        logger = MagicMock()
        result = subprocess.CompletedProcess(['x'], 0, stdout='', stderr='')
        self.assertTrue(log_subprocess_result(logger, 'restart ssh', result))
        logger.log.assert_called_once_with(logging.INFO, '✓ restart ssh')

    def test_failure_summarizes_stderr(self):
        logger = MagicMock()
        stderr = 'line1\nline2\nline3\nline4\n'
        result = subprocess.CompletedProcess(['x'], 1, stdout='', stderr=stderr)
        self.assertFalse(log_subprocess_result(logger, 'restart ssh', result))
        message = logger.log.call_args[0][1]
        self.assertIn('line1 | line2 | line3 | ...', message)

    def test_failure_without_stderr(self):
        logger = MagicMock()
        result = subprocess.CompletedProcess(['x'], 5, stdout='', stderr='')
        log_subprocess_result(logger, 'reload', result)
        self.assertIn('exit code 5', logger.log.call_args[0][1])


if __name__ == '__main__':
    unittest.main()
