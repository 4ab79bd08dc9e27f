"""Tests for hardening/validators.py."""

from __future__ import annotations

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from hardening.validators import (
    validate_email,
    validate_host,
    validate_ip_address,
    validate_ssh_port,
    validate_username,
)


class TestValidateIpAddress(unittest.TestCase):
    def test_valid(self):
        self.assertTrue(validate_ip_address("192.168.1.10"))
        self.assertTrue(validate_ip_address("0.0.0.0"))

    def test_invalid(self):
        self.assertFalse(validate_ip_address("256.1.1.1"))
        self.assertFalse(validate_ip_address("1.2.3"))
        self.assertFalse(validate_ip_address("a.b.c.d"))


class TestValidateHost(unittest.TestCase):
    def test_hostnames(self):
        self.assertTrue(validate_host("node1"))
        self.assertTrue(validate_host("web-01.example.com."))
        self.assertFalse(validate_host("-bad"))
        self.assertFalse(validate_host("has space"))


class TestValidateUsername(unittest.TestCase):
    def test_usernames(self):
        self.assertTrue(validate_username("admin"))
        self.assertTrue(validate_username("_svc-1"))
        self.assertFalse(validate_username("Admin"))
        self.assertFalse(validate_username("1admin"))
        self.assertFalse(validate_username("a" * 33))


class TestValidateEmail(unittest.TestCase):
    def test_addresses(self):
        self.assertTrue(validate_email("ops@example.com"))
        self.assertFalse(validate_email("ops@localhost"))
        self.assertFalse(validate_email("example.com"))
        self.assertFalse(validate_email("o ps@example.com"))


class TestValidateSshPort(unittest.TestCase):
    def test_ports(self):
        self.assertTrue(validate_ssh_port(3333))
        self.assertTrue(validate_ssh_port(65535))
        self.assertFalse(validate_ssh_port(22))
        self.assertFalse(validate_ssh_port(70000))
        self.assertFalse(validate_ssh_port("3333"))
        self.assertFalse(validate_ssh_port(True))


if __name__ == '__main__':
    unittest.main()
