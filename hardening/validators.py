"""Validation utilities for hardening configuration."""

import re


def validate_ip_address(ip: str) -> bool:
    """Validate an IPv4 address."""
    pattern = r'^(\d{1,3}\.){3}\d{1,3}$'
    if not re.match(pattern, ip):
        return False
    octets = ip.split('.')
    return all(0 <= int(octet) <= 255 for octet in octets)


def validate_host(host: str) -> bool:
    """Validate a hostname or IP address."""
    normalized_host = host.lower().rstrip('.')
    if validate_ip_address(normalized_host):
        return True
    hostname_pattern = r'^([a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?\.)*[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?$'
    return bool(re.match(hostname_pattern, normalized_host))


def validate_username(username: str) -> bool:
    """Validate a Unix username."""
    pattern = r'^[a-z_][a-z0-9_-]{0,31}$'
    return bool(re.match(pattern, username))


def validate_email(email: str) -> bool:
    """Loose check that an admin contact looks like user@domain."""
    local, sep, domain = email.partition('@')
    if not sep or not local or ' ' in email:
        return False
    return '.' in domain and validate_host(domain)


def validate_ssh_port(port: object) -> bool:
    """SSH must move to an unprivileged, valid TCP port."""
    if isinstance(port, bool) or not isinstance(port, int):
        return False
    return 1024 <= port <= 65535
