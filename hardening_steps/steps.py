"""Security hardening steps."""

from __future__ import annotations

from .security_steps import (
    install_prerequisites,
    preflight_check,
    baseline_checkpoint,
    create_admin_user,
    harden_kernel,
    configure_network_isolation,
    harden_ssh,
    verify_sshd_config,
    configure_password_policy,
    configure_mfa,
    configure_auditd,
    configure_aide,
    configure_security_monitoring,
    run_integration_tests,
)

__all__ = [
    'install_prerequisites',
    'preflight_check',
    'baseline_checkpoint',
    'create_admin_user',
    'harden_kernel',
    'configure_network_isolation',
    'harden_ssh',
    'verify_sshd_config',
    'configure_password_policy',
    'configure_mfa',
    'configure_auditd',
    'configure_aide',
    'configure_security_monitoring',
    'run_integration_tests',
]
