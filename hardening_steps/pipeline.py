"""Component registry for the default hardening pipeline."""

from __future__ import annotations

from hardening.components import ComponentRegistry
from hardening.stages import DEFAULT_STAGES, Stage

from .steps import (
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

COMPONENT_FUNCTIONS = {
    "install_prerequisites": install_prerequisites,
    "preflight_check": preflight_check,
    "baseline_checkpoint": baseline_checkpoint,
    "create_admin_user": create_admin_user,
    "kernel": harden_kernel,
    "network_isolation": configure_network_isolation,
    "sshdconfig": harden_ssh,
    "verify_sshd_config": verify_sshd_config,
    "password": configure_password_policy,
    "mfa": configure_mfa,
    "auditd": configure_auditd,
    "aide": configure_aide,
    "security_monitoring": configure_security_monitoring,
    "integration_tests": run_integration_tests,
}


def build_registry() -> ComponentRegistry:
    registry = ComponentRegistry()
    for name, func in COMPONENT_FUNCTIONS.items():
        registry.register_function(name, func)
    return registry


def default_pipeline() -> tuple[list[Stage], ComponentRegistry]:
    return list(DEFAULT_STAGES), build_registry()
