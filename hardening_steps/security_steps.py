"""Security hardening steps.

Each step takes the deployment context, is safe to re-run, and reports
failure through a ComponentResult (or an exception the executor classifies).
In dry-run mode, commands and file writes that change the host are printed
instead of performed; read-only checks still run.
"""

from __future__ import annotations

import os
import re
import shlex
import shutil
import subprocess

from hardening.components import ComponentResult, DeploymentContext
from hardening.system_utils import (
    file_contains, is_container, is_package_installed, is_root, is_service_active, run, user_exists
)
from hardening.types import BYTES_PER_GB

PREREQUISITE_PACKAGES = [
    "ufw", "fail2ban", "auditd", "audispd-plugins", "aide",
    "libpam-pwquality", "libpam-google-authenticator", "rsync",
]
MIN_FREE_DISK_BYTES = 5 * BYTES_PER_GB
SSHD_CONFIG = "/etc/ssh/sshd_config"
SYSCTL_CONF = "/etc/sysctl.d/99-security-hardening.conf"
AUDIT_RULES = "/etc/audit/rules.d/99-hardening.rules"
PWQUALITY_CONF = "/etc/security/pwquality.conf"
FAIL2BAN_JAIL = "/etc/fail2ban/jail.d/sshd-hardening.local"
PAM_SSHD = "/etc/pam.d/sshd"
REMOTE_GROUP = "remoteusers"


def _run(context: DeploymentContext, cmd: str, **kwargs) -> subprocess.CompletedProcess[str]:
    """Run a command that changes the host; only printed in dry-run mode."""
    return run(cmd, dry_run=context.dry_run, **kwargs)


def _write_file(context: DeploymentContext, path: str, content: str, append: bool = False) -> None:
    if context.dry_run:
        print(f"  [DRY-RUN] Would {'append to' if append else 'write'} {path}")
        return
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "a" if append else "w") as f:
        f.write(content)


def _copy_file(context: DeploymentContext, source: str, target: str) -> None:
    if context.dry_run:
        print(f"  [DRY-RUN] Would copy {source} to {target}")
        return
    shutil.copyfile(source, target)


def _apt_install(packages: list[str], context: DeploymentContext) -> ComponentResult:
    command = "DEBIAN_FRONTEND=noninteractive apt-get install -y -qq " + " ".join(packages)
    return ComponentResult.from_process(_run(context, command, timeout=context.config.command_timeout))


def install_prerequisites(context: DeploymentContext) -> ComponentResult:
    missing = [p for p in PREREQUISITE_PACKAGES if not is_package_installed(p)]
    if not missing:
        print("  ✓ Prerequisites already installed")
        return ComponentResult.ok()

    result = _run(context, "apt-get update -qq", timeout=context.config.command_timeout)
    if result.returncode != 0:
        return ComponentResult.from_process(result)

    installed = _apt_install(missing, context)
    if installed.success:
        print(f"  ✓ Installed {', '.join(missing)}")
    return installed


def preflight_check(context: DeploymentContext) -> ComponentResult:
    """Refuse hosts the pipeline cannot safely harden."""
    problems = []
    if not is_root():
        problems.append("must run as root")
    if not shutil.which("systemctl"):
        problems.append("systemctl not found (systemd required)")

    usage = shutil.disk_usage("/")
    if usage.free < MIN_FREE_DISK_BYTES:
        problems.append(f"insufficient disk space: {usage.free // BYTES_PER_GB} GB free, 5 GB required")

    try:
        with open("/etc/os-release", "r") as f:
            os_release = f.read()
    except FileNotFoundError:
        os_release = ""
    if "debian" not in os_release.lower():
        problems.append("not a Debian-family system")

    if problems:
        return ComponentResult.failed("Pre-flight check failed: " + "; ".join(problems))
    print("  ✓ Pre-flight checks passed")
    return ComponentResult.ok()


def baseline_checkpoint(context: DeploymentContext) -> ComponentResult:
    point = context.checkpoints.create_point("pre_hardening")
    print(f"  ✓ Baseline rollback point saved ({os.path.basename(point.path)})")
    return ComponentResult.ok()


def create_admin_user(context: DeploymentContext) -> ComponentResult:
    """Create the admin user in the sudo and remote-access groups."""
    user = context.config.admin_user
    if run(f"getent group {REMOTE_GROUP}", quiet=True).returncode != 0:
        result = _run(context, f"groupadd {REMOTE_GROUP}")
        if result.returncode != 0:
            return ComponentResult.from_process(result)

    if user_exists(user):
        print(f"  ✓ Admin user {user} already exists")
    else:
        result = _run(context, f"useradd -m -s /bin/bash {shlex.quote(user)}")
        if result.returncode != 0:
            return ComponentResult.from_process(result)

    result = _run(context, f"usermod -aG sudo,{REMOTE_GROUP} {shlex.quote(user)}")
    if result.returncode != 0:
        return ComponentResult.from_process(result)

    # root keeps key-based access during the transition
    _run(context, f"usermod -aG {REMOTE_GROUP} root")
    print(f"  ✓ Admin user {user} in sudo and {REMOTE_GROUP} groups")
    return ComponentResult.ok()


def harden_kernel(context: DeploymentContext) -> ComponentResult:
    if is_container():
        print("  ✓ Skipping kernel hardening (host kernel manages these settings)")
        return ComponentResult.ok()

    if os.path.exists(SYSCTL_CONF):
        print("  ✓ Kernel already hardened")
        return ComponentResult.ok()

    kernel_hardening = """
# Network security
net.ipv4.conf.default.rp_filter=1
net.ipv4.conf.all.rp_filter=1
net.ipv4.tcp_syncookies=1
net.ipv4.conf.all.accept_redirects=0
net.ipv4.conf.default.accept_redirects=0
net.ipv4.conf.all.secure_redirects=0
net.ipv4.conf.default.secure_redirects=0
net.ipv6.conf.all.accept_redirects=0
net.ipv6.conf.default.accept_redirects=0
net.ipv4.conf.all.send_redirects=0
net.ipv4.conf.default.send_redirects=0
net.ipv4.icmp_echo_ignore_broadcasts=1
net.ipv4.icmp_ignore_bogus_error_responses=1
net.ipv4.conf.all.log_martians=1
net.ipv4.conf.default.log_martians=1

# Kernel security
kernel.dmesg_restrict=1
kernel.kptr_restrict=2
kernel.yama.ptrace_scope=1
fs.suid_dumpable=0
"""

    _write_file(context, SYSCTL_CONF, kernel_hardening)

    result = _run(context, f"sysctl -p {SYSCTL_CONF}")
    if result.returncode != 0:
        print("  ⚠ Some kernel parameters may not have applied (check logs)")

    print("  ✓ Kernel hardened (network protection, security restrictions)")
    return ComponentResult.ok()


def configure_network_isolation(context: DeploymentContext) -> ComponentResult:
    """Default-deny inbound firewall allowing only the configured SSH port."""
    port = context.config.ssh_port
    result = run("ufw status 2>/dev/null | grep -q 'Status: active'", quiet=True)
    if result.returncode == 0 and run(f"ufw status | grep -q '^{port}/tcp'", quiet=True).returncode == 0:
        print("  ✓ Firewall already configured")
        return ComponentResult.ok()

    for command in ("ufw default deny incoming", "ufw default allow outgoing",
                    f"ufw allow {port}/tcp", "ufw allow ssh"):
        result = _run(context, command)
        if result.returncode != 0:
            return ComponentResult.from_process(result)

    result = _run(context, "ufw --force enable")
    if result.returncode != 0:
        if is_container():
            print("  ⚠ Firewall could not be enabled (container may lack capabilities)")
            return ComponentResult.ok()
        return ComponentResult.from_process(result)

    print(f"  ✓ Firewall configured (inbound SSH on {port} only)")
    return ComponentResult.ok()


def set_sshd_option(content: str, key: str, value: str) -> str:
    """Set `key value` in sshd_config text, replacing the first (possibly
    commented) occurrence or appending when absent."""
    pattern = re.compile(rf"^#?[ \t]*{re.escape(key)}[ \t].*$", re.MULTILINE)
    replacement = f"{key} {value}"
    if pattern.search(content):
        return pattern.sub(replacement, content, count=1)
    if content and not content.endswith("\n"):
        content += "\n"
    return content + replacement + "\n"


def harden_ssh(context: DeploymentContext) -> ComponentResult:
    port = context.config.ssh_port
    ssh_hardening = [
        ("Port", str(port)),
        ("PermitRootLogin", "prohibit-password"),
        ("PasswordAuthentication", "no"),
        ("KbdInteractiveAuthentication", "no"),
        ("X11Forwarding", "no"),
        ("MaxAuthTries", "3"),
        ("ClientAliveInterval", "300"),
        ("ClientAliveCountMax", "2"),
        ("PermitEmptyPasswords", "no"),
    ]

    with open(SSHD_CONFIG, "r") as f:
        original = f.read()
    content = original
    for key, value in ssh_hardening:
        content = set_sshd_option(content, key, value)
    if "AllowGroups" not in content:
        content = set_sshd_option(content, "AllowGroups", REMOTE_GROUP)

    if content == original:
        print("  ✓ SSH already hardened")
        return ComponentResult.ok()

    if context.dry_run:
        print(f"  [DRY-RUN] Would update {SSHD_CONFIG} and reload ssh")
        return ComponentResult.ok()

    if not os.path.exists(f"{SSHD_CONFIG}.bak"):
        shutil.copyfile(SSHD_CONFIG, f"{SSHD_CONFIG}.bak")
    with open(SSHD_CONFIG, "w") as f:
        f.write(content)

    # reload only after the new config passes a syntax check
    result = run("sshd -t")
    if result.returncode != 0:
        return ComponentResult.from_process(result)
    _run(context, "systemctl reload ssh || systemctl reload sshd")

    print(f"  ✓ SSH hardened (port {port}, key-only auth, restricted to {REMOTE_GROUP} group)")
    return ComponentResult.ok()


def verify_sshd_config(context: DeploymentContext) -> ComponentResult:
    return ComponentResult.from_process(run("sshd -t", timeout=context.config.command_timeout))


def configure_password_policy(context: DeploymentContext) -> ComponentResult:
    if file_contains(PWQUALITY_CONF, "minlen = 14"):
        print("  ✓ Password policy already configured")
        return ComponentResult.ok()

    pwquality = """# Managed by hardening
minlen = 14
dcredit = -1
ucredit = -1
lcredit = -1
ocredit = -1
retry = 3
enforce_for_root
"""
    _write_file(context, PWQUALITY_CONF, pwquality)

    login_policy = [("PASS_MAX_DAYS", "90"), ("PASS_MIN_DAYS", "1"), ("PASS_WARN_AGE", "14")]
    for key, value in login_policy:
        result = _run(context, f"sed -i 's/^{key}.*/{key}\\t{value}/' /etc/login.defs")
        if result.returncode != 0:
            return ComponentResult.from_process(result)

    print("  ✓ Password policy configured (14+ chars, 90 day expiry)")
    return ComponentResult.ok()


def configure_mfa(context: DeploymentContext) -> ComponentResult:
    """Enable TOTP for SSH; users without an enrolled secret are not locked out."""
    line = "auth required pam_google_authenticator.so nullok"
    if file_contains(PAM_SSHD, "pam_google_authenticator.so"):
        print("  ✓ MFA already configured")
        return ComponentResult.ok()

    if not is_package_installed("libpam-google-authenticator"):
        installed = _apt_install(["libpam-google-authenticator"], context)
        if not installed.success:
            return installed

    _write_file(context, PAM_SSHD, f"\n# Managed by hardening\n{line}\n", append=True)

    print("  ✓ MFA enabled for SSH (enroll with google-authenticator)")
    return ComponentResult.ok()


def configure_auditd(context: DeploymentContext) -> ComponentResult:
    if is_container():
        print("  ✓ Skipping auditd (kernel audit unavailable in containers)")
        return ComponentResult.ok()

    if os.path.exists(AUDIT_RULES) and is_service_active("auditd"):
        print("  ✓ auditd already configured")
        return ComponentResult.ok()

    audit_rules = """# Managed by hardening
-w /etc/passwd -p wa -k identity
-w /etc/group -p wa -k identity
-w /etc/shadow -p wa -k identity
-w /etc/sudoers -p wa -k privilege
-w /etc/sudoers.d/ -p wa -k privilege
-w /etc/ssh/sshd_config -p wa -k sshd
-w /var/log/auth.log -p wa -k auth_log
-a always,exit -F arch=b64 -S execve -F euid=0 -k root_commands
"""
    _write_file(context, AUDIT_RULES, audit_rules)

    result = _run(context, "augenrules --load")
    if result.returncode != 0:
        return ComponentResult.from_process(result)
    _run(context, "systemctl enable auditd")
    result = _run(context, "systemctl restart auditd")
    if result.returncode != 0:
        return ComponentResult.from_process(result)

    print("  ✓ auditd configured (identity, privilege and SSH changes tracked)")
    return ComponentResult.ok()


def configure_aide(context: DeploymentContext) -> ComponentResult:
    if os.path.exists("/var/lib/aide/aide.db"):
        print("  ✓ AIDE database already initialized")
        return ComponentResult.ok()

    result = _run(context, "aideinit -y -f", timeout=context.config.command_timeout * 4)
    if result.returncode != 0:
        return ComponentResult.from_process(result)
    if os.path.exists("/var/lib/aide/aide.db.new"):
        _copy_file(context, "/var/lib/aide/aide.db.new", "/var/lib/aide/aide.db")

    print("  ✓ AIDE file integrity database initialized")
    return ComponentResult.ok()


def configure_security_monitoring(context: DeploymentContext) -> ComponentResult:
    if is_container():
        print("  ✓ Skipping fail2ban configuration (limited functionality in containers)")
        return ComponentResult.ok()

    port = context.config.ssh_port
    if file_contains(FAIL2BAN_JAIL, f"port = {port}") and is_service_active("fail2ban"):
        print("  ✓ fail2ban already configured")
        return ComponentResult.ok()

    fail2ban_jail = f"""[sshd]
enabled = true
port = {port}
maxretry = 3
bantime = 3600
findtime = 600
"""

    _write_file(context, FAIL2BAN_JAIL, fail2ban_jail)

    _run(context, "systemctl enable fail2ban")
    result = _run(context, "systemctl restart fail2ban")
    if result.returncode != 0:
        return ComponentResult.from_process(result)

    print("  ✓ fail2ban configured (3 failed attempts = 1 hour ban)")
    return ComponentResult.ok()


def run_integration_tests(context: DeploymentContext) -> ComponentResult:
    """Check the hardened host end to end."""
    failures = []
    if run("sshd -t", quiet=True).returncode != 0:
        failures.append("sshd configuration invalid")
    if not is_container():
        if run("ufw status | grep -q 'Status: active'", quiet=True).returncode != 0:
            failures.append("firewall inactive")
        for service in ("auditd", "fail2ban"):
            if not is_service_active(service):
                failures.append(f"{service} not running")
    if not user_exists(context.config.admin_user):
        failures.append(f"admin user {context.config.admin_user} missing")

    if failures:
        return ComponentResult.failed("Integration tests failed: " + ", ".join(failures))
    print("  ✓ Integration tests passed")
    return ComponentResult.ok()
