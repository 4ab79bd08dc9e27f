"""Deployment notifications to the administrator.

Supports webhook (HTTP POST JSON) and mailbox (local ``mail``) targets.
Delivery problems are logged and reported through the return value; they
never change the outcome of the run being reported.
"""

from __future__ import annotations

import json
import subprocess
import urllib.error
import urllib.request
from dataclasses import asdict, dataclass
from logging import Logger
from typing import Literal, Optional

NotificationStatus = Literal["good", "info", "warning", "error"]
TargetType = Literal["webhook", "mailbox"]

NETWORK_TIMEOUT_SECONDS = 30


class NotificationDeliveryError(Exception):
    """A single notification target could not be reached."""


@dataclass
class NotificationConfig:
    """Configuration for a notification target."""

    type: TargetType
    target: str


@dataclass
class Notification:
    subject: str
    job: str
    status: NotificationStatus
    message: str
    details: Optional[str] = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


class NotificationSender:
    """Handles sending notifications to configured targets."""

    def __init__(self, configs: list[NotificationConfig], logger: Optional[Logger] = None):
        self.configs = configs
        self.logger = logger

    def send(self, notification: Notification) -> bool:
        """Send notification to all configured targets.

        Returns:
            True only if every configured target accepted the notification
            (also True when nothing is configured).
        """
        all_succeeded = True
        for config in self.configs:
            try:
                if config.type == "webhook":
                    self._send_webhook(config.target, notification)
                elif config.type == "mailbox":
                    self._send_mailbox(config.target, notification)
            except Exception as e:
                all_succeeded = False
                if self.logger:
                    self.logger.error(f"Failed to send {config.type} notification to {config.target}: {e}")

        return all_succeeded

    def _send_webhook(self, url: str, notification: Notification) -> None:
        data = json.dumps(notification.to_dict()).encode('utf-8')
        headers = {
            'Content-Type': 'application/json',
            'User-Agent': 'hardening-notification/1.0'
        }

        request = urllib.request.Request(url, data=data, headers=headers, method='POST')

        try:
            with urllib.request.urlopen(request, timeout=NETWORK_TIMEOUT_SECONDS) as response:
                if response.status not in (200, 201, 202, 204):
                    raise NotificationDeliveryError(f"Webhook returned status {response.status}")
        except (urllib.error.URLError, TimeoutError, ValueError) as e:
            raise NotificationDeliveryError(f"Webhook request failed: {e}") from e

        if self.logger:
            self.logger.info(f"✓ Webhook notification sent to {url}")

    def _send_mailbox(self, email: str, notification: Notification) -> None:
        body = f"""Job: {notification.job}
Status: {notification.status.upper()}

{notification.message}
"""
        if notification.details:
            body += f"\n{notification.details}\n"
        body += """
---
This is an automated notification from the hardening orchestrator.
Check the deployment logs for detailed information.
"""

        try:
            subprocess.run(
                ['mail', '-s', notification.subject, email],
                input=body.encode('utf-8'),
                check=True,
                capture_output=True,
                timeout=NETWORK_TIMEOUT_SECONDS
            )
        except (FileNotFoundError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
            raise NotificationDeliveryError(f"Failed to send email: {e}") from e

        if self.logger:
            self.logger.info(f"✓ Email notification sent to {email}")


def configs_from_settings(admin_email: Optional[str], webhook: Optional[str]) -> list[NotificationConfig]:
    configs = []
    if admin_email:
        configs.append(NotificationConfig("mailbox", admin_email))
    if webhook:
        configs.append(NotificationConfig("webhook", webhook))
    return configs


def send_deployment_notification(
    configs: list[NotificationConfig],
    host: str,
    success: bool,
    summary: str,
    errors: Optional[list[str]] = None,
    log_file: Optional[str] = None,
    logger: Optional[Logger] = None
) -> bool:
    """Send a notification summarizing a hardening run.

    Args:
        configs: Targets to notify
        host: Host name the run applied to
        success: Whether the run completed
        summary: One-line outcome ("rolled back to stage 5_network", ...)
        errors: Error messages recorded during the run
        log_file: Path to the detailed log
        logger: Optional logger for delivery problems

    Returns:
        True if all notifications were sent successfully, False otherwise
    """
    if not configs:
        return True

    if success:
        status: NotificationStatus = "good"
        subject = f"Hardening complete on {host}"
    else:
        status = "error"
        subject = f"Hardening failed on {host}"

    details_parts = [f"Host: {host}"]
    if log_file:
        details_parts.append(f"Log: {log_file}")
    if errors:
        details_parts.append(f"\nErrors ({len(errors)}):")
        for error in errors:
            details_parts.append(f"  - {error}")

    notification = Notification(
        subject=subject,
        job="hardening",
        status=status,
        message=summary,
        details="\n".join(details_parts),
    )
    return NotificationSender(configs, logger=logger).send(notification)
