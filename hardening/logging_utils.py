"""Centralized logging for the hardening orchestrator.

Every run, rollback and cluster sync writes through the helpers here so that
operators (and the monitoring service) find all records under one directory
in one format.

Key Features:
- Rotating file handlers with configurable size and backup count
- Standard format: timestamp - severity - logger - message
- Centralized log directory (/var/log/hardening/) overridable per config
- Automatic fallback to stderr if file logging fails
- Console output, plus syslog when the `syslog` config option is set
"""

from __future__ import annotations

from logging import (
    Logger, Formatter, StreamHandler, getLogger, INFO, WARNING
)
from logging.handlers import RotatingFileHandler, SysLogHandler
from pathlib import Path
from typing import Optional
import sys
import subprocess

from hardening.types import BYTES_PER_MB

DEFAULT_LOG_MAX_BYTES = 5 * BYTES_PER_MB
DEFAULT_LOG_BACKUP_COUNT = 5
DEFAULT_LOG_LEVEL = INFO
DEFAULT_LOG_DIR = "/var/log/hardening"

STANDARD_LOG_FORMAT = "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s"
STANDARD_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _ensure_fallback_handler(logger: Logger, level: int = INFO) -> None:
    """Attach a stderr handler when no other handler could be configured."""
    if logger.handlers:
        return

    handler = StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(get_standard_formatter())
    logger.addHandler(handler)


def get_standard_formatter() -> Formatter:
    return Formatter(STANDARD_LOG_FORMAT, STANDARD_DATE_FORMAT)


def get_rotating_logger(
    name: str,
    log_file: str,
    max_bytes: int = DEFAULT_LOG_MAX_BYTES,
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
    level: int = DEFAULT_LOG_LEVEL
) -> Logger:
    """Return a logger writing to a rotating file.

    Calling this twice for the same name and file does not add a second
    handler.

    Args:
        name: Logger name
        log_file: Path to log file
        max_bytes: Maximum size of log file before rotation
        backup_count: Number of rotated files to keep
        level: Logging level

    Returns:
        Configured Logger instance
    """
    logger = getLogger(name)
    if not logger.handlers:
        logger.setLevel(level)
        logger.propagate = False

    log_path = Path(log_file)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        print(f"Error creating log directory {log_path.parent}: {e}", file=sys.stderr)
        _ensure_fallback_handler(logger, level)
        return logger

    log_file_path = str(log_path.resolve())
    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler) and handler.baseFilename == log_file_path:
            return logger

    try:
        handler = RotatingFileHandler(log_file_path, maxBytes=max_bytes, backupCount=backup_count)
        handler.setLevel(level)
        handler.setFormatter(get_standard_formatter())
        logger.addHandler(handler)
    except OSError as e:
        print(f"Error opening log file {log_file_path}: {e}", file=sys.stderr)
        _ensure_fallback_handler(logger, level)

    return logger


def get_service_logger(
    service_name: str,
    log_dir: str = DEFAULT_LOG_DIR,
    level: int = DEFAULT_LOG_LEVEL,
    use_syslog: bool = False
) -> Logger:
    """Get a logger for one of the orchestrator entry points.

    Writes to <log_dir>/<service_name>.log and stdout, and to the local
    syslog socket when ``use_syslog`` is set (the ``syslog`` config option).

    Example:
        logger = get_service_logger('deployment', config.log_dir)
        logger.info('Starting stage 5_network')
    """
    log_file = Path(log_dir) / f"{service_name}.log"
    logger = get_rotating_logger(service_name, str(log_file), level=level)

    has_console = any(
        isinstance(h, StreamHandler) and getattr(h, "stream", None) is sys.stdout
        for h in logger.handlers
    )
    if not has_console:
        console_handler = StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(Formatter('%(message)s'))
        logger.addHandler(console_handler)

    if use_syslog and not any(isinstance(h, SysLogHandler) for h in logger.handlers):
        try:
            syslog_handler = SysLogHandler(address='/dev/log')
            syslog_handler.setLevel(level)
            syslog_handler.setFormatter(Formatter(f'hardening-{service_name}: %(message)s'))
            logger.addHandler(syslog_handler)
        except OSError:
            # No local syslog socket (containers, minimal images)
            pass

    return logger


def log_message(logger: Logger, message: str, level: int = INFO) -> None:
    """Write a log message, reporting (not raising) handler I/O failures."""
    try:
        logger.log(level, message)
    except OSError as e:
        log_target = "unknown log"
        for handler in logger.handlers:
            if isinstance(handler, RotatingFileHandler):
                log_target = handler.baseFilename
                break
        print(f"Error writing to log {log_target}: {e}", file=sys.stderr)


def ensure_log_directory(log_dir: str = DEFAULT_LOG_DIR, subdir: Optional[str] = None) -> Path:
    path = Path(log_dir)
    if subdir:
        path = path / subdir

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        print(f"Error creating log directory {path}: {e}", file=sys.stderr)

    return path


def log_subprocess_result(
    logger: Logger,
    action: str,
    result: subprocess.CompletedProcess[str],
    success_level: int = INFO,
    failure_level: int = WARNING
) -> bool:
    """Log concise command result details and return success state."""
    if result.returncode == 0:
        logger.log(success_level, f"✓ {action}")
        return True

    stderr_raw = result.stderr or ""
    if isinstance(stderr_raw, bytes):
        stderr_raw = stderr_raw.decode(errors="replace")
    stderr = stderr_raw.strip().splitlines()
    if stderr:
        details = " | ".join(stderr[:3])
        if len(stderr) > 3:
            details += " | ..."
    else:
        details = f"exit code {result.returncode}"
    logger.log(failure_level, f"⚠ {action} failed: {details}")
    return False
