"""Termination signal handling for an orchestration run."""

from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from typing import Iterator

from hardening.errors import DeploymentInterrupted

TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGHUP)


def _raise_interrupted(signum, frame) -> None:
    raise DeploymentInterrupted(signum)


@contextmanager
def termination_handlers() -> Iterator[None]:
    """Turn SIGTERM, SIGINT and SIGHUP into DeploymentInterrupted for the block.

    Previous handlers are restored on exit. Signal handlers can only be
    installed from the main thread; elsewhere this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = {}
    for signum in TERMINATION_SIGNALS:
        previous[signum] = signal.getsignal(signum)
        signal.signal(signum, _raise_interrupted)
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def exit_code_for_signal(signum: int) -> int:
    return 128 + signum
