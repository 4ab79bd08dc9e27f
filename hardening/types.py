"""Common type aliases for the hardening orchestrator.

Add new aliases here when you spot repeated typing patterns across modules.
"""
from __future__ import annotations

from typing import Any

JSONDict = dict[str, Any]

StateDocument = JSONDict
ComponentStatusMap = dict[str, str]

BYTES_PER_MB = 1024 * 1024
BYTES_PER_GB = 1024 * BYTES_PER_MB

__all__ = [
    "JSONDict",
    "StateDocument",
    "ComponentStatusMap",
    "BYTES_PER_MB",
    "BYTES_PER_GB",
]
