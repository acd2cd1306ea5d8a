"""Environment variable names - centralized, type-safe, no magic strings!

All environment variable access should go through this module.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path

from memo_core.config.defaults import DEFAULT_HOME_DIRNAME


class EnvVar(str, Enum):
    """All environment variable names read by memo-core."""

    # ================================================================
    # Paths
    # ================================================================
    HOME_DIR = "MEMO_HOME"

    # ================================================================
    # Cache
    # ================================================================
    FORCE_MCP_DISK_CACHE = "MEMO_FORCE_MCP_DISK_CACHE"

    # ================================================================
    # Tool / Session limits
    # ================================================================
    TOOL_RESULT_MAX_CHARS = "MEMO_TOOL_RESULT_MAX_CHARS"
    MAX_STEPS = "MEMO_MAX_STEPS"

    # ================================================================
    # Logging
    # ================================================================
    LOG_LEVEL = "MEMO_LOG_LEVEL"

    # ================================================================
    # Test runner markers (set by pytest, never by memo-core)
    # ================================================================
    PYTEST_CURRENT_TEST = "PYTEST_CURRENT_TEST"


def get_env(var: EnvVar, default: str | None = None) -> str | None:
    """Get environment variable value (type-safe).

    Example:
        >>> home = get_env(EnvVar.HOME_DIR, "~/.memo")
    """
    return os.getenv(var.value, default)


def is_set(var: EnvVar) -> bool:
    """Check if environment variable is set (even if empty string)."""
    return var.value in os.environ


def get_env_int(var: EnvVar, default: int | None = None) -> int | None:
    """Get environment variable as integer.

    Args:
        var: EnvVar enum member
        default: Default value if not set or invalid

    Returns:
        Integer value or default
    """
    value = get_env(var)
    if value is None:
        return default

    try:
        return int(value.strip())
    except ValueError:
        return default


def get_positive_int(var: EnvVar, default: int) -> int:
    """Get a strictly positive integer, falling back to default otherwise."""
    value = get_env_int(var)
    if value is None or value <= 0:
        return default
    return value


def resolve_home_dir() -> Path:
    """Agent home directory: MEMO_HOME (with ~ expanded) or ~/.memo."""
    configured = (get_env(EnvVar.HOME_DIR) or "").strip()
    if configured:
        return Path(configured).expanduser()
    return Path.home() / DEFAULT_HOME_DIRNAME
