"""Default configuration values - no magic numbers in the runtime!

All default values should be defined here, not hardcoded in the code.
"""

from __future__ import annotations


# ================================================================
# Application Constants
# ================================================================

APP_NAME = "memo-core"
"""Application name."""

MCP_CLIENT_NAME = "memo-code-cli-client"
"""Client name announced to MCP servers during initialize."""

MCP_CLIENT_VERSION = "1.0.0"
"""Client version announced to MCP servers."""

DEFAULT_HOME_DIRNAME = ".memo"
"""Agent home directory under the user's home (overridden by MEMO_HOME)."""


# ================================================================
# Response Cache Defaults
# ================================================================

CACHE_DIRNAME = "cache"
"""Cache folder inside the agent home directory."""

CACHE_FILE_NAME = "mcp.json"
"""File name of the persisted MCP response cache."""

CACHE_SCHEMA_VERSION = 1
"""Schema version written to (and required from) the cache file."""

CACHE_PERSIST_DEBOUNCE = 0.12
"""Seconds to wait before flushing cache writes to disk."""

LIST_CACHE_TTL = 15.0
"""TTL (seconds) for resource and resource-template listings."""

READ_CACHE_TTL = 60.0
"""TTL (seconds) for resource reads."""


# ================================================================
# Tool Execution Defaults
# ================================================================

DEFAULT_MAX_TOOL_RESULT_CHARS = 12_000
"""Tool output above this size is replaced by an omission hint."""

MAX_TOOL_INPUT_STRING_CHARS = 100_000
"""Largest raw string tool input accepted for JSON parsing."""

DEFAULT_SHELL_TIMEOUT = 120.0
"""Default timeout for the shell_command tool."""

DEFAULT_READ_FILE_LIMIT = 200
"""Default maximum number of lines returned by read_file."""


# ================================================================
# Session Defaults
# ================================================================

DEFAULT_MAX_STEPS = 50
"""Maximum LLM steps in a single turn before it ends with max_steps."""

DEFAULT_MAX_PROMPT_TOKENS = 120_000
"""Prompt size (estimated tokens) above which a turn ends with prompt_limit."""

DEFAULT_CHARS_PER_TOKEN_ESTIMATE = 4
"""Characters per token for the fallback estimator."""

REPEATED_ACTION_THRESHOLD = 3
"""Identical consecutive tool calls before a loop reminder is injected."""


# ================================================================
# Logging Defaults
# ================================================================

DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024
"""Rotate the log file at this size."""

DEFAULT_LOG_BACKUP_COUNT = 3
"""Number of rotated log files to keep."""


# ================================================================
# MCP Connection Defaults
# ================================================================

DEFAULT_MCP_INIT_TIMEOUT = 30.0
"""Seconds to wait for an MCP server to answer initialize."""
