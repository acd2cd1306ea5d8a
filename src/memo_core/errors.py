# memo_core/errors.py
"""Exceptions raised by memo-core.

Approval outcomes are not exceptions: a denied or pending call is reported
through ``ApprovalCheckResult`` / ``ToolActionResult`` values instead.
"""

from __future__ import annotations


class MemoError(Exception):
    """Base class for memo-core errors."""


class ToolNotFoundError(MemoError, LookupError):
    """No native or MCP tool is registered under the requested name."""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Unknown tool: {tool_name}")


class TransportConnectError(MemoError, ConnectionError):
    """Connecting to an MCP server failed.

    When a streamable HTTP attempt and its SSE fallback both fail, both
    causes are kept and named in the message.
    """

    def __init__(
        self,
        server_name: str,
        message: str,
        primary_error: BaseException | None = None,
        fallback_error: BaseException | None = None,
    ):
        self.server_name = server_name
        self.primary_error = primary_error
        self.fallback_error = fallback_error
        super().__init__(message)


class CacheLoadError(MemoError):
    """The on-disk cache snapshot could not be read or parsed."""


class CachePersistError(MemoError):
    """The cache snapshot could not be written."""


class ToolExecutionError(MemoError):
    """A tool failed while executing."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(message)


class TurnCancelledError(MemoError):
    """The current turn was aborted."""
