"""Built-in native tools."""

from memo_core.tools.builtin.filesystem import create_filesystem_tools
from memo_core.tools.builtin.mcp_resources import (
    McpResourceTools,
    create_mcp_resource_tools,
)
from memo_core.tools.builtin.shell import create_shell_tool

__all__ = [
    "McpResourceTools",
    "create_filesystem_tools",
    "create_mcp_resource_tools",
    "create_shell_tool",
]
