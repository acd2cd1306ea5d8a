"""Native and MCP tools behind one router."""

from memo_core.tools.mcp_registry import McpToolRegistry
from memo_core.tools.models import (
    McpTool,
    NativeTool,
    Tool,
    ToolDefinition,
    ToolDescription,
    ToolSource,
    create_native_tool,
    flatten_text,
    text_result,
)
from memo_core.tools.native import NativeToolRegistry
from memo_core.tools.router import ToolRouter, create_tool_router

__all__ = [
    "McpTool",
    "McpToolRegistry",
    "NativeTool",
    "NativeToolRegistry",
    "Tool",
    "ToolDefinition",
    "ToolDescription",
    "ToolRouter",
    "ToolSource",
    "create_native_tool",
    "create_tool_router",
    "flatten_text",
    "text_result",
]
