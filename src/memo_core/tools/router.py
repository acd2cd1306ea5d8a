# memo_core/tools/router.py
"""
ToolRouter - one namespace over native and MCP tools.

Responsibilities:
1. Hold the native registry and the MCP registry (with its pool)
2. Look up and execute tools by name (native wins on collision)
3. Render tool descriptions and definitions for LLM prompts
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from mcp.types import CallToolResult

from memo_core.errors import ToolNotFoundError
from memo_core.mcp.cache import ResponseCache
from memo_core.mcp.pool import MCPClientPool
from memo_core.tools.builtin.filesystem import create_filesystem_tools
from memo_core.tools.builtin.mcp_resources import create_mcp_resource_tools
from memo_core.tools.builtin.shell import create_shell_tool
from memo_core.tools.mcp_registry import McpToolRegistry
from memo_core.tools.models import (
    McpTool,
    NativeTool,
    Tool,
    ToolDefinition,
    ToolDescription,
    ToolSource,
)
from memo_core.tools.native import NativeToolRegistry

logger = logging.getLogger(__name__)


class ToolRouter:
    """Unified tool lookup, execution and prompt rendering."""

    def __init__(
        self,
        pool: MCPClientPool | None = None,
        cache: ResponseCache | None = None,
    ):
        self.pool = pool or MCPClientPool()
        self.cache = cache or ResponseCache()
        self._native = NativeToolRegistry()
        self._mcp = McpToolRegistry(self.pool)

    # ==================== Registration ====================

    def register_native_tool(self, tool: NativeTool) -> None:
        self._native.register(tool)

    def register_native_tools(self, tools: Iterable[NativeTool]) -> None:
        self._native.register_many(tools)

    def register_builtin_tools(self) -> None:
        """Register read_file, list_dir, shell_command and the MCP resource tools."""
        self.register_native_tools(create_filesystem_tools())
        self.register_native_tool(create_shell_tool())
        self.register_native_tools(create_mcp_resource_tools(self.pool, self.cache))

    async def load_mcp_servers(self, servers: Mapping[str, Any] | None) -> int:
        return await self._mcp.load_servers(servers)

    # ==================== Lookup ====================

    def get_tool(self, name: str) -> Tool | None:
        return self._native.get(name) or self._mcp.get(name)

    def has_tool(self, name: str) -> bool:
        return self._native.has(name) or self._mcp.has(name)

    def get_all_tools(self) -> list[Tool]:
        """Native tools first, then MCP tools hidden by no native name."""
        native = self._native.get_all()
        mcp = [tool for tool in self._mcp.get_all() if not self._native.has(tool.name)]
        return [*native, *mcp]

    def get_tool_count(self) -> dict[str, int]:
        native = self._native.size
        mcp = self._mcp.size
        return {"native": native, "mcp": mcp, "total": native + mcp}

    def to_registry(self) -> dict[str, Tool]:
        registry = self._mcp.to_registry()
        registry.update(self._native.to_registry())
        return registry

    # ==================== Execution ====================

    async def execute(self, name: str, tool_input: Any) -> CallToolResult:
        tool = self.get_tool(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return await tool.execute(tool_input)

    # ==================== Prompt rendering ====================

    def generate_tool_definitions(self) -> list[dict[str, Any]]:
        """``[{name, description, input_schema}]`` for the LLM tool parameter."""
        return [tool.to_definition().to_dict() for tool in self.get_all_tools()]

    def get_tool_definitions(self) -> list[ToolDefinition]:
        return [tool.to_definition() for tool in self.get_all_tools()]

    def get_tool_descriptions(self) -> list[ToolDescription]:
        return [
            ToolDescription(
                name=tool.name,
                description=tool.description,
                source=tool.source,
                server_name=tool.server_name if isinstance(tool, McpTool) else None,
                input_schema=tool.input_schema,
            )
            for tool in self.get_all_tools()
        ]

    def generate_tool_descriptions(self) -> str:
        """Markdown block listing every tool, grouped by source and MCP server."""
        tools = self.get_all_tools()
        if not tools:
            return ""

        lines = ["## Available Tools", ""]

        native_tools = [t for t in tools if t.source == ToolSource.NATIVE]
        if native_tools:
            lines.extend(["### Built-in Tools", ""])
            lines.extend(self._format_tool(tool) for tool in native_tools)
            lines.append("")

        by_server: dict[str, list[Tool]] = {}
        for tool in tools:
            if isinstance(tool, McpTool):
                by_server.setdefault(tool.server_name, []).append(tool)

        if by_server:
            lines.extend(["### External MCP Tools", ""])
            for server_name, server_tools in by_server.items():
                lines.extend([f"**Server: {server_name}**", ""])
                lines.extend(self._format_tool(tool) for tool in server_tools)
                lines.append("")

        return "\n".join(lines)

    @staticmethod
    def _format_tool(tool: Tool) -> str:
        lines = [f"#### {tool.name}", f"- **Description**: {tool.description}"]
        if tool.input_schema:
            schema = json.dumps(tool.input_schema, separators=(",", ":"), ensure_ascii=False)
            lines.append(f"- **Input Schema**: {schema}")
        return "\n".join(lines)

    # ==================== Lifecycle ====================

    async def dispose(self) -> None:
        """Close MCP connections; native tools are stateless and stay registered."""
        await self._mcp.dispose()
        await self.cache.flush()


async def create_tool_router(
    native_tools: Iterable[NativeTool] | None = None,
    mcp_servers: Mapping[str, Any] | None = None,
    pool: MCPClientPool | None = None,
    cache: ResponseCache | None = None,
    include_builtin_tools: bool = False,
) -> ToolRouter:
    """Build a router, register native tools and load MCP servers."""
    router = ToolRouter(pool=pool, cache=cache)
    if include_builtin_tools:
        router.register_builtin_tools()
    if native_tools:
        router.register_native_tools(native_tools)
    if mcp_servers:
        count = await router.load_mcp_servers(mcp_servers)
        logger.debug("Loaded %d MCP tools from %d servers", count, len(mcp_servers))
    return router
