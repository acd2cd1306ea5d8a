# memo_core/tools/mcp_registry.py
"""Registry of tools discovered on MCP servers, bound for execution."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from mcp.types import CallToolResult

from memo_core.config.server_models import MCPServerConfig, parse_server_configs
from memo_core.errors import ToolExecutionError
from memo_core.mcp.pool import DiscoveredTool, MCPClientPool
from memo_core.tools.models import McpTool, Tool

logger = logging.getLogger(__name__)


class McpToolRegistry:
    """
    Loads MCP servers through a pool and exposes their tools as ``McpTool``.

    Each tool's executor goes back through ``pool.connect`` (a no-op once
    connected) so a call always reaches the session owning the tool.
    """

    def __init__(self, pool: MCPClientPool | None = None):
        self.pool = pool or MCPClientPool()
        self._tools: dict[str, McpTool] = {}
        self._server_tools: dict[str, set[str]] = {}

    def _build_tool(
        self, server_name: str, config: MCPServerConfig, discovered: DiscoveredTool
    ) -> McpTool:
        original_name = discovered.original_name

        async def execute(tool_input: Any) -> CallToolResult:
            try:
                connection = await self.pool.connect(server_name, config)
            except Exception as e:
                raise ToolExecutionError(
                    discovered.name, f"MCP server '{server_name}' unavailable: {e}"
                ) from e
            return await connection.call_tool(original_name, tool_input or {})

        return McpTool(
            name=discovered.name,
            description=discovered.description,
            input_schema=discovered.input_schema,
            server_name=server_name,
            original_name=original_name,
            executor=execute,
        )

    def _replace_server_tools(self, server_name: str, tools: list[McpTool]) -> None:
        for name in self._server_tools.pop(server_name, set()):
            self._tools.pop(name, None)
        for tool in tools:
            self._tools[tool.name] = tool
        self._server_tools[server_name] = {tool.name for tool in tools}

    def _drop_missing_servers(self, active: set[str]) -> None:
        for server_name in [name for name in self._server_tools if name not in active]:
            for tool_name in self._server_tools.pop(server_name):
                self._tools.pop(tool_name, None)

    async def _load_server(self, server_name: str, config: MCPServerConfig) -> None:
        try:
            connection = await self.pool.connect(server_name, config)
        except Exception as e:
            logger.warning("Failed to load MCP server '%s': %s", server_name, e)
            return

        tools = [self._build_tool(server_name, config, t) for t in connection.tools]
        self._replace_server_tools(server_name, tools)
        logger.info("Loaded %d tools from MCP server '%s'", len(tools), server_name)

    async def load_servers(self, servers: Mapping[str, Any] | None) -> int:
        """
        Connect every configured server concurrently and register its tools.

        A server that fails to connect is logged and skipped. Returns the
        total number of MCP tools registered.
        """
        if not servers:
            return 0

        configs = parse_server_configs(dict(servers))
        self.pool.set_server_configs(configs)
        self._drop_missing_servers(set(configs))

        await asyncio.gather(
            *(self._load_server(name, config) for name, config in configs.items())
        )
        return len(self._tools)

    def get(self, name: str) -> McpTool | None:
        return self._tools.get(name)

    def get_all(self) -> list[McpTool]:
        return list(self._tools.values())

    def to_registry(self) -> dict[str, Tool]:
        return dict(self._tools)

    def has(self, name: str) -> bool:
        return name in self._tools

    @property
    def size(self) -> int:
        return len(self._tools)

    async def dispose(self) -> None:
        """Close every MCP connection and forget the tools."""
        await self.pool.close_all()
        self._tools.clear()
        self._server_tools.clear()
