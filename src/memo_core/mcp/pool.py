# memo_core/mcp/pool.py
"""
MCP client pool.

One connection per configured server name. Each connection is owned by a
dedicated task that enters the transport contexts and exits them again on
close, so sessions can be opened from one task and closed from another.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from contextlib import AsyncExitStack
from typing import Any

from mcp.types import CallToolResult
from pydantic import BaseModel, Field

from memo_core.config.server_models import MCPServerConfig, parse_server_config
from memo_core.errors import MemoError
from memo_core.mcp.transports import Connector, open_session

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────────────────
# Models
# ──────────────────────────────────────────────────────────────────────────────
class DiscoveredTool(BaseModel):
    """A remote tool as listed by its server, before execution binding."""

    name: str = Field(description="Namespaced name: <server>_<original_name>")
    original_name: str
    server_name: str
    description: str
    input_schema: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class PooledTool(BaseModel):
    """A discovered tool together with the session that serves it."""

    tool: DiscoveredTool
    session: Any = Field(repr=False)

    model_config = {"frozen": True, "arbitrary_types_allowed": True}


def default_tool_description(server_name: str, tool_name: str) -> str:
    return f"Tool from {server_name}: {tool_name}"


# ──────────────────────────────────────────────────────────────────────────────
# Connection
# ──────────────────────────────────────────────────────────────────────────────
class McpClientConnection:
    """A live session to one MCP server. Created and closed by the pool."""

    def __init__(self, name: str, config: MCPServerConfig):
        self.name = name
        self.config = config
        self.session: Any = None
        self.transport: str | None = None
        self.tools: list[DiscoveredTool] = []
        self._closing = asyncio.Event()
        self._owner: asyncio.Task[None] | None = None

    async def open(self, connector: Connector) -> None:
        """Start the owner task and wait until the session is initialized."""
        ready: asyncio.Future[tuple[Any, str]] = (
            asyncio.get_running_loop().create_future()
        )
        self._owner = asyncio.create_task(
            self._own(connector, ready), name=f"mcp-connection:{self.name}"
        )
        try:
            self.session, self.transport = await ready
        except asyncio.CancelledError:
            self._owner.cancel()
            await asyncio.gather(self._owner, return_exceptions=True)
            raise

    async def _own(
        self, connector: Connector, ready: asyncio.Future[tuple[Any, str]]
    ) -> None:
        try:
            async with AsyncExitStack() as stack:
                opened = await connector(self.name, self.config, stack)
                if ready.done():
                    return
                ready.set_result(opened)
                await self._closing.wait()
        except Exception as e:
            if not ready.done():
                ready.set_exception(e)
                return
            raise

    async def discover_tools(self) -> list[DiscoveredTool]:
        result = await self.session.list_tools()
        self.tools = [
            DiscoveredTool(
                name=f"{self.name}_{tool.name}",
                original_name=tool.name,
                server_name=self.name,
                description=tool.description
                or default_tool_description(self.name, tool.name),
                input_schema=dict(tool.inputSchema or {}),
            )
            for tool in result.tools or []
        ]
        return self.tools

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> CallToolResult:
        return await self.session.call_tool(name, arguments or {})

    async def list_resources(self, cursor: str | None = None) -> Any:
        if cursor:
            return await self.session.list_resources(cursor=cursor)
        return await self.session.list_resources()

    async def list_resource_templates(self, cursor: str | None = None) -> Any:
        if cursor:
            return await self.session.list_resource_templates(cursor=cursor)
        return await self.session.list_resource_templates()

    async def read_resource(self, uri: str) -> Any:
        return await self.session.read_resource(uri)

    async def close(self) -> None:
        """Signal the owner task and wait for the transport to shut down."""
        self._closing.set()
        if self._owner is not None:
            await self._owner


# ──────────────────────────────────────────────────────────────────────────────
# Pool
# ──────────────────────────────────────────────────────────────────────────────
class MCPClientPool:
    """
    Connection pool keyed by server name.

    ``connect`` is idempotent: a live connection is returned as-is and
    concurrent callers for the same name share one in-flight attempt.
    Failed attempts are not remembered, so the next call retries.
    """

    def __init__(self, connector: Connector = open_session):
        self._connector = connector
        self._configs: dict[str, MCPServerConfig] = {}
        self._connections: dict[str, McpClientConnection] = {}
        self._pending: dict[str, asyncio.Task[McpClientConnection]] = {}

    # ── configuration ────────────────────────────────────────────────────────
    def set_server_configs(self, servers: Mapping[str, Any] | None) -> None:
        self._configs = {
            name: parse_server_config(config) for name, config in (servers or {}).items()
        }

    def has_server(self, name: str) -> bool:
        return name in self._configs or name in self._connections

    def get_known_server_names(self) -> list[str]:
        names = list(self._configs)
        names.extend(name for name in self._connections if name not in self._configs)
        return names

    # ── connecting ───────────────────────────────────────────────────────────
    async def connect(
        self, name: str, config: MCPServerConfig | dict[str, Any] | None = None
    ) -> McpClientConnection:
        existing = self._connections.get(name)
        if existing is not None:
            return existing

        task = self._pending.get(name)
        if task is None:
            if config is None:
                config = self._configs.get(name)
            if config is None:
                raise MemoError(f"MCP server not found: {name}")
            task = asyncio.ensure_future(self._open(name, parse_server_config(config)))
            self._pending[name] = task
            task.add_done_callback(lambda t, n=name: self._settle(n, t))

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # the attempt was cancelled by close_all, not this caller
            if task.cancelled() and not asyncio.current_task().cancelling():
                raise MemoError(f"MCP pool closed while connecting to {name}") from None
            raise

    def _settle(self, name: str, task: asyncio.Task[McpClientConnection]) -> None:
        if self._pending.get(name) is task:
            del self._pending[name]
        # Consume the exception so orphaned attempts don't warn
        if not task.cancelled():
            task.exception()

    async def _open(self, name: str, config: MCPServerConfig) -> McpClientConnection:
        connection = McpClientConnection(name, config)
        await connection.open(self._connector)
        try:
            await connection.discover_tools()
        except BaseException:
            await self._close_quietly(connection)
            raise

        self._connections[name] = connection
        logger.debug(
            "Connected MCP server '%s' via %s (%d tools)",
            name,
            connection.transport,
            len(connection.tools),
        )
        return connection

    # ── lookup ───────────────────────────────────────────────────────────────
    def get(self, name: str) -> McpClientConnection | None:
        return self._connections.get(name)

    def get_all(self) -> list[McpClientConnection]:
        return list(self._connections.values())

    def get_all_tools(self) -> list[PooledTool]:
        return [
            PooledTool(tool=tool, session=connection.session)
            for connection in self._connections.values()
            for tool in connection.tools
        ]

    @property
    def size(self) -> int:
        return len(self._connections)

    # ── teardown ─────────────────────────────────────────────────────────────
    async def _close_quietly(self, connection: McpClientConnection) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.warning("Error closing MCP server '%s': %s", connection.name, e)

    async def close_all(self) -> None:
        """
        Close every connection; one failure never blocks the others.

        Connects still in flight are cancelled first, so nothing they open
        outlives the pool.
        """
        pending = list(self._pending.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        connections = list(self._connections.values())
        self._connections.clear()
        await asyncio.gather(*(self._close_quietly(conn) for conn in connections))

    async def dispose(self) -> None:
        await self.close_all()
