# memo_core/tools/builtin/mcp_resources.py
"""
Native tools exposing MCP resources: list_mcp_resources,
list_mcp_resource_templates and read_mcp_resource.

Results go through the response cache. Queries across all servers settle
every server independently and report failures in an ``errors`` list.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mcp.types import CallToolResult
from pydantic import BaseModel, Field

from memo_core.config.defaults import LIST_CACHE_TTL, READ_CACHE_TTL
from memo_core.mcp.cache import ResponseCache
from memo_core.mcp.pool import MCPClientPool, McpClientConnection
from memo_core.tools.models import NativeTool, create_native_tool, json_result, text_result

logger = logging.getLogger(__name__)

CURSOR_WITHOUT_SERVER = "cursor is only supported when server is specified"


# ──────────────────────────────────────────────────────────────────────────────
# Inputs
# ──────────────────────────────────────────────────────────────────────────────
class ListResourcesInput(BaseModel):
    server: str | None = Field(default=None, description="Server name; all when omitted")
    cursor: str | None = Field(default=None, description="Pagination cursor")

    model_config = {"extra": "forbid"}


class ReadResourceInput(BaseModel):
    server: str = Field(min_length=1, description="Server name")
    uri: str = Field(min_length=1, description="Resource URI")

    model_config = {"extra": "forbid"}


# ──────────────────────────────────────────────────────────────────────────────
# Cache keys
# ──────────────────────────────────────────────────────────────────────────────
def list_resources_key(server: str, cursor: str | None = None) -> str:
    return f"list_resources:{server}:{cursor or ''}"


def list_resource_templates_key(server: str, cursor: str | None = None) -> str:
    return f"list_resource_templates:{server}:{cursor or ''}"


def read_resource_key(server: str, uri: str) -> str:
    return f"read_resource:{server}:{uri}"


def aggregate_server_key(server_names: list[str]) -> str:
    return "all:" + ",".join(sorted(server_names))


def _dump(result: Any) -> dict[str, Any]:
    if hasattr(result, "model_dump"):
        return result.model_dump(mode="json", by_alias=True, exclude_none=True)
    return dict(result)


# ──────────────────────────────────────────────────────────────────────────────
# Tools
# ──────────────────────────────────────────────────────────────────────────────
class McpResourceTools:
    """Resource tools bound to one pool and one response cache."""

    def __init__(self, pool: MCPClientPool, cache: ResponseCache):
        self.pool = pool
        self.cache = cache

    async def _resolve(self, server: str) -> McpClientConnection | None:
        if not self.pool.has_server(server):
            return None
        return self.pool.get(server) or await self.pool.connect(server)

    async def _connect_all(
        self,
    ) -> list[tuple[str, McpClientConnection | BaseException]]:
        names = sorted(self.pool.get_known_server_names())
        settled = await asyncio.gather(
            *(self.pool.connect(name) for name in names), return_exceptions=True
        )
        return list(zip(names, settled))

    async def _aggregate(
        self,
        field: str,
        fetch: Callable[[McpClientConnection], Awaitable[Any]],
    ) -> dict[str, Any]:
        connections = await self._connect_all()

        async def one(entry: tuple[str, McpClientConnection | BaseException]) -> Any:
            name, connection = entry
            if isinstance(connection, BaseException):
                raise connection
            return await fetch(connection)

        settled = await asyncio.gather(
            *(one(entry) for entry in connections), return_exceptions=True
        )

        items: list[dict[str, Any]] = []
        errors: list[dict[str, str]] = []
        for (name, _), outcome in zip(connections, settled):
            if isinstance(outcome, BaseException):
                errors.append({"server": name, "error": str(outcome) or type(outcome).__name__})
                continue
            for item in _dump(outcome).get(field) or []:
                items.append({"server": name, **item})

        payload: dict[str, Any] = {field: items}
        if errors:
            payload["errors"] = errors
        return payload

    async def _list(
        self,
        tool_name: str,
        field: str,
        key_for: Callable[[str, str | None], str],
        fetch: Callable[[McpClientConnection, str | None], Awaitable[Any]],
        tool_input: dict,
    ) -> CallToolResult:
        params = ListResourcesInput.model_validate(tool_input)
        server = (params.server or "").strip()
        try:
            if server:
                connection = await self._resolve(server)
                if connection is None:
                    return text_result(f"MCP server not found: {params.server}", is_error=True)

                async def load_one() -> dict[str, Any]:
                    data = _dump(await fetch(connection, params.cursor))
                    return {
                        "server": connection.name,
                        field: data.get(field) or [],
                        "nextCursor": data.get("nextCursor"),
                    }

                payload = await self.cache.with_cached_value(
                    key_for(connection.name, params.cursor), LIST_CACHE_TTL, load_one
                )
                return json_result(payload)

            if params.cursor:
                return text_result(CURSOR_WITHOUT_SERVER, is_error=True)

            all_key = aggregate_server_key(self.pool.get_known_server_names())
            payload = await self.cache.with_cached_value(
                key_for(all_key, None),
                LIST_CACHE_TTL,
                lambda: self._aggregate(field, lambda conn: fetch(conn, None)),
            )
            return json_result(payload)
        except Exception as e:
            logger.debug("%s failed: %s", tool_name, e)
            return text_result(f"{tool_name} failed: {e}", is_error=True)

    async def list_resources(self, tool_input: dict) -> CallToolResult:
        return await self._list(
            "list_mcp_resources",
            "resources",
            list_resources_key,
            lambda conn, cursor: conn.list_resources(cursor),
            tool_input,
        )

    async def list_resource_templates(self, tool_input: dict) -> CallToolResult:
        return await self._list(
            "list_mcp_resource_templates",
            "resourceTemplates",
            list_resource_templates_key,
            lambda conn, cursor: conn.list_resource_templates(cursor),
            tool_input,
        )

    async def read_resource(self, tool_input: dict) -> CallToolResult:
        params = ReadResourceInput.model_validate(tool_input)
        server = params.server.strip()
        try:
            connection = await self._resolve(server)
            if connection is None:
                return text_result(f"MCP server not found: {params.server}", is_error=True)

            async def load() -> dict[str, Any]:
                result = _dump(await connection.read_resource(params.uri))
                return {"server": server, "uri": params.uri, **result}

            payload = await self.cache.with_cached_value(
                read_resource_key(server, params.uri), READ_CACHE_TTL, load
            )
            return json_result(payload)
        except Exception as e:
            logger.debug("read_mcp_resource failed: %s", e)
            return text_result(f"read_mcp_resource failed: {e}", is_error=True)

    def as_tools(self) -> list[NativeTool]:
        return [
            create_native_tool(
                name="list_mcp_resources",
                description=(
                    "Lists resources provided by MCP servers. "
                    "Prefer resources over web search when possible."
                ),
                execute=self.list_resources,
                input_model=ListResourcesInput,
                supports_parallel_tool_calls=True,
            ),
            create_native_tool(
                name="list_mcp_resource_templates",
                description=(
                    "Lists resource templates provided by MCP servers. "
                    "Prefer resource templates over web search when possible."
                ),
                execute=self.list_resource_templates,
                input_model=ListResourcesInput,
                supports_parallel_tool_calls=True,
            ),
            create_native_tool(
                name="read_mcp_resource",
                description=(
                    "Read a specific resource from an MCP server given the server "
                    "name and resource URI."
                ),
                execute=self.read_resource,
                input_model=ReadResourceInput,
                supports_parallel_tool_calls=True,
            ),
        ]


def create_mcp_resource_tools(
    pool: MCPClientPool, cache: ResponseCache
) -> list[NativeTool]:
    return McpResourceTools(pool, cache).as_tools()
