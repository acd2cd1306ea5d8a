"""MCP connection pool, transports and response cache."""

from memo_core.mcp.cache import CacheEntry, ResponseCache
from memo_core.mcp.pool import (
    DiscoveredTool,
    MCPClientPool,
    McpClientConnection,
    PooledTool,
)
from memo_core.mcp.transports import open_session

__all__ = [
    "CacheEntry",
    "DiscoveredTool",
    "MCPClientPool",
    "McpClientConnection",
    "PooledTool",
    "ResponseCache",
    "open_session",
]
