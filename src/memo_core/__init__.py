"""memo-core: execution core of a terminal coding agent.

Risk-gated tool execution over native tools and MCP servers, a response
cache for MCP resources, and the multi-turn session runtime.
"""

from memo_core.approval import ApprovalDecision, ApprovalManager, ApprovalMode, RiskLevel
from memo_core.errors import (
    CacheLoadError,
    CachePersistError,
    MemoError,
    ToolExecutionError,
    ToolNotFoundError,
    TransportConnectError,
    TurnCancelledError,
)
from memo_core.mcp import MCPClientPool, ResponseCache
from memo_core.runtime import AgentSession, SessionDeps, SessionOptions, ToolOrchestrator
from memo_core.tools import ToolRouter, create_tool_router

__version__ = "0.1.0"

__all__ = [
    "AgentSession",
    "ApprovalDecision",
    "ApprovalManager",
    "ApprovalMode",
    "CacheLoadError",
    "CachePersistError",
    "MCPClientPool",
    "MemoError",
    "ResponseCache",
    "RiskLevel",
    "SessionDeps",
    "SessionOptions",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolOrchestrator",
    "ToolRouter",
    "TransportConnectError",
    "TurnCancelledError",
    "__version__",
    "create_tool_router",
]
