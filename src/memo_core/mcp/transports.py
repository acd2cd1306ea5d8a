# memo_core/mcp/transports.py
"""
Open MCP client sessions over stdio, streamable HTTP or SSE.

Every context manager entered while connecting is pushed onto the caller's
``AsyncExitStack``; closing that stack tears the session down. A failed
attempt unwinds its own contexts before the next transport is tried.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager, AsyncExitStack
from typing import Any

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client
from mcp.types import Implementation

from memo_core.config.defaults import (
    DEFAULT_MCP_INIT_TIMEOUT,
    MCP_CLIENT_NAME,
    MCP_CLIENT_VERSION,
)
from memo_core.config.server_models import (
    MCPServerConfig,
    SseServerConfig,
    StdioServerConfig,
    StreamableHttpServerConfig,
)
from memo_core.errors import TransportConnectError

logger = logging.getLogger(__name__)

TRANSPORT_STDIO = "stdio"
TRANSPORT_STREAMABLE_HTTP = "streamable_http"
TRANSPORT_SSE = "sse"


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────
def merge_process_env(env: dict[str, str] | None) -> dict[str, str] | None:
    """Overlay ``env`` on the current environment; None keeps the SDK default."""
    if env is None:
        return None
    return {**os.environ, **env}


def _interactive_terminal() -> bool:
    return sys.stdin.isatty() and sys.stdout.isatty()


def _describe(error: BaseException) -> str:
    if isinstance(error, BaseExceptionGroup):
        return "; ".join(_describe(inner) for inner in error.exceptions)
    return str(error) or type(error).__name__


def _client_info() -> Implementation:
    return Implementation(name=MCP_CLIENT_NAME, version=MCP_CLIENT_VERSION)


async def _start_session(
    stack: AsyncExitStack,
    transport: AbstractAsyncContextManager[Any],
    init_timeout: float,
) -> ClientSession:
    """Enter ``transport`` + ClientSession and initialize, all-or-nothing."""
    async with AsyncExitStack() as attempt:
        streams = await attempt.enter_async_context(transport)
        read_stream, write_stream = streams[0], streams[1]
        session = await attempt.enter_async_context(
            ClientSession(read_stream, write_stream, client_info=_client_info())
        )
        await asyncio.wait_for(session.initialize(), timeout=init_timeout)
        stack.push_async_callback(attempt.pop_all().aclose)
        return session


# ──────────────────────────────────────────────────────────────────────────────
# Per-transport openers
# ──────────────────────────────────────────────────────────────────────────────
async def _open_stdio(
    stack: AsyncExitStack, config: StdioServerConfig, init_timeout: float
) -> ClientSession:
    params = StdioServerParameters(
        command=config.command,
        args=list(config.args),
        env=merge_process_env(config.env),
    )
    stderr_mode = config.stderr or ("ignore" if _interactive_terminal() else "inherit")
    if stderr_mode == "ignore":
        errlog = stack.enter_context(open(os.devnull, "w", encoding="utf-8"))
    else:
        errlog = sys.stderr
    return await _start_session(stack, stdio_client(params, errlog=errlog), init_timeout)


async def _open_remote(
    stack: AsyncExitStack,
    config: StreamableHttpServerConfig | SseServerConfig,
    init_timeout: float,
) -> tuple[ClientSession, str]:
    headers = config.resolve_headers() or None

    if isinstance(config, SseServerConfig):
        session = await _start_session(
            stack, sse_client(config.url, headers=headers), init_timeout
        )
        return session, TRANSPORT_SSE

    try:
        session = await _start_session(
            stack, streamablehttp_client(config.url, headers=headers), init_timeout
        )
        return session, TRANSPORT_STREAMABLE_HTTP
    except Exception as primary:
        if not config.fallback_to_sse:
            raise
        logger.debug(
            "Streamable HTTP connect to %s failed (%s); trying SSE",
            config.url,
            _describe(primary),
        )
        try:
            session = await _start_session(
                stack, sse_client(config.url, headers=headers), init_timeout
            )
            return session, TRANSPORT_SSE
        except Exception as fallback:
            raise TransportConnectError(
                config.url,
                f"Failed to connect via streamable_http ({_describe(primary)}); "
                f"SSE fallback failed ({_describe(fallback)})",
                primary_error=primary,
                fallback_error=fallback,
            ) from fallback


# ──────────────────────────────────────────────────────────────────────────────
# Public entry point
# ──────────────────────────────────────────────────────────────────────────────
async def open_session(
    name: str,
    config: MCPServerConfig,
    stack: AsyncExitStack,
    init_timeout: float = DEFAULT_MCP_INIT_TIMEOUT,
) -> tuple[ClientSession, str]:
    """
    Connect to one MCP server and initialize the session.

    Returns the session and the name of the transport that actually connected
    (``stdio``, ``streamable_http`` or ``sse``). Raises TransportConnectError
    when every attempted transport fails.
    """
    try:
        if isinstance(config, StdioServerConfig):
            session = await _open_stdio(stack, config, init_timeout)
            return session, TRANSPORT_STDIO
        return await _open_remote(stack, config, init_timeout)
    except TransportConnectError as e:
        e.server_name = name
        raise
    except Exception as e:
        raise TransportConnectError(
            name, f"Failed to connect to MCP server '{name}': {_describe(e)}", primary_error=e
        ) from e


Connector = Callable[[str, MCPServerConfig, AsyncExitStack], Awaitable[tuple[Any, str]]]
"""Signature of ``open_session``; injectable for tests."""
