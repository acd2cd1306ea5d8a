"""
Configuration for memo-core.

Constants, environment variables, logging setup and MCP server models.
"""

from memo_core.config.env_vars import EnvVar, get_env, get_env_int, get_positive_int
from memo_core.config.logging import get_logger, setup_logging
from memo_core.config.server_models import (
    MCPServerConfig,
    SseServerConfig,
    StdioServerConfig,
    StreamableHttpServerConfig,
    parse_server_config,
    parse_server_configs,
)

__all__ = [
    "EnvVar",
    "get_env",
    "get_env_int",
    "get_positive_int",
    "get_logger",
    "setup_logging",
    "MCPServerConfig",
    "SseServerConfig",
    "StdioServerConfig",
    "StreamableHttpServerConfig",
    "parse_server_config",
    "parse_server_configs",
]
