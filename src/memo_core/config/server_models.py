"""Pydantic models for MCP server configurations.

A server is declared as one of three transports. Raw mappings (as found in a
config file) may omit ``type``; it is inferred from ``command`` / ``url``.
"""

from __future__ import annotations

import os
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class StdioServerConfig(BaseModel):
    """Local process speaking MCP over stdin/stdout."""

    type: Literal["stdio"] = "stdio"
    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] | None = Field(
        default=None, description="Merged over the current environment when set"
    )
    stderr: Literal["inherit", "ignore"] | None = Field(
        default=None, description="Subprocess stderr (ignored in a TTY by default)"
    )

    model_config = {"frozen": True}

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: str) -> str:
        """Validate command is not empty."""
        if not v or not v.strip():
            raise ValueError("Command cannot be empty")
        return v.strip()

    @field_validator("args")
    @classmethod
    def strip_args(cls, v: list[str]) -> list[str]:
        return [arg.strip() for arg in v if arg and arg.strip()]


class _RemoteServerConfig(BaseModel):
    url: str
    headers: dict[str, str] | None = None
    http_headers: dict[str, str] | None = Field(
        default=None, description="Takes priority over headers"
    )
    bearer_token_env_var: str | None = None

    model_config = {"frozen": True}

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate URL format."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v

    @field_validator("bearer_token_env_var")
    @classmethod
    def blank_env_var_is_none(cls, v: str | None) -> str | None:
        return v.strip() or None if v else None

    def resolve_headers(self) -> dict[str, str]:
        """Request headers including the bearer token from the environment.

        ``Authorization`` is only added when the env var is set and no
        Authorization header was configured explicitly.
        """
        resolved = dict(self.http_headers or self.headers or {})
        if self.bearer_token_env_var:
            token = os.getenv(self.bearer_token_env_var)
            has_auth = any(key.lower() == "authorization" for key in resolved)
            if token and not has_auth:
                resolved["Authorization"] = f"Bearer {token}"
        return resolved


class StreamableHttpServerConfig(_RemoteServerConfig):
    """Remote server over streamable HTTP, optionally falling back to SSE."""

    type: Literal["streamable_http"] = "streamable_http"
    fallback_to_sse: bool = True


class SseServerConfig(_RemoteServerConfig):
    """Remote server over Server-Sent Events only."""

    type: Literal["sse"] = "sse"


MCPServerConfig = Annotated[
    Union[StdioServerConfig, StreamableHttpServerConfig, SseServerConfig],
    Field(discriminator="type"),
]

_server_config_adapter: TypeAdapter[MCPServerConfig] = TypeAdapter(MCPServerConfig)


def parse_server_config(raw: dict[str, Any] | BaseModel) -> MCPServerConfig:
    """Validate a single raw server mapping, inferring ``type`` when absent."""
    if isinstance(raw, (StdioServerConfig, StreamableHttpServerConfig, SseServerConfig)):
        return raw
    if not isinstance(raw, dict):
        raise ValueError("Server config must be a mapping")

    data = dict(raw)
    if not data.get("type"):
        if isinstance(data.get("command"), str) and data["command"].strip():
            data["type"] = "stdio"
        elif isinstance(data.get("url"), str) and data["url"].strip():
            data["type"] = "streamable_http"
        else:
            raise ValueError("Server config must include url or command")
    return _server_config_adapter.validate_python(data)


def parse_server_configs(
    raw_mapping: dict[str, Any] | None,
) -> dict[str, MCPServerConfig]:
    """Validate a name -> config mapping, preserving insertion order."""
    if not raw_mapping:
        return {}
    servers: dict[str, MCPServerConfig] = {}
    for name, raw in raw_mapping.items():
        normalized = name.strip()
        if not normalized:
            raise ValueError("Server name cannot be empty")
        try:
            servers[normalized] = parse_server_config(raw)
        except ValueError as e:
            raise ValueError(f"Invalid config for MCP server '{normalized}': {e}") from e
    return servers
