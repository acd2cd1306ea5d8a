# memo_core/tools/models.py
"""Tool models shared by the native registry, MCP registry and router."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Literal

from mcp.types import CallToolResult, TextContent
from pydantic import BaseModel, Field

NO_TOOL_OUTPUT = "(no tool output)"
EMPTY_INPUT_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}

ToolExecutor = Callable[[Any], Awaitable[CallToolResult]]


# ──────────────────────────────────────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────────────────────────────────────
class ToolSource(str, Enum):
    """Where a tool is implemented."""

    NATIVE = "native"
    MCP = "mcp"


# ──────────────────────────────────────────────────────────────────────────────
# Tools
# ──────────────────────────────────────────────────────────────────────────────
class Tool(BaseModel):
    """A callable tool exposed to the LLM."""

    name: str
    description: str
    source: ToolSource
    input_schema: dict[str, Any] = Field(default_factory=dict)
    supports_parallel_tool_calls: bool = Field(
        default=False, description="Safe to run concurrently with sibling calls"
    )
    is_mutating: bool = Field(
        default=False, description="Changes files, processes or remote state"
    )
    executor: ToolExecutor = Field(exclude=True, repr=False)

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    async def execute(self, tool_input: Any) -> CallToolResult:
        return await self.executor(tool_input)

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema or dict(EMPTY_INPUT_SCHEMA),
        )


class NativeTool(Tool):
    """In-process tool; may carry a pydantic model validating its input."""

    source: Literal[ToolSource.NATIVE] = ToolSource.NATIVE
    input_model: type[BaseModel] | None = Field(default=None, exclude=True, repr=False)

    def validate_input(self, data: dict[str, Any]) -> dict[str, Any]:
        """Validate against ``input_model`` (raises pydantic ValidationError)."""
        if self.input_model is None:
            return data
        return self.input_model.model_validate(data).model_dump(exclude_none=True)


class McpTool(Tool):
    """Tool discovered on an MCP server, named ``<server>_<original>``."""

    source: Literal[ToolSource.MCP] = ToolSource.MCP
    server_name: str
    original_name: str


class ToolDescription(BaseModel):
    """Structured tool description for prompt builders."""

    name: str
    description: str
    source: ToolSource
    server_name: str | None = None
    input_schema: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class ToolDefinition(BaseModel):
    """Tool definition in the shape LLM tool-use APIs expect."""

    name: str
    description: str
    input_schema: dict[str, Any]

    model_config = {"frozen": True}

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────
def schema_from_model(model: type[BaseModel]) -> dict[str, Any]:
    """JSON Schema for a pydantic input model, without the top-level title."""
    schema = model.model_json_schema()
    schema.pop("title", None)
    schema.pop("$schema", None)
    return schema


def create_native_tool(
    name: str,
    description: str,
    execute: ToolExecutor,
    input_model: type[BaseModel] | None = None,
    input_schema: dict[str, Any] | None = None,
    supports_parallel_tool_calls: bool = False,
    is_mutating: bool = False,
) -> NativeTool:
    """Build a NativeTool, deriving the schema from ``input_model`` if given."""
    if input_schema is None:
        input_schema = (
            schema_from_model(input_model) if input_model else dict(EMPTY_INPUT_SCHEMA)
        )
    return NativeTool(
        name=name,
        description=description,
        input_schema=input_schema,
        input_model=input_model,
        supports_parallel_tool_calls=supports_parallel_tool_calls,
        is_mutating=is_mutating,
        executor=execute,
    )


def text_result(text: str, is_error: bool = False) -> CallToolResult:
    """Wrap plain text as an MCP CallToolResult."""
    return CallToolResult(
        content=[TextContent(type="text", text=text)], isError=is_error
    )


def json_result(payload: Any) -> CallToolResult:
    """Wrap a JSON-serialisable payload as pretty-printed text."""
    return text_result(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def flatten_text(result: CallToolResult) -> str:
    """Join the text items of a result with newlines (non-text items skipped)."""
    texts = [item.text for item in result.content or [] if item.type == "text"]
    return "\n".join(texts)


def estimate_result_chars(result: CallToolResult) -> int:
    """Rough size of a result: text length, or JSON length for other items."""
    total = 0
    for item in result.content or []:
        if item.type == "text":
            total += len(item.text)
            continue
        try:
            total += len(item.model_dump_json(exclude_none=True))
        except (TypeError, ValueError):
            total += 100
    return total
