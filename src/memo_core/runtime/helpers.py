# memo_core/runtime/helpers.py
"""Pure helpers used by the session turn loop."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

from memo_core.approval.fingerprint import stable_stringify
from memo_core.runtime.history import HistorySink
from memo_core.runtime.models import (
    ChatMessage,
    FunctionCall,
    HistoryEvent,
    LLMResponse,
    MessageRole,
    NormalizedResponse,
    PartialUsage,
    ResolvedToolPermission,
    SessionOptions,
    TextBlock,
    TextToolCall,
    TokenUsage,
    ToolActionResult,
    ToolActionStatus,
    ToolCallData,
    ToolPermissionMode,
    ToolUseBlock,
)

logger = logging.getLogger(__name__)

TOOL_DISABLED_ERROR_MESSAGE = (
    "Tool usage is disabled in the current permission mode. "
    "Switch to /tools once or /tools full to enable tools."
)
TOOL_SKIPPED_DISABLED_MESSAGE = (
    "Tool execution skipped: tools are disabled in current permission mode."
)
TOOL_SKIPPED_AFTER_REJECTION_MESSAGE = "Skipped tool execution after previous rejection."

_FENCED_JSON = re.compile(r"^```(?:json)?\s*([\s\S]*?)\s*```$", re.IGNORECASE)


# ──────────────────────────────────────────────────────────────────────────────
# Permissions
# ──────────────────────────────────────────────────────────────────────────────
def resolve_tool_permission(options: SessionOptions) -> ResolvedToolPermission:
    """Map the session's tool permission mode onto approval settings."""
    mode = options.tool_permission_mode
    if mode == ToolPermissionMode.NONE:
        return ResolvedToolPermission(
            tools_enabled=False, dangerous=False, mode=ToolPermissionMode.NONE
        )
    if mode == ToolPermissionMode.ONCE:
        return ResolvedToolPermission(
            tools_enabled=True, dangerous=False, mode=ToolPermissionMode.ONCE
        )
    if mode == ToolPermissionMode.FULL:
        return ResolvedToolPermission(
            tools_enabled=True, dangerous=True, mode=ToolPermissionMode.FULL
        )

    dangerous = options.dangerous
    return ResolvedToolPermission(
        tools_enabled=True,
        dangerous=dangerous,
        mode=ToolPermissionMode.FULL if dangerous else ToolPermissionMode.AUTO,
    )


# ──────────────────────────────────────────────────────────────────────────────
# Usage
# ──────────────────────────────────────────────────────────────────────────────
def accumulate_usage(
    target: TokenUsage, delta: TokenUsage | PartialUsage | None
) -> None:
    """Add ``delta`` into ``target`` in place; a missing total is prompt + completion."""
    if delta is None:
        return
    prompt = delta.prompt or 0
    completion = delta.completion or 0
    total = delta.total if delta.total is not None else prompt + completion
    target.prompt += prompt
    target.completion += completion
    target.total += total


# ──────────────────────────────────────────────────────────────────────────────
# LLM responses
# ──────────────────────────────────────────────────────────────────────────────
def normalize_llm_response(raw: LLMResponse | str) -> NormalizedResponse:
    """Split an LLM response into joined text, tool-use blocks and metadata."""
    if isinstance(raw, str):
        return NormalizedResponse(text_content=raw)

    texts = [block.text for block in raw.content if isinstance(block, TextBlock)]
    tool_blocks = [block for block in raw.content if isinstance(block, ToolUseBlock)]
    reasoning = raw.reasoning_content
    return NormalizedResponse(
        text_content="\n".join(texts),
        tool_use_blocks=tool_blocks,
        reasoning_content=reasoning if reasoning and reasoning.strip() else None,
        stop_reason=raw.stop_reason,
        usage=raw.usage,
    )


def build_assistant_tool_calls(blocks: Iterable[ToolUseBlock]) -> list[ToolCallData]:
    return [
        ToolCallData(
            id=block.id,
            function=FunctionCall(name=block.name, arguments=stable_stringify(block.input)),
        )
        for block in blocks
    ]


def parse_text_tool_call(
    text: str, tools: Mapping[str, Any] | Iterable[str]
) -> TextToolCall | None:
    """
    Detect a tool call the model wrote as plain JSON text.

    Matches ``{"tool": <known tool>, "input": {...}}`` either bare or inside a
    single fenced ```json block. Unknown tool names do not match.
    """
    trimmed = text.strip()
    if not trimmed:
        return None

    known = set(tools)
    candidates = [trimmed]
    fenced = _FENCED_JSON.match(trimmed)
    if fenced and fenced.group(1):
        candidates.append(fenced.group(1).strip())

    for candidate in candidates:
        if not (candidate.startswith("{") and candidate.endswith("}")):
            continue
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if not isinstance(parsed, dict):
            continue
        tool = parsed.get("tool")
        tool = tool.strip() if isinstance(tool, str) else ""
        if not tool or tool not in known:
            continue
        tool_input = parsed.get("input")
        return TextToolCall(tool=tool, input=tool_input if tool_input is not None else {})

    return None


# ──────────────────────────────────────────────────────────────────────────────
# Tool results
# ──────────────────────────────────────────────────────────────────────────────
def to_tool_history_message(result: ToolActionResult) -> ChatMessage:
    return ChatMessage(
        role=MessageRole.TOOL,
        content=result.observation,
        tool_call_id=result.action_id,
        name=result.tool,
    )


def complete_tool_results_for_protocol(
    requested: Iterable[ToolUseBlock],
    actual: Iterable[ToolActionResult],
    has_rejection: bool,
) -> list[ToolActionResult]:
    """
    Return exactly one result per requested tool call, in request order.

    Chat APIs reject an assistant message whose tool calls are not all
    answered, so calls that never ran (skipped after a rejection, or lost
    to an aborted batch) get a synthesised failure result.
    """
    by_id = {result.action_id: result for result in actual}
    completed: list[ToolActionResult] = []
    for block in requested:
        found = by_id.get(block.id)
        if found is not None:
            completed.append(found)
            continue

        if has_rejection:
            status = ToolActionStatus.APPROVAL_DENIED
            observation = f"{TOOL_SKIPPED_AFTER_REJECTION_MESSAGE} {block.name}"
        else:
            status = ToolActionStatus.EXECUTION_FAILED
            observation = (
                f"Tool result missing for {block.name}; "
                "execution aborted before producing output."
            )
        completed.append(
            ToolActionResult(
                action_id=block.id,
                tool=block.name,
                status=status,
                error_type=status,
                success=False,
                observation=observation,
                duration_ms=0,
                rejected=True if has_rejection else None,
            )
        )
    return completed


# ──────────────────────────────────────────────────────────────────────────────
# History sinks
# ──────────────────────────────────────────────────────────────────────────────
async def emit_event_to_sinks(event: HistoryEvent, sinks: Iterable[HistorySink]) -> None:
    """Append ``event`` to every sink; a failing sink is logged and skipped."""
    for sink in sinks:
        try:
            await sink.append(event)
        except Exception as e:
            logger.warning(
                "History sink %s failed to append %s event: %s",
                type(sink).__name__,
                event.type.value,
                e,
            )
