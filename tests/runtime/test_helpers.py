# tests/runtime/test_helpers.py
"""Tests for runtime/helpers.py."""

from __future__ import annotations

import logging

import pytest

from memo_core.runtime.helpers import (
    TOOL_SKIPPED_AFTER_REJECTION_MESSAGE,
    accumulate_usage,
    build_assistant_tool_calls,
    complete_tool_results_for_protocol,
    emit_event_to_sinks,
    normalize_llm_response,
    parse_text_tool_call,
    resolve_tool_permission,
    to_tool_history_message,
)
from memo_core.runtime.history import create_history_event
from memo_core.runtime.models import (
    LLMResponse,
    MessageRole,
    PartialUsage,
    SessionOptions,
    TextBlock,
    TokenUsage,
    ToolActionResult,
    ToolActionStatus,
    ToolPermissionMode,
    ToolUseBlock,
)


class TestResolveToolPermission:
    @pytest.mark.parametrize(
        "mode, enabled, dangerous",
        [
            (ToolPermissionMode.NONE, False, False),
            (ToolPermissionMode.ONCE, True, False),
            (ToolPermissionMode.FULL, True, True),
        ],
    )
    def test_explicit_modes(self, mode, enabled, dangerous):
        resolved = resolve_tool_permission(SessionOptions(tool_permission_mode=mode, dangerous=True))
        assert resolved.tools_enabled is enabled
        assert resolved.dangerous is dangerous
        assert resolved.mode == mode

    def test_default_follows_dangerous_flag(self):
        assert resolve_tool_permission(SessionOptions()).mode == ToolPermissionMode.AUTO
        resolved = resolve_tool_permission(SessionOptions(dangerous=True))
        assert resolved.dangerous and resolved.mode == ToolPermissionMode.FULL


class TestAccumulateUsage:
    def test_missing_total_is_sum(self):
        target = TokenUsage()
        accumulate_usage(target, PartialUsage(prompt=10, completion=5))
        assert target == TokenUsage(prompt=10, completion=5, total=15)

    def test_reported_total_kept(self):
        target = TokenUsage(prompt=1, completion=1, total=2)
        accumulate_usage(target, PartialUsage(prompt=3, total=9))
        assert target == TokenUsage(prompt=4, completion=1, total=11)

    def test_none(self):
        target = TokenUsage(prompt=1)
        accumulate_usage(target, None)
        assert target.prompt == 1


class TestNormalizeLLMResponse:
    def test_plain_string(self):
        normalized = normalize_llm_response("hello")
        assert normalized.text_content == "hello"
        assert normalized.tool_use_blocks == []

    def test_blocks(self):
        raw = LLMResponse(
            content=[
                TextBlock(text="thinking about it"),
                ToolUseBlock(id="t1", name="read_file", input={"file_path": "/a"}),
                TextBlock(text="more"),
            ],
            reasoning_content="   ",
            stop_reason="tool_use",
            usage=PartialUsage(prompt=3),
        )
        normalized = normalize_llm_response(raw)
        assert normalized.text_content == "thinking about it\nmore"
        assert [b.id for b in normalized.tool_use_blocks] == ["t1"]
        assert normalized.reasoning_content is None
        assert normalized.stop_reason == "tool_use"
        assert normalized.usage.prompt == 3

    def test_from_dict(self):
        raw = LLMResponse.model_validate(
            {"content": [{"type": "tool_use", "id": "x", "name": "shell", "input": {}}]}
        )
        assert normalize_llm_response(raw).tool_use_blocks[0].name == "shell"


class TestBuildAssistantToolCalls:
    def test_stable_arguments(self):
        calls = build_assistant_tool_calls(
            [ToolUseBlock(id="c1", name="grep", input={"b": 1, "a": [2]})]
        )
        assert calls[0].to_dict() == {
            "id": "c1",
            "type": "function",
            "function": {"name": "grep", "arguments": '{"a":[2],"b":1}'},
        }
        assert calls[0].function.get_arguments_dict() == {"a": [2], "b": 1}


class TestParseTextToolCall:
    TOOLS = {"read_file": object(), "shell_command": object()}

    def test_bare_json(self):
        call = parse_text_tool_call(
            '{"tool": "read_file", "input": {"file_path": "/x"}}', self.TOOLS
        )
        assert call.tool == "read_file"
        assert call.input == {"file_path": "/x"}

    def test_fenced_json(self):
        text = '```json\n{"tool": "shell_command", "input": {"command": "ls"}}\n```'
        assert parse_text_tool_call(text, self.TOOLS).tool == "shell_command"

    def test_missing_input_defaults_to_empty(self):
        assert parse_text_tool_call('{"tool": "read_file"}', ["read_file"]).input == {}

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "The answer is 42.",
            '{"tool": "unknown_tool", "input": {}}',
            '{"tool": 5}',
            "[1, 2, 3]",
            '{"tool": "read_file", broken',
            'Sure! {"tool": "read_file", "input": {}}',
        ],
    )
    def test_no_match(self, text):
        assert parse_text_tool_call(text, self.TOOLS) is None


def _result(action_id: str, tool: str, **overrides) -> ToolActionResult:
    data = dict(
        action_id=action_id,
        tool=tool,
        status=ToolActionStatus.SUCCESS,
        success=True,
        observation="ok",
    )
    data.update(overrides)
    return ToolActionResult(**data)


class TestCompleteToolResultsForProtocol:
    REQUESTED = [
        ToolUseBlock(id="a", name="read_file", input={}),
        ToolUseBlock(id="b", name="shell_command", input={}),
        ToolUseBlock(id="c", name="list_dir", input={}),
    ]

    def test_one_result_per_request_in_order(self):
        completed = complete_tool_results_for_protocol(
            self.REQUESTED, [_result("b", "shell_command")], has_rejection=False
        )
        assert [r.action_id for r in completed] == ["a", "b", "c"]
        assert completed[1].success
        missing = completed[0]
        assert missing.status == ToolActionStatus.EXECUTION_FAILED
        assert missing.observation == (
            "Tool result missing for read_file; execution aborted before producing output."
        )
        assert missing.rejected is None

    def test_after_rejection(self):
        denied = _result(
            "a",
            "read_file",
            status=ToolActionStatus.APPROVAL_DENIED,
            success=False,
            rejected=True,
        )
        completed = complete_tool_results_for_protocol(self.REQUESTED, [denied], has_rejection=True)
        assert completed[0] is denied
        for skipped, name in zip(completed[1:], ("shell_command", "list_dir")):
            assert skipped.status == ToolActionStatus.APPROVAL_DENIED
            assert skipped.rejected is True
            assert skipped.observation == f"{TOOL_SKIPPED_AFTER_REJECTION_MESSAGE} {name}"

    def test_all_present(self):
        actual = [_result(b.id, b.name) for b in reversed(self.REQUESTED)]
        completed = complete_tool_results_for_protocol(self.REQUESTED, actual, False)
        assert [r.action_id for r in completed] == ["a", "b", "c"]


class TestToToolHistoryMessage:
    def test_fields(self):
        message = to_tool_history_message(_result("call-1", "grep", observation="3 hits"))
        assert message.role == MessageRole.TOOL
        assert message.tool_call_id == "call-1"
        assert message.name == "grep"
        assert message.content == "3 hits"


class TestEmitEventToSinks:
    @pytest.mark.asyncio
    async def test_failing_sink_skipped(self, caplog):
        received = []

        class GoodSink:
            async def append(self, event):
                received.append(event)

        class BadSink:
            async def append(self, event):
                raise OSError("disk full")

        event = create_history_event("s1", "turn_start", turn=1)
        with caplog.at_level(logging.WARNING):
            await emit_event_to_sinks(event, [BadSink(), GoodSink()])

        assert received == [event]
        assert "disk full" in caplog.text
