# tests/ui/test_approval_prompt.py
"""Tests for the console approval prompt."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from memo_core.approval import ApprovalDecision, ApprovalRequest, RiskLevel
from memo_core.ui.approval_prompt import ask_approval, parse_answer, request_approval


def _request(params=None) -> ApprovalRequest:
    return ApprovalRequest(
        tool_name="shell_command",
        params=params if params is not None else {"command": "ls -la"},
        fingerprint="0123456789abcdef",
        risk_level=RiskLevel.EXECUTE,
        reason="shell_command will execute system commands",
    )


class TestParseAnswer:
    @pytest.mark.parametrize(
        "answer, decision",
        [
            ("y", ApprovalDecision.ONCE),
            ("YES", ApprovalDecision.ONCE),
            ("", ApprovalDecision.DENY),
            ("  ", ApprovalDecision.DENY),
            (" a ", ApprovalDecision.SESSION),
            ("always", ApprovalDecision.SESSION),
            ("n", ApprovalDecision.DENY),
            ("maybe", ApprovalDecision.DENY),
        ],
    )
    def test_answers(self, answer, decision):
        assert parse_answer(answer) == decision


class TestAskApproval:
    def test_shows_request_and_reads_answer(self):
        with (
            patch("memo_core.ui.approval_prompt.output") as mock_output,
            patch("memo_core.ui.approval_prompt.prompts") as mock_prompts,
        ):
            mock_prompts.ask.return_value = "a"
            decision = ask_approval(_request())

        assert decision == ApprovalDecision.SESSION
        printed = " ".join(str(c.args[0]) for c in mock_output.print.call_args_list)
        assert "shell_command" in printed
        assert "execute risk" in printed
        assert '"ls -la"' in printed
        mock_output.info.assert_any_call("shell_command will execute system commands")
        mock_output.success.assert_called_once()

    def test_deny(self):
        with (
            patch("memo_core.ui.approval_prompt.output") as mock_output,
            patch("memo_core.ui.approval_prompt.prompts") as mock_prompts,
        ):
            mock_prompts.ask.return_value = "n"
            assert ask_approval(_request()) == ApprovalDecision.DENY
        mock_output.info.assert_any_call("Tool execution cancelled")

    @pytest.mark.parametrize("error", [KeyboardInterrupt, EOFError])
    def test_interrupt_denies(self, error):
        with (
            patch("memo_core.ui.approval_prompt.output"),
            patch("memo_core.ui.approval_prompt.prompts") as mock_prompts,
        ):
            mock_prompts.ask.side_effect = error
            assert ask_approval(_request()) == ApprovalDecision.DENY

    def test_long_params_truncated(self):
        with (
            patch("memo_core.ui.approval_prompt.output") as mock_output,
            patch("memo_core.ui.approval_prompt.prompts") as mock_prompts,
        ):
            mock_prompts.ask.return_value = "y"
            ask_approval(_request({"command": "x" * 1000}))

        params_line = [
            c.args[0] for c in mock_output.print.call_args_list if "params:" in str(c.args[0])
        ][0]
        assert params_line.endswith("...")
        assert len(params_line) < 500


class TestRequestApproval:
    @pytest.mark.asyncio
    async def test_runs_prompt_off_loop(self):
        with (
            patch("memo_core.ui.approval_prompt.output"),
            patch("memo_core.ui.approval_prompt.prompts") as mock_prompts,
        ):
            mock_prompts.ask.return_value = "y"
            assert await request_approval(_request()) == ApprovalDecision.ONCE


class TestDefaultAnswer:
    def test_enter_denies(self):
        with (
            patch("memo_core.ui.approval_prompt.output"),
            patch("memo_core.ui.approval_prompt.prompts") as mock_prompts,
        ):
            mock_prompts.ask.return_value = ""
            assert ask_approval(_request()) == ApprovalDecision.DENY
        assert mock_prompts.ask.call_args.kwargs["default"] == "n"
