# memo_core/runtime/orchestrator.py
"""
ToolOrchestrator - runs tool actions behind the approval gate.

Every action ends as a ToolActionResult: denials, unknown tools, bad input,
tool exceptions and cancellation are all reported as results, never raised.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from html import escape
from typing import Any

from mcp.types import CallToolResult
from pydantic import ValidationError

from memo_core.approval.manager import ApprovalManager
from memo_core.approval.models import ApprovalDecision, ApprovalRequest, NeedsApproval
from memo_core.config.defaults import (
    DEFAULT_MAX_TOOL_RESULT_CHARS,
    MAX_TOOL_INPUT_STRING_CHARS,
)
from memo_core.config.env_vars import EnvVar, get_positive_int
from memo_core.runtime.models import (
    ApprovalResponsePayload,
    ExecutionMode,
    FailurePolicy,
    ToolAction,
    ToolActionResult,
    ToolActionStatus,
    ToolExecutionResult,
)
from memo_core.tools.models import (
    NO_TOOL_OUTPUT,
    NativeTool,
    Tool,
    estimate_result_chars,
    flatten_text,
    text_result,
)

logger = logging.getLogger(__name__)

_SANDBOX_MARKERS = ("sandbox", "permission denied", "operation not permitted", "eacces")

RequestApproval = Callable[[ApprovalRequest], Awaitable[ApprovalDecision | str]]


@dataclass
class ApprovalCallbacks:
    """How the orchestrator talks to the user (and to observers) about approvals."""

    request_approval: RequestApproval | None = None
    on_approval_request: Callable[[ApprovalRequest], Awaitable[None]] | None = None
    on_approval_response: (
        Callable[[ApprovalResponsePayload], Awaitable[None]] | None
    ) = None


class InvalidToolInput(ValueError):
    pass


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────
def _now_ms() -> int:
    return int(time.time() * 1000)


def max_tool_result_chars() -> int:
    return get_positive_int(EnvVar.TOOL_RESULT_MAX_CHARS, DEFAULT_MAX_TOOL_RESULT_CHARS)


def oversize_hint(tool_name: str, actual_chars: int, max_chars: int) -> str:
    return (
        f'<system_hint type="tool_output_omitted" tool="{escape(tool_name, quote=True)}" '
        f'reason="too_long" actual_chars="{actual_chars}" max_chars="{max_chars}">'
        "Tool output too long, automatically omitted. "
        "Please narrow the scope or add limit parameters and try again."
        "</system_hint>"
    )


def guard_result_size(tool_name: str, result: CallToolResult) -> CallToolResult:
    """Replace oversized output with a hint telling the model to narrow its query."""
    max_chars = max_tool_result_chars()
    actual = estimate_result_chars(result)
    if actual <= max_chars:
        return result
    logger.debug("Omitting %d chars of %s output (max %d)", actual, tool_name, max_chars)
    return text_result(oversize_hint(tool_name, actual, max_chars))


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ())) or "input"
        parts.append(f"{loc}: {item.get('msg', 'invalid')}")
    return "; ".join(parts)


def parse_tool_input(tool: Tool, raw_input: Any) -> dict[str, Any]:
    """
    Turn model-supplied input into a dict for ``tool``.

    String input is parsed as JSON (blank means ``{}``). Raises
    InvalidToolInput with a message the model can act on.
    """
    candidate = raw_input
    if raw_input is None:
        candidate = {}
    elif isinstance(raw_input, str):
        if len(raw_input) > MAX_TOOL_INPUT_STRING_CHARS:
            raise InvalidToolInput(
                f"{tool.name} invalid input: input string too large "
                f"(max {MAX_TOOL_INPUT_STRING_CHARS} chars)"
            )
        trimmed = raw_input.strip()
        if not trimmed:
            candidate = {}
        else:
            try:
                candidate = json.loads(trimmed)
            except json.JSONDecodeError:
                candidate = trimmed

    if not isinstance(candidate, dict):
        raise InvalidToolInput(f"{tool.name} invalid input: expected object")

    if isinstance(tool, NativeTool):
        try:
            return tool.validate_input(candidate)
        except ValidationError as e:
            raise InvalidToolInput(
                f"{tool.name} invalid input: {_format_validation_error(e)}"
            ) from e
    return candidate


def classify_execution_error(error: BaseException) -> ToolActionStatus:
    if isinstance(error, PermissionError):
        return ToolActionStatus.SANDBOX_DENIED
    message = str(error).lower()
    if any(marker in message for marker in _SANDBOX_MARKERS):
        return ToolActionStatus.SANDBOX_DENIED
    return ToolActionStatus.EXECUTION_FAILED


# ──────────────────────────────────────────────────────────────────────────────
# Orchestrator
# ──────────────────────────────────────────────────────────────────────────────
class ToolOrchestrator:
    """Approval-gated execution of tool actions against a name->Tool registry."""

    def __init__(
        self,
        tools: Mapping[str, Tool],
        approval_manager: ApprovalManager | None = None,
    ):
        self.tools = tools
        self.approval_manager = approval_manager or ApprovalManager()

    def _failure(
        self,
        action_id: str,
        action: ToolAction,
        status: ToolActionStatus,
        observation: str,
        started: int,
        rejected: bool | None = None,
    ) -> ToolActionResult:
        return ToolActionResult(
            action_id=action_id,
            tool=action.name,
            status=status,
            error_type=status,
            success=False,
            observation=observation,
            duration_ms=_now_ms() - started,
            rejected=rejected,
        )

    async def _request_decision(
        self, request: ApprovalRequest, callbacks: ApprovalCallbacks
    ) -> tuple[ApprovalDecision, str | None]:
        """Ask the user; a failing or unusable answer counts as a denial."""
        if callbacks.request_approval is None:
            return ApprovalDecision.DENY, None
        try:
            answer = await callbacks.request_approval(request)
        except Exception as e:
            logger.warning("Approval request for %s failed: %s", request.tool_name, e)
            return ApprovalDecision.DENY, f"approval request failed: {e}"
        try:
            return ApprovalDecision(answer), None
        except ValueError:
            logger.warning(
                "Approval request for %s returned %r; treating as deny",
                request.tool_name,
                answer,
            )
            return ApprovalDecision.DENY, f"invalid approval decision: {answer!r}"

    async def _ask(
        self, check: NeedsApproval, callbacks: ApprovalCallbacks
    ) -> tuple[ApprovalDecision, str | None]:
        request = ApprovalRequest.from_check(check)
        if callbacks.on_approval_request is not None:
            await callbacks.on_approval_request(request)

        decision, problem = await self._request_decision(request, callbacks)
        # a broken prompt is not the user's answer; ask again next time
        if problem is None:
            self.approval_manager.record_decision(check.fingerprint, decision)

        if callbacks.on_approval_response is not None:
            await callbacks.on_approval_response(
                ApprovalResponsePayload(fingerprint=check.fingerprint, decision=decision)
            )
        return decision, problem

    async def execute_action(
        self,
        action: ToolAction,
        callbacks: ApprovalCallbacks | None = None,
    ) -> ToolActionResult:
        """Run one action. Approval is asked first, even for unknown tools."""
        callbacks = callbacks or ApprovalCallbacks()
        started = _now_ms()
        action_id = action.id or f"{action.name}:{started}"

        check = self.approval_manager.check(action.name, action.input)
        if isinstance(check, NeedsApproval):
            decision, problem = await self._ask(check, callbacks)
            if decision == ApprovalDecision.DENY:
                observation = f"User denied tool execution: {action.name}"
                if problem:
                    observation += f" ({problem})"
                return self._failure(
                    action_id,
                    action,
                    ToolActionStatus.APPROVAL_DENIED,
                    observation,
                    started,
                    rejected=True,
                )

        tool = self.tools.get(action.name)
        if tool is None:
            return self._failure(
                action_id,
                action,
                ToolActionStatus.TOOL_NOT_FOUND,
                f"Unknown tool: {action.name}",
                started,
            )

        try:
            tool_input = parse_tool_input(tool, action.input)
        except InvalidToolInput as e:
            return self._failure(
                action_id, action, ToolActionStatus.INPUT_INVALID, str(e), started
            )

        try:
            raw = await tool.execute(tool_input)
        except Exception as e:
            status = classify_execution_error(e)
            logger.debug("Tool %s failed: %s", action.name, e)
            return self._failure(
                action_id, action, status, f"Tool execution failed: {e}", started
            )

        result = guard_result_size(action.name, raw)
        return ToolActionResult(
            action_id=action_id,
            tool=action.name,
            status=ToolActionStatus.SUCCESS,
            success=True,
            observation=flatten_text(result) or NO_TOOL_OUTPUT,
            duration_ms=_now_ms() - started,
        )

    def _cancelled(self, action: ToolAction, started: int) -> ToolActionResult:
        return self._failure(
            action.id or f"{action.name}:{started}",
            action,
            ToolActionStatus.CANCELLED,
            f"Tool execution cancelled: {action.name}",
            started,
        )

    async def _execute_abortable(
        self,
        action: ToolAction,
        callbacks: ApprovalCallbacks | None,
        abort_event: asyncio.Event | None,
    ) -> ToolActionResult:
        started = _now_ms()
        if abort_event is None:
            return await self.execute_action(action, callbacks)
        if abort_event.is_set():
            return self._cancelled(action, started)

        task = asyncio.ensure_future(self.execute_action(action, callbacks))
        waiter = asyncio.ensure_future(abort_event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return self._cancelled(action, started)

    async def execute_actions(
        self,
        actions: Sequence[ToolAction],
        callbacks: ApprovalCallbacks | None = None,
        execution_mode: ExecutionMode | str = ExecutionMode.SEQUENTIAL,
        failure_policy: FailurePolicy | str = FailurePolicy.FAIL_FAST,
        abort_event: asyncio.Event | None = None,
    ) -> ToolExecutionResult:
        """
        Run a batch of actions.

        Parallel mode runs them concurrently and keeps request order. With
        ``fail_fast`` a batch stops at the first rejection (parallel results
        after it are dropped). Setting ``abort_event`` cancels what is still
        running; those actions come back with status ``cancelled``.
        """
        execution_mode = ExecutionMode(execution_mode)
        failure_policy = FailurePolicy(failure_policy)
        fail_fast = failure_policy == FailurePolicy.FAIL_FAST

        results: list[ToolActionResult] = []
        if execution_mode == ExecutionMode.PARALLEL:
            settled = await asyncio.gather(
                *(self._execute_abortable(a, callbacks, abort_event) for a in actions)
            )
            results = list(settled)
            if fail_fast:
                for index, result in enumerate(results):
                    if result.rejected:
                        results = results[: index + 1]
                        break
        else:
            for action in actions:
                result = await self._execute_abortable(action, callbacks, abort_event)
                results.append(result)
                if result.rejected and fail_fast:
                    break

        return ToolExecutionResult(
            results=results,
            combined_observation="\n\n".join(
                f"[{result.tool}]: {result.observation}" for result in results
            ),
            has_rejection=any(result.rejected for result in results),
            execution_mode=execution_mode,
            failure_policy=failure_policy,
        )

    def clear_once_approvals(self) -> None:
        self.approval_manager.clear_once_approvals()

    def dispose(self) -> None:
        self.approval_manager.dispose()
