# memo_core/runtime/session.py
"""
AgentSession - multi-turn conversation runtime.

Each turn loops: call the LLM, run any requested tools behind the approval
gate, feed the results back, until the model answers with text, a guard
trips (step cap, prompt size, protocol violation, disabled tools) or the
user rejects a call or cancels the turn.

Every step is written to the history sinks and announced to the hooks.
Sink and hook failures are logged and never end a turn.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from memo_core.approval.fingerprint import stable_stringify
from memo_core.approval.manager import ApprovalManager
from memo_core.approval.models import ApprovalDecision, ApprovalRequest
from memo_core.config.defaults import REPEATED_ACTION_THRESHOLD
from memo_core.errors import TurnCancelledError
from memo_core.runtime.helpers import (
    TOOL_DISABLED_ERROR_MESSAGE,
    TOOL_SKIPPED_DISABLED_MESSAGE,
    accumulate_usage,
    build_assistant_tool_calls,
    complete_tool_results_for_protocol,
    emit_event_to_sinks,
    normalize_llm_response,
    parse_text_tool_call,
    resolve_tool_permission,
    to_tool_history_message,
)
from memo_core.runtime.history import HistorySink, create_history_event
from memo_core.runtime.hooks import (
    AgentHooks,
    build_hook_runners,
    run_hook,
    snapshot_history,
)
from memo_core.runtime.models import (
    ActionPayload,
    ApprovalRequestHookPayload,
    ApprovalResponseHookPayload,
    ApprovalResponsePayload,
    ChatMessage,
    ExecutionMode,
    FailurePolicy,
    FinalPayload,
    HistoryEventType,
    LLMResponse,
    MessageRole,
    ObservationPayload,
    SessionOptions,
    StepTrace,
    TokenUsage,
    ToolAction,
    ToolActionStatus,
    ToolUseBlock,
    TurnResult,
    TurnStartPayload,
    TurnStatus,
)
from memo_core.runtime.orchestrator import ApprovalCallbacks, ToolOrchestrator
from memo_core.runtime.tokens import CharTokenCounter, TokenCounter
from memo_core.tools.models import Tool

logger = logging.getLogger(__name__)

T = TypeVar("T")

CallLLM = Callable[[list[ChatMessage], list[dict[str, Any]]], Awaitable[LLMResponse | str]]

USER_REJECTED_MESSAGE = "User denied tool execution; stopped the current operation."
NO_FINAL_ANSWER_MESSAGE = "Unable to produce a final answer. Please retry or adjust the request."
REPEAT_PREVIEW_CHARS = 200


@dataclass
class SessionDeps:
    """What a session needs from its host."""

    call_llm: CallLLM
    tools: Mapping[str, Tool] = field(default_factory=dict)
    request_approval: (
        Callable[[ApprovalRequest], Awaitable[ApprovalDecision | str]] | None
    ) = None
    hooks: AgentHooks | None = None
    middlewares: Sequence[AgentHooks] = ()
    history_sinks: Sequence[HistorySink] = ()
    token_counter: TokenCounter | None = None
    on_assistant_step: Callable[[str, int], None] | None = None
    dispose: Callable[[], Awaitable[None]] | None = None


@dataclass
class _TurnState:
    turn: int
    steps: list[StepTrace] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    status: TurnStatus = TurnStatus.OK
    final_text: str = ""
    error_message: str | None = None
    protocol_violations: int = 0


def _now_ms() -> int:
    return int(time.time() * 1000)


class AgentSession:
    """One conversation: history, usage totals, approvals and sinks."""

    def __init__(self, deps: SessionDeps, options: SessionOptions | None = None):
        self.deps = deps
        self.options = options or SessionOptions()
        self.id = self.options.session_id
        self.mode = self.options.mode
        self.history: list[ChatMessage] = [ChatMessage.system(self.options.system_prompt)]

        self._token_counter: TokenCounter = deps.token_counter or CharTokenCounter(
            self.options.tokenizer_model
        )
        self._sinks = list(deps.history_sinks)
        self._hooks = build_hook_runners(deps.hooks, deps.middlewares)

        permission = resolve_tool_permission(self.options)
        self._tools_enabled = permission.tools_enabled
        self._permission_mode = permission.mode
        self._orchestrator = ToolOrchestrator(
            deps.tools,
            ApprovalManager(
                dangerous=permission.dangerous,
                tool_risk_levels=self.options.tool_risk_levels,
            ),
        )

        self._turn_index = 0
        self._session_usage = TokenUsage()
        self._started_at = _now_ms()
        self._session_start_emitted = False
        self._closed = False
        self._abort_event: asyncio.Event | None = None
        self._last_action_signature: str | None = None
        self._repeated_action_count = 0

    # ==================== Properties ====================

    @property
    def approval_manager(self) -> ApprovalManager:
        return self._orchestrator.approval_manager

    @property
    def token_usage(self) -> TokenUsage:
        return self._session_usage.copy_usage()

    @property
    def closed(self) -> bool:
        return self._closed

    def list_tool_names(self) -> list[str]:
        return list(self.deps.tools)

    # ==================== Events ====================

    async def _emit(
        self,
        type: HistoryEventType,
        turn: int | None = None,
        step: int | None = None,
        content: str | None = None,
        role: MessageRole | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        if not self._sinks:
            return
        event = create_history_event(
            self.id, type, turn=turn, step=step, content=content, role=role, meta=meta
        )
        await emit_event_to_sinks(event, self._sinks)

    async def _finish(
        self,
        state: _TurnState,
        status: TurnStatus,
        text: str,
        step: int | None = None,
        error: str | None = None,
        record_in_history: bool = True,
        step_usage: TokenUsage | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        """End the turn: record status, emit ``final`` and run ``on_final``."""
        state.status = status
        state.final_text = text
        state.error_message = error
        if record_in_history and text:
            self.history.append(ChatMessage(role=MessageRole.ASSISTANT, content=text))

        await self._emit(
            HistoryEventType.FINAL,
            turn=state.turn,
            step=step,
            content=text,
            role=MessageRole.ASSISTANT,
            meta=meta,
        )
        await run_hook(
            self._hooks,
            "on_final",
            FinalPayload(
                session_id=self.id,
                turn=state.turn,
                step=step,
                final_text=text,
                status=status,
                error_message=error,
                turn_usage=state.usage.copy_usage(),
                token_usage=step_usage,
                steps=list(state.steps),
            ),
        )

    # ==================== Guards ====================

    def _reset_action_repetition(self) -> None:
        self._last_action_signature = None
        self._repeated_action_count = 0

    def _track_repeated_action(self, tool: str, tool_input: Any) -> None:
        """Append a system reminder when the same call repeats back to back."""
        serialized = stable_stringify(tool_input)
        signature = f"{tool}:{serialized}"
        if signature == self._last_action_signature:
            self._repeated_action_count += 1
        else:
            self._last_action_signature = signature
            self._repeated_action_count = 1

        if self._repeated_action_count != REPEATED_ACTION_THRESHOLD:
            return
        preview = serialized[:REPEAT_PREVIEW_CHARS]
        if len(serialized) > REPEAT_PREVIEW_CHARS:
            preview += "..."
        self.history.append(
            ChatMessage.system(
                f"System reminder: you have called tool '{tool}' "
                f"{REPEATED_ACTION_THRESHOLD} times in a row with identical input "
                f"({preview}). Check whether you are stuck in a loop; give a final "
                "answer or adjust the input."
            )
        )

    async def _await_unless_aborted(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable``; raise TurnCancelledError if the turn is cancelled first."""
        abort_event = self._abort_event
        task = asyncio.ensure_future(awaitable)
        if abort_event is None:
            return await task

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
        raise TurnCancelledError("Turn cancelled")

    def _approval_callbacks(self, turn: int, step: int) -> ApprovalCallbacks:
        async def on_request(request: ApprovalRequest) -> None:
            await run_hook(
                self._hooks,
                "on_approval_request",
                ApprovalRequestHookPayload(
                    session_id=self.id, turn=turn, step=step, request=request
                ),
            )

        async def on_response(payload: ApprovalResponsePayload) -> None:
            await run_hook(
                self._hooks,
                "on_approval_response",
                ApprovalResponseHookPayload(
                    session_id=self.id,
                    turn=turn,
                    step=step,
                    fingerprint=payload.fingerprint,
                    decision=payload.decision,
                ),
            )

        return ApprovalCallbacks(
            request_approval=self.deps.request_approval,
            on_approval_request=on_request,
            on_approval_response=on_response,
        )

    def _execution_mode(self, blocks: Sequence[ToolUseBlock]) -> ExecutionMode:
        """Parallel only when every tool allows it and none mutates state."""
        if len(blocks) < 2:
            return ExecutionMode.SEQUENTIAL
        tools = [self.deps.tools.get(block.name) for block in blocks]
        all_parallel = all(t is not None and t.supports_parallel_tool_calls for t in tools)
        any_mutating = any(t is not None and t.is_mutating for t in tools)
        if all_parallel and not any_mutating:
            return ExecutionMode.PARALLEL
        return ExecutionMode.SEQUENTIAL

    def _tool_definitions(self) -> list[dict[str, Any]]:
        if not self._tools_enabled:
            return []
        return [tool.to_definition().to_dict() for tool in self.deps.tools.values()]

    # ==================== Turn ====================

    async def run_turn(self, user_input: str) -> TurnResult:
        """Run one user turn to completion and return its outcome."""
        if self._closed:
            raise RuntimeError("Session is closed")

        self._abort_event = asyncio.Event()
        self._turn_index += 1
        state = _TurnState(turn=self._turn_index)
        turn_started = _now_ms()
        max_prompt = self.options.max_prompt_tokens

        if not self._session_start_emitted:
            system_prompt = self.history[0].content if self.history else ""
            await self._emit(
                HistoryEventType.SESSION_START,
                content=system_prompt or None,
                role=MessageRole.SYSTEM if system_prompt else None,
                meta={
                    "mode": self.mode.value,
                    "tokenizer": self._token_counter.model,
                    "warnPromptTokens": self.options.warn_prompt_tokens,
                    "maxPromptTokens": max_prompt,
                    "maxSteps": self.options.max_steps,
                    "toolPermissionMode": self._permission_mode.value,
                },
            )
            self._session_start_emitted = True

        self.history.append(ChatMessage.user(user_input))

        try:
            prompt_tokens = self._token_counter.count_messages(self.history)
            await self._emit(
                HistoryEventType.TURN_START,
                turn=state.turn,
                content=user_input,
                meta={"tokens": {"prompt": prompt_tokens}},
            )
            await run_hook(
                self._hooks,
                "on_turn_start",
                TurnStartPayload(
                    session_id=self.id,
                    turn=state.turn,
                    input=user_input,
                    history=snapshot_history(self.history),
                ),
            )

            await self._run_steps(state)

            if not state.final_text and state.status != TurnStatus.CANCELLED:
                status = TurnStatus.ERROR if state.status == TurnStatus.OK else state.status
                await self._finish(
                    state, status, NO_FINAL_ANSWER_MESSAGE, error=NO_FINAL_ANSWER_MESSAGE
                )

            await self._emit(
                HistoryEventType.TURN_END,
                turn=state.turn,
                meta={
                    "status": state.status.value,
                    "stepCount": len(state.steps),
                    "durationMs": _now_ms() - turn_started,
                    "tokens": state.usage.model_dump(),
                    "protocolViolationCount": state.protocol_violations or None,
                },
            )
            return TurnResult(
                final_text=state.final_text,
                steps=state.steps,
                status=state.status,
                error_message=state.error_message,
                token_usage=state.usage,
            )
        finally:
            self._abort_event = None
            self._orchestrator.clear_once_approvals()

    async def _run_steps(self, state: _TurnState) -> None:
        turn = state.turn
        max_prompt = self.options.max_prompt_tokens
        warn_prompt = self.options.warn_prompt_tokens
        last_text: str | None = None
        last_text_step = -1

        for step in range(self.options.max_steps):
            if self._abort_event is not None and self._abort_event.is_set():
                await self._finish(
                    state,
                    TurnStatus.CANCELLED,
                    "",
                    step=step,
                    error="Turn cancelled",
                    meta={"cancelled": True},
                )
                return

            estimated_prompt = self._token_counter.count_messages(self.history)
            if max_prompt is not None and estimated_prompt > max_prompt:
                message = (
                    f"Context tokens ({estimated_prompt}) exceed the limit. "
                    "Please shorten the input or restart the session."
                )
                await self._finish(
                    state,
                    TurnStatus.PROMPT_LIMIT,
                    message,
                    step=step,
                    error=message,
                    meta={"tokens": {"prompt": estimated_prompt}},
                )
                return
            if warn_prompt is not None and estimated_prompt > warn_prompt:
                logger.warning("Prompt tokens are near the limit: %d", estimated_prompt)
                await self._emit(
                    HistoryEventType.CONTEXT_USAGE,
                    turn=turn,
                    step=step,
                    meta={
                        "promptTokens": estimated_prompt,
                        "warnPromptTokens": warn_prompt,
                        "maxPromptTokens": max_prompt,
                    },
                )

            # ── LLM call ──────────────────────────────────────────────────
            try:
                raw = await self._await_unless_aborted(
                    self.deps.call_llm(list(self.history), self._tool_definitions())
                )
            except TurnCancelledError:
                await self._finish(
                    state,
                    TurnStatus.CANCELLED,
                    "",
                    step=step,
                    error="Turn cancelled",
                    meta={"cancelled": True},
                )
                return
            except Exception as e:
                message = f"LLM call failed: {e}"
                logger.warning(message)
                await self._finish(state, TurnStatus.ERROR, message, step=step, error=message)
                return

            response = normalize_llm_response(raw)
            text = response.text_content
            blocks = response.tool_use_blocks
            if text.strip():
                last_text = text
                last_text_step = step
            if text and self.deps.on_assistant_step is not None:
                self.deps.on_assistant_step(text, step)

            text_tool_call = (
                parse_text_tool_call(text, self.deps.tools) if not blocks and text else None
            )

            # ── Usage ─────────────────────────────────────────────────────
            usage = response.usage
            prompt_used = (
                usage.prompt if usage and usage.prompt is not None else estimated_prompt
            )
            completion_used = (
                usage.completion
                if usage and usage.completion is not None
                else self._token_counter.count_text(text)
            )
            step_usage = TokenUsage(
                prompt=prompt_used,
                completion=completion_used,
                total=(
                    usage.total
                    if usage and usage.total is not None
                    else prompt_used + completion_used
                ),
            )
            accumulate_usage(state.usage, step_usage)
            accumulate_usage(self._session_usage, step_usage)

            actions = [ToolAction(id=b.id, name=b.name, input=b.input) for b in blocks]
            trace = StepTrace(
                index=step,
                assistant_text=text,
                action=actions[0] if actions else None,
                parallel_actions=actions if len(actions) > 1 else None,
                token_usage=step_usage,
            )
            state.steps.append(trace)

            await self._emit(
                HistoryEventType.ASSISTANT,
                turn=turn,
                step=step,
                content=text,
                role=MessageRole.ASSISTANT,
                meta={
                    "tokens": step_usage.model_dump(),
                    "protocol_violation": text_tool_call is not None,
                    "stopReason": response.stop_reason,
                },
            )

            if text_tool_call is not None:
                state.protocol_violations += 1
                message = (
                    f'Model protocol error: returned plain-text tool JSON for "{text_tool_call.tool}" '
                    f"{state.protocol_violations} times. Structured tool calls are required."
                )
                await self._finish(
                    state,
                    TurnStatus.ERROR,
                    message,
                    step=step,
                    error=message,
                    step_usage=step_usage,
                    meta={
                        "error_type": "model_protocol_error",
                        "tool": text_tool_call.tool,
                        "protocol_violation": True,
                        "protocol_violation_count": state.protocol_violations,
                    },
                )
                return

            if blocks:
                self.history.append(
                    ChatMessage(
                        role=MessageRole.ASSISTANT,
                        content=text,
                        reasoning_content=response.reasoning_content,
                        tool_calls=build_assistant_tool_calls(blocks),
                    )
                )
            elif text:
                self.history.append(
                    ChatMessage(
                        role=MessageRole.ASSISTANT,
                        content=text,
                        reasoning_content=response.reasoning_content,
                    )
                )

            # ── Tools ─────────────────────────────────────────────────────
            if blocks and not self._tools_enabled:
                for block in blocks:
                    self.history.append(
                        ChatMessage.tool(block.id, block.name, TOOL_SKIPPED_DISABLED_MESSAGE)
                    )
                await self._finish(
                    state,
                    TurnStatus.ERROR,
                    TOOL_DISABLED_ERROR_MESSAGE,
                    step=step,
                    error=TOOL_DISABLED_ERROR_MESSAGE,
                    step_usage=step_usage,
                    meta={
                        "error_type": "tool_disabled",
                        "tool_count": len(blocks),
                        "tools": ",".join(block.name for block in blocks),
                    },
                )
                return

            if blocks:
                done = await self._run_tools(state, step, blocks, actions, text, trace)
                if done:
                    return
                continue

            # ── Final answer ──────────────────────────────────────────────
            self._reset_action_repetition()
            use_previous = (
                response.stop_reason == "end_turn"
                and not text.strip()
                and last_text is not None
                and last_text_step == step - 1
            )
            final_text = last_text if use_previous and last_text else text
            if not final_text:
                return
            await self._finish(
                state,
                TurnStatus.OK,
                final_text,
                step=step,
                record_in_history=False,
                step_usage=step_usage,
                meta={
                    "tokens": step_usage.model_dump(),
                    "fallback_from_previous_text": use_previous or None,
                },
            )
            return

        message = (
            f"Stopped after {self.options.max_steps} steps without a final answer. "
            "Please retry or narrow the request."
        )
        await self._finish(state, TurnStatus.MAX_STEPS, message, error=message)

    async def _run_tools(
        self,
        state: _TurnState,
        step: int,
        blocks: list[ToolUseBlock],
        actions: list[ToolAction],
        thinking: str,
        trace: StepTrace,
    ) -> bool:
        """Dispatch a step's tool calls. Returns True when the turn must end."""
        turn = state.turn
        for block in blocks:
            self._track_repeated_action(block.name, block.input)

        mode = self._execution_mode(blocks)
        parallel = len(blocks) > 1
        await self._emit(
            HistoryEventType.ACTION,
            turn=turn,
            step=step,
            meta={
                "tools": [block.name for block in blocks],
                "action_ids": [block.id for block in blocks],
                "action_id": blocks[0].id,
                "parallel": parallel,
                "phase": "dispatch",
                "thinking": thinking or None,
                "toolBlocks": [
                    {"id": block.id, "name": block.name, "input": block.input}
                    for block in blocks
                ],
            },
        )
        await run_hook(
            self._hooks,
            "on_action",
            ActionPayload(
                session_id=self.id,
                turn=turn,
                step=step,
                action=actions[0],
                parallel_actions=actions if parallel else None,
                thinking=thinking or None,
                history=snapshot_history(self.history),
            ),
        )

        execution = await self._orchestrator.execute_actions(
            actions,
            self._approval_callbacks(turn, step),
            execution_mode=mode,
            failure_policy=FailurePolicy.FAIL_FAST,
            abort_event=self._abort_event,
        )
        results = complete_tool_results_for_protocol(
            blocks, execution.results, execution.has_rejection
        )

        for index, result in enumerate(results):
            self.history.append(to_tool_history_message(result))
            await self._emit(
                HistoryEventType.OBSERVATION,
                turn=turn,
                step=step,
                content=result.observation,
                meta={
                    "tool": result.tool,
                    "index": index,
                    "action_id": result.action_id,
                    "phase": "result",
                    "status": result.status.value,
                    "error_type": result.error_type.value if result.error_type else None,
                    "duration_ms": result.duration_ms,
                    "execution_mode": mode.value,
                },
            )

        if parallel:
            observation = "\n\n".join(f"[{r.tool}]: {r.observation}" for r in results)
        else:
            observation = results[0].observation
        trace.observation = observation
        statuses = [result.status for result in results]
        result_status = next(
            (s for s in statuses if s != ToolActionStatus.SUCCESS), ToolActionStatus.SUCCESS
        )
        await run_hook(
            self._hooks,
            "on_observation",
            ObservationPayload(
                session_id=self.id,
                turn=turn,
                step=step,
                tool=", ".join(block.name for block in blocks),
                observation=observation,
                result_status=result_status,
                parallel_tools=[block.name for block in blocks] if parallel else None,
                history=snapshot_history(self.history),
            ),
        )

        if self._abort_event is not None and self._abort_event.is_set():
            await self._finish(
                state,
                TurnStatus.CANCELLED,
                "",
                step=step,
                error="Turn cancelled",
                meta={"cancelled": True},
            )
            return True

        if execution.has_rejection:
            rejected = next((r for r in results if r.rejected), None)
            await self._finish(
                state,
                TurnStatus.CANCELLED,
                USER_REJECTED_MESSAGE,
                step=step,
                record_in_history=False,
                step_usage=trace.token_usage,
                meta={
                    "rejected": True,
                    "phase": "result",
                    "action_id": rejected.action_id if rejected else None,
                    "error_type": (
                        rejected.error_type.value
                        if rejected and rejected.error_type
                        else ToolActionStatus.APPROVAL_DENIED.value
                    ),
                },
            )
            return True
        return False

    # ==================== Lifecycle ====================

    def cancel_current_turn(self) -> None:
        """Abort the running turn; it ends with status ``cancelled``."""
        if self._abort_event is not None:
            self._abort_event.set()

    async def close(self) -> None:
        """Emit session_end, close sinks, drop approvals and release host resources."""
        if self._closed:
            return
        self._closed = True

        await self._emit(
            HistoryEventType.SESSION_END,
            meta={
                "durationMs": _now_ms() - self._started_at,
                "tokens": self._session_usage.model_dump(),
            },
        )
        for sink in self._sinks:
            try:
                closer = getattr(sink, "close", None) or getattr(sink, "flush", None)
                if closer is not None:
                    await closer()
            except Exception as e:
                logger.error("History flush failed: %s", e)

        self._token_counter.dispose()
        self._orchestrator.dispose()
        if self.deps.dispose is not None:
            await self.deps.dispose()


async def create_agent_session(
    deps: SessionDeps, options: SessionOptions | None = None
) -> AgentSession:
    return AgentSession(deps, options)
