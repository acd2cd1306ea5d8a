"""Session runtime: turn loop, tool orchestration, hooks and history."""

from memo_core.runtime.helpers import (
    TOOL_DISABLED_ERROR_MESSAGE,
    TOOL_SKIPPED_AFTER_REJECTION_MESSAGE,
    TOOL_SKIPPED_DISABLED_MESSAGE,
    accumulate_usage,
    build_assistant_tool_calls,
    complete_tool_results_for_protocol,
    normalize_llm_response,
    parse_text_tool_call,
    resolve_tool_permission,
)
from memo_core.runtime.history import HistorySink, JsonlHistorySink, create_history_event
from memo_core.runtime.hooks import AgentHooks, build_hook_runners, run_hook, snapshot_history
from memo_core.runtime.models import (
    ChatMessage,
    ExecutionMode,
    FailurePolicy,
    HistoryEvent,
    HistoryEventType,
    LLMResponse,
    MessageRole,
    NormalizedResponse,
    PartialUsage,
    SessionMode,
    SessionOptions,
    StepTrace,
    TextBlock,
    TokenUsage,
    ToolAction,
    ToolActionResult,
    ToolActionStatus,
    ToolExecutionResult,
    ToolPermissionMode,
    ToolUseBlock,
    TurnResult,
    TurnStatus,
)
from memo_core.runtime.orchestrator import ApprovalCallbacks, ToolOrchestrator
from memo_core.runtime.session import AgentSession, SessionDeps, create_agent_session
from memo_core.runtime.tokens import CharTokenCounter, TokenCounter

__all__ = [
    "AgentHooks",
    "AgentSession",
    "ApprovalCallbacks",
    "CharTokenCounter",
    "ChatMessage",
    "ExecutionMode",
    "FailurePolicy",
    "HistoryEvent",
    "HistoryEventType",
    "HistorySink",
    "JsonlHistorySink",
    "LLMResponse",
    "MessageRole",
    "NormalizedResponse",
    "PartialUsage",
    "SessionDeps",
    "SessionMode",
    "SessionOptions",
    "StepTrace",
    "TOOL_DISABLED_ERROR_MESSAGE",
    "TOOL_SKIPPED_AFTER_REJECTION_MESSAGE",
    "TOOL_SKIPPED_DISABLED_MESSAGE",
    "TextBlock",
    "TokenCounter",
    "TokenUsage",
    "ToolAction",
    "ToolActionResult",
    "ToolActionStatus",
    "ToolExecutionResult",
    "ToolOrchestrator",
    "ToolPermissionMode",
    "ToolUseBlock",
    "TurnResult",
    "TurnStatus",
    "accumulate_usage",
    "build_assistant_tool_calls",
    "build_hook_runners",
    "complete_tool_results_for_protocol",
    "create_agent_session",
    "create_history_event",
    "normalize_llm_response",
    "parse_text_tool_call",
    "resolve_tool_permission",
    "run_hook",
    "snapshot_history",
]
