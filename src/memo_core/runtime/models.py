# memo_core/runtime/models.py
"""Pydantic models for the session runtime: messages, LLM responses, tool
actions and results, history events, turn results and session options."""

from __future__ import annotations

import json
import uuid
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, Field

from memo_core.approval.models import ApprovalDecision, ApprovalRequest, RiskLevel
from memo_core.config.defaults import DEFAULT_MAX_PROMPT_TOKENS, DEFAULT_MAX_STEPS
from memo_core.config.env_vars import EnvVar, get_positive_int


# ──────────────────────────────────────────────────────────────────────────────
# Chat messages
# ──────────────────────────────────────────────────────────────────────────────
class MessageRole(str, Enum):
    """Message roles in conversation."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class FunctionCall(BaseModel):
    """Function call within a tool call (OpenAI format)."""

    name: str = Field(description="Function/tool name")
    arguments: str = Field(description="JSON string of arguments")

    def get_arguments_dict(self) -> dict[str, Any]:
        """Parse arguments JSON string to dict."""
        try:
            result = json.loads(self.arguments)
            return dict(result) if isinstance(result, dict) else {}
        except json.JSONDecodeError:
            return {}


class ToolCallData(BaseModel):
    """Tool call data structure (OpenAI format)."""

    id: str = Field(description="Tool call ID")
    type: str = Field(default="function", description="Type of tool call")
    function: FunctionCall = Field(description="Function call data")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ChatMessage(BaseModel):
    """A message in the conversation history."""

    role: MessageRole = Field(description="Message role (user, assistant, system, tool)")
    content: str = Field(default="", description="Message content")
    name: str | None = Field(default=None, description="Tool name (for tool messages)")
    tool_calls: list[ToolCallData] | None = Field(
        default=None, description="Tool calls (for assistant messages with tools)"
    )
    tool_call_id: str | None = Field(
        default=None, description="Tool call ID (for tool response messages)"
    )
    reasoning_content: str | None = Field(
        default=None, description="Model reasoning attached to an assistant message"
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for LLM API calls."""
        return self.model_dump(exclude_none=True, mode="json")

    @classmethod
    def system(cls, content: str) -> ChatMessage:
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def tool(cls, tool_call_id: str, name: str, content: str) -> ChatMessage:
        return cls(
            role=MessageRole.TOOL, content=content, name=name, tool_call_id=tool_call_id
        )


# ──────────────────────────────────────────────────────────────────────────────
# LLM responses
# ──────────────────────────────────────────────────────────────────────────────
class TokenUsage(BaseModel):
    """Token counts; additive across steps and turns."""

    prompt: int = 0
    completion: int = 0
    total: int = 0

    def copy_usage(self) -> TokenUsage:
        return TokenUsage(prompt=self.prompt, completion=self.completion, total=self.total)


class PartialUsage(BaseModel):
    """Usage as reported by a provider; any field may be missing."""

    prompt: int | None = None
    completion: int | None = None
    total: int | None = None


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Any = None


ContentBlock = Union[TextBlock, ToolUseBlock]


class LLMResponse(BaseModel):
    """What ``call_llm`` returns: content blocks plus optional metadata."""

    content: list[ContentBlock] = Field(default_factory=list)
    reasoning_content: str | None = None
    stop_reason: str | None = None
    usage: PartialUsage | None = None


class NormalizedResponse(BaseModel):
    """An LLM response reduced to the fields the turn loop reads."""

    text_content: str = ""
    tool_use_blocks: list[ToolUseBlock] = Field(default_factory=list)
    reasoning_content: str | None = None
    stop_reason: str | None = None
    usage: PartialUsage | None = None


class TextToolCall(BaseModel):
    """Tool call JSON the model wrote as plain text instead of a tool_use block."""

    tool: str
    input: Any = None


# ──────────────────────────────────────────────────────────────────────────────
# Tool actions
# ──────────────────────────────────────────────────────────────────────────────
class ToolActionStatus(str, Enum):
    SUCCESS = "success"
    APPROVAL_DENIED = "approval_denied"
    SANDBOX_DENIED = "sandbox_denied"
    TOOL_NOT_FOUND = "tool_not_found"
    INPUT_INVALID = "input_invalid"
    EXECUTION_FAILED = "execution_failed"
    CANCELLED = "cancelled"


class ExecutionMode(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class FailurePolicy(str, Enum):
    FAIL_FAST = "fail_fast"
    COLLECT_ALL = "collect_all"


class ToolAction(BaseModel):
    """One tool call requested by the model."""

    id: str | None = None
    name: str
    input: Any = None


class ToolActionResult(BaseModel):
    """Outcome of a single tool call; never raised, always returned."""

    action_id: str
    tool: str
    status: ToolActionStatus
    error_type: ToolActionStatus | None = None
    success: bool
    observation: str
    duration_ms: int = 0
    rejected: bool | None = None


class ToolExecutionResult(BaseModel):
    results: list[ToolActionResult] = Field(default_factory=list)
    combined_observation: str = ""
    has_rejection: bool = False
    execution_mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST


# ──────────────────────────────────────────────────────────────────────────────
# History events
# ──────────────────────────────────────────────────────────────────────────────
class HistoryEventType(str, Enum):
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    TURN_START = "turn_start"
    ASSISTANT = "assistant"
    ACTION = "action"
    OBSERVATION = "observation"
    FINAL = "final"
    TURN_END = "turn_end"
    CONTEXT_USAGE = "context_usage"


class HistoryEvent(BaseModel):
    """Structured history record, serialised one per JSONL line."""

    ts: str
    session_id: str
    type: HistoryEventType
    turn: int | None = None
    step: int | None = None
    content: str | None = None
    role: MessageRole | None = None
    meta: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


# ──────────────────────────────────────────────────────────────────────────────
# Turns
# ──────────────────────────────────────────────────────────────────────────────
class TurnStatus(str, Enum):
    OK = "ok"
    ERROR = "error"
    MAX_STEPS = "max_steps"
    PROMPT_LIMIT = "prompt_limit"
    CANCELLED = "cancelled"


class StepTrace(BaseModel):
    """Debug record of one LLM step."""

    index: int
    assistant_text: str = ""
    action: ToolAction | None = None
    parallel_actions: list[ToolAction] | None = None
    observation: str | None = None
    token_usage: TokenUsage = Field(default_factory=TokenUsage)


class TurnResult(BaseModel):
    final_text: str = ""
    steps: list[StepTrace] = Field(default_factory=list)
    status: TurnStatus = TurnStatus.OK
    error_message: str | None = None
    token_usage: TokenUsage = Field(default_factory=TokenUsage)


# ──────────────────────────────────────────────────────────────────────────────
# Session options
# ──────────────────────────────────────────────────────────────────────────────
class SessionMode(str, Enum):
    INTERACTIVE = "interactive"
    ONCE = "once"


class ToolPermissionMode(str, Enum):
    """How much the user lets tools do.

    ``none`` disables tools, ``once`` asks before risky calls, ``full``
    runs everything without asking.
    """

    NONE = "none"
    ONCE = "once"
    FULL = "full"
    AUTO = "auto"


class ResolvedToolPermission(BaseModel):
    tools_enabled: bool
    dangerous: bool
    mode: ToolPermissionMode

    model_config = {"frozen": True}


class SessionOptions(BaseModel):
    """Per-session settings."""

    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    mode: SessionMode = SessionMode.INTERACTIVE
    system_prompt: str = ""
    tokenizer_model: str = "chars"
    max_steps: int = Field(
        default_factory=lambda: get_positive_int(EnvVar.MAX_STEPS, DEFAULT_MAX_STEPS),
        gt=0,
    )
    max_prompt_tokens: int | None = Field(default=DEFAULT_MAX_PROMPT_TOKENS, gt=0)
    warn_prompt_tokens: int | None = Field(default=None, gt=0)
    tool_permission_mode: ToolPermissionMode | None = None
    dangerous: bool = False
    tool_risk_levels: dict[str, RiskLevel] | None = None


# ──────────────────────────────────────────────────────────────────────────────
# Hook payloads
# ──────────────────────────────────────────────────────────────────────────────
class TurnStartPayload(BaseModel):
    session_id: str
    turn: int
    input: str
    history: list[ChatMessage]


class ActionPayload(BaseModel):
    session_id: str
    turn: int
    step: int
    action: ToolAction
    parallel_actions: list[ToolAction] | None = None
    thinking: str | None = None
    history: list[ChatMessage]


class ObservationPayload(BaseModel):
    session_id: str
    turn: int
    step: int
    tool: str
    observation: str
    result_status: ToolActionStatus | None = None
    parallel_tools: list[str] | None = None
    history: list[ChatMessage]


class FinalPayload(BaseModel):
    session_id: str
    turn: int
    step: int | None = None
    final_text: str
    status: TurnStatus
    error_message: str | None = None
    turn_usage: TokenUsage
    token_usage: TokenUsage | None = None
    steps: list[StepTrace]


class ApprovalResponsePayload(BaseModel):
    fingerprint: str
    decision: ApprovalDecision


class ApprovalRequestHookPayload(BaseModel):
    session_id: str
    turn: int
    step: int
    request: ApprovalRequest


class ApprovalResponseHookPayload(BaseModel):
    session_id: str
    turn: int
    step: int
    fingerprint: str
    decision: ApprovalDecision


__all__ = [
    "ActionPayload",
    "ApprovalRequestHookPayload",
    "ApprovalResponseHookPayload",
    "ApprovalResponsePayload",
    "ChatMessage",
    "ContentBlock",
    "ExecutionMode",
    "FailurePolicy",
    "FinalPayload",
    "FunctionCall",
    "HistoryEvent",
    "HistoryEventType",
    "LLMResponse",
    "MessageRole",
    "NormalizedResponse",
    "ObservationPayload",
    "PartialUsage",
    "ResolvedToolPermission",
    "SessionMode",
    "SessionOptions",
    "StepTrace",
    "TextBlock",
    "TextToolCall",
    "TokenUsage",
    "ToolAction",
    "ToolActionResult",
    "ToolActionStatus",
    "ToolCallData",
    "ToolExecutionResult",
    "ToolPermissionMode",
    "ToolUseBlock",
    "TurnResult",
    "TurnStartPayload",
    "TurnStatus",
]
