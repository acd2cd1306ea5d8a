# memo_core/runtime/tokens.py
"""Token counting for prompt-size guards.

Character-based estimation (chars / 4) plus ChatML framing overhead per
message. Any object with the same ``count_text``/``count_messages`` methods
can be passed to a session instead.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from memo_core.config.defaults import DEFAULT_CHARS_PER_TOKEN_ESTIMATE
from memo_core.runtime.models import ChatMessage, MessageRole

TOKENS_PER_MESSAGE = 4
TOKENS_FOR_ASSISTANT_PRIMING = 2
TOKENS_PER_NAME = 1


@runtime_checkable
class TokenCounter(Protocol):
    model: str

    def count_text(self, text: str) -> int: ...

    def count_messages(self, messages: Sequence[ChatMessage]) -> int: ...

    def dispose(self) -> None: ...


def _payload_for_counting(message: ChatMessage) -> str:
    if message.role == MessageRole.ASSISTANT and message.tool_calls:
        calls = json.dumps([call.to_dict() for call in message.tool_calls])
        return f"{message.content}\n{calls}"
    if message.role == MessageRole.TOOL:
        return f"{message.content}\n{message.tool_call_id}\n{message.name or ''}"
    return message.content


class CharTokenCounter:
    """Estimate tokens from character counts."""

    def __init__(
        self,
        model: str = "chars",
        chars_per_token: int = DEFAULT_CHARS_PER_TOKEN_ESTIMATE,
    ):
        self.model = model
        self.chars_per_token = chars_per_token

    def count_text(self, text: str) -> int:
        if not text:
            return 0
        return max(1, len(text) // self.chars_per_token)

    def count_messages(self, messages: Sequence[ChatMessage]) -> int:
        if not messages:
            return 0
        total = 0
        for message in messages:
            total += TOKENS_PER_MESSAGE
            total += self.count_text(_payload_for_counting(message))
            if message.name:
                total += TOKENS_PER_NAME
        return total + TOKENS_FOR_ASSISTANT_PRIMING

    def dispose(self) -> None:
        pass
