# memo_core/runtime/hooks.py
"""
Lifecycle hooks.

A session takes one primary ``AgentHooks`` plus any number of middlewares
(also ``AgentHooks``). Handlers for the same hook run in registration order;
each may be sync or async, and a failing handler is logged and skipped.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field, fields
from typing import Any

from memo_core.runtime.models import ChatMessage

logger = logging.getLogger(__name__)

HookHandler = Callable[[Any], Awaitable[None] | None]

HOOK_NAMES = (
    "on_turn_start",
    "on_action",
    "on_observation",
    "on_final",
    "on_approval_request",
    "on_approval_response",
)


@dataclass
class AgentHooks:
    """Optional callbacks, one per lifecycle point."""

    on_turn_start: HookHandler | None = None
    on_action: HookHandler | None = None
    on_observation: HookHandler | None = None
    on_final: HookHandler | None = None
    on_approval_request: HookHandler | None = None
    on_approval_response: HookHandler | None = None


@dataclass
class HookRunners:
    """Handlers per hook name, flattened from hooks and middlewares."""

    on_turn_start: list[HookHandler] = field(default_factory=list)
    on_action: list[HookHandler] = field(default_factory=list)
    on_observation: list[HookHandler] = field(default_factory=list)
    on_final: list[HookHandler] = field(default_factory=list)
    on_approval_request: list[HookHandler] = field(default_factory=list)
    on_approval_response: list[HookHandler] = field(default_factory=list)

    def register(self, hooks: AgentHooks | None) -> None:
        if hooks is None:
            return
        for f in fields(AgentHooks):
            handler = getattr(hooks, f.name)
            if handler is not None:
                getattr(self, f.name).append(handler)

    def has(self, name: str) -> bool:
        return bool(getattr(self, name))


def build_hook_runners(
    hooks: AgentHooks | None = None, middlewares: Iterable[AgentHooks] | None = None
) -> HookRunners:
    runners = HookRunners()
    runners.register(hooks)
    for middleware in middlewares or ():
        runners.register(middleware)
    return runners


async def run_hook(runners: HookRunners, name: str, payload: Any) -> None:
    """Run every handler registered for ``name``; failures never propagate."""
    if name not in HOOK_NAMES:
        raise ValueError(f"Unknown hook: {name}")

    for handler in getattr(runners, name):
        try:
            result = handler(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("Hook %s failed: %s", name, e)


def snapshot_history(history: Iterable[ChatMessage]) -> list[ChatMessage]:
    """Deep copy of the history, safe to hand to hooks."""
    return [message.model_copy(deep=True) for message in history]
