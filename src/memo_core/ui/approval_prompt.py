# memo_core/ui/approval_prompt.py
"""Console approval prompt built on chuk-term."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from chuk_term.ui import output, prompts

from memo_core.approval.models import ApprovalDecision, ApprovalRequest, RiskLevel

logger = logging.getLogger(__name__)

RISK_INDICATORS = {
    RiskLevel.READ: "✓",
    RiskLevel.WRITE: "⚠",
    RiskLevel.EXECUTE: "⚠️",
}

ANSWERS = {
    "y": ApprovalDecision.ONCE,
    "yes": ApprovalDecision.ONCE,
    "a": ApprovalDecision.SESSION,
    "always": ApprovalDecision.SESSION,
}

PARAMS_PREVIEW_CHARS = 400


def _preview_params(params: Any) -> str:
    try:
        text = json.dumps(params, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        text = str(params)
    if len(text) > PARAMS_PREVIEW_CHARS:
        text = text[:PARAMS_PREVIEW_CHARS] + "..."
    return text


def parse_answer(answer: str) -> ApprovalDecision:
    """``y`` once, ``a`` for the session, anything else (including Enter) denies."""
    return ANSWERS.get(answer.strip().lower(), ApprovalDecision.DENY)


def ask_approval(request: ApprovalRequest) -> ApprovalDecision:
    """Show the request and read a decision from the terminal (blocking)."""
    indicator = RISK_INDICATORS.get(request.risk_level, "?")
    try:
        output.print(
            f"{indicator} Execute {request.tool_name} ({request.risk_level.value} risk)?"
        )
        output.info(request.reason)
        if request.params:
            output.print(f"  params: {_preview_params(request.params)}")
        output.hint("y=allow once, a=allow for this session, n=deny (default)")
        decision = parse_answer(prompts.ask("", default="n"))
    except (KeyboardInterrupt, EOFError):
        logger.info("Approval prompt for %s interrupted", request.tool_name)
        decision = ApprovalDecision.DENY

    if decision == ApprovalDecision.SESSION:
        output.success(f"{request.tool_name} allowed for this session with these params")
    elif decision == ApprovalDecision.DENY:
        output.info("Tool execution cancelled")
    return decision


async def request_approval(request: ApprovalRequest) -> ApprovalDecision:
    """Async ``request_approval`` for SessionDeps; prompts off the event loop."""
    return await asyncio.to_thread(ask_approval, request)
