"""Terminal UI helpers."""

from memo_core.ui.approval_prompt import ask_approval, parse_answer, request_approval

__all__ = ["ask_approval", "parse_answer", "request_approval"]
