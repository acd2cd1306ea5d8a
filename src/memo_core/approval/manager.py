# memo_core/approval/manager.py
"""
Approval manager: decides whether a tool call needs human confirmation.

Decisions are cached per request fingerprint, never per tool name, so a
grant for one set of params does not cover different params to the same
tool.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from memo_core.approval.classifier import ToolClassifier
from memo_core.approval.constants import APPROVAL_REASONS, PREVIOUSLY_DENIED_REASON
from memo_core.approval.fingerprint import generate_fingerprint
from memo_core.approval.models import (
    ApprovalCheckResult,
    ApprovalDecision,
    ApprovalMode,
    AutoExecute,
    NeedsApproval,
    RiskLevel,
)

logger = logging.getLogger(__name__)

_AUTO_EXECUTE = AutoExecute()


class ApprovalManager:
    """
    Gate tool calls by risk level and cached user decisions.

    ``dangerous=True`` (or ``mode="dangerous"``) disables gating entirely:
    ``check`` returns auto-execute before any classification happens.
    """

    def __init__(
        self,
        mode: ApprovalMode | str = ApprovalMode.AUTO,
        dangerous: bool = False,
        tool_risk_levels: Mapping[str, RiskLevel | str] | None = None,
    ):
        mode = ApprovalMode(mode)
        self._dangerous = dangerous or mode == ApprovalMode.DANGEROUS
        self._mode = ApprovalMode.AUTO if mode == ApprovalMode.DANGEROUS else mode
        self._classifier = ToolClassifier(custom_levels=tool_risk_levels)

        self._session: set[str] = set()
        self._once: set[str] = set()
        self._denied: set[str] = set()

    @property
    def is_dangerous_mode(self) -> bool:
        return self._dangerous

    @property
    def mode(self) -> ApprovalMode:
        return ApprovalMode.DANGEROUS if self._dangerous else self._mode

    def get_risk_level(self, tool_name: str) -> RiskLevel:
        if self._dangerous:
            return RiskLevel.READ
        return self._classifier.get_risk_level(tool_name)

    def check(self, tool_name: str, params: Any) -> ApprovalCheckResult:
        """Return whether ``tool_name(params)`` may run without asking."""
        if self._dangerous:
            return _AUTO_EXECUTE

        risk_level = self._classifier.get_risk_level(tool_name)
        if not self._classifier.needs_approval(risk_level, self._mode):
            return _AUTO_EXECUTE

        fingerprint = generate_fingerprint(tool_name, params)
        if fingerprint in self._session or fingerprint in self._once:
            return _AUTO_EXECUTE

        if fingerprint in self._denied:
            reason = PREVIOUSLY_DENIED_REASON
        else:
            reason = APPROVAL_REASONS[risk_level].format(tool=tool_name)

        return NeedsApproval(
            fingerprint=fingerprint,
            risk_level=risk_level,
            reason=reason,
            tool_name=tool_name,
            params=params,
        )

    def record_decision(
        self, fingerprint: str, decision: ApprovalDecision | str
    ) -> None:
        """Store the decision, replacing any earlier one for this fingerprint."""
        if self._dangerous:
            return

        decision = ApprovalDecision(decision)
        self._session.discard(fingerprint)
        self._once.discard(fingerprint)
        self._denied.discard(fingerprint)

        if decision == ApprovalDecision.SESSION:
            self._session.add(fingerprint)
        elif decision == ApprovalDecision.ONCE:
            self._once.add(fingerprint)
        else:
            self._denied.add(fingerprint)
        logger.debug("Approval %s recorded for %s", decision.value, fingerprint)

    def is_granted(self, fingerprint: str) -> bool:
        if self._dangerous:
            return True
        return fingerprint in self._session or fingerprint in self._once

    def clear_once_approvals(self) -> None:
        """Drop single-use grants (called at every turn end)."""
        self._once.clear()

    def dispose(self) -> None:
        """Drop every cached decision (called at session end)."""
        self._session.clear()
        self._once.clear()
        self._denied.clear()
