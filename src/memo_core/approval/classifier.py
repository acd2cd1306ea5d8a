# memo_core/approval/classifier.py
"""Map tool names to risk levels."""

from __future__ import annotations

from collections.abc import Mapping

from memo_core.approval.constants import (
    DEFAULT_TOOL_RISK_LEVELS,
    RISK_KEYWORDS,
    UNCLASSIFIED_RISK_LEVEL,
)
from memo_core.approval.models import ApprovalMode, RiskLevel


class ToolClassifier:
    """
    Classify tools by risk.

    Exact matches in the override table win; otherwise the lower-cased name
    is tested against keyword groups (execute, then write, then read).
    Anything left over is ``write``.
    """

    def __init__(self, custom_levels: Mapping[str, RiskLevel | str] | None = None):
        self._levels: dict[str, RiskLevel] = dict(DEFAULT_TOOL_RISK_LEVELS)
        for name, level in (custom_levels or {}).items():
            self._levels[name] = RiskLevel(level)

    def get_risk_level(self, tool_name: str) -> RiskLevel:
        if tool_name in self._levels:
            return self._levels[tool_name]

        lower_name = tool_name.lower()
        for level, keywords in RISK_KEYWORDS:
            if any(keyword in lower_name for keyword in keywords):
                return level

        return UNCLASSIFIED_RISK_LEVEL

    @staticmethod
    def compare_risk(a: RiskLevel, b: RiskLevel) -> int:
        """Negative when a < b, zero when equal, positive when a > b."""
        return RiskLevel(a).rank - RiskLevel(b).rank

    @staticmethod
    def needs_approval(risk_level: RiskLevel, mode: ApprovalMode | str) -> bool:
        mode = ApprovalMode(mode)
        if mode == ApprovalMode.STRICT:
            return True
        if mode == ApprovalMode.DANGEROUS:
            return False
        return RiskLevel(risk_level) in (RiskLevel.WRITE, RiskLevel.EXECUTE)


_default_classifier = ToolClassifier()


def get_risk_level(tool_name: str) -> RiskLevel:
    """Classify with the built-in table only."""
    return _default_classifier.get_risk_level(tool_name)


def compare_risk(a: RiskLevel, b: RiskLevel) -> int:
    return ToolClassifier.compare_risk(a, b)


def needs_approval(risk_level: RiskLevel, mode: ApprovalMode | str) -> bool:
    return ToolClassifier.needs_approval(risk_level, mode)
