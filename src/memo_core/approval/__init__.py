"""Risk classification and approval gating for tool calls."""

from memo_core.approval.classifier import (
    ToolClassifier,
    compare_risk,
    get_risk_level,
    needs_approval,
)
from memo_core.approval.fingerprint import (
    generate_fingerprint,
    generate_partial_fingerprint,
    stable_stringify,
)
from memo_core.approval.manager import ApprovalManager
from memo_core.approval.models import (
    ApprovalCheckResult,
    ApprovalDecision,
    ApprovalMode,
    ApprovalRequest,
    AutoExecute,
    NeedsApproval,
    RiskLevel,
)

__all__ = [
    "ApprovalCheckResult",
    "ApprovalDecision",
    "ApprovalManager",
    "ApprovalMode",
    "ApprovalRequest",
    "AutoExecute",
    "NeedsApproval",
    "RiskLevel",
    "ToolClassifier",
    "compare_risk",
    "generate_fingerprint",
    "generate_partial_fingerprint",
    "get_risk_level",
    "needs_approval",
    "stable_stringify",
]
