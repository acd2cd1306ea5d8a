# memo_core/approval/models.py
"""Approval data models."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class RiskLevel(str, Enum):
    """Risk tier of a tool call, ordered read < write < execute."""

    READ = "read"
    WRITE = "write"
    EXECUTE = "execute"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {RiskLevel.READ: 0, RiskLevel.WRITE: 1, RiskLevel.EXECUTE: 2}


class ApprovalMode(str, Enum):
    """How eagerly calls are gated."""

    AUTO = "auto"  # only write/execute need approval
    STRICT = "strict"  # every call needs approval
    DANGEROUS = "dangerous"  # nothing needs approval


class ApprovalDecision(str, Enum):
    """User decision for one fingerprint."""

    ONCE = "once"
    SESSION = "session"
    DENY = "deny"


class AutoExecute(BaseModel):
    """No approval needed: below threshold or already granted."""

    need_approval: Literal[False] = False
    decision: Literal["auto-execute"] = "auto-execute"

    model_config = {"frozen": True}


class NeedsApproval(BaseModel):
    """The call must be confirmed before it runs."""

    need_approval: Literal[True] = True
    fingerprint: str = Field(description="16-hex-char request fingerprint")
    risk_level: RiskLevel
    reason: str
    tool_name: str
    params: Any = None

    model_config = {"frozen": True}


ApprovalCheckResult = Annotated[
    Union[AutoExecute, NeedsApproval], Field(discriminator="need_approval")
]


class ApprovalRequest(BaseModel):
    """What a UI is shown when a call needs confirmation."""

    tool_name: str
    params: Any = None
    fingerprint: str
    risk_level: RiskLevel
    reason: str

    model_config = {"frozen": True}

    @classmethod
    def from_check(cls, check: NeedsApproval) -> ApprovalRequest:
        return cls(
            tool_name=check.tool_name,
            params=check.params,
            fingerprint=check.fingerprint,
            risk_level=check.risk_level,
            reason=check.reason,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for serialization."""
        return self.model_dump(mode="json")
