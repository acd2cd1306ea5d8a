# memo_core/approval/constants.py
"""Risk tables and reason templates for the approval engine."""

from __future__ import annotations

from memo_core.approval.models import RiskLevel


# ──────────────────────────────────────────────────────────────────────────────
# Built-in tool risk levels (exact name match, checked before keywords)
# ──────────────────────────────────────────────────────────────────────────────
DEFAULT_TOOL_RISK_LEVELS: dict[str, RiskLevel] = {
    # read-only
    "read": RiskLevel.READ,
    "read_file": RiskLevel.READ,
    "list_dir": RiskLevel.READ,
    "glob": RiskLevel.READ,
    "grep": RiskLevel.READ,
    "grep_files": RiskLevel.READ,
    "webfetch": RiskLevel.READ,
    "todo": RiskLevel.READ,
    "get_memory": RiskLevel.READ,
    "update_plan": RiskLevel.READ,
    "list_mcp_resources": RiskLevel.READ,
    "list_mcp_resource_templates": RiskLevel.READ,
    "read_mcp_resource": RiskLevel.READ,
    # write
    "write": RiskLevel.WRITE,
    "edit": RiskLevel.WRITE,
    "apply_patch": RiskLevel.WRITE,
    "save_memory": RiskLevel.WRITE,
    # execute
    "bash": RiskLevel.EXECUTE,
    "shell": RiskLevel.EXECUTE,
    "shell_command": RiskLevel.EXECUTE,
    "exec_command": RiskLevel.EXECUTE,
    "write_stdin": RiskLevel.EXECUTE,
}

# ──────────────────────────────────────────────────────────────────────────────
# Keyword heuristics, tested in this order on the lower-cased name
# ──────────────────────────────────────────────────────────────────────────────
RISK_KEYWORDS: tuple[tuple[RiskLevel, tuple[str, ...]], ...] = (
    (RiskLevel.EXECUTE, ("exec", "run", "shell", "bash", "command", "stdin")),
    (
        RiskLevel.WRITE,
        ("write", "edit", "patch", "create", "delete", "modify", "update"),
    ),
    (RiskLevel.READ, ("read", "get", "fetch", "search", "list", "find")),
)

UNCLASSIFIED_RISK_LEVEL = RiskLevel.WRITE
"""Names matching no override or keyword are treated as mutating."""

APPROVAL_REASONS: dict[RiskLevel, str] = {
    RiskLevel.READ: "{tool} will read files or data",
    RiskLevel.WRITE: "{tool} will modify or create files",
    RiskLevel.EXECUTE: "{tool} will execute system commands",
}

PREVIOUSLY_DENIED_REASON = "This request was previously denied."
