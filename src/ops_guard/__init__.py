"""ops-guard: safety enforcement core for autonomous operations agents.

Iron laws, loop guard, three-strike tracking and human approvals, wrapped
around every tool call.

Quick start:
    from ops_guard import SafetyCore, Tool, ToolCall, ToolDispatcher

    core = SafetyCore()
    core.registry.register(Tool("git_push", "Push a branch", "modify", push))
    outcome = ToolDispatcher(core).dispatch(ToolCall("git_push", {"branch": "main"}))
"""

from .config import SafetyConfig
from .types import (
    APPROVAL_REQUIRED_PREFIX,
    ActionContext,
    ApprovalRequest,
    ApprovalStatus,
    LawCheckResult,
    LoopAction,
    LoopGuardResult,
    PermissionTier,
    RequestOrigin,
    Severity,
    ToolCall,
    ToolExecutionContext,
    ToolResult,
    Violation,
)
from .fingerprint import content_hash, issue_key
from .iron_laws import Rule, RuleEngine, build_default_rules
from .strikes import ErrorEntry, StrikeTracker
from .loop_guard import CallHistoryEntry, LoopGuard
from .approvals import ApprovalWorkflow
from .audit import (
    AuditEntry,
    AuditLog,
    AuditSink,
    CompositeAuditSink,
    InMemoryAuditSink,
    JsonlAuditSink,
)
from .registry import Tool, ToolRegistry
from .dispatch import DispatchOutcome, SafetyCore, ToolDispatcher, TurnReport
from .async_dispatch import AsyncToolDispatcher

__version__ = "0.1.0"

__all__ = [
    # High-level API
    "SafetyCore",
    "ToolDispatcher",
    "AsyncToolDispatcher",
    "DispatchOutcome",
    "TurnReport",
    # Components
    "RuleEngine",
    "Rule",
    "build_default_rules",
    "LoopGuard",
    "CallHistoryEntry",
    "StrikeTracker",
    "ErrorEntry",
    "ApprovalWorkflow",
    "Tool",
    "ToolRegistry",
    "SafetyConfig",
    # Fingerprints
    "content_hash",
    "issue_key",
    # Types
    "APPROVAL_REQUIRED_PREFIX",
    "ActionContext",
    "ApprovalRequest",
    "ApprovalStatus",
    "LawCheckResult",
    "LoopAction",
    "LoopGuardResult",
    "PermissionTier",
    "RequestOrigin",
    "Severity",
    "ToolCall",
    "ToolExecutionContext",
    "ToolResult",
    "Violation",
    # Audit
    "AuditEntry",
    "AuditLog",
    "AuditSink",
    "InMemoryAuditSink",
    "JsonlAuditSink",
    "CompositeAuditSink",
]
