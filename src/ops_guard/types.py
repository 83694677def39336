"""ops_guard.types

Shared value types for the safety core.

Everything here is a plain dataclass or a str-valued Enum, so decisions can be
compared against string literals (``result.action == "block"``) and dumped to
JSON without custom encoders.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


APPROVAL_REQUIRED_PREFIX = "APPROVAL_REQUIRED:"


# ================================
# Enums
# ================================

class Severity(str, Enum):
    """How a rule violation is enforced."""
    BLOCK = "block"   # prevents execution
    WARN = "warn"     # advisory, logged only


class LoopAction(str, Enum):
    """Loop Guard verdict for a single tool call."""
    ALLOW = "allow"
    WARN = "warn"
    BLOCK = "block"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class PermissionTier(str, Enum):
    """Declared risk tier of a tool, lowest to highest."""
    READ = "read"
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    EXTERNAL = "external"
    DANGEROUS = "dangerous"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    @classmethod
    def parse(cls, value: Any) -> "PermissionTier":
        if isinstance(value, PermissionTier):
            return value
        return cls(str(value).strip().lower())


_TIER_ORDER = list(PermissionTier)


# ================================
# Policy checks
# ================================

@dataclass
class ActionContext:
    """Normalized description of what is about to happen.

    Built fresh for every check. ``target_file`` and ``git_branch`` are derived
    from ``params`` by the caller (see :mod:`ops_guard.patterns`);
    ``error_count`` is injected from the strike tracker.
    """

    action: str
    tool_name: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    target_file: Optional[str] = None
    git_branch: Optional[str] = None
    error_count: Optional[int] = None

    def __post_init__(self) -> None:
        self.params = dict(self.params) if isinstance(self.params, Mapping) else {}


@dataclass(frozen=True)
class Violation:
    law_id: str
    description: str
    message: str
    severity: Severity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lawId": self.law_id,
            "description": self.description,
            "message": self.message,
            "severity": self.severity.value,
        }


@dataclass
class LawCheckResult:
    passed: bool
    violations: List[Violation] = field(default_factory=list)

    @property
    def blocking(self) -> List[Violation]:
        return [v for v in self.violations if v.severity == Severity.BLOCK]

    def violation_ids(self) -> List[str]:
        return [v.law_id for v in self.violations]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "violations": [v.to_dict() for v in self.violations],
        }


@dataclass
class LoopGuardResult:
    action: LoopAction
    call_count: int
    reason: Optional[str] = None


# ================================
# Tool calls and results
# ================================

@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None   # provider call id (tool_use_id / tool_call_id)


@dataclass
class ToolResult:
    """Result convention shared by every tool: success/data/error.

    ``error_code`` is a short machine-readable class for failures produced by
    the safety core itself (``loop_blocked``, ``iron_law_violation``,
    ``not_found`` ...). Tools may leave it unset.
    """

    success: bool
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def approval_tier(self) -> Optional[str]:
        """Tier named by an ``APPROVAL_REQUIRED:<tier>`` error, else None."""
        if self.success or not isinstance(self.error, str):
            return None
        if not self.error.startswith(APPROVAL_REQUIRED_PREFIX):
            return None
        return self.error[len(APPROVAL_REQUIRED_PREFIX):].strip() or None

    @property
    def requires_approval(self) -> bool:
        return self.approval_tier is not None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            out["data"] = self.data
        if self.error is not None:
            out["error"] = self.error
        if self.error_code is not None:
            out["errorCode"] = self.error_code
        return out

    @classmethod
    def failure(cls, error: str, code: Optional[str] = None) -> "ToolResult":
        return cls(success=False, error=error, error_code=code)

    @classmethod
    def coerce(cls, value: Any) -> "ToolResult":
        """Accept a ToolResult or a ``{success, data, error}`` mapping."""
        if isinstance(value, ToolResult):
            return value
        if isinstance(value, Mapping) and "success" in value:
            return cls(
                success=bool(value.get("success")),
                data=value.get("data"),
                error=value.get("error"),
                error_code=value.get("error_code") or value.get("errorCode"),
            )
        raise TypeError(
            f"tool returned {type(value).__name__}; expected ToolResult or a mapping with 'success'"
        )


@dataclass
class RequestOrigin:
    """Where a request came from (chat channel, CLI, scheduler...)."""

    channel: str = "unknown"
    conversation_id: str = ""
    user_id: Optional[str] = None


@dataclass
class ToolExecutionContext:
    channel: str
    conversation_id: str
    user_id: Optional[str] = None
    approval_id: Optional[str] = None
    approved_by: Optional[str] = None

    @classmethod
    def from_origin(
        cls,
        origin: RequestOrigin,
        approval_id: Optional[str] = None,
        approved_by: Optional[str] = None,
    ) -> "ToolExecutionContext":
        return cls(
            channel=origin.channel,
            conversation_id=origin.conversation_id,
            user_id=origin.user_id,
            approval_id=approval_id,
            approved_by=approved_by,
        )


# ================================
# Approvals
# ================================

def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class ApprovalRequest:
    """A deferred tool call awaiting a human decision.

    Timestamps are epoch seconds from the workflow clock.
    """

    id: str
    tool: str
    params: Dict[str, Any]
    permission_tier: str
    reason: str
    requested_at: float
    expires_at: float
    requested_from: RequestOrigin
    status: ApprovalStatus = ApprovalStatus.PENDING
    responded_at: Optional[float] = None
    responded_by: Optional[str] = None

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tool": self.tool,
            "permissionTier": self.permission_tier,
            "reason": self.reason,
            "status": self.status.value,
            "requestedAt": _iso(self.requested_at),
            "expiresAt": _iso(self.expires_at),
            "respondedAt": _iso(self.responded_at),
            "respondedBy": self.responded_by,
            "requestedFrom": {
                "channel": self.requested_from.channel,
                "userId": self.requested_from.user_id,
                "conversationId": self.requested_from.conversation_id,
            },
        }
