"""ops_guard.dispatch

Safety core facade and the synchronous dispatch wrapper.

Per tool call, in this order:

    LoopGuard.check_call -> RuleEngine.check (strike count folded in)
        -> tool execute
        -> LoopGuard.record_result + StrikeTracker.record_error/clear_error
        -> ApprovalWorkflow.create (when the tool answers APPROVAL_REQUIRED:<tier>)

A call blocked by the Loop Guard or an iron law never executes and leaves no
post-call bookkeeping behind.

Usage:
    from ops_guard import SafetyCore, Tool, ToolCall, ToolDispatcher

    core = SafetyCore()
    core.registry.register(Tool("git_push", "Push a branch", "modify", push))
    dispatcher = ToolDispatcher(core)

    outcome = dispatcher.dispatch(ToolCall("git_push", {"branch": "main"}))
    outcome.result.error   # "IRON LAW VIOLATION: Cannot push directly to main branch. ..."
"""

from __future__ import annotations

import inspect
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .approvals import ApprovalWorkflow
from .audit import AuditLog
from .config import SafetyConfig
from .fingerprint import issue_key
from .iron_laws import RuleEngine
from .loop_guard import LoopGuard
from .patterns import extract_git_branch, extract_target_file, resolve_action
from .registry import Tool, ToolRegistry
from .strikes import StrikeTracker
from .types import (
    ActionContext,
    ApprovalRequest,
    LawCheckResult,
    LoopAction,
    LoopGuardResult,
    PermissionTier,
    RequestOrigin,
    ToolCall,
    ToolExecutionContext,
    ToolResult,
)

logger = logging.getLogger("ops_guard")

LOOP_BLOCKED = "loop_blocked"
IRON_LAW_VIOLATION = "iron_law_violation"
UNKNOWN_TOOL = "unknown_tool"
EXECUTION_FAILED = "execution_failed"


# ================================
# Safety core
# ================================

class SafetyCore:
    """The four safety components behind one object.

    Every component is process-wide: one ``SafetyCore`` per agent process,
    shared by every conversation and channel.

    Args:
        config: Thresholds and policies.
        audit: Audit log shared by the rule engine, approvals and dispatch.
        registry: Tool registry consulted by the dispatchers.
        clock: Epoch-seconds clock for strikes and approvals.
        id_factory: Approval id generator.
    """

    def __init__(
        self,
        config: Optional[SafetyConfig] = None,
        audit: Optional[AuditLog] = None,
        registry: Optional[ToolRegistry] = None,
        clock: Optional[Callable[[], float]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.cfg = config or SafetyConfig()
        self.audit = audit or AuditLog()
        self.registry = registry or ToolRegistry(self.cfg)
        self.laws = RuleEngine(audit=self.audit, config=self.cfg)
        self.loop_guard = LoopGuard(self.cfg)
        self.strikes = StrikeTracker(
            ttl_seconds=self.cfg.strike_ttl_seconds,
            max_entries=self.cfg.max_strike_entries,
            clock=clock or time.time,
        )
        self.approvals = ApprovalWorkflow(
            self.cfg, self.audit, clock=clock or time.time, id_factory=id_factory,
        )

    # -------------------------
    # Iron laws
    # -------------------------

    def check_iron_laws(self, ctx: ActionContext) -> LawCheckResult:
        return self.laws.check(ctx)

    def get_iron_laws(self) -> List[Dict[str, str]]:
        return self.laws.describe()

    def build_context(
        self,
        tool_name: str,
        params: Optional[Dict[str, Any]] = None,
        action: Optional[str] = None,
        error_count: Optional[int] = None,
    ) -> ActionContext:
        params = dict(params or {})
        return ActionContext(
            action=resolve_action(tool_name, action),
            tool_name=tool_name,
            params=params,
            target_file=extract_target_file(params),
            git_branch=extract_git_branch(params),
            error_count=error_count,
        )

    # -------------------------
    # Loop guard
    # -------------------------

    def check_tool_call(self, tool_name: str, params: Any) -> LoopGuardResult:
        return self.loop_guard.check_call(tool_name, params)

    def record_tool_result(self, tool_name: str, params: Any, result: Any) -> None:
        self.loop_guard.record_result(tool_name, params, result)

    def reset_loop_guard(self) -> None:
        self.loop_guard.reset()

    # -------------------------
    # Strikes
    # -------------------------

    def issue_key(self, tool_name: str, params: Any) -> str:
        return issue_key(tool_name, params, self.cfg.volatile_param_keys)

    def record_error(self, key: str) -> int:
        return self.strikes.record_error(key)

    def clear_error(self, key: str) -> None:
        self.strikes.clear_error(key)

    def get_error_count(self, key: str) -> int:
        return self.strikes.get_error_count(key)

    # -------------------------
    # Approvals
    # -------------------------

    def create_approval_request(
        self,
        tool: str,
        params: Dict[str, Any],
        tier: Any,
        origin: Optional[RequestOrigin] = None,
        reason: Optional[str] = None,
    ) -> ApprovalRequest:
        return self.approvals.create(tool, params, tier, origin, reason)

    def reject_action(self, approval_id: str, rejected_by: str) -> ToolResult:
        return self.approvals.reject(approval_id, rejected_by)

    def get_pending_approvals(self) -> List[ApprovalRequest]:
        return self.approvals.pending()

    def cleanup_expired_approvals(self) -> List[ApprovalRequest]:
        return self.approvals.cleanup_expired()

    def reset(self) -> None:
        """Clear loop and strike state (session/sprint boundary). Approvals are kept."""
        self.loop_guard.reset()
        self.strikes.reset()


# ================================
# Outcomes
# ================================

@dataclass
class DispatchOutcome:
    """What happened to one tool call."""

    call: ToolCall
    result: ToolResult
    issue_key: str
    loop: Optional[LoopGuardResult] = None
    laws: Optional[LawCheckResult] = None
    approval: Optional[ApprovalRequest] = None
    executed: bool = False
    error_count: int = 0

    @property
    def blocked(self) -> bool:
        return self.result.error_code in (LOOP_BLOCKED, IRON_LAW_VIOLATION)

    @property
    def loop_warning(self) -> Optional[str]:
        if self.loop is not None and self.loop.action == LoopAction.WARN:
            return self.loop.reason
        return None

    def to_model_content(self) -> str:
        """JSON string handed back to the model as the tool result."""
        if self.approval is not None:
            payload: Dict[str, Any] = {
                "status": "pending_approval",
                "approvalId": self.approval.id,
                "tier": self.approval.permission_tier,
                "message": "This action requires approval. Please approve or reject.",
                "expiresAt": self.approval.to_dict()["expiresAt"],
            }
        else:
            payload = self.result.to_dict()
        if self.loop_warning:
            payload["loopWarning"] = self.loop_warning
        return json.dumps(payload, ensure_ascii=False, default=str)


@dataclass
class TurnReport:
    """Summary of one turn's tool calls."""

    outcomes: List[DispatchOutcome] = field(default_factory=list)
    highest_tier: PermissionTier = PermissionTier.READ

    @property
    def approvals(self) -> List[ApprovalRequest]:
        return [o.approval for o in self.outcomes if o.approval is not None]

    @property
    def requires_approval(self) -> bool:
        return bool(self.approvals)

    @property
    def approval_reason(self) -> Optional[str]:
        approvals = self.approvals
        if not approvals:
            return None
        last = approvals[-1]
        return (
            f'Action "{last.tool}" requires {last.permission_tier}-level approval '
            f"before proceeding. Approval ID: {last.id}"
        )


@dataclass
class _PreparedCall:
    call: ToolCall
    origin: RequestOrigin
    key: str
    loop: LoopGuardResult
    laws: LawCheckResult
    tool: Optional[Tool]
    context: ToolExecutionContext


# ================================
# Dispatch wrapper
# ================================

class ToolDispatcher:
    """Synchronous dispatch wrapper around a :class:`SafetyCore`.

    Tools dispatched here must have a synchronous ``execute``; use
    :class:`ops_guard.AsyncToolDispatcher` for coroutine tools.
    """

    def __init__(self, core: Optional[SafetyCore] = None):
        self.core = core or SafetyCore()

        # Public counters
        self.calls: int = 0
        self.executed: int = 0
        self.failed: int = 0
        self.loop_blocks: int = 0
        self.loop_warnings: int = 0
        self.law_blocks: int = 0
        self.approvals_requested: int = 0
        self.unknown_tools: int = 0

    # ─────────────────────────────────────────
    # Phases shared with the async dispatcher
    # ─────────────────────────────────────────

    def _blocked(self, call: ToolCall, key: str, result: ToolResult,
                 loop: LoopGuardResult, laws: Optional[LawCheckResult] = None) -> DispatchOutcome:
        return DispatchOutcome(
            call=call, result=result, issue_key=key, loop=loop, laws=laws,
            error_count=self.core.strikes.get_error_count(key),
        )

    def _prepare(self, call: ToolCall, origin: Optional[RequestOrigin]) -> Union[_PreparedCall, DispatchOutcome]:
        core = self.core
        origin = origin or RequestOrigin()
        self.calls += 1
        core.approvals.cleanup_expired()

        key = core.issue_key(call.name, call.args)

        loop = core.check_tool_call(call.name, call.args)
        if loop.action == LoopAction.BLOCK:
            self.loop_blocks += 1
            core.audit.record(
                "tool_blocked",
                tool=call.name,
                channel=origin.channel,
                user_id=origin.user_id,
                conversation_id=origin.conversation_id,
                result="failure",
                error=loop.reason,
                metadata={"loopGuard": loop.reason, "callCount": loop.call_count},
            )
            logger.warning("Loop guard blocked %s: %s", call.name, loop.reason)
            return self._blocked(call, key, ToolResult.failure(f"LOOP GUARD: {loop.reason}", LOOP_BLOCKED), loop)
        if loop.action == LoopAction.WARN:
            self.loop_warnings += 1

        tool = core.registry.get(call.name)
        ctx = core.build_context(
            call.name,
            call.args,
            action=tool.action if tool is not None else None,
            error_count=core.get_error_count(key),
        )
        laws = core.check_iron_laws(ctx)
        if not laws.passed:
            self.law_blocks += 1
            messages = "; ".join(v.message for v in laws.blocking)
            logger.warning("Iron law blocked %s: %s", call.name, messages)
            return self._blocked(
                call, key, ToolResult.failure(f"IRON LAW VIOLATION: {messages}", IRON_LAW_VIOLATION), loop, laws,
            )

        return _PreparedCall(
            call=call,
            origin=origin,
            key=key,
            loop=loop,
            laws=laws,
            tool=tool,
            context=ToolExecutionContext.from_origin(origin),
        )

    def _pre_execute(self, prepared: _PreparedCall) -> Optional[ToolResult]:
        """Result that replaces execution (unknown tool, approval gate), or None to execute."""
        if prepared.tool is None:
            self.unknown_tools += 1
            return ToolResult.failure(f"Unknown tool: {prepared.call.name}", UNKNOWN_TOOL)
        return self.core.registry.approval_gate(prepared.tool, prepared.context)

    def _execution_failed(self, name: str, exc: Exception) -> ToolResult:
        logger.exception("Tool %s raised during execution", name)
        return ToolResult.failure(str(exc) or "Execution failed", EXECUTION_FAILED)

    def _finish(self, prepared: _PreparedCall, result: ToolResult, executed: bool) -> DispatchOutcome:
        core = self.core
        call, origin = prepared.call, prepared.origin
        tier = prepared.tool.permission_tier.value if prepared.tool is not None else None

        core.record_tool_result(call.name, call.args, result)

        approval: Optional[ApprovalRequest] = None
        approval_tier = result.approval_tier
        if approval_tier is not None:
            approval = core.create_approval_request(call.name, call.args, approval_tier, origin)
            self.approvals_requested += 1
        elif result.success:
            core.clear_error(prepared.key)
        else:
            count = core.record_error(prepared.key)
            logger.info("Strike %s for %s (%s)", count, call.name, prepared.key)

        if executed:
            self.executed += 1
            if not result.success:
                self.failed += 1
            core.audit.record(
                "tool_executed",
                tool=call.name,
                permission_tier=tier,
                channel=origin.channel,
                user_id=origin.user_id,
                conversation_id=origin.conversation_id,
                params=call.args,
                result="success" if result.success else "failure",
                error=result.error,
            )

        return DispatchOutcome(
            call=call,
            result=result,
            issue_key=prepared.key,
            loop=prepared.loop,
            laws=prepared.laws,
            approval=approval,
            executed=executed,
            error_count=core.get_error_count(prepared.key),
        )

    def _execute_approved(self, request: ApprovalRequest, context: ToolExecutionContext) -> Any:
        tool = self.core.registry.get(request.tool)
        if tool is None:
            return ToolResult.failure("Tool not found", UNKNOWN_TOOL)
        return tool.execute(request.params, context)

    # ─────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────

    def dispatch(self, call: ToolCall, origin: Optional[RequestOrigin] = None) -> DispatchOutcome:
        prepared = self._prepare(call, origin)
        if isinstance(prepared, DispatchOutcome):
            return prepared

        result = self._pre_execute(prepared)
        if result is not None:
            return self._finish(prepared, result, executed=False)

        try:
            raw = prepared.tool.execute(dict(call.args), prepared.context)
        except Exception as exc:
            return self._finish(prepared, self._execution_failed(call.name, exc), executed=True)
        if inspect.isawaitable(raw):
            close = getattr(raw, "close", None)
            if callable(close):
                close()
            raise TypeError(f"tool {call.name} is async; dispatch it with AsyncToolDispatcher")
        try:
            result = ToolResult.coerce(raw)
        except TypeError as exc:
            result = self._execution_failed(call.name, exc)
        return self._finish(prepared, result, executed=True)

    def process_turn(self, calls: Iterable[ToolCall], origin: Optional[RequestOrigin] = None) -> TurnReport:
        """Dispatch a turn's tool calls one at a time, in order."""
        calls = list(calls)
        report = TurnReport(highest_tier=self.core.registry.highest_tier(c.name for c in calls))
        for call in calls:
            report.outcomes.append(self.dispatch(call, origin))
        return report

    def approve_action(self, approval_id: str, approved_by: str) -> ToolResult:
        return self.core.approvals.approve(approval_id, approved_by, self._execute_approved)

    def reject_action(self, approval_id: str, rejected_by: str) -> ToolResult:
        return self.core.reject_action(approval_id, rejected_by)

    @property
    def stats(self) -> Dict[str, Any]:
        """Summary statistics for this dispatcher."""
        return {
            "calls": self.calls,
            "executed": self.executed,
            "failed": self.failed,
            "loop_blocks": self.loop_blocks,
            "loop_warnings": self.loop_warnings,
            "law_blocks": self.law_blocks,
            "approvals_requested": self.approvals_requested,
            "pending_approvals": len(self.core.get_pending_approvals()),
            "unknown_tools": self.unknown_tools,
            "loop_guard": self.core.loop_guard.stats(),
        }

    def reset(self) -> None:
        """Reset counters and loop/strike state for a new session (same config)."""
        self.core.reset()
        self.calls = 0
        self.executed = 0
        self.failed = 0
        self.loop_blocks = 0
        self.loop_warnings = 0
        self.law_blocks = 0
        self.approvals_requested = 0
        self.unknown_tools = 0
