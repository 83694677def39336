"""ops_guard.approvals

Approval workflow for tool calls that must be deferred to a human.

Each request is a small state machine::

    pending -> approved   (deferred call executed, record discarded)
            -> rejected   (record discarded)
            -> expired    (swept after expires_at, record discarded)

Expiry is evaluated lazily: ``cleanup_expired()`` runs at the top of every
public method, so nothing can observe a stale ``pending`` status.

Lifecycle failures are returned as ``ToolResult`` values, never raised:
- not_found          no such request (or it was already resolved and discarded)
- already_resolved   the request is mid-execution after an approval
- expired            the request timed out before a decision
"""

from __future__ import annotations

import inspect
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union
from uuid import uuid4

from .audit import AuditLog
from .config import SafetyConfig
from .types import (
    ApprovalRequest,
    ApprovalStatus,
    RequestOrigin,
    ToolExecutionContext,
    ToolResult,
)

logger = logging.getLogger("ops_guard")

NOT_FOUND = "not_found"
ALREADY_RESOLVED = "already_resolved"
EXPIRED = "expired"
EXECUTION_FAILED = "execution_failed"

_MAX_EXPIRED_IDS = 1000

Executor = Callable[[ApprovalRequest, ToolExecutionContext], Any]


class ApprovalWorkflow:
    """Owns the set of pending approval requests.

    Args:
        config: Supplies ``approval_timeout_seconds``.
        audit: Receives one entry per state transition.
        clock: Epoch-seconds clock. Inject a fake one in tests.
        id_factory: Generates request ids.
    """

    def __init__(
        self,
        config: Optional[SafetyConfig] = None,
        audit: Optional[AuditLog] = None,
        clock: Optional[Callable[[], float]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.cfg = config or SafetyConfig()
        self.audit = audit or AuditLog()
        self._clock = clock or time.time
        self._new_id = id_factory or (lambda: uuid4().hex)
        self._pending: Dict[str, ApprovalRequest] = {}
        # Ids removed by the sweep, so a late decision reports "expired".
        self._expired_ids: "OrderedDict[str, None]" = OrderedDict()

    # -------------------------
    # Internal helpers
    # -------------------------

    def _remember_expired(self, approval_id: str) -> None:
        self._expired_ids[approval_id] = None
        while len(self._expired_ids) > _MAX_EXPIRED_IDS:
            self._expired_ids.popitem(last=False)

    def cleanup_expired(self) -> List[ApprovalRequest]:
        """Expire every pending request past its deadline. Returns the expired requests."""
        now = self._clock()
        expired: List[ApprovalRequest] = []
        for approval_id, request in list(self._pending.items()):
            if request.status != ApprovalStatus.PENDING or not request.is_expired(now):
                continue
            request.status = ApprovalStatus.EXPIRED
            del self._pending[approval_id]
            self._remember_expired(approval_id)
            expired.append(request)
            self.audit.record(
                "approval_expired",
                tool=request.tool,
                channel=request.requested_from.channel,
                conversation_id=request.requested_from.conversation_id,
                permission_tier=request.permission_tier,
                result="failure",
                metadata={"approvalId": approval_id},
            )
            logger.info("Approval %s for %s expired", approval_id, request.tool)
        return expired

    def _lookup(self, approval_id: str) -> Union[ApprovalRequest, ToolResult]:
        self.cleanup_expired()
        request = self._pending.get(approval_id)
        if request is None:
            if approval_id in self._expired_ids:
                return ToolResult.failure("Approval request expired", EXPIRED)
            return ToolResult.failure("Approval request not found or expired", NOT_FOUND)
        if request.status != ApprovalStatus.PENDING:
            return ToolResult.failure(f"Request already {request.status.value}", ALREADY_RESOLVED)
        return request

    def _begin_approval(
        self, approval_id: str, approved_by: str
    ) -> Union[Tuple[ApprovalRequest, ToolExecutionContext], ToolResult]:
        found = self._lookup(approval_id)
        if isinstance(found, ToolResult):
            return found

        request = found
        request.status = ApprovalStatus.APPROVED
        request.responded_at = self._clock()
        request.responded_by = approved_by

        self.audit.record(
            "approval_granted",
            tool=request.tool,
            channel=request.requested_from.channel,
            user_id=approved_by,
            conversation_id=request.requested_from.conversation_id,
            permission_tier=request.permission_tier,
            result="success",
            metadata={"approvalId": approval_id},
        )
        context = ToolExecutionContext.from_origin(
            request.requested_from, approval_id=approval_id, approved_by=approved_by
        )
        return request, context

    @staticmethod
    def _execution_failed(request: ApprovalRequest, exc: Exception) -> ToolResult:
        logger.exception("Approved tool %s raised during execution", request.tool)
        return ToolResult.failure(str(exc) or "Execution failed", EXECUTION_FAILED)

    # -------------------------
    # Public API
    # -------------------------

    def create(
        self,
        tool: str,
        params: Dict[str, Any],
        tier: Any,
        origin: Optional[RequestOrigin] = None,
        reason: Optional[str] = None,
    ) -> ApprovalRequest:
        self.cleanup_expired()
        origin = origin or RequestOrigin()
        tier_name = getattr(tier, "value", str(tier))
        now = self._clock()

        request = ApprovalRequest(
            id=self._new_id(),
            tool=tool,
            params=dict(params or {}),
            permission_tier=tier_name,
            reason=reason or f'Tool "{tool}" requires {tier_name}-level approval before execution',
            requested_at=now,
            expires_at=now + self.cfg.approval_timeout_seconds,
            requested_from=origin,
        )
        self._pending[request.id] = request

        self.audit.record(
            "approval_requested",
            tool=tool,
            permission_tier=tier_name,
            channel=origin.channel,
            user_id=origin.user_id,
            conversation_id=origin.conversation_id,
            params=request.params,
            result="pending",
            metadata={"approvalId": request.id},
        )
        return request

    def approve(self, approval_id: str, approved_by: str, execute: Executor) -> ToolResult:
        """Approve a pending request and run the deferred call.

        ``execute(request, context)`` performs the call and returns a
        ``ToolResult`` or a ``{success, data, error}`` mapping. The record is
        discarded whether or not the call succeeds.
        """
        begun = self._begin_approval(approval_id, approved_by)
        if isinstance(begun, ToolResult):
            return begun
        request, context = begun

        try:
            try:
                outcome = execute(request, context)
            except Exception as exc:
                return self._execution_failed(request, exc)
            if inspect.isawaitable(outcome):
                close = getattr(outcome, "close", None)
                if callable(close):
                    close()
                raise TypeError(f"executor for {request.tool} returned an awaitable; use approve_async()")
            try:
                return ToolResult.coerce(outcome)
            except TypeError as exc:
                return self._execution_failed(request, exc)
        finally:
            self._pending.pop(approval_id, None)

    async def approve_async(
        self,
        approval_id: str,
        approved_by: str,
        execute: Callable[[ApprovalRequest, ToolExecutionContext], Union[Awaitable[Any], Any]],
    ) -> ToolResult:
        """Async variant of :meth:`approve`; ``execute`` may be a coroutine function."""
        begun = self._begin_approval(approval_id, approved_by)
        if isinstance(begun, ToolResult):
            return begun
        request, context = begun

        try:
            try:
                outcome = execute(request, context)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                return ToolResult.coerce(outcome)
            except Exception as exc:
                return self._execution_failed(request, exc)
        finally:
            self._pending.pop(approval_id, None)

    def reject(self, approval_id: str, rejected_by: str) -> ToolResult:
        found = self._lookup(approval_id)
        if isinstance(found, ToolResult):
            return found

        request = found
        request.status = ApprovalStatus.REJECTED
        request.responded_at = self._clock()
        request.responded_by = rejected_by

        self.audit.record(
            "approval_denied",
            tool=request.tool,
            channel=request.requested_from.channel,
            user_id=rejected_by,
            conversation_id=request.requested_from.conversation_id,
            permission_tier=request.permission_tier,
            result="failure",
            metadata={"approvalId": approval_id},
        )
        del self._pending[approval_id]
        return ToolResult(success=True, data={"message": "Action rejected"})

    def get(self, approval_id: str) -> Optional[ApprovalRequest]:
        self.cleanup_expired()
        return self._pending.get(approval_id)

    def pending(self) -> List[ApprovalRequest]:
        self.cleanup_expired()
        return [r for r in self._pending.values() if r.status == ApprovalStatus.PENDING]

    def __len__(self) -> int:
        return len(self.pending())
