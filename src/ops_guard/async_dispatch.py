"""ops_guard.async_dispatch

Async-compatible dispatch wrapper.

The safety checks are pure computation (hashing, regex, dict lookups), so they
run directly on the event loop. The only suspension point is the tool's own
``execute``, which may be a coroutine function or a plain function.

Usage with async agent loops:

    from ops_guard import AsyncToolDispatcher, SafetyCore, ToolCall

    dispatcher = AsyncToolDispatcher(SafetyCore())
    outcome = await dispatcher.dispatch(ToolCall("search_issues", {"query": "flaky"}))

Works with asyncio and any async framework.
"""

from __future__ import annotations

import inspect
from typing import Any, Dict, Iterable, Optional

from .dispatch import DispatchOutcome, SafetyCore, ToolDispatcher, TurnReport
from .types import RequestOrigin, ToolCall, ToolResult


class AsyncToolDispatcher:
    """Async wrapper around :class:`ToolDispatcher`.

    Shares the sync dispatcher's phases and counters; the ordering guarantees
    are identical. Calls within a turn are awaited one at a time.
    """

    def __init__(self, core: Optional[SafetyCore] = None):
        self._sync = ToolDispatcher(core)

    @property
    def core(self) -> SafetyCore:
        return self._sync.core

    # ─────────────────────────────────────────
    # Async API
    # ─────────────────────────────────────────

    async def dispatch(self, call: ToolCall, origin: Optional[RequestOrigin] = None) -> DispatchOutcome:
        """Dispatch one tool call (async).

        See :meth:`ToolDispatcher.dispatch` for full documentation.
        """
        sync = self._sync
        prepared = sync._prepare(call, origin)
        if isinstance(prepared, DispatchOutcome):
            return prepared

        result = sync._pre_execute(prepared)
        if result is not None:
            return sync._finish(prepared, result, executed=False)

        try:
            raw = prepared.tool.execute(dict(call.args), prepared.context)
            if inspect.isawaitable(raw):
                raw = await raw
            result = ToolResult.coerce(raw)
        except Exception as exc:
            return sync._finish(prepared, sync._execution_failed(call.name, exc), executed=True)
        return sync._finish(prepared, result, executed=True)

    async def process_turn(self, calls: Iterable[ToolCall], origin: Optional[RequestOrigin] = None) -> TurnReport:
        calls = list(calls)
        report = TurnReport(highest_tier=self.core.registry.highest_tier(c.name for c in calls))
        for call in calls:
            report.outcomes.append(await self.dispatch(call, origin))
        return report

    async def approve_action(self, approval_id: str, approved_by: str) -> ToolResult:
        return await self.core.approvals.approve_async(
            approval_id, approved_by, self._sync._execute_approved,
        )

    async def reject_action(self, approval_id: str, rejected_by: str) -> ToolResult:
        return self._sync.reject_action(approval_id, rejected_by)

    # ─────────────────────────────────────────
    # Convenience (delegated to sync dispatcher)
    # ─────────────────────────────────────────

    @property
    def stats(self) -> Dict[str, Any]:
        return self._sync.stats

    @property
    def loop_blocks(self) -> int:
        return self._sync.loop_blocks

    @property
    def law_blocks(self) -> int:
        return self._sync.law_blocks

    @property
    def approvals_requested(self) -> int:
        return self._sync.approvals_requested

    async def reset(self) -> None:
        """Reset counters and loop/strike state for a new session."""
        self._sync.reset()
