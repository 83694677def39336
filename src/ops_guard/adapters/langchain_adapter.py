"""ops_guard.adapters.langchain_adapter

Safety core integration for LangChain agents.

Requires: pip install langchain-core (or pip install ops-guard[langchain])

LangChain executes the tools itself, so the handler runs the pre-call phase
(loop guard, iron laws, approval gate) in ``on_tool_start`` and the post-call
bookkeeping in ``on_tool_end`` / ``on_tool_error``. A callback can only veto
a call by raising, hence :class:`ToolCallBlocked`.

Usage:
    from ops_guard import SafetyCore
    from ops_guard.adapters.langchain_adapter import SafetyCallbackHandler

    handler = SafetyCallbackHandler(SafetyCore(), origin=RequestOrigin("slack", "C123"))
    agent.invoke({"input": "..."}, config={"callbacks": [handler]})

    print(handler.summary)
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from langchain_core.callbacks import BaseCallbackHandler

from ..dispatch import DispatchOutcome, SafetyCore, ToolDispatcher, _PreparedCall
from ..types import RequestOrigin, ToolCall, ToolResult

logger = logging.getLogger("ops_guard.langchain")


class ToolCallBlocked(Exception):
    """Raised when the safety core stops a tool call before it runs.

    Attributes:
        outcome: The full DispatchOutcome
        result: The failure ToolResult (loop_blocked, iron_law_violation, or
                an APPROVAL_REQUIRED error with ``outcome.approval`` set)
        reason: Human-readable reason
    """

    def __init__(self, outcome: DispatchOutcome):
        self.outcome = outcome
        self.result = outcome.result
        self.reason = outcome.result.error or ""
        super().__init__(f"ops-guard blocked {outcome.call.name}: {self.reason}")


class SafetyCallbackHandler(BaseCallbackHandler):
    """LangChain callback that enforces the safety core on every tool call.

    Args:
        core: Shared SafetyCore (one per process).
        origin: Channel/conversation the agent runs for.
        raise_on_block: If True (default), raise ToolCallBlocked when a call
                        is blocked or deferred for approval. If False, log
                        warnings instead and let LangChain run the tool.
    """

    # LangChain callback handler properties
    raise_error: bool = True

    def __init__(
        self,
        core: Optional[SafetyCore] = None,
        *,
        origin: Optional[RequestOrigin] = None,
        raise_on_block: bool = True,
    ):
        self._dispatcher = ToolDispatcher(core)
        self._origin = origin or RequestOrigin(channel="langchain")
        self._raise_on_block = raise_on_block

        self._decisions: List[Dict[str, Any]] = []
        self._blocks: int = 0
        self._approvals: int = 0

        # Pre-checked call awaiting its result
        self._pending: Optional[_PreparedCall] = None

    @property
    def core(self) -> SafetyCore:
        return self._dispatcher.core

    def _veto(self, outcome: DispatchOutcome) -> None:
        self._decisions.append({
            "tool": outcome.call.name,
            "action": "approval" if outcome.approval is not None else "block",
            "reason": outcome.result.error,
        })
        logger.warning("ops-guard stopped tool '%s': %s", outcome.call.name, outcome.result.error)
        if self._raise_on_block:
            raise ToolCallBlocked(outcome)

    # ─────────────────────────────────────────
    # LangChain Callback Hooks
    # ─────────────────────────────────────────

    def on_tool_start(
        self,
        serialized: Dict[str, Any],
        input_str: str,
        *,
        run_id: Any = None,
        parent_run_id: Any = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        inputs: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        """Run the pre-call checks before LangChain executes the tool."""
        tool_name = serialized.get("name") or serialized.get("id", "unknown")

        args: Dict[str, Any] = {}
        if isinstance(inputs, dict):
            args = dict(inputs)
        elif isinstance(input_str, str):
            try:
                parsed = json.loads(input_str)
                args = parsed if isinstance(parsed, dict) else {"input": parsed}
            except (json.JSONDecodeError, TypeError):
                args = {"input": input_str}

        call = ToolCall(name=str(tool_name), args=args, id=str(run_id) if run_id is not None else None)
        self._pending = None
        prepared = self._dispatcher._prepare(call, self._origin)

        if isinstance(prepared, DispatchOutcome):
            self._blocks += 1
            self._veto(prepared)
            return

        if prepared.tool is not None:
            gate = self.core.registry.approval_gate(prepared.tool, prepared.context)
            if gate is not None:
                outcome = self._dispatcher._finish(prepared, gate, executed=False)
                self._approvals += 1
                self._veto(outcome)
                return

        self._decisions.append({"tool": call.name, "action": "allow", "reason": prepared.loop.reason})
        self._pending = prepared

    def on_tool_end(
        self,
        output: Any,
        *,
        run_id: Any = None,
        parent_run_id: Any = None,
        **kwargs: Any,
    ) -> None:
        """Record the tool result for strikes and outcome tracking."""
        if self._pending is None:
            return
        data = getattr(output, "content", output)
        self._dispatcher._finish(self._pending, ToolResult(success=True, data=data), executed=True)
        self._pending = None

    def on_tool_error(
        self,
        error: BaseException,
        *,
        run_id: Any = None,
        parent_run_id: Any = None,
        **kwargs: Any,
    ) -> None:
        """Record a tool failure as a strike."""
        if self._pending is None:
            return
        result = ToolResult.failure(f"{type(error).__name__}: {error}", "execution_failed")
        self._dispatcher._finish(self._pending, result, executed=True)
        self._pending = None

    # ─────────────────────────────────────────
    # Summary
    # ─────────────────────────────────────────

    @property
    def summary(self) -> Dict[str, Any]:
        """Return a summary of safety activity for this handler."""
        return {
            "blocks": self._blocks,
            "approvals_requested": self._approvals,
            "decisions": list(self._decisions),
            "pending_approvals": [r.id for r in self.core.get_pending_approvals()],
            "loop_guard": self.core.loop_guard.stats(),
        }

    def reset(self) -> None:
        """Reset handler counters (the shared core keeps its state)."""
        self._decisions.clear()
        self._blocks = 0
        self._approvals = 0
        self._pending = None
