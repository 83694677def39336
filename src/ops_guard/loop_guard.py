"""ops_guard.loop_guard

Loop Guard: detect and stop repeated tool-call patterns.

Call ``check_call()`` BEFORE executing a tool and ``record_result()`` AFTER.

State (process-wide, cleared only by ``reset()``):
- history         recent (tool, param hash, result hash) entries, windowed
- call counts     identical-call counter per ``tool:param_hash`` (not windowed)
- outcome counts  per ``tool:param_hash:result_hash``
- loops detected  global counter; at the ceiling every call is blocked

Verdict priority on ``check_call``:
1. global circuit break -> block
2. ping-pong cycle of period 2 or 3 in recent history -> warn
3. identical-call count >= block threshold -> block
4. identical-call count >= warn threshold -> warn
5. allow
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import SafetyConfig
from .fingerprint import content_hash
from .types import LoopAction, LoopGuardResult

logger = logging.getLogger("ops_guard")


@dataclass
class CallHistoryEntry:
    tool_name: str
    param_hash: str
    result_hash: Optional[str] = None

    @property
    def call_key(self) -> str:
        return f"{self.tool_name}:{self.param_hash}"


class LoopGuard:
    """Repetition and cycle detector for tool calls.

    Params are hashed with the same canonical form as strike issue keys
    (sorted keys, volatile keys dropped), so reordered or re-timestamped
    params count as the same call.
    """

    def __init__(self, config: Optional[SafetyConfig] = None):
        self.cfg = config or SafetyConfig()
        self._history: List[CallHistoryEntry] = []
        self._call_counts: Dict[str, int] = {}
        self._outcome_counts: Dict[str, int] = {}
        self._loops_detected = 0

    # -------------------------
    # Internal helpers
    # -------------------------

    def _hash(self, obj: Any) -> str:
        return content_hash(obj if obj is not None else {}, self.cfg.volatile_param_keys)

    def _append(self, entry: CallHistoryEntry) -> None:
        self._history.append(entry)
        window = self.cfg.loop_history_window
        if len(self._history) > window * 2:
            del self._history[: len(self._history) - window]

    def _detect_ping_pong(self) -> Optional[str]:
        recent = self._history[-self.cfg.loop_history_window:]
        keys = [e.call_key for e in recent]

        for period in self.cfg.cycle_periods:
            if len(keys) < period * 2:
                continue
            tail = keys[-period * 2:]
            first, second = tail[:period], tail[period:]
            # Runs of one identical call are left to the count thresholds.
            if first != second or len(set(first)) < 2:
                continue
            names = [e.tool_name for e in recent[-period * 2:][:period]]
            return f"{' -> '.join(names)} (repeated {period}-step cycle)"
        return None

    def _verdict(self, action: LoopAction, tool_name: str, count: int, reason: Optional[str]) -> LoopGuardResult:
        if action != LoopAction.ALLOW:
            self._loops_detected += 1
            logger.warning(
                "Loop guard %s: tool=%s count=%s loops=%s: %s",
                action.value, tool_name, count, self._loops_detected, reason,
            )
        return LoopGuardResult(action=action, call_count=count, reason=reason)

    # -------------------------
    # Public API
    # -------------------------

    def check_call(self, tool_name: str, params: Any) -> LoopGuardResult:
        if self._loops_detected >= self.cfg.global_circuit_break:
            return LoopGuardResult(
                action=LoopAction.BLOCK,
                call_count=self._loops_detected,
                reason=f"Global circuit break: {self._loops_detected} loops detected in session",
            )

        entry = CallHistoryEntry(tool_name=tool_name, param_hash=self._hash(params))
        self._append(entry)

        count = self._call_counts.get(entry.call_key, 0) + 1
        self._call_counts[entry.call_key] = count

        cycle = self._detect_ping_pong()
        if cycle:
            return self._verdict(LoopAction.WARN, tool_name, count, f"Ping-pong pattern detected: {cycle}")

        if count >= self.cfg.loop_block_threshold:
            return self._verdict(
                LoopAction.BLOCK, tool_name, count,
                f'Tool "{tool_name}" called {count} times with same params '
                f"(blocked at {self.cfg.loop_block_threshold})",
            )
        if count >= self.cfg.loop_warn_threshold:
            return self._verdict(
                LoopAction.WARN, tool_name, count,
                f'Tool "{tool_name}" called {count} times with same params '
                f"(warning at {self.cfg.loop_warn_threshold})",
            )
        return LoopGuardResult(action=LoopAction.ALLOW, call_count=count)

    def record_result(self, tool_name: str, params: Any, result: Any) -> None:
        """Record a tool result for outcome-aware escalation.

        Never changes a verdict already returned. Logs an escalation when the
        same call keeps producing the same result.
        """
        param_hash = self._hash(params)
        result_hash = self._hash(result)

        if self._history:
            last = self._history[-1]
            if last.tool_name == tool_name and last.param_hash == param_hash:
                last.result_hash = result_hash

        outcome_key = f"{tool_name}:{param_hash}:{result_hash}"
        outcome_count = self._outcome_counts.get(outcome_key, 0) + 1
        self._outcome_counts[outcome_key] = outcome_count

        if outcome_count >= self.cfg.outcome_escalation_threshold:
            call_count = self._call_counts.get(f"{tool_name}:{param_hash}", 0)
            if call_count < self.cfg.loop_block_threshold:
                logger.warning(
                    "Loop guard: outcome-aware escalation tool=%s outcome_count=%s "
                    "(same call producing same result repeatedly)",
                    tool_name, outcome_count,
                )

    def outcome_count(self, tool_name: str, params: Any, result: Any) -> int:
        return self._outcome_counts.get(
            f"{tool_name}:{self._hash(params)}:{self._hash(result)}", 0
        )

    def reset(self) -> None:
        """Clear all state. Run at session/sprint boundaries, not per call."""
        self._history.clear()
        self._call_counts.clear()
        self._outcome_counts.clear()
        self._loops_detected = 0

    @property
    def loops_detected(self) -> int:
        return self._loops_detected

    @property
    def history(self) -> List[CallHistoryEntry]:
        return list(self._history)

    def stats(self) -> Dict[str, Any]:
        """Diagnostics snapshot (camelCase keys, JSON-ready)."""
        repeaters = sorted(
            ((k, c) for k, c in self._call_counts.items() if c >= 2),
            key=lambda kv: kv[1],
            reverse=True,
        )[:5]
        return {
            "totalCalls": len(self._history),
            "uniqueCalls": len(self._call_counts),
            "loopsDetected": self._loops_detected,
            "topRepeaters": [{"call": k, "count": c} for k, c in repeaters],
        }
