"""ops_guard.config

Configuration for the safety core.

All thresholds are explicit with conservative defaults. The defaults are the
production policy; tests and small deployments override what they need.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Set, Tuple

from .types import PermissionTier


DEFAULT_VOLATILE_PARAM_KEYS: FrozenSet[str] = frozenset({
    "timestamp",
    "ts",
    "request_id",
    "requestId",
    "idempotency_key",
    "nonce",
    "trace_id",
    "traceId",
})


@dataclass
class SafetyConfig:
    """Thresholds and policies for the safety core.

    Every component takes the same config object, so one instance describes
    the whole policy of a deployment.
    """

    # IRON LAWS
    # ---------
    protected_branches: Set[str] = field(default_factory=lambda: {"main", "master"})
    # errorCount at which the three-strike law fires.
    strike_threshold: int = 3

    # STRIKE TRACKER
    # --------------
    strike_ttl_seconds: float = 60 * 60
    max_strike_entries: int = 1000

    # LOOP GUARD
    # ----------
    # Counts include the current call: warn on the 3rd identical call,
    # block on the 5th.
    loop_warn_threshold: int = 3
    loop_block_threshold: int = 5
    loop_history_window: int = 30
    cycle_periods: Tuple[int, ...] = (2, 3)
    global_circuit_break: int = 30
    # Same call + same result this many times logs an escalation.
    outcome_escalation_threshold: int = 2

    # APPROVALS
    # ---------
    approval_timeout_seconds: float = 5 * 60
    approval_required_tiers: Set[PermissionTier] = field(
        default_factory=lambda: {
            PermissionTier.DELETE,
            PermissionTier.EXTERNAL,
            PermissionTier.DANGEROUS,
        }
    )

    # FINGERPRINTS
    # ------------
    # Param keys dropped (at any depth) before hashing a call. Use for keys
    # that carry timestamps, request ids, nonces and the like.
    volatile_param_keys: Set[str] = field(default_factory=lambda: set(DEFAULT_VOLATILE_PARAM_KEYS))

    # AUDIT
    # -----
    audit_dir: str = "./audit-logs"
    audit_retention_days: int = 90

    def __post_init__(self) -> None:
        if self.strike_threshold < 1:
            raise ValueError("strike_threshold must be >= 1")
        if self.strike_ttl_seconds <= 0:
            raise ValueError("strike_ttl_seconds must be > 0")
        if self.max_strike_entries < 1:
            raise ValueError("max_strike_entries must be >= 1")
        if self.loop_warn_threshold < 1:
            raise ValueError("loop_warn_threshold must be >= 1")
        if self.loop_block_threshold < self.loop_warn_threshold:
            raise ValueError("loop_block_threshold must be >= loop_warn_threshold")
        if self.loop_history_window < 1:
            raise ValueError("loop_history_window must be >= 1")
        if not self.cycle_periods or any(p < 2 for p in self.cycle_periods):
            raise ValueError("cycle_periods must be non-empty and every period must be >= 2")
        if self.global_circuit_break < 1:
            raise ValueError("global_circuit_break must be >= 1")
        if self.outcome_escalation_threshold < 1:
            raise ValueError("outcome_escalation_threshold must be >= 1")
        if self.approval_timeout_seconds <= 0:
            raise ValueError("approval_timeout_seconds must be > 0")
        if self.audit_retention_days < 1:
            raise ValueError("audit_retention_days must be >= 1")
        self.approval_required_tiers = {PermissionTier.parse(t) for t in self.approval_required_tiers}
        self.cycle_periods = tuple(sorted(set(self.cycle_periods)))

    # --------------------------------
    # Helper methods
    # --------------------------------

    def tier_requires_approval(self, tier: Any) -> bool:
        return PermissionTier.parse(tier) in self.approval_required_tiers

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None, **overrides: Any) -> "SafetyConfig":
        """Build a config from environment variables plus explicit overrides.

        Reads ``OPS_GUARD_AUDIT_DIR`` (or ``AUDIT_LOG_DIR``) and
        ``OPS_GUARD_APPROVAL_TIMEOUT`` (seconds).
        """
        env = os.environ if environ is None else environ
        kwargs: Dict[str, Any] = {}

        audit_dir = env.get("OPS_GUARD_AUDIT_DIR") or env.get("AUDIT_LOG_DIR")
        if audit_dir:
            kwargs["audit_dir"] = audit_dir

        timeout = env.get("OPS_GUARD_APPROVAL_TIMEOUT")
        if timeout:
            try:
                kwargs["approval_timeout_seconds"] = float(timeout)
            except ValueError:
                raise ValueError(
                    f"OPS_GUARD_APPROVAL_TIMEOUT must be a number of seconds, got {timeout!r}"
                ) from None

        kwargs.update(overrides)
        return cls(**kwargs)
