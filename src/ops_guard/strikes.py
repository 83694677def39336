"""ops_guard.strikes

Strike tracker: consecutive failures per logical issue.

A bounded map from an opaque issue key to an :class:`ErrorEntry`. The tracker
does not know how keys are derived (see :func:`ops_guard.fingerprint.issue_key`).

Eviction runs on every read and write, TTL first and capacity second:
- entries whose ``last_seen`` is older than the TTL are dropped (count 0)
- if more than ``max_entries`` remain, the oldest ``first_seen`` go first
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass
class ErrorEntry:
    count: int
    first_seen: float
    last_seen: float


class StrikeTracker:
    """Process-wide failure counter with TTL and capacity eviction.

    Args:
        ttl_seconds: Age of ``last_seen`` after which an entry is dropped.
        max_entries: Live entry cap.
        clock: Epoch-seconds clock. Inject a fake one in tests.
    """

    def __init__(
        self,
        ttl_seconds: float = 60 * 60,
        max_entries: int = 1000,
        clock: Optional[Callable[[], float]] = None,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock or time.time
        self._entries: Dict[str, ErrorEntry] = {}

    # -------------------------
    # Eviction
    # -------------------------

    def _evict(self, now: float) -> None:
        stale = [k for k, e in self._entries.items() if now - e.last_seen > self.ttl_seconds]
        for key in stale:
            del self._entries[key]

        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            oldest = sorted(self._entries.items(), key=lambda kv: kv[1].first_seen)[:overflow]
            for key, _ in oldest:
                del self._entries[key]

    # -------------------------
    # Public API
    # -------------------------

    def record_error(self, key: str) -> int:
        """Count one more failure for ``key``. Returns the new count."""
        now = self._clock()
        self._evict(now)

        entry = self._entries.get(key)
        if entry is None:
            entry = ErrorEntry(count=1, first_seen=now, last_seen=now)
            self._entries[key] = entry
            # A brand-new key can push the map one past the cap.
            self._evict(now)
        else:
            entry.count += 1
            entry.last_seen = now
        return entry.count

    def clear_error(self, key: str) -> None:
        self._evict(self._clock())
        self._entries.pop(key, None)

    def get_error_count(self, key: str) -> int:
        self._evict(self._clock())
        entry = self._entries.get(key)
        return entry.count if entry is not None else 0

    def get_entry(self, key: str) -> Optional[ErrorEntry]:
        self._evict(self._clock())
        return self._entries.get(key)

    def reset(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        self._evict(self._clock())
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        self._evict(self._clock())
        return key in self._entries
