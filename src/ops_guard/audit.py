"""ops_guard.audit

Audit trail for the safety core.

``AuditLog.record()`` is fire-and-forget: it builds an :class:`AuditEntry`,
mirrors it to the ``ops_guard.audit`` logger and hands it to a sink. A
failing sink is logged and never propagated, since a broken disk must not
turn a blocked tool call into an exception.

Sinks:
- InMemoryAuditSink   keeps entries in a list (tests, diagnostics)
- JsonlAuditSink      one JSON Lines file per UTC day, with query/summary/retention
- CompositeAuditSink  fan-out to several sinks

Usage:
    from ops_guard.audit import AuditLog, JsonlAuditSink

    audit = AuditLog(JsonlAuditSink("./audit-logs"))
    audit.record("tool_blocked", tool="git_push", channel="slack", result="failure")
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
from uuid import uuid4

logger = logging.getLogger("ops_guard.audit")

_SENSITIVE_PARAM_MARKERS = ("password", "token", "secret", "apikey", "api_key", "auth")
_MAX_PARAM_CHARS = 500


# ================================
# Entries
# ================================

@dataclass
class AuditEntry:
    id: str
    timestamp: str          # ISO-8601, UTC
    action: str
    channel: str
    result: str             # success | failure | pending
    tool: Optional[str] = None
    permission_tier: Optional[str] = None
    user_id: Optional[str] = None
    conversation_id: Optional[str] = None
    params: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False, default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEntry":
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)


def sanitize_params(params: Any) -> Optional[Dict[str, Any]]:
    """Redact credential-looking keys and truncate long strings.

    Anything that is not a mapping is recorded under a single ``value`` key.
    """
    if params is None:
        return None
    if not isinstance(params, Mapping):
        params = {"value": params}
    sanitized: Dict[str, Any] = {}
    for key, value in params.items():
        lowered = str(key).lower()
        if any(marker in lowered for marker in _SENSITIVE_PARAM_MARKERS):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, str) and len(value) > _MAX_PARAM_CHARS:
            sanitized[key] = value[:_MAX_PARAM_CHARS] + "...[truncated]"
        else:
            sanitized[key] = value
    return sanitized


def _log_level(action: str, result: str) -> int:
    if result == "failure":
        if "blocked" in action or "denied" in action:
            return logging.WARNING
        return logging.ERROR
    if action in ("approval_requested", "rate_limited", "validation_failed"):
        return logging.WARNING
    return logging.INFO


# ================================
# Sinks
# ================================

class AuditSink:
    """Base sink. Subclasses implement write()."""

    def write(self, entry: AuditEntry) -> None:
        raise NotImplementedError


class InMemoryAuditSink(AuditSink):
    def __init__(self) -> None:
        self.entries: List[AuditEntry] = []

    def write(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def find(self, action: str) -> List[AuditEntry]:
        return [e for e in self.entries if e.action == action]

    def clear(self) -> None:
        self.entries.clear()


class CompositeAuditSink(AuditSink):
    def __init__(self, *sinks: AuditSink) -> None:
        self.sinks = list(sinks)

    def write(self, entry: AuditEntry) -> None:
        for sink in self.sinks:
            sink.write(entry)


class JsonlAuditSink(AuditSink):
    """Append-only JSON Lines files, rotated daily (``audit-YYYY-MM-DD.jsonl``)."""

    def __init__(self, directory: "str | os.PathLike[str]", retention_days: int = 90) -> None:
        self.directory = Path(directory)
        self.retention_days = retention_days

    def _ensure_dir(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, day: date) -> Path:
        return self.directory / f"audit-{day.isoformat()}.jsonl"

    def write(self, entry: AuditEntry) -> None:
        self._ensure_dir()
        day = datetime.fromisoformat(entry.timestamp).date()
        with open(self.path_for(day), "a", encoding="utf-8") as f:
            f.write(entry.to_json() + "\n")

    def _files(self) -> List[Path]:
        if not self.directory.exists():
            return []
        return sorted(
            (p for p in self.directory.iterdir() if p.name.startswith("audit-") and p.suffix == ".jsonl"),
            reverse=True,  # most recent first
        )

    @staticmethod
    def _file_day(path: Path) -> Optional[date]:
        try:
            return date.fromisoformat(path.stem[len("audit-"):])
        except ValueError:
            return None

    def query(
        self,
        *,
        start: Optional[date] = None,
        end: Optional[date] = None,
        actions: Optional[Iterable[str]] = None,
        tools: Optional[Iterable[str]] = None,
        user_id: Optional[str] = None,
        channel: Optional[str] = None,
        result: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        """Read entries back, most recent file first, up to ``limit``."""
        action_set = set(actions) if actions is not None else None
        tool_set = set(tools) if tools is not None else None
        out: List[AuditEntry] = []

        for path in self._files():
            day = self._file_day(path)
            if day is None:
                continue
            if start and day < start:
                continue
            if end and day > end:
                continue

            with open(path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entry = AuditEntry.from_dict(json.loads(line))
                    except (ValueError, TypeError):
                        logger.debug("Skipping malformed audit line in %s", path)
                        continue

                    if action_set is not None and entry.action not in action_set:
                        continue
                    if tool_set is not None and entry.tool and entry.tool not in tool_set:
                        continue
                    if user_id is not None and entry.user_id != user_id:
                        continue
                    if channel is not None and entry.channel != channel:
                        continue
                    if result is not None and entry.result != result:
                        continue

                    out.append(entry)
                    if len(out) >= limit:
                        return out
        return out

    def summary(self, start: date, end: Optional[date] = None) -> Dict[str, Any]:
        entries = self.query(start=start, end=end or datetime.now(timezone.utc).date(), limit=10000)
        by_action: Dict[str, int] = {}
        by_tool: Dict[str, int] = {}
        by_result: Dict[str, int] = {}
        approvals = {"requested": 0, "granted": 0, "denied": 0, "expired": 0}

        for e in entries:
            by_action[e.action] = by_action.get(e.action, 0) + 1
            if e.tool:
                by_tool[e.tool] = by_tool.get(e.tool, 0) + 1
            if e.result:
                by_result[e.result] = by_result.get(e.result, 0) + 1
            if e.action == "approval_requested":
                approvals["requested"] += 1
            elif e.action == "approval_granted":
                approvals["granted"] += 1
            elif e.action == "approval_denied":
                approvals["denied"] += 1
            elif e.action == "approval_expired":
                approvals["expired"] += 1

        return {
            "total_actions": len(entries),
            "by_action": by_action,
            "by_tool": by_tool,
            "by_result": by_result,
            "approval_stats": approvals,
        }

    def cleanup_old_logs(self, today: Optional[date] = None) -> int:
        """Delete files older than the retention window. Returns the count deleted."""
        cutoff = (today or datetime.now(timezone.utc).date()) - timedelta(days=self.retention_days)
        deleted = 0
        for path in self._files():
            day = self._file_day(path)
            if day is not None and day < cutoff:
                path.unlink()
                deleted += 1
                logger.info("Deleted old audit log: %s", path.name)
        return deleted


# ================================
# Audit log
# ================================

class AuditLog:
    """Entry point used by the rule engine, approvals and dispatchers.

    Args:
        sink: Where entries go. None keeps only the logger mirror.
        clock: Epoch-seconds clock used for entry timestamps.
    """

    def __init__(self, sink: Optional[AuditSink] = None, clock: Optional[Callable[[], float]] = None):
        self.sink = sink
        self._clock = clock

    def _timestamp(self) -> str:
        if self._clock is None:
            return datetime.now(timezone.utc).isoformat()
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat()

    def record(
        self,
        action: str,
        *,
        channel: str,
        result: str,
        tool: Optional[str] = None,
        permission_tier: Optional[str] = None,
        user_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            id=f"audit_{uuid4().hex[:12]}",
            timestamp=self._timestamp(),
            action=action,
            channel=channel,
            result=result,
            tool=tool,
            permission_tier=permission_tier,
            user_id=user_id,
            conversation_id=conversation_id,
            params=sanitize_params(params),
            error=error,
            metadata=dict(metadata or {}),
        )

        logger.log(
            _log_level(action, result),
            "AUDIT: %s tool=%s tier=%s result=%s user=%s",
            action, tool, permission_tier, result, user_id,
        )

        if self.sink is not None:
            try:
                self.sink.write(entry)
            except Exception:
                logger.error("AUDIT LOG FAILURE, entry=%s", entry.to_json(), exc_info=True)

        return entry
