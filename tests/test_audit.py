"""tests/test_audit.py

Tests for the audit log and its sinks.
"""

import json
import logging
from datetime import date

import pytest

from ops_guard import AuditLog, CompositeAuditSink, InMemoryAuditSink, JsonlAuditSink
from ops_guard.audit import AuditSink, sanitize_params


class BrokenSink(AuditSink):
    def write(self, entry):
        raise OSError("disk full")


@pytest.fixture
def jsonl(tmp_path):
    return JsonlAuditSink(tmp_path / "audit", retention_days=30)


# ─────────────────────────────────────
# Entries
# ─────────────────────────────────────

class TestSanitize:
    def test_redacts_credential_keys(self):
        params = {"path": "a.py", "api_key": "k", "GitHubToken": "t", "Authorization": "Bearer x", "password": "p"}
        assert sanitize_params(params) == {
            "path": "a.py",
            "api_key": "[REDACTED]",
            "GitHubToken": "[REDACTED]",
            "Authorization": "[REDACTED]",
            "password": "[REDACTED]",
        }

    def test_truncates_long_strings(self):
        out = sanitize_params({"content": "x" * 600})
        assert out["content"] == "x" * 500 + "...[truncated]"

    def test_none_and_non_strings_pass_through(self):
        assert sanitize_params(None) is None
        assert sanitize_params({"n": 3, "items": [1, 2]}) == {"n": 3, "items": [1, 2]}

    def test_original_params_untouched(self):
        params = {"token": "abc"}
        sanitize_params(params)
        assert params == {"token": "abc"}

    def test_non_mapping_params_are_wrapped(self):
        assert sanitize_params(["a.py", "b.py"]) == {"value": ["a.py", "b.py"]}
        assert sanitize_params("y" * 600) == {"value": "y" * 500 + "...[truncated]"}

    def test_record_accepts_non_mapping_params(self, audit, sink):
        entry = audit.record("tool_executed", tool="t", channel="cli", result="success", params=["a.py"])
        assert sink.entries == [entry]
        assert entry.params == {"value": ["a.py"]}


class TestAuditLog:
    def test_record_builds_entry(self, audit, sink):
        entry = audit.record(
            "tool_executed", tool="git_push", channel="slack", result="success",
            user_id="U1", params={"branch": "feature/x"}, metadata={"k": "v"},
        )
        assert sink.entries == [entry]
        assert entry.id.startswith("audit_")
        assert entry.timestamp.startswith("2023-11-14T22:13:20")
        assert entry.params == {"branch": "feature/x"}
        assert entry.metadata == {"k": "v"}

    def test_entry_ids_are_unique(self, audit):
        a = audit.record("x", channel="system", result="success")
        b = audit.record("x", channel="system", result="success")
        assert a.id != b.id

    def test_failing_sink_is_logged_not_raised(self, clock, caplog):
        audit = AuditLog(BrokenSink(), clock=clock)
        with caplog.at_level(logging.ERROR, logger="ops_guard.audit"):
            entry = audit.record("tool_blocked", channel="system", result="failure")
        assert entry.action == "tool_blocked"
        assert "AUDIT LOG FAILURE" in caplog.text

    def test_no_sink_still_logs(self, caplog):
        with caplog.at_level(logging.INFO, logger="ops_guard.audit"):
            AuditLog().record("tool_executed", tool="t", channel="cli", result="success")
        assert "AUDIT: tool_executed tool=t" in caplog.text

    @pytest.mark.parametrize(
        ("action", "result", "level"),
        [
            ("tool_blocked", "failure", logging.WARNING),
            ("approval_denied", "failure", logging.WARNING),
            ("tool_executed", "failure", logging.ERROR),
            ("approval_requested", "pending", logging.WARNING),
            ("tool_executed", "success", logging.INFO),
        ],
    )
    def test_mirror_log_level(self, audit, caplog, action, result, level):
        with caplog.at_level(logging.DEBUG, logger="ops_guard.audit"):
            audit.record(action, channel="system", result=result)
        [record] = [r for r in caplog.records if r.name == "ops_guard.audit"]
        assert record.levelno == level


class TestCompositeSink:
    def test_fans_out(self, clock):
        a, b = InMemoryAuditSink(), InMemoryAuditSink()
        AuditLog(CompositeAuditSink(a, b), clock=clock).record("x", channel="system", result="success")
        assert len(a.entries) == 1
        assert a.entries == b.entries

    def test_memory_sink_helpers(self, audit, sink):
        audit.record("a", channel="system", result="success")
        audit.record("b", channel="system", result="success")
        assert [e.action for e in sink.find("a")] == ["a"]
        sink.clear()
        assert sink.entries == []


# ─────────────────────────────────────
# JSON Lines sink
# ─────────────────────────────────────

class TestJsonlSink:
    def test_writes_one_file_per_day(self, jsonl, clock):
        audit = AuditLog(jsonl, clock=clock)
        audit.record("tool_executed", tool="t", channel="cli", result="success")
        path = jsonl.path_for(date(2023, 11, 14))
        assert path.name == "audit-2023-11-14.jsonl"
        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["action"] == "tool_executed"

    def test_day_rollover(self, jsonl, clock):
        audit = AuditLog(jsonl, clock=clock)
        audit.record("a", channel="cli", result="success")
        clock.advance(24 * 60 * 60)
        audit.record("b", channel="cli", result="success")
        assert jsonl.path_for(date(2023, 11, 14)).exists()
        assert jsonl.path_for(date(2023, 11, 15)).exists()

    def test_query_filters(self, jsonl, clock):
        audit = AuditLog(jsonl, clock=clock)
        audit.record("tool_executed", tool="git_push", channel="slack", result="success", user_id="U1")
        audit.record("tool_blocked", tool="git_push", channel="slack", result="failure", user_id="U1")
        audit.record("tool_executed", tool="read_file", channel="cli", result="success", user_id="U2")

        assert len(jsonl.query()) == 3
        assert [e.tool for e in jsonl.query(actions=["tool_blocked"])] == ["git_push"]
        assert len(jsonl.query(tools=["read_file"])) == 1
        assert len(jsonl.query(user_id="U1")) == 2
        assert len(jsonl.query(channel="cli")) == 1
        assert len(jsonl.query(result="failure")) == 1
        assert len(jsonl.query(limit=2)) == 2
        assert jsonl.query(start=date(2023, 11, 15)) == []
        assert len(jsonl.query(end=date(2023, 11, 14))) == 3

    def test_query_skips_malformed_lines(self, jsonl, clock):
        AuditLog(jsonl, clock=clock).record("a", channel="cli", result="success")
        with open(jsonl.path_for(date(2023, 11, 14)), "a", encoding="utf-8") as f:
            f.write("not json\n\n")
        assert [e.action for e in jsonl.query()] == ["a"]

    def test_query_on_missing_directory(self, tmp_path):
        assert JsonlAuditSink(tmp_path / "nowhere").query() == []

    def test_summary(self, jsonl, clock):
        audit = AuditLog(jsonl, clock=clock)
        audit.record("approval_requested", tool="delete_branch", channel="slack", result="pending")
        audit.record("approval_granted", tool="delete_branch", channel="slack", result="success")
        audit.record("approval_expired", tool="deploy", channel="slack", result="failure")
        audit.record("tool_executed", tool="delete_branch", channel="slack", result="success")

        summary = jsonl.summary(date(2023, 11, 14), date(2023, 11, 14))
        assert summary["total_actions"] == 4
        assert summary["by_tool"] == {"delete_branch": 3, "deploy": 1}
        assert summary["by_result"] == {"pending": 1, "success": 2, "failure": 1}
        assert summary["approval_stats"] == {"requested": 1, "granted": 1, "denied": 0, "expired": 1}

    def test_cleanup_old_logs(self, jsonl):
        jsonl.directory.mkdir(parents=True)
        for day in ("2024-03-01", "2024-03-31", "2024-04-01"):
            (jsonl.directory / f"audit-{day}.jsonl").write_text("", encoding="utf-8")
        (jsonl.directory / "notes.txt").write_text("keep", encoding="utf-8")

        deleted = jsonl.cleanup_old_logs(today=date(2024, 5, 1))
        assert deleted == 2
        remaining = sorted(p.name for p in jsonl.directory.iterdir())
        assert remaining == ["audit-2024-04-01.jsonl", "notes.txt"]
