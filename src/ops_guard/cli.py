"""ops_guard.cli

CLI entrypoint for ops-guard.

Usage:
    ops-guard laws                                  List the iron laws
    ops-guard check --action A [--tool T] [--params JSON] [--errors N]
                                                    Check one action against the iron laws
    ops-guard scan FILE...                          Scan files for committed secrets
    ops-guard audit summary [--dir D] [--days N]    Summarize the audit trail
    ops-guard audit cleanup [--dir D]               Delete audit files past retention
    ops-guard version                               Print version

Exit status is 1 when a check or scan finds a blocking violation.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from .audit import JsonlAuditSink
from .config import SafetyConfig
from .iron_laws import RuleEngine, build_default_rules
from .patterns import FILE_WRITE, extract_git_branch, extract_target_file
from .types import ActionContext


def cmd_laws(args: argparse.Namespace) -> int:
    """List the iron laws."""
    engine = RuleEngine(config=SafetyConfig.from_env())
    for law in engine.describe():
        print(f"  {law['id']:<26} {law['severity']:<6} {law['description']}")
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Check a single action context against the iron laws."""
    try:
        params = json.loads(args.params) if args.params else {}
    except ValueError as e:
        print(f"  --params is not valid JSON: {e}", file=sys.stderr)
        return 2
    if not isinstance(params, dict):
        print("  --params must be a JSON object", file=sys.stderr)
        return 2

    ctx = ActionContext(
        action=args.action,
        tool_name=args.tool,
        params=params,
        target_file=extract_target_file(params),
        git_branch=extract_git_branch(params),
        error_count=args.errors,
    )
    result = RuleEngine(config=SafetyConfig.from_env()).check(ctx)
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.passed else 1


def cmd_scan(args: argparse.Namespace) -> int:
    """Run the secret law over files as if they were about to be written."""
    rules = [r for r in build_default_rules(SafetyConfig.from_env()) if r.id == "no-commit-secrets"]
    engine = RuleEngine(rules=rules)
    blocked = 0

    for name in args.files:
        path = Path(name)
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            print(f"  {name}: cannot read ({e.strerror})", file=sys.stderr)
            blocked += 1
            continue

        result = engine.check(ActionContext(
            action=FILE_WRITE,
            params={"path": name, "content": content},
            target_file=name,
        ))
        if result.passed:
            continue
        blocked += 1
        for v in result.violations:
            print(f"  {name}: {v.message}")

    if blocked:
        print(f"\n  {blocked} of {len(args.files)} file(s) blocked.")
        return 1
    print(f"  {len(args.files)} file(s) clean.")
    return 0


def _audit_sink(args: argparse.Namespace) -> JsonlAuditSink:
    cfg = SafetyConfig.from_env()
    return JsonlAuditSink(args.dir or cfg.audit_dir, retention_days=cfg.audit_retention_days)


def cmd_audit_summary(args: argparse.Namespace) -> int:
    """Print per-action, per-tool and approval counts for the last N days."""
    today = datetime.now(timezone.utc).date()
    summary = _audit_sink(args).summary(start=today - timedelta(days=args.days - 1), end=today)
    print(json.dumps(summary, indent=2))
    return 0


def cmd_audit_cleanup(args: argparse.Namespace) -> int:
    """Delete audit files older than the retention window."""
    deleted = _audit_sink(args).cleanup_old_logs()
    print(f"  Deleted {deleted} audit log file(s).")
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    """Print version."""
    from . import __version__
    print(f"ops-guard {__version__}")
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="ops-guard",
        description="ops-guard: safety enforcement for autonomous ops agents (iron laws, loop guard, strikes, approvals).",
    )
    parser.add_argument(
        "--log-level", default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command")

    # laws
    laws_parser = subparsers.add_parser("laws", help="List the iron laws")
    laws_parser.set_defaults(func=cmd_laws)

    # check
    check_parser = subparsers.add_parser("check", help="Check one action against the iron laws")
    check_parser.add_argument("--action", required=True, help="Action category, e.g. git_push, file_write")
    check_parser.add_argument("--tool", type=str, help="Tool name")
    check_parser.add_argument("--params", type=str, help="Params as a JSON object")
    check_parser.add_argument("--errors", type=int, help="Current strike count for this issue")
    check_parser.set_defaults(func=cmd_check)

    # scan
    scan_parser = subparsers.add_parser("scan", help="Scan files for secrets")
    scan_parser.add_argument("files", nargs="+", help="Files to scan")
    scan_parser.set_defaults(func=cmd_scan)

    # audit
    audit_parser = subparsers.add_parser("audit", help="Inspect the audit trail")
    audit_sub = audit_parser.add_subparsers(dest="audit_command")

    summary_parser = audit_sub.add_parser("summary", help="Summarize recent audit entries")
    summary_parser.add_argument("--dir", type=str, help="Audit log directory")
    summary_parser.add_argument("--days", type=int, default=7, help="Days to include (default: 7)")
    summary_parser.set_defaults(func=cmd_audit_summary)

    cleanup_parser = audit_sub.add_parser("cleanup", help="Delete audit files past retention")
    cleanup_parser.add_argument("--dir", type=str, help="Audit log directory")
    cleanup_parser.set_defaults(func=cmd_audit_cleanup)

    # version
    version_parser = subparsers.add_parser("version", help="Print version")
    version_parser.set_defaults(func=cmd_version)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    if args.command == "audit" and not getattr(args, "audit_command", None):
        audit_parser.print_help()
        sys.exit(1)

    if args.command == "audit" and args.audit_command == "summary" and args.days < 1:
        print("  --days must be >= 1", file=sys.stderr)
        sys.exit(2)

    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")

    code = args.func(args)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
