"""ops_guard.iron_laws

Iron Laws: hard constraints the agent cannot override.

Each law is a pure predicate over an :class:`ActionContext` that returns a
violation message or None. ``RuleEngine.check`` evaluates every law (no
short-circuit), so rule order never changes the outcome: the check fails iff
at least one violation has ``block`` severity.

Default laws:
1. no-push-main              push to a protected branch
2. no-delete-prod-data       delete against the production environment
3. no-commit-secrets         sensitive tracked file, or secret-shaped content
4. three-strike-escalation   errorCount reached the strike threshold
5. no-modify-cicd            CI/CD file edit without explicit approval
6. no-force-push             force push
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from .audit import AuditLog
from .config import SafetyConfig
from .patterns import (
    DATABASE_OPERATION,
    FILE_WRITE,
    GIT_PUSH,
    find_secret,
    flag,
    is_ci_path,
    is_protected_branch,
    is_sensitive_file,
)
from .types import ActionContext, LawCheckResult, Severity, Violation

logger = logging.getLogger("ops_guard")


@dataclass(frozen=True)
class Rule:
    id: str
    description: str
    severity: Severity
    check: Callable[[ActionContext], Optional[str]]


# ================================
# Law predicates
# ================================

def _no_push_main(protected: Sequence[str]) -> Callable[[ActionContext], Optional[str]]:
    def check(ctx: ActionContext) -> Optional[str]:
        if ctx.action == GIT_PUSH and is_protected_branch(ctx.git_branch, protected):
            return f"Cannot push directly to {ctx.git_branch} branch. Create a PR instead."
        return None
    return check


def _no_delete_prod_data(ctx: ActionContext) -> Optional[str]:
    if (
        ctx.action == DATABASE_OPERATION
        and ctx.params.get("operation") == "delete"
        and ctx.params.get("environment") == "production"
    ):
        return "Cannot delete production data. This requires manual intervention."
    return None


def _no_commit_secrets(ctx: ActionContext) -> Optional[str]:
    if ctx.action != FILE_WRITE:
        return None

    if ctx.target_file and is_sensitive_file(ctx.target_file):
        if flag(ctx.params, "isGitTracked", "is_git_tracked"):
            return f"Cannot commit sensitive file: {ctx.target_file}"

    content = ctx.params.get("content")
    if isinstance(content, str):
        match = find_secret(content)
        if match is not None:
            return (
                f"Possible secret detected in content ({match.category}: {match.name}). "
                f"Pattern: {match.source}"
            )
    return None


def _three_strikes(threshold: int) -> Callable[[ActionContext], Optional[str]]:
    def check(ctx: ActionContext) -> Optional[str]:
        if ctx.error_count is not None and ctx.error_count >= threshold:
            return (
                f"{threshold}-strike limit reached ({ctx.error_count} failures). "
                "Stopping to escalate to user. Do not retry - explain what failed and ask for guidance."
            )
        return None
    return check


def _no_modify_cicd(ctx: ActionContext) -> Optional[str]:
    if ctx.action == FILE_WRITE and is_ci_path(ctx.target_file):
        if flag(ctx.params, "explicitlyApproved", "explicitly_approved") is not True:
            return f"Cannot modify CI/CD file without explicit approval: {ctx.target_file}"
    return None


def _no_force_push(ctx: ActionContext) -> Optional[str]:
    if ctx.action == GIT_PUSH and ctx.params.get("force"):
        return "Force push is not allowed. Use regular push or create a new branch."
    return None


def build_default_rules(config: Optional[SafetyConfig] = None) -> List[Rule]:
    cfg = config or SafetyConfig()
    return [
        Rule(
            id="no-push-main",
            description="Never push directly to main branch",
            severity=Severity.BLOCK,
            check=_no_push_main(sorted(cfg.protected_branches)),
        ),
        Rule(
            id="no-delete-prod-data",
            description="Never delete production data",
            severity=Severity.BLOCK,
            check=_no_delete_prod_data,
        ),
        Rule(
            id="no-commit-secrets",
            description="Never commit secrets or credentials",
            severity=Severity.BLOCK,
            check=_no_commit_secrets,
        ),
        Rule(
            id="three-strike-escalation",
            description=f"After {cfg.strike_threshold} failures on the same issue, stop and escalate",
            severity=Severity.BLOCK,
            check=_three_strikes(cfg.strike_threshold),
        ),
        Rule(
            id="no-modify-cicd",
            description="Never modify CI/CD pipelines without approval",
            severity=Severity.BLOCK,
            check=_no_modify_cicd,
        ),
        Rule(
            id="no-force-push",
            description="Never force push",
            severity=Severity.BLOCK,
            check=_no_force_push,
        ),
    ]


# ================================
# Engine
# ================================

class RuleEngine:
    """Evaluates a fixed list of rules against an action context.

    The rule list is copied into a tuple at construction and never changes.
    The only side effects of ``check`` are one audit entry and one warning log
    per violation.
    """

    def __init__(
        self,
        rules: Optional[Sequence[Rule]] = None,
        audit: Optional[AuditLog] = None,
        config: Optional[SafetyConfig] = None,
    ):
        self.rules = tuple(rules) if rules is not None else tuple(build_default_rules(config))
        ids = [r.id for r in self.rules]
        if len(ids) != len(set(ids)):
            raise ValueError("rule ids must be unique")
        self.audit = audit

    def check(self, ctx: ActionContext) -> LawCheckResult:
        violations: List[Violation] = []

        for rule in self.rules:
            message = rule.check(ctx)
            if not message:
                continue
            violations.append(Violation(
                law_id=rule.id,
                description=rule.description,
                message=message,
                severity=rule.severity,
            ))

            if self.audit is not None:
                self.audit.record(
                    "tool_blocked",
                    tool=ctx.tool_name or ctx.action,
                    channel="system",
                    result="failure",
                    metadata={
                        "ironLaw": rule.id,
                        "violation": message,
                        "severity": rule.severity.value,
                    },
                )
            logger.warning(
                "Iron law violation: law=%s action=%s: %s",
                rule.id, ctx.action, message,
            )

        return LawCheckResult(
            passed=not any(v.severity == Severity.BLOCK for v in violations),
            violations=violations,
        )

    def describe(self) -> List[Dict[str, str]]:
        return [
            {"id": r.id, "description": r.description, "severity": r.severity.value}
            for r in self.rules
        ]
