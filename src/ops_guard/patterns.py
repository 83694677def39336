"""ops_guard.patterns

Secret and policy pattern library.

Detectors are kept as explicit tables so a new pattern is a one-line change
that does not touch the rule logic. Every function here is pure.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Tuple


# ================================
# Secret patterns
# ================================

@dataclass(frozen=True)
class SecretPattern:
    name: str
    category: str
    regex: "re.Pattern[str]"

    @property
    def source(self) -> str:
        return self.regex.pattern


# Order matters: the first match is reported.
SECRET_PATTERNS: Tuple[SecretPattern, ...] = (
    SecretPattern("anthropic_api_key", "api_key", re.compile(r"sk-ant-[a-zA-Z0-9-]{40,}")),
    SecretPattern("openai_api_key", "api_key", re.compile(r"sk-[a-zA-Z0-9]{20,}")),
    SecretPattern("aws_access_key", "cloud_credential", re.compile(r"AKIA[0-9A-Z]{16}")),
    SecretPattern("github_pat", "vcs_token", re.compile(r"ghp_[a-zA-Z0-9]{36}")),
    SecretPattern(
        "github_fine_grained_pat", "vcs_token",
        re.compile(r"github_pat_[a-zA-Z0-9]{22}_[a-zA-Z0-9]{59}"),
    ),
    SecretPattern("github_oauth_token", "vcs_token", re.compile(r"gho_[a-zA-Z0-9]{36}")),
    SecretPattern("slack_token", "chat_token", re.compile(r"xox[baprs]-[0-9a-zA-Z-]+")),
    SecretPattern("google_api_key", "api_key", re.compile(r"AIza[0-9A-Za-z\-_]{35}")),
    SecretPattern(
        "password_assignment", "hardcoded_credential",
        re.compile(r"""(password|passwd|pwd)\s*[:=]\s*["'][^"']+["']""", re.IGNORECASE),
    ),
    SecretPattern(
        "secret_assignment", "hardcoded_credential",
        re.compile(r"""secret\s*[:=]\s*["'][^"']+["']""", re.IGNORECASE),
    ),
    SecretPattern(
        "token_assignment", "hardcoded_credential",
        re.compile(r"""token\s*[:=]\s*["'][^"']+["']""", re.IGNORECASE),
    ),
    SecretPattern("pem_private_key", "private_key", re.compile(r"-----BEGIN[\s\S]*?PRIVATE KEY-----")),
    SecretPattern("bearer_token", "bearer_token", re.compile(r"Bearer\s+[a-zA-Z0-9._-]{20,}")),
    SecretPattern("jwt", "jwt", re.compile(r"eyJ[a-zA-Z0-9_-]{10,}\.eyJ[a-zA-Z0-9_-]{10,}")),
    SecretPattern(
        "database_url_with_credentials", "database_url",
        re.compile(r"(postgres|postgresql|mysql|mongodb(\+srv)?)://[^:/\s]+:[^@\s]+@"),
    ),
)


def find_secret(content: str, patterns: Sequence[SecretPattern] = SECRET_PATTERNS) -> Optional[SecretPattern]:
    """Return the first pattern that matches ``content``, or None."""
    if not content:
        return None
    for pattern in patterns:
        if pattern.regex.search(content):
            return pattern
    return None


# ================================
# Path and branch heuristics
# ================================

SENSITIVE_FILE_MARKERS: Tuple[str, ...] = (".env", ".env.local", "credentials", "secrets")

CI_PATH_MARKERS: Tuple[str, ...] = (
    ".github/workflows",
    ".gitlab-ci",
    "Jenkinsfile",
    ".circleci",
    "vercel.json",
)


def _normalize_path(path: str) -> str:
    return path.replace("\\", "/")


def is_sensitive_file(path: Optional[str]) -> bool:
    if not path:
        return False
    lowered = _normalize_path(path).lower()
    return any(marker in lowered for marker in SENSITIVE_FILE_MARKERS)


def is_ci_path(path: Optional[str]) -> bool:
    if not path:
        return False
    normalized = _normalize_path(path)
    return any(marker in normalized for marker in CI_PATH_MARKERS)


def is_protected_branch(branch: Optional[str], protected: Sequence[str] = ("main", "master")) -> bool:
    return branch is not None and branch in protected


# ================================
# Param extractors
# ================================

# Tried in order; the first non-empty string wins.
TARGET_FILE_KEYS: Tuple[str, ...] = (
    "path",
    "file_path",
    "filePath",
    "file",
    "filename",
    "target_file",
    "targetFile",
)

GIT_BRANCH_KEYS: Tuple[str, ...] = ("branch", "git_branch", "gitBranch", "ref", "head")

_HEADS_PREFIX = "refs/heads/"


def _first_str(params: Optional[Mapping[str, Any]], keys: Sequence[str]) -> Optional[str]:
    if not isinstance(params, Mapping):
        return None
    for key in keys:
        value = params.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def extract_target_file(params: Optional[Mapping[str, Any]]) -> Optional[str]:
    return _first_str(params, TARGET_FILE_KEYS)


def extract_git_branch(params: Optional[Mapping[str, Any]]) -> Optional[str]:
    branch = _first_str(params, GIT_BRANCH_KEYS)
    if branch and branch.startswith(_HEADS_PREFIX):
        branch = branch[len(_HEADS_PREFIX):]
    return branch or None


def flag(params: Optional[Mapping[str, Any]], *keys: str) -> Any:
    """Value of the first present key (camelCase and snake_case spellings)."""
    if not isinstance(params, Mapping):
        return None
    for key in keys:
        if key in params:
            return params[key]
    return None


# ================================
# Action categories
# ================================

GIT_PUSH = "git_push"
FILE_WRITE = "file_write"
DATABASE_OPERATION = "database_operation"
TOOL_EXECUTION = "tool_execution"

ACTION_ALIASES = {
    "git_push": GIT_PUSH,
    "push": GIT_PUSH,
    "push_branch": GIT_PUSH,
    "file_write": FILE_WRITE,
    "write_file": FILE_WRITE,
    "edit_file": FILE_WRITE,
    "create_file": FILE_WRITE,
    "database_operation": DATABASE_OPERATION,
    "db_operation": DATABASE_OPERATION,
    "run_sql": DATABASE_OPERATION,
}


def resolve_action(tool_name: Optional[str], declared: Optional[str] = None) -> str:
    """Action category for a tool: its declared category, a known alias, or tool_execution."""
    if declared:
        return declared
    if tool_name:
        return ACTION_ALIASES.get(tool_name, TOOL_EXECUTION)
    return TOOL_EXECUTION
