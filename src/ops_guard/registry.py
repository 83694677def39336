"""ops_guard.registry

Central registration and lookup for tools.

A tool is opaque to the safety core: a name, a declared permission tier and
an ``execute(params, context)`` callable returning a ``ToolResult`` (or a
``{success, data, error}`` mapping). ``execute`` may be a coroutine function
when the tool is dispatched through :class:`ops_guard.AsyncToolDispatcher`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from .config import SafetyConfig
from .types import APPROVAL_REQUIRED_PREFIX, PermissionTier, ToolExecutionContext, ToolResult


@dataclass
class Tool:
    name: str
    description: str
    permission_tier: PermissionTier
    execute: Callable[[Dict[str, Any], ToolExecutionContext], Any]
    # Action category for the iron laws; derived from the name when None.
    action: Optional[str] = None
    input_schema: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def __post_init__(self) -> None:
        self.permission_tier = PermissionTier.parse(self.permission_tier)


class ToolRegistry:
    def __init__(self, config: Optional[SafetyConfig] = None, tools: Iterable[Tool] = ()):
        self.cfg = config or SafetyConfig()
        self._tools: Dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list(self) -> List[str]:
        return list(self._tools)

    def all(self) -> List[Tool]:
        return list(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def requires_approval(self, tool: Tool) -> bool:
        return self.cfg.tier_requires_approval(tool.permission_tier)

    def approval_gate(self, tool: Tool, context: ToolExecutionContext) -> Optional[ToolResult]:
        """``APPROVAL_REQUIRED:<tier>`` for a gated tool called without an approval, else None."""
        if context.approval_id is None and self.requires_approval(tool):
            return ToolResult.failure(f"{APPROVAL_REQUIRED_PREFIX}{tool.permission_tier.value}")
        return None

    def highest_tier(self, names: Iterable[str]) -> PermissionTier:
        """Highest declared tier among the named tools (unknown names are skipped)."""
        highest = PermissionTier.READ
        for name in names:
            tool = self._tools.get(name)
            if tool is not None and tool.permission_tier.rank > highest.rank:
                highest = tool.permission_tier
        return highest
