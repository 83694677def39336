"""ops_guard.adapters.anthropic_adapter

Helpers for running the dispatch wrapper inside an Anthropic Messages API loop.

This module is dependency-free: it accepts SDK response objects or plain
dicts, and returns plain dicts ready for ``client.messages.create``.
It does **not** call any Anthropic API.

Usage:
    from ops_guard.adapters.anthropic_adapter import (
        extract_tool_calls, format_tools, tool_results_message,
    )

    response = client.messages.create(..., tools=format_tools(core.registry))
    report = dispatcher.process_turn(extract_tool_calls(response), origin)
    messages.append({"role": "assistant", "content": response.content})
    messages.append(tool_results_message(report.outcomes))
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from ..dispatch import DispatchOutcome
from ..registry import ToolRegistry
from ..types import ToolCall

APPROVAL_MARKER = " [REQUIRES APPROVAL]"


def _get(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def format_tools(registry: ToolRegistry) -> List[Dict[str, Any]]:
    """Tool definitions for the ``tools`` parameter.

    Tools that need a human decision carry an approval marker in their
    description so the model can tell the user up front.
    """
    out: List[Dict[str, Any]] = []
    for tool in registry.all():
        description = tool.description
        if registry.requires_approval(tool):
            description += APPROVAL_MARKER
        out.append({
            "name": tool.name,
            "description": description,
            "input_schema": tool.input_schema,
        })
    return out


def extract_tool_calls(response: Any) -> List[ToolCall]:
    """Extract ToolCall objects from the ``tool_use`` blocks of a response.

    Invalid blocks are skipped.
    """
    calls: List[ToolCall] = []
    for block in _get(response, "content") or []:
        if _get(block, "type") != "tool_use":
            continue
        name = _get(block, "name")
        if not isinstance(name, str) or not name:
            continue
        args = _get(block, "input")
        calls.append(ToolCall(
            name=name,
            args=dict(args) if isinstance(args, dict) else {},
            id=_get(block, "id"),
        ))
    return calls


def extract_text(response: Any) -> Optional[str]:
    """Concatenated text blocks of a response, or None when there are none."""
    parts = [
        _get(block, "text")
        for block in _get(response, "content") or []
        if _get(block, "type") == "text"
    ]
    parts = [p for p in parts if isinstance(p, str)]
    return "".join(parts) if parts else None


def tool_result_block(outcome: DispatchOutcome) -> Dict[str, Any]:
    block: Dict[str, Any] = {
        "type": "tool_result",
        "tool_use_id": outcome.call.id,
        "content": outcome.to_model_content(),
    }
    if not outcome.result.success and outcome.approval is None:
        block["is_error"] = True
    return block


def tool_results_message(outcomes: Iterable[DispatchOutcome]) -> Dict[str, Any]:
    """One user message carrying a ``tool_result`` for every dispatched call."""
    return {"role": "user", "content": [tool_result_block(o) for o in outcomes]}
