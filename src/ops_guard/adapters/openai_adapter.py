"""ops_guard.adapters.openai_adapter

Helpers for integrating the dispatch wrapper with OpenAI-style message payloads.

This module is dependency-free: it operates on plain dicts/lists.
It does **not** call any OpenAI API.

Supported patterns:
- Chat Completions: response["choices"][0]["message"]["tool_calls"]
- Function calling: response["choices"][0]["message"]["function_call"]

Usage with ToolDispatcher:
    from ops_guard.adapters.openai_adapter import (
        extract_tool_calls_from_chat_completion,
        tool_messages,
    )

    calls = extract_tool_calls_from_chat_completion(response)
    report = dispatcher.process_turn(calls)
    messages.append(response["choices"][0]["message"])
    messages.extend(tool_messages(report.outcomes))
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional

from ..dispatch import DispatchOutcome
from ..registry import ToolRegistry
from ..types import ToolCall

APPROVAL_MARKER = " [REQUIRES APPROVAL]"


def format_tools(registry: ToolRegistry) -> List[Dict[str, Any]]:
    """Function-tool definitions for the ``tools`` parameter."""
    out: List[Dict[str, Any]] = []
    for tool in registry.all():
        description = tool.description
        if registry.requires_approval(tool):
            description += APPROVAL_MARKER
        out.append({
            "type": "function",
            "function": {
                "name": tool.name,
                "description": description,
                "parameters": tool.input_schema,
            },
        })
    return out


def extract_tool_calls_from_chat_completion(resp: Dict[str, Any]) -> List[ToolCall]:
    """Extract ToolCall objects from a ChatCompletions-like response dict.

    Handles both the tool_calls format and legacy function_call format.
    Invalid entries are skipped.
    """
    choices = resp.get("choices") or []
    msg = choices[0].get("message") if choices and isinstance(choices[0], dict) else None
    tool_calls = (msg or {}).get("tool_calls") or []

    calls: List[ToolCall] = []

    # Modern tool_calls format
    for tc in tool_calls:
        if not isinstance(tc, dict):
            continue
        fn = tc.get("function") or {}
        name = fn.get("name")
        if not isinstance(name, str) or not name:
            continue
        calls.append(ToolCall(name=name, args=_parse_args(fn.get("arguments")), id=tc.get("id")))

    # Legacy function_call format (fallback)
    if not calls and msg:
        fc = msg.get("function_call")
        if isinstance(fc, dict):
            name = fc.get("name")
            if isinstance(name, str) and name:
                calls.append(ToolCall(name=name, args=_parse_args(fc.get("arguments"))))

    return calls


def extract_assistant_text(resp: Dict[str, Any]) -> Optional[str]:
    """Extract assistant text content from a ChatCompletions-like response."""
    choices = resp.get("choices") or []
    msg = choices[0].get("message") if choices and isinstance(choices[0], dict) else None
    content = (msg or {}).get("content")
    return content if isinstance(content, str) else None


def tool_message(outcome: DispatchOutcome) -> Dict[str, Any]:
    return {
        "role": "tool",
        "tool_call_id": outcome.call.id,
        "content": outcome.to_model_content(),
    }


def tool_messages(outcomes: Iterable[DispatchOutcome]) -> List[Dict[str, Any]]:
    """One ``role=tool`` message per dispatched call, in order."""
    return [tool_message(o) for o in outcomes]


def _parse_args(args_raw: Any) -> Dict[str, Any]:
    """Parse tool call arguments from various formats."""
    if isinstance(args_raw, dict):
        return args_raw
    if isinstance(args_raw, str) and args_raw.strip():
        try:
            parsed = json.loads(args_raw)
        except ValueError:
            return {}
        if isinstance(parsed, dict):
            return parsed
    return {}
