"""openai_agent_example.py

Shows how to put the safety core in front of a raw OpenAI ChatCompletions agent loop.

This is a demonstration: it uses mock responses instead of real API calls.

Usage (no API key needed):
    python examples/openai_agent_example.py
"""

from __future__ import annotations

import json
import os
import sys

# Allow running this example from a repo clone without installing the package
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from typing import Any, Dict, List

from ops_guard import InMemoryAuditSink, AuditLog, RequestOrigin, SafetyCore, Tool, ToolDispatcher, ToolResult
from ops_guard.adapters.openai_adapter import (
    extract_assistant_text,
    extract_tool_calls_from_chat_completion,
    tool_messages,
)


def mock_openai_response_with_tool_call(name: str, args: Dict[str, Any], call_id: str) -> Dict[str, Any]:
    """Simulate an OpenAI response that includes a tool call."""
    return {
        "choices": [{
            "message": {
                "role": "assistant",
                "content": None,
                "tool_calls": [{
                    "id": call_id,
                    "type": "function",
                    "function": {
                        "name": name,
                        "arguments": json.dumps(args),
                    },
                }],
            },
        }],
    }


def mock_openai_response_text(text: str) -> Dict[str, Any]:
    """Simulate an OpenAI response with text content."""
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def git_push(params: Dict[str, Any], ctx: Any) -> ToolResult:
    return ToolResult(success=True, data={"pushed": params.get("branch")})


def run_tests(params: Dict[str, Any], ctx: Any) -> ToolResult:
    return ToolResult(success=False, error="3 tests failed")


def main() -> None:
    sink = InMemoryAuditSink()
    core = SafetyCore(audit=AuditLog(sink))
    core.registry.register(Tool("git_push", "Push a branch to origin", "modify", git_push))
    core.registry.register(Tool("run_tests", "Run the test suite", "read", run_tests))
    dispatcher = ToolDispatcher(core)
    origin = RequestOrigin(channel="cli", conversation_id="demo")

    print("=== ops-guard + OpenAI Integration Example ===\n")

    responses = [
        mock_openai_response_with_tool_call("git_push", {"branch": "feature/login"}, "call_1"),
        mock_openai_response_with_tool_call("git_push", {"branch": "main"}, "call_2"),
        mock_openai_response_with_tool_call("run_tests", {"suite": "unit"}, "call_3"),
        mock_openai_response_with_tool_call("run_tests", {"suite": "unit"}, "call_4"),
        mock_openai_response_with_tool_call("run_tests", {"suite": "unit"}, "call_5"),
        mock_openai_response_with_tool_call("run_tests", {"suite": "unit"}, "call_6"),
        mock_openai_response_text("The unit tests keep failing; escalating to you."),
    ]

    messages: List[Dict[str, Any]] = [
        {"role": "system", "content": "You are an ops agent."},
        {"role": "user", "content": "Ship the login feature."},
    ]

    for i, resp in enumerate(responses):
        print(f"--- Turn {i + 1} ---")

        calls = extract_tool_calls_from_chat_completion(resp)
        if calls:
            report = dispatcher.process_turn(calls, origin)
            messages.append(resp["choices"][0]["message"])
            messages.extend(tool_messages(report.outcomes))
            for outcome in report.outcomes:
                print(f"  Tool: {outcome.call.name}({outcome.call.args})")
                print(f"  Result: {outcome.to_model_content()}")
                print(f"  Strikes: {outcome.error_count}")
        else:
            print(f"  Text: {extract_assistant_text(resp)}")

        print()

    print("=== Run Summary ===")
    for k, v in dispatcher.stats.items():
        print(f"  {k}: {v}")
    print(f"  audit entries: {len(sink.entries)}")


if __name__ == "__main__":
    main()
