"""
OPS AGENT LOOP - WITH THE SAFETY CORE
=====================================

A small ops agent with three tools (read a file, push a branch, delete a
branch). Every tool_use block goes through the dispatcher: iron laws, loop
guard, strikes and approvals. Deleting a branch needs a human decision,
which this script asks for on stdin.

Usage:
    set ANTHROPIC_API_KEY=sk-ant-...
    python examples/anthropic_agent_loop.py
"""

import os
import sys
import time

import anthropic

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from ops_guard import (
    AuditLog,
    CompositeAuditSink,
    InMemoryAuditSink,
    JsonlAuditSink,
    RequestOrigin,
    SafetyConfig,
    SafetyCore,
    Tool,
    ToolDispatcher,
    ToolResult,
)
from ops_guard.adapters.anthropic_adapter import (
    extract_text,
    extract_tool_calls,
    format_tools,
    tool_results_message,
)

MODEL = "claude-haiku-4-5-20251001"
MAX_ROUNDS = 12

client = anthropic.Anthropic()


# ─────────────────────────────────────────
# Mock tools
# ─────────────────────────────────────────

def read_file(params, ctx):
    return ToolResult(success=True, data={"path": params.get("path"), "content": "TODO: fix login"})


def git_push(params, ctx):
    return ToolResult(success=True, data={"pushed": params.get("branch")})


def delete_branch(params, ctx):
    return ToolResult(success=True, data={"deleted": params.get("branch"), "approvedBy": ctx.approved_by})


config = SafetyConfig.from_env()
memory = InMemoryAuditSink()
core = SafetyCore(
    config=config,
    audit=AuditLog(CompositeAuditSink(memory, JsonlAuditSink(config.audit_dir))),
)
core.registry.register(Tool(
    "read_file", "Read a file from the repository", "read", read_file,
    input_schema={"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]},
))
core.registry.register(Tool(
    "git_push", "Push a branch to origin", "modify", git_push,
    input_schema={
        "type": "object",
        "properties": {"branch": {"type": "string"}, "force": {"type": "boolean"}},
        "required": ["branch"],
    },
))
core.registry.register(Tool(
    "delete_branch", "Delete a remote branch", "delete", delete_branch,
    input_schema={"type": "object", "properties": {"branch": {"type": "string"}}, "required": ["branch"]},
))
dispatcher = ToolDispatcher(core)
origin = RequestOrigin(channel="cli", conversation_id=f"demo-{int(time.time())}", user_id="operator")

system_prompt = (
    "You are an ops agent for a git repository. Read TODO.md, push the "
    "current work to main, then delete the stale branch 'old-login'. "
    "If a tool result says an action is blocked, explain why and stop."
)

messages = [{"role": "user", "content": "Please tidy up the repository."}]

print()
print("=" * 70)
print("  OPS AGENT LOOP - WITH THE SAFETY CORE")
print("=" * 70)
sys.stdout.flush()

for round_num in range(1, MAX_ROUNDS + 1):
    try:
        response = client.messages.create(
            model=MODEL,
            max_tokens=400,
            system=system_prompt,
            tools=format_tools(core.registry),
            messages=messages,
        )
    except anthropic.BadRequestError as e:
        print(f"  Round {round_num:3d} | API ERROR: {e}")
        break

    calls = extract_tool_calls(response)
    text = extract_text(response)
    if text:
        print(f"  Round {round_num:3d} | AGENT: {text[:90]}")

    if not calls or response.stop_reason != "tool_use":
        break

    report = dispatcher.process_turn(calls, origin)
    for outcome in report.outcomes:
        print(f"            | {outcome.call.name}({outcome.call.args}) -> {outcome.to_model_content()[:90]}")

    messages.append({"role": "assistant", "content": response.content})
    messages.append(tool_results_message(report.outcomes))

    if report.requires_approval:
        print()
        print(f"  >>> {report.approval_reason}")
        for request in report.approvals:
            answer = input(f"  Approve {request.tool}({request.params})? [y/N] ").strip().lower()
            if answer == "y":
                result = dispatcher.approve_action(request.id, approved_by=origin.user_id or "operator")
            else:
                result = dispatcher.reject_action(request.id, rejected_by=origin.user_id or "operator")
            print(f"  >>> {result.to_dict()}")
            messages.append({"role": "user", "content": f"Approval {request.id}: {result.to_dict()}"})
    sys.stdout.flush()

print()
print("=" * 70)
print("  RESULTS")
print("=" * 70)
for k, v in dispatcher.stats.items():
    print(f"  {k}: {v}")
print(f"  audit entries: {len(memory.entries)}")
print("=" * 70)
