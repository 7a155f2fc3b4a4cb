"""Human-readable summaries of tool-call arguments."""

from __future__ import annotations

import json
from typing import Any

_DEFAULT_LIMIT = 150
_COMMAND_LIMIT = 200


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, appending ``...`` when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def _compact_json(value: Any) -> str:
    return truncate(json.dumps(value, ensure_ascii=False, separators=(",", ":")), _DEFAULT_LIMIT)


def _join_command(command: Any) -> str:
    if isinstance(command, list):
        return " ".join(str(part) for part in command)
    if isinstance(command, str):
        return command
    return ""


def _pattern_summary(args: dict[str, Any]) -> str:
    pattern = args.get("pattern", "")
    path = args.get("path")
    if path:
        return f'pattern="{pattern}" path="{path}"'
    return f'pattern="{pattern}"'


def summarize_claude_tool(name: str, args: dict[str, Any]) -> str:
    """Summarize a Claude Code tool input."""
    if name == "Bash":
        command = truncate(str(args.get("command", "")), _COMMAND_LIMIT)
        return command.replace("\n", " ↵ ")
    if name in ("Read", "Write", "Edit", "MultiEdit", "NotebookEdit"):
        return f'file="{args.get("file_path", args.get("notebook_path", ""))}"'
    if name in ("Glob", "Grep"):
        return _pattern_summary(args)
    if name == "Task":
        return f'{args.get("subagent_type", "")}: "{args.get("description", "")}"'
    if name == "WebFetch":
        return f'url="{args.get("url", "")}"'
    if name == "WebSearch":
        return f'query="{args.get("query", "")}"'
    if name == "TodoWrite":
        todos = args.get("todos")
        if isinstance(todos, list):
            items = [
                f"{t['status']}: {t['content']}"
                for t in todos
                if isinstance(t, dict) and "status" in t and "content" in t
            ]
            return truncate("; ".join(items), _DEFAULT_LIMIT)
    return _compact_json(args)


def summarize_codex_function(name: str, args: dict[str, Any]) -> str:
    """Summarize a Codex function-call argument object."""
    if name in ("shell", "local_shell", "exec_command", "shell_command"):
        command = _join_command(args.get("command", args.get("cmd")))
        return truncate(command, _COMMAND_LIMIT).replace("\n", " ")
    if name in ("read_file", "write_file"):
        return f'file="{args.get("path", "")}"'
    if name == "update_plan":
        plan = args.get("plan")
        if isinstance(plan, list):
            steps = [
                f"{s['status']}: {s['step']}"
                for s in plan
                if isinstance(s, dict) and "status" in s and "step" in s
            ]
            return truncate("; ".join(steps), _DEFAULT_LIMIT)
    if name == "apply_patch" and "input" in args:
        return truncate(_first_patch_target(str(args["input"])), _DEFAULT_LIMIT)
    return _compact_json(args)


def _first_patch_target(patch: str) -> str:
    for line in patch.splitlines():
        for marker in ("*** Update File: ", "*** Add File: ", "*** Delete File: "):
            if line.startswith(marker):
                return f'file="{line[len(marker):].strip()}"'
    return patch.splitlines()[0] if patch else ""


def summarize_opencode_tool(title: str | None, description: str | None) -> str:
    """Summarize an OpenCode tool part from its title or description."""
    return truncate(title or description or "", 100)


CLAUDE_FILE_OPS: dict[str, str] = {
    "Read": "read",
    "Write": "write",
    "Edit": "edit",
    "MultiEdit": "edit",
}

OPENCODE_FILE_OPS: dict[str, str] = {
    "read": "read",
    "write": "write",
    "edit": "edit",
}
