"""Shared fixtures: small Claude, Codex and OpenCode sources on disk."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest

CODEX_UUID = "0199a1b2-c3d4-7e5f-8a9b-0c1d2e3f4a5b"


def _write_jsonl(path: Path, records: list[dict | str]) -> Path:
    """Write records one per line; strings are written verbatim."""
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def _write_json(path: Path, data: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def write_jsonl() -> Callable[[Path, list[dict | str]], Path]:
    return _write_jsonl


@pytest.fixture
def claude_records() -> list[dict]:
    """A two-message Claude session: "Hello" and "Hi!" with 100/50 tokens."""
    return [
        {
            "type": "user",
            "sessionId": "sess-1",
            "cwd": "/home/dev/proj",
            "version": "2.0.1",
            "gitBranch": "main",
            "timestamp": "2025-01-15T10:00:00Z",
            "message": {"role": "user", "content": "Hello"},
        },
        {
            "type": "assistant",
            "sessionId": "sess-1",
            "cwd": "/home/dev/proj",
            "timestamp": "2025-01-15T10:00:05Z",
            "message": {
                "id": "msg_1",
                "role": "assistant",
                "model": "claude-sonnet-4-5-20250929",
                "content": [{"type": "text", "text": "Hi!"}],
                "usage": {"input_tokens": 100, "output_tokens": 50},
            },
        },
    ]


@pytest.fixture
def claude_file(tmp_path: Path, claude_records: list[dict]) -> Path:
    return _write_jsonl(tmp_path / "claude" / "proj" / "sess-1.jsonl", claude_records)


@pytest.fixture
def codex_records() -> list[dict]:
    """A Codex session with one shell call that reads a file."""
    return [
        {
            "timestamp": "2025-02-01T09:00:00Z",
            "type": "session_meta",
            "payload": {
                "id": "codex-1",
                "timestamp": "2025-02-01T09:00:00Z",
                "cwd": "/home/dev/api",
                "cli_version": "0.46.0",
                "git": {"branch": "dev"},
            },
        },
        {
            "timestamp": "2025-02-01T09:00:01Z",
            "type": "turn_context",
            "payload": {"model": "gpt-5-codex"},
        },
        {
            "timestamp": "2025-02-01T09:00:02Z",
            "type": "event_msg",
            "payload": {"type": "user_message", "message": "Summarize the readme"},
        },
        {
            "timestamp": "2025-02-01T09:00:03Z",
            "type": "response_item",
            "payload": {
                "type": "function_call",
                "name": "shell",
                "call_id": "call_1",
                "arguments": json.dumps({"command": ["bash", "-lc", "cat README.md"]}),
            },
        },
        {
            "timestamp": "2025-02-01T09:00:04Z",
            "type": "response_item",
            "payload": {
                "type": "function_call_output",
                "call_id": "call_1",
                "output": json.dumps({"output": "hello", "metadata": {"exit_code": 0}}),
            },
        },
        {
            "timestamp": "2025-02-01T09:00:05Z",
            "type": "response_item",
            "payload": {
                "type": "message",
                "role": "assistant",
                "content": [{"type": "output_text", "text": "The readme says hello."}],
            },
        },
        {
            "timestamp": "2025-02-01T09:00:06Z",
            "type": "event_msg",
            "payload": {
                "type": "token_count",
                "info": {
                    "last_token_usage": {
                        "input_tokens": 1200,
                        "output_tokens": 300,
                        "cached_input_tokens": 1000,
                    }
                },
            },
        },
    ]


@pytest.fixture
def codex_file(tmp_path: Path, codex_records: list[dict]) -> Path:
    name = f"rollout-2025-02-01T09-00-00-{CODEX_UUID}.jsonl"
    return _write_jsonl(tmp_path / "codex" / "2025" / "02" / "01" / name, codex_records)


@pytest.fixture
def opencode_root(tmp_path: Path) -> Path:
    """A storage root holding session ``ses_001``: one user and one assistant message."""
    root = tmp_path / "storage"
    _write_json(
        root / "session" / "proj1" / "ses_001.json",
        {
            "id": "ses_001",
            "title": "Fix login",
            "directory": "/home/dev/web",
            "time": {"created": 1736935200000},
        },
    )
    _write_json(
        root / "message" / "ses_001" / "msg_001.json",
        {"id": "msg_001", "sessionID": "ses_001", "role": "user", "time": {"created": 1736935201000}},
    )
    _write_json(
        root / "message" / "ses_001" / "msg_002.json",
        {
            "id": "msg_002",
            "sessionID": "ses_001",
            "role": "assistant",
            "modelID": "claude-sonnet-4",
            "time": {"created": 1736935202000, "completed": 1736935210000},
            "tokens": {"input": 500, "output": 80, "cache": {"read": 10, "write": 5}},
            "cost": 0.0123,
        },
    )
    _write_json(
        root / "part" / "msg_001" / "prt_001.json",
        {"id": "prt_001", "type": "text", "text": "Fix the login bug"},
    )
    _write_json(
        root / "part" / "msg_002" / "prt_001.json",
        {"id": "prt_001", "type": "text", "text": "Looking at it."},
    )
    _write_json(
        root / "part" / "msg_002" / "prt_002.json",
        {
            "id": "prt_002",
            "type": "tool",
            "tool": "read",
            "callID": "call_9",
            "state": {
                "status": "completed",
                "input": {"filePath": "/home/dev/web/login.py"},
                "title": "login.py",
            },
        },
    )
    return root
