"""Parser for Codex rollout logs (``~/.codex/sessions/**/rollout-*.jsonl``).

Every record is an envelope ``{"timestamp", "type", "payload"}``:

- ``session_meta``: session header (id, cwd, cli_version, git)
- ``event_msg``: user input (``user_message``) and token accounting
  (``token_count``)
- ``response_item``: assistant output, function calls and their outputs
- ``turn_context``: model for the upcoming turn

User text is taken from ``event_msg`` only; ``response_item`` messages with
role ``user`` duplicate it and are ignored.
"""

from __future__ import annotations

import json
import logging
import re
import shlex
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import Any

from sessionlog.errors import EmptySessionError
from sessionlog.parsers.base import LineParser, parse_timestamp
from sessionlog.parsers.models import (
    Message,
    ModelChangeBlock,
    Role,
    Session,
    SessionMetadata,
    TextBlock,
    ThinkingBlock,
    Tool,
    ToolResultBlock,
    Usage,
)
from sessionlog.parsers.tools import summarize_codex_function

logger = logging.getLogger(__name__)

CODEX_RECORD_TYPES = frozenset({"session_meta", "response_item", "event_msg", "turn_context"})

SHELL_FUNCTIONS = frozenset({"shell", "local_shell", "exec_command", "shell_command"})

_CONTEXT_RE = re.compile(r'<context ref="[^"]*">.*?</context>', re.DOTALL)
_MENTION_RE = re.compile(r"\[@[^\]]*\]\([^)]*\)\s*")
_READ_COMMANDS = frozenset({"cat", "less", "head", "tail", "bat"})
_SHELL_SEPARATORS = frozenset({"|", "||", "&&", ";", ">", ">>"})
_EXIT_CODE_RE = re.compile(r"^Exit code:\s*(-?\d+)", re.MULTILINE)


def clean_user_message(text: str) -> str:
    """Strip inline ``<context ref=...>`` blocks and ``[@file](url)`` mentions."""
    text = _CONTEXT_RE.sub("", text)
    text = _MENTION_RE.sub("", text)
    return text.strip()


def shell_read_target(command: str) -> str | None:
    """Return the first file a ``cat``/``less``/``head``/``tail``/``bat`` reads.

    Quoted sub-commands (``bash -lc "cat a.py"``) are searched too. Flags
    and bare numbers (``head -n 20``) are not file names.
    """
    try:
        tokens = shlex.split(command)
    except ValueError:
        tokens = command.split()

    reading = False
    for token in tokens:
        if " " in token:
            nested = shell_read_target(token)
            if nested:
                return nested
            continue
        word = token.rstrip(";|&")
        if token in _SHELL_SEPARATORS:
            reading = False
        elif reading and word and not word.startswith("-") and not word.isdigit():
            return word
        elif word in _READ_COMMANDS:
            reading = True
        if word != token:
            reading = False
    return None


def _decode_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            return {"raw": raw}
        if isinstance(decoded, dict):
            return decoded
    return {}


def _exit_code(payload: dict[str, Any]) -> int | None:
    code = payload.get("exit_code")
    if code is None and isinstance(payload.get("metadata"), dict):
        code = payload["metadata"].get("exit_code")
    if isinstance(code, bool) or not isinstance(code, int):
        return None
    return code


def function_output_succeeded(output: Any) -> bool:
    """Decide success for a ``function_call_output`` payload's ``output``.

    An exit code is authoritative. Without one, only ``success: true`` counts
    as success; output that carries no status is a failure.
    """
    if isinstance(output, dict):
        decoded: Any = output
    elif isinstance(output, str):
        if not output.strip():
            return False
        try:
            decoded = json.loads(output)
        except json.JSONDecodeError:
            decoded = None
        if not isinstance(decoded, dict):
            match = _EXIT_CODE_RE.search(output)
            if match:
                return int(match.group(1)) == 0
            return False
    else:
        return False

    code = _exit_code(decoded)
    if code is not None:
        return code == 0
    if decoded.get("error"):
        return False
    success = decoded.get("success")
    return success is True


def parse_token_usage(info: Any) -> Usage | None:
    """Map ``token_count`` info onto Usage, preferring the per-turn figures."""
    if not isinstance(info, dict):
        return None
    raw = info.get("last_token_usage")
    if not isinstance(raw, dict):
        return None

    def pick(key: str) -> int | None:
        value = raw.get(key)
        return value if isinstance(value, int) and not isinstance(value, bool) else None

    return Usage(
        input_tokens=pick("input_tokens"),
        output_tokens=pick("output_tokens"),
        cache_read_tokens=pick("cached_input_tokens"),
    )


class CodexParser(LineParser):
    """Parse Codex rollout transcripts into a Session."""

    def _build(self, records: Iterator[tuple[int, dict[str, Any]]], source: str) -> Session:
        state = _CodexState()

        for line_num, record in records:
            state.seen_records += 1
            ts = self._timestamp(record, source, line_num)
            if ts is not None and state.first_timestamp is None:
                state.first_timestamp = ts

            payload = record.get("payload")
            if not isinstance(payload, dict):
                continue

            record_type = record.get("type")
            if record_type == "session_meta":
                self._session_meta(payload, ts, state, source, line_num)
            elif record_type == "response_item":
                self._response_item(payload, ts, state)
            elif record_type == "event_msg":
                self._event_msg(payload, ts, state)
            elif record_type == "turn_context":
                model = payload.get("model")
                if isinstance(model, str) and model and model != state.current_model:
                    state.current_model = model
                    state.messages.append(
                        Message(
                            role=Role.SYSTEM,
                            timestamp=ts,
                            model=model,
                            content=[ModelChangeBlock(model=model)],
                        )
                    )

        if state.session_id is None and not state.messages:
            raise EmptySessionError(f"No session records found in {source}")

        metadata = SessionMetadata(
            session_id=state.session_id or Path(source).stem,
            tool=Tool.CODEX,
            project_path=state.project_path,
            started_at=state.started_at or state.first_timestamp,
            version=state.version,
            git_branch=state.git_branch,
            model=state.current_model,
        )
        return Session(metadata=metadata, messages=state.messages)

    def _session_meta(
        self,
        payload: dict[str, Any],
        ts: datetime | None,
        state: _CodexState,
        source: str,
        line_num: int,
    ) -> None:
        session_id = payload.get("id")
        if not isinstance(session_id, str) or not session_id:
            return
        if state.session_id is not None:
            if session_id != state.session_id:
                self._issue(
                    "multi_session",
                    source,
                    line_num,
                    f"expected {state.session_id}, got {session_id}",
                )
            return

        state.session_id = session_id
        cwd = payload.get("cwd")
        state.project_path = cwd if isinstance(cwd, str) else ""
        version = payload.get("cli_version")
        state.version = version if isinstance(version, str) else None
        git = payload.get("git")
        if isinstance(git, dict) and isinstance(git.get("branch"), str):
            state.git_branch = git["branch"]
        state.started_at = parse_timestamp(payload.get("timestamp")) or ts

    def _response_item(
        self, payload: dict[str, Any], ts: datetime | None, state: _CodexState
    ) -> None:
        item_type = payload.get("type")

        if item_type == "message":
            if payload.get("role") != "assistant":
                return
            content = payload.get("content")
            if not isinstance(content, list):
                return
            texts = [
                block["text"].strip()
                for block in content
                if isinstance(block, dict)
                and block.get("type") == "output_text"
                and isinstance(block.get("text"), str)
                and block["text"].strip()
            ]
            if texts:
                message = Message(
                    role=Role.ASSISTANT,
                    timestamp=ts,
                    model=state.current_model,
                    content=[TextBlock(text=text) for text in texts],
                    usage=state.pending_usage,
                )
                state.pending_usage = None
                state.messages.append(message)
                state.last_assistant = message

        elif item_type == "reasoning":
            summary = payload.get("summary")
            if isinstance(summary, list):
                parts = [
                    s["text"]
                    for s in summary
                    if isinstance(s, dict) and isinstance(s.get("text"), str)
                ]
                if parts:
                    state.messages.append(
                        Message(
                            role=Role.ASSISTANT,
                            timestamp=ts,
                            model=state.current_model,
                            content=[ThinkingBlock(text="\n".join(parts))],
                        )
                    )

        elif item_type in ("function_call", "custom_tool_call"):
            call_id = payload.get("call_id")
            if not isinstance(call_id, str) or not call_id:
                return
            name = str(payload.get("name") or "unknown")
            if item_type == "custom_tool_call":
                args = {"input": payload.get("input", "")}
            else:
                args = _decode_arguments(payload.get("arguments"))
            state.pending_calls[call_id] = (name, args)

        elif item_type in ("function_call_output", "custom_tool_call_output"):
            call_id = str(payload.get("call_id") or "")
            name, args = state.pending_calls.pop(call_id, ("unknown", {}))
            success = function_output_succeeded(payload.get("output"))

            file_op = None
            file_path = None
            if success and name in SHELL_FUNCTIONS:
                command = args.get("command", args.get("cmd"))
                if isinstance(command, list):
                    command = " ".join(str(part) for part in command)
                if isinstance(command, str):
                    file_path = shell_read_target(command)
                    if file_path:
                        file_op = "read"

            state.messages.append(
                Message(
                    role=Role.ASSISTANT,
                    timestamp=ts,
                    model=state.current_model,
                    content=[
                        ToolResultBlock(
                            tool_use_id=call_id,
                            name=name,
                            success=success,
                            summary=summarize_codex_function(name, args),
                            file_op=file_op,
                            file_path=file_path,
                        )
                    ],
                )
            )

    def _event_msg(self, payload: dict[str, Any], ts: datetime | None, state: _CodexState) -> None:
        event_type = payload.get("type")
        if event_type == "user_message":
            raw = payload.get("message")
            if not isinstance(raw, str):
                return
            text = clean_user_message(raw)
            if text:
                state.messages.append(
                    Message(role=Role.USER, timestamp=ts, content=[TextBlock(text=text)])
                )
        elif event_type == "token_count":
            usage = parse_token_usage(payload.get("info"))
            if usage is None:
                return
            if state.last_assistant is not None and state.last_assistant.usage is None:
                state.last_assistant.usage = usage
            else:
                state.pending_usage = usage


class _CodexState:
    """Mutable fold state for one Codex parse."""

    def __init__(self) -> None:
        self.seen_records = 0
        self.session_id: str | None = None
        self.project_path = ""
        self.version: str | None = None
        self.git_branch: str | None = None
        self.started_at: datetime | None = None
        self.first_timestamp: datetime | None = None
        self.current_model: str | None = None
        self.messages: list[Message] = []
        self.pending_calls: dict[str, tuple[str, dict[str, Any]]] = {}
        self.pending_usage: Usage | None = None
        self.last_assistant: Message | None = None
