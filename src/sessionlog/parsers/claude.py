"""Parser for Claude Code session logs (``~/.claude/projects/**/*.jsonl``).

Each line is one record with a ``type`` of ``user``, ``assistant`` or
``queue-operation`` (plus bookkeeping types that are ignored). Tool calls
appear as ``tool_use`` blocks in assistant records and are resolved by
``tool_result`` blocks in the following user record.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import Any

from sessionlog.errors import EmptySessionError
from sessionlog.parsers.base import LineParser
from sessionlog.parsers.models import (
    ContentBlock,
    Message,
    ModelChangeBlock,
    QueueOperationBlock,
    Role,
    Session,
    SessionMetadata,
    TextBlock,
    ThinkingBlock,
    Tool,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)
from sessionlog.parsers.tools import CLAUDE_FILE_OPS, summarize_claude_tool, truncate

logger = logging.getLogger(__name__)

CLAUDE_RECORD_TYPES = frozenset({"user", "assistant", "queue-operation"})

_SUMMARY_RE = re.compile(r"<summary>(.*?)</summary>", re.DOTALL)
_ERROR_PREFIXES = ("<tool_use_error>", "Error")


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def parse_usage(raw: Any) -> Usage | None:
    """Map a Claude ``message.usage`` object onto Usage."""
    if not isinstance(raw, dict):
        return None
    return Usage(
        input_tokens=_int_or_none(raw.get("input_tokens")),
        output_tokens=_int_or_none(raw.get("output_tokens")),
        cache_read_tokens=_int_or_none(raw.get("cache_read_input_tokens")),
        cache_creation_tokens=_int_or_none(raw.get("cache_creation_input_tokens")),
    )


def _result_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and isinstance(block.get("text"), str)
        )
    return ""


def tool_result_succeeded(block: dict[str, Any]) -> bool:
    """Decide success for a ``tool_result`` block.

    ``is_error`` is authoritative when present. Without it, a result counts
    as successful only when it carries non-empty output that does not look
    like an error; anything else is a failure.
    """
    is_error = block.get("is_error")
    if is_error is True:
        return False
    if is_error is False:
        return True
    text = _result_text(block.get("content")).strip()
    if not text:
        return False
    return not text.startswith(_ERROR_PREFIXES)


def extract_queue_summary(content: str) -> str:
    match = _SUMMARY_RE.search(content)
    if match:
        return match.group(1).strip()
    return content[:100].strip()


class ClaudeParser(LineParser):
    """Parse Claude Code JSON-lines transcripts into a Session."""

    def _build(self, records: Iterator[tuple[int, dict[str, Any]]], source: str) -> Session:
        state = _ClaudeState()

        for line_num, record in records:
            state.seen_records += 1
            ts = self._timestamp(record, source, line_num)
            if ts is not None and state.started_at is None:
                state.started_at = ts

            session_id = record.get("sessionId")
            if isinstance(session_id, str) and session_id:
                if state.session_id is None:
                    state.session_id = session_id
                    state.project_path = str(record.get("cwd") or "")
                    state.version = record.get("version")
                    state.git_branch = record.get("gitBranch") or None
                elif session_id != state.session_id:
                    self._issue(
                        "multi_session",
                        source,
                        line_num,
                        f"expected {state.session_id}, got {session_id}",
                    )

            record_type = record.get("type")
            if record_type == "user":
                if record.get("isMeta"):
                    continue
                self._user_record(record, ts, state)
            elif record_type == "assistant":
                self._assistant_record(record, ts, state)
            elif record_type == "queue-operation":
                content = record.get("content")
                if isinstance(content, str):
                    summary = extract_queue_summary(content)
                    if summary:
                        state.messages.append(
                            Message(
                                role=Role.SYSTEM,
                                timestamp=ts,
                                content=[QueueOperationBlock(summary=summary)],
                            )
                        )

        if state.seen_records == 0:
            raise EmptySessionError(f"No records found in {source}")

        session_id = state.session_id or Path(source).stem
        metadata = SessionMetadata(
            session_id=session_id,
            tool=Tool.CLAUDE,
            project_path=state.project_path,
            started_at=state.started_at,
            version=state.version if isinstance(state.version, str) else None,
            git_branch=state.git_branch if isinstance(state.git_branch, str) else None,
            model=state.current_model,
        )
        return Session(metadata=metadata, messages=state.messages)

    def _user_record(
        self, record: dict[str, Any], ts: datetime | None, state: _ClaudeState
    ) -> None:
        message = record.get("message")
        if not isinstance(message, dict) or message.get("role", "user") != "user":
            return

        content = message.get("content")
        blocks: list[ContentBlock] = []

        if isinstance(content, str):
            if content.startswith("<"):
                return
            if content.strip():
                blocks.append(TextBlock(text=content.strip()))
        elif isinstance(content, list):
            for block in content:
                if not isinstance(block, dict):
                    continue
                block_type = block.get("type")
                if block_type == "text":
                    text = block.get("text")
                    if isinstance(text, str) and text.strip() and not text.startswith("<"):
                        blocks.append(TextBlock(text=text.strip()))
                elif block_type == "tool_result":
                    blocks.append(self._tool_result(block, state))

        if blocks:
            state.messages.append(Message(role=Role.USER, timestamp=ts, content=blocks))

    def _tool_result(self, block: dict[str, Any], state: _ClaudeState) -> ToolResultBlock:
        tool_use_id = str(block.get("tool_use_id") or "")
        name, args = state.pending_tools.pop(tool_use_id, ("unknown", {}))
        success = tool_result_succeeded(block)

        file_op = CLAUDE_FILE_OPS.get(name)
        file_path = args.get("file_path")
        if not success or not isinstance(file_path, str):
            file_op, file_path = None, None

        summary = summarize_claude_tool(name, args) if args else truncate(
            _result_text(block.get("content")).strip().replace("\n", " "), 100
        )
        return ToolResultBlock(
            tool_use_id=tool_use_id,
            name=name,
            success=success,
            summary=summary,
            file_op=file_op,
            file_path=file_path,
        )

    def _assistant_record(
        self, record: dict[str, Any], ts: datetime | None, state: _ClaudeState
    ) -> None:
        message = record.get("message")
        if not isinstance(message, dict) or message.get("role", "assistant") != "assistant":
            return

        blocks: list[ContentBlock] = []
        model = message.get("model")
        if isinstance(model, str) and model != "<synthetic>" and model != state.current_model:
            state.current_model = model
            blocks.append(ModelChangeBlock(model=model))

        # Streaming splits one API response over several records sharing
        # message.id and usage; count that usage once.
        usage = None
        message_id = message.get("id")
        if message_id is None or message_id not in state.usage_ids:
            usage = parse_usage(message.get("usage"))
            if message_id is not None:
                state.usage_ids.add(message_id)

        content = message.get("content")
        if isinstance(content, str) and content.strip():
            blocks.append(TextBlock(text=content.strip()))
        elif isinstance(content, list):
            for block in content:
                if not isinstance(block, dict):
                    continue
                block_type = block.get("type")
                if block_type == "text":
                    text = block.get("text")
                    if isinstance(text, str) and text.strip():
                        blocks.append(TextBlock(text=text.strip()))
                elif block_type == "thinking":
                    thinking = block.get("thinking")
                    if isinstance(thinking, str) and thinking:
                        blocks.append(ThinkingBlock(text=thinking))
                elif block_type == "tool_use":
                    tool_id = str(block.get("id") or "")
                    name = str(block.get("name") or "unknown")
                    args = block.get("input")
                    if not isinstance(args, dict):
                        args = {}
                    state.pending_tools[tool_id] = (name, args)
                    blocks.append(ToolUseBlock(id=tool_id, name=name, input=args))

        if blocks:
            state.messages.append(
                Message(
                    role=Role.ASSISTANT,
                    timestamp=ts,
                    model=model if isinstance(model, str) else None,
                    content=blocks,
                    usage=usage,
                )
            )


class _ClaudeState:
    """Mutable fold state for one Claude parse."""

    def __init__(self) -> None:
        self.seen_records = 0
        self.session_id: str | None = None
        self.project_path = ""
        self.version: Any = None
        self.git_branch: Any = None
        self.started_at: datetime | None = None
        self.current_model: str | None = None
        self.messages: list[Message] = []
        self.pending_tools: dict[str, tuple[str, dict[str, Any]]] = {}
        self.usage_ids: set[str] = set()
