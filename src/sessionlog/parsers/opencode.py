"""Assembler for OpenCode's fragmented session storage.

OpenCode keeps one JSON object per file under its storage root::

    session/<project_id>/<session_id>.json
    message/<session_id>/<message_id>.json
    part/<message_id>/<part_id>.json

Assembly is split into an index build (which only lists directories) and a
join over that index. Message and part ids are fixed-width and increase
with time, so files are listed in plain name order. Messages are then
ordered by their creation time, with that name order breaking ties.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from sessionlog.errors import EmptySessionError, SessionIOError
from sessionlog.parsers.base import timestamp_from_millis
from sessionlog.parsers.models import (
    ContentBlock,
    Message,
    ModelChangeBlock,
    ParseIssue,
    Role,
    Session,
    SessionMetadata,
    TextBlock,
    ThinkingBlock,
    Tool,
    ToolResultBlock,
    Usage,
)
from sessionlog.parsers.tools import OPENCODE_FILE_OPS, summarize_opencode_tool

logger = logging.getLogger(__name__)

SESSION_PREFIX = "ses_"
_SKIPPED_USER_PREFIXES = ("<file>", "Called the")
def _sorted_json(directory: Path) -> list[Path]:
    return sorted(directory.glob("*.json"), key=lambda p: p.name)


def storage_root_for(path: Path) -> tuple[Path, str | None]:
    """Resolve a user-supplied path to ``(storage_root, session_id)``.

    Accepts a ``message/ses_*`` directory or a storage root; the session id
    is ``None`` for a bare storage root.
    """
    if path.parent.name == "message" and path.name.startswith(SESSION_PREFIX):
        return path.parent.parent, path.name
    return path, None


def is_storage_root(path: Path) -> bool:
    return path.is_dir() and (path / "message").is_dir() and (
        (path / "session").is_dir() or (path / "part").is_dir()
    )


class StorageIndex(BaseModel):
    """File listings for one storage root, keyed for the join."""

    root: Path
    sessions: dict[str, Path] = Field(default_factory=dict)
    messages: dict[str, list[Path]] = Field(default_factory=dict)
    parts: dict[str, list[Path]] = Field(default_factory=dict)

    def session_ids(self) -> list[str]:
        ids = set(self.messages) | set(self.sessions)
        return sorted(ids)

    def fragment_paths(self, session_id: str) -> list[Path]:
        """Every file that contributes to ``session_id``."""
        paths: list[Path] = []
        if session_id in self.sessions:
            paths.append(self.sessions[session_id])
        for message_file in self.messages.get(session_id, []):
            paths.append(message_file)
            paths.extend(self.parts.get(message_file.stem, []))
        return paths

    def newest_mtime(self, session_id: str) -> float:
        """Latest modification time across the session's fragments."""
        newest = 0.0
        for path in self.fragment_paths(session_id):
            try:
                newest = max(newest, path.stat().st_mtime)
            except OSError:
                continue
        return newest


class OpenCodeAssembler:
    """Join OpenCode session, message and part files into Sessions."""

    def __init__(self, storage_root: Path) -> None:
        self.storage_root = storage_root
        self.issues: list[ParseIssue] = []

    @property
    def anomaly_count(self) -> int:
        return sum(1 for issue in self.issues if issue.kind == "partial_assembly")

    def build_index(self, session_ids: list[str] | None = None) -> StorageIndex:
        """List the storage tree.

        With ``session_ids`` only those sessions' messages and parts are
        indexed, which avoids walking the whole part tree for one session.
        """
        index = StorageIndex(root=self.storage_root)
        wanted = set(session_ids) if session_ids is not None else None

        session_dir = self.storage_root / "session"
        if session_dir.is_dir():
            for path in sorted(session_dir.glob("*/*.json")):
                if wanted is None or path.stem in wanted:
                    index.sessions.setdefault(path.stem, path)

        message_root = self.storage_root / "message"
        if message_root.is_dir():
            for directory in sorted(message_root.iterdir()):
                if not directory.is_dir() or (wanted is not None and directory.name not in wanted):
                    continue
                index.messages[directory.name] = _sorted_json(directory)

        part_root = self.storage_root / "part"
        if part_root.is_dir():
            if wanted is None:
                part_dirs = [d for d in part_root.iterdir() if d.is_dir()]
            else:
                part_dirs = [
                    part_root / message_file.stem
                    for files in index.messages.values()
                    for message_file in files
                    if (part_root / message_file.stem).is_dir()
                ]
            for directory in part_dirs:
                index.parts[directory.name] = _sorted_json(directory)

        logger.debug(
            "Indexed %s: %d sessions, %d message dirs, %d part dirs",
            self.storage_root,
            len(index.sessions),
            len(index.messages),
            len(index.parts),
        )
        return index

    def started_at(self, session_id: str, index: StorageIndex) -> datetime | None:
        """Creation time from the session object, without assembling messages."""
        path = index.sessions.get(session_id)
        if path is None:
            return None
        data = self._load(path, record_issue=False)
        if data is None:
            return None
        time = data.get("time")
        return timestamp_from_millis(time.get("created")) if isinstance(time, dict) else None

    def assemble(self, session_id: str, index: StorageIndex) -> Session:
        """Build one Session from the index.

        Missing fragments are recorded as ``partial_assembly`` issues and mark
        the result ``partial``; only a session with no fragments at all is an
        error.

        Raises:
            EmptySessionError: If neither a session object nor a message
                directory exists for ``session_id``.
        """
        self.issues = []
        session_path = index.sessions.get(session_id)
        message_files = index.messages.get(session_id)

        if session_path is None and message_files is None:
            raise EmptySessionError(f"No OpenCode data for session {session_id}")

        partial = False
        session_data: dict[str, Any] = {}
        if session_path is None:
            partial = True
            self._issue(
                "partial_assembly", f"session/*/{session_id}.json", "session object missing"
            )
        else:
            session_data = self._load(session_path) or {}

        if message_files is None:
            partial = True
            self._issue("partial_assembly", f"message/{session_id}", "message directory missing")
            message_files = []

        time = session_data.get("time")
        started_at = timestamp_from_millis(time.get("created")) if isinstance(time, dict) else None
        directory = session_data.get("directory")
        title = session_data.get("title")

        messages: list[Message] = []
        current_model: str | None = None

        loaded = [(f, self._load(f)) for f in message_files]
        # Stable sort: files without a creation time keep their name order up front.
        ordered = sorted(
            ((f, data) for f, data in loaded if data is not None),
            key=lambda item: _created_millis(item[1]),
        )

        for message_file, data in ordered:
            message_id = str(data.get("id") or message_file.stem)
            part_files = index.parts.get(message_id)
            if part_files is None:
                part_files = index.parts.get(message_file.stem)
            if part_files is None:
                partial = True
                self._issue("partial_assembly", f"part/{message_id}", "part directory missing")
                part_files = []

            ts = _message_timestamp(data)
            model = data.get("modelID")
            if isinstance(model, str) and model and model != current_model:
                current_model = model
                messages.append(
                    Message(
                        role=Role.SYSTEM,
                        timestamp=ts,
                        model=model,
                        content=[ModelChangeBlock(model=model)],
                    )
                )

            parts = [p for p in (self._load(f) for f in part_files) if p is not None]
            role = data.get("role")
            if role == "user":
                blocks = _user_blocks(parts)
                if blocks:
                    messages.append(Message(role=Role.USER, timestamp=ts, content=blocks))
            elif role == "assistant":
                blocks = _assistant_blocks(parts)
                usage = _usage(data)
                if blocks or usage is not None:
                    messages.append(
                        Message(
                            role=Role.ASSISTANT,
                            timestamp=ts,
                            model=current_model,
                            content=blocks,
                            usage=usage,
                        )
                    )

        if partial:
            gaps = [i.location for i in self.issues if i.kind == "partial_assembly"]
            logger.warning("Partial OpenCode session %s, missing: %s", session_id, ", ".join(gaps))

        metadata = SessionMetadata(
            session_id=str(session_data.get("id") or session_id),
            tool=Tool.OPENCODE,
            project_path=directory if isinstance(directory, str) else "",
            started_at=started_at,
            model=current_model,
            title=title if isinstance(title, str) else None,
        )
        return Session(metadata=metadata, messages=messages, partial=partial)

    def assemble_path(self, path: Path) -> Session:
        """Assemble the session a ``message/ses_*`` path or storage root points at."""
        _, session_id = storage_root_for(path)
        if session_id is None:
            index = self.build_index()
            ids = index.session_ids()
            if not ids:
                raise EmptySessionError(f"No OpenCode sessions under {path}")
            session_id = ids[0]
        else:
            index = self.build_index([session_id])
        return self.assemble(session_id, index)

    def _load(self, path: Path, *, record_issue: bool = True) -> dict[str, Any] | None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            if record_issue:
                self._issue("malformed_record", str(path), str(exc))
            return None
        except OSError as exc:
            raise SessionIOError(f"Cannot read {path}: {exc}") from exc
        if not isinstance(data, dict):
            if record_issue:
                self._issue("malformed_record", str(path), "record is not an object")
            return None
        return data

    def _issue(self, kind: str, location: str, detail: str) -> None:
        logger.debug("%s at %s %s", kind, location, detail)
        self.issues.append(ParseIssue(kind=kind, location=location, detail=detail))


def _created_millis(data: dict[str, Any]) -> float:
    time = data.get("time")
    created = time.get("created") if isinstance(time, dict) else None
    if isinstance(created, bool) or not isinstance(created, (int, float)):
        return 0.0
    return float(created)


def _message_timestamp(data: dict[str, Any]) -> datetime | None:
    time = data.get("time")
    if not isinstance(time, dict):
        return None
    completed = time.get("completed")
    return timestamp_from_millis(completed if completed is not None else time.get("created"))


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def _usage(data: dict[str, Any]) -> Usage | None:
    tokens = data.get("tokens")
    cost = data.get("cost")
    if not isinstance(tokens, dict) and not isinstance(cost, (int, float)):
        return None
    tokens = tokens if isinstance(tokens, dict) else {}
    cache = tokens.get("cache") if isinstance(tokens.get("cache"), dict) else {}
    return Usage(
        input_tokens=_int_or_none(tokens.get("input")),
        output_tokens=_int_or_none(tokens.get("output")),
        cache_read_tokens=_int_or_none(cache.get("read")),
        cache_creation_tokens=_int_or_none(cache.get("write")),
        cost=float(cost) if isinstance(cost, (int, float)) and not isinstance(cost, bool) else None,
    )


def _user_blocks(parts: list[dict[str, Any]]) -> list[ContentBlock]:
    blocks: list[ContentBlock] = []
    for part in parts:
        if part.get("type") != "text" or part.get("synthetic"):
            continue
        text = part.get("text")
        if not isinstance(text, str) or text.startswith(_SKIPPED_USER_PREFIXES):
            continue
        if text.strip():
            blocks.append(TextBlock(text=text.strip()))
    return blocks


def tool_part_succeeded(state: dict[str, Any]) -> bool:
    """A tool part succeeded only if it completed with no nonzero exit."""
    metadata = state.get("metadata") if isinstance(state.get("metadata"), dict) else {}
    exit_code = metadata.get("exit")
    if isinstance(exit_code, int) and not isinstance(exit_code, bool) and exit_code != 0:
        return False
    return state.get("status") == "completed"


def _assistant_blocks(parts: list[dict[str, Any]]) -> list[ContentBlock]:
    blocks: list[ContentBlock] = []
    for part in parts:
        part_type = part.get("type")
        if part_type == "text":
            text = part.get("text")
            if isinstance(text, str) and text.strip():
                blocks.append(TextBlock(text=text.strip()))
        elif part_type == "reasoning":
            text = part.get("text")
            if isinstance(text, str) and text.strip():
                blocks.append(ThinkingBlock(text=text.strip()))
        elif part_type == "tool":
            state = part.get("state")
            if not isinstance(state, dict):
                continue
            name = str(part.get("tool") or "unknown")
            success = tool_part_succeeded(state)
            metadata = state.get("metadata") if isinstance(state.get("metadata"), dict) else {}
            tool_input = state.get("input") if isinstance(state.get("input"), dict) else {}

            file_op = OPENCODE_FILE_OPS.get(name)
            file_path = tool_input.get("filePath")
            if not success or not isinstance(file_path, str):
                file_op, file_path = None, None

            blocks.append(
                ToolResultBlock(
                    tool_use_id=str(part.get("callID") or part.get("id") or ""),
                    name=name,
                    success=success,
                    summary=summarize_opencode_tool(
                        state.get("title"), metadata.get("description")
                    ),
                    file_op=file_op,
                    file_path=file_path,
                )
            )
    return blocks
