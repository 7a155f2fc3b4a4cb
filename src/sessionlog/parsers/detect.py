"""Decide which parser applies to an input path."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from enum import Enum
from pathlib import Path

from sessionlog.errors import UnrecognizedFormatError
from sessionlog.parsers.claude import CLAUDE_RECORD_TYPES, ClaudeParser
from sessionlog.parsers.codex import CODEX_RECORD_TYPES, CodexParser
from sessionlog.parsers.models import ParseIssue, Session
from sessionlog.parsers.opencode import (
    SESSION_PREFIX,
    OpenCodeAssembler,
    is_storage_root,
    storage_root_for,
)

logger = logging.getLogger(__name__)

ROLLOUT_RE = re.compile(
    r"^rollout-(\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2})-"
    r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}\.jsonl$"
)

# Claude writes these before the first conversation record.
CLAUDE_BOOKKEEPING_TYPES = frozenset({"summary", "file-history-snapshot"})

PROBE_LINES = 5


class SourceFormat(str, Enum):
    CLAUDE = "claude"
    CODEX = "codex"
    OPENCODE = "opencode"
    UNRECOGNIZED = "unrecognized"


def _is_opencode_path(path: Path) -> bool:
    if path.is_dir() and path.parent.name == "message" and path.name.startswith(SESSION_PREFIX):
        root = path.parent.parent
        return (root / "session").is_dir() or (root / "part").is_dir()
    return is_storage_root(path)


def _classify_record(record: dict) -> SourceFormat | None:
    record_type = record.get("type")
    if record_type in CLAUDE_RECORD_TYPES and (
        isinstance(record.get("message"), dict) or "sessionId" in record
    ):
        return SourceFormat.CLAUDE
    if record_type in CODEX_RECORD_TYPES and isinstance(record.get("payload"), dict):
        return SourceFormat.CODEX
    return None


def probe_lines(lines: Iterable[str]) -> SourceFormat:
    """Classify a stream by its leading JSON records.

    Blank lines, undecodable lines and Claude bookkeeping records are passed
    over; at most ``PROBE_LINES`` non-empty lines are examined.
    """
    examined = 0
    for line in lines:
        line = line.strip()
        if not line:
            continue
        examined += 1
        if examined > PROBE_LINES:
            break
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(record, dict) or record.get("type") in CLAUDE_BOOKKEEPING_TYPES:
            continue
        fmt = _classify_record(record)
        if fmt is not None:
            return fmt
    return SourceFormat.UNRECOGNIZED


def detect_format(path: Path) -> SourceFormat:
    """Return the source format of ``path``.

    Checks, in order: the OpenCode directory layout, the Codex rollout
    filename, then a content probe of the first JSON lines.
    """
    if _is_opencode_path(path):
        return SourceFormat.OPENCODE
    if ROLLOUT_RE.match(path.name):
        return SourceFormat.CODEX
    if not path.is_file():
        return SourceFormat.UNRECOGNIZED
    try:
        with path.open("r", encoding="utf-8", errors="replace") as f:
            fmt = probe_lines(f)
    except OSError as exc:
        logger.debug("Cannot probe %s: %s", path, exc)
        return SourceFormat.UNRECOGNIZED
    logger.debug("Detected %s for %s", fmt.value, path)
    return fmt


def parse_path(path: Path, fmt: SourceFormat | None = None) -> tuple[Session, list[ParseIssue]]:
    """Detect (unless ``fmt`` is given) and parse one input.

    Raises:
        UnrecognizedFormatError: If no parser applies.
        EmptySessionError: If the input has no usable records.
        SessionIOError: If the input cannot be read.
    """
    fmt = fmt or detect_format(path)
    if fmt is SourceFormat.CLAUDE:
        parser: ClaudeParser | CodexParser = ClaudeParser()
    elif fmt is SourceFormat.CODEX:
        parser = CodexParser()
    elif fmt is SourceFormat.OPENCODE:
        root, _ = storage_root_for(path)
        assembler = OpenCodeAssembler(root)
        session = assembler.assemble_path(path)
        return session, assembler.issues
    else:
        raise UnrecognizedFormatError(path)
    session = parser.parse_file(path)
    return session, parser.issues
