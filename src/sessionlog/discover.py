"""Source discovery and output-path derivation."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

from sessionlog.formatters.base import OutputFormat
from sessionlog.parsers.base import parse_timestamp
from sessionlog.parsers.detect import ROLLOUT_RE
from sessionlog.parsers.models import Tool
from sessionlog.parsers.opencode import SESSION_PREFIX, is_storage_root

logger = logging.getLogger(__name__)

UNKNOWN_FOLDER = "unknown"
STAMP_FORMAT = "%Y-%m-%dT%H-%M-%S"

# Lines examined when looking for a Claude session's first timestamp.
_TIMESTAMP_PEEK_LINES = 20

DEFAULT_SOURCE_PATHS: dict[Tool, str] = {
    Tool.CLAUDE: ".claude/projects",
    Tool.CODEX: ".codex/sessions",
    Tool.OPENCODE: ".local/share/opencode/storage",
}


def default_source_path(tool: Tool) -> Path | None:
    """The tool's standard log directory, if it exists."""
    path = Path.home() / DEFAULT_SOURCE_PATHS[tool]
    return path if path.exists() else None


def resolve_sources(overrides: dict[Tool, Path | None] | None = None) -> list[tuple[Tool, Path]]:
    """Pick a source directory per tool: an existing override, else the default."""
    overrides = overrides or {}
    sources: list[tuple[Tool, Path]] = []
    for tool in Tool:
        override = overrides.get(tool)
        if override is not None and override.exists():
            sources.append((tool, override))
            continue
        if override is not None:
            logger.warning("Configured %s source %s does not exist", tool, override)
        default = default_source_path(tool)
        if default is not None:
            sources.append((tool, default))
    return sources


def find_session_files(directory: Path, tool: Tool | None = None) -> list[Path]:
    """List candidate inputs under ``directory``, sorted.

    Claude: every ``*.jsonl`` except ``.bak`` copies. Codex: ``rollout-*.jsonl``.
    OpenCode: the ``message/ses_*`` directories of a storage root. Without a
    ``tool``, an OpenCode storage root is listed as OpenCode and anything
    else yields every ``*.jsonl`` for the caller to detect.
    """
    if tool is Tool.OPENCODE or (tool is None and is_storage_root(directory)):
        message_dir = directory / "message"
        if not message_dir.is_dir():
            return []
        return sorted(
            p for p in message_dir.iterdir() if p.is_dir() and p.name.startswith(SESSION_PREFIX)
        )

    candidates = sorted(p for p in directory.rglob("*.jsonl") if p.is_file())
    if tool is Tool.CODEX:
        return [p for p in candidates if p.name.startswith("rollout-")]
    return [p for p in candidates if ".bak" not in p.name]


def first_timestamp(path: Path) -> datetime | None:
    """The first parseable record timestamp in a JSON-lines file."""
    try:
        with path.open("r", encoding="utf-8", errors="replace") as f:
            examined = 0
            for line in f:
                line = line.strip()
                if not line:
                    continue
                examined += 1
                if examined > _TIMESTAMP_PEEK_LINES:
                    break
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(record, dict):
                    ts = parse_timestamp(record.get("timestamp"))
                    if ts is not None:
                        return ts
    except OSError as exc:
        logger.debug("Cannot peek %s: %s", path, exc)
    return None


def rollout_stamp(path: Path) -> str | None:
    match = ROLLOUT_RE.match(path.name)
    return match.group(1) if match else None


def derive_output_path(
    output_root: Path,
    tool: Tool,
    path: Path,
    fmt: OutputFormat,
    *,
    started_at: datetime | None = None,
) -> Path:
    """``<root>/<YYYY-MM>/<YYYY-MM-DDTHH-MM-SS>-<tool>.<ext>``, computed before parsing.

    Claude uses the first timestamped record, Codex the rollout filename and
    OpenCode the ``started_at`` read from its session object. Without a
    timestamp the output lands in ``unknown/`` named after the input.
    """
    if tool is Tool.CODEX:
        stamp = rollout_stamp(path)
    else:
        if tool is Tool.CLAUDE and started_at is None:
            started_at = first_timestamp(path)
        stamp = started_at.strftime(STAMP_FORMAT) if started_at else None

    if stamp is None:
        return output_root / UNKNOWN_FOLDER / f"unknown-{path.stem}-{tool}.{fmt.extension}"
    return output_root / stamp[:7] / f"{stamp}-{tool}.{fmt.extension}"
