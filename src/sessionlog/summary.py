"""Usage statistics over rendered text transcripts.

Reads the 📋 summary block that ``TextFormatter`` appends to every
transcript and aggregates it by month and tool, or by project.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from pathlib import Path

from pydantic import BaseModel

from sessionlog.formatters.text import META

logger = logging.getLogger(__name__)

TRANSCRIPT_NAME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
# <stamp>-<tool>[-<input stem>]
_STAMPED_NAME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-([^-]+)")
UNKNOWN_PROJECT = "unknown"

_CALLS_RE = re.compile(r"(\d+) total, (\d+) failed")
_MESSAGES_RE = re.compile(r"(\d+) user, (\d+) assistant")
_TOKENS_RE = re.compile(r"(\S+) in, (\S+) out")


class TranscriptStats(BaseModel):
    """Figures read back from one transcript."""

    month: str
    tool: str
    project: str = ""
    duration_seconds: int = 0
    user_messages: int = 0
    assistant_messages: int = 0
    tool_ok: int = 0
    tool_failed: int = 0
    input_tokens: int = 0
    output_tokens: int = 0


class Aggregate(BaseModel):
    sessions: int = 0
    user_messages: int = 0
    assistant_messages: int = 0
    tool_ok: int = 0
    tool_failed: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    duration_seconds: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, stats: TranscriptStats) -> None:
        self.sessions += 1
        self.user_messages += stats.user_messages
        self.assistant_messages += stats.assistant_messages
        self.tool_ok += stats.tool_ok
        self.tool_failed += stats.tool_failed
        self.input_tokens += stats.input_tokens
        self.output_tokens += stats.output_tokens
        self.duration_seconds += stats.duration_seconds

    def merge(self, other: Aggregate) -> None:
        for field in Aggregate.model_fields:
            setattr(self, field, getattr(self, field) + getattr(other, field))


class MonthlyTable(BaseModel):
    """Sessions per month and tool, with per-month and per-tool totals."""

    months: list[str]
    tools: list[str]
    cells: dict[str, dict[str, Aggregate]]
    month_totals: dict[str, Aggregate]
    tool_totals: dict[str, Aggregate]
    grand_total: Aggregate


def parse_duration(value: str) -> int:
    """``1h 5m`` -> 3900. Unknown parts count as zero."""
    seconds = 0
    for part in value.split():
        number, unit = part[:-1], part[-1:]
        if not number.isdigit():
            continue
        seconds += int(number) * {"h": 3600, "m": 60, "s": 1}.get(unit, 0)
    return seconds


def parse_token_value(value: str) -> int:
    """``1.5K`` -> 1500, ``2.0M`` -> 2000000, ``n/a`` -> 0."""
    value = value.strip()
    scale = {"K": 1_000, "M": 1_000_000}.get(value[-1:], 1)
    if scale != 1:
        value = value[:-1]
    try:
        return int(float(value) * scale)
    except ValueError:
        return 0


def tool_from_name(path: Path) -> str:
    """The token after the timestamp; batch may append the input stem after it."""
    match = _STAMPED_NAME_RE.match(path.stem)
    if match:
        return match[1]
    return path.stem.rsplit("-", 1)[-1]


def parse_transcript(text: str, month: str, tool: str) -> TranscriptStats:
    stats = TranscriptStats(month=month, tool=tool)
    prefix = f"{META} "
    for line in text.splitlines():
        if not line.startswith(prefix):
            continue
        key, _, value = line[len(prefix) :].partition(": ")
        if key == "Project":
            stats.project = value.strip()
        elif key == "Duration":
            stats.duration_seconds = parse_duration(value)
        elif key == "Messages" and (m := _MESSAGES_RE.search(value)):
            stats.user_messages, stats.assistant_messages = int(m[1]), int(m[2])
        elif key in ("Tool calls", "Function calls") and (m := _CALLS_RE.search(value)):
            total, failed = int(m[1]), int(m[2])
            stats.tool_ok, stats.tool_failed = max(total - failed, 0), failed
        elif key == "Tokens" and (m := _TOKENS_RE.search(value)):
            stats.input_tokens = parse_token_value(m[1])
            stats.output_tokens = parse_token_value(m[2])
    return stats


def collect_stats(directory: Path) -> list[TranscriptStats]:
    """Parse every dated ``.txt`` transcript under ``directory``."""
    collected: list[TranscriptStats] = []
    for path in sorted(directory.rglob("*.txt")):
        if not path.is_file() or not TRANSCRIPT_NAME_RE.match(path.name) or len(path.stem) < 15:
            continue
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("Cannot read %s: %s", path, exc)
            continue
        collected.append(parse_transcript(text, path.name[:7], tool_from_name(path)))
    return collected


def shorten_project(path: str) -> str:
    """Keep the last three path components."""
    normalized = path.replace("\\", "/").rstrip("/")
    parts = normalized.split("/")
    if len(parts) <= 3:
        return normalized
    return "/".join(parts[-3:])


def by_month_and_tool(stats: list[TranscriptStats]) -> MonthlyTable:
    cells: dict[str, dict[str, Aggregate]] = defaultdict(dict)
    for s in stats:
        cells[s.month].setdefault(s.tool, Aggregate()).add(s)

    months = sorted(cells)
    tools = sorted({s.tool for s in stats})
    month_totals: dict[str, Aggregate] = {}
    tool_totals: dict[str, Aggregate] = {}
    grand_total = Aggregate()
    for month in months:
        month_total = Aggregate()
        for tool, agg in cells[month].items():
            month_total.merge(agg)
            tool_totals.setdefault(tool, Aggregate()).merge(agg)
        month_totals[month] = month_total
        grand_total.merge(month_total)

    return MonthlyTable(
        months=months,
        tools=tools,
        cells=dict(cells),
        month_totals=month_totals,
        tool_totals=tool_totals,
        grand_total=grand_total,
    )


def by_project(stats: list[TranscriptStats]) -> dict[str, Aggregate]:
    projects: dict[str, Aggregate] = {}
    for s in stats:
        key = shorten_project(s.project) if s.project else UNKNOWN_PROJECT
        projects.setdefault(key, Aggregate()).add(s)
    return dict(sorted(projects.items()))
