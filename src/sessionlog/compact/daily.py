"""Daily compaction: rendered transcripts -> ``<YYYY-MM>/<YYYY-MM-DD>.compaction.md``."""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from collections.abc import Callable
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from sessionlog.batch import atomic_write
from sessionlog.compact.prompts import DAILY_PROMPT
from sessionlog.compact.synthesizer import CompactionError, CompactionSynthesizer
from sessionlog.errors import RunReport
from sessionlog.formatters.text import ASSISTANT, FAILURE, META, SUCCESS, USER

logger = logging.getLogger(__name__)

DATE_PREFIX_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})")

# Non-empty lines kept from each assistant reply.
ASSISTANT_LINE_LIMIT = 5


def daily_output_path(output_dir: Path, day: str) -> Path:
    return output_dir / day[:7] / f"{day}.compaction.md"


def find_pending_days(input_dir: Path, output_dir: Path) -> list[tuple[str, list[Path]]]:
    """Group ``.txt`` transcripts by filename date; drop days already compacted."""
    by_date: dict[str, list[Path]] = defaultdict(list)
    for path in input_dir.rglob("*.txt"):
        if not path.is_file():
            continue
        match = DATE_PREFIX_RE.match(path.name)
        if match:
            by_date[match.group(1)].append(path)

    pending: list[tuple[str, list[Path]]] = []
    for day in sorted(by_date):
        if daily_output_path(output_dir, day).exists():
            continue
        pending.append((day, sorted(by_date[day])))
    return pending


def extract_session(text: str) -> str:
    """Keep metadata and user lines plus the opening lines of each assistant reply.

    Continuation lines after a 🤖 line are kept up to ``ASSISTANT_LINE_LIMIT``
    non-empty lines and stop at the next tool line.
    """
    out: list[str] = []
    in_reply = False
    reply_lines = 0

    for line in text.splitlines():
        if line.startswith((META, USER)):
            out.append(line)
            in_reply = False
        elif line.startswith(ASSISTANT):
            out.append(line)
            in_reply = True
            reply_lines = 0
        elif line.startswith((SUCCESS, FAILURE)):
            in_reply = False
        elif in_reply and line.strip():
            reply_lines += 1
            if reply_lines <= ASSISTANT_LINE_LIMIT:
                out.append(line)

    return "".join(f"{line}\n" for line in out)


def build_daily_input(extracts: list[str]) -> str:
    parts = [DAILY_PROMPT, "\n\n---BEGIN TRANSCRIPTS---\n\n"]
    for extract in extracts:
        if extract:
            parts.append(extract)
            parts.append("\n")
    parts.append("\n---END TRANSCRIPTS---\n")
    return "".join(parts)


class DayOutcome(BaseModel):
    day: str
    status: Literal["ok", "failed"]
    sessions: int = 0
    output_path: Path | None = None
    error: str = ""


class DailyReport(BaseModel):
    """Counters and per-day outcomes for one daily compaction run."""

    compacted: int = 0
    failed: int = 0
    outcomes: list[DayOutcome] = Field(default_factory=list)
    report: RunReport = Field(default_factory=RunReport)


def compact_day(
    synthesizer: CompactionSynthesizer, output_dir: Path, day: str, files: list[Path]
) -> Path:
    """Compact one day's transcripts and write the result atomically.

    Raises:
        CompactionError: If the LLM call fails or returns nothing.
        OSError: If a transcript cannot be read or the output written.
    """
    extracts = [extract_session(f.read_text(encoding="utf-8", errors="replace")) for f in files]
    summary = synthesizer.summarize(build_daily_input(extracts), label=f"daily {day}")
    out_path = daily_output_path(output_dir, day)
    atomic_write(out_path, summary if summary.endswith("\n") else summary + "\n")
    return out_path


def run_dailies(
    input_dir: Path,
    output_dir: Path,
    synthesizer: CompactionSynthesizer,
    *,
    limit: int | None = None,
    on_day: Callable[[int, int, DayOutcome], None] | None = None,
) -> DailyReport:
    """Compact every pending day, oldest first.

    A failed day is reported and the run continues with the next day.

    Args:
        input_dir: Root holding rendered ``.txt`` transcripts.
        output_dir: Root receiving ``<YYYY-MM>/<day>.compaction.md``.
        synthesizer: LLM collaborator.
        limit: Process at most this many days.
        on_day: Called as ``(position, total, outcome)`` after each day.
    """
    pending = find_pending_days(input_dir, output_dir)
    if limit is not None:
        pending = pending[:limit]

    result = DailyReport()
    total = len(pending)
    logger.info("%d pending day(s) to compact", total)

    for position, (day, files) in enumerate(pending, start=1):
        try:
            out_path = compact_day(synthesizer, output_dir, day, files)
        except (CompactionError, OSError) as exc:
            logger.warning("Daily compaction failed for %s: %s", day, exc)
            outcome = DayOutcome(day=day, status="failed", sessions=len(files), error=str(exc))
            result.failed += 1
            result.report.add_error(
                "compact", str(exc), source=day, error_type="external_call_failure"
            )
        else:
            outcome = DayOutcome(day=day, status="ok", sessions=len(files), output_path=out_path)
            result.compacted += 1
        result.outcomes.append(outcome)
        if on_day:
            on_day(position, total, outcome)

    return result
