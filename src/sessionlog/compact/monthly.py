"""Monthly compaction: daily summaries -> ``<YYYY-MM>/<YYYY-MM>.monthly.md``.

A month that fits the input budget is summarized in one call. A larger
month is split into contiguous chunks, each summarized in order, and the
chunk summaries are merged by one final call. Nothing is written unless
every call succeeds.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from sessionlog.batch import atomic_write
from sessionlog.compact.chunking import CompactionDocument, build_monthly_input, plan_chunks
from sessionlog.compact.prompts import MONTHLY_MERGE_PROMPT, MONTHLY_PROMPT
from sessionlog.compact.synthesizer import CompactionError, CompactionSynthesizer

logger = logging.getLogger(__name__)

MONTH_RE = re.compile(r"^\d{4}-\d{2}$")
COMPACTION_SUFFIX = ".compaction.md"

# Prompt delimiters on top of the prompt text itself.
PROMPT_DELIMITER_OVERHEAD = 100


class MonthlyState(str, Enum):
    PLANNING = "planning"
    SINGLE_PASS = "single_pass"
    CHUNKING = "chunking"
    MERGING = "merging"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: dict[MonthlyState, set[MonthlyState]] = {
    MonthlyState.PLANNING: {MonthlyState.SINGLE_PASS, MonthlyState.CHUNKING, MonthlyState.FAILED},
    MonthlyState.SINGLE_PASS: {MonthlyState.DONE, MonthlyState.FAILED},
    MonthlyState.CHUNKING: {MonthlyState.MERGING, MonthlyState.FAILED},
    MonthlyState.MERGING: {MonthlyState.DONE, MonthlyState.FAILED},
    MonthlyState.DONE: set(),
    MonthlyState.FAILED: set(),
}


class ChunkReport(BaseModel):
    """Progress of one chunk call."""

    index: int
    first_day: str
    last_day: str
    documents: int
    size_bytes: int
    status: Literal["pending", "ok", "failed"] = "pending"
    error: str = ""


class MonthlyRun(BaseModel):
    """State and report of one month's compaction."""

    month: str
    state: MonthlyState = MonthlyState.PLANNING
    history: list[MonthlyState] = Field(default_factory=lambda: [MonthlyState.PLANNING])
    total_bytes: int = 0
    chunks: list[ChunkReport] = Field(default_factory=list)
    merge_calls: int = 0
    reason: str = ""
    output_path: Path | None = None
    skipped: bool = False

    def transition(self, state: MonthlyState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise ValueError(f"Invalid monthly transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def fail(self, reason: str) -> None:
        self.reason = reason
        self.transition(MonthlyState.FAILED)

    @property
    def failed(self) -> bool:
        return self.state is MonthlyState.FAILED


def monthly_output_path(directory: Path, month: str) -> Path:
    return directory / month / f"{month}.monthly.md"


def load_compactions(month_dir: Path) -> list[CompactionDocument]:
    """Daily summaries of a month directory, in date order."""
    paths = sorted(p for p in month_dir.glob(f"*{COMPACTION_SUFFIX}") if p.is_file())
    return [
        CompactionDocument(name=p.name, content=p.read_text(encoding="utf-8", errors="replace"))
        for p in paths
    ]


def find_pending_months(directory: Path) -> list[str]:
    """``YYYY-MM`` directories with daily summaries but no monthly file."""
    if not directory.is_dir():
        return []
    months = []
    for entry in directory.iterdir():
        if not entry.is_dir() or not MONTH_RE.match(entry.name):
            continue
        if monthly_output_path(directory, entry.name).exists():
            continue
        if any(entry.glob(f"*{COMPACTION_SUFFIX}")):
            months.append(entry.name)
    return sorted(months)


class MonthlyCompactor:
    """Drives one month through PLANNING -> SINGLE_PASS | CHUNKING -> MERGING -> DONE.

    Any failed or empty LLM call moves the run to FAILED and stops it; a
    failed chunk is never merged with the others.
    """

    def __init__(
        self,
        synthesizer: CompactionSynthesizer,
        *,
        max_input_bytes: int | None = None,
        on_step: Callable[[str], None] | None = None,
    ) -> None:
        self.synthesizer = synthesizer
        self.max_input_bytes = max_input_bytes or synthesizer.max_input_bytes
        self._on_step = on_step

    @property
    def prompt_overhead(self) -> int:
        return len(MONTHLY_PROMPT.encode("utf-8")) + PROMPT_DELIMITER_OVERHEAD

    def run(self, directory: Path, month: str) -> MonthlyRun:
        """Compact ``directory/<month>``.

        Raises:
            CompactionError: If ``month`` is not ``YYYY-MM``, its directory is
                missing, or it holds no daily summaries.
        """
        if not MONTH_RE.match(month):
            raise CompactionError(f"Invalid month format: {month} (expected YYYY-MM)")
        month_dir = directory / month
        if not month_dir.is_dir():
            raise CompactionError(f"Month directory not found: {month_dir}")

        output_path = monthly_output_path(directory, month)
        if output_path.exists():
            self._step(f"{month}: {output_path.name} already exists, skipping")
            return MonthlyRun(
                month=month,
                state=MonthlyState.DONE,
                history=[MonthlyState.DONE],
                output_path=output_path,
                skipped=True,
            )

        documents = load_compactions(month_dir)
        if not documents:
            raise CompactionError(f"No {COMPACTION_SUFFIX} files found in {month_dir}")

        run = MonthlyRun(month=month, total_bytes=sum(d.size for d in documents))
        self._step(f"{month}: {len(documents)} daily summaries, {run.total_bytes} bytes")
        payload = sum(d.entry_size for d in documents)

        if payload + self.prompt_overhead <= self.max_input_bytes:
            result = self._single_pass(run, documents)
        else:
            result = self._chunked(run, documents)

        if result is None:
            logger.warning("Monthly compaction failed for %s: %s", month, run.reason)
            return run

        try:
            atomic_write(output_path, result if result.endswith("\n") else result + "\n")
        except OSError as exc:
            run.fail(f"cannot write {output_path}: {exc}")
            return run

        run.output_path = output_path
        run.transition(MonthlyState.DONE)
        self._step(f"{month}: wrote {output_path.name}")
        return run

    def _single_pass(self, run: MonthlyRun, documents: list[CompactionDocument]) -> str | None:
        run.transition(MonthlyState.SINGLE_PASS)
        self._step(f"{run.month}: single pass")
        try:
            return self.synthesizer.summarize(
                build_monthly_input(MONTHLY_PROMPT, run.month, documents),
                label=f"monthly {run.month}",
            )
        except CompactionError as exc:
            run.fail(str(exc))
            return None

    def _chunked(self, run: MonthlyRun, documents: list[CompactionDocument]) -> str | None:
        budget = max(self.max_input_bytes - self.prompt_overhead, 1)
        chunks = plan_chunks(documents, budget)
        run.chunks = [
            ChunkReport(
                index=i,
                first_day=_day(chunk[0].name),
                last_day=_day(chunk[-1].name),
                documents=len(chunk),
                size_bytes=sum(d.size for d in chunk),
            )
            for i, chunk in enumerate(chunks, start=1)
        ]
        run.transition(MonthlyState.CHUNKING)
        self._step(f"{run.month}: {len(chunks)} chunks")

        summaries: list[CompactionDocument] = []
        for report, chunk in zip(run.chunks, chunks, strict=True):
            self._step(
                f"{run.month}: chunk {report.index} of {len(chunks)} "
                f"({report.first_day} to {report.last_day})"
            )
            try:
                output = self.synthesizer.summarize(
                    build_monthly_input(MONTHLY_PROMPT, run.month, chunk),
                    label=f"monthly {run.month} chunk {report.index}",
                )
            except CompactionError as exc:
                report.status = "failed"
                report.error = str(exc)
                run.fail(f"chunk {report.index} failed: {exc}")
                return None
            report.status = "ok"
            summaries.append(CompactionDocument(name=f"chunk-{report.index}", content=output))

        run.transition(MonthlyState.MERGING)
        if len(summaries) == 1:
            # A lone oversized day: its summary is already the whole month.
            return summaries[0].content
        self._step(f"{run.month}: merging {len(summaries)} chunk summaries")
        run.merge_calls += 1
        try:
            return self.synthesizer.summarize(
                build_monthly_input(MONTHLY_MERGE_PROMPT, run.month, summaries),
                label=f"monthly {run.month} merge",
            )
        except CompactionError as exc:
            run.fail(f"merge failed: {exc}")
            return None

    def _step(self, message: str) -> None:
        logger.info(message)
        if self._on_step:
            self._on_step(message)


def _day(name: str) -> str:
    return name.removesuffix(COMPACTION_SUFFIX)


def run_pending_monthlies(directory: Path, compactor: MonthlyCompactor) -> list[MonthlyRun]:
    """Compact every pending month; a failed month does not stop the others."""
    runs: list[MonthlyRun] = []
    for month in find_pending_months(directory):
        try:
            runs.append(compactor.run(directory, month))
        except CompactionError as exc:
            logger.warning("Skipping %s: %s", month, exc)
            runs.append(MonthlyRun(month=month, state=MonthlyState.FAILED, reason=str(exc)))
    return runs
