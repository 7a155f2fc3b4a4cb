"""Batch conversion: input directory -> dated output tree.

A run has two phases. Planning is sequential: it detects each input's
format, builds OpenCode storage indexes and assigns every input its own
output path. Processing maps the per-unit pipeline (staleness check,
parse, render, atomic write) over the plan, optionally on a thread pool.
Units share nothing but the output tree, and each unit writes only its
own path.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections import Counter
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from sessionlog.discover import derive_output_path
from sessionlog.errors import EmptySessionError, RunReport
from sessionlog.formatters import OutputFormat, create_formatter
from sessionlog.parsers.claude import ClaudeParser
from sessionlog.parsers.codex import CodexParser
from sessionlog.parsers.detect import SourceFormat, detect_format
from sessionlog.parsers.models import ParseIssue, Session, SessionStats, Tool
from sessionlog.parsers.opencode import OpenCodeAssembler, StorageIndex, storage_root_for

logger = logging.getLogger(__name__)

UnitStatus = Literal["processed", "skipped", "failed", "unrecognized", "empty"]

_FORMAT_TOOLS = {
    SourceFormat.CLAUDE: Tool.CLAUDE,
    SourceFormat.CODEX: Tool.CODEX,
    SourceFormat.OPENCODE: Tool.OPENCODE,
}


def atomic_write(path: Path, content: str) -> None:
    """Write ``content`` so readers never observe a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def is_up_to_date(input_mtime: float, output_path: Path) -> bool:
    """True when the output exists and is not older than its input."""
    try:
        return output_path.stat().st_mtime >= input_mtime
    except FileNotFoundError:
        return False


def within_directory(project_path: str, filter_dir: Path) -> bool:
    if not project_path:
        return False
    project = Path(project_path)
    return project == filter_dir or filter_dir in project.parents


class UnitPlan(BaseModel):
    """One input with its detected tool and assigned output path."""

    input_path: Path
    tool: Tool
    output_path: Path
    input_mtime: float
    session_id: str | None = None
    index: StorageIndex | None = None


class UnitOutcome(BaseModel):
    """Result of processing one input."""

    input_path: Path
    status: UnitStatus
    output_path: Path | None = None
    message: str = ""
    issues: list[ParseIssue] = Field(default_factory=list)
    partial: bool = False


class BatchResult(BaseModel):
    """End-of-run counters plus per-unit outcomes and the error report."""

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    unrecognized: int = 0
    empty: int = 0
    outcomes: list[UnitOutcome] = Field(default_factory=list)
    report: RunReport = Field(default_factory=RunReport)

    @property
    def written(self) -> list[Path]:
        return [o.output_path for o in self.outcomes if o.status == "processed" and o.output_path]

    def record(self, outcome: UnitOutcome) -> None:
        self.outcomes.append(outcome)
        setattr(self, outcome.status, getattr(self, outcome.status) + 1)
        source = str(outcome.input_path)
        if outcome.status == "failed":
            self.report.add_error("batch", outcome.message, source=source, error_type="io_error")
        elif outcome.status == "unrecognized":
            self.report.add_error(
                "detect", outcome.message, source=source, error_type="unrecognized_format"
            )
        for kind, count in Counter(issue.kind for issue in outcome.issues).items():
            self.report.add_error(
                "parse", f"{count} {kind} issue(s)", source=source, error_type=kind
            )


class BatchProcessor:
    """Convert many session inputs into rendered files under ``output_root``.

    Args:
        output_root: Root of the dated output tree.
        fmt: Output format.
        force: Reprocess inputs even when their output is up to date.
        filter_dir: Only keep sessions whose project path is inside this
            directory; others are counted as skipped.
        workers: Thread count for the processing phase; 1 runs inline.
    """

    def __init__(
        self,
        output_root: Path,
        fmt: OutputFormat | str = OutputFormat.TEXT,
        *,
        force: bool = False,
        filter_dir: Path | None = None,
        workers: int = 1,
    ) -> None:
        self.output_root = output_root
        self.formatter = create_formatter(fmt)
        self.fmt = self.formatter.output_format
        self.force = force
        self.filter_dir = filter_dir
        self.workers = max(1, workers)

    def run(
        self,
        inputs: list[Path],
        *,
        tool: Tool | None = None,
        on_unit: Callable[[UnitOutcome], None] | None = None,
    ) -> BatchResult:
        result = BatchResult()
        plans: list[UnitPlan] = []

        for outcome_or_plan in self._plan(inputs, tool):
            if isinstance(outcome_or_plan, UnitPlan):
                plans.append(outcome_or_plan)
            else:
                result.record(outcome_or_plan)
                if on_unit:
                    on_unit(outcome_or_plan)

        if self.workers > 1 and len(plans) > 1:
            with ThreadPoolExecutor(max_workers=min(self.workers, len(plans))) as pool:
                # map() yields in submission order, keeping the report stable.
                for outcome in pool.map(self._process_safely, plans):
                    result.record(outcome)
                    if on_unit:
                        on_unit(outcome)
        else:
            for plan in plans:
                outcome = self._process_safely(plan)
                result.record(outcome)
                if on_unit:
                    on_unit(outcome)

        logger.info(
            "Batch done: %d processed, %d skipped, %d empty, %d unrecognized, %d failed",
            result.processed,
            result.skipped,
            result.empty,
            result.unrecognized,
            result.failed,
        )
        return result

    def _plan(self, inputs: list[Path], tool: Tool | None) -> list[UnitPlan | UnitOutcome]:
        planned: list[UnitPlan | UnitOutcome] = []
        claimed: set[Path] = set()
        indexes: dict[Path, tuple[OpenCodeAssembler, StorageIndex]] = {}

        for path in inputs:
            try:
                plan = self._plan_one(path, tool, indexes)
            except Exception as exc:
                logger.warning("Cannot plan %s: %s", path, exc)
                planned.append(UnitOutcome(input_path=path, status="failed", message=str(exc)))
                continue
            if isinstance(plan, UnitOutcome):
                planned.append(plan)
                continue

            if plan.output_path in claimed:
                out = plan.output_path
                plan.output_path = out.with_name(f"{out.stem}-{path.stem}{out.suffix}")
            claimed.add(plan.output_path)
            planned.append(plan)
        return planned

    def _plan_one(
        self,
        path: Path,
        tool: Tool | None,
        indexes: dict[Path, tuple[OpenCodeAssembler, StorageIndex]],
    ) -> UnitPlan | UnitOutcome:
        if path.is_file() and path.stat().st_size == 0:
            return UnitOutcome(input_path=path, status="empty", message="empty file")

        if tool is None:
            fmt = detect_format(path)
            if fmt is SourceFormat.UNRECOGNIZED:
                return UnitOutcome(
                    input_path=path,
                    status="unrecognized",
                    message=f"Unrecognized session format: {path}",
                )
            tool = _FORMAT_TOOLS[fmt]

        if tool is Tool.OPENCODE:
            root, session_id = storage_root_for(path)
            if session_id is None:
                return UnitOutcome(
                    input_path=path, status="unrecognized", message="not an OpenCode session path"
                )
            if root not in indexes:
                assembler = OpenCodeAssembler(root)
                indexes[root] = (assembler, assembler.build_index())
            assembler, index = indexes[root]
            output_path = derive_output_path(
                self.output_root,
                tool,
                path,
                self.fmt,
                started_at=assembler.started_at(session_id, index),
            )
            return UnitPlan(
                input_path=path,
                tool=tool,
                output_path=output_path,
                input_mtime=index.newest_mtime(session_id),
                session_id=session_id,
                index=index,
            )

        return UnitPlan(
            input_path=path,
            tool=tool,
            output_path=derive_output_path(self.output_root, tool, path, self.fmt),
            input_mtime=path.stat().st_mtime,
        )

    def _process_safely(self, plan: UnitPlan) -> UnitOutcome:
        try:
            return self._process(plan)
        except Exception as exc:
            logger.warning("Failed to process %s: %s", plan.input_path, exc)
            return UnitOutcome(input_path=plan.input_path, status="failed", message=str(exc))

    def _process(self, plan: UnitPlan) -> UnitOutcome:
        if not self.force and is_up_to_date(plan.input_mtime, plan.output_path):
            logger.debug("Up to date: %s", plan.output_path)
            return UnitOutcome(
                input_path=plan.input_path,
                status="skipped",
                output_path=plan.output_path,
                message="up to date",
            )

        try:
            session, issues = self._parse(plan)
        except EmptySessionError as exc:
            return UnitOutcome(input_path=plan.input_path, status="empty", message=str(exc))

        if self.filter_dir is not None and not within_directory(
            session.metadata.project_path, self.filter_dir
        ):
            return UnitOutcome(
                input_path=plan.input_path,
                status="skipped",
                message=f"project {session.metadata.project_path!r} outside filter",
            )

        if SessionStats.from_session(session).is_empty:
            return UnitOutcome(
                input_path=plan.input_path,
                status="empty",
                message="no user or assistant messages",
                issues=issues,
            )

        atomic_write(plan.output_path, self.formatter.render(session))
        return UnitOutcome(
            input_path=plan.input_path,
            status="processed",
            output_path=plan.output_path,
            issues=issues,
            partial=session.partial,
        )

    def _parse(self, plan: UnitPlan) -> tuple[Session, list[ParseIssue]]:
        if plan.tool is Tool.OPENCODE:
            # Shared index, per-unit assembler: issues stay per session.
            assembler = OpenCodeAssembler(plan.index.root)
            session = assembler.assemble(plan.session_id, plan.index)
            return session, list(assembler.issues)
        parser = ClaudeParser() if plan.tool is Tool.CLAUDE else CodexParser()
        session = parser.parse_file(plan.input_path)
        return session, list(parser.issues)
