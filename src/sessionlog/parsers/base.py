"""Shared machinery for the JSON-lines session parsers."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sessionlog.errors import SessionIOError
from sessionlog.parsers.models import ParseIssue, Session

logger = logging.getLogger(__name__)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp into an aware UTC datetime."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def timestamp_from_millis(value: Any) -> datetime | None:
    """Convert Unix milliseconds into an aware UTC datetime."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


class LineParser(ABC):
    """Base class for parsers that fold a JSON-lines stream into one Session.

    Each line is decoded independently. Lines that are not JSON objects are
    recorded as ``malformed_record`` issues and skipped; the rest of the
    stream is still parsed. ``issues`` is reset at the start of every parse.
    """

    def __init__(self) -> None:
        self.issues: list[ParseIssue] = []

    @property
    def anomaly_count(self) -> int:
        """Number of multi-session anomalies seen in the last parse."""
        return sum(1 for issue in self.issues if issue.kind == "multi_session")

    @property
    def parse_errors(self) -> list[str]:
        """Human-readable descriptions of the last parse's issues."""
        return [
            f"{i.kind} at {i.location}" + (f": {i.detail}" if i.detail else "")
            for i in self.issues
        ]

    def parse_file(self, path: Path) -> Session:
        """Parse a session log file.

        Raises:
            SessionIOError: If the file cannot be read.
            EmptySessionError: If no usable records were found.
        """
        try:
            with path.open("r", encoding="utf-8", errors="replace") as f:
                return self.parse_lines(f, source=str(path))
        except OSError as exc:
            raise SessionIOError(f"Cannot read {path}: {exc}") from exc

    def parse_lines(self, lines: Iterable[str], *, source: str = "<stream>") -> Session:
        """Parse an iterable of raw JSON lines."""
        self.issues = []
        return self._build(self._records(lines, source), source)

    def _records(self, lines: Iterable[str], source: str) -> Iterator[tuple[int, dict[str, Any]]]:
        for line_num, line in enumerate(lines, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                self._issue("malformed_record", source, line_num, str(exc))
                continue
            if not isinstance(record, dict):
                self._issue("malformed_record", source, line_num, "record is not an object")
                continue
            yield line_num, record

    def _issue(self, kind: str, source: str, line_num: int, detail: str = "") -> None:
        location = f"{source}:{line_num}"
        logger.debug("%s at %s %s", kind, location, detail)
        self.issues.append(ParseIssue(kind=kind, location=location, detail=detail))

    def _timestamp(self, record: dict[str, Any], source: str, line_num: int) -> datetime | None:
        raw = record.get("timestamp")
        if raw is None:
            return None
        ts = parse_timestamp(raw)
        if ts is None:
            self._issue("bad_timestamp", source, line_num, repr(raw)[:80])
        return ts

    @abstractmethod
    def _build(self, records: Iterator[tuple[int, dict[str, Any]]], source: str) -> Session:
        """Fold decoded records into a Session."""
