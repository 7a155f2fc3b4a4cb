"""Error types and run-level error aggregation."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field


class SessionLogError(Exception):
    """Base error for sessionlog."""


class UnrecognizedFormatError(SessionLogError):
    """Input matches none of the known session log formats."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"Unrecognized session format: {path}")
        self.path = path


class EmptySessionError(SessionLogError):
    """Input contained no usable session records."""


class SessionIOError(SessionLogError):
    """An input could not be read or an output could not be written."""


class RunError(BaseModel):
    """A single recorded failure or warning."""

    stage: str
    message: str
    source: str = ""
    error_type: str = "error"


class RunReport(BaseModel):
    """Collects non-fatal errors from a batch or compaction run."""

    errors: list[RunError] = Field(default_factory=list)

    def add_error(
        self,
        stage: str,
        message: str,
        *,
        source: str = "",
        error_type: str = "error",
    ) -> None:
        self.errors.append(
            RunError(stage=stage, message=message, source=source, error_type=error_type)
        )

    def count(self, error_type: str | None = None) -> int:
        if error_type is None:
            return len(self.errors)
        return sum(1 for e in self.errors if e.error_type == error_type)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)
