"""Base class for session renderers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

from sessionlog.parsers.models import Session


class OutputFormat(str, Enum):
    TEXT = "text"
    JSONL = "jsonl"

    @property
    def extension(self) -> str:
        return "txt" if self is OutputFormat.TEXT else "jsonl"


class SessionFormatter(ABC):
    """Renders one Session to a string."""

    output_format: OutputFormat

    @property
    def extension(self) -> str:
        return self.output_format.extension

    @abstractmethod
    def render(self, session: Session) -> str:
        """Render ``session``; the result always ends with a newline."""
