"""Renderers from the Session model to output files."""

from __future__ import annotations

from sessionlog.formatters.base import OutputFormat, SessionFormatter
from sessionlog.formatters.jsonl import JsonlFormatter, load_jsonl
from sessionlog.formatters.text import TextFormatter


def create_formatter(fmt: OutputFormat | str) -> SessionFormatter:
    """Create the formatter for ``fmt``.

    Raises:
        ValueError: If the format is unknown.
    """
    if isinstance(fmt, str):
        fmt = OutputFormat(fmt)
    if fmt is OutputFormat.TEXT:
        return TextFormatter()
    if fmt is OutputFormat.JSONL:
        return JsonlFormatter()
    raise ValueError(f"Unknown output format: {fmt!r}")


__all__ = [
    "JsonlFormatter",
    "OutputFormat",
    "SessionFormatter",
    "TextFormatter",
    "create_formatter",
    "load_jsonl",
]
