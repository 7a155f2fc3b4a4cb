"""Parsers that normalize assistant session logs into the Session model."""

from .claude import ClaudeParser
from .codex import CodexParser
from .detect import SourceFormat, detect_format, parse_path
from .models import (
    Message,
    ParseIssue,
    Role,
    Session,
    SessionMetadata,
    SessionStats,
    TextBlock,
    Tool,
    ToolResultBlock,
    Usage,
)
from .opencode import OpenCodeAssembler, StorageIndex

__all__ = [
    "ClaudeParser",
    "CodexParser",
    "Message",
    "OpenCodeAssembler",
    "ParseIssue",
    "Role",
    "Session",
    "SessionMetadata",
    "SessionStats",
    "SourceFormat",
    "StorageIndex",
    "TextBlock",
    "Tool",
    "ToolResultBlock",
    "Usage",
    "detect_format",
    "parse_path",
]
