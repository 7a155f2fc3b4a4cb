"""Emoji-prefixed text transcripts.

Every line starts with a marker so transcripts can be grepped by kind:

    📋 metadata and summary    👤 user    🤖 assistant
    ✅ tool succeeded          ❌ tool failed    ⏳ queued task

Thinking and tool-use blocks are not rendered; the matching tool result
carries the visible outcome.
"""

from __future__ import annotations

from sessionlog.formatters.base import OutputFormat, SessionFormatter
from sessionlog.parsers.models import (
    Message,
    ModelChangeBlock,
    QueueOperationBlock,
    Role,
    Session,
    SessionMetadata,
    SessionStats,
    TextBlock,
    Tool,
    ToolResultBlock,
)

META = "📋"
USER = "👤"
ASSISTANT = "🤖"
SUCCESS = "✅"
FAILURE = "❌"
QUEUE = "⏳"

NOT_AVAILABLE = "n/a"


def shorten_model_name(model: str) -> str:
    """``claude-opus-4-5-20251101`` -> ``opus-4.5``; other names pass through."""
    if model == "<synthetic>":
        return "synthetic"
    parts = model.split("-")
    if len(parts) < 3 or parts[0] != "claude" or parts[1].isdigit() or not parts[2].isdigit():
        return model
    name, major = parts[1], int(parts[2])
    # A long numeric fourth part is the release date, not a minor version.
    if len(parts) >= 4 and parts[3].isdigit() and len(parts[3]) <= 2:
        return f"{name}-{major}.{int(parts[3])}"
    return f"{name}-{major}"


def format_duration(seconds: int) -> str:
    if seconds < 0:
        return "0s"
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m"
    return f"{secs}s"


def format_tokens(n: int | None) -> str:
    """Compact token count (``1.5K``, ``2.3M``); ``None`` is ``n/a``."""
    if n is None:
        return NOT_AVAILABLE
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}K"
    return str(n)


class TextFormatter(SessionFormatter):
    """Renders a Session as an emoji-prefixed transcript."""

    output_format = OutputFormat.TEXT

    def render(self, session: Session) -> str:
        lines = self._metadata_lines(session.metadata)
        lines.append("")
        for message in session.messages:
            lines.extend(self._message_lines(message))
        lines.extend(self._summary_lines(SessionStats.from_session(session), session.metadata))
        return "\n".join(lines) + "\n"

    def _metadata_lines(self, meta: SessionMetadata) -> list[str]:
        started = meta.started_at.isoformat() if meta.started_at else "unknown"
        lines = [
            f"{META} Session: {meta.session_id}",
            f"{META} Project: {meta.project_path}",
            f"{META} Started: {started}",
        ]
        if meta.tool is Tool.CLAUDE and meta.version:
            lines.append(f"{META} Version: {meta.version}")
        elif meta.tool is Tool.CODEX and meta.version:
            lines.append(f"{META} CLI: codex {meta.version}")
        elif meta.tool is Tool.OPENCODE and meta.title:
            lines.append(f"{META} Title: {meta.title}")
        if meta.git_branch:
            lines.append(f"{META} Branch: {meta.git_branch}")
        return lines

    def _message_lines(self, message: Message) -> list[str]:
        marker = {Role.USER: USER, Role.ASSISTANT: ASSISTANT}.get(message.role, META)
        lines: list[str] = []
        for block in message.content:
            if isinstance(block, TextBlock):
                lines.append(f"{marker} {block.text}")
            elif isinstance(block, ToolResultBlock):
                status = SUCCESS if block.success else FAILURE
                lines.append(f"{status} {block.name}: {block.summary}")
            elif isinstance(block, ModelChangeBlock):
                lines.append(f"{META} Model: {shorten_model_name(block.model)}")
            elif isinstance(block, QueueOperationBlock):
                lines.append(f"{QUEUE} {block.summary}")
        return lines

    def _summary_lines(self, stats: SessionStats, meta: SessionMetadata) -> list[str]:
        if stats.is_empty:
            return []

        lines = ["", f"{META} --- Summary ---"]
        if stats.duration_seconds is not None:
            lines.append(f"{META} Duration: {format_duration(stats.duration_seconds)}")
        if meta.tool is Tool.CODEX and meta.model:
            lines.append(f"{META} Model: {meta.model}")
        lines.append(
            f"{META} Messages: {stats.user_messages} user, {stats.assistant_messages} assistant"
        )
        label = "Function calls" if meta.tool is Tool.CODEX else "Tool calls"
        lines.append(f"{META} {label}: {stats.tool_calls} total, {stats.tool_errors} failed")

        files = [
            f"{count} {verb}"
            for count, verb in (
                (len(stats.files_read), "read"),
                (len(stats.files_written), "written"),
                (len(stats.files_edited), "edited"),
            )
            if count
        ]
        if files:
            lines.append(f"{META} Files: {', '.join(files)}")

        tokens = stats.total_tokens
        if tokens.input_tokens is not None or tokens.output_tokens is not None:
            lines.append(
                f"{META} Tokens: {format_tokens(tokens.input_tokens)} in, "
                f"{format_tokens(tokens.output_tokens)} out"
            )
        if tokens.cache_read_tokens is not None or tokens.cache_creation_tokens is not None:
            lines.append(
                f"{META} Cache: {format_tokens(tokens.cache_read_tokens)} read, "
                f"{format_tokens(tokens.cache_creation_tokens)} created"
            )
        if stats.cost is not None:
            lines.append(f"{META} Cost: ${stats.cost:.4f}")
        return lines
