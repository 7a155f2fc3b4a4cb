"""Canonical session models shared by every parser and formatter.

Parsers translate their tool-specific wire shapes into these models and
nothing tool-specific crosses that boundary. Formatters only read them.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


class Tool(str, Enum):
    """The assistant that produced a session log."""

    CLAUDE = "claude"
    CODEX = "codex"
    OPENCODE = "opencode"

    def __str__(self) -> str:
        return self.value


class Role(str, Enum):
    """Speaker of a message. ``system`` carries synthetic events."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class TextBlock(BaseModel):
    """Plain text from the user or assistant."""

    type: Literal["text"] = "text"
    text: str


class ThinkingBlock(BaseModel):
    """Extended reasoning; kept in the model, hidden in text output."""

    type: Literal["thinking"] = "thinking"
    text: str


class ToolUseBlock(BaseModel):
    """A tool invocation as issued by the assistant."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    """Outcome of a tool call.

    ``success`` is only ``True`` when the source carried positive evidence
    of success. ``file_op``/``file_path`` record file reads, writes and
    edits so stats can be derived without re-reading tool inputs.
    """

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str = ""
    name: str
    success: bool
    summary: str = ""
    file_op: Literal["read", "write", "edit"] | None = None
    file_path: str | None = None


class ModelChangeBlock(BaseModel):
    """The active model changed."""

    type: Literal["model_change"] = "model_change"
    model: str


class QueueOperationBlock(BaseModel):
    """A queued task handed to a sub-agent."""

    type: Literal["queue_operation"] = "queue_operation"
    summary: str


ContentBlock = Annotated[
    TextBlock
    | ThinkingBlock
    | ToolUseBlock
    | ToolResultBlock
    | ModelChangeBlock
    | QueueOperationBlock,
    Field(discriminator="type"),
]


class Usage(BaseModel):
    """Token accounting for one message.

    Every field is optional: ``None`` means the source did not report it,
    which is not the same as an explicit zero.
    """

    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_read_tokens: int | None = None
    cache_creation_tokens: int | None = None
    cost: float | None = None


class Message(BaseModel):
    """One conversation turn, in source-emission order."""

    role: Role
    timestamp: datetime | None = None
    model: str | None = None
    content: list[ContentBlock] = Field(default_factory=list)
    usage: Usage | None = None

    @property
    def has_text(self) -> bool:
        return any(isinstance(block, TextBlock) for block in self.content)


class SessionMetadata(BaseModel):
    """Session-level header fields."""

    session_id: str
    tool: Tool
    project_path: str = ""
    started_at: datetime | None = None
    version: str | None = None
    git_branch: str | None = None
    model: str | None = None
    title: str | None = None


class Session(BaseModel):
    """A normalized session, produced once by a parser and rendered once.

    ``partial`` is set when fragment assembly could not find every piece
    of the session.
    """

    metadata: SessionMetadata
    messages: list[Message] = Field(default_factory=list)
    partial: bool = False

    @property
    def session_id(self) -> str:
        return self.metadata.session_id

    @property
    def tool(self) -> Tool:
        return self.metadata.tool


def _sum_optional(values: list[int | float | None]) -> int | float | None:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present)


class SessionStats(BaseModel):
    """Statistics derived from a session's messages at render time."""

    user_messages: int = 0
    assistant_messages: int = 0
    tool_calls: int = 0
    tool_errors: int = 0
    total_tokens: Usage = Field(default_factory=Usage)
    files_read: list[str] = Field(default_factory=list)
    files_written: list[str] = Field(default_factory=list)
    files_edited: list[str] = Field(default_factory=list)
    duration_seconds: int | None = None
    cost: float | None = None

    @classmethod
    def from_session(cls, session: Session) -> SessionStats:
        """Compute stats from the message sequence."""
        user_messages = 0
        assistant_messages = 0
        tool_calls = 0
        tool_errors = 0
        files: dict[str, set[str]] = {"read": set(), "write": set(), "edit": set()}
        usages: list[Usage] = []

        for message in session.messages:
            if message.has_text:
                if message.role == Role.USER:
                    user_messages += 1
                elif message.role == Role.ASSISTANT:
                    assistant_messages += 1
            if message.usage is not None:
                usages.append(message.usage)
            for block in message.content:
                if not isinstance(block, ToolResultBlock):
                    continue
                tool_calls += 1
                if not block.success:
                    tool_errors += 1
                if block.file_op and block.file_path:
                    files[block.file_op].add(block.file_path)

        totals = Usage(
            input_tokens=_sum_optional([u.input_tokens for u in usages]),
            output_tokens=_sum_optional([u.output_tokens for u in usages]),
            cache_read_tokens=_sum_optional([u.cache_read_tokens for u in usages]),
            cache_creation_tokens=_sum_optional([u.cache_creation_tokens for u in usages]),
        )
        cost = _sum_optional([u.cost for u in usages])

        return cls(
            user_messages=user_messages,
            assistant_messages=assistant_messages,
            tool_calls=tool_calls,
            tool_errors=tool_errors,
            total_tokens=totals,
            files_read=sorted(files["read"]),
            files_written=sorted(files["write"]),
            files_edited=sorted(files["edit"]),
            duration_seconds=_duration_seconds(session),
            cost=cost,
        )

    @property
    def is_empty(self) -> bool:
        """True when the session has no user or assistant conversation."""
        return self.user_messages == 0 and self.assistant_messages == 0


def _duration_seconds(session: Session) -> int | None:
    timestamps = [m.timestamp for m in session.messages if m.timestamp is not None]
    if not timestamps:
        return None
    start = session.metadata.started_at or timestamps[0]
    # Last in source order, not max(): clocks may be skewed.
    seconds = int((timestamps[-1] - start).total_seconds())
    if seconds < 0:
        return None
    return seconds


class ParseIssue(BaseModel):
    """A non-fatal problem found while parsing or assembling a session."""

    kind: Literal["malformed_record", "bad_timestamp", "multi_session", "partial_assembly"]
    location: str
    detail: str = ""
