"""Line-delimited JSON rendering.

Line 1 is the session metadata, then one line per message, then one line of
derived stats. Each line carries a ``record`` tag so the stream can be read
back without relying on position.
"""

from __future__ import annotations

import json
from collections.abc import Iterable

from pydantic import ValidationError

from sessionlog.errors import EmptySessionError
from sessionlog.formatters.base import OutputFormat, SessionFormatter
from sessionlog.parsers.models import Message, Session, SessionMetadata, SessionStats


def _dump(record: str, payload: dict) -> str:
    return json.dumps({"record": record, **payload}, ensure_ascii=False)


class JsonlFormatter(SessionFormatter):
    """Renders a Session as metadata, message and stats JSON lines."""

    output_format = OutputFormat.JSONL

    def render(self, session: Session) -> str:
        meta = session.metadata.model_dump(mode="json")
        meta["partial"] = session.partial
        lines = [_dump("metadata", meta)]
        lines.extend(_dump("message", m.model_dump(mode="json")) for m in session.messages)
        lines.append(_dump("stats", SessionStats.from_session(session).model_dump(mode="json")))
        return "\n".join(lines) + "\n"


def load_jsonl(lines: Iterable[str]) -> tuple[Session, SessionStats | None]:
    """Read rendered JSONL back into a Session and its stats line.

    Raises:
        EmptySessionError: If there is no metadata line.
        ValueError: If a line is not valid JSON or fails validation.
    """
    metadata: SessionMetadata | None = None
    partial = False
    messages: list[Message] = []
    stats: SessionStats | None = None

    for line_num, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
            record = data.pop("record", None)
            if record == "metadata":
                partial = bool(data.pop("partial", False))
                metadata = SessionMetadata.model_validate(data)
            elif record == "message":
                messages.append(Message.model_validate(data))
            elif record == "stats":
                stats = SessionStats.model_validate(data)
        except (json.JSONDecodeError, AttributeError, ValidationError) as exc:
            raise ValueError(f"Invalid JSONL record at line {line_num}: {exc}") from exc

    if metadata is None:
        raise EmptySessionError("No metadata record in JSONL input")
    return Session(metadata=metadata, messages=messages, partial=partial), stats
