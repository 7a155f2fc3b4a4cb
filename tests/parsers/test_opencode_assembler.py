"""Tests for OpenCode storage indexing and assembly."""

from __future__ import annotations

import json
import shutil
from datetime import UTC, datetime
from pathlib import Path

import pytest

from sessionlog.errors import EmptySessionError
from sessionlog.formatters import JsonlFormatter
from sessionlog.parsers.models import (
    ModelChangeBlock,
    Role,
    SessionStats,
    TextBlock,
    Tool,
    ToolResultBlock,
)
from sessionlog.parsers.opencode import (
    OpenCodeAssembler,
    is_storage_root,
    storage_root_for,
    tool_part_succeeded,
)


def _write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")


class TestStorageIndex:
    """The listing phase."""

    def test_full_index(self, opencode_root: Path) -> None:
        index = OpenCodeAssembler(opencode_root).build_index()
        assert index.session_ids() == ["ses_001"]
        assert [p.name for p in index.messages["ses_001"]] == ["msg_001.json", "msg_002.json"]
        assert [p.name for p in index.parts["msg_002"]] == ["prt_001.json", "prt_002.json"]
        assert len(index.fragment_paths("ses_001")) == 6

    def test_restricted_index(self, opencode_root: Path) -> None:
        """Only the requested sessions' part directories are listed."""
        other = opencode_root / "part" / "msg_999"
        other.mkdir()
        (other / "prt_1.json").write_text("{}", encoding="utf-8")

        index = OpenCodeAssembler(opencode_root).build_index(["ses_001"])
        assert set(index.parts) == {"msg_001", "msg_002"}

    def test_newest_mtime_covers_fragments(self, opencode_root: Path) -> None:
        index = OpenCodeAssembler(opencode_root).build_index()
        part = opencode_root / "part" / "msg_002" / "prt_002.json"
        assert index.newest_mtime("ses_001") >= part.stat().st_mtime

    def test_hex_ids_keep_name_order(self, tmp_path: Path) -> None:
        """Fixed-width ids sort by name, not by the numbers inside them."""
        part_dir = tmp_path / "part" / "msg_1"
        part_dir.mkdir(parents=True)
        for name in ("prt_1a0", "prt_19a", "prt_0ff"):
            (part_dir / f"{name}.json").write_text("{}", encoding="utf-8")
        (tmp_path / "message" / "ses_1").mkdir(parents=True)

        index = OpenCodeAssembler(tmp_path).build_index()

        assert [p.stem for p in index.parts["msg_1"]] == ["prt_0ff", "prt_19a", "prt_1a0"]


class TestOpenCodeAssembly:
    """The join phase."""

    def test_assembles_session(self, opencode_root: Path) -> None:
        assembler = OpenCodeAssembler(opencode_root)
        session = assembler.assemble("ses_001", assembler.build_index())

        meta = session.metadata
        assert meta.session_id == "ses_001"
        assert meta.tool is Tool.OPENCODE
        assert meta.project_path == "/home/dev/web"
        assert meta.title == "Fix login"
        assert meta.started_at == datetime(2025, 1, 15, 10, 0, 0, tzinfo=UTC)
        assert meta.model == "claude-sonnet-4"
        assert session.partial is False
        assert assembler.issues == []

        roles = [m.role for m in session.messages]
        assert roles == [Role.USER, Role.SYSTEM, Role.ASSISTANT]
        assert session.messages[0].content == [TextBlock(text="Fix the login bug")]
        assert session.messages[1].content == [ModelChangeBlock(model="claude-sonnet-4")]

        reply = session.messages[2]
        assert reply.content[0] == TextBlock(text="Looking at it.")
        tool = reply.content[1]
        assert isinstance(tool, ToolResultBlock)
        assert tool.name == "read"
        assert tool.success is True
        assert tool.summary == "login.py"
        assert tool.file_path == "/home/dev/web/login.py"
        assert reply.timestamp == datetime(2025, 1, 15, 10, 0, 10, tzinfo=UTC)
        assert reply.usage is not None
        assert reply.usage.cache_read_tokens == 10
        assert reply.usage.cache_creation_tokens == 5
        assert reply.usage.cost == pytest.approx(0.0123)

    def test_assembly_is_idempotent(self, opencode_root: Path) -> None:
        """Two assemblies of unchanged storage render byte-identical output."""
        formatter = JsonlFormatter()
        first = OpenCodeAssembler(opencode_root).assemble_path(opencode_root / "message" / "ses_001")
        second = OpenCodeAssembler(opencode_root).assemble_path(opencode_root / "message" / "ses_001")
        assert formatter.render(first).encode() == formatter.render(second).encode()

    def test_missing_part_directory_is_partial(self, opencode_root: Path) -> None:
        shutil.rmtree(opencode_root / "part" / "msg_002")
        assembler = OpenCodeAssembler(opencode_root)
        session = assembler.assemble("ses_001", assembler.build_index())

        assert session.partial is True
        assert assembler.anomaly_count == 1
        assert assembler.issues[0].location == "part/msg_002"
        assert session.messages[0].content == [TextBlock(text="Fix the login bug")]

    def test_missing_session_object_is_partial(self, opencode_root: Path) -> None:
        shutil.rmtree(opencode_root / "session")
        assembler = OpenCodeAssembler(opencode_root)
        session = assembler.assemble("ses_001", assembler.build_index())
        assert session.partial is True
        assert session.metadata.started_at is None
        assert SessionStats.from_session(session).user_messages == 1

    def test_unknown_session_raises(self, opencode_root: Path) -> None:
        assembler = OpenCodeAssembler(opencode_root)
        with pytest.raises(EmptySessionError):
            assembler.assemble("ses_missing", assembler.build_index())

    def test_corrupt_part_is_skipped(self, opencode_root: Path) -> None:
        (opencode_root / "part" / "msg_002" / "prt_001.json").write_text("{oops", encoding="utf-8")
        assembler = OpenCodeAssembler(opencode_root)
        session = assembler.assemble("ses_001", assembler.build_index())
        assert [i.kind for i in assembler.issues] == ["malformed_record"]
        assert isinstance(session.messages[-1].content[0], ToolResultBlock)
        assert session.partial is False

    def test_undecodable_part_is_malformed(self, opencode_root: Path) -> None:
        (opencode_root / "part" / "msg_002" / "prt_001.json").write_bytes(b'{"text": "\xff"}')
        assembler = OpenCodeAssembler(opencode_root)
        session = assembler.assemble("ses_001", assembler.build_index())
        assert [i.kind for i in assembler.issues] == ["malformed_record"]
        assert SessionStats.from_session(session).assistant_messages == 1

    def test_hex_message_ids_in_name_order(self, tmp_path: Path) -> None:
        """``msg_19a`` precedes ``msg_1a0`` even though 19 > 1."""
        for message_id, text in (("msg_1a0", "second"), ("msg_19a", "first")):
            _write(tmp_path / "message" / "ses_x" / f"{message_id}.json", {"role": "user"})
            _write(tmp_path / "part" / message_id / "prt_1.json", {"type": "text", "text": text})
        assembler = OpenCodeAssembler(tmp_path)

        session = assembler.assemble("ses_x", assembler.build_index())

        assert [m.content[0].text for m in session.messages] == ["first", "second"]

    def test_messages_follow_creation_time(self, tmp_path: Path) -> None:
        for message_id, created, text in (("msg_a", 2000, "later"), ("msg_b", 1000, "earlier")):
            _write(
                tmp_path / "message" / "ses_x" / f"{message_id}.json",
                {"id": message_id, "role": "user", "time": {"created": created}},
            )
            _write(tmp_path / "part" / message_id / "prt_1.json", {"type": "text", "text": text})
        assembler = OpenCodeAssembler(tmp_path)

        session = assembler.assemble("ses_x", assembler.build_index())

        assert [m.content[0].text for m in session.messages] == ["earlier", "later"]

    def test_synthetic_user_parts_skipped(self, opencode_root: Path) -> None:
        path = opencode_root / "part" / "msg_001" / "prt_002.json"
        path.write_text(
            json.dumps({"type": "text", "text": "injected", "synthetic": True}), encoding="utf-8"
        )
        session = OpenCodeAssembler(opencode_root).assemble_path(opencode_root)
        assert session.messages[0].content == [TextBlock(text="Fix the login bug")]


class TestOpenCodeHelpers:
    """Path resolution and tool success."""

    def test_storage_root_for(self, opencode_root: Path) -> None:
        assert storage_root_for(opencode_root / "message" / "ses_001") == (opencode_root, "ses_001")
        assert storage_root_for(opencode_root) == (opencode_root, None)
        assert is_storage_root(opencode_root)
        assert not is_storage_root(opencode_root / "part")

    @pytest.mark.parametrize(
        ("state", "expected"),
        [
            ({"status": "completed"}, True),
            ({"status": "completed", "metadata": {"exit": 0}}, True),
            ({"status": "completed", "metadata": {"exit": 1}}, False),
            ({"status": "error"}, False),
            ({"status": "running"}, False),
            ({}, False),
        ],
    )
    def test_tool_part_succeeded(self, state: dict, expected: bool) -> None:
        assert tool_part_succeeded(state) is expected
