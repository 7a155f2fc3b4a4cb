"""Tests for transcript statistics."""

from __future__ import annotations

from pathlib import Path

import pytest

from sessionlog.batch import BatchProcessor
from sessionlog.formatters import TextFormatter
from sessionlog.parsers import parse_path
from sessionlog.summary import (
    TranscriptStats,
    by_month_and_tool,
    by_project,
    collect_stats,
    parse_duration,
    parse_token_value,
    parse_transcript,
    shorten_project,
    tool_from_name,
)


def _stats(month: str, tool: str, project: str = "", **counts: int) -> TranscriptStats:
    return TranscriptStats(month=month, tool=tool, project=project, **counts)


class TestParseTranscript:
    """Reading the summary block back."""

    def test_rendered_claude_transcript(self, claude_file: Path) -> None:
        session, _ = parse_path(claude_file)
        stats = parse_transcript(TextFormatter().render(session), "2025-01", "claude")

        assert stats.project == "/home/dev/proj"
        assert stats.duration_seconds == 5
        assert (stats.user_messages, stats.assistant_messages) == (1, 1)
        assert (stats.tool_ok, stats.tool_failed) == (0, 0)
        assert (stats.input_tokens, stats.output_tokens) == (100, 50)

    def test_codex_function_calls(self, codex_file: Path) -> None:
        session, _ = parse_path(codex_file)
        stats = parse_transcript(TextFormatter().render(session), "2025-02", "codex")
        assert (stats.tool_ok, stats.tool_failed) == (1, 0)
        assert stats.input_tokens == 1200

    def test_missing_summary(self) -> None:
        stats = parse_transcript("👤 hi\n🤖 hello\n", "2025-01", "claude")
        assert stats.user_messages == 0
        assert stats.project == ""


class TestValueParsing:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [("5s", 5), ("1h 5m", 3900), ("2m", 120), ("", 0), ("soon", 0)],
    )
    def test_parse_duration(self, value: str, expected: int) -> None:
        assert parse_duration(value) == expected

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("999", 999), ("1.5K", 1500), ("2.0M", 2_000_000), ("n/a", 0)],
    )
    def test_parse_token_value(self, value: str, expected: int) -> None:
        assert parse_token_value(value) == expected

    def test_shorten_project(self) -> None:
        assert shorten_project("/home/dev/work/acme/api") == "work/acme/api"
        assert shorten_project("C:\\src\\app") == "C:/src/app"
        assert shorten_project("proj") == "proj"

    def test_tool_from_name(self) -> None:
        assert tool_from_name(Path("2025-01-15T10-00-00-codex.txt")) == "codex"

    def test_tool_from_collided_name(self) -> None:
        """Batch appends the input stem on collisions; the tool stays first."""
        assert tool_from_name(Path("2025-01-15T10-00-00-claude-abc-def.txt")) == "claude"


class TestCollectStats:
    def test_only_dated_transcripts(self, tmp_path: Path) -> None:
        month = tmp_path / "2025-01"
        month.mkdir()
        (month / "2025-01-15T10-00-00-claude.txt").write_text(
            "📋 Messages: 2 user, 3 assistant\n", encoding="utf-8"
        )
        (month / "2025-01-15.compaction.md").write_text("x", encoding="utf-8")
        (month / "notes.txt").write_text("📋 Messages: 9 user, 9 assistant\n", encoding="utf-8")

        stats = collect_stats(tmp_path)

        assert len(stats) == 1
        assert (stats[0].month, stats[0].tool, stats[0].user_messages) == ("2025-01", "claude", 2)

    def test_collided_outputs_keep_their_tool(
        self, tmp_path: Path, claude_records: list[dict], write_jsonl
    ) -> None:
        a = write_jsonl(tmp_path / "in" / "a.jsonl", claude_records)
        b = write_jsonl(tmp_path / "in" / "b.jsonl", claude_records)
        out = tmp_path / "out"
        BatchProcessor(out).run([a, b])

        stats = collect_stats(out)

        assert [s.tool for s in stats] == ["claude", "claude"]
        assert by_month_and_tool(stats).tools == ["claude"]


class TestAggregation:
    def test_by_month_and_tool(self) -> None:
        stats = [
            _stats("2025-02", "codex", input_tokens=10),
            _stats("2025-01", "claude", input_tokens=5, output_tokens=5),
            _stats("2025-01", "claude", duration_seconds=60),
            _stats("2025-01", "opencode"),
        ]

        table = by_month_and_tool(stats)

        assert table.months == ["2025-01", "2025-02"]
        assert table.tools == ["claude", "codex", "opencode"]
        assert table.cells["2025-01"]["claude"].sessions == 2
        assert "codex" not in table.cells["2025-01"]
        assert table.month_totals["2025-01"].sessions == 3
        assert table.month_totals["2025-01"].total_tokens == 10
        assert table.tool_totals["codex"].input_tokens == 10
        assert table.grand_total.sessions == 4
        assert table.grand_total.duration_seconds == 60

    def test_by_project(self) -> None:
        stats = [
            _stats("2025-01", "claude", project="/a/b/c/d", tool_ok=2),
            _stats("2025-01", "codex", project="/x/b/c/d", tool_failed=1),
            _stats("2025-01", "codex"),
        ]

        projects = by_project(stats)

        assert list(projects) == ["b/c/d", "unknown"]
        assert projects["b/c/d"].sessions == 2
        assert (projects["b/c/d"].tool_ok, projects["b/c/d"].tool_failed) == (2, 1)
