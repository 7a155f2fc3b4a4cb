"""Tests for the sessionlog CLI."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from sessionlog import __version__
from sessionlog.cli import app

runner = CliRunner()

DAY_TRANSCRIPT = """\
📋 Session: abc
📋 Project: /home/dev/proj

👤 Add a retry
🤖 Done.

📋 --- Summary ---
📋 Duration: 2m
📋 Messages: 1 user, 1 assistant
📋 Tool calls: 0 total, 0 failed
"""


@pytest.fixture(autouse=True)
def isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """No config, env overrides or real tool logs leak into the tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    for var in (
        "SESSIONLOG_OUTPUT_DIR",
        "SESSIONLOG_FORMAT",
        "SESSIONLOG_MODEL",
        "SESSIONLOG_PROVIDER",
        "SESSIONLOG_MAX_INPUT_BYTES",
    ):
        monkeypatch.delenv(var, raising=False)
    return home


def _ok(stdout: str) -> MagicMock:
    return MagicMock(returncode=0, stdout=stdout, stderr="")


def _day_transcripts(out: Path) -> None:
    month = out / "2025-03"
    month.mkdir(parents=True)
    (month / "2025-03-01T09-00-00-claude.txt").write_text(DAY_TRANSCRIPT, encoding="utf-8")
    (month / "2025-03-02T09-00-00-codex.txt").write_text(DAY_TRANSCRIPT, encoding="utf-8")


class TestMain:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestConvert:
    """Single-session conversion."""

    def test_text_to_stdout(self, claude_file: Path) -> None:
        result = runner.invoke(app, ["convert", str(claude_file)])
        assert result.exit_code == 0
        assert "📋 Session: sess-1" in result.output
        assert "👤 Hello" in result.output

    def test_jsonl_to_file(self, codex_file: Path, tmp_path: Path) -> None:
        target = tmp_path / "out" / "codex.jsonl"
        result = runner.invoke(
            app, ["convert", str(codex_file), "--format", "jsonl", "--output", str(target)]
        )
        assert result.exit_code == 0
        first = json.loads(target.read_text(encoding="utf-8").splitlines()[0])
        assert first["record"] == "metadata"
        assert first["tool"] == "codex"

    def test_opencode_session_dir(self, opencode_root: Path) -> None:
        result = runner.invoke(app, ["convert", str(opencode_root / "message" / "ses_001")])
        assert result.exit_code == 0
        assert "📋 Title: Fix login" in result.output

    def test_missing_path(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["convert", str(tmp_path / "nope.jsonl")])
        assert result.exit_code == 1

    def test_unrecognized(self, tmp_path: Path, write_jsonl) -> None:
        path = write_jsonl(tmp_path / "x.jsonl", [{"hello": "world"}])
        result = runner.invoke(app, ["convert", str(path)])
        assert result.exit_code == 1


class TestAll:
    """Batch conversion."""

    def test_input_directory(self, claude_file: Path, tmp_path: Path) -> None:
        out = tmp_path / "out"
        result = runner.invoke(
            app,
            ["all", "--detached", "--output", str(out), "--input", str(tmp_path / "claude")],
        )
        assert result.exit_code == 0, result.output
        assert "1 processed" in result.output
        assert (out / "2025-01" / "2025-01-15T10-00-00-claude.txt").exists()

    def test_second_run_skips(self, claude_file: Path, tmp_path: Path) -> None:
        args = ["all", "--detached", "-o", str(tmp_path / "out"), "-i", str(tmp_path / "claude")]
        runner.invoke(app, args)
        result = runner.invoke(app, args)
        assert result.exit_code == 0
        assert "0 processed" in result.output
        assert "1 skipped" in result.output

    def test_default_sources(self, isolated: Path, claude_records: list[dict], write_jsonl) -> None:
        write_jsonl(isolated / ".claude" / "projects" / "proj" / "sess-1.jsonl", claude_records)
        out = isolated.parent / "out"

        result = runner.invoke(app, ["all", "--detached", "--output", str(out)])

        assert result.exit_code == 0, result.output
        assert "claude: 1 input(s)" in result.output
        assert len(list(out.rglob("*-claude.txt"))) == 1

    def test_source_filter(self, isolated: Path, claude_records: list[dict], write_jsonl) -> None:
        write_jsonl(isolated / ".claude" / "projects" / "proj" / "sess-1.jsonl", claude_records)
        result = runner.invoke(
            app, ["all", "--detached", "-o", str(isolated.parent / "out"), "--source", "codex"]
        )
        assert result.exit_code == 0
        assert "No session files found" in result.output

    def test_missing_output_dir(self) -> None:
        result = runner.invoke(app, ["all", "--detached"])
        assert result.exit_code == 1

    def test_config_file_output(self, claude_file: Path, tmp_path: Path) -> None:
        out = tmp_path / "from-config"
        config = tmp_path / "sessionlog.toml"
        config.write_text(f'[output]\ndirectory = "{out}"\nformat = "jsonl"\n', encoding="utf-8")

        result = runner.invoke(
            app, ["all", "--config", str(config), "--input", str(tmp_path / "claude")]
        )

        assert result.exit_code == 0, result.output
        assert (out / "2025-01" / "2025-01-15T10-00-00-claude.jsonl").exists()


class TestCompact:
    """Compaction commands with the LLM CLI mocked."""

    @patch("sessionlog.llm.subprocess.run")
    def test_dailies(self, mock_run: MagicMock, tmp_path: Path) -> None:
        out = tmp_path / "out"
        _day_transcripts(out)
        mock_run.return_value = _ok("## proj\n- retries")

        result = runner.invoke(app, ["compact", "dailies", "--detached", "-o", str(out)])

        assert result.exit_code == 0, result.output
        assert "Compacted 2 day(s), 0 failed." in result.output
        assert (out / "2025-03" / "2025-03-01.compaction.md").exists()
        assert (out / "2025-03" / "2025-03-02.compaction.md").exists()

    @patch("sessionlog.llm.subprocess.run")
    def test_dailies_nothing_pending(self, mock_run: MagicMock, tmp_path: Path) -> None:
        out = tmp_path / "out"
        out.mkdir()
        result = runner.invoke(app, ["compact", "dailies", "--detached", "-o", str(out)])
        assert result.exit_code == 0
        assert "No pending days." in result.output
        mock_run.assert_not_called()

    @patch("sessionlog.llm.subprocess.run")
    def test_dailies_failure_exit_code(self, mock_run: MagicMock, tmp_path: Path) -> None:
        out = tmp_path / "out"
        _day_transcripts(out)
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="quota")

        result = runner.invoke(app, ["compact", "dailies", "--detached", "-o", str(out)])

        assert result.exit_code == 1
        assert not (out / "2025-03" / "2025-03-01.compaction.md").exists()

    @patch("sessionlog.llm.subprocess.run")
    def test_monthly(self, mock_run: MagicMock, tmp_path: Path) -> None:
        out = tmp_path / "out"
        month = out / "2025-03"
        month.mkdir(parents=True)
        (month / "2025-03-01.compaction.md").write_text("day one", encoding="utf-8")
        mock_run.return_value = _ok("# March")

        result = runner.invoke(
            app, ["compact", "monthly", "2025-03", "--detached", "-o", str(out), "-p", "codex"]
        )

        assert result.exit_code == 0, result.output
        assert (month / "2025-03.monthly.md").read_text(encoding="utf-8") == "# March\n"
        assert mock_run.call_args.args[0][:2] == ["codex", "exec"]

    def test_monthly_bad_month(self, tmp_path: Path) -> None:
        result = runner.invoke(
            app, ["compact", "monthly", "March", "--detached", "-o", str(tmp_path)]
        )
        assert result.exit_code == 1

    @patch("sessionlog.llm.subprocess.run")
    def test_compact_all(
        self,
        mock_run: MagicMock,
        isolated: Path,
        claude_records: list[dict],
        write_jsonl,
    ) -> None:
        write_jsonl(isolated / ".claude" / "projects" / "proj" / "sess-1.jsonl", claude_records)
        out = isolated.parent / "out"
        mock_run.return_value = _ok("summary")

        result = runner.invoke(app, ["compact", "all", "--detached", "-o", str(out)])

        assert result.exit_code == 0, result.output
        assert "Step 3/3" in result.output
        assert (out / "2025-01" / "2025-01-15.compaction.md").exists()
        assert (out / "2025-01" / "2025-01.monthly.md").exists()
        assert mock_run.call_count == 2


class TestSummary:
    def test_monthly_view(self, claude_file: Path, tmp_path: Path) -> None:
        out = tmp_path / "out"
        runner.invoke(app, ["all", "--detached", "-o", str(out), "-i", str(tmp_path / "claude")])

        result = runner.invoke(app, ["summary", "--detached", "-o", str(out)])

        assert result.exit_code == 0, result.output
        assert "Sessions by month" in result.output
        assert "2025-01" in result.output

    def test_detailed_view(self, tmp_path: Path) -> None:
        out = tmp_path / "out"
        _day_transcripts(out)
        result = runner.invoke(app, ["summary", "--detailed", "--detached", "-o", str(out)])
        assert result.exit_code == 0, result.output
        assert "Sessions by project" in result.output

    def test_empty_directory(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["summary", "--detached", "-o", str(tmp_path)])
        assert result.exit_code == 0
        assert "No transcripts found" in result.output

    def test_missing_directory(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["summary", "--detached", "-o", str(tmp_path / "nope")])
        assert result.exit_code == 1
