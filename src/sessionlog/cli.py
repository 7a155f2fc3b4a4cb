"""CLI interface for sessionlog."""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from sessionlog.batch import BatchProcessor, BatchResult
from sessionlog.compact import (
    CompactionError,
    CompactionSynthesizer,
    DayOutcome,
    MonthlyCompactor,
    MonthlyRun,
    run_dailies,
    run_pending_monthlies,
)
from sessionlog.config import SessionLogConfig, load_config, merge_cli_overrides
from sessionlog.discover import find_session_files, resolve_sources
from sessionlog.errors import EmptySessionError, SessionIOError, UnrecognizedFormatError
from sessionlog.formatters import OutputFormat, create_formatter
from sessionlog.formatters.text import format_tokens
from sessionlog.llm import Provider
from sessionlog.parsers import Tool, parse_path
from sessionlog.summary import (
    Aggregate,
    TranscriptStats,
    by_month_and_tool,
    by_project,
    collect_stats,
)

app = typer.Typer(
    name="sessionlog",
    help="Normalize AI coding assistant session logs into transcripts and summaries.",
    no_args_is_help=True,
)
compact_app = typer.Typer(help="Compact transcripts into daily and monthly summaries.")
app.add_typer(compact_app, name="compact")

console = Console()
err_console = Console(stderr=True)

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Config file (default: .sessionlog.toml or ~/.config)."),
]
DetachedOption = Annotated[
    bool,
    typer.Option("--detached", help="Ignore config files; use flags and env vars only."),
]
OutputOption = Annotated[
    Optional[Path],
    typer.Option("--output", "-o", help="Output root directory."),
]
ModelOption = Annotated[
    Optional[str],
    typer.Option("--model", "-m", help="Model name passed to the LLM provider."),
]
ProviderOption = Annotated[
    Optional[Provider],
    typer.Option("--provider", "-p", help="LLM provider CLI to run."),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from sessionlog import __version__

        console.print(f"sessionlog {__version__}")
        raise typer.Exit()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging."),
    ] = False,
) -> None:
    """sessionlog - Claude Code, Codex and OpenCode logs as plain transcripts."""
    _setup_logging(verbose)


def _load(config_path: Path | None, detached: bool, **overrides: object) -> SessionLogConfig:
    config = SessionLogConfig() if detached else load_config(config_path)
    return merge_cli_overrides(config, **overrides)


def _require_output(config: SessionLogConfig) -> Path:
    output = config.output_path
    if output is None:
        err_console.print("[red]Error:[/red] No output directory.")
        err_console.print("Pass --output or set \\[output] directory in .sessionlog.toml.")
        raise typer.Exit(1)
    return output


def _synthesizer(config: SessionLogConfig) -> CompactionSynthesizer:
    return CompactionSynthesizer(config.compact)


@app.command()
def convert(
    path: Annotated[
        Path,
        typer.Argument(help="Session file, or an OpenCode message/ses_* directory."),
    ],
    output_format: Annotated[
        OutputFormat,
        typer.Option("--format", "-f", help="Output format."),
    ] = OutputFormat.TEXT,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write to this file instead of stdout."),
    ] = None,
) -> None:
    """Convert one session and print it (or write it with --output)."""
    if not path.exists():
        err_console.print(f"[red]Error:[/red] Path not found: {path}")
        raise typer.Exit(1)

    try:
        session, issues = parse_path(path)
    except (UnrecognizedFormatError, EmptySessionError, SessionIOError) as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)

    if issues:
        err_console.print(f"[yellow]{len(issues)} record(s) skipped or repaired.[/yellow]")
    if session.partial:
        err_console.print("[yellow]Session assembled from incomplete storage.[/yellow]")

    rendered = create_formatter(output_format).render(session)
    if output is None:
        typer.echo(rendered, nl=False)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(rendered, encoding="utf-8")
    err_console.print(f"Wrote {output}")


def _collect_inputs(
    config: SessionLogConfig, input_dir: Path | None, tools: list[Tool] | None
) -> list[Path]:
    if input_dir is not None:
        return find_session_files(input_dir)
    inputs: list[Path] = []
    for tool, directory in resolve_sources(config.sources.overrides()):
        if tools and tool not in tools:
            continue
        found = find_session_files(directory, tool)
        console.print(f"  - {tool}: {len(found)} input(s) in {directory}")
        inputs.extend(found)
    return inputs


def _run_batch(
    config: SessionLogConfig,
    *,
    input_dir: Path | None = None,
    tools: list[Tool] | None = None,
    force: bool = False,
    filter_dir: Path | None = None,
) -> BatchResult:
    output = _require_output(config)
    inputs = _collect_inputs(config, input_dir, tools)
    if not inputs:
        console.print("[yellow]No session files found.[/yellow]")
        return BatchResult()

    processor = BatchProcessor(
        output,
        config.output.format,
        force=force,
        filter_dir=filter_dir.resolve() if filter_dir else None,
        workers=config.batch.workers,
    )
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=console,
    ) as progress:
        task = progress.add_task("Converting sessions...", total=len(inputs))
        result = processor.run(inputs, on_unit=lambda _: progress.advance(task))

    console.print(
        f"[green]{result.processed} processed[/green], {result.skipped} skipped, "
        f"{result.empty} empty, {result.unrecognized} unrecognized, "
        f"[red]{result.failed} failed[/red]"
    )
    for error in result.report.errors:
        if error.error_type == "io_error":
            console.print(f"  [red]FAIL[/red] {error.source}: {error.message}")
    return result


@app.command(name="all")
def all_cmd(
    output: OutputOption = None,
    output_format: Annotated[
        Optional[OutputFormat],
        typer.Option("--format", "-f", help="Output format."),
    ] = None,
    input_dir: Annotated[
        Optional[Path],
        typer.Option(
            "--input",
            "-i",
            help="Convert this directory instead of the discovered tool directories.",
            exists=True,
            file_okay=False,
            dir_okay=True,
        ),
    ] = None,
    source: Annotated[
        Optional[list[Tool]],
        typer.Option("--source", "-s", help="Only these tools (claude, codex, opencode)."),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", help="Regenerate even if the output is newer than the input."),
    ] = False,
    filter_dir: Annotated[
        Optional[Path],
        typer.Option("--filter-dir", help="Only sessions whose project is under this path."),
    ] = None,
    workers: Annotated[
        Optional[int],
        typer.Option("--workers", "-w", min=1, help="Parallel conversion threads."),
    ] = None,
    config_path: ConfigOption = None,
    detached: DetachedOption = False,
) -> None:
    """Convert every session from the configured or default log directories."""
    config = _load(
        config_path,
        detached,
        output_directory=output,
        output_format=output_format,
        workers=workers,
    )
    result = _run_batch(
        config, input_dir=input_dir, tools=source, force=force, filter_dir=filter_dir
    )
    if result.failed:
        raise typer.Exit(1)


def _print_day(position: int, total: int, outcome: DayOutcome) -> None:
    label = f"[{position}/{total}] {outcome.day} ({outcome.sessions} sessions)"
    if outcome.status == "ok":
        console.print(f"{label} [green]OK[/green]")
    else:
        console.print(f"{label} [red]FAIL[/red] {outcome.error}")


def _print_month(run: MonthlyRun) -> None:
    if run.skipped:
        console.print(f"{run.month}: already compacted")
    elif run.failed:
        console.print(f"{run.month}: [red]FAIL[/red] {run.reason}")
    else:
        chunks = f", {len(run.chunks)} chunks + merge" if len(run.chunks) > 1 else ""
        console.print(f"{run.month}: [green]OK[/green] {run.output_path}{chunks}")


@compact_app.command("dailies")
def compact_dailies(
    input_dir: Annotated[
        Optional[Path],
        typer.Option("--input", "-i", help="Transcript directory (default: output directory)."),
    ] = None,
    output: OutputOption = None,
    limit: Annotated[
        Optional[int],
        typer.Option("--limit", "-l", min=1, help="Process at most this many days."),
    ] = None,
    model: ModelOption = None,
    provider: ProviderOption = None,
    config_path: ConfigOption = None,
    detached: DetachedOption = False,
) -> None:
    """Summarize each day's transcripts into <YYYY-MM>/<day>.compaction.md."""
    config = _load(config_path, detached, output_directory=output, model=model, provider=provider)
    output_dir = _require_output(config)
    source = input_dir or output_dir
    if not source.is_dir():
        err_console.print(f"[red]Error:[/red] Input directory not found: {source}")
        raise typer.Exit(1)

    result = run_dailies(source, output_dir, _synthesizer(config), limit=limit, on_day=_print_day)
    if not result.outcomes:
        console.print("No pending days.")
        return
    console.print(f"Compacted {result.compacted} day(s), {result.failed} failed.")
    if result.failed:
        raise typer.Exit(1)


@compact_app.command("monthly")
def compact_monthly(
    month: Annotated[str, typer.Argument(help="Month to compact (YYYY-MM).")],
    output: OutputOption = None,
    model: ModelOption = None,
    provider: ProviderOption = None,
    max_input_bytes: Annotated[
        Optional[int],
        typer.Option("--max-input-bytes", min=1, help="Per-call input budget in bytes."),
    ] = None,
    config_path: ConfigOption = None,
    detached: DetachedOption = False,
) -> None:
    """Synthesize one month's daily summaries into <YYYY-MM>.monthly.md."""
    config = _load(
        config_path,
        detached,
        output_directory=output,
        model=model,
        provider=provider,
        max_input_bytes=max_input_bytes,
    )
    output_dir = _require_output(config)
    compactor = MonthlyCompactor(_synthesizer(config), on_step=lambda m: console.print(m))
    try:
        run = compactor.run(output_dir, month)
    except CompactionError as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)
    _print_month(run)
    if run.failed:
        raise typer.Exit(1)


@compact_app.command("all")
def compact_all(
    output: OutputOption = None,
    model: ModelOption = None,
    provider: ProviderOption = None,
    config_path: ConfigOption = None,
    detached: DetachedOption = False,
) -> None:
    """Run the whole pipeline: sessions, then dailies, then monthlies."""
    config = _load(config_path, detached, output_directory=output, model=model, provider=provider)
    output_dir = _require_output(config)

    console.print("[bold]Step 1/3:[/bold] converting sessions")
    batch = _run_batch(config)

    console.print("[bold]Step 2/3:[/bold] daily compaction")
    synthesizer = _synthesizer(config)
    dailies = run_dailies(output_dir, output_dir, synthesizer, on_day=_print_day)

    console.print("[bold]Step 3/3:[/bold] monthly compaction")
    runs = run_pending_monthlies(output_dir, MonthlyCompactor(synthesizer))
    for run in runs:
        _print_month(run)

    if batch.failed or dailies.failed or any(r.failed for r in runs):
        raise typer.Exit(1)


def _duration(seconds: int) -> str:
    if seconds <= 0:
        return "-"
    hours, rem = divmod(seconds, 3600)
    return f"{hours}h {rem // 60}m" if hours else f"{rem // 60}m"


def _monthly_table(stats: list[TranscriptStats]) -> Table:
    summary = by_month_and_tool(stats)
    table = Table(title="Sessions by month")
    table.add_column("Month")
    for tool in summary.tools:
        table.add_column(tool, justify="right")
    for name in ("Total", "Tokens", "Duration"):
        table.add_column(name, justify="right")

    for month in summary.months:
        cells = summary.cells[month]
        total = summary.month_totals[month]
        table.add_row(
            month,
            *(str(cells[t].sessions) if t in cells else "-" for t in summary.tools),
            str(total.sessions),
            format_tokens(total.total_tokens),
            _duration(total.duration_seconds),
        )

    grand = summary.grand_total
    table.add_section()
    table.add_row(
        "Total",
        *(str(summary.tool_totals[t].sessions) for t in summary.tools),
        str(grand.sessions),
        format_tokens(grand.total_tokens),
        _duration(grand.duration_seconds),
        style="bold",
    )
    return table


def _project_table(stats: list[TranscriptStats]) -> Table:
    table = Table(title="Sessions by project")
    table.add_column("Project")
    for name in (
        "Sessions", "User", "Asst", "Tools (ok/fail)", "Tokens (in/out)", "Duration"
    ):
        table.add_column(name, justify="right")

    total = Aggregate()
    for project, agg in by_project(stats).items():
        table.add_row(project, *_aggregate_cells(agg))
        total.merge(agg)
    table.add_section()
    table.add_row("Total", *_aggregate_cells(total), style="bold")
    return table


def _aggregate_cells(agg: Aggregate) -> list[str]:
    return [
        str(agg.sessions),
        str(agg.user_messages),
        str(agg.assistant_messages),
        f"{agg.tool_ok}/{agg.tool_failed}",
        f"{format_tokens(agg.input_tokens)}/{format_tokens(agg.output_tokens)}",
        _duration(agg.duration_seconds),
    ]


@app.command()
def summary(
    detailed: Annotated[
        bool,
        typer.Option("--detailed", help="Per-project stats instead of month by tool."),
    ] = False,
    output: OutputOption = None,
    config_path: ConfigOption = None,
    detached: DetachedOption = False,
) -> None:
    """Show statistics over the rendered text transcripts."""
    config = _load(config_path, detached, output_directory=output)
    output_dir = _require_output(config)
    if not output_dir.is_dir():
        err_console.print(f"[red]Error:[/red] Output directory not found: {output_dir}")
        raise typer.Exit(1)

    stats = collect_stats(output_dir)
    if not stats:
        console.print(f"No transcripts found in {output_dir}")
        return
    console.print(_project_table(stats) if detailed else _monthly_table(stats))


if __name__ == "__main__":
    app()
