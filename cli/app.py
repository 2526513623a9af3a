from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import List, Optional

import typer

from cli.render import (
    ProgressLine,
    render_backfill,
    render_builds,
    render_current,
    render_series,
)
from logging_config import configure_logging
from services.parser import build_parser
from services.rollup import RollupEngine, parse_day
from services.series import load_series
from settings import Settings, get_settings
from storage.layout import build_default_layout
from storage.tail import read_last_lines


@dataclass
class CLIState:
    settings: Settings
    engine: RollupEngine
    progress: ProgressLine


app = typer.Typer(
    help="Cascade rollups and downsampled views of sensor logs.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


def _day_option(value: str, name: str) -> date:
    try:
        return parse_day(value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint=name) from exc


def _range(start: str, end: Optional[str]) -> tuple[date, date]:
    first = _day_option(start, "--from")
    last = _day_option(end, "--to") if end else first
    if first > last:
        raise typer.BadParameter(f"{first} is after {last}.", param_hint="--from")
    return first, last


@app.callback()
def main(
    ctx: typer.Context,
    root: Optional[Path] = typer.Option(
        None,
        "--root",
        "-r",
        help="Data root holding raw logs and level directories (defaults to SENSOR_DATA_ROOT or ./logs).",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (defaults to LOG_LEVEL env or INFO).",
    ),
    progress: bool = typer.Option(
        False,
        "--progress/--no-progress",
        help="Show a progress line on stderr while building files.",
    ),
) -> None:
    """Entry point for the CLI."""
    configure_logging(log_level.upper() if log_level else None)
    settings = get_settings()
    layout = build_default_layout(root_path=str(root) if root is not None else None)
    progress_line = ProgressLine()
    engine = RollupEngine(layout=layout, progress=progress_line if progress else None)
    ctx.obj = CLIState(settings=settings, engine=engine, progress=progress_line)
    ctx.call_on_close(progress_line.clear)


@app.command("run")
def run_command(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Rebuild files that already exist."),
    gen_missing: bool = typer.Option(
        False, "--gen-missing", help="Generate synthetic raw data when today's raw file is missing."
    ),
    samples_per_minute: Optional[int] = typer.Option(
        None, "--samples-per-minute", "-s", min=1, help="Synthetic sampling rate."
    ),
) -> None:
    """Daily cascade: today's 5m file, upper levels, then cleanup."""
    state = _get_state(ctx)
    spm = samples_per_minute or state.settings.samples_per_minute
    try:
        results = state.engine.run_daily_cascade(
            force=force, generate_missing=gen_missing, samples_per_minute=spm
        )
    except OSError as exc:
        state.progress.clear()
        typer.secho(f"FATAL ERROR: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc
    render_builds(results)


@app.command("backfill")
def backfill_command(
    ctx: typer.Context,
    start: str = typer.Option(..., "--from", "-f", help="First day (YYYY-MM-DD)."),
    end: Optional[str] = typer.Option(None, "--to", "-t", help="Last day (defaults to --from)."),
    force: bool = typer.Option(False, "--force", help="Rebuild files that already exist."),
    gen_missing: bool = typer.Option(
        False, "--gen-missing", help="Generate synthetic raw data for days without a raw file."
    ),
    samples_per_minute: Optional[int] = typer.Option(
        None, "--samples-per-minute", "-s", min=1, help="Synthetic sampling rate."
    ),
) -> None:
    """Rebuild all levels for a date range (5m first, then upper levels)."""
    state = _get_state(ctx)
    first, last = _range(start, end)
    spm = samples_per_minute or state.settings.samples_per_minute
    try:
        report = state.engine.backfill(
            first, last, force=force, generate_missing=gen_missing, samples_per_minute=spm
        )
    except OSError as exc:
        state.progress.clear()
        typer.secho(f"FATAL ERROR: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc
    render_backfill(report)
    if not report.ok:
        raise typer.Exit(code=1)


@app.command("gen")
def gen_command(
    ctx: typer.Context,
    start: str = typer.Option(..., "--from", "-f", help="First day (YYYY-MM-DD)."),
    end: Optional[str] = typer.Option(None, "--to", "-t", help="Last day (defaults to --from)."),
    samples_per_minute: Optional[int] = typer.Option(
        None, "--samples-per-minute", "-s", min=1, help="Synthetic sampling rate."
    ),
) -> None:
    """Generate synthetic raw logs, keeping files that already exist."""
    state = _get_state(ctx)
    first, last = _range(start, end)
    spm = samples_per_minute or state.settings.samples_per_minute
    generated = state.engine.gen_range(first, last, samples_per_minute=spm)
    typer.secho(f"Generated {len(generated)} raw file(s).", fg=typer.colors.GREEN)
    for path in generated:
        typer.echo(f"  - {path.name}")


@app.command("tail")
def tail_command(
    ctx: typer.Context,
    file: Optional[Path] = typer.Argument(None, help="Log file (defaults to SENSOR_LOG_FILE)."),
    lines: Optional[int] = typer.Option(None, "--lines", "-n", min=1, help="Number of lines to read."),
    show_lines: bool = typer.Option(False, "--show-lines", help="Print the raw lines as well."),
) -> None:
    """Show the newest lines of a live log and the values parsed from them."""
    state = _get_state(ctx)
    path = file if file is not None else Path(state.settings.live_log_file)
    limit = lines or state.settings.history_length
    try:
        recent = read_last_lines(path, limit, state.settings.tail_block_size)
    except OSError as exc:
        typer.secho(f"Unable to read {path}: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    if show_lines:
        for line in recent:
            typer.echo(line)
        typer.echo()
    specs = state.settings.sensor_specs
    render_current(build_parser(tuple(specs)).parse(recent), specs)


@app.command("series")
def series_command(
    ctx: typer.Context,
    period: str = typer.Argument("raw", help="raw, 1d, 1w, 1m, 3m, 6m, 1y, 2y or 5y."),
    length: int = typer.Option(300, "--length", "-l", help="Maximum points per sensor (2..5000)."),
    ratio: float = typer.Option(1.0, "--ratio", help="0 = uniform spacing, 1 = logarithmic."),
    keys: Optional[List[str]] = typer.Option(None, "--key", "-k", help="Only these sensor keys."),
) -> None:
    """Print a downsampled series per sensor for a period."""
    state = _get_state(ctx)
    settings = state.settings
    try:
        series = load_series(
            state.engine.layout,
            period,
            settings.sensor_specs,
            live_log=Path(settings.live_log_file),
            length=length,
            ratio=ratio,
            keys=keys,
            history_length=settings.history_length,
            block_size=settings.tail_block_size,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="period") from exc
    render_series(series)
