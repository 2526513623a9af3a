from __future__ import annotations

import shutil
from typing import Iterable, Optional, Sequence

import typer

from models.sensors import ParseResult, SensorSpec
from services.rollup import BackfillReport, BuildProgress, BuildResult
from services.series import SensorSeries


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


class ProgressLine:
    """Single, self-overwriting progress line on stderr."""

    bar_width = 30

    def __init__(self) -> None:
        self._active = False

    def __call__(self, progress: BuildProgress) -> None:
        if progress.current_file is None:
            self.clear()
            return
        fraction = progress.files_done / progress.files_total if progress.files_total else 1.0
        filled = round(fraction * self.bar_width)
        bar = "[" + "#" * filled + "-" * (self.bar_width - filled) + "]"
        line = (
            f"{bar} {round(fraction * 100):3d}% ({progress.files_done}/{progress.files_total}) "
            f"reading: {progress.current_file.name}  lines_read: {progress.lines_read}"
        )
        columns = shutil.get_terminal_size().columns
        typer.echo("\r" + line[: max(columns - 1, 1)], nl=False, err=True)
        self._active = True

    def clear(self) -> None:
        if not self._active:
            return
        columns = shutil.get_terminal_size().columns
        typer.echo("\r" + " " * max(columns - 1, 80) + "\r", nl=False, err=True)
        self._active = False


def render_build(result: BuildResult) -> None:
    label = f"[{result.level.value}] {result.output.name}"
    if result.skipped:
        typer.echo(f"{label}: skipped ({result.reason})")
        return
    typer.secho(
        f"{label}: wrote {result.written} lines "
        f"(files_read={result.files_read}, lines_read={result.lines_read}, "
        f"malformed={result.malformed}, buckets={result.buckets})",
        fg=typer.colors.GREEN,
    )
    for path in result.unreadable:
        typer.secho(f"  - unreadable input: {path.name}", fg=typer.colors.YELLOW)


def render_builds(results: Iterable[BuildResult]) -> None:
    for result in results:
        render_build(result)


def render_backfill(report: BackfillReport) -> None:
    echo_heading(f"Backfill {report.start.isoformat()} .. {report.end.isoformat()}")
    render_builds(report.five_minute)
    render_builds(report.upper)
    typer.echo()
    echo_heading("Failures")
    if not report.failures:
        typer.echo("No failures recorded.")
        return
    for failure in report.failures:
        typer.secho(
            f"  - {failure.day.isoformat()} [{failure.phase}]: {failure.reason}",
            fg=typer.colors.RED,
        )


def render_current(result: Optional[ParseResult], specs: Sequence[SensorSpec]) -> None:
    echo_heading("Current values")
    if result is None:
        typer.echo("No data.")
        return
    for spec in specs:
        value = result.per_metric.get(spec.key)
        if value is None:
            continue
        typer.echo(f"{spec.name or spec.key}: {value:.{spec.fraction}f} {spec.unit}".rstrip())


def render_series(series: Sequence[SensorSeries]) -> None:
    if not series:
        typer.echo("No data.")
        return
    for entry in series:
        spec = entry.spec
        echo_heading(f"{spec.name or spec.key} ({len(entry.points)} points)")
        for point in entry.points:
            typer.echo(f"{point.time}\t{point.value:.{spec.fraction}f}")
