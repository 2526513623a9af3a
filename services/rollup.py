"""Cascade aggregation of raw and aggregated sensor logs into coarser buckets.

raw -> 5m -> 30m -> 2h -> 12h -> 1w. Each level keeps one file per UTC day;
a day's file for level L is built from the parent level's files for the
retention window ending on that day.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from models.levels import (
    LEVEL_POLICIES,
    UPPER_LEVELS,
    Level,
    format_bucket,
    parse_timestamp,
    truncate,
)
from models.records import AggregatedRecord, AggregateRecord, RawRecord, RollupInput
from services.synthetic import generate_raw_for_date
from storage.layout import DataLayout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildProgress:
    level: Level
    output: Path
    files_done: int
    files_total: int
    current_file: Optional[Path]
    lines_read: int


ProgressCallback = Callable[[BuildProgress], None]


@dataclass
class BuildResult:
    """Outcome of building (or skipping) one aggregate file."""

    level: Level
    output: Path
    written: int = 0
    buckets: int = 0
    lines_read: int = 0
    files_read: int = 0
    malformed: int = 0
    unreadable: List[Path] = field(default_factory=list)
    skipped: bool = False
    reason: Optional[str] = None


@dataclass(frozen=True)
class BackfillFailure:
    day: date
    phase: str
    reason: str


@dataclass
class BackfillReport:
    start: date
    end: date
    five_minute: List[BuildResult] = field(default_factory=list)
    upper: List[BuildResult] = field(default_factory=list)
    failures: List[BackfillFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass(slots=True)
class _Accumulator:
    total: float = 0.0
    count: int = 0


def parse_record(line: str) -> Optional[RollupInput]:
    """Resolve a line as ``time metric value`` or ``time metric average count``.

    A fourth field that is not a positive finite number is ignored and the line
    is read as a raw record. Returns ``None`` for anything else.
    """
    parts = line.split()
    if len(parts) < 3:
        return None
    time_text, metric, value_text = parts[0], parts[1], parts[2]
    try:
        value = float(value_text)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None

    if len(parts) >= 4:
        try:
            count = float(parts[3])
        except ValueError:
            count = math.nan
        if math.isfinite(count) and count >= 1:
            return AggregatedRecord(time=time_text, metric=metric, average=value, count=int(count))

    return RawRecord(time=time_text, metric=metric, value=value)


def iter_records(path: Path) -> Iterator[RollupInput]:
    """Stream the parseable records of a raw or aggregate file."""
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        for line in handle:
            record = parse_record(line)
            if record is not None:
                yield record


class _BucketTable:
    """Running weighted sums keyed by (bucket, metric)."""

    def __init__(self, level: Level) -> None:
        self.level = Level(level)
        self._buckets: Dict[datetime, Dict[str, _Accumulator]] = {}
        self._last_time: Optional[str] = None
        self._last_bucket: Optional[datetime] = None

    def add(self, record: RollupInput) -> None:
        # Raw logs repeat one timestamp for every metric of a reading.
        if record.time != self._last_time:
            self._last_bucket = truncate(self.level, parse_timestamp(record.time))
            self._last_time = record.time
        bucket = self._buckets.setdefault(self._last_bucket, {})
        slot = bucket.get(record.metric)
        if slot is None:
            slot = bucket[record.metric] = _Accumulator()
        slot.total += record.value * record.count
        slot.count += record.count

    def __len__(self) -> int:
        return len(self._buckets)

    def records(self) -> Iterator[AggregateRecord]:
        for bucket in sorted(self._buckets):
            metrics = self._buckets[bucket]
            for metric in sorted(metrics):
                slot = metrics[metric]
                average = slot.total / slot.count if slot.count else 0.0
                yield AggregateRecord(bucket=bucket, metric=metric, average=average, count=slot.count)


def aggregate_records(records: Iterable[RollupInput], level: Level) -> List[AggregateRecord]:
    """In-memory rollup of ``records`` at ``level``, sorted by bucket then metric."""
    table = _BucketTable(level)
    for record in records:
        table.add(record)
    return list(table.records())


def format_aggregate_line(record: AggregateRecord) -> str:
    return f"{format_bucket(record.bucket)}\t{record.metric}\t{record.average:.2f}\t{record.count}\n"


def _write_atomically(output_file: Path, records: Iterable[AggregateRecord]) -> int:
    output_file.parent.mkdir(parents=True, exist_ok=True)
    temp_path = output_file.with_name(output_file.name + ".tmp")
    written = 0
    try:
        with temp_path.open("w", encoding="utf-8", newline="\n") as handle:
            for record in records:
                handle.write(format_aggregate_line(record))
                written += 1
        temp_path.replace(output_file)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise
    return written


def aggregate_files_to_interval(
    input_files: Sequence[Path],
    level: Level,
    output_file: Path,
    progress: Optional[ProgressCallback] = None,
) -> BuildResult:
    """Stream ``input_files`` into one sorted aggregate file at ``level``.

    Inputs may mix raw and aggregated records; aggregated ones are weighted by
    their count so the combined average stays exact. Malformed lines are
    counted and skipped, unreadable inputs are logged and skipped. The output
    is written to a temporary sibling and renamed into place.
    """
    level = Level(level)
    result = BuildResult(level=level, output=output_file)
    if not input_files:
        logger.info(
            "No input files, skipping build",
            extra={"level": level.value, "path": output_file.name},
        )
        result.skipped = True
        result.reason = "no inputs"
        return result

    logger.info(
        "Building aggregate",
        extra={"level": level.value, "path": output_file.name, "files_total": len(input_files)},
    )
    table = _BucketTable(level)
    total = len(input_files)

    def report(current: Optional[Path]) -> None:
        if progress is not None:
            progress(
                BuildProgress(
                    level=level,
                    output=output_file,
                    files_done=result.files_read,
                    files_total=total,
                    current_file=current,
                    lines_read=result.lines_read,
                )
            )

    for input_file in input_files:
        report(input_file)
        result.files_read += 1
        try:
            with input_file.open("r", encoding="utf-8", errors="replace") as handle:
                for line in handle:
                    if not line.strip():
                        continue
                    result.lines_read += 1
                    record = parse_record(line)
                    if record is None:
                        result.malformed += 1
                        continue
                    try:
                        table.add(record)
                    except ValueError:
                        result.malformed += 1
        except OSError as exc:
            result.unreadable.append(input_file)
            logger.warning(
                "Failed reading input, skipping",
                extra={"level": level.value, "path": input_file.name, "reason": str(exc)},
            )
            continue
        logger.debug(
            "Read input",
            extra={
                "level": level.value,
                "path": input_file.name,
                "files_read": result.files_read,
                "lines_read": result.lines_read,
            },
        )
    report(None)

    result.buckets = len(table)
    result.written = _write_atomically(output_file, table.records())
    logger.info(
        "Wrote aggregate",
        extra={
            "level": level.value,
            "path": output_file.name,
            "written": result.written,
            "files_read": result.files_read,
            "lines_read": result.lines_read,
            "malformed": result.malformed,
            "buckets": result.buckets,
        },
    )
    return result


def parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise ValueError(f"Bad date: {value!r}") from exc


def iter_days(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class RollupEngine:
    """Builds and maintains the per-day level files under a ``DataLayout``."""

    def __init__(
        self,
        layout: DataLayout,
        clock: Callable[[], date] = _utc_today,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.layout = layout
        self.clock = clock
        self.progress = progress

    def generate_5m_for_date(
        self,
        day: date,
        *,
        force: bool = False,
        generate_missing: bool = False,
        samples_per_minute: int = 1,
    ) -> Optional[BuildResult]:
        """Aggregate the raw file for ``day`` into its 5m file.

        Returns ``None`` when there is no raw input and generation is disabled.
        """
        output = self.layout.aggregate_path(Level.five_minutes, day)
        if output.exists() and not force:
            logger.info(
                "Output exists, skipping",
                extra={"level": Level.five_minutes.value, "date": day.isoformat(), "path": output.name},
            )
            return BuildResult(level=Level.five_minutes, output=output, skipped=True, reason="exists")

        raw = self.layout.find_raw_file(day)
        if raw is None:
            if not generate_missing:
                logger.info(
                    "Raw file not found, skipping",
                    extra={"level": Level.five_minutes.value, "date": day.isoformat()},
                )
                return None
            logger.info(
                "Raw file missing, generating synthetic data",
                extra={"level": Level.five_minutes.value, "date": day.isoformat()},
            )
            raw = generate_raw_for_date(self.layout, day, samples_per_minute=samples_per_minute)

        return aggregate_files_to_interval([raw], Level.five_minutes, output, progress=self.progress)

    def generate_upper_levels_for_date(self, day: date, *, force: bool = False) -> List[BuildResult]:
        """Build the 30m, 2h, 12h and 1w files for ``day`` in chain order."""
        return [self.generate_level_for_date(level, day, force=force) for level in UPPER_LEVELS]

    def generate_level_for_date(self, level: Level, day: date, *, force: bool = False) -> BuildResult:
        """Build one upper level's file for ``day`` from its parent's retention window."""
        policy = LEVEL_POLICIES[level]
        output = self.layout.aggregate_path(level, day)
        inputs = self.layout.files_for_last_days(policy.parent, policy.retention_days, day)
        if not inputs:
            logger.info(
                "No parent inputs in retention window, skipping",
                extra={
                    "level": level.value,
                    "date": day.isoformat(),
                    "reason": f"need {policy.parent.value} files from last {policy.retention_days} days",
                },
            )
            return BuildResult(level=level, output=output, skipped=True, reason="no inputs")
        if output.exists() and not force:
            logger.info(
                "Output exists, skipping",
                extra={"level": level.value, "date": day.isoformat(), "path": output.name},
            )
            return BuildResult(level=level, output=output, skipped=True, reason="exists")
        return aggregate_files_to_interval(inputs, level, output, progress=self.progress)

    def prune_expired(self, today: Optional[date] = None) -> List[Path]:
        """Remove daily files past their level's retention plus buffer."""
        today = today or self.clock()
        removed: List[Path] = []
        for level, policy in LEVEL_POLICIES.items():
            if policy.prune_buffer_days is None:
                continue
            keep_days = policy.retention_days + policy.prune_buffer_days
            try:
                removed.extend(self.layout.prune(level, keep_days, today))
            except OSError as exc:
                logger.warning(
                    "Cleanup failed",
                    extra={"level": level.value, "reason": str(exc)},
                )
        return removed

    def run_daily_cascade(
        self,
        *,
        force: bool = False,
        generate_missing: bool = False,
        samples_per_minute: int = 1,
    ) -> List[BuildResult]:
        """Scheduled job: today's 5m file, today's upper levels, then cleanup."""
        today = self.clock()
        logger.info("Daily run started", extra={"date": today.isoformat()})
        self.layout.ensure_directories()

        results: List[BuildResult] = []
        five_minute = self.generate_5m_for_date(
            today,
            force=force,
            generate_missing=generate_missing,
            samples_per_minute=samples_per_minute,
        )
        if five_minute is not None:
            results.append(five_minute)
        results.extend(self.generate_upper_levels_for_date(today, force=force))
        self.prune_expired(today)

        logger.info("Daily run complete", extra={"date": today.isoformat()})
        return results

    def backfill(
        self,
        start: date,
        end: date,
        *,
        force: bool = False,
        generate_missing: bool = False,
        samples_per_minute: int = 1,
    ) -> BackfillReport:
        """Rebuild a historical range in two phases.

        Every 5m file in the range is produced before any upper level is built,
        since an upper-level day reads parent files from across the range.
        Per-date I/O failures are recorded in the report and do not stop the run.
        """
        if start > end:
            raise ValueError(f"Backfill range is reversed: {start} > {end}")
        logger.info("Backfill started", extra={"date": f"{start.isoformat()}..{end.isoformat()}"})
        self.layout.ensure_directories()
        report = BackfillReport(start=start, end=end)

        for day in iter_days(start, end):
            try:
                result = self.generate_5m_for_date(
                    day,
                    force=force,
                    generate_missing=generate_missing,
                    samples_per_minute=samples_per_minute,
                )
            except OSError as exc:
                self._record_failure(report, day, Level.five_minutes.value, exc)
                continue
            if result is not None:
                report.five_minute.append(result)

        for day in iter_days(start, end):
            for level in UPPER_LEVELS:
                try:
                    report.upper.append(self.generate_level_for_date(level, day, force=force))
                except OSError as exc:
                    self._record_failure(report, day, level.value, exc)

        logger.info(
            "Backfill complete",
            extra={"date": f"{start.isoformat()}..{end.isoformat()}", "error_count": len(report.failures)},
        )
        return report

    def gen_range(self, start: date, end: date, *, samples_per_minute: int = 1) -> List[Path]:
        """Generate synthetic raw files for ``start..end``, keeping existing ones."""
        if start > end:
            raise ValueError(f"Generation range is reversed: {start} > {end}")
        self.layout.ensure_directories()
        generated: List[Path] = []
        for day in iter_days(start, end):
            path = self.layout.synthetic_raw_path(day)
            if path.exists():
                logger.info("Raw file exists, skipping", extra={"date": day.isoformat(), "path": path.name})
                continue
            generated.append(generate_raw_for_date(self.layout, day, samples_per_minute=samples_per_minute))
        return generated

    @staticmethod
    def _record_failure(report: BackfillReport, day: date, phase: str, exc: OSError) -> None:
        logger.error(
            "Backfill step failed",
            extra={"date": day.isoformat(), "level": phase, "reason": str(exc)},
        )
        report.failures.append(BackfillFailure(day=day, phase=phase, reason=str(exc)))

