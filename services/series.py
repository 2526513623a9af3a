"""Presentation series: pick a level file for a period and downsample it."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from models.levels import Level, parse_timestamp
from models.records import AggregatedRecord, DownsampledPoint, Sample
from models.sensors import SensorSpec
from services.parser import build_parser
from services.rollup import iter_records
from services.sampler import downsample, log_distribution
from storage.layout import DataLayout
from storage.tail import DEFAULT_BLOCK_SIZE, read_last_lines

logger = logging.getLogger(__name__)

MIN_LENGTH = 2
MAX_LENGTH = 5000


@dataclass(frozen=True)
class Period:
    name: str
    level: Level
    span: Optional[timedelta]


PERIODS: Dict[str, Period] = {
    "raw": Period("raw", Level.raw, None),
    "1d": Period("1d", Level.five_minutes, timedelta(days=1)),
    "1w": Period("1w", Level.thirty_minutes, timedelta(days=7)),
    "1m": Period("1m", Level.two_hours, timedelta(days=30)),
    "3m": Period("3m", Level.two_hours, timedelta(days=90)),
    "6m": Period("6m", Level.two_hours, timedelta(days=180)),
    "1y": Period("1y", Level.twelve_hours, timedelta(days=365)),
    "2y": Period("2y", Level.twelve_hours, timedelta(days=730)),
    "5y": Period("5y", Level.one_week, timedelta(days=5 * 365)),
}


@dataclass
class SensorSeries:
    spec: SensorSpec
    points: List[DownsampledPoint] = field(default_factory=list)


def get_period(name: str) -> Period:
    period = PERIODS.get(name.strip().lower())
    if period is None:
        raise ValueError(f"Invalid period {name!r}. Use: {', '.join(PERIODS)}")
    return period


def clamp_length(length: int) -> int:
    return max(MIN_LENGTH, min(MAX_LENGTH, length))


def resolve_level_file(layout: DataLayout, period: Period, day: date) -> Optional[Path]:
    """The level file for ``day`` if present, otherwise the most recent one."""
    if period.level is Level.raw:
        return None
    expected = layout.aggregate_path(period.level, day)
    if expected.exists():
        return expected
    return layout.latest_daily_file(period.level)


def _aggregate_history(
    path: Path, specs: Sequence[SensorSpec], span: Optional[timedelta], now: datetime
) -> Dict[str, List[Sample]]:
    by_metric = {spec.data_key: spec.key for spec in specs if spec.data_key}
    history: Dict[str, List[Sample]] = {key: [] for key in by_metric.values()}
    for record in iter_records(path):
        key = by_metric.get(record.metric)
        if key is None or not isinstance(record, AggregatedRecord):
            continue
        if span is not None:
            try:
                moment = parse_timestamp(record.time)
            except ValueError:
                continue
            if now - moment > span:
                continue
        history[key].append(Sample(time=record.time, value=record.average))
    return history


def load_series(
    layout: DataLayout,
    period_name: str,
    specs: Sequence[SensorSpec],
    *,
    live_log: Optional[Path] = None,
    length: int = 300,
    ratio: float = 1.0,
    keys: Optional[Sequence[str]] = None,
    history_length: int = 1000,
    block_size: int = DEFAULT_BLOCK_SIZE,
    now: Optional[datetime] = None,
) -> List[SensorSeries]:
    """Downsampled series for every parseable sensor (optionally only ``keys``).

    The raw period reads the newest ``history_length`` lines of ``live_log``;
    other periods read the matching level file and keep entries within the
    period span. A missing file yields an empty result.
    """
    period = get_period(period_name)
    now = now or datetime.now(timezone.utc)
    length = clamp_length(length)
    ratio = max(0.0, min(1.0, ratio))
    selected = [
        spec for spec in specs if spec.is_parseable and (not keys or spec.key in keys)
    ]

    history: Dict[str, List[Sample]]
    if period.level is Level.raw:
        if live_log is None:
            raise ValueError("The raw period needs a live log file.")
        try:
            lines = read_last_lines(live_log, history_length, block_size)
        except OSError as exc:
            logger.warning("Failed to read live log", extra={"path": str(live_log), "reason": str(exc)})
            return []
        parsed = build_parser(tuple(selected)).parse(lines)
        history = parsed.history if parsed is not None else {}
    else:
        path = resolve_level_file(layout, period, now.date())
        if path is None:
            logger.info("No aggregate file for period", extra={"level": period.level.value})
            return []
        try:
            history = _aggregate_history(path, selected, period.span, now)
        except OSError as exc:
            logger.warning("Failed to read aggregate", extra={"path": path.name, "reason": str(exc)})
            return []

    return [
        SensorSeries(
            spec=spec,
            points=downsample(history.get(spec.key, []), length, ratio, log_distribution),
        )
        for spec in selected
    ]
