"""Deterministic synthetic raw logs for demos and tests.

Every metric is a pure periodic function of epoch milliseconds, so generating
the same day twice yields the same file.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict

from storage.layout import DataLayout

logger = logging.getLogger(__name__)

MetricFormula = Callable[[int], str]


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _pm_10(t: int) -> str:
    return str(max(0, _round_half_up(10 + 5 * math.sin(t / 60_000))))


def _pm_25(t: int) -> str:
    return str(max(0, _round_half_up(5 + 3 * math.cos(t / 60_000))))


def _pm_100(t: int) -> str:
    return "0"


def _tvoc(t: int) -> str:
    return f"{120 + 20 * math.sin(t / 3_600_000):.2f}"


def _co2(t: int) -> str:
    return str(400 + _round_half_up(20 * math.sin(t / 900_000)))


def _temperature(t: int) -> str:
    return f"{20 + 5 * math.sin(t / 3_600_000):.2f}"


def _humidity(t: int) -> str:
    return f"{40 + 5 * math.cos(t / 3_600_000):.2f}"


METRIC_FORMULAS: Dict[str, MetricFormula] = {
    "PM_10": _pm_10,
    "PM_25": _pm_25,
    "PM_100": _pm_100,
    "TVOC": _tvoc,
    "CO2": _co2,
    "TEMPERATURE": _temperature,
    "HUMIDITY": _humidity,
}


def _format_instant(epoch_ms: int) -> str:
    moment = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{epoch_ms % 1000:03d}Z"


def sample_interval_ms(samples_per_minute: int) -> int:
    return max(1, 60_000 // max(1, samples_per_minute))


def generate_raw_for_date(
    layout: DataLayout,
    day: date,
    samples_per_minute: int = 1,
    formulas: Dict[str, MetricFormula] = METRIC_FORMULAS,
) -> Path:
    """Write a synthetic raw log for ``day`` and return its path.

    An existing file is left untouched.
    """
    path = layout.synthetic_raw_path(day)
    if path.exists():
        logger.info("Synthetic raw already exists", extra={"date": day.isoformat(), "path": path.name})
        return path

    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    start_ms = int(start.timestamp() * 1000)
    end_ms = int((start + timedelta(days=1)).timestamp() * 1000)
    step = sample_interval_ms(samples_per_minute)

    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(path.name + ".tmp")
    with temp_path.open("w", encoding="utf-8", newline="\n") as handle:
        for t in range(start_ms, end_ms, step):
            stamp = _format_instant(t)
            for metric, formula in formulas.items():
                handle.write(f"{stamp}\t{metric}\t{formula(t)}\n")
    temp_path.replace(path)

    logger.info(
        "Generated synthetic raw",
        extra={"date": day.isoformat(), "path": path.name, "samples_per_minute": samples_per_minute},
    )
    return path
