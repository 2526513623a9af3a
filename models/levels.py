"""Rollup levels, their parent chain, and UTC bucket alignment."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional, Tuple


class Level(str, Enum):
    """Granularity steps of the rollup chain, finest first."""

    raw = "raw"
    five_minutes = "5m"
    thirty_minutes = "30m"
    two_hours = "2h"
    twelve_hours = "12h"
    one_week = "1w"


@dataclass(frozen=True)
class LevelPolicy:
    level: Level
    parent: Level
    retention_days: int
    prune_buffer_days: Optional[int] = None


# retention_days: how many days of the parent level one daily file of this level consumes.
# For 5m the parent is a single raw file, so the value only drives pruning.
LEVEL_POLICIES: Dict[Level, LevelPolicy] = {
    Level.five_minutes: LevelPolicy(Level.five_minutes, Level.raw, 30, prune_buffer_days=7),
    Level.thirty_minutes: LevelPolicy(Level.thirty_minutes, Level.five_minutes, 90, prune_buffer_days=30),
    Level.two_hours: LevelPolicy(Level.two_hours, Level.thirty_minutes, 730),
    Level.twelve_hours: LevelPolicy(Level.twelve_hours, Level.two_hours, 1825),
    Level.one_week: LevelPolicy(Level.one_week, Level.twelve_hours, 1825),
}

UPPER_LEVELS: Tuple[Level, ...] = (
    Level.thirty_minutes,
    Level.two_hours,
    Level.twelve_hours,
    Level.one_week,
)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    candidate = value.strip()
    if not candidate:
        raise ValueError("Timestamp is empty.")

    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValueError(f"Invalid timestamp: {value!r}") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


def truncate(level: Level, moment: datetime) -> datetime:
    """Return the start of the ``level`` bucket containing ``moment`` (UTC)."""
    level = Level(level)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc).replace(second=0, microsecond=0)

    if level is Level.five_minutes:
        return moment.replace(minute=moment.minute // 5 * 5)
    if level is Level.thirty_minutes:
        return moment.replace(minute=moment.minute // 30 * 30)
    if level is Level.two_hours:
        return moment.replace(hour=moment.hour // 2 * 2, minute=0)
    if level is Level.twelve_hours:
        return moment.replace(hour=0 if moment.hour < 12 else 12, minute=0)
    if level is Level.one_week:
        monday = moment - timedelta(days=moment.weekday())
        return monday.replace(hour=0, minute=0)
    raise ValueError(f"Level {level.value!r} has no bucket width.")


def format_bucket(bucket: datetime) -> str:
    """Render a bucket start the way aggregate files store it."""
    return bucket.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")
