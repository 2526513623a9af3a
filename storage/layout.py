from __future__ import annotations

import logging
import re
from datetime import date, timedelta
from functools import lru_cache
from pathlib import Path
from typing import Iterator, List, Optional

from models.levels import Level
from settings import get_settings

logger = logging.getLogger(__name__)

_DATE_IN_NAME = re.compile(r"(\d{4}-\d{2}-\d{2})")


class DataLayout:
    """Directory layout of raw logs and per-level daily aggregate files.

    Raw files live directly under ``root`` as ``<raw_prefix><date>...log``;
    aggregates live under ``root/<level>/agg_<level>_<date>.log``.
    """

    def __init__(self, root: Path, raw_prefix: str = "temp_") -> None:
        self.root = root
        self.raw_prefix = raw_prefix

    def ensure_directories(self) -> None:
        """Create the root and one directory per aggregate level."""
        self.root.mkdir(parents=True, exist_ok=True)
        for level in Level:
            if level is not Level.raw:
                self.level_dir(level).mkdir(parents=True, exist_ok=True)

    def level_dir(self, level: Level) -> Path:
        level = Level(level)
        if level is Level.raw:
            return self.root
        return self.root / level.value

    def aggregate_path(self, level: Level, day: date) -> Path:
        level = Level(level)
        return self.level_dir(level) / f"agg_{level.value}_{day.isoformat()}.log"

    def synthetic_raw_path(self, day: date) -> Path:
        return self.root / f"{self.raw_prefix}{day.isoformat()}T00-00-01.log"

    def find_raw_file(self, day: date) -> Optional[Path]:
        """Return the last raw file (by name) whose name embeds ``day``."""
        if not self.root.is_dir():
            return None
        stamp = day.isoformat()
        candidates = sorted(
            path
            for path in self.root.iterdir()
            if path.is_file()
            and path.name.startswith(self.raw_prefix)
            and stamp in path.name
            and path.name.endswith(".log")
        )
        return candidates[-1] if candidates else None

    def files_for_last_days(self, level: Level, days: int, end: date) -> List[Path]:
        """Existing daily files of ``level`` for the ``days`` days ending at ``end``, oldest first."""
        found: List[Path] = []
        for offset in range(days - 1, -1, -1):
            path = self.aggregate_path(level, end - timedelta(days=offset))
            if path.exists():
                found.append(path)
        return found

    def iter_daily_files(self, level: Level) -> Iterator[tuple[date, Path]]:
        level = Level(level)
        directory = self.level_dir(level)
        if not directory.is_dir():
            return
        prefix = f"agg_{level.value}_"
        for path in sorted(directory.iterdir()):
            if not (path.name.startswith(prefix) and path.name.endswith(".log")):
                continue
            match = _DATE_IN_NAME.search(path.name)
            if match is None:
                continue
            try:
                day = date.fromisoformat(match.group(1))
            except ValueError:
                continue
            yield day, path

    def latest_daily_file(self, level: Level, on_or_before: Optional[date] = None) -> Optional[Path]:
        """Most recent daily file of ``level``, optionally bounded by ``on_or_before``."""
        latest: Optional[tuple[date, Path]] = None
        for day, path in self.iter_daily_files(level):
            if on_or_before is not None and day > on_or_before:
                continue
            if latest is None or day > latest[0]:
                latest = (day, path)
        return latest[1] if latest else None

    def prune(self, level: Level, keep_days: int, today: date) -> List[Path]:
        """Delete daily files of ``level`` dated before ``today - keep_days``.

        Removal failures are logged and do not stop the sweep.
        """
        cutoff = today - timedelta(days=keep_days)
        removed: List[Path] = []
        for day, path in list(self.iter_daily_files(level)):
            if day >= cutoff:
                continue
            try:
                path.unlink()
            except OSError as exc:
                logger.warning(
                    "Failed to remove expired aggregate",
                    extra={"level": Level(level).value, "path": path.name, "reason": str(exc)},
                )
                continue
            logger.info(
                "Removed expired aggregate",
                extra={"level": Level(level).value, "path": path.name},
            )
            removed.append(path)
        return removed


@lru_cache
def build_default_layout(
    root_path: Optional[str] = None,
    raw_prefix: Optional[str] = None,
) -> DataLayout:
    settings = get_settings()
    root = settings.data_root if root_path is None else root_path
    prefix = settings.raw_prefix if raw_prefix is None else raw_prefix
    return DataLayout(root=Path(root), raw_prefix=prefix)
