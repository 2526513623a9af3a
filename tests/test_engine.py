"""Per-day builds, backfill ordering, generation and cleanup."""

from __future__ import annotations

from datetime import date, timedelta
from pathlib import Path
from typing import List, Tuple

import pytest

from models.levels import UPPER_LEVELS, Level
from services.rollup import RollupEngine
from services.synthetic import METRIC_FORMULAS, generate_raw_for_date
from storage.layout import DataLayout

TODAY = date(2024, 1, 10)


@pytest.fixture()
def layout(tmp_path: Path) -> DataLayout:
    layout = DataLayout(root=tmp_path / "logs")
    layout.ensure_directories()
    return layout


@pytest.fixture()
def engine(layout: DataLayout) -> RollupEngine:
    return RollupEngine(layout=layout, clock=lambda: TODAY)


def _write_raw(layout: DataLayout, day: date, lines: List[str], suffix: str = "T00-00-01") -> Path:
    path = layout.root / f"{layout.raw_prefix}{day.isoformat()}{suffix}.log"
    path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
    return path


def test_5m_skipped_when_raw_missing(engine: RollupEngine, layout: DataLayout) -> None:
    assert engine.generate_5m_for_date(TODAY) is None
    assert not layout.aggregate_path(Level.five_minutes, TODAY).exists()


def test_5m_built_from_generated_raw(engine: RollupEngine, layout: DataLayout) -> None:
    result = engine.generate_5m_for_date(TODAY, generate_missing=True, samples_per_minute=1)

    assert result is not None and not result.skipped
    assert layout.synthetic_raw_path(TODAY).exists()
    assert result.lines_read == 1440 * len(METRIC_FORMULAS)
    assert result.written == 288 * len(METRIC_FORMULAS)
    lines = layout.aggregate_path(Level.five_minutes, TODAY).read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("2024-01-10T00:00:00.000Z\tCO2\t")
    assert {line.split("\t")[3] for line in lines} == {"5"}


def test_existing_output_is_authoritative_unless_forced(engine: RollupEngine, layout: DataLayout) -> None:
    _write_raw(layout, TODAY, ["2024-01-10T00:00:00Z TEMP 10", "2024-01-10T00:01:00Z TEMP 20"])
    output = layout.aggregate_path(Level.five_minutes, TODAY)

    engine.generate_5m_for_date(TODAY)
    original = output.read_bytes()
    output.write_text("sentinel\n", encoding="utf-8")

    skipped = engine.generate_5m_for_date(TODAY)
    assert skipped is not None and skipped.skipped and skipped.reason == "exists"
    assert output.read_text(encoding="utf-8") == "sentinel\n"

    engine.generate_5m_for_date(TODAY, force=True)
    assert output.read_bytes() == original


def test_raw_lookup_uses_last_matching_name(layout: DataLayout) -> None:
    _write_raw(layout, TODAY, ["a"], suffix="T00-00-01")
    latest = _write_raw(layout, TODAY, ["b"], suffix="T09-30-00")
    (layout.root / f"other_{TODAY.isoformat()}.log").write_text("c\n", encoding="utf-8")

    assert layout.find_raw_file(TODAY) == latest
    assert layout.find_raw_file(TODAY + timedelta(days=1)) is None


def test_upper_levels_chain_from_5m(engine: RollupEngine, layout: DataLayout) -> None:
    engine.generate_5m_for_date(TODAY, generate_missing=True)

    results = engine.generate_upper_levels_for_date(TODAY)

    assert [r.level for r in results] == list(UPPER_LEVELS)
    assert not any(r.skipped for r in results)
    thirty = layout.aggregate_path(Level.thirty_minutes, TODAY).read_text(encoding="utf-8").splitlines()
    assert {line.split("\t")[3] for line in thirty} == {"30"}
    weekly = layout.aggregate_path(Level.one_week, TODAY).read_text(encoding="utf-8").splitlines()
    assert len(weekly) == len(METRIC_FORMULAS)
    assert all(line.startswith("2024-01-08T00:00:00.000Z\t") for line in weekly)
    assert {line.split("\t")[3] for line in weekly} == {"1440"}


def test_upper_levels_skip_without_parent_files(engine: RollupEngine, layout: DataLayout) -> None:
    results = engine.generate_upper_levels_for_date(TODAY)

    assert [(r.level, r.skipped, r.reason) for r in results] == [
        (level, True, "no inputs") for level in UPPER_LEVELS
    ]
    assert not any(layout.aggregate_path(level, TODAY).exists() for level in UPPER_LEVELS)


def test_upper_level_window_includes_earlier_days(engine: RollupEngine, layout: DataLayout) -> None:
    for offset, value in ((2, 10), (0, 40)):
        day = TODAY - timedelta(days=offset)
        _write_raw(layout, day, [f"{day.isoformat()}T00:00:00Z TEMP {value}"])
        engine.generate_5m_for_date(day)

    engine.generate_upper_levels_for_date(TODAY)

    thirty = layout.aggregate_path(Level.thirty_minutes, TODAY).read_text(encoding="utf-8")
    assert thirty == (
        "2024-01-08T00:00:00.000Z\tTEMP\t10.00\t1\n"
        "2024-01-10T00:00:00.000Z\tTEMP\t40.00\t1\n"
    )
    weekly = layout.aggregate_path(Level.one_week, TODAY).read_text(encoding="utf-8")
    assert weekly == "2024-01-08T00:00:00.000Z\tTEMP\t25.00\t2\n"


def test_backfill_builds_all_5m_before_upper_levels(
    engine: RollupEngine, layout: DataLayout, monkeypatch
) -> None:
    calls: List[Tuple[str, date]] = []
    build_5m = engine.generate_5m_for_date
    build_upper = engine.generate_level_for_date

    def spy_5m(day, **kwargs):
        calls.append(("5m", day))
        return build_5m(day, **kwargs)

    def spy_upper(level, day, **kwargs):
        calls.append(("upper", day))
        return build_upper(level, day, **kwargs)

    monkeypatch.setattr(engine, "generate_5m_for_date", spy_5m)
    monkeypatch.setattr(engine, "generate_level_for_date", spy_upper)
    start = TODAY - timedelta(days=2)

    report = engine.backfill(start, TODAY, generate_missing=True)

    days = [start + timedelta(days=i) for i in range(3)]
    assert calls == [("5m", d) for d in days] + [("upper", d) for d in days for _ in UPPER_LEVELS]
    assert report.ok
    assert len(report.five_minute) == 3
    assert len(report.upper) == 3 * len(UPPER_LEVELS)
    for day in days:
        for level in (Level.five_minutes,) + UPPER_LEVELS:
            assert layout.aggregate_path(level, day).exists()


def test_backfill_is_idempotent(engine: RollupEngine, layout: DataLayout) -> None:
    start = TODAY - timedelta(days=1)
    engine.backfill(start, TODAY, generate_missing=True)
    snapshot = {path: path.read_bytes() for path in layout.root.rglob("agg_*.log")}

    report = engine.backfill(start, TODAY, generate_missing=True)
    assert all(r.skipped for r in report.five_minute + report.upper)

    engine.backfill(start, TODAY, force=True)
    assert {path: path.read_bytes() for path in layout.root.rglob("agg_*.log")} == snapshot


def test_backfill_records_failures_and_continues(
    engine: RollupEngine, layout: DataLayout, monkeypatch
) -> None:
    broken = TODAY - timedelta(days=1)
    build_5m = engine.generate_5m_for_date

    def flaky(day, **kwargs):
        if day == broken:
            raise PermissionError("read-only filesystem")
        return build_5m(day, **kwargs)

    monkeypatch.setattr(engine, "generate_5m_for_date", flaky)

    report = engine.backfill(TODAY - timedelta(days=2), TODAY, generate_missing=True)

    assert not report.ok
    assert [(f.day, f.phase) for f in report.failures] == [(broken, "5m")]
    assert "read-only" in report.failures[0].reason
    assert layout.aggregate_path(Level.five_minutes, TODAY).exists()
    assert layout.aggregate_path(Level.thirty_minutes, broken).exists()


def test_backfill_upper_level_failure_is_isolated_per_level(
    engine: RollupEngine, layout: DataLayout, monkeypatch
) -> None:
    build_level = engine.generate_level_for_date

    def flaky(level, day, **kwargs):
        if level is Level.two_hours and day == TODAY:
            raise PermissionError("disk full")
        return build_level(level, day, **kwargs)

    monkeypatch.setattr(engine, "generate_level_for_date", flaky)

    report = engine.backfill(TODAY, TODAY, generate_missing=True)

    assert [(f.day, f.phase) for f in report.failures] == [(TODAY, "2h")]
    assert [r.level for r in report.upper] == [Level.thirty_minutes, Level.twelve_hours, Level.one_week]
    assert layout.aggregate_path(Level.thirty_minutes, TODAY).exists()
    assert not layout.aggregate_path(Level.two_hours, TODAY).exists()
    assert report.upper[1].skipped and report.upper[1].reason == "no inputs"


def test_backfill_rejects_reversed_range(engine: RollupEngine) -> None:
    with pytest.raises(ValueError):
        engine.backfill(TODAY, TODAY - timedelta(days=1))


def test_gen_range_keeps_existing_raw_files(engine: RollupEngine, layout: DataLayout) -> None:
    existing = layout.synthetic_raw_path(TODAY)
    existing.write_text("sentinel\n", encoding="utf-8")

    generated = engine.gen_range(TODAY - timedelta(days=2), TODAY, samples_per_minute=2)

    assert generated == [
        layout.synthetic_raw_path(TODAY - timedelta(days=2)),
        layout.synthetic_raw_path(TODAY - timedelta(days=1)),
    ]
    assert existing.read_text(encoding="utf-8") == "sentinel\n"
    with generated[0].open(encoding="utf-8") as handle:
        line_count = sum(1 for _ in handle)
    assert line_count == 2 * 1440 * len(METRIC_FORMULAS)


def test_synthetic_raw_is_deterministic(tmp_path: Path) -> None:
    first = generate_raw_for_date(DataLayout(tmp_path / "a"), TODAY, samples_per_minute=1)
    second = generate_raw_for_date(DataLayout(tmp_path / "b"), TODAY, samples_per_minute=1)

    assert first.read_bytes() == second.read_bytes()
    head = first.read_text(encoding="utf-8").splitlines()[: len(METRIC_FORMULAS)]
    assert [line.split("\t")[:2] for line in head] == [
        ["2024-01-10T00:00:00.000Z", metric] for metric in METRIC_FORMULAS
    ]
    assert all(line.split("\t")[2] == "0" for line in head if "\tPM_100\t" in line)


def test_prune_expired_respects_level_buffers(engine: RollupEngine, layout: DataLayout) -> None:
    def touch(level: Level, days_ago: int) -> Path:
        path = layout.aggregate_path(level, TODAY - timedelta(days=days_ago))
        path.write_text("", encoding="utf-8")
        return path

    old_5m = touch(Level.five_minutes, 38)
    kept_5m = touch(Level.five_minutes, 37)
    old_30m = touch(Level.thirty_minutes, 121)
    kept_30m = touch(Level.thirty_minutes, 100)
    ancient_2h = touch(Level.two_hours, 3000)

    removed = engine.prune_expired()

    assert sorted(removed) == sorted([old_5m, old_30m])
    assert kept_5m.exists() and kept_30m.exists() and ancient_2h.exists()


def test_daily_cascade_builds_today(engine: RollupEngine, layout: DataLayout) -> None:
    stale = layout.aggregate_path(Level.five_minutes, TODAY - timedelta(days=60))
    stale.write_text("", encoding="utf-8")

    results = engine.run_daily_cascade(generate_missing=True)

    assert [r.level for r in results] == [Level.five_minutes] + list(UPPER_LEVELS)
    assert layout.aggregate_path(Level.one_week, TODAY).exists()
    assert not stale.exists()
