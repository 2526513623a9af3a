from __future__ import annotations

import random
from typing import List

import pytest

from models.records import DownsampledPoint, Sample
from services.sampler import downsample, inverted_log_distribution, log_distribution


def _series(values: List[float]) -> List[Sample]:
    return [Sample(time=f"t{i}", value=value) for i, value in enumerate(values)]


def _gaps(positions: List[float]) -> List[float]:
    return [b - a for a, b in zip(positions, positions[1:])]


def test_linear_windows_partition_the_series() -> None:
    series = _series([float(i) for i in range(10)])

    points = downsample(series, 5, ratio=0)

    assert points == [
        DownsampledPoint(time="t0", value=0.0),
        DownsampledPoint(time="t2", value=1.5),
        DownsampledPoint(time="t5", value=4.0),
        DownsampledPoint(time="t7", value=6.5),
        DownsampledPoint(time="t9", value=8.5),
    ]


@pytest.mark.parametrize(
    ("size", "count"),
    [(5, 2), (5, 5), (17, 2), (17, 5), (300, 2), (300, 5), (300, 60), (1001, 2), (1001, 5), (1001, 60)],
)
@pytest.mark.parametrize("ratio", [0.0, 0.3, 1.0])
def test_output_length_is_exactly_max_count(size: int, count: int, ratio: float) -> None:
    points = downsample(_series([1.0] * size), count, ratio)

    assert len(points) == count
    assert points[-1].time == f"t{size - 1}"


def test_uniform_distribution_has_equal_gaps() -> None:
    indices = [round(p) for p in log_distribution(0, 999, 11, 0)]

    gaps = _gaps(indices)
    assert max(gaps) - min(gaps) <= 1


def test_logarithmic_distribution_spacing() -> None:
    positions = list(log_distribution(0, 999, 12, 1))

    assert positions[0] == pytest.approx(0)
    assert positions[-1] == pytest.approx(999)
    gaps = _gaps(positions)
    assert all(later <= earlier for earlier, later in zip(gaps, gaps[1:]))


def test_inverted_distribution_mirrors_spacing() -> None:
    positions = list(inverted_log_distribution(0, 999, 12, 1))

    assert positions[0] == pytest.approx(0)
    assert positions[-1] == pytest.approx(999)
    gaps = _gaps(positions)
    assert all(later >= earlier for earlier, later in zip(gaps, gaps[1:]))
    assert sorted(gaps) == pytest.approx(sorted(_gaps(list(log_distribution(0, 999, 12, 1)))))


def test_interpolated_ratio_lies_between_extremes() -> None:
    linear = list(log_distribution(0, 100, 6, 0))
    curved = list(log_distribution(0, 100, 6, 1))
    halfway = list(log_distribution(0, 100, 6, 0.5))

    for low, mid, high in zip(linear, halfway, curved):
        assert mid == pytest.approx((low + high) / 2)


def test_domains_below_one_are_offset() -> None:
    assert list(log_distribution(-5, 5, 3, 0)) == pytest.approx([-5, 0, 5])
    assert list(log_distribution(9, 0, 4, 0)) == pytest.approx(list(log_distribution(0, 9, 4, 0)))


def test_each_value_stays_within_its_window() -> None:
    rng = random.Random(7)
    series = _series([rng.uniform(-50, 50) for _ in range(500)])

    points = downsample(series, 40, ratio=0.6)

    start = 0
    for point in points:
        end = int(point.time[1:])
        window = [s.value for s in series[start:end + 1]] or [series[end].value]
        assert min(window) - 1e-9 <= point.value <= max(window) + 1e-9
        start = end + 1


def test_ratio_is_clamped() -> None:
    series = _series([float(i * i) for i in range(50)])

    assert downsample(series, 8, ratio=5) == downsample(series, 8, ratio=1)
    assert downsample(series, 8, ratio=-3) == downsample(series, 8, ratio=0)


def test_short_series_repeats_points() -> None:
    series = _series([3.0, 6.0, 9.0])

    points = downsample(series, 6, ratio=1)

    assert len(points) == 6
    assert {p.value for p in points} <= {3.0, 6.0, 9.0}
    assert points[-1] == DownsampledPoint(time="t2", value=9.0)


def test_custom_value_function() -> None:
    rows = [{"time": f"t{i}", "reading": i * 2.0} for i in range(4)]

    points = downsample(
        rows, 2, ratio=0, value_fn=lambda row: row["reading"], time_fn=lambda row: row["time"]
    )

    assert points == [DownsampledPoint(time="t0", value=0.0), DownsampledPoint(time="t3", value=4.0)]


def test_empty_series() -> None:
    assert downsample([], 10) == []


def test_count_below_two_is_rejected() -> None:
    with pytest.raises(ValueError):
        downsample(_series([1.0, 2.0]), 1)
    with pytest.raises(ValueError):
        list(log_distribution(0, 10, 1))
