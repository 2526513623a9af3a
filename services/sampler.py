"""Request-time reduction of a series to a bounded number of points."""

from __future__ import annotations

import math
from typing import Callable, Iterator, List, Sequence, TypeVar

from models.records import DownsampledPoint, Sample

T = TypeVar("T")

Distribution = Callable[[float, float, int, float], Iterator[float]]


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def log_distribution(minimum: float, maximum: float, count: int, ratio: float = 1.0) -> Iterator[float]:
    """Yield ``count`` increasing positions spanning ``[minimum, maximum]``.

    ``ratio`` blends a uniform spread (0) with a ``log10(1 + 9x)`` curve (1).
    It is clamped into ``[0, 1]``.
    """
    if count < 2:
        raise ValueError("Count should be greater than or equal to 2.")
    if minimum > maximum:
        minimum, maximum = maximum, minimum

    offset = 0.0
    if minimum < 1:
        offset = abs(minimum) + 1
        minimum += offset
        maximum += offset

    ratio = max(0.0, min(1.0, ratio))
    for i in range(count):
        linear = i / (count - 1)
        logarithmic = math.log10(1 + linear * 9) if i > 0 else 0.0
        interpolated = (1 - ratio) * linear + ratio * logarithmic
        yield minimum + interpolated * (maximum - minimum) - offset


def inverted_log_distribution(
    minimum: float, maximum: float, count: int, ratio: float = 1.0
) -> Iterator[float]:
    """Mirror image of :func:`log_distribution`: gaps grow instead of shrink."""
    values = list(log_distribution(minimum, maximum, count, ratio))
    values.reverse()

    previous = values[0]
    last = min(minimum, maximum)
    for value in values:
        last += previous - value
        yield last
        previous = value


def _window_average(series: Sequence[T], start: int, end: int, value_fn: Callable[[T], float]) -> float:
    if start >= end:
        return value_fn(series[end])
    total = 0.0
    for i in range(start, end + 1):
        total += value_fn(series[i])
    return total / (end - start + 1)


def _sample_value(sample: Sample) -> float:
    return sample.value


def downsample(
    series: Sequence[T],
    max_count: int,
    ratio: float = 1.0,
    distribution: Distribution = log_distribution,
    value_fn: Callable[[T], float] = _sample_value,
    time_fn: Callable[[T], str] = lambda sample: sample.time,
) -> List[DownsampledPoint]:
    """Reduce ``series`` to ``max_count`` bucket-averaged points.

    Each output point averages the window between the previous rounded
    position (exclusive) and the current one (inclusive) and takes the time of
    the window's last sample. When ``series`` is shorter than ``max_count`` some
    windows collapse onto a single sample and points repeat.
    """
    if max_count < 2:
        raise ValueError("max_count must be at least 2.")
    if not series:
        return []

    points: List[DownsampledPoint] = []
    previous: int | None = None
    for position in distribution(0, len(series) - 1, max_count, ratio):
        index = _round_half_up(position)
        if previous is None:
            previous = index
        points.append(
            DownsampledPoint(
                time=time_fn(series[index]),
                value=_window_average(series, previous, index, value_fn),
            )
        )
        previous = index + 1
    return points
