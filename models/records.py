"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union


@dataclass(frozen=True, slots=True)
class Sample:
    """A single parsed reading. ``time`` is kept as the source text."""

    time: str
    value: float


@dataclass(frozen=True, slots=True)
class RawRecord:
    """A ``time metric value`` line, weighted as a single observation."""

    time: str
    metric: str
    value: float

    @property
    def count(self) -> int:
        return 1


@dataclass(frozen=True, slots=True)
class AggregatedRecord:
    """A ``time metric average count`` line produced by an earlier rollup."""

    time: str
    metric: str
    average: float
    count: int

    @property
    def value(self) -> float:
        return self.average


RollupInput = Union[RawRecord, AggregatedRecord]


@dataclass(frozen=True, slots=True)
class AggregateRecord:
    """One output row of a rollup: a (bucket, metric) pair and its statistics."""

    bucket: datetime
    metric: str
    average: float
    count: int


@dataclass(frozen=True, slots=True)
class DownsampledPoint:
    time: str
    value: float
