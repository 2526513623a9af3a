"""Line grammar for raw sensor logs."""

from __future__ import annotations

import math
import re
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence

from models.records import Sample
from models.sensors import ParseResult, SensorSpec

_NUMBER = r"[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?"
_VALUE = re.compile(_NUMBER)


def compile_metric_pattern(data_key: str) -> re.Pattern[str]:
    """Pattern for the ``<time prefix> <data_key>[further text]`` head of a line.

    Callers split the trailing value off before matching.
    """
    return re.compile(rf"^(?P<time>.*?\S)\s+{re.escape(data_key)}(?![A-Za-z0-9_])")


class LineParser:
    """Turns raw log lines into per-sensor samples for a fixed schema.

    One pattern per parseable sensor is compiled up front and never mutated,
    so a single instance can be shared between threads.
    """

    def __init__(self, specs: Sequence[SensorSpec]) -> None:
        self.specs = tuple(specs)
        self._patterns: Dict[str, tuple[str, re.Pattern[str]]] = {
            spec.key: (spec.data_key, compile_metric_pattern(spec.data_key))
            for spec in self.specs
            if spec.is_parseable
        }

    def match(self, key: str, line: str) -> Optional[Sample]:
        entry = self._patterns.get(key)
        if entry is None:
            return None
        data_key, pattern = entry
        if data_key not in line:
            return None
        parts = line.strip().rsplit(None, 1)
        if len(parts) != 2 or _VALUE.fullmatch(parts[1]) is None:
            return None
        head, text = parts
        found = pattern.match(head)
        if found is None:
            return None
        try:
            value = float(text)
        except ValueError:
            return None
        if not math.isfinite(value):
            return None
        return Sample(time=found.group("time"), value=value)

    def parse(self, lines: Iterable[str]) -> Optional[ParseResult]:
        """Collect samples for every parseable sensor.

        Returns ``None`` when no sensor produced a single sample, so callers can
        keep their previous state instead of overwriting it with empty values.
        """
        history: Dict[str, List[Sample]] = {key: [] for key in self._patterns}
        for line in lines:
            if not line:
                continue
            for key in self._patterns:
                sample = self.match(key, line)
                if sample is not None:
                    history[key].append(sample)

        if not any(history.values()):
            return None

        result = ParseResult(history=history)
        for key, samples in history.items():
            if samples:
                result.per_metric[key] = samples[-1].value
        return result

    def is_valid_sensor_string(self, line: str) -> bool:
        return any(self.match(key, line) is not None for key in self._patterns)


@lru_cache(maxsize=32)
def build_parser(specs: tuple[SensorSpec, ...]) -> LineParser:
    return LineParser(specs)


def parse_lines(lines: Iterable[str], specs: Sequence[SensorSpec]) -> Optional[ParseResult]:
    return build_parser(tuple(specs)).parse(lines)


def is_valid_sensor_string(line: str, specs: Sequence[SensorSpec]) -> bool:
    """True when ``line`` matches at least one configured sensor."""
    return build_parser(tuple(specs)).is_valid_sensor_string(line)
