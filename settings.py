from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

from pydantic import TypeAdapter, ValidationError

from models.sensors import DEFAULT_SENSOR_SPECS, SensorSpec

logger = logging.getLogger(__name__)

_DATA_ROOT_ENV = "SENSOR_DATA_ROOT"
_RAW_PREFIX_ENV = "SENSOR_RAW_PREFIX"
_LIVE_LOG_ENV = "SENSOR_LOG_FILE"
_HISTORY_LENGTH_ENV = "SENSOR_HISTORY_LENGTH"
_BLOCK_SIZE_ENV = "TAIL_BLOCK_SIZE"
_SAMPLES_PER_MINUTE_ENV = "SYNTHETIC_SAMPLES_PER_MINUTE"
_SENSOR_SPECS_ENV = "SENSOR_SPECS"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_SPEC_LIST = TypeAdapter(Tuple[SensorSpec, ...])


@dataclass(frozen=True)
class Settings:
    data_root: str
    raw_prefix: str
    live_log_file: str
    history_length: int
    tail_block_size: int
    samples_per_minute: int
    sensor_specs: Tuple[SensorSpec, ...]
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_sensor_specs(default: Tuple[SensorSpec, ...]) -> Tuple[SensorSpec, ...]:
    value = os.getenv(_SENSOR_SPECS_ENV)
    if value is None or not value.strip():
        return default
    try:
        specs = _SPEC_LIST.validate_json(value)
    except ValidationError as exc:
        logger.warning(
            "Ignoring invalid sensor schema from environment",
            extra={"reason": f"{exc.error_count()} validation error(s)"},
        )
        return default
    return specs or default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        data_root=_read_str_env(_DATA_ROOT_ENV, "./logs"),
        raw_prefix=_read_str_env(_RAW_PREFIX_ENV, "temp_"),
        live_log_file=_read_str_env(_LIVE_LOG_ENV, "./temp.log"),
        history_length=_read_positive_int(_HISTORY_LENGTH_ENV, 1000),
        tail_block_size=_read_positive_int(_BLOCK_SIZE_ENV, 32 * 1024),
        samples_per_minute=_read_positive_int(_SAMPLES_PER_MINUTE_ENV, 1),
        sensor_specs=_read_sensor_specs(DEFAULT_SENSOR_SPECS),
        log_level=_read_log_level("INFO"),
    )

