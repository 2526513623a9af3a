"""Sensor schema and parse results exchanged with the serving layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.records import Sample


class SensorSpec(BaseModel):
    """Configuration for a single measured or derived sensor value."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key: str = Field(..., min_length=1)
    name: Optional[str] = None
    unit: str = ""
    fraction: int = Field(default=2, ge=0)
    data_key: Optional[str] = Field(
        default=None,
        alias="dataKey",
        description="Token identifying the metric in raw lines; absent for derived values.",
    )

    @property
    def is_parseable(self) -> bool:
        return bool(self.data_key)


@dataclass
class ParseResult:
    """Latest value and ordered history per configured sensor key."""

    per_metric: Dict[str, float] = field(default_factory=dict)
    history: Dict[str, List[Sample]] = field(default_factory=dict)


DEFAULT_SENSOR_SPECS = (
    SensorSpec(key="temperature", name="Temperature", unit="Cº", fraction=2, data_key="Tamb"),
    SensorSpec(key="co2", name="CO2", unit="ppm", fraction=0, data_key="CntR"),
    SensorSpec(key="humidity", name="Humidity", unit="%", fraction=1, data_key="Hum"),
    SensorSpec(key="freshness", name="Freshness", unit="sec", fraction=0),
)
