"""Domain models shared across services."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, ClassVar, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

POINT_VERSION = "wx1"


class SensorReading(BaseModel):
    """Fields common to every device model the bridge reports."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    MODEL_ID: ClassVar[str]

    model: str
    temperature_C: float


class WeatherStationReading(SensorReading):
    """Bresser 7-in-1 outdoor station, stamped with a local-time string."""

    MODEL_ID: ClassVar[str] = "Bresser-7in1"

    model: Literal["Bresser-7in1"]
    time: str
    id: int
    humidity: float
    wind_max_m_s: Optional[float] = None
    wind_avg_m_s: Optional[float] = None
    wind_dir_deg: Optional[int] = None
    rain_mm: Optional[float] = None
    light_lux: Optional[float] = None
    uvi: Optional[float] = None
    battery_ok: Optional[int] = None


class PressureReading(SensorReading):
    """BMP390 barometric sensor, stamped with epoch seconds."""

    MODEL_ID: ClassVar[str] = "BMP390"

    model: Literal["BMP390"]
    unix_time: int
    pressure_Pa: float


class CO2Reading(SensorReading):
    """SCD30 CO2 sensor, stamped with epoch seconds."""

    MODEL_ID: ClassVar[str] = "SCD30"

    model: Literal["SCD30"]
    unix_time: int
    humidity: float
    co2_concentration_ppm: float


RawRecord = Annotated[
    Union[WeatherStationReading, PressureReading, CO2Reading],
    Field(discriminator="model"),
]


class ProcessedRecord(BaseModel):
    """A raw reading plus the values derived from it."""

    model_config = ConfigDict(frozen=True)

    reading: RawRecord
    dewpoint_C: Optional[float] = None

    @property
    def model(self) -> str:
        return self.reading.model

    @property
    def derived(self) -> Dict[str, float]:
        values: Dict[str, float] = {}
        if self.dewpoint_C is not None:
            values["dewpoint_C"] = self.dewpoint_C
        return values

    def to_payload(self) -> Dict[str, Any]:
        """Flatten into the persisted shape: raw fields then derived fields."""
        payload = self.reading.model_dump(exclude_none=True)
        payload.update(self.derived)
        return payload

    def to_line(self) -> str:
        return json.dumps(self.to_payload(), separators=(",", ":"))


@dataclass(frozen=True)
class Point:
    """The sink representation of one processed record."""

    measurement: str
    fields: Mapping[str, Union[float, int, str]]
    timestamp: datetime
    tags: Mapping[str, str] = field(default_factory=lambda: {"version": POINT_VERSION})
    source: Optional[ProcessedRecord] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """Closed interval ``[start, end]`` in epoch seconds."""

    start: float
    end: float

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError("Time window start must not be after its end.")

    def contains(self, timestamp: float) -> bool:
        return self.start <= timestamp <= self.end
