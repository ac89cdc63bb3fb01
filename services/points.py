"""Convert processed records into sink points."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Dict, Optional, Union

import pytz
from influxdb_client import Point as InfluxPoint
from influxdb_client import WritePrecision

from models.errors import TimeParseError
from models.records import (
    CO2Reading,
    Point,
    PressureReading,
    ProcessedRecord,
    SensorReading,
    WeatherStationReading,
)

LOCAL_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_TIMEZONE = "America/Los_Angeles"

FieldValue = Union[float, int, str]


def parse_local_time(value: str, timezone: str = DEFAULT_TIMEZONE) -> datetime:
    """Interpret a zone-less ``YYYY-MM-DD HH:MM:SS`` string in ``timezone``."""
    try:
        zone = pytz.timezone(timezone)
    except pytz.UnknownTimeZoneError as exc:
        raise TimeParseError(f"Unknown timezone {timezone!r}.") from exc

    try:
        naive = datetime.strptime(value.strip(), LOCAL_TIME_FORMAT)
    except ValueError as exc:
        raise TimeParseError(f"Invalid local timestamp {value!r}.") from exc

    return zone.localize(naive).astimezone(pytz.UTC)


def reading_timestamp(reading: SensorReading, timezone: str = DEFAULT_TIMEZONE) -> datetime:
    """Return the reading's receive time as an aware UTC datetime."""
    if isinstance(reading, WeatherStationReading):
        return parse_local_time(reading.time, timezone)
    epoch = getattr(reading, "unix_time", None)
    if epoch is None:
        raise TimeParseError(f"Model {reading.model!r} carries no timestamp.")
    try:
        return datetime.fromtimestamp(epoch, tz=pytz.UTC)
    except (OverflowError, OSError, ValueError) as exc:
        raise TimeParseError(f"Invalid epoch timestamp {epoch!r}.") from exc


def record_epoch(record: ProcessedRecord, timezone: str = DEFAULT_TIMEZONE) -> float:
    return reading_timestamp(record.reading, timezone).timestamp()


def _point_fields(record: ProcessedRecord) -> Dict[str, FieldValue]:
    reading = record.reading
    fields: Dict[str, FieldValue | None]
    if isinstance(reading, WeatherStationReading):
        fields = {
            "id": reading.id,
            "temperature_C": reading.temperature_C,
            "dewpoint_C": record.dewpoint_C,
            "humidity": reading.humidity,
            "wind_max_m_s": reading.wind_max_m_s,
            "wind_avg_m_s": reading.wind_avg_m_s,
            "wind_dir_deg": reading.wind_dir_deg,
            "rain_mm": reading.rain_mm,
            "light_lux": reading.light_lux,
            "uvi": reading.uvi,
            "battery_ok": reading.battery_ok,
        }
    elif isinstance(reading, PressureReading):
        fields = {
            "temperature_C": reading.temperature_C,
            "pressure_Pa": reading.pressure_Pa,
        }
    elif isinstance(reading, CO2Reading):
        fields = {
            "temperature_C": reading.temperature_C,
            "humidity": reading.humidity,
            "co2_con_ppm": reading.co2_concentration_ppm,
        }
    else:
        fields = reading.model_dump(exclude={"model"})
    return {name: value for name, value in fields.items() if value is not None}


def to_point(record: ProcessedRecord, timezone: str = DEFAULT_TIMEZONE) -> Point:
    """Map one processed record to exactly one point.

    Raises ``TimeParseError`` when the record's timestamp cannot be read.
    """
    return Point(
        measurement=record.model,
        fields=_point_fields(record),
        timestamp=reading_timestamp(record.reading, timezone),
        source=record,
    )


def to_influx_point(point: Point) -> Optional[InfluxPoint]:
    """Build the client-library point, or ``None`` when no field is writable.

    NaN and infinite floats have no line protocol form and are left out.
    """
    influx_point = InfluxPoint(point.measurement)
    for key, value in sorted(point.tags.items()):
        influx_point.tag(key, value)
    written = 0
    for name, value in point.fields.items():
        if isinstance(value, float) and not math.isfinite(value):
            continue
        influx_point.field(name, value)
        written += 1
    if not written:
        return None
    return influx_point.time(point.timestamp, WritePrecision.S)
