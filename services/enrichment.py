"""Attach derived metrics to validated readings."""

from __future__ import annotations

import json

from models.errors import DecodeError
from models.records import ProcessedRecord, SensorReading, WeatherStationReading
from services.derived_metrics import dew_point
from services.registry import ModelRegistry


class Enricher:
    """Pure enrichment component that can be unit tested in isolation."""

    def enrich(self, reading: SensorReading) -> ProcessedRecord:
        if isinstance(reading, WeatherStationReading):
            return ProcessedRecord(
                reading=reading,
                dewpoint_C=dew_point(reading.temperature_C, reading.humidity),
            )
        return ProcessedRecord(reading=reading)


def decode_processed_line(
    line: str, registry: ModelRegistry, enricher: Enricher | None = None
) -> ProcessedRecord:
    """Rebuild a processed record from one persisted line.

    Derived fields stored in the line are ignored and recomputed from the raw
    reading.
    """
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"Stored line is not valid JSON: {exc.msg}") from exc
    reading = registry.resolve(payload)
    return (enricher or Enricher()).enrich(reading)
