"""Enrichment, persisted-line format and point conversion."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from models.errors import DecodeError, TimeParseError
from models.records import POINT_VERSION, ProcessedRecord, TimeWindow
from services.enrichment import Enricher, decode_processed_line
from services.points import parse_local_time, record_epoch, to_point
from services.registry import build_default_registry

JUNE_FIRST_NOON_PDT = 1717268400


def _station_payload(**overrides) -> dict:
    payload = {
        "time": "2024-06-01 12:00:00",
        "model": "Bresser-7in1",
        "id": 3041,
        "temperature_C": 25.0,
        "humidity": 50,
        "wind_max_m_s": 3.2,
        "wind_avg_m_s": 2.1,
        "wind_dir_deg": 270,
        "rain_mm": 12.4,
        "light_lux": 54000.0,
        "uvi": 4.1,
        "battery_ok": 1,
    }
    payload.update(overrides)
    return payload


def _enrich(payload: dict) -> ProcessedRecord:
    return Enricher().enrich(build_default_registry().resolve(payload))


def test_station_records_gain_dew_point() -> None:
    record = _enrich(_station_payload())

    assert record.dewpoint_C == pytest.approx(13.86, abs=0.1)
    assert record.derived == {"dewpoint_C": record.dewpoint_C}
    assert record.model == "Bresser-7in1"


def test_other_models_pass_through_without_derived_fields() -> None:
    record = _enrich(
        {"unix_time": 1717200000, "model": "BMP390", "temperature_C": 21.5, "pressure_Pa": 101325.0}
    )

    assert record.dewpoint_C is None
    assert record.derived == {}


def test_processed_records_are_immutable() -> None:
    record = _enrich(_station_payload())

    with pytest.raises(ValidationError):
        record.dewpoint_C = 0.0  # type: ignore[misc]
    with pytest.raises(ValidationError):
        record.reading.humidity = 10.0  # type: ignore[misc]


def test_persisted_line_is_flat_json_with_derived_fields_last() -> None:
    record = _enrich(_station_payload())

    payload = json.loads(record.to_line())

    assert "\n" not in record.to_line()
    assert payload["model"] == "Bresser-7in1"
    assert payload["humidity"] == 50.0
    assert list(payload)[-1] == "dewpoint_C"


@pytest.mark.parametrize(
    "payload",
    [
        _station_payload(),
        _station_payload(light_lux=None, uvi=None),
        {"unix_time": 1717200000, "model": "BMP390", "temperature_C": 21.5, "pressure_Pa": 101325.0},
        {
            "unix_time": 1717200000,
            "model": "SCD30",
            "temperature_C": 22.0,
            "humidity": 40.0,
            "co2_concentration_ppm": 612.0,
        },
    ],
)
def test_line_round_trip_preserves_every_field(payload) -> None:
    registry = build_default_registry()
    record = Enricher().enrich(registry.resolve({k: v for k, v in payload.items() if v is not None}))

    restored = decode_processed_line(record.to_line(), registry)

    assert restored == record


def test_stored_derived_values_are_recomputed() -> None:
    registry = build_default_registry()
    line = json.dumps({**_station_payload(), "dewpoint_C": 99.0})

    restored = decode_processed_line(line, registry)

    assert restored.dewpoint_C == pytest.approx(13.86, abs=0.1)


def test_decode_rejects_non_json_lines() -> None:
    with pytest.raises(DecodeError):
        decode_processed_line("{not json", build_default_registry())


def test_local_time_is_interpreted_in_los_angeles() -> None:
    parsed = parse_local_time("2024-06-01 12:00:00")

    assert parsed == datetime(2024, 6, 1, 19, 0, tzinfo=timezone.utc)
    assert parse_local_time("2024-01-15 12:00:00").hour == 20


def test_local_time_rejects_garbage() -> None:
    with pytest.raises(TimeParseError):
        parse_local_time("yesterday at noon")
    with pytest.raises(TimeParseError):
        parse_local_time("2024-06-01 12:00:00", timezone="Mars/Olympus_Mons")


def test_station_point_fields_and_timestamp() -> None:
    record = _enrich(_station_payload())

    point = to_point(record)

    assert point.measurement == "Bresser-7in1"
    assert point.tags == {"version": POINT_VERSION}
    assert point.timestamp.timestamp() == JUNE_FIRST_NOON_PDT
    assert point.fields["dewpoint_C"] == record.dewpoint_C
    assert point.fields["id"] == 3041
    assert set(point.fields) == {
        "id",
        "temperature_C",
        "dewpoint_C",
        "humidity",
        "wind_max_m_s",
        "wind_avg_m_s",
        "wind_dir_deg",
        "rain_mm",
        "light_lux",
        "uvi",
        "battery_ok",
    }
    assert point.source is record


def test_co2_point_uses_short_field_name() -> None:
    record = _enrich(
        {
            "unix_time": 1717200000,
            "model": "SCD30",
            "temperature_C": 22.0,
            "humidity": 40.0,
            "co2_concentration_ppm": 612.0,
        }
    )

    point = to_point(record)

    assert point.fields == {"temperature_C": 22.0, "humidity": 40.0, "co2_con_ppm": 612.0}
    assert point.timestamp == datetime(2024, 6, 1, tzinfo=timezone.utc)


def test_absent_optional_fields_are_left_out_of_points() -> None:
    record = _enrich(_station_payload(light_lux=None, uvi=None))

    assert "light_lux" not in to_point(record).fields


def test_record_epoch_uses_source_timestamp() -> None:
    assert record_epoch(_enrich(_station_payload())) == JUNE_FIRST_NOON_PDT


def test_time_window_rejects_inverted_bounds() -> None:
    with pytest.raises(ValueError):
        TimeWindow(start=10, end=5)
    assert TimeWindow(start=5, end=5).contains(5)
