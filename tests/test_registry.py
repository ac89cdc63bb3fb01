from __future__ import annotations

import pytest

from models.errors import DecodeError, InvalidRecord, UnknownModel
from models.records import CO2Reading, PressureReading, WeatherStationReading
from services.registry import ModelRegistry, build_default_registry

STATION = {
    "time": "2024-06-01 12:00:00",
    "model": "Bresser-7in1",
    "id": 3041,
    "temperature_C": 25.0,
    "humidity": 50,
    "wind_max_m_s": 3.2,
    "wind_avg_m_s": 2.1,
    "wind_dir_deg": 270,
    "rain_mm": 12.4,
    "light_lux": 54000,
    "uvi": 4.1,
    "battery_ok": 1,
    "mic": "CRC",
}


def test_default_registry_lists_models() -> None:
    assert build_default_registry().models() == ["BMP390", "Bresser-7in1", "SCD30"]


def test_resolve_routes_by_model_tag() -> None:
    registry = build_default_registry()

    station = registry.resolve(STATION)
    pressure = registry.resolve(
        {"unix_time": 1717200000, "model": "BMP390", "temperature_C": 21.5, "pressure_Pa": 101325}
    )
    co2 = registry.resolve(
        {
            "unix_time": 1717200000,
            "model": "SCD30",
            "temperature_C": 22.0,
            "humidity": 40.0,
            "co2_concentration_ppm": 612.0,
        }
    )

    assert isinstance(station, WeatherStationReading)
    assert station.humidity == 50.0
    assert station.wind_dir_deg == 270
    assert isinstance(pressure, PressureReading)
    assert isinstance(co2, CO2Reading)


def test_optional_station_fields_may_be_absent() -> None:
    payload = {key: STATION[key] for key in ("time", "model", "id", "temperature_C", "humidity")}

    reading = build_default_registry().resolve(payload)

    assert reading.light_lux is None
    assert reading.battery_ok is None


def test_unknown_model_is_reported_with_its_tag() -> None:
    with pytest.raises(UnknownModel) as excinfo:
        build_default_registry().resolve({"model": "Acurite-Tower", "temperature_C": 1.0})

    assert excinfo.value.model == "Acurite-Tower"


@pytest.mark.parametrize(
    "envelope",
    [
        [1, 2, 3],
        "Bresser-7in1",
        {"temperature_C": 1.0},
        {"model": 7},
        {**STATION, "humidity": "damp"},
        {key: value for key, value in STATION.items() if key != "time"},
    ],
)
def test_malformed_envelopes_are_invalid_records(envelope) -> None:
    with pytest.raises(InvalidRecord):
        build_default_registry().resolve(envelope)


def test_invalid_record_is_a_decode_error() -> None:
    assert issubclass(InvalidRecord, DecodeError)


def test_resolve_expected_rejects_mismatched_model() -> None:
    registry = build_default_registry()
    payload = {"unix_time": 1, "model": "BMP390", "temperature_C": 1.0, "pressure_Pa": 1.0}

    assert isinstance(registry.resolve_expected(payload, "BMP390"), PressureReading)
    with pytest.raises(InvalidRecord):
        registry.resolve_expected(payload, "SCD30")


def test_registry_only_knows_registered_schemas() -> None:
    registry = ModelRegistry(schemas=[PressureReading])

    with pytest.raises(UnknownModel):
        registry.resolve(STATION)

    registry.register(WeatherStationReading)
    assert isinstance(registry.resolve(STATION), WeatherStationReading)
