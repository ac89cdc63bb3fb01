"""Routes decoded envelopes to the schema registered for their model tag."""

from __future__ import annotations

from threading import Lock
from typing import Any, Dict, Iterable, Optional, Type

from pydantic import ValidationError

from models.errors import InvalidRecord, UnknownModel
from models.records import CO2Reading, PressureReading, SensorReading, WeatherStationReading

MODEL_KEY = "model"


class ModelRegistry:
    """Thread-safe map from model tag to the schema that validates it."""

    def __init__(self, schemas: Optional[Iterable[Type[SensorReading]]] = None) -> None:
        self._schemas: Dict[str, Type[SensorReading]] = {}
        self._lock = Lock()
        for schema in schemas or ():
            self.register(schema)

    def register(self, schema: Type[SensorReading]) -> None:
        with self._lock:
            self._schemas[schema.MODEL_ID] = schema

    def models(self) -> list[str]:
        with self._lock:
            return sorted(self._schemas)

    def resolve(self, envelope: Any) -> SensorReading:
        """Validate ``envelope`` against the schema named by its model tag.

        Raises ``InvalidRecord`` for a non-object envelope, a missing tag or a
        schema violation, and ``UnknownModel`` for an unregistered tag.
        """
        if not isinstance(envelope, dict):
            raise InvalidRecord(
                f"Expected a JSON object, got {type(envelope).__name__}."
            )

        model = envelope.get(MODEL_KEY)
        if not isinstance(model, str) or not model:
            raise InvalidRecord("Record is missing a model identifier.")

        with self._lock:
            schema = self._schemas.get(model)
        if schema is None:
            raise UnknownModel(model)

        try:
            return schema.model_validate(envelope)
        except ValidationError as exc:
            raise InvalidRecord(
                f"Record for model {model!r} failed validation: "
                f"{exc.error_count()} error(s)."
            ) from exc

    def resolve_expected(self, envelope: Any, model: str) -> SensorReading:
        """Resolve ``envelope`` and require its tag to equal ``model``."""
        if isinstance(envelope, dict) and envelope.get(MODEL_KEY) != model:
            raise InvalidRecord(
                f"Expected model {model!r}, got {envelope.get(MODEL_KEY)!r}."
            )
        return self.resolve(envelope)


def build_default_registry() -> ModelRegistry:
    return ModelRegistry(
        schemas=(WeatherStationReading, PressureReading, CO2Reading),
    )
