"""Stream ingestion: routing, enrichment and delivery of bridge records."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Event, Lock, Thread
from typing import Any, Callable, Dict, Iterable, Optional

import httpx

from models.errors import DecodeError, StreamConnectionError, TimeParseError, UnknownModel
from models.records import ProcessedRecord, SensorReading
from services.enrichment import Enricher
from services.points import DEFAULT_TIMEZONE, to_point
from services.registry import ModelRegistry
from services.sinks import ResilientWriter, WriteOutcome
from services.stream import BridgeStream

logger = logging.getLogger(__name__)


class LatestReadings:
    """Most recent processed record per model.

    Owned by whoever builds the pipeline and injected into both the writer
    (the pipeline) and the readers (HTTP handlers). Records are immutable, so
    snapshots hand them out directly.
    """

    def __init__(self) -> None:
        self._records: Dict[str, ProcessedRecord] = {}
        self._lock = Lock()

    def update(self, record: ProcessedRecord) -> None:
        with self._lock:
            self._records[record.model] = record

    def get(self, model: str) -> Optional[ProcessedRecord]:
        with self._lock:
            return self._records.get(model)

    def snapshot(self) -> Dict[str, ProcessedRecord]:
        with self._lock:
            return dict(self._records)


class IngestOutcome(str, Enum):
    stored = "stored"
    spilled = "spilled"
    dropped = "dropped"
    unknown_model = "unknown_model"
    invalid = "invalid"
    bad_timestamp = "bad_timestamp"


_WRITE_OUTCOMES = {
    WriteOutcome.written: IngestOutcome.stored,
    WriteOutcome.spilled: IngestOutcome.spilled,
    WriteOutcome.dropped: IngestOutcome.dropped,
}


@dataclass
class IngestStats:
    counts: Counter = field(default_factory=Counter)

    def record(self, outcome: IngestOutcome) -> None:
        self.counts[outcome] += 1

    @property
    def total(self) -> int:
        return sum(self.counts.values())


class IngestPipeline:
    """Registry -> enrichment -> point -> sink, one record at a time."""

    def __init__(
        self,
        registry: ModelRegistry,
        writer: ResilientWriter,
        enricher: Optional[Enricher] = None,
        latest: Optional[LatestReadings] = None,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> None:
        self.registry = registry
        self.writer = writer
        self.enricher = enricher or Enricher()
        self.latest = latest if latest is not None else LatestReadings()
        self.timezone = timezone

    def process(self, reading: SensorReading) -> tuple[ProcessedRecord, WriteOutcome]:
        """Enrich and persist a validated reading.

        Raises ``TimeParseError`` if the reading's timestamp is unusable; the
        record is then neither cached nor written.
        """
        record = self.enricher.enrich(reading)
        point = to_point(record, self.timezone)
        self.latest.update(record)
        return record, self.writer.write([point])

    def handle(self, envelope: Any) -> IngestOutcome:
        """Process one decoded stream element without raising per-record errors."""
        try:
            reading = self.registry.resolve(envelope)
        except UnknownModel as exc:
            logger.debug("Skipping record for unregistered model", extra={"model": exc.model})
            return IngestOutcome.unknown_model
        except DecodeError as exc:
            logger.warning("Skipping invalid record: %s", exc, extra={"reason": "invalid"})
            return IngestOutcome.invalid

        try:
            _, outcome = self.process(reading)
        except TimeParseError as exc:
            logger.warning(
                "Dropping record with unusable timestamp: %s",
                exc,
                extra={"model": reading.model, "reason": "timestamp"},
            )
            return IngestOutcome.bad_timestamp
        return _WRITE_OUTCOMES[outcome]

    def run(self, values: Iterable[Any], stop: Optional[Event] = None) -> IngestStats:
        stats = IngestStats()
        for value in values:
            stats.record(self.handle(value))
            if stop is not None and stop.is_set():
                break
        return stats


class IngesterState(str, Enum):
    idle = "idle"
    connecting = "connecting"
    streaming = "streaming"
    reconnecting = "reconnecting"
    stopped = "stopped"
    unhealthy = "unhealthy"


class IngesterHealth:
    def __init__(self) -> None:
        self._lock = Lock()
        self._state = IngesterState.idle
        self._failures = 0
        self._last_error: Optional[str] = None
        self._changed_at = datetime.now(timezone.utc)

    def set(
        self,
        state: IngesterState,
        failures: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        with self._lock:
            self._state = state
            if failures is not None:
                self._failures = failures
            if error is not None:
                self._last_error = error
            self._changed_at = datetime.now(timezone.utc)

    @property
    def state(self) -> IngesterState:
        with self._lock:
            return self._state

    @property
    def healthy(self) -> bool:
        return self.state is not IngesterState.unhealthy

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.value,
                "consecutive_failures": self._failures,
                "last_error": self._last_error,
                "changed_at": self._changed_at,
            }


class StreamSupervisor:
    """Keeps the pipeline fed from the bridge, reconnecting with backoff.

    A connection error or end of stream counts as one failure; any decoded
    element resets the count. After ``max_reconnects`` consecutive failures
    the ingester is marked unhealthy and the supervisor returns. Any other
    exception also marks it unhealthy and ends the run, after being logged.
    """

    def __init__(
        self,
        pipeline: IngestPipeline,
        stream_factory: Callable[[], Iterable[Any]],
        max_reconnects: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        health: Optional[IngesterHealth] = None,
        on_stop: Optional[Callable[[], None]] = None,
    ) -> None:
        self.pipeline = pipeline
        self._stream_factory = stream_factory
        self.max_reconnects = max_reconnects
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.health = health or IngesterHealth()
        self._on_stop = on_stop
        self._stop = Event()
        self._thread: Optional[Thread] = None
        self.stats = IngestStats()

    def run(self) -> IngestStats:
        failures = 0
        while not self._stop.is_set():
            self.health.set(IngesterState.connecting, failures=failures)
            error = "end of stream"
            try:
                for value in self._stream_factory():
                    if failures:
                        failures = 0
                        self.health.set(IngesterState.streaming, failures=0)
                    elif self.health.state is not IngesterState.streaming:
                        self.health.set(IngesterState.streaming)
                    self.stats.record(self.pipeline.handle(value))
                    if self._stop.is_set():
                        break
            except StreamConnectionError as exc:
                error = str(exc)
                logger.error("Bridge connection failed: %s", exc)
            except Exception as exc:
                logger.exception("Ingester stopped on unexpected error")
                self.health.set(IngesterState.unhealthy, failures=failures, error=repr(exc))
                return self.stats

            if self._stop.is_set():
                break

            failures += 1
            if failures > self.max_reconnects:
                logger.critical(
                    "Giving up on bridge stream after %d consecutive failures",
                    failures,
                    extra={"attempt": failures},
                )
                self.health.set(IngesterState.unhealthy, failures=failures, error=error)
                return self.stats

            delay = min(self.base_delay * 2 ** (failures - 1), self.max_delay)
            self.health.set(IngesterState.reconnecting, failures=failures, error=error)
            logger.warning(
                "Reconnecting to bridge in %.1fs",
                delay,
                extra={"attempt": failures, "reason": error},
            )
            self._stop.wait(delay)

        self.health.set(IngesterState.stopped)
        return self.stats

    def start(self) -> Thread:
        self._thread = Thread(target=self.run, name="bridge-ingester", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._on_stop is not None:
            self._on_stop()
        if self._thread is not None:
            self._thread.join(timeout=timeout)


def build_stream_supervisor(
    pipeline: IngestPipeline,
    url: str,
    max_reconnects: int = 5,
    health: Optional[IngesterHealth] = None,
) -> StreamSupervisor:
    client = httpx.Client(timeout=httpx.Timeout(10.0, read=None))
    return StreamSupervisor(
        pipeline=pipeline,
        stream_factory=lambda: BridgeStream(url, client=client),
        max_reconnects=max_reconnects,
        health=health,
        on_stop=client.close,
    )
