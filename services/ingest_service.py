"""Wires registry, pipeline, sinks and queries into one long-lived service."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Optional

from models.records import ProcessedRecord
from services.importer import BulkImporter, ImportSummary, replay_spool
from services.ingest import (
    IngesterHealth,
    IngestPipeline,
    IngestStats,
    LatestReadings,
    StreamSupervisor,
    build_stream_supervisor,
)
from services.query import QueryService
from services.registry import ModelRegistry, build_default_registry
from services.sinks import MirroredSink, PointSink, ResilientWriter, WriteOutcome, build_default_writer
from settings import get_settings
from storage.flat_file import FlatFileStore, build_default_store

logger = logging.getLogger(__name__)


class IngestService:
    """Owns the shared state of a running ingester.

    The latest-readings cache and ingester health are created here and
    handed to both the stream pipeline and the HTTP layer.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        writer: ResilientWriter,
        store: FlatFileStore,
        timezone: str = "America/Los_Angeles",
        threshold_seconds: float = 18.0,
        import_batch_size: int = 5000,
        max_reconnects: int = 5,
    ) -> None:
        self.registry = registry
        self.writer = writer
        self.store = store
        self.timezone = timezone
        self.import_batch_size = import_batch_size
        self.max_reconnects = max_reconnects
        self.latest = LatestReadings()
        self.health = IngesterHealth()
        self.pipeline = IngestPipeline(
            registry=registry,
            writer=writer,
            latest=self.latest,
            timezone=timezone,
        )
        self.query = QueryService(
            store=store,
            registry=registry,
            threshold_seconds=threshold_seconds,
            timezone=timezone,
        )
        self._supervisor: Optional[StreamSupervisor] = None

    def ingest_payload(
        self, payload: Any, model: Optional[str] = None
    ) -> tuple[ProcessedRecord, WriteOutcome]:
        """Validate and persist one record received outside the stream.

        Raises ``DecodeError``/``UnknownModel`` for bad payloads and
        ``TimeParseError`` for an unusable timestamp.
        """
        if model is None:
            reading = self.registry.resolve(payload)
        else:
            reading = self.registry.resolve_expected(payload, model)
        return self.pipeline.process(reading)

    def start_streaming(self, url: str) -> StreamSupervisor:
        if self._supervisor is None:
            self._supervisor = build_stream_supervisor(
                self.pipeline, url, max_reconnects=self.max_reconnects, health=self.health
            )
            self._supervisor.start()
            logger.info("Started bridge ingester", extra={"url": url})
        return self._supervisor

    def run_streaming(self, url: str) -> IngestStats:
        """Ingest in the calling thread until the supervisor gives up."""
        supervisor = build_stream_supervisor(
            self.pipeline, url, max_reconnects=self.max_reconnects, health=self.health
        )
        try:
            return supervisor.run()
        finally:
            supervisor.stop()

    def importer(
        self, batch_size: Optional[int] = None, sink: Optional[PointSink] = None
    ) -> BulkImporter:
        return BulkImporter(
            registry=self.registry,
            sink=sink if sink is not None else self.writer.sink,
            batch_size=batch_size or self.import_batch_size,
            timezone=self.timezone,
        )

    def bulk_import(
        self, store: Optional[FlatFileStore] = None, batch_size: Optional[int] = None
    ) -> ImportSummary:
        """Backfill a store into the primary sink.

        A file mirror is skipped since it already holds the records. Raises
        ``ImportAborted``, also when the source is the file the sink appends to.
        """
        sink = self.writer.sink
        if isinstance(sink, MirroredSink):
            sink = sink.primary
        return self.importer(batch_size, sink=sink).run(store or self.store)

    def replay_spool(self) -> ImportSummary:
        if self.writer.spool is None:
            return ImportSummary()
        return replay_spool(self.writer.spool, self.importer())

    def shutdown(self) -> None:
        if self._supervisor is not None:
            self._supervisor.stop()
            self._supervisor = None
        close = getattr(self.writer.sink, "close", None)
        if close is not None:
            close()


@lru_cache
def build_default_service() -> IngestService:
    """Factory that wires the service from environment settings."""
    settings = get_settings()
    return IngestService(
        registry=build_default_registry(),
        writer=build_default_writer(settings),
        store=build_default_store(),
        timezone=settings.local_timezone,
        threshold_seconds=settings.query_threshold_seconds,
        import_batch_size=settings.import_batch_size,
        max_reconnects=settings.max_reconnects,
    )
