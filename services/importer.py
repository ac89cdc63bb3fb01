"""One-time bulk import of a flat-file store into a sink."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional

from models.errors import ImportAborted, IngestError, SinkWriteError
from models.records import Point
from services.enrichment import Enricher, decode_processed_line
from services.points import DEFAULT_TIMEZONE, to_point
from services.registry import ModelRegistry
from services.sinks import PointSink, appended_paths
from storage.flat_file import FlatFileStore

logger = logging.getLogger(__name__)


@dataclass
class ImportSummary:
    records: int = 0
    batches: int = 0


class BulkImporter:
    """Re-derives a point for every stored record and writes them in batches.

    Batches hold at most ``batch_size`` points. Any bad line or rejected batch
    aborts the whole import; there is no resume.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        sink: PointSink,
        batch_size: int = 5000,
        timezone: str = DEFAULT_TIMEZONE,
        enricher: Optional[Enricher] = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive.")
        self.registry = registry
        self.sink = sink
        self.batch_size = batch_size
        self.timezone = timezone
        self.enricher = enricher or Enricher()

    def _points(self, store: FlatFileStore, summary: ImportSummary) -> Iterator[Point]:
        for line_number, line in store.iter_lines():
            try:
                record = decode_processed_line(line, self.registry, self.enricher)
                point = to_point(record, self.timezone)
            except IngestError as exc:
                raise ImportAborted(
                    f"{store.path}:{line_number}: {exc}", points_written=summary.records
                ) from exc
            yield point

    def _flush(self, batch: List[Point], summary: ImportSummary) -> None:
        try:
            self.sink.write(batch)
        except SinkWriteError as exc:
            raise ImportAborted(
                f"Batch {summary.batches + 1} rejected: {exc}",
                points_written=summary.records,
            ) from exc
        summary.batches += 1
        summary.records += len(batch)
        logger.info(
            "Imported batch %d",
            summary.batches,
            extra={"batch_size": len(batch), "points_written": summary.records},
        )

    def run(self, store: FlatFileStore) -> ImportSummary:
        if store.path.resolve() in appended_paths(self.sink):
            raise ImportAborted(
                f"Refusing to import {store.path} into a sink that appends to it.",
                points_written=0,
            )
        summary = ImportSummary()
        batch: List[Point] = []
        for point in self._points(store, summary):
            batch.append(point)
            if len(batch) >= self.batch_size:
                self._flush(batch, summary)
                batch = []
        if batch:
            self._flush(batch, summary)
        return summary


def replay_spool(spool: FlatFileStore, importer: BulkImporter) -> ImportSummary:
    """Push spilled records back through ``importer`` and empty the spool.

    The spool is truncated only after every batch was accepted, so a failed
    replay can be repeated; records delivered before the failure are sent
    again.
    """
    if spool.is_empty():
        return ImportSummary()
    summary = importer.run(spool)
    spool.truncate()
    logger.info(
        "Replayed spool",
        extra={"spool_path": str(spool.path), "points_written": summary.records},
    )
    return summary
