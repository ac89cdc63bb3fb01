"""Bounded historical reads over the flat-file store."""

from __future__ import annotations

import bisect
from typing import List, Optional

from models.errors import IngestError, StoreCorrupted
from models.records import ProcessedRecord, TimeWindow
from services.enrichment import Enricher, decode_processed_line
from services.points import DEFAULT_TIMEZONE, record_epoch
from services.registry import ModelRegistry
from storage.flat_file import FlatFileStore

DEFAULT_THRESHOLD_SECONDS = 18.0


class QueryService:
    """Reads every stored record; any unreadable line fails the whole read."""

    def __init__(
        self,
        store: FlatFileStore,
        registry: ModelRegistry,
        threshold_seconds: float = DEFAULT_THRESHOLD_SECONDS,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> None:
        self.store = store
        self.registry = registry
        self.threshold_seconds = threshold_seconds
        self.timezone = timezone
        self._enricher = Enricher()

    def _scan(self) -> tuple[List[ProcessedRecord], List[float]]:
        records: List[ProcessedRecord] = []
        epochs: List[float] = []
        for line_number, line in self.store.iter_lines():
            try:
                record = decode_processed_line(line, self.registry, self._enricher)
                epoch = record_epoch(record, self.timezone)
            except IngestError as exc:
                raise StoreCorrupted(line_number, exc) from exc
            records.append(record)
            epochs.append(epoch)
        return records, epochs

    def read_all(self) -> List[ProcessedRecord]:
        records, _ = self._scan()
        return records

    def bracket(self, window: TimeWindow) -> List[ProcessedRecord]:
        """Approximate ``window`` by nearest-timestamp bracketing.

        The lower bound is the last record within the threshold of
        ``window.start`` and the upper bound the last one within the threshold
        of ``window.end``. An endpoint with no nearby record falls back to the
        first or last record. The result depends on store order and may
        include records outside the window or miss ones at its edges.
        """
        records, epochs = self._scan()
        if not records:
            return []

        lower = 0
        upper = len(records) - 1
        for index, epoch in enumerate(epochs):
            if abs(epoch - window.start) < self.threshold_seconds:
                lower = index
            if abs(epoch - window.end) < self.threshold_seconds:
                upper = index

        if lower > upper:
            return []
        return records[lower : upper + 1]

    def exact(self, window: TimeWindow) -> List[ProcessedRecord]:
        """Records whose timestamp lies in ``window`` inclusive, in time order."""
        records, epochs = self._scan()
        ordered = sorted(zip(epochs, range(len(records))))
        keys = [epoch for epoch, _ in ordered]
        lo = bisect.bisect_left(keys, window.start)
        hi = bisect.bisect_right(keys, window.end)
        return [records[index] for _, index in ordered[lo:hi]]

    def query(self, window: Optional[TimeWindow] = None, exact: bool = False) -> List[ProcessedRecord]:
        if window is None:
            return self.read_all()
        if exact:
            return self.exact(window)
        return self.bracket(window)
