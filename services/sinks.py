"""Persistence sinks for points and the delivery policy wrapped around them."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Optional, Protocol, Sequence, Set

import urllib3
from influxdb_client import InfluxDBClient, WritePrecision
from influxdb_client.client.exceptions import InfluxDBError
from influxdb_client.client.write_api import SYNCHRONOUS
from influxdb_client.rest import ApiException

from models.errors import SinkWriteError
from models.records import Point
from services.points import to_influx_point
from settings import Settings
from storage.flat_file import FlatFileStore, build_default_store

logger = logging.getLogger(__name__)


class PointSink(Protocol):
    def write(self, points: Sequence[Point]) -> None:
        """Persist the batch or raise ``SinkWriteError``."""


class FlatFileSink:
    """Appends each point's source record as one JSON line."""

    def __init__(self, store: FlatFileStore) -> None:
        self.store = store

    def write(self, points: Sequence[Point]) -> None:
        lines = []
        for point in points:
            if point.source is None:
                raise SinkWriteError(
                    f"Point for {point.measurement!r} has no source record to store."
                )
            lines.append(point.source.to_line())
        try:
            self.store.append_lines(lines)
        except OSError as exc:
            raise SinkWriteError(f"Appending to {self.store.path} failed: {exc}") from exc


class InfluxSink:
    """Writes batches to InfluxDB synchronously with second precision."""

    def __init__(
        self,
        client: InfluxDBClient,
        bucket: str,
        org: Optional[str] = None,
    ) -> None:
        self._client = client
        self._write_api = client.write_api(write_options=SYNCHRONOUS)
        self.bucket = bucket
        self.org = org

    def write(self, points: Sequence[Point]) -> None:
        records = [record for record in map(to_influx_point, points) if record is not None]
        if not records:
            return
        try:
            self._write_api.write(
                bucket=self.bucket,
                org=self.org,
                record=records,
                write_precision=WritePrecision.S,
            )
        except ApiException as exc:
            raise SinkWriteError(f"InfluxDB write error: {exc.status} {exc.reason}") from exc
        except (InfluxDBError, urllib3.exceptions.HTTPError) as exc:
            raise SinkWriteError(f"InfluxDB unreachable: {exc}") from exc

    def close(self) -> None:
        self._client.close()


class MirroredSink:
    """Writes to a primary sink, then independently to a mirror log.

    The two writes are not transactional. A mirror failure is logged and does
    not fail the call.
    """

    def __init__(self, primary: PointSink, mirror: PointSink) -> None:
        self.primary = primary
        self.mirror = mirror

    def write(self, points: Sequence[Point]) -> None:
        self.primary.write(points)
        try:
            self.mirror.write(points)
        except SinkWriteError as exc:
            logger.warning(
                "Mirror write failed: %s",
                exc,
                extra={"batch_size": len(points), "reason": "mirror"},
            )

    def close(self) -> None:
        close = getattr(self.primary, "close", None)
        if close is not None:
            close()


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 30.0
    multiplier: float = 2.0

    def delays(self) -> Iterator[float]:
        """Yield the pause before each retry (``attempts - 1`` values)."""
        delay = self.base_delay
        for _ in range(max(self.attempts - 1, 0)):
            yield min(delay, self.max_delay)
            delay *= self.multiplier


class WriteOutcome(str, Enum):
    written = "written"
    spilled = "spilled"
    dropped = "dropped"


class ResilientWriter:
    """Retries failed batches with backoff, then spills them to a spool file.

    ``write`` never raises ``SinkWriteError``; the caller only sees the
    outcome. Spilled batches are replayed with ``services.importer.replay_spool``.
    """

    def __init__(
        self,
        sink: PointSink,
        retry: Optional[RetryPolicy] = None,
        spool: Optional[FlatFileStore] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.sink = sink
        self.retry = retry or RetryPolicy()
        self.spool = spool
        self._spool_sink = FlatFileSink(spool) if spool is not None else None
        self._sleep = sleep

    def write(self, points: Sequence[Point]) -> WriteOutcome:
        delays = self.retry.delays()
        attempt = 1
        while True:
            try:
                self.sink.write(points)
                return WriteOutcome.written
            except SinkWriteError as exc:
                delay = next(delays, None)
                if delay is None:
                    logger.error(
                        "Sink write failed after %d attempt(s): %s",
                        attempt,
                        exc,
                        extra={"attempt": attempt, "batch_size": len(points)},
                    )
                    break
                logger.warning(
                    "Sink write failed, retrying in %.2fs: %s",
                    delay,
                    exc,
                    extra={"attempt": attempt, "batch_size": len(points)},
                )
                self._sleep(delay)
                attempt += 1

        return self._spill(points)

    def _spill(self, points: Sequence[Point]) -> WriteOutcome:
        if self._spool_sink is None:
            logger.error(
                "Dropping batch, no spool configured",
                extra={"batch_size": len(points), "reason": "sink unavailable"},
            )
            return WriteOutcome.dropped
        try:
            self._spool_sink.write(points)
        except SinkWriteError as exc:
            logger.error(
                "Dropping batch, spool write failed: %s",
                exc,
                extra={"batch_size": len(points), "spool_path": str(self.spool.path)},
            )
            return WriteOutcome.dropped
        logger.warning(
            "Spilled batch to spool",
            extra={"batch_size": len(points), "spool_path": str(self.spool.path)},
        )
        return WriteOutcome.spilled


def build_influx_sink(settings: Settings) -> InfluxSink:
    if settings.influx_host is None:
        raise ValueError("INFLUX_HOST must be set to use the InfluxDB sink.")
    client = InfluxDBClient(
        url=settings.influx_host,
        token=settings.influx_token,
        org=settings.influx_org,
        timeout=30_000,
    )
    return InfluxSink(
        client=client,
        bucket=settings.influx_database,
        org=settings.influx_org,
    )


def build_default_sink(settings: Settings) -> PointSink:
    """Select the sink backend described by ``settings``."""
    file_sink = FlatFileSink(build_default_store())
    if not settings.uses_influx:
        return file_sink
    influx = build_influx_sink(settings)
    if settings.mirror_to_file:
        return MirroredSink(primary=influx, mirror=file_sink)
    return influx


def build_default_writer(settings: Settings, sink: Optional[PointSink] = None) -> ResilientWriter:
    spool = FlatFileStore(Path(settings.spool_path)) if settings.spool_path else None
    return ResilientWriter(
        sink=sink if sink is not None else build_default_sink(settings),
        retry=RetryPolicy(attempts=settings.write_retries, base_delay=settings.retry_base_delay),
        spool=spool,
    )


def appended_paths(sink: PointSink) -> Set[Path]:
    """Resolved paths of every flat file ``sink`` appends to."""
    if isinstance(sink, FlatFileSink):
        return {sink.store.path.resolve()}
    if isinstance(sink, MirroredSink):
        return appended_paths(sink.primary) | appended_paths(sink.mirror)
    return set()
