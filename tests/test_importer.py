from __future__ import annotations

import math
from pathlib import Path
from typing import List, Sequence

import pytest

from models.errors import ImportAborted, SinkWriteError
from models.records import Point
from services.enrichment import Enricher
from services.importer import BulkImporter, replay_spool
from services.ingest_service import IngestService, build_default_service
from services.registry import build_default_registry
from services.sinks import FlatFileSink, MirroredSink, ResilientWriter
from settings import get_settings
from storage.flat_file import FlatFileStore, build_default_store


def _line(unix_time: int) -> str:
    reading = build_default_registry().resolve(
        {"unix_time": unix_time, "model": "BMP390", "temperature_C": 19.0, "pressure_Pa": 100900.0}
    )
    return Enricher().enrich(reading).to_line()


def _store(tmp_path: Path, count: int, name: str = "wxdb.txt") -> FlatFileStore:
    store = FlatFileStore(tmp_path / name)
    store.append_lines(_line(1717200000 + index) for index in range(count))
    return store


class BatchRecorder:
    def __init__(self, fail_on: int | None = None) -> None:
        self.batches: List[List[Point]] = []
        self.fail_on = fail_on

    def write(self, points: Sequence[Point]) -> None:
        if self.fail_on is not None and len(self.batches) + 1 == self.fail_on:
            raise SinkWriteError("batch rejected")
        self.batches.append(list(points))


@pytest.mark.parametrize("count,batch_size", [(12, 5), (10, 5), (3, 5000), (1, 1)])
def test_import_writes_every_record_in_bounded_batches(tmp_path: Path, count, batch_size) -> None:
    sink = BatchRecorder()
    importer = BulkImporter(build_default_registry(), sink, batch_size=batch_size)

    summary = importer.run(_store(tmp_path, count))

    assert len(sink.batches) == math.ceil(count / batch_size)
    assert all(len(batch) <= batch_size for batch in sink.batches)
    written = [int(point.timestamp.timestamp()) for batch in sink.batches for point in batch]
    assert written == [1717200000 + index for index in range(count)]
    assert summary.records == count
    assert summary.batches == len(sink.batches)


def test_import_of_empty_store_writes_nothing(tmp_path: Path) -> None:
    sink = BatchRecorder()

    summary = BulkImporter(build_default_registry(), sink).run(FlatFileStore(tmp_path / "empty.txt"))

    assert sink.batches == []
    assert summary.records == 0


def test_import_aborts_on_rejected_batch(tmp_path: Path) -> None:
    sink = BatchRecorder(fail_on=2)
    importer = BulkImporter(build_default_registry(), sink, batch_size=4)

    with pytest.raises(ImportAborted) as excinfo:
        importer.run(_store(tmp_path, 10))

    assert excinfo.value.points_written == 4
    assert len(sink.batches) == 1


def test_import_aborts_on_unreadable_line(tmp_path: Path) -> None:
    store = _store(tmp_path, 3)
    store.append_lines(["{broken"])
    sink = BatchRecorder()

    with pytest.raises(ImportAborted) as excinfo:
        BulkImporter(build_default_registry(), sink, batch_size=2).run(store)

    assert ":4:" in str(excinfo.value)
    assert excinfo.value.points_written == 2


def test_batch_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        BulkImporter(build_default_registry(), BatchRecorder(), batch_size=0)


def test_replay_spool_delivers_and_truncates(tmp_path: Path) -> None:
    spool = _store(tmp_path, 3, name="spool.txt")
    sink = BatchRecorder()

    summary = replay_spool(spool, BulkImporter(build_default_registry(), sink))

    assert summary.records == 3
    assert spool.is_empty()


def test_failed_replay_keeps_spool(tmp_path: Path) -> None:
    spool = _store(tmp_path, 3, name="spool.txt")

    with pytest.raises(ImportAborted):
        replay_spool(spool, BulkImporter(build_default_registry(), BatchRecorder(fail_on=1)))

    assert len(list(spool.iter_lines())) == 3


def test_replay_of_empty_spool_is_a_no_op(tmp_path: Path) -> None:
    sink = BatchRecorder()

    summary = replay_spool(FlatFileStore(tmp_path / "spool.txt"), BulkImporter(build_default_registry(), sink))

    assert summary.records == 0
    assert sink.batches == []


@pytest.fixture
def default_file_settings(monkeypatch, tmp_path: Path):
    for name in ("INFLUX_HOST", "WX_SINK_BACKEND", "WX_MIRROR_TO_FILE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("WXDB_PATH", str(tmp_path / "wxdb.txt"))
    monkeypatch.setenv("WX_SPOOL_PATH", str(tmp_path / "spool.txt"))
    caches = (get_settings, build_default_store, build_default_service)
    for cache in caches:
        cache.cache_clear()
    yield
    for cache in caches:
        cache.cache_clear()


def test_default_service_refuses_to_import_its_own_store(default_file_settings) -> None:
    service = build_default_service()
    service.store.append_lines(_line(1717200000 + index) for index in range(5))

    with pytest.raises(ImportAborted) as excinfo:
        service.bulk_import(batch_size=2)

    assert excinfo.value.points_written == 0
    assert len(list(service.store.iter_lines())) == 5


def test_mirrored_import_writes_only_to_primary(tmp_path: Path) -> None:
    store = _store(tmp_path, 5)
    primary = BatchRecorder()
    writer = ResilientWriter(MirroredSink(primary=primary, mirror=FlatFileSink(store)))
    service = IngestService(registry=build_default_registry(), writer=writer, store=store)

    summary = service.bulk_import(batch_size=2)

    assert summary.records == 5
    assert [len(batch) for batch in primary.batches] == [2, 2, 1]
    assert len(list(store.iter_lines())) == 5


def test_replay_into_the_spool_itself_is_refused(tmp_path: Path) -> None:
    spool = _store(tmp_path, 2, name="spool.txt")

    with pytest.raises(ImportAborted):
        replay_spool(spool, BulkImporter(build_default_registry(), FlatFileSink(spool)))

    assert len(list(spool.iter_lines())) == 2
