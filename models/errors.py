"""Exception taxonomy for the ingest pipeline.

Per-record failures (``DecodeError``, ``UnknownModel``, ``TimeParseError``)
are skipped by the stream loop. ``StreamConnectionError`` ends one bridge
connection and ``SinkWriteError`` rejects one batch.
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for every error raised by the ingester."""


class DecodeError(IngestError):
    """A single stream element or stored line is not valid JSON."""


class InvalidRecord(DecodeError):
    """The element decoded but does not satisfy its model's schema."""


class UnknownModel(IngestError):
    def __init__(self, model: str) -> None:
        super().__init__(f"No schema registered for model {model!r}.")
        self.model = model


class StreamConnectionError(IngestError, ConnectionError):
    """The bridge stream could not be opened or broke while reading."""


class SinkWriteError(IngestError):
    """A persistence sink rejected a batch of points."""


class TimeParseError(IngestError, ValueError):
    """A record timestamp cannot be interpreted."""


class ImportAborted(IngestError):
    def __init__(self, message: str, points_written: int) -> None:
        super().__init__(message)
        self.points_written = points_written


class StoreCorrupted(IngestError):
    """A stored line could not be decoded while answering a query."""

    def __init__(self, line_number: int, cause: Exception) -> None:
        super().__init__(f"Line {line_number} of the store is unreadable: {cause}")
        self.line_number = line_number
