from __future__ import annotations

import os
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Iterable, Iterator, Optional, TextIO

from settings import get_settings


class FlatFileStore:
    """Append-only newline-delimited JSON file.

    Appends from one process are serialised by a lock; each successful
    ``append_lines`` call has been flushed and fsynced. A batch is not atomic:
    a crash mid-call can leave a prefix of its lines on disk.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = Lock()
        path.parent.mkdir(parents=True, exist_ok=True)

    def append_lines(self, lines: Iterable[str]) -> int:
        written = 0
        with self._lock:
            with self.path.open("a", encoding="utf-8") as handle:
                for line in lines:
                    if "\n" in line:
                        raise ValueError("Stored lines must not contain newlines.")
                    handle.write(line + "\n")
                    written += 1
                handle.flush()
                os.fsync(handle.fileno())
        return written

    @contextmanager
    def open_text(self, encoding: str = "utf-8") -> Iterator[TextIO]:
        """Yield a streaming text handle; an absent file reads as empty."""

        if not self.path.exists():
            self.path.touch()
        with self.path.open("r", encoding=encoding) as handle:
            yield handle

    def iter_lines(self) -> Iterator[tuple[int, str]]:
        """Yield ``(line_number, line)`` for every non-blank line."""

        with self.open_text() as handle:
            for line_number, raw in enumerate(handle, start=1):
                line = raw.strip()
                if line:
                    yield line_number, line

    def is_empty(self) -> bool:
        return not self.path.exists() or self.path.stat().st_size == 0

    def truncate(self) -> None:
        with self._lock:
            with self.path.open("w", encoding="utf-8") as handle:
                handle.flush()
                os.fsync(handle.fileno())


@lru_cache
def build_default_store(path: Optional[str] = None) -> FlatFileStore:
    settings = get_settings()
    store_path = settings.store_path if path is None else path
    return FlatFileStore(path=Path(store_path))
