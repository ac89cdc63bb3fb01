"""Incremental JSON decoding of the bridge's telemetry stream."""

from __future__ import annotations

import json
import logging
from contextlib import ExitStack
from typing import Any, Iterable, Iterator, Optional

import httpx

from models.errors import StreamConnectionError

logger = logging.getLogger(__name__)

# Characters allowed between top-level values: whitespace plus the brackets
# and commas of a streamed JSON array.
_SEPARATORS = " \t\r\n[],"


class JsonStreamDecoder:
    """Decode a sequence of JSON values from text chunks, one value at a time.

    Only the not-yet-decoded tail of the input is buffered. An element is
    declared malformed once a newline follows the position where decoding
    failed; it is logged and skipped through that newline. A failure with no
    newline after it may be a value split across chunks, so decoding waits
    for more input.
    """

    def __init__(self) -> None:
        self._decoder = json.JSONDecoder()
        self.skipped = 0

    def iter_values(self, chunks: Iterable[str]) -> Iterator[Any]:
        buffer = ""
        for chunk in chunks:
            if not chunk:
                continue
            buffer += chunk
            buffer = yield from self._drain(buffer, final=False)
        yield from self._drain(buffer, final=True)

    def _drain(self, buffer: str, final: bool):
        position = 0
        length = len(buffer)
        while True:
            while position < length and buffer[position] in _SEPARATORS:
                position += 1
            if position >= length:
                return ""

            try:
                value, end = self._decoder.raw_decode(buffer, position)
            except json.JSONDecodeError as exc:
                newline = buffer.find("\n", exc.pos)
                if newline == -1:
                    if final:
                        self._skip(exc, buffer[position:])
                        return ""
                    return buffer[position:]
                self._skip(exc, buffer[position:newline])
                position = newline + 1
                continue

            if end >= length and not final and _may_continue(value):
                # a bare number at the end of a chunk may still have digits coming
                return buffer[position:]
            position = end
            yield value

    def _skip(self, exc: json.JSONDecodeError, fragment: str) -> None:
        self.skipped += 1
        logger.warning(
            "Skipping malformed stream element: %s",
            exc.msg,
            extra={"reason": "decode error"},
        )
        logger.debug("Malformed element: %r", fragment[:200])


def _may_continue(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class BridgeStream:
    """One long-lived HTTP GET against the bridge's stream endpoint.

    Iterating yields decoded JSON values until the server closes the
    connection. Connection and transport failures raise
    ``StreamConnectionError``.
    """

    def __init__(
        self,
        url: str,
        client: Optional[httpx.Client] = None,
        decoder: Optional[JsonStreamDecoder] = None,
    ) -> None:
        self.url = url
        self._client = client
        self.decoder = decoder or JsonStreamDecoder()

    def __iter__(self) -> Iterator[Any]:
        with ExitStack() as stack:
            client = self._client
            if client is None:
                # no read timeout: the bridge may stay quiet for minutes
                client = stack.enter_context(
                    httpx.Client(timeout=httpx.Timeout(10.0, read=None))
                )
            try:
                response = stack.enter_context(client.stream("GET", self.url))
                response.raise_for_status()
                logger.info("Connected to bridge stream", extra={"url": self.url})
                yield from self.decoder.iter_values(response.iter_text())
            except httpx.HTTPStatusError as exc:
                raise StreamConnectionError(
                    f"Bridge returned HTTP {exc.response.status_code} for {self.url}."
                ) from exc
            except httpx.HTTPError as exc:
                raise StreamConnectionError(
                    f"Bridge stream {self.url} failed: {exc}"
                ) from exc
        logger.info("Bridge stream closed", extra={"url": self.url})
