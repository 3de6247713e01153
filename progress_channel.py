"""
Server-to-client progress stream for one bulk generation request.

The producer (bulk worker thread) calls ``progress``/``done``/``error`` on a
``ProgressChannel``; the HTTP handler drains ``stream()`` into a
``text/event-stream`` response. Each event is framed as ``data: <json>\\n\\n``.
``SSEDecoder`` is the matching consumer side: it reassembles events from a byte
stream that may arrive in arbitrary fragments.
"""

import asyncio
import codecs
import json
import logging
import queue
import threading
from collections.abc import AsyncIterator, Iterable, Iterator
from typing import Any

logger = logging.getLogger(__name__)

PROGRESS = "progress"
DONE = "done"
ERROR = "error"
TERMINAL_TYPES = frozenset({DONE, ERROR})

SSE_PREFIX = "data:"
SSE_DELIMITER = "\n\n"
# Seconds between queue checks while an async stream waits for the worker.
POLL_INTERVAL = 0.05


class ChannelClosedError(RuntimeError):
    """An event was published after the terminal event."""


def progress_event(current: int, total: int) -> dict[str, Any]:
    return {"type": PROGRESS, "current": current, "total": total}


def done_event(message: str, certificates: list[dict[str, Any]], zip_download_url: str) -> dict[str, Any]:
    return {
        "type": DONE,
        "message": message,
        "certificates": certificates,
        "zip_download_url": zip_download_url,
    }


def error_event(message: str) -> dict[str, Any]:
    return {"type": ERROR, "error": message}


def encode_event(event: dict[str, Any]) -> str:
    return f"{SSE_PREFIX} {json.dumps(event, default=str)}{SSE_DELIMITER}"


class ProgressChannel:
    """Ordered, single-terminal event sink.

    Backed by an unbounded queue so a slow consumer can delay delivery but never
    blocks the producer or loses an event.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[dict[str, Any]]" = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._last_current = -1

    @property
    def closed(self) -> bool:
        return self._closed

    def _publish(self, event: dict[str, Any]) -> None:
        with self._lock:
            if self._closed:
                raise ChannelClosedError(f"cannot publish {event['type']!r}: channel already closed")
            if event["type"] in TERMINAL_TYPES:
                self._closed = True
            self._queue.put(event)

    def progress(self, current: int, total: int) -> None:
        with self._lock:
            if current < self._last_current:
                raise ValueError(f"progress went backwards: {current} after {self._last_current}")
            self._last_current = current
        self._publish(progress_event(current, total))

    def done(self, message: str, certificates: list[dict[str, Any]], zip_download_url: str) -> None:
        self._publish(done_event(message, certificates, zip_download_url))

    def error(self, message: str) -> None:
        self._publish(error_event(message))

    def events(self) -> Iterator[dict[str, Any]]:
        """Block until each event arrives; stop after the terminal one."""
        while True:
            event = self._queue.get()
            yield event
            if event["type"] in TERMINAL_TYPES:
                return

    def frames(self) -> Iterator[str]:
        for event in self.events():
            yield encode_event(event)

    async def stream(self, poll_interval: float = POLL_INTERVAL) -> AsyncIterator[str]:
        """Async counterpart of ``frames()`` for the HTTP response.

        Polls the queue from the event loop instead of blocking a worker
        thread, so an open stream does not occupy the request threadpool.
        """
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                await asyncio.sleep(poll_interval)
                continue
            yield encode_event(event)
            if event["type"] in TERMINAL_TYPES:
                return


class SSEDecoder:
    """Incremental parser for ``data: <json>`` event streams.

    ``feed`` accepts bytes or str fragments cut at any point (including inside a
    multi-byte UTF-8 sequence) and returns the events completed so far.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> list[dict[str, Any]]:
        if isinstance(chunk, bytes):
            chunk = self._utf8.decode(chunk)
        # A CRLF pair may straddle two chunks, so normalise the joined buffer.
        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")

        events: list[dict[str, Any]] = []
        *complete, self._buffer = self._buffer.split(SSE_DELIMITER)
        for block in complete:
            events.extend(self._parse_block(block))
        return events

    def flush(self) -> list[dict[str, Any]]:
        """Parse whatever is left once the stream has ended."""
        tail = self._buffer + self._utf8.decode(b"", final=True)
        self._buffer = ""
        return self._parse_block(tail) if tail.strip() else []

    @staticmethod
    def _parse_block(block: str) -> list[dict[str, Any]]:
        events = []
        for line in block.split("\n"):
            line = line.strip()
            if not line.startswith(SSE_PREFIX):
                continue
            payload = line[len(SSE_PREFIX):].strip()
            if not payload:
                continue
            try:
                events.append(json.loads(payload))
            except json.JSONDecodeError:
                logger.warning("Skipping malformed event payload: %.80s", payload)
        return events


def iter_sse_events(chunks: Iterable[bytes | str]) -> Iterator[dict[str, Any]]:
    decoder = SSEDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
    yield from decoder.flush()
