"""Incremental decoding of the assistant's event stream.

The provider answers with server-sent events::

    : keepalive
    data: {"choices": [{"delta": {"content": "Hel"}}]}
    data: {"choices": [{"delta": {"content": "lo"}}]}
    data: [DONE]

Chunks arrive with arbitrary boundaries. :class:`SSELineLexer` keeps one
growing buffer and a cursor into it; a line is only consumed once it is
newline-terminated and its payload parses. A line whose JSON does not parse
stays in the buffer (cursor not advanced) and is retried after the next
chunk, so the accumulated text never depends on where the chunks were split.
"""

from __future__ import annotations

import codecs
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Callable, Iterable, Optional, Union

import anyio

from bodhit.errors import StreamDecodeError
from bodhit.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "DATA_PREFIX",
    "DONE_SENTINEL",
    "LineKind",
    "EventLine",
    "classify_line",
    "SSELineLexer",
    "StreamAccumulator",
    "StreamIngestor",
    "StreamResult",
    "close_source",
    "decode_chunks",
]

DATA_PREFIX = "data: "
COMMENT_PREFIX = ":"
DONE_SENTINEL = "[DONE]"

Chunk = Union[str, bytes]


class LineKind(str, Enum):
    CONTENT = "content"
    IGNORED = "ignored"
    DONE = "done"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class EventLine:
    kind: LineKind
    content: str = ""
    error: Optional[StreamDecodeError] = None


_IGNORED = EventLine(LineKind.IGNORED)
_DONE = EventLine(LineKind.DONE)


def _delta_content(payload: Any) -> str:
    """Pull ``choices[0].delta.content`` out of a decoded payload, or ''."""
    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""


def classify_line(line: str) -> EventLine:
    """Classify one event line (without its terminating newline)."""
    if line.endswith("\r"):
        line = line[:-1]
    if line.startswith(COMMENT_PREFIX) or not line.strip():
        return _IGNORED
    if not line.startswith(DATA_PREFIX):
        return _IGNORED

    body = line[len(DATA_PREFIX) :].strip()
    if body == DONE_SENTINEL:
        return _DONE

    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        return EventLine(LineKind.INCOMPLETE, error=StreamDecodeError(str(exc)))

    content = _delta_content(payload)
    if not content:
        return _IGNORED
    return EventLine(LineKind.CONTENT, content=content)


class SSELineLexer:
    """Line lexer over a growing text buffer.

    ``feed`` appends text; ``drain`` yields the content of every complete line
    from the cursor onward. Draining stops early at the ``[DONE]`` sentinel
    (the sentinel line is consumed) or at a line whose JSON is not yet
    complete (that line is left in place for the next ``drain``).
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._cursor = 0

    @property
    def pending(self) -> str:
        """Text that has been fed but not consumed yet."""
        return self._buffer[self._cursor :]

    def feed(self, text: str) -> None:
        if self._cursor:
            self._buffer = self._buffer[self._cursor :]
            self._cursor = 0
        self._buffer += text

    def drain(self) -> Iterable[str]:
        while True:
            newline = self._buffer.find("\n", self._cursor)
            if newline == -1:
                return
            event = classify_line(self._buffer[self._cursor : newline])
            if event.kind is LineKind.INCOMPLETE:
                logger.debug("event_line_rebuffered", error=str(event.error))
                return
            self._cursor = newline + 1
            if event.kind is LineKind.DONE:
                return
            if event.kind is LineKind.CONTENT:
                yield event.content

    def flush(self) -> Iterable[str]:
        """Process whatever is left once the source has ended.

        Same line rules as :meth:`drain`, except nothing is rebuffered: lines
        that still do not parse are dropped and ``[DONE]`` is skipped.
        """
        remainder = self.pending
        self._buffer = ""
        self._cursor = 0
        if not remainder.strip():
            return
        for raw in remainder.split("\n"):
            if not raw:
                continue
            event = classify_line(raw)
            if event.kind is LineKind.CONTENT:
                yield event.content
            elif event.kind is LineKind.INCOMPLETE:
                logger.debug("event_line_dropped", error=str(event.error))


class StreamAccumulator:
    """Synchronous core of the ingestor: chunks in, accumulated text out."""

    def __init__(self, on_update: Callable[[str], None] | None = None):
        self._lexer = SSELineLexer()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._on_update = on_update
        self.content = ""
        self.deltas = 0

    def _append(self, delta: str) -> None:
        self.content += delta
        self.deltas += 1
        if self._on_update is not None:
            self._on_update(self.content)

    def feed(self, chunk: Chunk) -> None:
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        self._lexer.feed(text)
        for delta in self._lexer.drain():
            self._append(delta)

    def finish(self) -> str:
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._lexer.feed(tail)
        for delta in self._lexer.flush():
            self._append(delta)
        return self.content


def decode_chunks(chunks: Iterable[Chunk], on_update: Callable[[str], None] | None = None) -> str:
    """Decode an already-available sequence of chunks into the final text."""
    accumulator = StreamAccumulator(on_update)
    for chunk in chunks:
        accumulator.feed(chunk)
    return accumulator.finish()


@dataclass
class StreamResult:
    """Final state of one ingested response."""

    content: str
    chunks: int
    deltas: int
    aborted: bool = False


class StreamIngestor:
    """Consume an async chunk source into a single accumulated reply.

    Reading the next chunk is the only suspension point; all buffer work is
    synchronous. Each read runs in its own cancel scope so :meth:`stop` can
    interrupt a source that has stalled. ``should_stop`` is polled before and
    after every read, and a chunk that arrives once stopping was requested is
    discarded. The partial text is returned with ``aborted=True`` and the
    trailing buffer is not flushed.
    """

    def __init__(
        self,
        on_update: Callable[[str], None] | None = None,
        should_stop: Callable[[], bool] | None = None,
    ):
        self.on_update = on_update
        self.should_stop = should_stop
        self._stop_requested = False
        self._read_scope: anyio.CancelScope | None = None

    def stop(self) -> None:
        """Abandon the reply, cancelling a read that is waiting on the source."""
        self._stop_requested = True
        if self._read_scope is not None:
            self._read_scope.cancel()

    def _stopping(self) -> bool:
        return self._stop_requested or (self.should_stop is not None and self.should_stop())

    async def ingest(self, source: AsyncIterable[Chunk]) -> StreamResult:
        accumulator = StreamAccumulator(self.on_update)
        iterator: AsyncIterator[Chunk] = source.__aiter__()
        chunks = 0
        while True:
            if self._stopping():
                return await self._aborted(iterator, accumulator, chunks)
            with anyio.CancelScope() as scope:
                self._read_scope = scope
                try:
                    chunk = await iterator.__anext__()
                except StopAsyncIteration:
                    break
                finally:
                    self._read_scope = None
            if scope.cancelled_caught or self._stopping():
                return await self._aborted(iterator, accumulator, chunks)
            chunks += 1
            accumulator.feed(chunk)

        content = accumulator.finish()
        logger.debug("stream_ingested", chunks=chunks, deltas=accumulator.deltas, chars=len(content))
        return StreamResult(content, chunks, accumulator.deltas)

    async def _aborted(self, iterator: Any, accumulator: StreamAccumulator, chunks: int) -> StreamResult:
        await close_source(iterator)
        logger.info("stream_aborted", chunks=chunks, chars=len(accumulator.content))
        return StreamResult(accumulator.content, chunks, accumulator.deltas, aborted=True)


async def close_source(source: Any) -> None:
    """Close a chunk source if it supports ``aclose``; plain iterators are left alone."""
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await aclose()
