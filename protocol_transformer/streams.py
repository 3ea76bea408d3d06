"""
Stream Adapters Module

SSE framing plus the pull-based queue every stateful stream transcoder is
built on. A transcoder may consume several upstream items before it can
emit anything, or emit several items for one upstream item, so outputs go
through an internal queue that is drained before the next upstream pull.
"""

import json
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, AsyncIterable, AsyncIterator, Deque, Generic, Iterator, List, Optional, TypeVar

from protocol_transformer.httpmodels import StreamEvent

logger = logging.getLogger(__name__)

S = TypeVar("S")
T = TypeVar("T")

DONE_DATA = b"[DONE]"


class SSEDecoder:
    """Incremental parser for Server-Sent Events over raw bytes."""

    def __init__(self):
        self._buffer = b""

    def feed(self, data: bytes) -> Iterator[StreamEvent]:
        """
        Feed data to the parser and yield complete events.

        Args:
            data: Raw SSE bytes, possibly splitting events arbitrarily

        Yields:
            StreamEvent for every complete event carrying data
        """
        self._buffer += data.replace(b"\r\n", b"\n")

        while b"\n\n" in self._buffer:
            block, self._buffer = self._buffer.split(b"\n\n", 1)
            event = self._parse_event(block)
            if event is not None:
                yield event

    def flush(self) -> Iterator[StreamEvent]:
        """Yield the trailing event of a stream that did not end with a blank line."""
        if self._buffer.strip():
            event = self._parse_event(self._buffer)
            if event is not None:
                yield event
        self._buffer = b""

    def _parse_event(self, block: bytes) -> Optional[StreamEvent]:
        """Parse a single SSE event block."""
        event_type = ""
        event_id = None
        data_lines: List[bytes] = []

        for line in block.split(b"\n"):
            if line.startswith(b":"):
                # Comment, ignore
                continue
            name, _, value = line.partition(b":")
            if value.startswith(b" "):
                value = value[1:]
            if name == b"event":
                event_type = value.decode("utf-8").strip()
            elif name == b"data":
                data_lines.append(value)
            elif name == b"id":
                event_id = value.decode("utf-8").strip()

        if not data_lines:
            return None
        return StreamEvent(type=event_type, data=b"\n".join(data_lines), id=event_id)


async def decode_sse(chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
    """Parse an SSE byte stream into events."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event


def encode_sse(event: StreamEvent) -> bytes:
    """Render one event in SSE framing."""
    lines = []
    if event.type:
        lines.append(b"event: " + event.type.encode("utf-8"))
    for line in event.data.split(b"\n"):
        lines.append(b"data: " + line)
    return b"\n".join(lines) + b"\n\n"


def json_event(payload: Any, event_type: str = "") -> StreamEvent:
    """Build a stream event from a JSON-serializable payload."""
    data = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    return StreamEvent(type=event_type, data=data)


def done_event() -> StreamEvent:
    return StreamEvent(data=DONE_DATA)


def load_event(event: StreamEvent) -> Optional[Any]:
    """
    Decode the JSON payload of an event.

    Malformed payloads are logged and reported as None so the caller can skip them.
    """
    try:
        return json.loads(event.data)
    except ValueError:
        logger.warning("Skipping malformed stream chunk: %r", event.data[:200])
        return None


class QueuedStream(ABC, Generic[S, T]):
    """
    Pull-based stream transcoder.

    Subclasses implement `process` (called per upstream item) and optionally
    `finish` (called once when upstream is exhausted), pushing outputs with
    `emit`. State lives on the instance, which serves exactly one stream.
    """

    def __init__(self, source: AsyncIterable[S]):
        self._source = source.__aiter__()
        self._queue: Deque[T] = deque()
        self._exhausted = False

    def __aiter__(self) -> "QueuedStream[S, T]":
        return self

    async def __anext__(self) -> T:
        while not self._queue:
            if self._exhausted:
                raise StopAsyncIteration
            try:
                item = await self._source.__anext__()
            except StopAsyncIteration:
                self._exhausted = True
                self.finish()
                continue
            self.process(item)
        return self._queue.popleft()

    def emit(self, item: T) -> None:
        self._queue.append(item)

    @abstractmethod
    def process(self, item: S) -> None:
        """Consume one upstream item."""

    def finish(self) -> None:
        """Flush anything still pending once upstream is exhausted."""

    async def aclose(self) -> None:
        self._exhausted = True
        self._queue.clear()
        close = getattr(self._source, "aclose", None)
        if close is not None:
            await close()


async def collect(stream: AsyncIterable[T]) -> List[T]:
    """Drain an async stream into a list."""
    return [item async for item in stream]
