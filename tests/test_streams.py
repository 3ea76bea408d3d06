"""
Unit Tests for SSE framing and the queued stream base
"""

import pytest

from protocol_transformer.httpmodels import StreamEvent
from protocol_transformer.streams import (
    QueuedStream,
    SSEDecoder,
    collect,
    decode_sse,
    done_event,
    encode_sse,
    json_event,
    load_event,
)
from tests.fixtures import aiter_list


class TestSSEDecoder:
    """Incremental SSE parsing"""

    def test_events_split_across_feeds(self):
        decoder = SSEDecoder()
        assert list(decoder.feed(b"event: message_start\ndata: {\"a\"")) == []
        events = list(decoder.feed(b": 1}\n\ndata: [DONE]\n\n"))
        assert len(events) == 2
        assert events[0].type == "message_start"
        assert events[0].data == b'{"a": 1}'
        assert events[1].is_done

    def test_crlf_and_comments(self):
        decoder = SSEDecoder()
        events = list(decoder.feed(b": keep-alive\r\n\r\nid: 7\r\ndata: x\r\n\r\n"))
        assert len(events) == 1
        assert events[0].id == "7"
        assert events[0].data == b"x"

    def test_multiline_data(self):
        events = list(SSEDecoder().feed(b"data: a\ndata: b\n\n"))
        assert events[0].data == b"a\nb"

    def test_flush_trailing_event(self):
        decoder = SSEDecoder()
        assert list(decoder.feed(b"data: tail")) == []
        events = list(decoder.flush())
        assert [e.data for e in events] == [b"tail"]


@pytest.mark.asyncio
async def test_decode_sse():
    events = await collect(decode_sse(aiter_list([b"data: 1\n", b"\ndata: 2\n\n", b"data: 3"])))
    assert [e.data for e in events] == [b"1", b"2", b"3"]


def test_encode_sse():
    assert encode_sse(StreamEvent(data=b'{"x":1}', type="ping")) == b'event: ping\ndata: {"x":1}\n\n'
    assert encode_sse(done_event()) == b"data: [DONE]\n\n"


def test_json_event_is_compact():
    event = json_event({"a": [1, 2]}, "delta")
    assert event.data == b'{"a":[1,2]}'
    assert event.type == "delta"


def test_load_event_skips_malformed(caplog):
    assert load_event(StreamEvent(data=b"{not json")) is None
    assert "Skipping malformed stream chunk" in caplog.text
    assert load_event(StreamEvent(data=b'{"ok":true}')) == {"ok": True}


class Doubler(QueuedStream[int, int]):
    """Emits each item twice, then a trailing zero"""

    def __init__(self, source):
        super().__init__(source)
        self.finished = 0

    def process(self, item):
        self.emit(item)
        self.emit(item)

    def finish(self):
        self.finished += 1
        self.emit(0)


class TestQueuedStream:
    """Pull-based transcoding"""

    @pytest.mark.asyncio
    async def test_fan_out_and_finish(self):
        stream = Doubler(aiter_list([1, 2]))
        assert await collect(stream) == [1, 1, 2, 2, 0]
        assert stream.finished == 1

    @pytest.mark.asyncio
    async def test_finish_runs_once(self):
        stream = Doubler(aiter_list([]))
        assert await collect(stream) == [0]
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
        assert stream.finished == 1

    @pytest.mark.asyncio
    async def test_aclose_stops_stream(self):
        stream = Doubler(aiter_list([1, 2, 3]))
        assert await stream.__anext__() == 1
        await stream.aclose()
        assert await collect(stream) == []
