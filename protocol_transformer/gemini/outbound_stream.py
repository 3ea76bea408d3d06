"""
Gemini SSE -> canonical stream chunks.

Every Gemini stream chunk is a complete GenerateContentResponse holding only
the new parts. Function calls arrive whole, so each one becomes a single
tool-call delta; their indexes keep counting across chunks.
"""

from typing import AsyncIterable, Optional

from protocol_transformer.canonical.types import Response, Usage
from protocol_transformer.errors import StreamStateError
from protocol_transformer.gemini.convert import GeminiDecoder, upstream_error_from_chunk
from protocol_transformer.httpmodels import StreamEvent
from protocol_transformer.streams import QueuedStream, load_event


class GeminiStreamDecoder(QueuedStream[StreamEvent, Response]):
    """Transcodes one Gemini SSE stream into canonical chunks."""

    def __init__(self, source: AsyncIterable[StreamEvent]):
        super().__init__(source)
        self.decoder = GeminiDecoder()
        self.id = ""
        self.model = ""
        self.created = 0
        self.usage: Optional[Usage] = None
        self._tool_index = 0
        self._finished = False
        self._usage_sent = False
        self._done = False

    def process(self, item: StreamEvent) -> None:
        if item.is_done:
            self._emit_done()
            return
        payload = load_event(item)
        if not isinstance(payload, dict):
            return
        if payload.get("error"):
            raise upstream_error_from_chunk(payload)
        if self._done:
            if payload.get("candidates"):
                raise StreamStateError()
            return

        chunk, self._tool_index = self.decoder.decode_response(
            payload, stream=True, tool_index_offset=self._tool_index,
        )
        if not self.id:
            self.id, self.model, self.created = chunk.id, chunk.model, chunk.created
        chunk.id, chunk.created = self.id, self.created
        chunk.model = chunk.model or self.model

        # Gemini repeats cumulative usage on chunks; it is reported once, after the finish reason
        if chunk.usage is not None:
            self.usage = chunk.usage
            chunk.usage = None

        finished_now = False
        for choice in chunk.choices:
            if choice.finish_reason and self._finished:
                choice.finish_reason = None
            elif choice.finish_reason:
                finished_now = True
        if chunk.choices:
            self.emit(chunk)
        if finished_now:
            self._finished = True
            self._emit_usage()

    def _emit_usage(self) -> None:
        if self._usage_sent or self.usage is None:
            return
        self._usage_sent = True
        self.emit(Response(
            id=self.id,
            object="chat.completion.chunk",
            created=self.created,
            model=self.model,
            usage=self.usage,
        ))

    def _emit_done(self) -> None:
        if not self._done:
            self._done = True
            self._emit_usage()
            self.emit(Response.done())

    def finish(self) -> None:
        if self.id:
            self._emit_done()
