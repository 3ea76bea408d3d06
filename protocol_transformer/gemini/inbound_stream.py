"""
Canonical stream chunks -> Gemini SSE.

Text and thinking deltas are forwarded as they arrive. Gemini clients
expect each functionCall whole, so tool-call deltas are buffered and sent
with the closing candidate, together with the finish reason and usage.
"""

from typing import AsyncIterable, Dict, List, Optional

from protocol_transformer.canonical.types import Message, Response, ToolCall, Usage
from protocol_transformer.errors import StreamStateError
from protocol_transformer.gemini.convert import (
    DUMMY_THOUGHT_SIGNATURE,
    ROLE_MODEL,
    GeminiEncoder,
    finish_to_gemini,
)
from protocol_transformer.httpmodels import StreamEvent
from protocol_transformer.reasoning import decode_gemini_signature
from protocol_transformer.streams import QueuedStream, json_event
from protocol_transformer.tool_args import parse_arguments
from protocol_transformer.usage import to_gemini_usage


class _ToolBuffer:
    def __init__(self):
        self.id = ""
        self.name = ""
        self.arguments: List[str] = []


class GeminiStreamEncoder(QueuedStream[Response, StreamEvent]):
    """Transcodes canonical chunks of one stream into Gemini stream chunks."""

    def __init__(self, source: AsyncIterable[Response]):
        super().__init__(source)
        self.encoder = GeminiEncoder()
        self.id = ""
        self.model = ""
        self.usage: Optional[Usage] = None
        self.finish_reason: Optional[str] = None
        self.signature: Optional[str] = None
        self._tools: Dict[int, _ToolBuffer] = {}
        self._started = False
        self._finalized = False

    def _send(self, parts: List[dict], finish_reason: Optional[str] = None, usage: Optional[Usage] = None) -> None:
        candidate: dict = {"index": 0, "content": {"role": ROLE_MODEL, "parts": parts}}
        if finish_reason:
            candidate["finishReason"] = finish_reason
        payload: dict = {"candidates": [candidate], "modelVersion": self.model, "responseId": self.id}
        if usage is not None:
            payload["usageMetadata"] = to_gemini_usage(usage)
        self.emit(json_event(payload))

    def process(self, item: Response) -> None:
        if item.is_done:
            self._finalize()
            return

        delta = item.choices[0].body if item.choices else None
        if self._finalized:
            if delta is not None and (delta.text() or delta.reasoning_content or delta.tool_calls):
                raise StreamStateError()
            return

        if not self._started:
            self._started = True
            self.id = item.id
            self.model = item.model
        if item.usage is not None:
            self.usage = item.usage

        for choice in item.choices:
            if choice.body is not None:
                self._on_delta(choice.body)
            if choice.finish_reason and self.finish_reason is None:
                self.finish_reason = finish_to_gemini(choice.finish_reason)

        if self.finish_reason is not None and item.usage is not None:
            self._finalize()

    def _on_delta(self, delta: Message) -> None:
        signature = decode_gemini_signature(delta.redacted_reasoning_content)
        if signature:
            self.signature = signature
        for tool_call in delta.tool_calls:
            self._buffer(tool_call)

        parts = self.encoder.encode_parts(Message(content=delta.content, reasoning_content=delta.reasoning_content))
        if parts:
            self._send(parts)

    def _buffer(self, tool_call: ToolCall) -> None:
        buffer = self._tools.setdefault(tool_call.index, _ToolBuffer())
        buffer.id = buffer.id or tool_call.id
        buffer.name = buffer.name or tool_call.function.name
        if tool_call.function.arguments:
            buffer.arguments.append(tool_call.function.arguments)

    def _finalize(self) -> None:
        """Send the closing candidate once; later calls are no-ops."""
        if self._finalized or not self._started:
            return
        self._finalized = True

        parts: List[dict] = []
        for index in sorted(self._tools):
            buffer = self._tools[index]
            call = {"name": buffer.name, "args": parse_arguments("".join(buffer.arguments))}
            if buffer.id:
                call["id"] = buffer.id
            parts.append({"functionCall": call})
        signature = self.signature or (DUMMY_THOUGHT_SIGNATURE if parts else None)
        if signature:
            if parts:
                parts[0]["thoughtSignature"] = signature
            else:
                parts.append({"text": "", "thoughtSignature": signature})
        self._send(parts, finish_reason=self.finish_reason or "STOP", usage=self.usage)

    def finish(self) -> None:
        self._finalize()
