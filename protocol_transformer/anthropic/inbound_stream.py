"""
Canonical stream chunks -> Anthropic SSE.

Canonical chunks carry flat deltas; Anthropic wants every piece of content
inside an explicitly opened and closed content block. The encoder keeps one
block open at a time and closes it whenever the delta category changes.
"""

import uuid
from typing import Any, AsyncIterable, Dict, Optional

from protocol_transformer.anthropic.convert import stop_reason_from_finish
from protocol_transformer.canonical.types import Message, Response, ToolCall, Usage
from protocol_transformer.errors import StreamStateError
from protocol_transformer.httpmodels import StreamEvent
from protocol_transformer.reasoning import is_anthropic_redacted, is_anthropic_signature
from protocol_transformer.streams import QueuedStream, json_event
from protocol_transformer.usage import to_anthropic_usage


def _has_content(delta: Optional[Message]) -> bool:
    if delta is None:
        return False
    return bool(
        delta.text()
        or delta.reasoning_content
        or delta.reasoning_signature
        or delta.redacted_reasoning_content
        or delta.tool_calls
    )


class AnthropicStreamEncoder(QueuedStream[Response, StreamEvent]):
    """Transcodes canonical chunks of one stream into Anthropic SSE events."""

    def __init__(self, source: AsyncIterable[Response]):
        super().__init__(source)
        self.id = ""
        self.model = ""
        self.usage: Optional[Usage] = None
        self.stop_reason: Optional[str] = None
        self._started = False
        self._finalized = False
        self._block_index = -1
        self._block_type: Optional[str] = None
        self._tool_index: Optional[int] = None

    def _send(self, payload: Dict[str, Any]) -> None:
        self.emit(json_event(payload, event_type=payload["type"]))

    def process(self, item: Response) -> None:
        if item.is_done:
            self._finalize()
            return

        delta = item.choices[0].body if item.choices else None
        if self._finalized:
            if _has_content(delta):
                raise StreamStateError()
            return

        if not self._started:
            self._start(item)
        if item.usage is not None:
            self.usage = item.usage

        for choice in item.choices:
            if choice.body is not None:
                self._on_delta(choice.body)
            if choice.finish_reason and self.stop_reason is None:
                self.stop_reason = stop_reason_from_finish(choice.finish_reason)
                self._close_block()

        # A usage chunk after the finish reason ends the message
        if self.stop_reason is not None and item.usage is not None:
            self._finalize()

    def _start(self, item: Response) -> None:
        self._started = True
        self.id = item.id or f"msg_{uuid.uuid4().hex[:24]}"
        self.model = item.model
        usage = to_anthropic_usage(item.usage)
        self._send({
            "type": "message_start",
            "message": {
                "id": self.id,
                "type": "message",
                "role": "assistant",
                "model": self.model,
                "content": [],
                "stop_reason": None,
                "stop_sequence": None,
                "usage": usage,
            },
        })

    def _open_block(self, block_type: str, content_block: Dict[str, Any]) -> None:
        self._close_block()
        self._block_index += 1
        self._block_type = block_type
        self._send({"type": "content_block_start", "index": self._block_index, "content_block": content_block})

    def _close_block(self) -> None:
        if self._block_type is None:
            return
        self._send({"type": "content_block_stop", "index": self._block_index})
        self._block_type = None
        self._tool_index = None

    def _block_delta(self, delta: Dict[str, Any]) -> None:
        self._send({"type": "content_block_delta", "index": self._block_index, "delta": delta})

    def _on_delta(self, delta: Message) -> None:
        if delta.reasoning_content:
            if self._block_type != "thinking":
                self._open_block("thinking", {"type": "thinking", "thinking": ""})
            self._block_delta({"type": "thinking_delta", "thinking": delta.reasoning_content})

        if is_anthropic_signature(delta.reasoning_signature):
            if self._block_type != "thinking":
                self._open_block("thinking", {"type": "thinking", "thinking": ""})
            self._block_delta({"type": "signature_delta", "signature": delta.reasoning_signature})

        if is_anthropic_redacted(delta.redacted_reasoning_content):
            self._open_block("redacted_thinking", {
                "type": "redacted_thinking",
                "data": delta.redacted_reasoning_content,
            })
            self._close_block()

        text = delta.text()
        if text:
            if self._block_type != "text":
                self._open_block("text", {"type": "text", "text": ""})
            self._block_delta({"type": "text_delta", "text": text})

        for tool_call in delta.tool_calls:
            self._on_tool_call(tool_call)

    def _on_tool_call(self, tool_call: ToolCall) -> None:
        if self._block_type != "tool_use" or self._tool_index != tool_call.index:
            self._open_block("tool_use", {
                "type": "tool_use",
                "id": tool_call.id or f"toolu_{uuid.uuid4().hex[:24]}",
                "name": tool_call.function.name,
                "input": {},
            })
            self._tool_index = tool_call.index
        if tool_call.function.arguments:
            self._block_delta({"type": "input_json_delta", "partial_json": tool_call.function.arguments})

    def _finalize(self) -> None:
        """Close the message once; later calls are no-ops."""
        if self._finalized or not self._started:
            return
        self._finalized = True
        self._close_block()
        self._send({
            "type": "message_delta",
            "delta": {"stop_reason": self.stop_reason or "end_turn", "stop_sequence": None},
            "usage": to_anthropic_usage(self.usage),
        })
        self._send({"type": "message_stop"})

    def finish(self) -> None:
        self._finalize()
