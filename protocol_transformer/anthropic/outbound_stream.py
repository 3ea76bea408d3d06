"""
Anthropic SSE -> canonical stream chunks.

Each Anthropic content block is reported through start/delta/stop events
keyed by block position. Canonical chunks key tool calls by their position
among the message's tool calls instead, so tool_use blocks are renumbered
as they open.
"""

import logging
import time
from typing import Any, AsyncIterable, Dict, Optional

from protocol_transformer.anthropic.aggregator import merge_delta_usage
from protocol_transformer.anthropic.convert import finish_from_stop_reason, upstream_error_from_event
from protocol_transformer.canonical.types import (
    Choice,
    FunctionCall,
    Message,
    Response,
    Role,
    ToolCall,
    Usage,
)
from protocol_transformer.errors import StreamStateError
from protocol_transformer.httpmodels import StreamEvent
from protocol_transformer.streams import QueuedStream, load_event
from protocol_transformer.usage import UsagePlatform, from_anthropic_usage

logger = logging.getLogger(__name__)

_CONTENT_EVENTS = ("content_block_start", "content_block_delta", "message_start")


class AnthropicStreamDecoder(QueuedStream[StreamEvent, Response]):
    """Transcodes one Anthropic SSE stream into canonical chunks."""

    def __init__(self, source: AsyncIterable[StreamEvent], platform: UsagePlatform = UsagePlatform.EXCLUDES_CACHE):
        super().__init__(source)
        self.platform = platform
        self.id = ""
        self.model = ""
        self.created = 0
        self.usage: Dict[str, Any] = {}
        # content block position -> canonical tool call index
        self._tool_indexes: Dict[int, int] = {}
        self._finished = False
        self._done = False

    def _chunk(
        self,
        delta: Optional[Message] = None,
        finish_reason: Optional[str] = None,
        usage: Optional[Usage] = None,
    ) -> Response:
        choices = []
        if delta is not None or finish_reason is not None:
            choices.append(Choice(index=0, delta=delta or Message(), finish_reason=finish_reason))
        return Response(
            id=self.id,
            object="chat.completion.chunk",
            created=self.created,
            model=self.model,
            choices=choices,
            usage=usage,
        )

    def process(self, item: StreamEvent) -> None:
        if item.is_done:
            return
        payload = load_event(item)
        if not isinstance(payload, dict):
            return
        event_type = payload.get("type") or item.type

        if event_type == "error":
            raise upstream_error_from_event(payload)
        if self._done:
            if event_type in _CONTENT_EVENTS:
                raise StreamStateError()
            return

        if event_type == "message_start":
            self._on_message_start(payload.get("message") or {})
        elif event_type == "content_block_start":
            self._on_block_start(payload.get("index", 0), payload.get("content_block") or {})
        elif event_type == "content_block_delta":
            self._on_block_delta(payload.get("index", 0), payload.get("delta") or {})
        elif event_type == "message_delta":
            self._on_message_delta(payload)
        elif event_type == "message_stop":
            self._emit_done()

    def _on_message_start(self, message: Dict[str, Any]) -> None:
        self.id = message.get("id") or self.id
        self.model = message.get("model") or self.model
        self.created = self.created or int(time.time())
        self.usage = dict(message.get("usage") or {})
        self.emit(self._chunk(
            delta=Message(role=Role.ASSISTANT.value, content=""),
            usage=from_anthropic_usage(self.usage, self.platform) if self.usage else None,
        ))

    def _on_block_start(self, index: int, block: Dict[str, Any]) -> None:
        block_type = block.get("type")
        if block_type == "tool_use":
            tool_index = len(self._tool_indexes)
            self._tool_indexes[index] = tool_index
            self.emit(self._chunk(delta=Message(tool_calls=[ToolCall(
                id=block.get("id") or "",
                function=FunctionCall(name=block.get("name") or "", arguments=""),
                index=tool_index,
            )])))
        elif block_type == "text" and block.get("text"):
            self.emit(self._chunk(delta=Message(content=block["text"])))
        elif block_type == "thinking" and block.get("thinking"):
            self.emit(self._chunk(delta=Message(reasoning_content=block["thinking"])))
        elif block_type == "redacted_thinking":
            self.emit(self._chunk(delta=Message(redacted_reasoning_content=block.get("data") or "")))

    def _on_block_delta(self, index: int, delta: Dict[str, Any]) -> None:
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            message = Message(content=delta.get("text", ""))
        elif delta_type == "thinking_delta":
            message = Message(reasoning_content=delta.get("thinking", ""))
        elif delta_type == "signature_delta":
            message = Message(reasoning_signature=delta.get("signature", ""))
        elif delta_type == "input_json_delta":
            if index not in self._tool_indexes:
                logger.warning("input_json_delta for unknown content block %s", index)
                return
            message = Message(tool_calls=[ToolCall(
                function=FunctionCall(arguments=delta.get("partial_json", "")),
                index=self._tool_indexes[index],
                type="",
            )])
        else:
            return
        self.emit(self._chunk(delta=message))

    def _on_message_delta(self, payload: Dict[str, Any]) -> None:
        merge_delta_usage(self.usage, payload.get("usage") or {})
        stop_reason = (payload.get("delta") or {}).get("stop_reason")
        if stop_reason and not self._finished:
            self._finished = True
            self.emit(self._chunk(finish_reason=finish_from_stop_reason(stop_reason)))
        if self._finished and payload.get("usage"):
            self.emit(self._chunk(usage=from_anthropic_usage(self.usage, self.platform)))

    def _emit_done(self) -> None:
        if not self._done:
            self._done = True
            self.emit(Response.done())

    def finish(self) -> None:
        if self.id and not self._done:
            self._emit_done()
