"""
Responses API SSE -> canonical stream chunks.
"""

import logging
import time
from typing import Any, AsyncIterable, Dict, Optional

from protocol_transformer.canonical.types import (
    Choice,
    ContentPart,
    FunctionCall,
    Message,
    Response,
    Role,
    ToolCall,
    Usage,
)
from protocol_transformer.errors import ErrorDetail, StreamStateError, UpstreamError
from protocol_transformer.httpmodels import StreamEvent
from protocol_transformer.media import build_data_url, image_format_media_type
from protocol_transformer.reasoning import encode_openai_encrypted
from protocol_transformer.responses.convert import finish_from_status
from protocol_transformer.streams import QueuedStream, load_event
from protocol_transformer.usage import from_responses_usage

logger = logging.getLogger(__name__)

_TERMINAL_EVENTS = ("response.completed", "response.incomplete", "response.failed")
_CONTENT_EVENTS = (
    "response.output_text.delta",
    "response.reasoning_summary_text.delta",
    "response.function_call_arguments.delta",
    "response.output_item.added",
)


def upstream_error_from_event(payload: Dict[str, Any], status_code: int = 500) -> UpstreamError:
    """Build an UpstreamError from a Responses `error` event."""
    body = payload.get("error") if isinstance(payload.get("error"), dict) else payload
    return UpstreamError(status_code, ErrorDetail(
        message=str(body.get("message") or ""),
        type=str(body.get("type") or "api_error"),
        code=str(body["code"]) if body.get("code") is not None else "",
        param=str(body["param"]) if body.get("param") is not None else "",
    ))


class ResponsesStreamDecoder(QueuedStream[StreamEvent, Response]):
    """Transcodes one Responses API SSE stream into canonical chunks."""

    def __init__(self, source: AsyncIterable[StreamEvent], image_format: Optional[str] = None):
        super().__init__(source)
        self.image_format = image_format
        self.id = ""
        self.model = ""
        self.created = 0
        # function_call item id -> canonical tool call index
        self._tool_indexes: Dict[str, int] = {}
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
            self._emit_done()
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

        if event_type == "response.created":
            self._on_created(payload.get("response") or {})
        elif event_type == "response.output_item.added":
            self._on_item_added(payload.get("item") or {})
        elif event_type == "response.output_item.done":
            self._on_item_done(payload.get("item") or {})
        elif event_type == "response.output_text.delta":
            if payload.get("delta"):
                self.emit(self._chunk(delta=Message(content=payload["delta"])))
        elif event_type == "response.reasoning_summary_text.delta":
            if payload.get("delta"):
                self.emit(self._chunk(delta=Message(reasoning_content=payload["delta"])))
        elif event_type == "response.function_call_arguments.delta":
            self._on_arguments(payload.get("item_id") or "", payload.get("delta") or "")
        elif event_type in _TERMINAL_EVENTS:
            self._on_terminal(payload.get("response") or {})

    def _on_created(self, response: Dict[str, Any]) -> None:
        self.id = response.get("id") or self.id
        self.model = response.get("model") or self.model
        self.created = response.get("created_at") or int(time.time())
        self.emit(self._chunk(
            delta=Message(role=Role.ASSISTANT.value, content=""),
            usage=from_responses_usage(response.get("usage")),
        ))

    def _on_item_added(self, item: Dict[str, Any]) -> None:
        if item.get("type") != "function_call":
            return
        index = len(self._tool_indexes)
        self._tool_indexes[item.get("id") or ""] = index
        self.emit(self._chunk(delta=Message(tool_calls=[ToolCall(
            id=item.get("call_id") or "",
            function=FunctionCall(name=item.get("name") or "", arguments=""),
            index=index,
        )])))

    def _on_item_done(self, item: Dict[str, Any]) -> None:
        item_type = item.get("type")
        if item_type == "reasoning" and item.get("encrypted_content"):
            signature = encode_openai_encrypted(item["encrypted_content"])
            self.emit(self._chunk(delta=Message(reasoning_signature=signature)))
        elif item_type == "image_generation_call" and item.get("result"):
            fmt = item.get("output_format") or self.image_format
            url = build_data_url(image_format_media_type(fmt), item["result"])
            self.emit(self._chunk(delta=Message(content=[ContentPart.image_part(url)])))

    def _on_arguments(self, item_id: str, delta: str) -> None:
        if item_id not in self._tool_indexes:
            logger.warning("function_call_arguments.delta for unknown item %s", item_id)
            return
        if delta:
            self.emit(self._chunk(delta=Message(tool_calls=[ToolCall(
                function=FunctionCall(arguments=delta),
                index=self._tool_indexes[item_id],
                type="",
            )])))

    def _on_terminal(self, response: Dict[str, Any]) -> None:
        if self._finished:
            return
        self._finished = True
        finish_reason = finish_from_status(response.get("status"), bool(self._tool_indexes))
        self.emit(self._chunk(finish_reason=finish_reason))
        usage = from_responses_usage(response.get("usage"))
        if usage is not None:
            self.emit(self._chunk(usage=usage))
        self._emit_done()

    def _emit_done(self) -> None:
        if not self._done:
            self._done = True
            self.emit(Response.done())

    def finish(self) -> None:
        if self.id and not self._done:
            self._emit_done()
