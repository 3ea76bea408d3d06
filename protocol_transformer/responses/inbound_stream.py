"""
Canonical stream chunks -> Responses API SSE.

The Responses stream reports every output item through an added / delta /
done lifecycle and numbers all events with a sequence number. Reasoning
summaries, message text and function calls each live in their own output
item; the encoder keeps at most one item open and closes it before the
next one is added.
"""

import time
from typing import Any, AsyncIterable, Dict, List, Optional

from protocol_transformer.canonical.types import FinishReason, Message, Response, ToolCall, Usage
from protocol_transformer.errors import StreamStateError
from protocol_transformer.httpmodels import StreamEvent
from protocol_transformer.reasoning import decode_openai_encrypted
from protocol_transformer.responses.convert import (
    RESPONSE_OBJECT,
    STATUS_IN_PROGRESS,
    function_call_item,
    message_item,
    new_item_id,
    reasoning_item,
    status_from_finish,
)
from protocol_transformer.streams import QueuedStream, json_event
from protocol_transformer.usage import to_responses_usage

_TERMINAL_EVENTS = {
    "completed": "response.completed",
    "incomplete": "response.incomplete",
    "failed": "response.failed",
}


class _OpenItem:
    """The output item currently receiving deltas."""

    def __init__(self, kind: str, item_id: str, output_index: int):
        self.kind = kind  # reasoning, message, function_call
        self.id = item_id
        self.output_index = output_index
        self.text: List[str] = []
        self.signature: List[str] = []
        self.tool_index: Optional[int] = None
        self.call_id = ""
        self.name = ""


class ResponsesStreamEncoder(QueuedStream[Response, StreamEvent]):
    """Transcodes canonical chunks of one stream into Responses API events."""

    def __init__(self, source: AsyncIterable[Response]):
        super().__init__(source)
        self.id = ""
        self.model = ""
        self.created_at = 0
        self.usage: Optional[Usage] = None
        self.finish_reason: Optional[str] = None
        self._sequence = 0
        self._output_index = 0
        self._item: Optional[_OpenItem] = None
        self._done_items: List[Dict[str, Any]] = []
        self._started = False
        self._completed = False

    def _send(self, payload: Dict[str, Any]) -> None:
        payload["sequence_number"] = self._sequence
        self._sequence += 1
        self.emit(json_event(payload, event_type=payload["type"]))

    def _response(self, status: str, output: List[Dict[str, Any]]) -> Dict[str, Any]:
        response: Dict[str, Any] = {
            "id": self.id,
            "object": RESPONSE_OBJECT,
            "created_at": self.created_at,
            "model": self.model,
            "status": status,
            "output": output,
        }
        if self.usage is not None:
            response["usage"] = to_responses_usage(self.usage)
        return response

    def process(self, item: Response) -> None:
        if item.is_done:
            self._complete()
            return

        delta = item.choices[0].body if item.choices else None
        if self._completed:
            if delta is not None and (delta.text() or delta.reasoning_content or delta.tool_calls):
                raise StreamStateError()
            return

        if not self._started:
            self._start(item)
        if item.usage is not None:
            self.usage = item.usage

        for choice in item.choices:
            if choice.body is not None:
                self._on_delta(choice.body)
            if choice.finish_reason and self.finish_reason is None:
                self.finish_reason = choice.finish_reason
                self._close_item()

        if self.finish_reason is not None and item.usage is not None:
            self._complete()

    def _start(self, item: Response) -> None:
        self._started = True
        self.id = item.id or new_item_id("resp")
        self.model = item.model
        self.created_at = item.created or int(time.time())
        self._send({"type": "response.created", "response": self._response(STATUS_IN_PROGRESS, [])})
        self._send({"type": "response.in_progress", "response": self._response(STATUS_IN_PROGRESS, [])})

    def _on_delta(self, delta: Message) -> None:
        if delta.reasoning_content or decode_openai_encrypted(delta.reasoning_signature):
            if self._item is None or self._item.kind != "reasoning":
                self._open_reasoning()
            if delta.reasoning_content:
                self._item.text.append(delta.reasoning_content)
                self._send({
                    "type": "response.reasoning_summary_text.delta",
                    "item_id": self._item.id,
                    "output_index": self._item.output_index,
                    "summary_index": 0,
                    "delta": delta.reasoning_content,
                })
            if delta.reasoning_signature:
                self._item.signature.append(decode_openai_encrypted(delta.reasoning_signature) or "")

        text = delta.text()
        if text:
            if self._item is None or self._item.kind != "message":
                self._open_message()
            self._item.text.append(text)
            self._send({
                "type": "response.output_text.delta",
                "item_id": self._item.id,
                "output_index": self._item.output_index,
                "content_index": 0,
                "delta": text,
                "logprobs": [],
            })

        for tool_call in delta.tool_calls:
            self._on_tool_call(tool_call)

    def _open(self, kind: str, item: Dict[str, Any]) -> None:
        self._close_item()
        self._item = _OpenItem(kind, item["id"], self._output_index)
        self._send({"type": "response.output_item.added", "output_index": self._output_index, "item": item})

    def _open_reasoning(self) -> None:
        item = reasoning_item(new_item_id("rs"), "")
        self._open("reasoning", item)
        self._send({
            "type": "response.reasoning_summary_part.added",
            "item_id": self._item.id,
            "output_index": self._item.output_index,
            "summary_index": 0,
            "part": {"type": "summary_text", "text": ""},
        })

    def _open_message(self) -> None:
        item = message_item(new_item_id("msg"), "", status=STATUS_IN_PROGRESS)
        item["content"] = []
        self._open("message", item)
        self._send({
            "type": "response.content_part.added",
            "item_id": self._item.id,
            "output_index": self._item.output_index,
            "content_index": 0,
            "part": {"type": "output_text", "text": "", "annotations": []},
        })

    def _on_tool_call(self, tool_call: ToolCall) -> None:
        if self._item is None or self._item.kind != "function_call" or self._item.tool_index != tool_call.index:
            call_id = tool_call.id or new_item_id("call")
            item = function_call_item(new_item_id("fc"), call_id, tool_call.function.name, "", STATUS_IN_PROGRESS)
            self._open("function_call", item)
            self._item.tool_index = tool_call.index
            self._item.call_id = call_id
            self._item.name = tool_call.function.name
        if tool_call.function.arguments:
            self._item.text.append(tool_call.function.arguments)
            self._send({
                "type": "response.function_call_arguments.delta",
                "item_id": self._item.id,
                "output_index": self._item.output_index,
                "delta": tool_call.function.arguments,
            })

    def _close_item(self) -> None:
        item = self._item
        if item is None:
            return
        self._item = None
        text = "".join(item.text)
        base = {"item_id": item.id, "output_index": item.output_index}

        if item.kind == "reasoning":
            part = {"type": "summary_text", "text": text}
            self._send({"type": "response.reasoning_summary_text.done", **base, "summary_index": 0, "text": text})
            self._send({"type": "response.reasoning_summary_part.done", **base, "summary_index": 0, "part": part})
            done = reasoning_item(item.id, text, "".join(item.signature) or None)
        elif item.kind == "message":
            part = {"type": "output_text", "text": text, "annotations": []}
            self._send({"type": "response.output_text.done", **base, "content_index": 0, "text": text, "logprobs": []})
            self._send({"type": "response.content_part.done", **base, "content_index": 0, "part": part})
            done = message_item(item.id, text)
        else:
            self._send({"type": "response.function_call_arguments.done", **base, "name": item.name, "arguments": text})
            done = function_call_item(item.id, item.call_id, item.name, text)

        self._send({"type": "response.output_item.done", "output_index": item.output_index, "item": done})
        self._done_items.append(done)
        self._output_index += 1

    def _complete(self) -> None:
        """Emit the terminal response event once; later calls are no-ops."""
        if self._completed or not self._started:
            return
        self._completed = True
        self._close_item()
        status = status_from_finish(self.finish_reason)
        response = self._response(status, list(self._done_items))
        if self.finish_reason == FinishReason.LENGTH.value:
            response["incomplete_details"] = {"reason": "max_output_tokens"}
        self._send({"type": _TERMINAL_EVENTS.get(status, "response.completed"), "response": response})

    def finish(self) -> None:
        self._complete()

