"""
Responses API Stream Aggregation

Rebuilds the final Responses object from a Responses SSE stream. The
terminal event normally carries the complete response; when it is missing
or its output is empty, the output is rebuilt from output_item.done events
and, failing that, from the raw text deltas.
"""

from typing import Any, Dict, List, Optional, Tuple

from protocol_transformer.canonical.types import ResponseMeta
from protocol_transformer.errors import InvalidRequestError
from protocol_transformer.httpmodels import StreamEvent, dump_json
from protocol_transformer.responses.convert import (
    RESPONSE_OBJECT,
    STATUS_COMPLETED,
    message_item,
    new_item_id,
)
from protocol_transformer.streams import load_event
from protocol_transformer.usage import from_responses_usage

_TERMINAL_EVENTS = ("response.completed", "response.incomplete", "response.failed")


class ResponsesAccumulator:
    """Accumulates Responses API events and reconstructs the final response."""

    def __init__(self):
        self.response: Dict[str, Any] = {}
        self.final: Optional[Dict[str, Any]] = None
        self.items: Dict[int, Dict[str, Any]] = {}
        self.text: List[str] = []

    def add(self, payload: Dict[str, Any]) -> None:
        event_type = payload.get("type")
        if event_type in ("response.created", "response.in_progress"):
            self.response.update(payload.get("response") or {})
        elif event_type == "response.output_item.done" and isinstance(payload.get("item"), dict):
            self.items[payload.get("output_index", len(self.items))] = payload["item"]
        elif event_type == "response.output_text.delta":
            self.text.append(payload.get("delta") or "")
        elif event_type in _TERMINAL_EVENTS and self.final is None:
            self.final = dict(payload.get("response") or {})

    def build(self) -> Dict[str, Any]:
        response = dict(self.response)
        response.update(self.final or {})
        response.setdefault("id", new_item_id("resp"))
        response["object"] = RESPONSE_OBJECT
        response.setdefault("status", STATUS_COMPLETED)

        if not response.get("output"):
            if self.items:
                response["output"] = [self.items[i] for i in sorted(self.items)]
            else:
                response["output"] = [message_item(new_item_id("msg"), "".join(self.text))]
        return response


def aggregate_responses_chunks(chunks: List[StreamEvent]) -> Tuple[bytes, ResponseMeta]:
    """
    Aggregate Responses API SSE events into a Responses object body.

    Args:
        chunks: SSE events in arrival order

    Returns:
        Tuple of (response JSON bytes, ResponseMeta)
    """
    if not chunks:
        raise InvalidRequestError("empty stream chunks")

    accumulator = ResponsesAccumulator()
    for event in chunks:
        if event.is_done:
            continue
        payload = load_event(event)
        if isinstance(payload, dict):
            accumulator.add(payload)

    response = accumulator.build()
    return dump_json(response), ResponseMeta(id=response["id"], usage=from_responses_usage(response.get("usage")))
