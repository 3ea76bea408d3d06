"""
Anthropic Stream Aggregation

Folds Anthropic SSE events (message_start, content_block_*, message_delta,
message_stop) into the complete Message body a non-streaming call returns.
"""

from typing import Any, Dict, List, Optional, Tuple

from protocol_transformer.canonical.types import ResponseMeta
from protocol_transformer.errors import InvalidRequestError
from protocol_transformer.httpmodels import StreamEvent, dump_json
from protocol_transformer.streams import load_event
from protocol_transformer.tool_args import parse_arguments
from protocol_transformer.usage import UsagePlatform, from_anthropic_usage

_CACHE_USAGE_FIELDS = ("cache_creation_input_tokens", "cache_read_input_tokens", "cache_creation")


def merge_delta_usage(usage: Dict[str, Any], delta_usage: Dict[str, Any]) -> None:
    """
    Merge the usage of a message_delta event into the message_start usage.

    output_tokens is cumulative and always taken from the delta; input and
    cache counts only overwrite when the delta reports a positive value.
    """
    if "output_tokens" in delta_usage:
        usage["output_tokens"] = delta_usage["output_tokens"]
    if delta_usage.get("input_tokens"):
        usage["input_tokens"] = delta_usage["input_tokens"]
    for name in _CACHE_USAGE_FIELDS:
        if delta_usage.get(name):
            usage[name] = delta_usage[name]


class AnthropicMessageAccumulator:
    """Rebuilds an Anthropic Message from its stream events."""

    def __init__(self):
        self.message: Dict[str, Any] = {}
        self.usage: Dict[str, Any] = {}
        self._blocks: List[Dict[str, Any]] = []
        # Raw partial_json fragments per tool_use block position
        self._tool_inputs: Dict[int, List[str]] = {}
        self.stop_reason: Optional[str] = None
        self.stop_sequence: Optional[str] = None

    def add(self, payload: Dict[str, Any]) -> None:
        event_type = payload.get("type")

        if event_type == "message_start":
            message = payload.get("message") or {}
            self.message = {k: message.get(k) for k in ("id", "model", "role")}
            self.usage = dict(message.get("usage") or {})

        elif event_type == "content_block_start":
            block = dict(payload.get("content_block") or {})
            index = payload.get("index", len(self._blocks))
            if block.get("type") == "tool_use":
                block["input"] = {}
                self._tool_inputs[index] = []
            while len(self._blocks) <= index:
                self._blocks.append({})
            self._blocks[index] = block

        elif event_type == "content_block_delta":
            self._add_delta(payload.get("index", 0), payload.get("delta") or {})

        elif event_type == "content_block_stop":
            index = payload.get("index", 0)
            if index in self._tool_inputs and index < len(self._blocks):
                raw = "".join(self._tool_inputs.pop(index))
                self._blocks[index]["input"] = parse_arguments(raw)

        elif event_type == "message_delta":
            delta = payload.get("delta") or {}
            if delta.get("stop_reason"):
                self.stop_reason = delta["stop_reason"]
            if delta.get("stop_sequence"):
                self.stop_sequence = delta["stop_sequence"]
            merge_delta_usage(self.usage, payload.get("usage") or {})

    def _add_delta(self, index: int, delta: Dict[str, Any]) -> None:
        if index >= len(self._blocks):
            return
        block = self._blocks[index]
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            block["text"] = block.get("text", "") + delta.get("text", "")
        elif delta_type == "thinking_delta":
            block["thinking"] = block.get("thinking", "") + delta.get("thinking", "")
        elif delta_type == "signature_delta":
            block["signature"] = block.get("signature", "") + delta.get("signature", "")
        elif delta_type == "input_json_delta":
            self._tool_inputs.setdefault(index, []).append(delta.get("partial_json", ""))

    def build(self) -> Dict[str, Any]:
        # Tool blocks whose content_block_stop never arrived
        for index, fragments in self._tool_inputs.items():
            if index < len(self._blocks):
                self._blocks[index]["input"] = parse_arguments("".join(fragments))
        self._tool_inputs = {}

        content = [b for b in self._blocks if b]
        if not content:
            content = [{"type": "text", "text": ""}]
        return {
            "id": self.message.get("id") or "msg_unknown",
            "type": "message",
            "role": self.message.get("role") or "assistant",
            "model": self.message.get("model") or "",
            "content": content,
            "stop_reason": self.stop_reason,
            "stop_sequence": self.stop_sequence,
            "usage": self.usage,
        }


def aggregate_anthropic_chunks(
    chunks: List[StreamEvent],
    platform: UsagePlatform = UsagePlatform.EXCLUDES_CACHE,
) -> Tuple[bytes, ResponseMeta]:
    """
    Aggregate Anthropic SSE events into a Message body.

    Args:
        chunks: SSE events in arrival order
        platform: Cache accounting of the host that produced the events

    Returns:
        Tuple of (Message JSON bytes, ResponseMeta)
    """
    if not chunks:
        raise InvalidRequestError("empty stream chunks")

    accumulator = AnthropicMessageAccumulator()
    for event in chunks:
        if event.is_done:
            continue
        payload = load_event(event)
        if isinstance(payload, dict):
            accumulator.add(payload)

    message = accumulator.build()
    meta = ResponseMeta(id=message["id"], usage=from_anthropic_usage(message["usage"], platform))
    return dump_json(message), meta
