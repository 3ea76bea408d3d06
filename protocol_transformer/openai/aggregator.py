"""
Chat Completion Stream Aggregation

Folds canonical stream chunks (chat.completion.chunk shape) into one final
response. Used to aggregate OpenAI SSE streams and, by other transcoders,
to build the complete response their closing events must carry.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from protocol_transformer.canonical.types import (
    Choice,
    ContentPart,
    FunctionCall,
    Message,
    Response,
    ResponseMeta,
    Role,
    ToolCall,
    Usage,
)
from protocol_transformer.errors import InvalidRequestError
from protocol_transformer.httpmodels import StreamEvent, dump_json
from protocol_transformer.openai.convert import OpenAIChatDecoder, OpenAIChatEncoder
from protocol_transformer.streams import load_event
from protocol_transformer.tool_args import repair_arguments


@dataclass
class _ToolCallState:
    id: str = ""
    type: str = "function"
    name: str = ""
    arguments: List[str] = field(default_factory=list)


@dataclass
class _ChoiceState:
    role: str = ""
    text: List[str] = field(default_factory=list)
    parts: List[ContentPart] = field(default_factory=list)
    reasoning: List[str] = field(default_factory=list)
    signature: List[str] = field(default_factory=list)
    redacted: Optional[str] = None
    refusal: List[str] = field(default_factory=list)
    tool_calls: Dict[int, _ToolCallState] = field(default_factory=dict)
    finish_reason: Optional[str] = None
    logprobs: List[dict] = field(default_factory=list)


class ChatCompletionAccumulator:
    """
    Accumulates canonical stream chunks and reconstructs the complete response.

    Finalization is idempotent: a repeated finish reason or usage chunk
    leaves the result unchanged.
    """

    def __init__(self):
        self.id = ""
        self.model = ""
        self.created = 0
        self.system_fingerprint: Optional[str] = None
        self.service_tier: Optional[str] = None
        self.usage: Optional[Usage] = None
        self._choices: Dict[int, _ChoiceState] = {}

    @property
    def finished(self) -> bool:
        return any(c.finish_reason for c in self._choices.values())

    def add(self, chunk: Response) -> None:
        """Fold one chunk into the accumulated state."""
        if chunk.is_done:
            return
        self.id = self.id or chunk.id
        self.model = self.model or chunk.model
        self.created = self.created or chunk.created
        self.system_fingerprint = self.system_fingerprint or chunk.system_fingerprint
        self.service_tier = self.service_tier or chunk.service_tier
        if chunk.usage is not None:
            self.usage = chunk.usage

        for choice in chunk.choices:
            state = self._choices.setdefault(choice.index, _ChoiceState())
            delta = choice.body
            if delta is not None:
                self._add_delta(state, delta)
            if choice.finish_reason and not state.finish_reason:
                state.finish_reason = choice.finish_reason
            if choice.logprobs and isinstance(choice.logprobs.get("content"), list):
                state.logprobs.extend(choice.logprobs["content"])

    def _add_delta(self, state: _ChoiceState, delta: Message) -> None:
        if delta.role and not state.role:
            state.role = delta.role
        if delta.content.text:
            state.text.append(delta.content.text)
        for part in delta.content.parts or []:
            if part.type == "text":
                state.text.append(part.text or "")
            else:
                state.parts.append(part)
        if delta.reasoning_content:
            state.reasoning.append(delta.reasoning_content)
        if delta.reasoning_signature:
            state.signature.append(delta.reasoning_signature)
        if delta.redacted_reasoning_content:
            state.redacted = delta.redacted_reasoning_content
        if delta.refusal:
            state.refusal.append(delta.refusal)

        for tc in delta.tool_calls:
            call = state.tool_calls.setdefault(tc.index, _ToolCallState())
            if tc.id and not call.id:
                call.id = tc.id
            if tc.type:
                call.type = tc.type
            if tc.function.name and not call.name:
                call.name = tc.function.name
            if tc.function.arguments:
                call.arguments.append(tc.function.arguments)

    def build(self) -> Response:
        """Build the complete, non-streaming response."""
        response = Response(
            id=self.id,
            object="chat.completion",
            created=self.created,
            model=self.model,
            usage=self.usage,
            system_fingerprint=self.system_fingerprint,
            service_tier=self.service_tier,
        )
        for index in sorted(self._choices):
            state = self._choices[index]
            text = "".join(state.text)
            if state.parts:
                content = ([ContentPart.text_part(text)] if text else []) + state.parts
            else:
                content = text

            message = Message(
                role=state.role or Role.ASSISTANT.value,
                content=content,
                reasoning_content="".join(state.reasoning) or None,
                reasoning_signature="".join(state.signature) or None,
                redacted_reasoning_content=state.redacted,
                refusal="".join(state.refusal) or None,
            )
            for tc_index in sorted(state.tool_calls):
                call = state.tool_calls[tc_index]
                message.tool_calls.append(ToolCall(
                    id=call.id,
                    type=call.type,
                    function=FunctionCall(
                        name=call.name,
                        arguments=repair_arguments("".join(call.arguments)),
                    ),
                    index=tc_index,
                ))

            response.choices.append(Choice(
                index=index,
                message=message,
                finish_reason=state.finish_reason,
                logprobs={"content": state.logprobs} if state.logprobs else None,
            ))
        return response


def aggregate_chat_chunks(chunks: List[StreamEvent]) -> Tuple[bytes, ResponseMeta]:
    """
    Aggregate OpenAI chat.completion.chunk events into a chat.completion body.

    Args:
        chunks: SSE events in arrival order

    Returns:
        Tuple of (chat.completion JSON bytes, ResponseMeta)
    """
    if not chunks:
        raise InvalidRequestError("empty stream chunks")

    decoder = OpenAIChatDecoder()
    accumulator = ChatCompletionAccumulator()
    for event in chunks:
        if event.is_done:
            continue
        payload = load_event(event)
        if not isinstance(payload, dict):
            continue
        accumulator.add(decoder.decode_response(payload))

    response = accumulator.build()
    body = dump_json(OpenAIChatEncoder().encode_response(response))
    return body, ResponseMeta(id=response.id, usage=response.usage)
