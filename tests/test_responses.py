"""
Unit Tests for the OpenAI Responses API transformers
"""

import json

import pytest

from protocol_transformer.canonical import MetadataKey
from protocol_transformer.canonical.types import (
    Choice,
    FunctionCall,
    ImageGeneration,
    Message,
    Request,
    Response,
    Tool,
    ToolCall,
    ToolType,
    Usage,
)
from protocol_transformer.errors import InvalidRequestError, StreamStateError, UpstreamError
from protocol_transformer.httpmodels import json_response
from protocol_transformer.openai import OpenAIOutbound
from protocol_transformer.reasoning import decode_openai_encrypted, encode_openai_encrypted
from protocol_transformer.responses import (
    ResponsesConfig,
    ResponsesDecoder,
    ResponsesEncoder,
    ResponsesInbound,
    ResponsesOutbound,
    ResponsesStreamDecoder,
    ResponsesStreamEncoder,
    aggregate_responses_chunks,
)
from protocol_transformer.streams import collect
from tests.fixtures import (
    OPENAI_CHAT_STREAM_CHUNKS,
    OPENAI_CHAT_TOOL_STREAM_CHUNKS,
    OPENAI_RESPONSES_ITEMS_REQUEST,
    OPENAI_RESPONSES_SIMPLE_REQUEST,
    OPENAI_RESPONSES_SIMPLE_RESPONSE,
    OPENAI_RESPONSES_STREAM_EVENTS,
    OPENAI_RESPONSES_TOOL_CALL_RESPONSE,
    OPENAI_RESPONSES_WITH_INSTRUCTIONS_REQUEST,
    STREAM_TEXT_DELTAS,
    aiter_list,
    event_payloads,
    http_request,
    sse_events,
)


# =============================================================================
# Request Conversion
# =============================================================================


class TestRequestConversion:
    """Responses create requests"""

    @pytest.mark.parametrize("payload", [OPENAI_RESPONSES_SIMPLE_REQUEST, OPENAI_RESPONSES_WITH_INSTRUCTIONS_REQUEST])
    def test_round_trip(self, payload):
        request = ResponsesDecoder().decode_request(payload)
        assert ResponsesEncoder().encode_request(request) == payload

    def test_instructions_become_system_message(self):
        request = ResponsesDecoder().decode_request(OPENAI_RESPONSES_WITH_INSTRUCTIONS_REQUEST)
        assert [m.role for m in request.messages] == ["system", "user"]
        assert request.reasoning_effort == "high"
        assert request.max_completion_tokens == 100
        assert request.transformer_metadata.get(MetadataKey.RESPONSES_TRUNCATION) == "auto"

    def test_input_items_group_into_turns(self):
        request = ResponsesDecoder().decode_request(OPENAI_RESPONSES_ITEMS_REQUEST)
        assert [m.role for m in request.messages] == ["user", "assistant", "tool"]

        assistant = request.messages[1]
        assert assistant.reasoning_content == "Looking."
        assert decode_openai_encrypted(assistant.reasoning_signature) == "enc-123"
        assert assistant.text() == "Let me look."
        assert assistant.tool_calls[0].id == "call_1"
        assert request.messages[2].tool_call_id == "call_1"
        assert request.tool_choice.name == "zoom"
        assert request.tools[1].type == ToolType.WEB_SEARCH.value

    def test_input_items_encode(self):
        request = ResponsesDecoder().decode_request(OPENAI_RESPONSES_ITEMS_REQUEST)
        payload = ResponsesEncoder().encode_request(request)
        items = payload["input"]
        assert [i["type"] for i in items] == ["message", "reasoning", "message", "function_call", "function_call_output"]
        assert items[0]["content"][1] == {"type": "input_image", "image_url": "https://example.com/cat.png"}
        assert items[1]["encrypted_content"] == "enc-123"
        assert items[3] == {"type": "function_call", "call_id": "call_1", "name": "zoom", "arguments": "{\"level\":2}"}
        assert items[4] == {"type": "function_call_output", "call_id": "call_1", "output": "zoomed"}
        assert payload["tools"][1] == {"type": "web_search", "search_context_size": "low"}
        assert payload["tool_choice"] == {"type": "function", "name": "zoom"}

    def test_foreign_reasoning_not_replayed(self):
        request = Request(model="gpt-4o", messages=[
            Message(role="user", content="hi"),
            Message(role="assistant", content="hello", reasoning_content="t", reasoning_signature="sig-anthropic"),
            Message(role="user", content="again"),
        ])
        items = ResponsesEncoder().encode_request(request)["input"]
        assert [i["type"] for i in items] == ["message", "message", "message"]

    def test_array_input_preserved(self):
        payload = {"model": "gpt-4o", "input": [{"role": "user", "content": "hi"}]}
        request = ResponsesDecoder().decode_request(payload)
        assert ResponsesEncoder().encode_request(request)["input"] == [
            {"type": "message", "role": "user", "content": [{"type": "input_text", "text": "hi"}]},
        ]

    def test_json_schema_format(self):
        payload = dict(OPENAI_RESPONSES_SIMPLE_REQUEST, text={
            "format": {"type": "json_schema", "name": "answer", "schema": {"type": "object"}},
        })
        request = ResponsesDecoder().decode_request(payload)
        assert request.response_format.type == "json_schema"
        assert ResponsesEncoder().encode_request(request)["text"] == payload["text"]

    def test_invalid_input(self):
        with pytest.raises(InvalidRequestError):
            ResponsesDecoder().decode_request({"model": "gpt-4o", "input": 42})


# =============================================================================
# Response Conversion
# =============================================================================


class TestResponseConversion:
    """Responses objects"""

    def test_simple(self):
        response = ResponsesDecoder().decode_response(OPENAI_RESPONSES_SIMPLE_RESPONSE)
        assert response.choices[0].message.text() == "I'm doing well!"
        assert response.choices[0].finish_reason == "stop"
        assert response.usage.total_tokens == 18
        assert response.usage.cached_tokens == 4
        assert response.usage.reasoning_tokens == 3

    def test_tool_call_round_trip(self):
        response = ResponsesDecoder().decode_response(OPENAI_RESPONSES_TOOL_CALL_RESPONSE)
        message = response.choices[0].message
        assert response.choices[0].finish_reason == "tool_calls"
        assert message.reasoning_content == "Need weather."
        assert message.tool_calls[0].id == "call_1"

        encoded = ResponsesEncoder().encode_response(response)
        assert [i["type"] for i in encoded["output"]] == ["reasoning", "function_call"]
        assert encoded["output"][0]["encrypted_content"] == "enc-xyz"
        assert encoded["output"][1]["arguments"] == "{\"location\":\"Paris\"}"
        assert encoded["status"] == "completed"

    def test_message_precedes_function_calls(self):
        message = Message(
            role="assistant",
            content="Checking the weather.",
            reasoning_content="Need weather.",
            tool_calls=[ToolCall(id="call_1", function=FunctionCall(name="get_weather", arguments="{}"))],
        )
        response = Response(id="r", choices=[Choice(message=message, finish_reason="tool_calls")])
        output = ResponsesEncoder().encode_response(response)["output"]
        assert [i["type"] for i in output] == ["reasoning", "message", "function_call"]
        assert output[1]["content"][0]["text"] == "Checking the weather."

    def test_incomplete_status(self):
        response = ResponsesDecoder().decode_response(dict(OPENAI_RESPONSES_SIMPLE_RESPONSE, status="incomplete"))
        assert response.choices[0].finish_reason == "length"
        assert ResponsesEncoder().encode_response(response)["status"] == "incomplete"

    def test_empty_message_still_has_output(self):
        response = Response(id="r", choices=[Choice(message=Message(role="assistant"), finish_reason="stop")])
        output = ResponsesEncoder().encode_response(response)["output"]
        assert output[0]["type"] == "message"


# =============================================================================
# Outbound / Inbound
# =============================================================================


class TestResponsesOutbound:
    """Responses upstream"""

    def test_request(self):
        request = Request(model="gpt-4o", messages=[Message(role="user", content="hi")])
        upstream = ResponsesOutbound().transform_request(request)
        assert upstream.url == "https://api.openai.com/v1/responses"
        assert upstream.json() == {"model": "gpt-4o", "input": "hi"}

    def test_raw_base_url(self):
        request = Request(model="gpt-4o", messages=[Message(role="user", content="hi")])
        outbound = ResponsesOutbound(ResponsesConfig(base_url="https://proxy.example.com/custom/responses##"))
        assert outbound.transform_request(request).url == "https://proxy.example.com/custom/responses"

    def test_image_generation_output(self):
        outbound = ResponsesOutbound()
        request = Request(
            model="gpt-4o",
            messages=[Message(role="user", content="draw")],
            tools=[Tool(type=ToolType.IMAGE_GENERATION.value, image_generation=ImageGeneration(output_format="webp"))],
        )
        upstream = outbound.transform_request(request)
        assert upstream.json()["tools"] == [{"type": "image_generation", "output_format": "webp"}]

        http_response = json_response({
            "id": "resp_img",
            "status": "completed",
            "output": [{"id": "ig_1", "type": "image_generation_call", "status": "completed", "result": "AAAA"}],
        })
        http_response.request = upstream
        message = outbound.transform_response(http_response).choices[0].message
        assert message.content.parts[0].image_url.url == "data:image/webp;base64,AAAA"

    def test_error_payload(self):
        with pytest.raises(UpstreamError):
            ResponsesOutbound().transform_response(json_response({"error": {"message": "nope"}}))


class TestResponsesInbound:
    """Client-facing Responses API"""

    def test_request(self):
        request = ResponsesInbound().transform_request(http_request(OPENAI_RESPONSES_SIMPLE_REQUEST))
        assert request.api_format == "openai/responses"
        assert request.messages[0].text() == "Hello, how are you?"

    @pytest.mark.parametrize("value", ["", []])
    def test_input_required(self, value):
        with pytest.raises(InvalidRequestError):
            ResponsesInbound().transform_request(http_request({"model": "gpt-4o", "input": value}))

    def test_error_envelope(self):
        error = ResponsesInbound().transform_error(InvalidRequestError("input is required"))
        assert error.status_code == 400
        assert json.loads(error.body)["error"]["message"] == "input is required"


# =============================================================================
# Streaming
# =============================================================================


class TestStreamDecoder:
    """Responses SSE to canonical chunks"""

    @pytest.mark.asyncio
    async def test_text_stream(self):
        chunks = await collect(ResponsesStreamDecoder(aiter_list(sse_events(OPENAI_RESPONSES_STREAM_EVENTS, typed=True))))
        assert chunks[0].choices[0].delta.role == "assistant"
        assert [c.choices[0].delta.text() for c in chunks[1:6]] == STREAM_TEXT_DELTAS
        assert chunks[6].choices[0].finish_reason == "stop"
        assert chunks[7].usage.total_tokens == 21
        assert chunks[8].is_done
        assert len(chunks) == 9

    @pytest.mark.asyncio
    async def test_function_call_stream(self):
        events = sse_events([
            {"type": "response.created", "response": {"id": "resp_t", "model": "gpt-4o"}},
            {"type": "response.output_item.added", "output_index": 0,
             "item": {"id": "fc_1", "type": "function_call", "call_id": "call_1", "name": "get_weather"}},
            {"type": "response.function_call_arguments.delta", "item_id": "fc_1", "delta": '{"location":'},
            {"type": "response.function_call_arguments.delta", "item_id": "fc_1", "delta": '"Paris"}'},
            {"type": "response.completed", "response": {"id": "resp_t", "status": "completed"}},
        ])
        chunks = await collect(ResponsesStreamDecoder(aiter_list(events)))
        tool_chunks = [c for c in chunks if c.choices and c.choices[0].delta.tool_calls]
        assert tool_chunks[0].choices[0].delta.tool_calls[0].id == "call_1"
        assert "".join(c.choices[0].delta.tool_calls[0].function.arguments for c in tool_chunks) == '{"location":"Paris"}'
        assert [c.choices[0].finish_reason for c in chunks if c.choices and c.choices[0].finish_reason] == ["tool_calls"]

    @pytest.mark.asyncio
    async def test_encrypted_reasoning(self):
        events = sse_events([
            {"type": "response.created", "response": {"id": "resp_r", "model": "o3"}},
            {"type": "response.reasoning_summary_text.delta", "delta": "Hmm"},
            {"type": "response.output_item.done", "item": {"type": "reasoning", "encrypted_content": "enc"}},
        ])
        chunks = await collect(ResponsesStreamDecoder(aiter_list(events)))
        assert chunks[1].choices[0].delta.reasoning_content == "Hmm"
        assert chunks[2].choices[0].delta.reasoning_signature == encode_openai_encrypted("enc")
        assert chunks[-1].is_done

    @pytest.mark.asyncio
    async def test_error_event(self):
        events = sse_events([{"type": "error", "code": "rate_limit_exceeded", "message": "Slow down"}])
        with pytest.raises(UpstreamError) as exc_info:
            await collect(ResponsesStreamDecoder(aiter_list(events)))
        assert exc_info.value.message == "Slow down"
        assert exc_info.value.code == "rate_limit_exceeded"


class TestStreamEncoder:
    """Canonical chunks to Responses SSE"""

    async def _openai_chunks(self, chunks, done=True):
        return await collect(OpenAIOutbound().transform_stream(aiter_list(sse_events(chunks, done=done))))

    @pytest.mark.asyncio
    async def test_text_events(self):
        chunks = await self._openai_chunks(OPENAI_CHAT_STREAM_CHUNKS)
        events = await collect(ResponsesStreamEncoder(aiter_list(chunks)))
        assert [e.type for e in events] == (
            ["response.created", "response.in_progress", "response.output_item.added", "response.content_part.added"]
            + ["response.output_text.delta"] * 5
            + ["response.output_text.done", "response.content_part.done", "response.output_item.done",
               "response.completed"]
        )
        payloads = event_payloads(events)
        assert [p["sequence_number"] for p in payloads] == list(range(len(payloads)))
        completed = payloads[-1]["response"]
        assert completed["status"] == "completed"
        assert completed["output"][0]["content"][0]["text"] == "".join(STREAM_TEXT_DELTAS)
        assert completed["usage"]["total_tokens"] == 21

    @pytest.mark.asyncio
    async def test_length_is_incomplete(self):
        chunks = [
            Response(id="c", model="m", choices=[Choice(delta=Message(role="assistant", content="cut"))]),
            Response(id="c", model="m", choices=[Choice(delta=Message(), finish_reason="length")]),
            Response(id="c", model="m", usage=Usage(prompt_tokens=1, completion_tokens=1)),
        ]
        events = await collect(ResponsesStreamEncoder(aiter_list(chunks)))
        last = event_payloads(events)[-1]
        assert last["type"] == "response.incomplete"
        assert last["response"]["incomplete_details"] == {"reason": "max_output_tokens"}

    @pytest.mark.asyncio
    async def test_function_call_events(self):
        chunks = await self._openai_chunks(OPENAI_CHAT_TOOL_STREAM_CHUNKS, done=False)
        events = await collect(ResponsesStreamEncoder(aiter_list(chunks)))
        payloads = event_payloads(events)
        done = [p for p in payloads if p["type"] == "response.function_call_arguments.done"]
        assert done[0]["arguments"] == '{"location": "Paris"}'
        assert payloads[-1]["type"] == "response.completed"

        body, _ = aggregate_responses_chunks(events)
        output = json.loads(body)["output"]
        assert output[0]["type"] == "function_call"
        assert output[0]["call_id"] == "call_1"

    @pytest.mark.asyncio
    async def test_terminal_event_once(self):
        chunks = await self._openai_chunks(OPENAI_CHAT_STREAM_CHUNKS)
        events = await collect(ResponsesStreamEncoder(aiter_list(chunks + [Response.done()])))
        assert [e.type for e in events].count("response.completed") == 1

    @pytest.mark.asyncio
    async def test_content_after_completion_raises(self):
        chunks = await self._openai_chunks(OPENAI_CHAT_STREAM_CHUNKS)
        late = Response(id="x", choices=[Choice(delta=Message(content="late"))])
        with pytest.raises(StreamStateError):
            await collect(ResponsesStreamEncoder(aiter_list(chunks + [late])))


class TestAggregation:
    """Responses SSE folds into one response object"""

    def test_from_item_done_events(self):
        body, meta = aggregate_responses_chunks(sse_events(OPENAI_RESPONSES_STREAM_EVENTS))
        response = json.loads(body)
        assert response["id"] == "resp_s"
        assert response["status"] == "completed"
        assert response["output"][0]["content"][0]["text"] == "".join(STREAM_TEXT_DELTAS)
        assert meta.usage.total_tokens == 21

    def test_from_text_deltas(self):
        events = sse_events([e for e in OPENAI_RESPONSES_STREAM_EVENTS if e["type"] == "response.output_text.delta"])
        body, _ = aggregate_responses_chunks(events)
        output = json.loads(body)["output"]
        assert output[0]["content"][0]["text"] == "".join(STREAM_TEXT_DELTAS)

    def test_empty_rejected(self):
        with pytest.raises(InvalidRequestError):
            aggregate_responses_chunks([])
