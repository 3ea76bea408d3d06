"""
Unit Tests for the OpenAI Chat Completions transformers

Tests request/response conversion, stream pass-through and aggregation,
Images API routing, error parsing and OpenAI-compatible vendors.
"""

import json

import pytest

from protocol_transformer.canonical import MetadataKey
from protocol_transformer.canonical.types import ContentPart, Message, Request, RequestType, StreamOptions
from protocol_transformer.errors import InvalidRequestError, UnsupportedOperationError, UpstreamError
from protocol_transformer.httpmodels import HttpErrorResponse, HttpResponse, StreamEvent, json_response
from protocol_transformer.openai import (
    CompatibleOutbound,
    OpenAIChatDecoder,
    OpenAIChatEncoder,
    OpenAIConfig,
    OpenAIInbound,
    OpenAIOutbound,
    OpenAIPlatform,
    aggregate_chat_chunks,
)
from protocol_transformer.openai.images import IMAGE_GENERATION_FORMAT
from protocol_transformer.openai.inbound import openai_error_response
from protocol_transformer.streams import collect
from tests.fixtures import (
    OPENAI_CHAT_SIMPLE_REQUEST,
    OPENAI_CHAT_SIMPLE_RESPONSE,
    OPENAI_CHAT_STREAM_CHUNKS,
    OPENAI_CHAT_TOOL_CALL_RESPONSE,
    OPENAI_CHAT_TOOL_RESULT_REQUEST,
    OPENAI_CHAT_TOOL_STREAM_CHUNKS,
    OPENAI_CHAT_WITH_SYSTEM_REQUEST,
    OPENAI_CHAT_WITH_TOOLS_REQUEST,
    STREAM_TEXT_DELTAS,
    aiter_list,
    event_payloads,
    http_request,
    sse_events,
)


def chat_request(**kwargs) -> Request:
    kwargs.setdefault("model", "gpt-4o")
    kwargs.setdefault("messages", [Message(role="user", content="hi")])
    return Request(**kwargs)


# =============================================================================
# Request / Response Conversion
# =============================================================================


class TestChatConversion:
    """Chat Completions payloads survive decode then encode"""

    @pytest.mark.parametrize("payload", [
        OPENAI_CHAT_SIMPLE_REQUEST,
        OPENAI_CHAT_WITH_SYSTEM_REQUEST,
        OPENAI_CHAT_WITH_TOOLS_REQUEST,
        OPENAI_CHAT_TOOL_RESULT_REQUEST,
    ])
    def test_request_round_trip(self, payload):
        request = OpenAIChatDecoder().decode_request(payload)
        assert OpenAIChatEncoder().encode_request(request) == payload

    def test_decode_tools_and_choice(self):
        request = OpenAIChatDecoder().decode_request(OPENAI_CHAT_WITH_TOOLS_REQUEST)
        assert request.tools[0].function.name == "get_weather"
        assert request.tool_choice.mode == "auto"

    def test_named_tool_choice(self):
        payload = dict(OPENAI_CHAT_WITH_TOOLS_REQUEST, tool_choice={"type": "function", "function": {"name": "get_weather"}})
        request = OpenAIChatDecoder().decode_request(payload)
        assert request.tool_choice.name == "get_weather"
        assert OpenAIChatEncoder().encode_request(request)["tool_choice"] == payload["tool_choice"]

    def test_stop_string_becomes_list(self):
        request = OpenAIChatDecoder().decode_request(dict(OPENAI_CHAT_SIMPLE_REQUEST, stop="END"))
        assert request.stop == ["END"]

    def test_stream_options_without_include_usage_omitted(self):
        request = chat_request(stream=True, stream_options=StreamOptions())
        assert "stream_options" not in OpenAIChatEncoder().encode_request(request)

        request.stream_options.include_usage = True
        assert OpenAIChatEncoder().encode_request(request)["stream_options"] == {"include_usage": True}

    def test_messages_must_be_array(self):
        with pytest.raises(InvalidRequestError):
            OpenAIChatDecoder().decode_request({"model": "gpt-4o", "messages": "hi"})

    def test_multimodal_content(self):
        payload = {
            "model": "gpt-4o",
            "messages": [{"role": "user", "content": [
                {"type": "text", "text": "What is this?"},
                {"type": "image_url", "image_url": {"url": "https://example.com/a.png", "detail": "low"}},
            ]}],
        }
        request = OpenAIChatDecoder().decode_request(payload)
        parts = request.messages[0].content.parts
        assert parts[1].image_url.detail == "low"
        assert OpenAIChatEncoder().encode_request(request) == payload

    def test_reasoning_aliases(self):
        decoder = OpenAIChatDecoder()
        assert decoder.decode_message({"role": "assistant", "reasoning_content": "a"}).reasoning_content == "a"
        assert decoder.decode_message({"role": "assistant", "reasoning": "b"}).reasoning_content == "b"

    @pytest.mark.parametrize("payload", [OPENAI_CHAT_SIMPLE_RESPONSE, OPENAI_CHAT_TOOL_CALL_RESPONSE])
    def test_response_round_trip(self, payload):
        response = OpenAIChatDecoder().decode_response(payload)
        assert OpenAIChatEncoder().encode_response(response) == payload


# =============================================================================
# Outbound
# =============================================================================


class TestOpenAIOutbound:
    """Upstream request building and response parsing"""

    def test_default_url_and_auth(self):
        outbound = OpenAIOutbound(OpenAIConfig(base_url="https://api.openai.com/v1", api_key="sk-test"))
        http_request = outbound.transform_request(chat_request())
        assert http_request.method == "POST"
        assert http_request.url == "https://api.openai.com/v1/chat/completions"
        assert http_request.auth.api_key == "sk-test"
        assert http_request.headers["Content-Type"] == "application/json"
        assert http_request.json()["messages"] == [{"role": "user", "content": "hi"}]

    def test_base_url_without_version(self):
        outbound = OpenAIOutbound(OpenAIConfig(base_url="https://proxy.example.com/"))
        assert outbound.transform_request(chat_request()).url == "https://proxy.example.com/v1/chat/completions"

    def test_raw_base_url(self):
        outbound = OpenAIOutbound(OpenAIConfig(base_url="https://proxy.example.com/custom/chat##"))
        assert outbound.config.raw_url
        assert outbound.transform_request(chat_request()).url == "https://proxy.example.com/custom/chat"

    def test_azure(self):
        config = OpenAIConfig(platform=OpenAIPlatform.AZURE, base_url="https://res.openai.azure.com", api_key="k")
        http_request = OpenAIOutbound(config).transform_request(chat_request())
        assert http_request.url == (
            "https://res.openai.azure.com/openai/v1/chat/completions?api-version=2025-04-01-preview"
        )
        assert http_request.auth.header_key == "api-key"

    def test_reasoning_not_echoed(self):
        request = chat_request(messages=[
            Message(role="user", content="hi"),
            Message(role="assistant", content="hello", reasoning_content="thinking"),
        ])
        body = OpenAIOutbound().transform_request(request).json()
        assert "reasoning_content" not in body["messages"][1]

    @pytest.mark.parametrize("request_type", [RequestType.EMBEDDING.value, RequestType.RERANK.value])
    def test_non_chat_rejected(self, request_type):
        with pytest.raises(UnsupportedOperationError):
            OpenAIOutbound().transform_request(chat_request(request_type=request_type))

    def test_missing_messages_rejected(self):
        with pytest.raises(InvalidRequestError):
            OpenAIOutbound().transform_request(chat_request(messages=[]))

    def test_response(self):
        response = OpenAIOutbound().transform_response(json_response(OPENAI_CHAT_TOOL_CALL_RESPONSE))
        message = response.choices[0].message
        assert message.tool_calls[0].function.name == "get_weather"
        assert response.choices[0].finish_reason == "tool_calls"
        assert response.usage.total_tokens == 30

    def test_error_status_raises(self):
        http_response = HttpResponse(
            status_code=401,
            body=b'{"error":{"message":"Invalid API key","type":"invalid_request_error","code":"invalid_api_key"}}',
        )
        with pytest.raises(UpstreamError) as exc_info:
            OpenAIOutbound().transform_response(http_response)
        assert exc_info.value.status_code == 401
        assert exc_info.value.code == "invalid_api_key"

    def test_embedded_error_raises(self):
        with pytest.raises(UpstreamError):
            OpenAIOutbound().transform_response(json_response({"error": {"message": "boom"}}))


class TestErrorParsing:
    """Upstream error bodies"""

    def test_json_error(self):
        error = OpenAIOutbound().transform_error(HttpErrorResponse(
            status_code=429,
            body=b'{"error":{"message":"Rate limit","type":"rate_limit_error","code":"rate_limit_exceeded"}}',
            headers={"x-request-id": "req_1"},
        ))
        assert error.status_code == 429
        assert error.message == "Rate limit"
        assert error.error_type == "rate_limit_error"
        assert error.detail.request_id == "req_1"

    def test_plain_text_error(self):
        error = OpenAIOutbound().transform_error(HttpErrorResponse(status_code=502, body=b"bad gateway\n"))
        assert error.message == "bad gateway"

    def test_empty_error_uses_status_text(self):
        error = OpenAIOutbound().transform_error(HttpErrorResponse(status_code=502))
        assert error.message == "Bad Gateway"


# =============================================================================
# Images API
# =============================================================================


class TestImageGeneration:
    """Image modality requests go to the Images API"""

    def test_generation(self):
        outbound = OpenAIOutbound()
        request = chat_request(
            model="gpt-image-1",
            modalities=["image"],
            messages=[Message(role="user", content="draw a cat")],
        )
        http_request = outbound.transform_request(request)
        assert http_request.url == "https://api.openai.com/v1/images/generations"
        assert http_request.json() == {"prompt": "draw a cat", "model": "gpt-image-1"}
        assert http_request.transformer_metadata.get(MetadataKey.OUTBOUND_FORMAT_TYPE) == IMAGE_GENERATION_FORMAT

        http_response = json_response({"created": 1700000000, "data": [{"b64_json": "AAAA"}]})
        http_response.request = http_request
        response = outbound.transform_response(http_response)
        part = response.choices[0].message.content.parts[0]
        assert part.image_url.url == "data:image/png;base64,AAAA"
        assert response.model == "gpt-image-1"

    def test_dall_e_asks_for_base64(self):
        request = chat_request(model="dall-e-3", modalities=["image"], messages=[Message(role="user", content="x")])
        assert OpenAIOutbound().transform_request(request).json()["response_format"] == "b64_json"

    def test_edit_with_input_image(self):
        request = chat_request(
            model="gpt-image-1",
            modalities=["image"],
            messages=[Message(role="user", content=[
                ContentPart.text_part("make it blue"),
                ContentPart.image_part("data:image/png;base64,iVBORw0KGgo="),
            ])],
        )
        http_request = OpenAIOutbound().transform_request(request)
        assert http_request.url == "https://api.openai.com/v1/images/edits"
        assert http_request.content_type.startswith("multipart/form-data")
        assert http_request.form["prompt"] == "make it blue"
        assert http_request.files[0].filename == "image_0.png"

    def test_streaming_rejected(self):
        request = chat_request(modalities=["image"], stream=True)
        with pytest.raises(UnsupportedOperationError):
            OpenAIOutbound().transform_request(request)

    def test_prompt_required(self):
        request = chat_request(modalities=["image"], messages=[Message(role="user", content="")])
        with pytest.raises(InvalidRequestError):
            OpenAIOutbound().transform_request(request)


# =============================================================================
# Streaming
# =============================================================================


@pytest.mark.asyncio
async def test_stream_pass_through():
    outbound, inbound = OpenAIOutbound(), OpenAIInbound()
    upstream = aiter_list(sse_events(OPENAI_CHAT_STREAM_CHUNKS, done=True))
    events = await collect(inbound.transform_stream(outbound.transform_stream(upstream)))

    payloads = event_payloads(events)
    assert payloads[-1] is None
    texts = [p["choices"][0]["delta"].get("content") for p in payloads[1:6]]
    assert texts == STREAM_TEXT_DELTAS
    assert payloads[6]["choices"][0]["finish_reason"] == "stop"
    assert payloads[7]["usage"]["total_tokens"] == 21


@pytest.mark.asyncio
async def test_stream_skips_malformed_chunks():
    events = [StreamEvent(data=b"{broken")] + sse_events(OPENAI_CHAT_STREAM_CHUNKS[:2])
    chunks = await collect(OpenAIOutbound().transform_stream(aiter_list(events)))
    assert len(chunks) == 2


@pytest.mark.asyncio
async def test_stream_error_raises():
    events = sse_events([{"error": {"message": "overloaded", "type": "server_error"}}])
    with pytest.raises(UpstreamError) as exc_info:
        await collect(OpenAIOutbound().transform_stream(aiter_list(events)))
    assert exc_info.value.message == "overloaded"


class TestAggregation:
    """Stream chunks fold into one chat.completion"""

    def test_text(self):
        body, meta = aggregate_chat_chunks(sse_events(OPENAI_CHAT_STREAM_CHUNKS, done=True))
        payload = json.loads(body)
        assert payload["object"] == "chat.completion"
        assert payload["choices"][0]["message"]["content"] == "".join(STREAM_TEXT_DELTAS)
        assert payload["choices"][0]["finish_reason"] == "stop"
        assert meta.id == "chatcmpl-stream"
        assert meta.usage.total_tokens == 21

    def test_tool_calls(self):
        body, _ = aggregate_chat_chunks(sse_events(OPENAI_CHAT_TOOL_STREAM_CHUNKS))
        tool_call = json.loads(body)["choices"][0]["message"]["tool_calls"][0]
        assert tool_call["id"] == "call_1"
        assert json.loads(tool_call["function"]["arguments"]) == {"location": "Paris"}

    def test_invalid_arguments_repaired(self):
        chunks = [
            {"id": "c", "choices": [{"index": 0, "delta": {"tool_calls": [
                {"index": 0, "id": "call_1", "function": {"name": "f", "arguments": '{"invalid": json}'}},
            ]}}]},
        ]
        body, _ = aggregate_chat_chunks(sse_events(chunks))
        arguments = json.loads(body)["choices"][0]["message"]["tool_calls"][0]["function"]["arguments"]
        assert arguments == '{"invalid":"json"}'

    def test_empty_rejected(self):
        with pytest.raises(InvalidRequestError):
            aggregate_chat_chunks([])


# =============================================================================
# Inbound
# =============================================================================


class TestOpenAIInbound:
    """Client-facing Chat Completions"""

    def test_request(self):
        request = OpenAIInbound().transform_request(http_request(OPENAI_CHAT_WITH_SYSTEM_REQUEST))
        assert request.api_format == "openai/chat_completions"
        assert [m.role for m in request.messages] == ["system", "user"]
        assert request.temperature == 0.7

    def test_model_required(self):
        with pytest.raises(InvalidRequestError):
            OpenAIInbound().transform_request(http_request({"messages": [{"role": "user", "content": "x"}]}))

    def test_non_json_body(self):
        bad = http_request({})
        bad.body = b"not json"
        with pytest.raises(InvalidRequestError):
            OpenAIInbound().transform_request(bad)

    def test_error_envelope(self):
        error = openai_error_response(InvalidRequestError("model is required"))
        assert error.status_code == 400
        assert json.loads(error.body)["error"]["type"] == "invalid_request_error"

    def test_unexpected_error(self):
        error = OpenAIInbound().transform_error(RuntimeError("boom"))
        assert error.status_code == 500
        assert json.loads(error.body)["error"]["message"] == "boom"


# =============================================================================
# OpenAI-Compatible Vendors
# =============================================================================


class TestCompatibleVendors:
    """Vendor profiles on top of the Chat Completions transformer"""

    def test_deepseek_url(self):
        http_request_ = CompatibleOutbound("deepseek", api_key="k").transform_request(chat_request())
        assert http_request_.url == "https://api.deepseek.com/v1/chat/completions"
        assert http_request_.auth.api_key == "k"

    def test_unversioned_vendor(self):
        outbound = CompatibleOutbound("zhipu")
        assert outbound.transform_request(chat_request()).url == "https://open.bigmodel.cn/api/paas/v4/chat/completions"
        assert not outbound.openai.config.raw_url

    def test_vendor_raw_override(self):
        outbound = CompatibleOutbound("deepseek", base_url="https://gateway.example.com/deepseek/chat##")
        assert outbound.transform_request(chat_request()).url == "https://gateway.example.com/deepseek/chat"

    def test_moonshot_echoes_reasoning(self):
        request = chat_request(messages=[
            Message(role="user", content="hi"),
            Message(role="assistant", content="hello", reasoning_content="thinking"),
        ])
        body = CompatibleOutbound("moonshot").transform_request(request).json()
        assert body["messages"][1]["reasoning_content"] == "thinking"

    def test_openrouter_reasoning(self):
        body = CompatibleOutbound("openrouter").transform_request(chat_request(reasoning_effort="high")).json()
        assert body["reasoning"] == {"effort": "high"}
        assert "reasoning_effort" not in body

    def test_thinking_switch(self):
        body = CompatibleOutbound("doubao").transform_request(chat_request(reasoning_effort="none")).json()
        assert body["thinking"] == {"type": "disabled"}

    def test_image_generation_support(self):
        request = chat_request(modalities=["image"])
        body = CompatibleOutbound("openrouter").transform_request(request).json()
        assert body["modalities"] == ["image", "text"]
        with pytest.raises(UnsupportedOperationError):
            CompatibleOutbound("deepseek").transform_request(request)

    def test_unknown_vendor(self):
        with pytest.raises(ValueError):
            CompatibleOutbound("nope")
