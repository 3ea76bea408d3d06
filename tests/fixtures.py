"""
Test Fixtures

Sample payloads for testing format transformations, plus small helpers to
feed them through streams.
"""

import json
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from protocol_transformer.httpmodels import HttpRequest, StreamEvent


def http_request(payload: Dict[str, Any], path: str = "") -> HttpRequest:
    """A client request carrying `payload` as its JSON body."""
    return HttpRequest(
        method="POST",
        path=path,
        headers={"Content-Type": "application/json"},
        body=json.dumps(payload).encode("utf-8"),
    )


def sse_events(payloads: Iterable[Any], typed: bool = False, done: bool = False) -> List[StreamEvent]:
    """Wrap payloads as SSE events; `typed` copies payload["type"] into the event name."""
    events = []
    for payload in payloads:
        event_type = payload.get("type", "") if typed and isinstance(payload, dict) else ""
        events.append(StreamEvent(data=json.dumps(payload).encode("utf-8"), type=event_type))
    if done:
        events.append(StreamEvent(data=b"[DONE]"))
    return events


async def aiter_list(items: Iterable[Any]) -> AsyncIterator[Any]:
    for item in items:
        yield item


def event_payloads(events: Iterable[StreamEvent]) -> List[Optional[Dict[str, Any]]]:
    """Decode event data; the [DONE] sentinel becomes None."""
    return [None if e.is_done else json.loads(e.data) for e in events]


# =============================================================================
# OpenAI Chat Completions Fixtures
# =============================================================================

OPENAI_CHAT_SIMPLE_REQUEST = {
    "model": "gpt-4o",
    "messages": [{"role": "user", "content": "Hello, how are you?"}],
    "max_tokens": 100,
}

OPENAI_CHAT_WITH_SYSTEM_REQUEST = {
    "model": "gpt-4o",
    "messages": [
        {"role": "system", "content": "You are a helpful assistant."},
        {"role": "user", "content": "What is 2+2?"},
    ],
    "max_tokens": 100,
    "temperature": 0.7,
}

OPENAI_CHAT_WITH_TOOLS_REQUEST = {
    "model": "gpt-4o",
    "messages": [{"role": "user", "content": "What's the weather in Paris?"}],
    "max_tokens": 200,
    "tools": [
        {
            "type": "function",
            "function": {
                "name": "get_weather",
                "description": "Get current weather for a location",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "location": {"type": "string", "description": "City name"},
                        "unit": {"type": "string", "enum": ["celsius", "fahrenheit"]},
                    },
                    "required": ["location"],
                },
            },
        }
    ],
    "tool_choice": "auto",
}

OPENAI_CHAT_TOOL_RESULT_REQUEST = {
    "model": "gpt-4o",
    "messages": [
        {"role": "user", "content": "What's the weather in Paris?"},
        {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {
                    "id": "call_abc123",
                    "type": "function",
                    "function": {"name": "get_weather", "arguments": '{"location": "Paris"}'},
                }
            ],
        },
        {"role": "tool", "tool_call_id": "call_abc123", "content": '{"temperature": 22}'},
    ],
    "max_tokens": 200,
}

OPENAI_CHAT_SIMPLE_RESPONSE = {
    "id": "chatcmpl-123",
    "object": "chat.completion",
    "created": 1700000000,
    "model": "gpt-4o",
    "choices": [
        {
            "index": 0,
            "message": {"role": "assistant", "content": "I'm doing well, thank you!"},
            "finish_reason": "stop",
        }
    ],
    "usage": {"prompt_tokens": 10, "completion_tokens": 15, "total_tokens": 25},
}

OPENAI_CHAT_TOOL_CALL_RESPONSE = {
    "id": "chatcmpl-456",
    "object": "chat.completion",
    "created": 1700000000,
    "model": "gpt-4o",
    "choices": [
        {
            "index": 0,
            "message": {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": "call_xyz789",
                        "type": "function",
                        "function": {"name": "get_weather", "arguments": '{"location": "Paris"}'},
                    }
                ],
            },
            "finish_reason": "tool_calls",
        }
    ],
    "usage": {"prompt_tokens": 20, "completion_tokens": 10, "total_tokens": 30},
}

STREAM_TEXT_DELTAS = ["Hello", ", this", " is", " a", " streaming response!"]


def openai_chunk(delta: Dict[str, Any], finish_reason: Optional[str] = None, usage: Optional[dict] = None) -> dict:
    chunk = {
        "id": "chatcmpl-stream",
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": "gpt-4o",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }
    if usage is not None:
        chunk["usage"] = usage
    return chunk


OPENAI_CHAT_STREAM_CHUNKS = (
    [openai_chunk({"role": "assistant", "content": ""})]
    + [openai_chunk({"content": text}) for text in STREAM_TEXT_DELTAS]
    + [openai_chunk({}, finish_reason="stop")]
    + [{
        "id": "chatcmpl-stream",
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": "gpt-4o",
        "choices": [],
        "usage": {"prompt_tokens": 12, "completion_tokens": 9, "total_tokens": 21},
    }]
)

OPENAI_CHAT_TOOL_STREAM_CHUNKS = [
    openai_chunk({"role": "assistant", "content": None, "tool_calls": [
        {"index": 0, "id": "call_1", "type": "function", "function": {"name": "get_weather", "arguments": ""}},
    ]}),
    openai_chunk({"tool_calls": [{"index": 0, "function": {"arguments": '{"location":'}}]}),
    openai_chunk({"tool_calls": [{"index": 0, "function": {"arguments": ' "Paris"}'}}]}),
    openai_chunk({}, finish_reason="tool_calls"),
]


# =============================================================================
# Anthropic Messages Fixtures
# =============================================================================

ANTHROPIC_SIMPLE_REQUEST = {
    "model": "claude-sonnet-4-5",
    "messages": [{"role": "user", "content": "Hello, Claude"}],
    "max_tokens": 1024,
}

ANTHROPIC_WITH_SYSTEM_REQUEST = {
    "model": "claude-sonnet-4-5",
    "system": "You are a helpful assistant.",
    "messages": [{"role": "user", "content": "What is 2+2?"}],
    "max_tokens": 1024,
    "temperature": 0.5,
}

ANTHROPIC_WITH_TOOLS_REQUEST = {
    "model": "claude-sonnet-4-5",
    "messages": [{"role": "user", "content": "What's the weather in Paris?"}],
    "max_tokens": 1024,
    "tools": [
        {
            "name": "get_weather",
            "description": "Get current weather for a location",
            "input_schema": {
                "type": "object",
                "properties": {"location": {"type": "string"}},
                "required": ["location"],
            },
        }
    ],
    "tool_choice": {"type": "any"},
}

ANTHROPIC_TOOL_RESULT_REQUEST = {
    "model": "claude-sonnet-4-5",
    "max_tokens": 1024,
    "messages": [
        {"role": "user", "content": "What's the weather in Paris and London?"},
        {
            "role": "assistant",
            "content": [
                {"type": "thinking", "thinking": "Two cities.", "signature": "sig-abc"},
                {"type": "text", "text": "Checking both."},
                {"type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {"location": "Paris"}},
                {"type": "tool_use", "id": "toolu_2", "name": "get_weather", "input": {"location": "London"}},
            ],
        },
        {
            "role": "user",
            "content": [
                {"type": "tool_result", "tool_use_id": "toolu_1", "content": "22C"},
                {"type": "tool_result", "tool_use_id": "toolu_2", "content": "15C", "is_error": False},
                {"type": "text", "text": "Which is warmer?"},
            ],
        },
    ],
}

ANTHROPIC_WITH_BASE64_IMAGE_REQUEST = {
    "model": "claude-sonnet-4-5",
    "max_tokens": 1024,
    "messages": [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": "Describe this."},
                {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "iVBORw0KGgo="}},
            ],
        }
    ],
}

ANTHROPIC_SIMPLE_RESPONSE = {
    "id": "msg_123",
    "type": "message",
    "role": "assistant",
    "model": "claude-sonnet-4-5",
    "content": [{"type": "text", "text": "Hello! How can I help you today?"}],
    "stop_reason": "end_turn",
    "stop_sequence": None,
    "usage": {"input_tokens": 10, "output_tokens": 12},
}

ANTHROPIC_TOOL_USE_RESPONSE = {
    "id": "msg_456",
    "type": "message",
    "role": "assistant",
    "model": "claude-sonnet-4-5",
    "content": [
        {"type": "thinking", "thinking": "Need the weather.", "signature": "sig-xyz"},
        {"type": "tool_use", "id": "toolu_abc", "name": "get_weather", "input": {"location": "Paris"}},
    ],
    "stop_reason": "tool_use",
    "stop_sequence": None,
    "usage": {"input_tokens": 30, "output_tokens": 20},
}

ANTHROPIC_CACHE_USAGE = {
    "input_tokens": 100,
    "output_tokens": 50,
    "cache_creation_input_tokens": 20,
    "cache_read_input_tokens": 30,
}

ANTHROPIC_STREAM_EVENTS = (
    [
        {
            "type": "message_start",
            "message": {
                "id": "msg_stream",
                "type": "message",
                "role": "assistant",
                "model": "claude-sonnet-4-5",
                "content": [],
                "stop_reason": None,
                "usage": {"input_tokens": 25, "output_tokens": 1},
            },
        },
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    ]
    + [
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}}
        for text in STREAM_TEXT_DELTAS
    ]
    + [
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn", "stop_sequence": None},
         "usage": {"output_tokens": 15}},
        {"type": "message_stop"},
    ]
)

ANTHROPIC_TOOL_STREAM_EVENTS = [
    {
        "type": "message_start",
        "message": {"id": "msg_tool", "type": "message", "role": "assistant", "model": "claude-sonnet-4-5",
                    "content": [], "usage": {"input_tokens": 40, "output_tokens": 1}},
    },
    {"type": "content_block_start", "index": 0, "content_block": {"type": "thinking", "thinking": ""}},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "thinking_delta", "thinking": "Let me check."}},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "signature_delta", "signature": "sig-1"}},
    {"type": "content_block_stop", "index": 0},
    {"type": "content_block_start", "index": 1,
     "content_block": {"type": "tool_use", "id": "toolu_9", "name": "get_weather", "input": {}}},
    {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": '{"location":'}},
    {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": ' "Paris"}'}},
    {"type": "content_block_stop", "index": 1},
    {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 30}},
    {"type": "message_stop"},
]


# =============================================================================
# OpenAI Responses Fixtures
# =============================================================================

OPENAI_RESPONSES_SIMPLE_REQUEST = {
    "model": "gpt-4o",
    "input": "Hello, how are you?",
    "max_output_tokens": 100,
}

OPENAI_RESPONSES_WITH_INSTRUCTIONS_REQUEST = {
    "model": "gpt-4o",
    "instructions": "You are a helpful assistant.",
    "input": "What is 2+2?",
    "max_output_tokens": 100,
    "temperature": 0.7,
    "reasoning": {"effort": "high", "summary": "auto"},
    "include": ["reasoning.encrypted_content"],
    "truncation": "auto",
}

OPENAI_RESPONSES_ITEMS_REQUEST = {
    "model": "gpt-4o",
    "input": [
        {"role": "user", "content": [
            {"type": "input_text", "text": "What's in this image?"},
            {"type": "input_image", "image_url": "https://example.com/cat.png"},
        ]},
        {"type": "reasoning", "id": "rs_1", "summary": [{"type": "summary_text", "text": "Looking."}],
         "encrypted_content": "enc-123"},
        {"type": "message", "role": "assistant", "content": [{"type": "output_text", "text": "Let me look."}]},
        {"type": "function_call", "id": "fc_1", "call_id": "call_1", "name": "zoom", "arguments": "{\"level\":2}"},
        {"type": "function_call_output", "call_id": "call_1", "output": "zoomed"},
    ],
    "tools": [
        {"type": "function", "name": "zoom", "parameters": {"type": "object", "properties": {}}},
        {"type": "web_search_preview", "search_context_size": "low"},
    ],
    "tool_choice": {"type": "function", "name": "zoom"},
}

OPENAI_RESPONSES_SIMPLE_RESPONSE = {
    "id": "resp_123",
    "object": "response",
    "created_at": 1700000000,
    "model": "gpt-4o",
    "status": "completed",
    "output": [
        {
            "id": "msg_123",
            "type": "message",
            "role": "assistant",
            "status": "completed",
            "content": [{"type": "output_text", "text": "I'm doing well!", "annotations": []}],
        }
    ],
    "usage": {
        "input_tokens": 10,
        "input_tokens_details": {"cached_tokens": 4},
        "output_tokens": 8,
        "output_tokens_details": {"reasoning_tokens": 3},
        "total_tokens": 18,
    },
}

OPENAI_RESPONSES_TOOL_CALL_RESPONSE = {
    "id": "resp_456",
    "object": "response",
    "created_at": 1700000000,
    "model": "gpt-4o",
    "status": "completed",
    "output": [
        {"id": "rs_1", "type": "reasoning", "summary": [{"type": "summary_text", "text": "Need weather."}],
         "encrypted_content": "enc-xyz"},
        {"id": "fc_1", "type": "function_call", "status": "completed", "call_id": "call_1",
         "name": "get_weather", "arguments": "{\"location\":\"Paris\"}"},
    ],
    "usage": {"input_tokens": 20, "output_tokens": 10, "total_tokens": 30},
}

OPENAI_RESPONSES_STREAM_EVENTS = (
    [
        {"type": "response.created", "sequence_number": 0,
         "response": {"id": "resp_s", "object": "response", "created_at": 1700000000, "model": "gpt-4o",
                      "status": "in_progress", "output": []}},
        {"type": "response.output_item.added", "sequence_number": 1, "output_index": 0,
         "item": {"id": "msg_s", "type": "message", "role": "assistant", "content": []}},
    ]
    + [
        {"type": "response.output_text.delta", "sequence_number": 2 + i, "item_id": "msg_s",
         "output_index": 0, "content_index": 0, "delta": text}
        for i, text in enumerate(STREAM_TEXT_DELTAS)
    ]
    + [
        {"type": "response.output_item.done", "sequence_number": 7, "output_index": 0,
         "item": {"id": "msg_s", "type": "message", "role": "assistant", "status": "completed",
                  "content": [{"type": "output_text", "text": "".join(STREAM_TEXT_DELTAS), "annotations": []}]}},
        {"type": "response.completed", "sequence_number": 8,
         "response": {"id": "resp_s", "object": "response", "created_at": 1700000000, "model": "gpt-4o",
                      "status": "completed", "output": [],
                      "usage": {"input_tokens": 12, "output_tokens": 9, "total_tokens": 21}}},
    ]
)


# =============================================================================
# Gemini Fixtures
# =============================================================================

GEMINI_SIMPLE_REQUEST = {
    "contents": [{"role": "user", "parts": [{"text": "Hello, Gemini"}]}],
    "generationConfig": {"maxOutputTokens": 256, "temperature": 0.3},
}

GEMINI_TOOL_REQUEST = {
    "systemInstruction": {"parts": [{"text": "Be brief."}]},
    "contents": [
        {"role": "user", "parts": [{"text": "Weather in Paris?"}]},
        {"role": "model", "parts": [
            {"functionCall": {"name": "get_weather", "args": {"location": "Paris"}}, "thoughtSignature": "c2ln"},
        ]},
        {"role": "user", "parts": [
            {"functionResponse": {"name": "get_weather", "response": {"temperature": 22}}},
        ]},
    ],
    "tools": [{"functionDeclarations": [{
        "name": "get_weather",
        "description": "Get the weather",
        "parameters": {"type": "OBJECT", "properties": {"location": {"type": "STRING"}}},
    }]}],
    "toolConfig": {"functionCallingConfig": {"mode": "ANY", "allowedFunctionNames": ["get_weather"]}},
    "generationConfig": {"thinkingConfig": {"thinkingBudget": 8000, "includeThoughts": True}},
}

GEMINI_SIMPLE_RESPONSE = {
    "candidates": [{
        "index": 0,
        "content": {"role": "model", "parts": [
            {"text": "Thinking it over.", "thought": True},
            {"text": "Hello there!"},
        ]},
        "finishReason": "STOP",
    }],
    "usageMetadata": {
        "promptTokenCount": 10,
        "candidatesTokenCount": 5,
        "thoughtsTokenCount": 4,
        "cachedContentTokenCount": 2,
        "totalTokenCount": 19,
    },
    "modelVersion": "gemini-2.5-flash",
    "responseId": "gem-123",
}

GEMINI_STREAM_CHUNKS = (
    [
        {"candidates": [{"index": 0, "content": {"role": "model", "parts": [{"text": text}]}}],
         "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": i + 1, "totalTokenCount": 13 + i},
         "modelVersion": "gemini-2.5-flash", "responseId": "gem-stream"}
        for i, text in enumerate(STREAM_TEXT_DELTAS)
    ]
    + [
        {"candidates": [{"index": 0, "content": {"role": "model", "parts": [{"text": ""}]}, "finishReason": "STOP"}],
         "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 9, "totalTokenCount": 21},
         "modelVersion": "gemini-2.5-flash", "responseId": "gem-stream"},
    ]
)
