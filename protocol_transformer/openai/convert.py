"""
OpenAI Chat Completions Encoder/Decoder

Converts between the OpenAI Chat Completions wire format and the canonical
model. The canonical model follows the Chat Completions shape closely, so
most fields map one to one.
"""

import json
from typing import Any, Dict, List, Optional

from protocol_transformer.canonical.types import (
    CacheControl,
    Choice,
    ContentPart,
    Document,
    Function,
    FunctionCall,
    ImageURL,
    InputAudio,
    Message,
    MessageContent,
    Request,
    Response,
    ResponseFormat,
    StreamOptions,
    Tool,
    ToolCall,
    ToolChoice,
    ToolType,
)
from protocol_transformer.errors import ErrorDetail, InvalidRequestError, UpstreamError
from protocol_transformer.httpmodels import HttpErrorResponse
from protocol_transformer.usage import from_openai_usage, to_openai_usage

CHAT_COMPLETION_OBJECT = "chat.completion"
CHAT_COMPLETION_CHUNK_OBJECT = "chat.completion.chunk"

# Sampling parameters copied verbatim in both directions
_SCALAR_FIELDS = (
    "max_tokens",
    "max_completion_tokens",
    "temperature",
    "top_p",
    "presence_penalty",
    "frequency_penalty",
    "seed",
    "n",
    "logprobs",
    "top_logprobs",
    "logit_bias",
    "user",
    "stream",
    "parallel_tool_calls",
    "reasoning_effort",
    "verbosity",
    "service_tier",
    "store",
    "prompt_cache_key",
    "safety_identifier",
)


class OpenAIChatDecoder:
    """Decodes OpenAI Chat Completions payloads to the canonical model."""

    def decode_request(self, payload: Dict[str, Any]) -> Request:
        """Decode an OpenAI Chat request."""
        messages = payload.get("messages")
        if not isinstance(messages, list):
            raise InvalidRequestError("messages must be an array")

        request = Request(
            model=payload.get("model") or "",
            messages=[self.decode_message(m) for m in messages],
        )
        for name in _SCALAR_FIELDS:
            if payload.get(name) is not None:
                setattr(request, name, payload[name])

        stop = payload.get("stop")
        if isinstance(stop, str):
            request.stop = [stop]
        elif isinstance(stop, list):
            request.stop = [s for s in stop if isinstance(s, str)]

        if isinstance(payload.get("stream_options"), dict):
            request.stream_options = StreamOptions(
                include_usage=payload["stream_options"].get("include_usage"),
            )

        request.tools = self._decode_tools(payload.get("tools") or [])
        if payload.get("tool_choice") is not None:
            request.tool_choice = self._decode_tool_choice(payload["tool_choice"])

        if isinstance(payload.get("response_format"), dict):
            fmt = payload["response_format"]
            request.response_format = ResponseFormat(
                type=fmt.get("type", "text"),
                json_schema=fmt.get("json_schema"),
            )

        if isinstance(payload.get("modalities"), list):
            request.modalities = list(payload["modalities"])
        if isinstance(payload.get("metadata"), dict):
            request.metadata = {k: str(v) for k, v in payload["metadata"].items()}

        return request

    def decode_message(self, msg: Dict[str, Any]) -> Message:
        """Decode a request message or a response message/delta."""
        message = Message(
            role=msg.get("role") or "",
            content=self._decode_content(msg.get("content")),
            name=msg.get("name"),
            tool_call_id=msg.get("tool_call_id"),
            refusal=msg.get("refusal"),
            cache_control=CacheControl.from_dict(msg.get("cache_control")),
        )
        # DeepSeek uses reasoning_content, OpenRouter uses reasoning
        reasoning = msg.get("reasoning_content")
        if reasoning is None:
            reasoning = msg.get("reasoning")
        if isinstance(reasoning, str):
            message.reasoning_content = reasoning

        # OpenRouter returns generated images next to the content
        images = msg.get("images")
        if isinstance(images, list) and images:
            parts = message.content.iter_parts()
            for image in images:
                url = (image.get("image_url") or {}).get("url") if isinstance(image, dict) else None
                if url:
                    parts.append(ContentPart.image_part(url))
            message.content = MessageContent(parts=parts)

        for i, tc in enumerate(msg.get("tool_calls") or []):
            function = tc.get("function") or {}
            message.tool_calls.append(ToolCall(
                id=tc.get("id") or "",
                type=tc.get("type") or "function",
                function=FunctionCall(
                    name=function.get("name") or "",
                    arguments=function.get("arguments") or "",
                ),
                index=tc.get("index", i),
                cache_control=CacheControl.from_dict(tc.get("cache_control")),
            ))
        return message

    def _decode_content(self, content: Any) -> MessageContent:
        if content is None:
            return MessageContent()
        if isinstance(content, str):
            return MessageContent(text=content)
        if not isinstance(content, list):
            raise InvalidRequestError("message content must be a string or an array")

        parts: List[ContentPart] = []
        for block in content:
            if isinstance(block, str):
                parts.append(ContentPart.text_part(block))
                continue
            part = self._decode_part(block)
            if part is not None:
                parts.append(part)
        return MessageContent(parts=parts)

    def _decode_part(self, block: Dict[str, Any]) -> Optional[ContentPart]:
        """Decode a single content part."""
        block_type = block.get("type")
        cache_control = CacheControl.from_dict(block.get("cache_control"))

        if block_type == "text":
            return ContentPart(type="text", text=block.get("text", ""), cache_control=cache_control)
        if block_type == "image_url":
            image = block.get("image_url") or {}
            if isinstance(image, str):
                image = {"url": image}
            return ContentPart(
                type="image_url",
                image_url=ImageURL(url=image.get("url", ""), detail=image.get("detail")),
                cache_control=cache_control,
            )
        if block_type == "input_audio":
            audio = block.get("input_audio") or {}
            return ContentPart(
                type="input_audio",
                input_audio=InputAudio(data=audio.get("data", ""), format=audio.get("format", "")),
            )
        if block_type == "file":
            file = block.get("file") or {}
            return ContentPart(type="document", document=Document(url=file.get("file_data", "")))
        return None

    def _decode_tools(self, tools: List[Dict[str, Any]]) -> List[Tool]:
        """Decode function tool declarations."""
        result = []
        for tool in tools:
            if tool.get("type", "function") != "function":
                continue
            function = tool.get("function") or {}
            if not function.get("name"):
                raise InvalidRequestError("tool function name is required")
            result.append(Tool(
                type=ToolType.FUNCTION.value,
                function=Function(
                    name=function["name"],
                    description=function.get("description"),
                    parameters=function.get("parameters"),
                    strict=function.get("strict"),
                ),
                cache_control=CacheControl.from_dict(tool.get("cache_control")),
            ))
        return result

    def _decode_tool_choice(self, choice: Any) -> ToolChoice:
        """Decode tool choice: a mode string or a named function."""
        if isinstance(choice, str):
            return ToolChoice(mode=choice)
        if isinstance(choice, dict):
            name = (choice.get("function") or {}).get("name") or choice.get("name")
            if name:
                return ToolChoice(name=name)
            return ToolChoice(mode=choice.get("type"))
        raise InvalidRequestError("tool_choice must be a string or an object")

    def decode_response(self, payload: Dict[str, Any]) -> Response:
        """Decode a chat.completion or chat.completion.chunk payload."""
        response = Response(
            id=payload.get("id") or "",
            object=payload.get("object") or CHAT_COMPLETION_OBJECT,
            created=payload.get("created") or 0,
            model=payload.get("model") or "",
            system_fingerprint=payload.get("system_fingerprint"),
            service_tier=payload.get("service_tier"),
            usage=from_openai_usage(payload.get("usage")),
        )
        for i, raw in enumerate(payload.get("choices") or []):
            choice = Choice(
                index=raw.get("index", i),
                finish_reason=raw.get("finish_reason"),
                logprobs=raw.get("logprobs"),
            )
            if isinstance(raw.get("delta"), dict):
                choice.delta = self.decode_message(raw["delta"])
            elif isinstance(raw.get("message"), dict):
                choice.message = self.decode_message(raw["message"])
            response.choices.append(choice)
        return response


class OpenAIChatEncoder:
    """Encodes the canonical model to OpenAI Chat Completions payloads."""

    def __init__(self, include_reasoning: bool = False):
        """
        Args:
            include_reasoning: Emit `reasoning_content` on assistant request
                messages, for upstreams that expect it back (Moonshot)
        """
        self.include_reasoning = include_reasoning

    def encode_request(self, request: Request) -> Dict[str, Any]:
        """Encode a canonical request as an OpenAI Chat request."""
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": [self.encode_message(m, reasoning=self.include_reasoning) for m in request.messages],
        }
        for name in _SCALAR_FIELDS:
            value = getattr(request, name)
            if value is not None:
                payload[name] = value

        if request.stop:
            payload["stop"] = list(request.stop)
        options = request.stream_options
        if options is not None and options.include_usage is not None and request.stream:
            payload["stream_options"] = {"include_usage": options.include_usage}

        tools = self._encode_tools(request.tools)
        if tools:
            payload["tools"] = tools
            if request.tool_choice is not None:
                payload["tool_choice"] = self._encode_tool_choice(request.tool_choice)
        else:
            payload.pop("parallel_tool_calls", None)

        if request.response_format is not None:
            fmt: Dict[str, Any] = {"type": request.response_format.type}
            if request.response_format.json_schema is not None:
                fmt["json_schema"] = request.response_format.json_schema
            payload["response_format"] = fmt

        if request.modalities:
            payload["modalities"] = list(request.modalities)
        if request.metadata:
            payload["metadata"] = dict(request.metadata)
        return payload

    def encode_message(self, message: Message, delta: bool = False, reasoning: bool = True) -> Dict[str, Any]:
        """Encode a message; deltas carry only the fields that are set."""
        result: Dict[str, Any] = {}
        if message.role or not delta:
            result["role"] = message.role

        content = message.content
        if content.parts is not None and not self._is_plain_text(content.parts):
            result["content"] = [self._encode_part(p) for p in content.parts]
        elif content.text is not None or content.parts:
            result["content"] = content.joined_text()
        elif not delta:
            result["content"] = None if message.tool_calls else ""

        if message.name:
            result["name"] = message.name
        if message.refusal:
            result["refusal"] = message.refusal
        if message.tool_call_id:
            result["tool_call_id"] = message.tool_call_id
        if reasoning and message.reasoning_content is not None:
            result["reasoning_content"] = message.reasoning_content
        if message.tool_calls:
            result["tool_calls"] = [self._encode_tool_call(tc, delta) for tc in message.tool_calls]
        return result

    @staticmethod
    def _is_plain_text(parts: List[ContentPart]) -> bool:
        return len(parts) == 1 and parts[0].type == "text" and parts[0].cache_control is None

    def _encode_part(self, part: ContentPart) -> Dict[str, Any]:
        """Encode a single content part."""
        if part.type == "image_url" and part.image_url is not None:
            image: Dict[str, Any] = {"url": part.image_url.url}
            if part.image_url.detail:
                image["detail"] = part.image_url.detail
            result: Dict[str, Any] = {"type": "image_url", "image_url": image}
        elif part.type == "input_audio" and part.input_audio is not None:
            result = {
                "type": "input_audio",
                "input_audio": {"data": part.input_audio.data, "format": part.input_audio.format},
            }
        elif part.type == "document" and part.document is not None:
            result = {"type": "file", "file": {"file_data": part.document.url}}
        else:
            result = {"type": "text", "text": part.text or ""}
        if part.cache_control is not None:
            result["cache_control"] = part.cache_control.to_dict()
        return result

    def _encode_tool_call(self, tool_call: ToolCall, delta: bool) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if delta:
            result["index"] = tool_call.index
        if tool_call.id:
            result["id"] = tool_call.id
        if tool_call.id or not delta:
            result["type"] = tool_call.type or "function"
        function: Dict[str, Any] = {"arguments": tool_call.function.arguments}
        if tool_call.function.name or not delta:
            function["name"] = tool_call.function.name
        result["function"] = function
        return result

    def _encode_tools(self, tools: List[Tool]) -> List[Dict[str, Any]]:
        """Encode function tools; native tools have no Chat Completions form."""
        result = []
        for tool in tools:
            if tool.type != ToolType.FUNCTION.value or tool.function is None:
                continue
            function: Dict[str, Any] = {"name": tool.function.name}
            if tool.function.description is not None:
                function["description"] = tool.function.description
            if tool.function.parameters is not None:
                function["parameters"] = tool.function.parameters
            if tool.function.strict is not None:
                function["strict"] = tool.function.strict
            result.append({"type": "function", "function": function})
        return result

    def _encode_tool_choice(self, choice: ToolChoice) -> Any:
        if choice.is_named:
            return {"type": "function", "function": {"name": choice.name}}
        return choice.mode or "auto"

    def encode_response(self, response: Response) -> Dict[str, Any]:
        """Encode a response or stream chunk."""
        payload: Dict[str, Any] = {
            "id": response.id,
            "object": response.object,
            "created": response.created,
            "model": response.model,
            "choices": [],
        }
        for choice in response.choices:
            raw: Dict[str, Any] = {"index": choice.index}
            if choice.delta is not None:
                raw["delta"] = self.encode_message(choice.delta, delta=True)
            elif choice.message is not None:
                raw["message"] = self.encode_message(choice.message)
            raw["finish_reason"] = choice.finish_reason
            if choice.logprobs is not None:
                raw["logprobs"] = choice.logprobs
            payload["choices"].append(raw)

        if response.usage is not None:
            payload["usage"] = to_openai_usage(response.usage)
        if response.system_fingerprint:
            payload["system_fingerprint"] = response.system_fingerprint
        if response.service_tier:
            payload["service_tier"] = response.service_tier
        return payload


def parse_openai_error(error: HttpErrorResponse) -> UpstreamError:
    """
    Parse an OpenAI-style error body.

    Accepts `{"error": {...}}` and `{"errors": {...}}`; falls back to the
    trimmed body, then to the HTTP status text.
    """
    detail = ErrorDetail(type="api_error", request_id=error.headers.get("x-request-id", ""))
    parsed = None
    try:
        parsed = json.loads(error.body) if error.body else None
    except ValueError:
        parsed = None

    body = None
    if isinstance(parsed, dict):
        body = parsed.get("error") or parsed.get("errors")
    if isinstance(body, dict) and body.get("message"):
        detail.message = str(body.get("message"))
        detail.type = str(body.get("type") or "api_error")
        detail.code = str(body["code"]) if body.get("code") is not None else ""
        detail.param = str(body["param"]) if body.get("param") is not None else ""
    elif isinstance(body, str) and body:
        detail.message = body
    else:
        detail.message = error.body.decode("utf-8", errors="replace").strip() or error.status
    return UpstreamError(error.status_code, detail)


def upstream_error_from_payload(payload: Dict[str, Any], status_code: int = 500) -> UpstreamError:
    """Build an UpstreamError from an error object embedded in a stream chunk."""
    body = payload.get("error")
    if not isinstance(body, dict):
        body = {"message": str(body)}
    return UpstreamError(status_code, ErrorDetail(
        message=str(body.get("message") or ""),
        type=str(body.get("type") or "api_error"),
        code=str(body["code"]) if body.get("code") is not None else "",
        param=str(body["param"]) if body.get("param") is not None else "",
    ))
