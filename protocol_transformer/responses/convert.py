"""
OpenAI Responses API Encoder/Decoder

Converts between the Responses wire format and the canonical model.

The Responses API replaces the message list with a list of typed input /
output items: plain messages, function_call and function_call_output items,
reasoning items and built-in tool calls. Instructions are a top-level string.
"""

import time
import uuid
from typing import Any, Dict, List, Optional

from protocol_transformer.canonical.metadata import MetadataKey, TransformerMetadata
from protocol_transformer.canonical.types import (
    Choice,
    ContentPart,
    Document,
    FinishReason,
    Function,
    FunctionCall,
    ImageGeneration,
    Message,
    MessageContent,
    Request,
    Response,
    ResponseFormat,
    Role,
    StreamOptions,
    Tool,
    ToolCall,
    ToolChoice,
    ToolType,
)
from protocol_transformer.errors import InvalidRequestError
from protocol_transformer.media import build_data_url, image_format_media_type, parse_data_url
from protocol_transformer.reasoning import decode_openai_encrypted, encode_openai_encrypted
from protocol_transformer.usage import from_responses_usage, to_responses_usage

RESPONSE_OBJECT = "response"

STATUS_COMPLETED = "completed"
STATUS_IN_PROGRESS = "in_progress"
STATUS_INCOMPLETE = "incomplete"
STATUS_FAILED = "failed"

# Fields copied verbatim in both directions
_SCALAR_FIELDS = (
    "temperature",
    "top_p",
    "top_logprobs",
    "stream",
    "user",
    "store",
    "service_tier",
    "safety_identifier",
    "prompt_cache_key",
    "parallel_tool_calls",
)

_TEXT_ITEM_TYPES = ("input_text", "output_text", "text")
_WEB_SEARCH_TYPES = ("web_search", "web_search_preview")


def new_item_id(prefix: str = "item") -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def status_from_finish(finish_reason: Optional[str]) -> str:
    if finish_reason == FinishReason.LENGTH.value:
        return STATUS_INCOMPLETE
    if finish_reason == FinishReason.ERROR.value:
        return STATUS_FAILED
    return STATUS_COMPLETED


def finish_from_status(status: Optional[str], has_tool_calls: bool = False) -> str:
    if has_tool_calls:
        return FinishReason.TOOL_CALLS.value
    if status == STATUS_FAILED:
        return FinishReason.ERROR.value
    if status == STATUS_INCOMPLETE:
        return FinishReason.LENGTH.value
    return FinishReason.STOP.value


def message_item(item_id: str, text: str, status: str = STATUS_COMPLETED) -> Dict[str, Any]:
    """An assistant output message item with a single output_text part."""
    return {
        "id": item_id,
        "type": "message",
        "role": Role.ASSISTANT.value,
        "status": status,
        "content": [{"type": "output_text", "text": text, "annotations": []}],
    }


def reasoning_item(item_id: str, summary: str, encrypted: Optional[str] = None) -> Dict[str, Any]:
    item: Dict[str, Any] = {
        "id": item_id,
        "type": "reasoning",
        "summary": [{"type": "summary_text", "text": summary}] if summary else [],
    }
    if encrypted:
        item["encrypted_content"] = encrypted
    return item


def function_call_item(
    item_id: str,
    call_id: str,
    name: str,
    arguments: str,
    status: str = STATUS_COMPLETED,
) -> Dict[str, Any]:
    return {
        "id": item_id,
        "type": "function_call",
        "status": status,
        "call_id": call_id,
        "name": name,
        "arguments": arguments,
    }


def image_generation_item(item_id: str, result: str) -> Dict[str, Any]:
    return {"id": item_id, "type": "image_generation_call", "status": STATUS_COMPLETED, "result": result}


class ResponsesDecoder:
    """Decodes Responses API payloads to the canonical model."""

    def decode_request(self, payload: Dict[str, Any]) -> Request:
        """Decode a Responses create request."""
        request = Request(model=payload.get("model") or "")
        for name in _SCALAR_FIELDS:
            if payload.get(name) is not None:
                setattr(request, name, payload[name])
        if payload.get("max_output_tokens") is not None:
            request.max_completion_tokens = payload["max_output_tokens"]
        if isinstance(payload.get("metadata"), dict):
            request.metadata = {k: str(v) for k, v in payload["metadata"].items()}

        self._decode_extras(payload, request.transformer_metadata)
        if isinstance(payload.get("stream_options"), dict):
            request.stream_options = StreamOptions()

        reasoning = payload.get("reasoning")
        if isinstance(reasoning, dict):
            request.reasoning_effort = reasoning.get("effort")
            if isinstance(reasoning.get("max_tokens"), int):
                request.reasoning_budget = reasoning["max_tokens"]
            request.reasoning_summary = reasoning.get("summary") or reasoning.get("generate_summary")

        if payload.get("tool_choice") is not None:
            request.tool_choice = self._decode_tool_choice(payload["tool_choice"])
        request.tools = self._decode_tools(payload.get("tools") or [])

        text = payload.get("text")
        if isinstance(text, dict):
            fmt = text.get("format")
            if isinstance(fmt, dict) and fmt.get("type"):
                schema = {k: v for k, v in fmt.items() if k != "type"}
                request.response_format = ResponseFormat(type=fmt["type"], json_schema=schema or None)
            if text.get("verbosity"):
                request.verbosity = text["verbosity"]

        if payload.get("instructions"):
            request.messages.append(Message(role=Role.SYSTEM.value, content=payload["instructions"]))

        raw_input = payload.get("input")
        if isinstance(raw_input, str):
            request.messages.append(Message(role=Role.USER.value, content=raw_input))
        elif isinstance(raw_input, list):
            request.transformer_metadata.set(MetadataKey.RESPONSES_ARRAY_INPUT, True)
            request.messages.extend(self.decode_input(raw_input))
        elif raw_input is not None:
            raise InvalidRequestError("input must be a string or an array")
        return request

    @staticmethod
    def _decode_extras(payload: Dict[str, Any], metadata: TransformerMetadata) -> None:
        """Keep Responses-only knobs for a Responses upstream."""
        if isinstance(payload.get("include"), list):
            metadata.set(MetadataKey.RESPONSES_INCLUDE, list(payload["include"]))
        max_tool_calls = payload.get("max_tool_calls")
        if isinstance(max_tool_calls, int) and not isinstance(max_tool_calls, bool):
            metadata.set(MetadataKey.RESPONSES_MAX_TOOL_CALLS, max_tool_calls)
        if isinstance(payload.get("prompt_cache_retention"), str):
            metadata.set(MetadataKey.RESPONSES_PROMPT_CACHE_RETENTION, payload["prompt_cache_retention"])
        if isinstance(payload.get("truncation"), str):
            metadata.set(MetadataKey.RESPONSES_TRUNCATION, payload["truncation"])
        options = payload.get("stream_options")
        if isinstance(options, dict) and isinstance(options.get("include_obfuscation"), bool):
            metadata.set(MetadataKey.RESPONSES_INCLUDE_OBFUSCATION, options["include_obfuscation"])

    def decode_input(self, items: List[Any]) -> List[Message]:
        """
        Decode input items into messages.

        A reasoning item starts an assistant turn; the assistant message and
        function_call items that follow it join that same turn.
        """
        messages: List[Message] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            item_type = item.get("type") or "message"
            last = messages[-1] if messages else None

            if item_type == "message" or (item_type in _TEXT_ITEM_TYPES and item.get("role")):
                message = Message(
                    role=item.get("role") or Role.USER.value,
                    content=self._decode_content(item.get("content")),
                )
                if (
                    message.role == Role.ASSISTANT.value
                    and last is not None
                    and last.role == Role.ASSISTANT.value
                    and last.content.is_empty()
                    and not last.tool_calls
                ):
                    last.content = message.content
                else:
                    messages.append(message)
            elif item_type == "input_image":
                part = self._decode_part(item)
                messages.append(Message(role=Role.USER.value, content=[part] if part else None))
            elif item_type == "function_call":
                tool_call = ToolCall(
                    id=item.get("call_id") or item.get("id") or "",
                    function=FunctionCall(name=item.get("name") or "", arguments=item.get("arguments") or ""),
                )
                if last is not None and last.role == Role.ASSISTANT.value:
                    tool_call.index = len(last.tool_calls)
                    last.tool_calls.append(tool_call)
                else:
                    messages.append(Message(role=Role.ASSISTANT.value, tool_calls=[tool_call]))
            elif item_type == "function_call_output":
                messages.append(Message(
                    role=Role.TOOL.value,
                    tool_call_id=item.get("call_id") or "",
                    content=self._decode_content(item.get("output")),
                ))
            elif item_type == "reasoning":
                summary = "".join(
                    s.get("text", "") for s in item.get("summary") or [] if isinstance(s, dict)
                )
                messages.append(Message(
                    role=Role.ASSISTANT.value,
                    reasoning_content=summary or None,
                    reasoning_signature=encode_openai_encrypted(item.get("encrypted_content")),
                ))
        return messages

    def _decode_content(self, content: Any) -> MessageContent:
        if content is None:
            return MessageContent()
        if isinstance(content, str):
            return MessageContent(text=content)
        if not isinstance(content, list):
            raise InvalidRequestError("content must be a string or an array")

        parts = [p for p in (self._decode_part(c) for c in content if isinstance(c, dict)) if p is not None]
        if len(parts) == 1 and parts[0].type == "text":
            return MessageContent(text=parts[0].text or "")
        return MessageContent(parts=parts)

    @staticmethod
    def _decode_part(block: Dict[str, Any]) -> Optional[ContentPart]:
        block_type = block.get("type")
        if block_type in _TEXT_ITEM_TYPES:
            return ContentPart.text_part(block.get("text", ""))
        if block_type == "input_image":
            url = block.get("image_url")
            if isinstance(url, dict):
                url = url.get("url")
            if not url:
                return None
            return ContentPart.image_part(url, detail=block.get("detail"))
        if block_type == "input_file":
            url = block.get("file_data") or block.get("file_url")
            if not url:
                return None
            return ContentPart(type="document", document=Document(url=url))
        return None

    @staticmethod
    def _decode_tool_choice(choice: Any) -> ToolChoice:
        if isinstance(choice, str):
            return ToolChoice(mode=choice)
        if isinstance(choice, dict):
            if choice.get("name"):
                return ToolChoice(name=choice["name"])
            return ToolChoice(mode=choice.get("mode") or choice.get("type"))
        raise InvalidRequestError("tool_choice must be a string or an object")

    @staticmethod
    def _decode_tools(tools: List[Dict[str, Any]]) -> List[Tool]:
        result = []
        for tool in tools:
            tool_type = tool.get("type")
            if tool_type == "function":
                if not tool.get("name"):
                    raise InvalidRequestError("tool function name is required")
                result.append(Tool(function=Function(
                    name=tool["name"],
                    description=tool.get("description"),
                    parameters=tool.get("parameters"),
                    strict=tool.get("strict"),
                )))
            elif tool_type == "image_generation":
                result.append(Tool(
                    type=ToolType.IMAGE_GENERATION.value,
                    image_generation=ImageGeneration(
                        output_format=tool.get("output_format"),
                        size=tool.get("size"),
                        quality=tool.get("quality"),
                        background=tool.get("background"),
                        moderation=tool.get("moderation"),
                        output_compression=tool.get("output_compression"),
                        partial_images=tool.get("partial_images"),
                    ),
                ))
            elif tool_type in _WEB_SEARCH_TYPES:
                options = {k: v for k, v in tool.items() if k != "type"}
                result.append(Tool(type=ToolType.WEB_SEARCH.value, options=options))
        return result

    def decode_response(self, payload: Dict[str, Any], metadata: Optional[TransformerMetadata] = None) -> Response:
        """Decode a complete Responses object into a chat-shaped response."""
        image_format = metadata.get(MetadataKey.IMAGE_OUTPUT_FORMAT) if metadata else None
        texts: List[str] = []
        images: List[ContentPart] = []
        reasoning: List[str] = []
        signature: Optional[str] = None
        message = Message(role=Role.ASSISTANT.value)

        for item in payload.get("output") or []:
            if not isinstance(item, dict):
                continue
            item_type = item.get("type")
            if item_type == "message":
                for block in item.get("content") or []:
                    if isinstance(block, dict) and block.get("type") == "output_text":
                        texts.append(block.get("text", ""))
                    elif isinstance(block, dict) and block.get("type") == "refusal":
                        message.refusal = block.get("refusal")
            elif item_type == "function_call":
                message.tool_calls.append(ToolCall(
                    id=item.get("call_id") or item.get("id") or "",
                    function=FunctionCall(name=item.get("name") or "", arguments=item.get("arguments") or ""),
                    index=len(message.tool_calls),
                ))
            elif item_type == "reasoning":
                for summary in item.get("summary") or []:
                    if isinstance(summary, dict):
                        reasoning.append(summary.get("text", ""))
                signature = encode_openai_encrypted(item.get("encrypted_content")) or signature
            elif item_type == "image_generation_call" and item.get("result"):
                fmt = item.get("output_format") or image_format
                images.append(ContentPart.image_part(build_data_url(image_format_media_type(fmt), item["result"])))

        text = "".join(texts)
        if images:
            message.content = MessageContent(parts=([ContentPart.text_part(text)] if text else []) + images)
        else:
            message.content = MessageContent(text=text)
        message.reasoning_content = "".join(reasoning) or None
        message.reasoning_signature = signature

        return Response(
            id=payload.get("id") or "",
            object="chat.completion",
            created=payload.get("created_at") or 0,
            model=payload.get("model") or "",
            service_tier=payload.get("service_tier"),
            usage=from_responses_usage(payload.get("usage")),
            choices=[Choice(
                index=0,
                message=message,
                finish_reason=finish_from_status(payload.get("status"), bool(message.tool_calls)),
            )],
        )


class ResponsesEncoder:
    """Encodes the canonical model to Responses API payloads."""

    def encode_request(self, request: Request) -> Dict[str, Any]:
        """Encode a canonical request as a Responses create request."""
        metadata = request.transformer_metadata
        payload: Dict[str, Any] = {"model": request.model}

        instructions = [
            m.text() for m in request.messages
            if m.role in (Role.SYSTEM.value, Role.DEVELOPER.value) and m.text()
        ]
        if instructions:
            payload["instructions"] = "\n".join(instructions)
        payload["input"] = self.encode_input(request)

        for name in _SCALAR_FIELDS:
            value = getattr(request, name)
            if value is not None:
                payload[name] = value
        max_output = request.max_completion_tokens or request.max_tokens
        if max_output:
            payload["max_output_tokens"] = max_output
        if request.metadata:
            payload["metadata"] = dict(request.metadata)

        tools = self._encode_tools(request.tools)
        if tools:
            payload["tools"] = tools
            if request.tool_choice is not None:
                payload["tool_choice"] = self._encode_tool_choice(request.tool_choice)
        else:
            payload.pop("parallel_tool_calls", None)

        text: Dict[str, Any] = {}
        if request.response_format is not None:
            fmt: Dict[str, Any] = {"type": request.response_format.type}
            if request.response_format.json_schema:
                fmt.update(request.response_format.json_schema)
            text["format"] = fmt
        if request.verbosity:
            text["verbosity"] = request.verbosity
        if text:
            payload["text"] = text

        reasoning: Dict[str, Any] = {}
        if request.reasoning_effort:
            reasoning["effort"] = request.reasoning_effort
        elif request.reasoning_budget:
            reasoning["max_tokens"] = request.reasoning_budget
        if request.reasoning_summary:
            reasoning["summary"] = request.reasoning_summary
        if reasoning:
            payload["reasoning"] = reasoning

        if MetadataKey.RESPONSES_INCLUDE_OBFUSCATION in metadata:
            payload["stream_options"] = {"include_obfuscation": metadata.get(MetadataKey.RESPONSES_INCLUDE_OBFUSCATION)}
        for key in (
            MetadataKey.RESPONSES_INCLUDE,
            MetadataKey.RESPONSES_MAX_TOOL_CALLS,
            MetadataKey.RESPONSES_PROMPT_CACHE_RETENTION,
            MetadataKey.RESPONSES_TRUNCATION,
        ):
            if key in metadata:
                payload[key.value] = metadata.get(key)
        return payload

    def encode_input(self, request: Request) -> Any:
        """Encode the conversation as a string or an input item array."""
        messages = [m for m in request.messages if m.role not in (Role.SYSTEM.value, Role.DEVELOPER.value)]
        if (
            len(messages) == 1
            and messages[0].role == Role.USER.value
            and messages[0].content.parts is None
            and not request.transformer_metadata.get(MetadataKey.RESPONSES_ARRAY_INPUT, False)
        ):
            return messages[0].content.text or ""

        items: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == Role.TOOL.value:
                items.append(self._encode_tool_output(message))
            elif message.role == Role.ASSISTANT.value:
                items.extend(self._encode_assistant(message))
            else:
                items.append({
                    "type": "message",
                    "role": message.role or Role.USER.value,
                    "content": [self._encode_input_part(p) for p in message.content.iter_parts()],
                })
        return items

    @staticmethod
    def _encode_input_part(part: ContentPart) -> Dict[str, Any]:
        if part.type == "image_url" and part.image_url is not None:
            block: Dict[str, Any] = {"type": "input_image", "image_url": part.image_url.url}
            if part.image_url.detail:
                block["detail"] = part.image_url.detail
            return block
        if part.type == "document" and part.document is not None:
            if parse_data_url(part.document.url) is not None:
                return {"type": "input_file", "file_data": part.document.url}
            return {"type": "input_file", "file_url": part.document.url}
        return {"type": "input_text", "text": part.text or ""}

    def _encode_assistant(self, message: Message) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        # Reasoning can only be replayed to the vendor that encrypted it
        encrypted = decode_openai_encrypted(message.reasoning_signature)
        if encrypted:
            item = reasoning_item(new_item_id("rs"), message.reasoning_content or "", encrypted)
            items.append(item)

        text = message.text()
        if text:
            items.append({
                "type": "message",
                "role": Role.ASSISTANT.value,
                "status": STATUS_COMPLETED,
                "content": [{"type": "output_text", "text": text, "annotations": []}],
            })
        for tool_call in message.tool_calls:
            items.append({
                "type": "function_call",
                "call_id": tool_call.id,
                "name": tool_call.function.name,
                "arguments": tool_call.function.arguments,
            })
        return items

    def _encode_tool_output(self, message: Message) -> Dict[str, Any]:
        content = message.content
        if content.parts is not None and any(p.type != "text" for p in content.parts):
            output: Any = [self._encode_input_part(p) for p in content.parts]
        else:
            output = content.joined_text()
        return {"type": "function_call_output", "call_id": message.tool_call_id or "", "output": output}

    @staticmethod
    def _encode_tools(tools: List[Tool]) -> List[Dict[str, Any]]:
        result = []
        for tool in tools:
            if tool.type == ToolType.FUNCTION.value and tool.function is not None:
                item: Dict[str, Any] = {"type": "function", "name": tool.function.name}
                if tool.function.description is not None:
                    item["description"] = tool.function.description
                if tool.function.parameters is not None:
                    item["parameters"] = tool.function.parameters
                if tool.function.strict is not None:
                    item["strict"] = tool.function.strict
                result.append(item)
            elif tool.type == ToolType.IMAGE_GENERATION.value:
                item = {"type": "image_generation"}
                if tool.image_generation is not None:
                    options = vars(tool.image_generation)
                    item.update({k: v for k, v in options.items() if v is not None})
                result.append(item)
            elif tool.type == ToolType.WEB_SEARCH.value:
                result.append({"type": "web_search", **tool.options})
        return result

    @staticmethod
    def _encode_tool_choice(choice: ToolChoice) -> Any:
        if choice.is_named:
            return {"type": "function", "name": choice.name}
        return choice.mode or "auto"

    def encode_response(self, response: Response) -> Dict[str, Any]:
        """Encode a complete canonical response as a Responses object."""
        choice = response.choices[0] if response.choices else Choice()
        message = choice.body or Message(role=Role.ASSISTANT.value)
        output: List[Dict[str, Any]] = []

        encrypted = decode_openai_encrypted(message.reasoning_signature)
        if message.reasoning_content or encrypted:
            item = reasoning_item(new_item_id("rs"), message.reasoning_content or "", encrypted)
            item["status"] = STATUS_COMPLETED
            output.append(item)
        text = message.text()
        if text:
            output.append(message_item(new_item_id("msg"), text))
        for tool_call in message.tool_calls:
            output.append(function_call_item(
                new_item_id("fc"), tool_call.id, tool_call.function.name, tool_call.function.arguments,
            ))
        for part in message.content.iter_parts():
            if part.type == "image_url" and part.image_url is not None:
                data_url = parse_data_url(part.image_url.url)
                if data_url is not None:
                    output.append(image_generation_item(new_item_id("ig"), data_url.data))
        if not output:
            output.append(message_item(new_item_id("msg"), ""))

        payload: Dict[str, Any] = {
            "id": response.id or new_item_id("resp"),
            "object": RESPONSE_OBJECT,
            "created_at": response.created or int(time.time()),
            "model": response.model,
            "status": status_from_finish(choice.finish_reason),
            "output": output,
        }
        if response.usage is not None:
            payload["usage"] = to_responses_usage(response.usage)
        if response.service_tier:
            payload["service_tier"] = response.service_tier
        return payload
