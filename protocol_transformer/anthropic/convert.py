"""
Anthropic Messages Encoder/Decoder

Converts between the Anthropic Messages wire format and the canonical model.

Anthropic differs from the canonical (Chat Completions shaped) model in a few
structural ways:
- The system prompt is a top-level field, either a string or text blocks.
- Tool results are content blocks inside a user turn, not separate messages.
- Assistant turns carry thinking / redacted_thinking blocks next to text and
  tool_use blocks.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from protocol_transformer.canonical.metadata import MetadataKey
from protocol_transformer.canonical.types import (
    CacheControl,
    Choice,
    ContentPart,
    Document,
    FinishReason,
    Function,
    FunctionCall,
    ImageURL,
    Message,
    MessageContent,
    Request,
    Response,
    Role,
    Tool,
    ToolCall,
    ToolChoice,
    ToolType,
)
from protocol_transformer.config import get_settings
from protocol_transformer.errors import ErrorDetail, InvalidRequestError, UpstreamError
from protocol_transformer.httpmodels import HttpErrorResponse
from protocol_transformer.media import build_data_url, parse_data_url
from protocol_transformer.reasoning import (
    EFFORT_NONE,
    budget_first,
    budget_to_effort,
    is_anthropic_redacted,
    is_anthropic_signature,
)
from protocol_transformer.tool_args import dump_arguments, parse_arguments, repair_arguments
from protocol_transformer.usage import UsagePlatform, from_anthropic_usage, to_anthropic_usage

logger = logging.getLogger(__name__)

WEB_SEARCH_TOOL_TYPE = "web_search_20250305"
WEB_SEARCH_TOOL_NAME = "web_search"

STOP_REASON_TO_FINISH = {
    "end_turn": FinishReason.STOP.value,
    "stop_sequence": FinishReason.STOP.value,
    "pause_turn": FinishReason.STOP.value,
    "max_tokens": FinishReason.LENGTH.value,
    "tool_use": FinishReason.TOOL_CALLS.value,
    "refusal": FinishReason.CONTENT_FILTER.value,
}

FINISH_TO_STOP_REASON = {
    FinishReason.STOP.value: "end_turn",
    FinishReason.LENGTH.value: "max_tokens",
    FinishReason.TOOL_CALLS.value: "tool_use",
    FinishReason.CONTENT_FILTER.value: "refusal",
}


def finish_from_stop_reason(stop_reason: Optional[str]) -> Optional[str]:
    if not stop_reason:
        return None
    return STOP_REASON_TO_FINISH.get(stop_reason, FinishReason.STOP.value)


def stop_reason_from_finish(finish_reason: Optional[str]) -> Optional[str]:
    if not finish_reason:
        return None
    return FINISH_TO_STOP_REASON.get(finish_reason, "end_turn")


def _with_cache_control(block: Dict[str, Any], cache_control: Optional[CacheControl]) -> Dict[str, Any]:
    if cache_control is not None:
        block["cache_control"] = cache_control.to_dict()
    return block


# =============================================================================
# Decoder: Anthropic -> canonical
# =============================================================================


class AnthropicMessagesDecoder:
    """Decodes Anthropic Messages payloads to the canonical model."""

    def decode_request(self, payload: Dict[str, Any]) -> Request:
        """Decode an Anthropic Messages request."""
        messages = payload.get("messages")
        if not isinstance(messages, list):
            raise InvalidRequestError("messages must be an array")

        request = Request(
            model=payload.get("model") or "",
            max_tokens=payload.get("max_tokens"),
            temperature=payload.get("temperature"),
            top_p=payload.get("top_p"),
            top_k=payload.get("top_k"),
            stream=payload.get("stream"),
        )

        system = payload.get("system")
        if system is not None:
            request.messages.extend(self._decode_system(system))
            request.transformer_metadata.set(
                MetadataKey.ANTHROPIC_SYSTEM_ARRAY_FORMAT, isinstance(system, list),
            )

        for index, msg in enumerate(messages):
            request.messages.extend(self.decode_message(msg, index))

        stop = payload.get("stop_sequences")
        if isinstance(stop, list) and stop:
            request.stop = [s for s in stop if isinstance(s, str)]

        thinking = payload.get("thinking")
        if isinstance(thinking, dict) and thinking.get("type") == "enabled":
            budget = thinking.get("budget_tokens")
            if isinstance(budget, int):
                request.reasoning_budget = budget
                request.reasoning_effort = budget_to_effort(budget)

        request.tools = self._decode_tools(payload.get("tools") or [])
        tool_choice = payload.get("tool_choice")
        if isinstance(tool_choice, dict):
            request.tool_choice = self._decode_tool_choice(tool_choice)
            if tool_choice.get("disable_parallel_tool_use") is not None:
                request.parallel_tool_calls = not tool_choice["disable_parallel_tool_use"]

        metadata = payload.get("metadata")
        if isinstance(metadata, dict) and metadata.get("user_id"):
            request.metadata["user_id"] = str(metadata["user_id"])

        return request

    def _decode_system(self, system: Any) -> List[Message]:
        """One system message for a string prompt, one per text block otherwise."""
        if isinstance(system, str):
            return [Message(role=Role.SYSTEM.value, content=system)]
        if not isinstance(system, list):
            raise InvalidRequestError("system must be a string or an array of text blocks")

        result = []
        for block in system:
            if not isinstance(block, dict) or block.get("type") != "text":
                raise InvalidRequestError("system prompt must be text")
            result.append(Message(
                role=Role.SYSTEM.value,
                content=block.get("text", ""),
                cache_control=CacheControl.from_dict(block.get("cache_control")),
            ))
        return result

    def decode_message(self, msg: Dict[str, Any], index: int) -> List[Message]:
        """
        Decode one Anthropic turn.

        A user turn holding tool_result blocks becomes one tool message per
        result plus a user message for the remaining blocks, all sharing
        `message_index` so the encoder can put them back into one turn.
        """
        role = msg.get("role")
        content = msg.get("content")
        if role not in (Role.USER.value, Role.ASSISTANT.value):
            raise InvalidRequestError(f"unsupported message role: {role}")

        if isinstance(content, str) or content is None:
            return [Message(role=role, content=content or "")]
        if not isinstance(content, list):
            raise InvalidRequestError("message content must be a string or an array")

        if role == Role.ASSISTANT.value:
            return [self._decode_assistant(content)]

        tool_results = [b for b in content if isinstance(b, dict) and b.get("type") == "tool_result"]
        if not tool_results:
            return [Message(role=role, content=self._decode_blocks(content))]

        result = [self._decode_tool_result(block, index) for block in tool_results]
        rest = [b for b in content if not (isinstance(b, dict) and b.get("type") == "tool_result")]
        if rest:
            result.append(Message(role=role, content=self._decode_blocks(rest), message_index=index))
        return result

    def _decode_assistant(self, content: List[Any]) -> Message:
        message = Message(role=Role.ASSISTANT.value)
        parts: List[ContentPart] = []
        reasoning: List[str] = []

        for block in content:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "thinking":
                reasoning.append(block.get("thinking") or "")
                if block.get("signature"):
                    message.reasoning_signature = block["signature"]
            elif block_type == "redacted_thinking":
                message.redacted_reasoning_content = block.get("data")
            elif block_type == "tool_use":
                message.tool_calls.append(ToolCall(
                    id=block.get("id") or "",
                    function=FunctionCall(name=block.get("name") or "", arguments=dump_arguments(block.get("input"))),
                    index=len(message.tool_calls),
                    cache_control=CacheControl.from_dict(block.get("cache_control")),
                ))
            else:
                part = self._decode_block(block)
                if part is not None:
                    parts.append(part)

        if reasoning:
            message.reasoning_content = "".join(reasoning)
        message.content = MessageContent(parts=parts)
        return message

    def _decode_tool_result(self, block: Dict[str, Any], index: int) -> Message:
        content = block.get("content")
        if isinstance(content, list):
            value: Any = self._decode_blocks(content)
        else:
            value = content if isinstance(content, str) else ""
        return Message(
            role=Role.TOOL.value,
            content=value,
            tool_call_id=block.get("tool_use_id") or "",
            tool_call_is_error=block.get("is_error"),
            message_index=index,
            cache_control=CacheControl.from_dict(block.get("cache_control")),
        )

    def _decode_blocks(self, blocks: List[Any]) -> MessageContent:
        parts = []
        for block in blocks:
            if isinstance(block, dict):
                part = self._decode_block(block)
                if part is not None:
                    parts.append(part)
        return MessageContent(parts=parts)

    def _decode_block(self, block: Dict[str, Any]) -> Optional[ContentPart]:
        """Decode a text, image or document block."""
        block_type = block.get("type")
        cache_control = CacheControl.from_dict(block.get("cache_control"))

        if block_type == "text":
            return ContentPart.text_part(block.get("text", ""), cache_control=cache_control)

        if block_type in ("image", "document"):
            source = block.get("source") or {}
            if source.get("type") == "base64":
                url = build_data_url(source.get("media_type", ""), source.get("data", ""))
            else:
                url = source.get("url", "")
            if block_type == "image":
                return ContentPart(type="image_url", image_url=ImageURL(url=url), cache_control=cache_control)
            return ContentPart(
                type="document",
                document=Document(url=url, media_type=source.get("media_type")),
                cache_control=cache_control,
            )

        logger.debug("Ignoring Anthropic content block of type %s", block_type)
        return None

    def _decode_tools(self, tools: List[Dict[str, Any]]) -> List[Tool]:
        result = []
        for tool in tools:
            tool_type = tool.get("type")
            if tool_type and tool_type.startswith("web_search"):
                options = {k: v for k, v in tool.items() if k not in ("type", "name")}
                result.append(Tool(type=ToolType.WEB_SEARCH.value, options=options))
                continue
            if tool_type not in (None, "custom"):
                logger.debug("Ignoring Anthropic server tool %s", tool_type)
                continue
            if not tool.get("name"):
                raise InvalidRequestError("tool name is required")
            result.append(Tool(
                type=ToolType.FUNCTION.value,
                function=Function(
                    name=tool["name"],
                    description=tool.get("description"),
                    parameters=tool.get("input_schema"),
                ),
                cache_control=CacheControl.from_dict(tool.get("cache_control")),
            ))
        return result

    def _decode_tool_choice(self, choice: Dict[str, Any]) -> ToolChoice:
        choice_type = choice.get("type")
        if choice_type == "tool":
            return ToolChoice(name=choice.get("name"))
        if choice_type == "any":
            return ToolChoice(mode="required")
        return ToolChoice(mode=choice_type or "auto")

    def decode_response(
        self,
        payload: Dict[str, Any],
        platform: UsagePlatform = UsagePlatform.EXCLUDES_CACHE,
    ) -> Response:
        """Decode an Anthropic Message response."""
        message = Message(role=Role.ASSISTANT.value)
        texts: List[str] = []
        reasoning: List[str] = []

        for block in payload.get("content") or []:
            block_type = block.get("type")
            if block_type == "text":
                texts.append(block.get("text") or "")
            elif block_type == "thinking":
                reasoning.append(block.get("thinking") or "")
                if block.get("signature"):
                    message.reasoning_signature = block["signature"]
            elif block_type == "redacted_thinking":
                message.redacted_reasoning_content = block.get("data")
            elif block_type == "tool_use":
                message.tool_calls.append(ToolCall(
                    id=block.get("id") or "",
                    function=FunctionCall(
                        name=block.get("name") or "",
                        arguments=repair_arguments(dump_arguments(block.get("input"))),
                    ),
                    index=len(message.tool_calls),
                ))

        if texts:
            message.content = MessageContent(text="".join(texts))
        if reasoning:
            message.reasoning_content = "".join(reasoning)

        return Response(
            id=payload.get("id") or "",
            object="chat.completion",
            created=0,
            model=payload.get("model") or "",
            choices=[Choice(
                index=0,
                message=message,
                finish_reason=finish_from_stop_reason(payload.get("stop_reason")),
            )],
            usage=from_anthropic_usage(payload.get("usage"), platform),
        )


# =============================================================================
# Encoder: canonical -> Anthropic
# =============================================================================


class AnthropicMessagesEncoder:
    """Encodes the canonical model to Anthropic Messages payloads."""

    def __init__(self, effort_budgets: Optional[Dict[str, int]] = None):
        """
        Args:
            effort_budgets: Per-upstream reasoning effort -> thinking budget overrides
        """
        self.effort_budgets = effort_budgets

    def encode_request(self, request: Request) -> Dict[str, Any]:
        """Encode a canonical request as an Anthropic Messages request."""
        max_tokens = request.max_tokens or request.max_completion_tokens or get_settings().DEFAULT_MAX_TOKENS
        payload: Dict[str, Any] = {
            "model": request.model,
            "max_tokens": max_tokens,
            "messages": self.encode_messages(request.messages),
        }

        array_format = bool(request.transformer_metadata.get(MetadataKey.ANTHROPIC_SYSTEM_ARRAY_FORMAT))
        system = self._encode_system(request.messages, array_format)
        if system is not None:
            payload["system"] = system

        for name in ("temperature", "top_p", "top_k", "stream"):
            value = getattr(request, name)
            if value is not None:
                payload[name] = value
        if request.stop:
            payload["stop_sequences"] = list(request.stop)

        thinking = self._encode_thinking(request)
        if thinking is not None:
            payload["thinking"] = thinking

        tools = self._encode_tools(request.tools)
        if tools:
            payload["tools"] = tools
            tool_choice = self._encode_tool_choice(request)
            if tool_choice is not None:
                payload["tool_choice"] = tool_choice

        if request.metadata.get("user_id"):
            payload["metadata"] = {"user_id": request.metadata["user_id"]}
        return payload

    def _encode_thinking(self, request: Request) -> Optional[Dict[str, Any]]:
        """An explicit budget wins over the effort and over the effort mapping."""
        if request.reasoning_effort == EFFORT_NONE:
            return None
        budget = budget_first(request.reasoning_budget, request.reasoning_effort, self.effort_budgets)
        if not budget:
            return None
        return {"type": "enabled", "budget_tokens": budget}

    def _encode_system(self, messages: List[Message], array_format: bool) -> Any:
        system = [m for m in messages if m.role in (Role.SYSTEM.value, Role.DEVELOPER.value)]
        if not system:
            return None
        if len(system) == 1 and not array_format and system[0].cache_control is None:
            return system[0].text()
        return [
            _with_cache_control({"type": "text", "text": m.text()}, m.cache_control)
            for m in system
        ]

    def encode_messages(self, messages: List[Message]) -> List[Dict[str, Any]]:
        """
        Encode the conversation, skipping system messages.

        Consecutive tool messages become one user turn of tool_result blocks;
        a user message sharing their message_index joins that turn.
        """
        result: List[Dict[str, Any]] = []
        merged_indexes = set()
        i = 0
        while i < len(messages):
            message = messages[i]
            role = message.role

            if role in (Role.SYSTEM.value, Role.DEVELOPER.value):
                i += 1
                continue

            if role == Role.TOOL.value:
                blocks = []
                index = message.message_index
                while i < len(messages) and messages[i].role == Role.TOOL.value:
                    blocks.append(self._encode_tool_result(messages[i]))
                    i += 1
                if index is not None:
                    for follower in messages[i:]:
                        if follower.role == Role.USER.value and follower.message_index == index:
                            blocks.extend(self._encode_parts(follower.content.iter_parts()))
                            merged_indexes.add(index)
                            break
                result.append({"role": Role.USER.value, "content": blocks})
                continue

            if role == Role.USER.value:
                if message.message_index is None or message.message_index not in merged_indexes:
                    result.append({"role": role, "content": self._encode_user_content(message)})
            elif role == Role.ASSISTANT.value:
                result.append({"role": role, "content": self._encode_assistant_content(message)})
            i += 1
        return result

    def _encode_user_content(self, message: Message) -> Any:
        if message.content.parts is None and message.cache_control is None:
            return message.content.text or ""
        blocks = self._encode_parts(message.content.iter_parts())
        if message.cache_control is not None and blocks:
            _with_cache_control(blocks[-1], message.cache_control)
        return blocks

    def _encode_assistant_content(self, message: Message) -> Any:
        has_redacted = is_anthropic_redacted(message.redacted_reasoning_content)
        if (
            message.content.parts is None
            and not message.reasoning_content
            and not has_redacted
            and not message.tool_calls
            and message.cache_control is None
        ):
            return message.content.text or ""

        blocks: List[Dict[str, Any]] = []
        if message.reasoning_content:
            thinking: Dict[str, Any] = {"type": "thinking", "thinking": message.reasoning_content}
            if is_anthropic_signature(message.reasoning_signature):
                thinking["signature"] = message.reasoning_signature
            blocks.append(thinking)
        if has_redacted:
            blocks.append({"type": "redacted_thinking", "data": message.redacted_reasoning_content})

        blocks.extend(self._encode_parts(message.content.iter_parts()))
        for tool_call in message.tool_calls:
            blocks.append(_with_cache_control({
                "type": "tool_use",
                "id": tool_call.id,
                "name": tool_call.function.name,
                "input": parse_arguments(tool_call.function.arguments),
            }, tool_call.cache_control))

        if message.cache_control is not None and blocks:
            _with_cache_control(blocks[-1], message.cache_control)
        return blocks

    def _encode_tool_result(self, message: Message) -> Dict[str, Any]:
        block: Dict[str, Any] = {"type": "tool_result", "tool_use_id": message.tool_call_id or ""}
        if message.content.parts is not None:
            block["content"] = self._encode_parts(message.content.parts)
        else:
            block["content"] = message.content.text or ""
        if message.tool_call_is_error is not None:
            block["is_error"] = message.tool_call_is_error
        return _with_cache_control(block, message.cache_control)

    def _encode_parts(self, parts: List[ContentPart]) -> List[Dict[str, Any]]:
        blocks = []
        for part in parts:
            block = self._encode_part(part)
            if block is not None:
                blocks.append(block)
        return blocks

    def _encode_part(self, part: ContentPart) -> Optional[Dict[str, Any]]:
        """Encode one part; data URLs become base64 sources."""
        if part.type == "text":
            return _with_cache_control({"type": "text", "text": part.text or ""}, part.cache_control)

        if part.type == "image_url" and part.image_url is not None:
            block_type, url, media_type = "image", part.image_url.url, None
        elif part.type == "document" and part.document is not None:
            block_type, url, media_type = "document", part.document.url, part.document.media_type
        else:
            logger.debug("Dropping %s content part unsupported by Anthropic", part.type)
            return None

        data_url = parse_data_url(url)
        if data_url is not None:
            source = {
                "type": "base64",
                "media_type": media_type or data_url.media_type,
                "data": data_url.data,
            }
        else:
            source = {"type": "url", "url": url}
        return _with_cache_control({"type": block_type, "source": source}, part.cache_control)

    def _encode_tools(self, tools: List[Tool]) -> List[Dict[str, Any]]:
        result = []
        for tool in tools:
            if tool.type == ToolType.WEB_SEARCH.value:
                native = {"type": WEB_SEARCH_TOOL_TYPE, "name": WEB_SEARCH_TOOL_NAME}
                native.update(tool.options)
                result.append(native)
                continue
            if tool.type != ToolType.FUNCTION.value or tool.function is None:
                continue
            encoded: Dict[str, Any] = {
                "name": tool.function.name,
                "input_schema": tool.function.parameters or {"type": "object", "properties": {}},
            }
            if tool.function.description:
                encoded["description"] = tool.function.description
            result.append(_with_cache_control(encoded, tool.cache_control))
        return result

    def _encode_tool_choice(self, request: Request) -> Optional[Dict[str, Any]]:
        choice = request.tool_choice
        result: Optional[Dict[str, Any]] = None
        if choice is not None and choice.is_named:
            result = {"type": "tool", "name": choice.name}
        elif choice is not None and choice.mode == "required":
            result = {"type": "any"}
        elif choice is not None and choice.mode in ("auto", "none"):
            result = {"type": choice.mode}

        if request.parallel_tool_calls is False:
            result = result or {"type": "auto"}
            result["disable_parallel_tool_use"] = True
        return result

    def encode_response(self, response: Response) -> Dict[str, Any]:
        """Encode a complete canonical response as an Anthropic Message."""
        choice = response.choices[0] if response.choices else Choice()
        message = choice.body or Message(role=Role.ASSISTANT.value)

        signature = message.reasoning_signature if is_anthropic_signature(message.reasoning_signature) else ""
        content: List[Dict[str, Any]] = []
        if message.reasoning_content:
            content.append({
                "type": "thinking",
                "thinking": message.reasoning_content,
                "signature": signature,
            })
        if is_anthropic_redacted(message.redacted_reasoning_content):
            content.append({"type": "redacted_thinking", "data": message.redacted_reasoning_content})
        text = message.text()
        if text:
            content.append({"type": "text", "text": text})
        for tool_call in message.tool_calls:
            content.append({
                "type": "tool_use",
                "id": tool_call.id,
                "name": tool_call.function.name,
                "input": parse_arguments(tool_call.function.arguments),
            })
        if not content:
            content.append({"type": "text", "text": ""})

        return {
            "id": response.id,
            "type": "message",
            "role": "assistant",
            "model": response.model,
            "content": content,
            "stop_reason": stop_reason_from_finish(choice.finish_reason),
            "stop_sequence": None,
            "usage": to_anthropic_usage(response.usage),
        }


# =============================================================================
# Errors
# =============================================================================


def upstream_error_from_event(payload: Dict[str, Any], status_code: int = 500) -> UpstreamError:
    """Build an UpstreamError from `{"type": "error", "error": {...}}`."""
    body = payload.get("error")
    if not isinstance(body, dict):
        body = {"message": str(body)}
    return UpstreamError(status_code, ErrorDetail(
        message=str(body.get("message") or ""),
        type=str(body.get("type") or "api_error"),
        request_id=str(payload.get("request_id") or ""),
    ))


def parse_anthropic_error(error: HttpErrorResponse) -> UpstreamError:
    """
    Parse an Anthropic error body.

    Anthropic-compatible hosts sometimes answer with the OpenAI envelope, so
    any `{"error": {"message": ...}}` shape is accepted; otherwise the trimmed
    body, then the HTTP status text, becomes the message.
    """
    parsed = None
    try:
        parsed = json.loads(error.body) if error.body else None
    except ValueError:
        parsed = None

    if isinstance(parsed, dict) and isinstance(parsed.get("error"), dict) and parsed["error"].get("message"):
        result = upstream_error_from_event(parsed, error.status_code)
        if not result.detail.request_id:
            result.detail.request_id = error.headers.get("request-id", "")
        return result

    message = error.body.decode("utf-8", errors="replace").strip() or error.status
    return UpstreamError(error.status_code, ErrorDetail(
        message=message,
        type="api_error",
        request_id=error.headers.get("request-id", ""),
    ))
