"""
Gemini generateContent Encoder/Decoder

Converts between the Gemini GenerateContentRequest / GenerateContentResponse
wire format and the canonical model.

Gemini specifics:
- Conversation turns are `contents` with role user or model, each a list
  of typed parts (text, inlineData, fileData, functionCall, functionResponse).
- Thinking arrives as text parts flagged `thought`, and an opaque
  `thoughtSignature` may sit on any part.
- Function calls carry parsed `args` objects rather than JSON strings, and
  their ids are optional.
"""

import json
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

from protocol_transformer.canonical.metadata import MetadataKey
from protocol_transformer.canonical.types import (
    Choice,
    ContentPart,
    Document,
    FinishReason,
    Function,
    FunctionCall,
    Message,
    MessageContent,
    Request,
    Response,
    ResponseFormat,
    Role,
    Tool,
    ToolCall,
    ToolChoice,
    ToolType,
)
from protocol_transformer.config import get_settings
from protocol_transformer.errors import ErrorDetail, UpstreamError
from protocol_transformer.httpmodels import HttpErrorResponse
from protocol_transformer.media import build_data_url, parse_data_url
from protocol_transformer.reasoning import (
    EFFORT_HIGH,
    EFFORT_LOW,
    EFFORT_MEDIUM,
    EFFORT_NONE,
    budget_to_effort,
    decode_gemini_signature,
    effort_to_budget,
    encode_gemini_signature,
)
from protocol_transformer.tool_args import parse_arguments
from protocol_transformer.usage import from_gemini_usage, to_gemini_usage

logger = logging.getLogger(__name__)

ROLE_MODEL = "model"

# Sent on function calls that come without a signature; Gemini 3 rejects unsigned calls
DUMMY_THOUGHT_SIGNATURE = "context_engineering_is_the_way_to_go"

_CONTENT_FILTER_REASONS = frozenset({
    "SAFETY",
    "RECITATION",
    "BLOCKLIST",
    "PROHIBITED_CONTENT",
    "SPII",
    "IMAGE_SAFETY",
})

_FINISH_TO_GEMINI = {
    FinishReason.STOP.value: "STOP",
    FinishReason.LENGTH.value: "MAX_TOKENS",
    FinishReason.CONTENT_FILTER.value: "SAFETY",
    FinishReason.TOOL_CALLS.value: "STOP",
}

_TOOL_MODES = {"AUTO": "auto", "NONE": "none", "ANY": "required", "VALIDATED": "auto"}

_NATIVE_TOOLS = {
    "googleSearch": ToolType.GOOGLE_SEARCH,
    "codeExecution": ToolType.CODE_EXECUTION,
    "urlContext": ToolType.URL_CONTEXT,
}

# Schema keywords Gemini function declarations reject
_UNSUPPORTED_SCHEMA_KEYS = ("$schema", "additionalProperties")


def finish_from_gemini(reason: Optional[str], has_tool_calls: bool = False) -> Optional[str]:
    if not reason or reason == "FINISH_REASON_UNSPECIFIED":
        return None
    if reason in _CONTENT_FILTER_REASONS:
        return FinishReason.CONTENT_FILTER.value
    if reason == "MAX_TOKENS":
        return FinishReason.LENGTH.value
    if has_tool_calls:
        return FinishReason.TOOL_CALLS.value
    return FinishReason.STOP.value


def finish_to_gemini(finish_reason: Optional[str]) -> Optional[str]:
    if not finish_reason:
        return None
    return _FINISH_TO_GEMINI.get(finish_reason, "STOP")


def clean_schema(schema: Any) -> Any:
    """Recursively drop schema keywords Gemini does not accept."""
    if isinstance(schema, dict):
        return {k: clean_schema(v) for k, v in schema.items() if k not in _UNSUPPORTED_SCHEMA_KEYS}
    if isinstance(schema, list):
        return [clean_schema(v) for v in schema]
    return schema


def lower_schema_types(schema: Any) -> Any:
    """Lowercase OpenAPI style `type` values (OBJECT, STRING) into JSON Schema ones."""
    if isinstance(schema, dict):
        result = {}
        for key, value in schema.items():
            if key == "type" and isinstance(value, str):
                result[key] = value.lower()
            else:
                result[key] = lower_schema_types(value)
        return result
    if isinstance(schema, list):
        return [lower_schema_types(v) for v in schema]
    return schema


def _is_document_type(mime_type: str) -> bool:
    return not mime_type.startswith(("image/", "audio/", "video/"))


class GeminiDecoder:
    """Decodes Gemini payloads to the canonical model."""

    def decode_request(self, payload: Dict[str, Any]) -> Request:
        """Decode a GenerateContentRequest; model and stream come from the URL."""
        request = Request()
        config = payload.get("generationConfig")
        if isinstance(config, dict):
            self._decode_generation_config(config, request)

        system = payload.get("systemInstruction")
        if isinstance(system, dict):
            text = "".join(p.get("text", "") for p in system.get("parts") or [] if isinstance(p, dict))
            if text:
                request.messages.append(Message(role=Role.SYSTEM.value, content=text))

        for index, content in enumerate(payload.get("contents") or []):
            if isinstance(content, dict):
                request.messages.extend(self._decode_content(content, index, request.messages))

        request.tools = self._decode_tools(payload.get("tools") or [])
        calling = (payload.get("toolConfig") or {}).get("functionCallingConfig")
        if isinstance(calling, dict):
            request.tool_choice = self._decode_tool_config(calling)
        return request

    @staticmethod
    def _decode_generation_config(config: Dict[str, Any], request: Request) -> None:
        if config.get("maxOutputTokens"):
            request.max_tokens = config["maxOutputTokens"]
        request.temperature = config.get("temperature")
        request.top_p = config.get("topP")
        request.top_k = config.get("topK")
        request.presence_penalty = config.get("presencePenalty")
        request.frequency_penalty = config.get("frequencyPenalty")
        request.seed = config.get("seed")
        if config.get("candidateCount"):
            request.n = config["candidateCount"]
        if config.get("stopSequences"):
            request.stop = list(config["stopSequences"])
        if config.get("responseModalities"):
            request.modalities = [str(m).lower() for m in config["responseModalities"]]

        if config.get("responseMimeType") == "application/json":
            schema = config.get("responseJsonSchema") or config.get("responseSchema")
            if schema:
                request.response_format = ResponseFormat(
                    type="json_schema",
                    json_schema={"name": "response", "schema": lower_schema_types(schema)},
                )
            else:
                request.response_format = ResponseFormat(type="json_object")

        thinking = config.get("thinkingConfig")
        if isinstance(thinking, dict):
            level = str(thinking.get("thinkingLevel") or "").lower()
            budget = thinking.get("thinkingBudget")
            if level:
                request.reasoning_effort = EFFORT_LOW if level == "minimal" else level
            elif isinstance(budget, int) and budget >= 0:
                request.reasoning_effort = EFFORT_NONE if budget == 0 else budget_to_effort(budget)
            else:
                request.reasoning_effort = EFFORT_MEDIUM
            # -1 asks Gemini for a dynamic budget
            if isinstance(budget, int) and budget > 0:
                request.reasoning_budget = budget

    def _decode_content(self, content: Dict[str, Any], index: int, previous: List[Message]) -> List[Message]:
        """
        Decode one content turn.

        functionResponse parts become tool messages sharing the turn's
        message index; everything else forms a single message.
        """
        role = Role.ASSISTANT.value if content.get("role") == ROLE_MODEL else Role.USER.value
        message = Message(role=role, message_index=index)
        parts: List[ContentPart] = []
        reasoning: List[str] = []
        tool_messages: List[Message] = []

        for position, part in enumerate(content.get("parts") or []):
            if not isinstance(part, dict):
                continue
            if message.redacted_reasoning_content is None and part.get("thoughtSignature"):
                message.redacted_reasoning_content = encode_gemini_signature(part["thoughtSignature"])

            if part.get("functionCall"):
                call = part["functionCall"]
                message.tool_calls.append(ToolCall(
                    id=call.get("id") or f"call_{index}_{position}",
                    function=FunctionCall(name=call.get("name") or "", arguments=json.dumps(call.get("args") or {})),
                    index=len(message.tool_calls),
                ))
            elif part.get("functionResponse"):
                tool_messages.append(self._decode_function_response(part["functionResponse"], index, previous))
            elif part.get("text") is not None and part.get("thought"):
                reasoning.append(part["text"])
            elif part.get("text") is not None:
                parts.append(ContentPart.text_part(part["text"]))
            elif isinstance(part.get("inlineData"), dict):
                blob = part["inlineData"]
                mime_type = blob.get("mimeType") or "application/octet-stream"
                parts.append(self._media_part(build_data_url(mime_type, blob.get("data", "")), mime_type))
            elif isinstance(part.get("fileData"), dict):
                file = part["fileData"]
                parts.append(self._media_part(file.get("fileUri", ""), file.get("mimeType") or "image/*"))

        if reasoning:
            message.reasoning_content = "".join(reasoning)
        if len(parts) == 1 and parts[0].type == "text":
            message.content = MessageContent(text=parts[0].text)
        elif parts:
            message.content = MessageContent(parts=parts)

        messages = []
        if not message.content.is_empty() or message.tool_calls or message.reasoning_content:
            messages.append(message)
        return tool_messages + messages

    @staticmethod
    def _media_part(url: str, mime_type: str) -> ContentPart:
        if _is_document_type(mime_type):
            return ContentPart(type="document", document=Document(url=url, media_type=mime_type))
        return ContentPart.image_part(url)

    @staticmethod
    def _decode_function_response(response: Dict[str, Any], index: int, previous: List[Message]) -> Message:
        name = response.get("name") or ""
        call_id = response.get("id") or ""
        if not call_id:
            # Match the most recent call of the same function
            for message in reversed(previous):
                match = next((tc for tc in reversed(message.tool_calls) if tc.function.name == name), None)
                if match is not None:
                    call_id = match.id
                    break
        return Message(
            role=Role.TOOL.value,
            content=json.dumps(response.get("response") or {}),
            tool_call_id=call_id,
            tool_call_name=name,
            message_index=index,
        )

    @staticmethod
    def _decode_tools(tools: List[Dict[str, Any]]) -> List[Tool]:
        result = []
        for tool in tools:
            if not isinstance(tool, dict):
                continue
            for declaration in tool.get("functionDeclarations") or []:
                parameters = declaration.get("parameters") or declaration.get("parametersJsonSchema")
                result.append(Tool(function=Function(
                    name=declaration.get("name") or "",
                    description=declaration.get("description"),
                    parameters=lower_schema_types(parameters) if parameters is not None else None,
                )))
            for key, tool_type in _NATIVE_TOOLS.items():
                if key in tool:
                    result.append(Tool(type=tool_type.value, options=dict(tool[key] or {})))
        return result

    @staticmethod
    def _decode_tool_config(calling: Dict[str, Any]) -> ToolChoice:
        names = calling.get("allowedFunctionNames") or []
        mode = str(calling.get("mode") or "AUTO").upper()
        if mode == "ANY" and len(names) == 1:
            return ToolChoice(name=names[0])
        return ToolChoice(mode=_TOOL_MODES.get(mode, "auto"))

    def decode_response(
        self,
        payload: Dict[str, Any],
        stream: bool = False,
        tool_index_offset: int = 0,
    ) -> Tuple[Response, int]:
        """
        Decode a GenerateContentResponse.

        Args:
            payload: Full response, or one stream chunk
            stream: Fill choice deltas instead of messages
            tool_index_offset: Index given to the first function call, so
                indexes keep counting across stream chunks

        Returns:
            Tuple of (response, next tool call index)
        """
        response = Response(
            id=payload.get("responseId") or f"chatcmpl-{uuid.uuid4()}",
            object="chat.completion.chunk" if stream else "chat.completion",
            created=int(time.time()),
            model=payload.get("modelVersion") or "",
            usage=from_gemini_usage(payload.get("usageMetadata")),
        )
        next_index = tool_index_offset
        for position, candidate in enumerate(payload.get("candidates") or []):
            choice, next_index = self._decode_candidate(candidate, position, stream, next_index)
            response.choices.append(choice)

        feedback = payload.get("promptFeedback")
        if not response.choices and isinstance(feedback, dict) and feedback.get("blockReason"):
            message = Message(role=Role.ASSISTANT.value, content="")
            response.choices.append(Choice(
                index=0,
                message=None if stream else message,
                delta=message if stream else None,
                finish_reason=FinishReason.CONTENT_FILTER.value,
            ))
        return response, next_index

    def _decode_candidate(
        self,
        candidate: Dict[str, Any],
        position: int,
        stream: bool,
        next_index: int,
    ) -> Tuple[Choice, int]:
        choice = Choice(index=candidate.get("index", position))
        message = None
        content = candidate.get("content")
        if isinstance(content, dict):
            message = Message(role=Role.ASSISTANT.value)
            texts: List[str] = []
            media: List[ContentPart] = []
            reasoning: List[str] = []
            for part in content.get("parts") or []:
                if not isinstance(part, dict):
                    continue
                if message.redacted_reasoning_content is None and part.get("thoughtSignature"):
                    message.redacted_reasoning_content = encode_gemini_signature(part["thoughtSignature"])
                if part.get("functionCall"):
                    call = part["functionCall"]
                    message.tool_calls.append(ToolCall(
                        id=call.get("id") or f"call_{uuid.uuid4().hex[:24]}",
                        function=FunctionCall(name=call.get("name") or "", arguments=json.dumps(call.get("args") or {})),
                        index=next_index,
                    ))
                    next_index += 1
                elif part.get("text") and part.get("thought"):
                    reasoning.append(part["text"])
                elif part.get("text"):
                    texts.append(part["text"])
                elif isinstance(part.get("inlineData"), dict):
                    blob = part["inlineData"]
                    mime_type = blob.get("mimeType") or "application/octet-stream"
                    media.append(self._media_part(build_data_url(mime_type, blob.get("data", "")), mime_type))

            text = "".join(texts)
            if media:
                message.content = MessageContent(parts=([ContentPart.text_part(text)] if text else []) + media)
            elif texts:
                message.content = MessageContent(text=text)
            message.reasoning_content = "".join(reasoning) or None

        if stream:
            choice.delta = message
        else:
            choice.message = message
        choice.finish_reason = finish_from_gemini(
            candidate.get("finishReason"),
            bool(message is not None and message.tool_calls),
        )
        if isinstance(candidate.get("groundingMetadata"), dict):
            choice.transformer_metadata.set(MetadataKey.GEMINI_GROUNDING_METADATA, candidate["groundingMetadata"])
        return choice, next_index


class GeminiEncoder:
    """Encodes the canonical model to Gemini payloads."""

    def __init__(self, effort_budgets: Optional[Dict[str, int]] = None):
        """
        Args:
            effort_budgets: Per-upstream effort -> thinkingBudget overrides
        """
        self.effort_budgets = effort_budgets

    def encode_request(self, request: Request) -> Dict[str, Any]:
        """Encode a canonical request as a GenerateContentRequest (model goes in the URL)."""
        payload: Dict[str, Any] = {}
        config = self._encode_generation_config(request)
        if config:
            payload["generationConfig"] = config

        system_parts: List[Dict[str, Any]] = []
        contents: List[Dict[str, Any]] = []
        for message in request.messages:
            if message.role in (Role.SYSTEM.value, Role.DEVELOPER.value):
                system_parts.extend({"text": p.text or ""} for p in message.content.iter_parts() if p.type == "text")
            elif message.role == Role.TOOL.value:
                self._append_tool_result(contents, message)
            else:
                content = self.encode_message(message)
                if content is not None:
                    contents.append(content)
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        payload["contents"] = contents

        tools = self._encode_tools(request.tools)
        if tools:
            payload["tools"] = tools
        if request.tool_choice is not None:
            payload["toolConfig"] = {"functionCallingConfig": self._encode_tool_choice(request.tool_choice)}
        return payload

    def _encode_generation_config(self, request: Request) -> Dict[str, Any]:
        config: Dict[str, Any] = {}
        max_tokens = request.max_tokens or request.max_completion_tokens
        if max_tokens:
            config["maxOutputTokens"] = max_tokens
        for key, value in (
            ("temperature", request.temperature),
            ("topP", request.top_p),
            ("topK", request.top_k),
            ("presencePenalty", request.presence_penalty),
            ("frequencyPenalty", request.frequency_penalty),
            ("seed", request.seed),
        ):
            if value is not None:
                config[key] = value
        if request.n and request.n > 1:
            config["candidateCount"] = request.n
        if request.stop:
            config["stopSequences"] = list(request.stop)
        if request.modalities:
            config["responseModalities"] = [m.upper() for m in request.modalities]

        if request.response_format is not None and request.response_format.type in ("json_object", "json_schema"):
            config["responseMimeType"] = "application/json"
            schema = (request.response_format.json_schema or {}).get("schema")
            if schema:
                config["responseJsonSchema"] = schema

        thinking = self._encode_thinking(request)
        if thinking is not None:
            config["thinkingConfig"] = thinking
        return config

    def _encode_thinking(self, request: Request) -> Optional[Dict[str, Any]]:
        """A numeric budget wins when set; otherwise the effort label becomes a thinking level."""
        max_budget = get_settings().GEMINI_MAX_THINKING_BUDGET
        if request.reasoning_budget is not None:
            return {"includeThoughts": True, "thinkingBudget": min(request.reasoning_budget, max_budget)}
        effort = (request.reasoning_effort or "").lower()
        if not effort:
            return None
        if effort == EFFORT_NONE:
            return {"thinkingBudget": 0}
        if effort in (EFFORT_LOW, EFFORT_MEDIUM, EFFORT_HIGH):
            return {"includeThoughts": True, "thinkingLevel": effort}
        budget = effort_to_budget(effort, self.effort_budgets)
        return {"includeThoughts": True, "thinkingBudget": min(budget, max_budget)}

    def encode_message(self, message: Message) -> Optional[Dict[str, Any]]:
        """Encode a user or assistant message as a content turn; None when it has no parts."""
        role = ROLE_MODEL if message.role == Role.ASSISTANT.value else Role.USER.value
        parts = self.encode_parts(message)
        if not parts:
            return None
        return {"role": role, "parts": parts}

    def encode_parts(self, message: Message) -> List[Dict[str, Any]]:
        parts: List[Dict[str, Any]] = []
        if message.reasoning_content:
            parts.append({"text": message.reasoning_content, "thought": True})
        for part in message.content.iter_parts():
            encoded = self._encode_part(part)
            if encoded is not None:
                parts.append(encoded)

        first_call: Optional[Dict[str, Any]] = None
        for tool_call in message.tool_calls:
            call: Dict[str, Any] = {
                "name": tool_call.function.name,
                "args": parse_arguments(tool_call.function.arguments),
            }
            if tool_call.id:
                call["id"] = tool_call.id
            parts.append({"functionCall": call})
            if first_call is None:
                first_call = parts[-1]

        # The signature belongs on the first function call, or else on the last part
        signature = decode_gemini_signature(message.redacted_reasoning_content)
        if signature is None and message.tool_calls:
            signature = DUMMY_THOUGHT_SIGNATURE
        if signature and parts:
            (first_call or parts[-1])["thoughtSignature"] = signature
        return parts

    @staticmethod
    def _encode_part(part: ContentPart) -> Optional[Dict[str, Any]]:
        if part.type == "text":
            return {"text": part.text} if part.text else None
        if part.type == "image_url" and part.image_url is not None and part.image_url.url:
            url = part.image_url.url
            mime_type = "image/jpeg"
        elif part.type == "document" and part.document is not None and part.document.url:
            url = part.document.url
            mime_type = part.document.media_type or "application/pdf"
        else:
            return None

        data_url = parse_data_url(url)
        if data_url is not None:
            return {"inlineData": {"mimeType": data_url.media_type, "data": data_url.data}}
        return {"fileData": {"mimeType": mime_type, "fileUri": url}}

    @staticmethod
    def _append_tool_result(contents: List[Dict[str, Any]], message: Message) -> None:
        """Add a functionResponse; consecutive results share one user turn."""
        text = message.text()
        try:
            result = json.loads(text) if text else None
        except ValueError:
            result = None
        if not isinstance(result, dict):
            result = {"result": text}

        name = message.tool_call_name or ""
        if not name and message.tool_call_id:
            name = next((
                p["functionCall"]["name"]
                for c in contents for p in c["parts"]
                if "functionCall" in p and p["functionCall"].get("id") == message.tool_call_id
            ), "")

        response: Dict[str, Any] = {"name": name, "response": result}
        if message.tool_call_id:
            response["id"] = message.tool_call_id
        part = {"functionResponse": response}

        last = contents[-1] if contents else None
        if last is not None and last["role"] == Role.USER.value and all("functionResponse" in p for p in last["parts"]):
            last["parts"].append(part)
        else:
            contents.append({"role": Role.USER.value, "parts": [part]})

    @staticmethod
    def _encode_tools(tools: List[Tool]) -> List[Dict[str, Any]]:
        declarations = []
        native = []
        for tool in tools:
            if tool.type == ToolType.FUNCTION.value and tool.function is not None:
                declaration: Dict[str, Any] = {"name": tool.function.name}
                if tool.function.description is not None:
                    declaration["description"] = tool.function.description
                if tool.function.parameters is not None:
                    declaration["parameters"] = clean_schema(tool.function.parameters)
                declarations.append(declaration)
            elif tool.type in (ToolType.GOOGLE_SEARCH.value, ToolType.WEB_SEARCH.value):
                native.append({"googleSearch": {}})
            elif tool.type == ToolType.CODE_EXECUTION.value:
                native.append({"codeExecution": {}})
            elif tool.type == ToolType.URL_CONTEXT.value:
                native.append({"urlContext": {}})

        result = [{"functionDeclarations": declarations}] if declarations else []
        return result + native

    @staticmethod
    def _encode_tool_choice(choice: ToolChoice) -> Dict[str, Any]:
        if choice.is_named:
            return {"mode": "ANY", "allowedFunctionNames": [choice.name]}
        mode = {"none": "NONE", "required": "ANY"}.get(choice.mode or "auto", "AUTO")
        return {"mode": mode}

    def encode_response(self, response: Response) -> Dict[str, Any]:
        """Encode a canonical response or stream chunk as a GenerateContentResponse."""
        candidates = []
        for choice in response.choices:
            candidate: Dict[str, Any] = {"index": choice.index}
            message = choice.body
            if message is not None:
                candidate["content"] = {"role": ROLE_MODEL, "parts": self.encode_parts(message)}
            finish = finish_to_gemini(choice.finish_reason)
            if finish:
                candidate["finishReason"] = finish
            grounding = choice.transformer_metadata.get(MetadataKey.GEMINI_GROUNDING_METADATA)
            if grounding:
                candidate["groundingMetadata"] = grounding
            candidates.append(candidate)

        payload: Dict[str, Any] = {"candidates": candidates}
        if response.usage is not None:
            payload["usageMetadata"] = to_gemini_usage(response.usage)
        if response.model:
            payload["modelVersion"] = response.model
        if response.id:
            payload["responseId"] = response.id
        return payload


def parse_gemini_error(error: HttpErrorResponse) -> UpstreamError:
    """Parse `{"error": {code, message, status}}`, falling back to the raw body."""
    try:
        parsed = json.loads(error.body) if error.body else None
    except ValueError:
        parsed = None

    body = parsed.get("error") if isinstance(parsed, dict) else None
    if isinstance(body, list) and body:
        body = body[0].get("error") if isinstance(body[0], dict) else None
    if isinstance(body, dict) and body.get("message"):
        return UpstreamError(error.status_code, ErrorDetail(
            message=str(body["message"]),
            type=str(body.get("status") or "api_error"),
            code=str(body["code"]) if body.get("code") is not None else "",
        ))
    message = error.body.decode("utf-8", errors="replace").strip() or error.status
    return UpstreamError(error.status_code, ErrorDetail(message=message, type="api_error"))


def upstream_error_from_chunk(payload: Dict[str, Any]) -> UpstreamError:
    """Build an UpstreamError from an error object embedded in a stream chunk."""
    body = payload.get("error")
    if not isinstance(body, dict):
        body = {"message": str(body)}
    status_code = body.get("code") if isinstance(body.get("code"), int) else 500
    return UpstreamError(status_code, ErrorDetail(
        message=str(body.get("message") or ""),
        type=str(body.get("status") or "api_error"),
        code=str(body.get("code") or ""),
    ))
