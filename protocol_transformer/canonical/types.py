"""
Canonical Type Definitions

Vendor-neutral representation of chat requests and responses. Every
converter maps its wire format to and from these types, so a request can
enter through one vendor's protocol and leave through another's.

The shape follows the OpenAI Chat Completions model, extended with the
reasoning, cache and tool-result grouping fields other vendors need.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from protocol_transformer.canonical.metadata import TransformerMetadata
from protocol_transformer.errors import ErrorDetail


class Role(str, Enum):
    """Unified role representation across all protocols."""
    SYSTEM = "system"
    DEVELOPER = "developer"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class FinishReason(str, Enum):
    """Unified finish reason across protocols."""
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"


class RequestType(str, Enum):
    """Kinds of request a client may send."""
    CHAT = "chat"
    EMBEDDING = "embedding"
    RERANK = "rerank"


class ToolType(str, Enum):
    """Tool kinds understood by the converters."""
    FUNCTION = "function"
    IMAGE_GENERATION = "image_generation"
    WEB_SEARCH = "web_search"
    GOOGLE_SEARCH = "google_search"
    CODE_EXECUTION = "code_execution"
    URL_CONTEXT = "url_context"


DONE_OBJECT = "[DONE]"


# =============================================================================
# Content
# =============================================================================


@dataclass
class CacheControl:
    """Prompt caching breakpoint."""
    type: str = "ephemeral"
    ttl: Optional[str] = None

    @classmethod
    def from_dict(cls, value: Any) -> Optional["CacheControl"]:
        if not isinstance(value, dict):
            return None
        return cls(type=value.get("type", "ephemeral"), ttl=value.get("ttl"))

    def to_dict(self) -> Dict[str, Any]:
        result = {"type": self.type}
        if self.ttl:
            result["ttl"] = self.ttl
        return result


@dataclass
class ImageURL:
    """Image reference, either a data URL or a remote URL."""
    url: str = ""
    detail: Optional[str] = None


@dataclass
class InputAudio:
    """Base64 audio input."""
    data: str = ""
    format: str = ""


@dataclass
class Document:
    """Non-image file content, stored as a data URL or remote URL."""
    url: str = ""
    media_type: Optional[str] = None


@dataclass
class ContentPart:
    """One typed part of a multi-part message."""
    type: str = "text"  # text, image_url, input_audio, document
    text: Optional[str] = None
    image_url: Optional[ImageURL] = None
    input_audio: Optional[InputAudio] = None
    document: Optional[Document] = None
    cache_control: Optional[CacheControl] = None

    @classmethod
    def text_part(cls, text: str, cache_control: Optional[CacheControl] = None) -> "ContentPart":
        return cls(type="text", text=text, cache_control=cache_control)

    @classmethod
    def image_part(cls, url: str, detail: Optional[str] = None) -> "ContentPart":
        return cls(type="image_url", image_url=ImageURL(url=url, detail=detail))


@dataclass
class MessageContent:
    """
    Message content: a single string OR an ordered list of parts.

    The two forms are mutually exclusive.
    """
    text: Optional[str] = None
    parts: Optional[List[ContentPart]] = None

    def __post_init__(self):
        if self.text is not None and self.parts is not None:
            raise ValueError("message content holds either text or parts, not both")

    def is_empty(self) -> bool:
        return not self.text and not self.parts

    def joined_text(self) -> str:
        """Concatenate the string content or every text part."""
        if self.text is not None:
            return self.text
        return "".join(p.text or "" for p in self.parts or [] if p.type == "text")

    def iter_parts(self) -> List[ContentPart]:
        """Return the content as parts, wrapping plain text in a single text part."""
        if self.parts is not None:
            return list(self.parts)
        if self.text:
            return [ContentPart.text_part(self.text)]
        return []


ContentValue = Union[None, str, List[ContentPart], MessageContent]


def _as_content(value: ContentValue) -> MessageContent:
    if isinstance(value, MessageContent):
        return value
    if value is None:
        return MessageContent()
    if isinstance(value, str):
        return MessageContent(text=value)
    return MessageContent(parts=list(value))


# =============================================================================
# Tools
# =============================================================================


@dataclass
class FunctionCall:
    """Function name plus JSON-encoded arguments."""
    name: str = ""
    arguments: str = ""


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""
    id: str = ""
    type: str = "function"
    function: FunctionCall = field(default_factory=FunctionCall)
    # Position of this call among the message's tool calls; stable across stream deltas
    index: int = 0
    cache_control: Optional[CacheControl] = None


@dataclass
class Function:
    """Function tool declaration."""
    name: str
    description: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None  # JSON Schema
    strict: Optional[bool] = None


@dataclass
class ImageGeneration:
    """Options of the built-in image generation tool."""
    output_format: Optional[str] = None
    size: Optional[str] = None
    quality: Optional[str] = None
    background: Optional[str] = None
    moderation: Optional[str] = None
    output_compression: Optional[int] = None
    partial_images: Optional[int] = None


@dataclass
class Tool:
    """Tool declaration; `function` for function tools, `options` for native tools."""
    type: str = ToolType.FUNCTION.value
    function: Optional[Function] = None
    image_generation: Optional[ImageGeneration] = None
    options: Dict[str, Any] = field(default_factory=dict)
    cache_control: Optional[CacheControl] = None


@dataclass
class ToolChoice:
    """Either a mode (auto, none, required) or a named function."""
    mode: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_named(self) -> bool:
        return bool(self.name)


# =============================================================================
# Messages
# =============================================================================


@dataclass
class Message:
    """Unified message representation."""
    # Empty on stream deltas that do not repeat the role
    role: str = ""
    content: ContentValue = None
    name: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    # Tool messages: function name and error flag of the answered call
    tool_call_name: Optional[str] = None
    tool_call_is_error: Optional[bool] = None
    refusal: Optional[str] = None
    reasoning_content: Optional[str] = None
    reasoning_signature: Optional[str] = None
    redacted_reasoning_content: Optional[str] = None
    # Groups messages split from one vendor turn (e.g. several tool results)
    message_index: Optional[int] = None
    cache_control: Optional[CacheControl] = None

    def __post_init__(self):
        self.content = _as_content(self.content)

    def text(self) -> str:
        return self.content.joined_text()

    def has_reasoning(self) -> bool:
        return bool(self.reasoning_content or self.reasoning_signature or self.redacted_reasoning_content)


# =============================================================================
# Request
# =============================================================================


@dataclass
class StreamOptions:
    include_usage: Optional[bool] = None


@dataclass
class ResponseFormat:
    type: str = "text"  # text, json_object, json_schema
    json_schema: Optional[Dict[str, Any]] = None


@dataclass
class Request:
    """
    Unified request representation.

    Every inbound transformer produces one of these and every outbound
    transformer consumes one.
    """
    model: str = ""
    messages: List[Message] = field(default_factory=list)

    # Tools
    tools: List[Tool] = field(default_factory=list)
    tool_choice: Optional[ToolChoice] = None
    parallel_tool_calls: Optional[bool] = None

    # Sampling
    max_tokens: Optional[int] = None
    max_completion_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    stop: Optional[List[str]] = None
    presence_penalty: Optional[float] = None
    frequency_penalty: Optional[float] = None
    seed: Optional[int] = None
    n: Optional[int] = None
    logprobs: Optional[bool] = None
    top_logprobs: Optional[int] = None
    logit_bias: Optional[Dict[str, int]] = None
    user: Optional[str] = None

    # Streaming
    stream: Optional[bool] = None
    stream_options: Optional[StreamOptions] = None

    # Reasoning
    reasoning_effort: Optional[str] = None
    reasoning_budget: Optional[int] = None
    reasoning_summary: Optional[str] = None

    # Output shaping
    response_format: Optional[ResponseFormat] = None
    modalities: List[str] = field(default_factory=list)
    verbosity: Optional[str] = None
    service_tier: Optional[str] = None
    store: Optional[bool] = None
    prompt_cache_key: Optional[str] = None
    safety_identifier: Optional[str] = None

    metadata: Dict[str, str] = field(default_factory=dict)
    request_type: str = RequestType.CHAT.value
    # Wire format the request arrived in
    api_format: Optional[str] = None
    transformer_metadata: TransformerMetadata = field(default_factory=TransformerMetadata)

    @property
    def is_stream(self) -> bool:
        return bool(self.stream)

    def is_image_generation(self) -> bool:
        return "image" in self.modalities

    def image_generation_tool(self) -> Optional[Tool]:
        for tool in self.tools:
            if tool.type == ToolType.IMAGE_GENERATION.value:
                return tool
        return None


# =============================================================================
# Usage
# =============================================================================


@dataclass
class PromptTokensDetails:
    audio_tokens: int = 0
    cached_tokens: int = 0
    write_cached_tokens: int = 0
    write_cached_5m_tokens: int = 0
    write_cached_1h_tokens: int = 0

    def is_empty(self) -> bool:
        return not any((
            self.audio_tokens,
            self.cached_tokens,
            self.write_cached_tokens,
            self.write_cached_5m_tokens,
            self.write_cached_1h_tokens,
        ))


@dataclass
class CompletionTokensDetails:
    audio_tokens: int = 0
    reasoning_tokens: int = 0
    accepted_prediction_tokens: int = 0
    rejected_prediction_tokens: int = 0

    def is_empty(self) -> bool:
        return not any((
            self.audio_tokens,
            self.reasoning_tokens,
            self.accepted_prediction_tokens,
            self.rejected_prediction_tokens,
        ))


@dataclass
class Usage:
    """Unified usage/token metrics."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: Optional[int] = None
    prompt_tokens_details: Optional[PromptTokensDetails] = None
    completion_tokens_details: Optional[CompletionTokensDetails] = None

    def __post_init__(self):
        if self.total_tokens is None:
            self.total_tokens = self.prompt_tokens + self.completion_tokens

    @property
    def cached_tokens(self) -> int:
        return self.prompt_tokens_details.cached_tokens if self.prompt_tokens_details else 0

    @property
    def write_cached_tokens(self) -> int:
        return self.prompt_tokens_details.write_cached_tokens if self.prompt_tokens_details else 0

    @property
    def cache_tokens(self) -> int:
        """Cache reads plus cache writes."""
        return self.cached_tokens + self.write_cached_tokens

    @property
    def reasoning_tokens(self) -> int:
        return self.completion_tokens_details.reasoning_tokens if self.completion_tokens_details else 0


# =============================================================================
# Response
# =============================================================================


@dataclass
class Choice:
    """One completion choice; `message` for full responses, `delta` for stream chunks."""
    index: int = 0
    message: Optional[Message] = None
    delta: Optional[Message] = None
    finish_reason: Optional[str] = None
    logprobs: Optional[Dict[str, Any]] = None
    transformer_metadata: TransformerMetadata = field(default_factory=TransformerMetadata)

    @property
    def body(self) -> Optional[Message]:
        """Message for full responses, delta for stream chunks."""
        return self.message if self.message is not None else self.delta


@dataclass
class Response:
    """Unified response or stream chunk."""
    id: str = ""
    object: str = "chat.completion"
    created: int = 0
    model: str = ""
    choices: List[Choice] = field(default_factory=list)
    usage: Optional[Usage] = None
    system_fingerprint: Optional[str] = None
    service_tier: Optional[str] = None
    error: Optional[ErrorDetail] = None

    @classmethod
    def done(cls) -> "Response":
        """End-of-stream sentinel."""
        return cls(object=DONE_OBJECT)

    @property
    def is_done(self) -> bool:
        return self.object == DONE_OBJECT


@dataclass
class ResponseMeta:
    """Identity and usage extracted while aggregating a stream."""
    id: str = ""
    usage: Optional[Usage] = None
