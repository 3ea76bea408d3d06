"""
Canonical Model

Vendor-neutral request/response types shared by every transformer.
"""

from protocol_transformer.canonical.metadata import MetadataKey, TransformerMetadata
from protocol_transformer.canonical.types import (
    DONE_OBJECT,
    CacheControl,
    Choice,
    CompletionTokensDetails,
    ContentPart,
    Document,
    FinishReason,
    Function,
    FunctionCall,
    ImageGeneration,
    ImageURL,
    InputAudio,
    Message,
    MessageContent,
    PromptTokensDetails,
    Request,
    RequestType,
    Response,
    ResponseFormat,
    ResponseMeta,
    Role,
    StreamOptions,
    Tool,
    ToolCall,
    ToolChoice,
    ToolType,
    Usage,
)

__all__ = [
    "DONE_OBJECT",
    "CacheControl",
    "Choice",
    "CompletionTokensDetails",
    "ContentPart",
    "Document",
    "FinishReason",
    "Function",
    "FunctionCall",
    "ImageGeneration",
    "ImageURL",
    "InputAudio",
    "Message",
    "MessageContent",
    "MetadataKey",
    "PromptTokensDetails",
    "Request",
    "RequestType",
    "Response",
    "ResponseFormat",
    "ResponseMeta",
    "Role",
    "StreamOptions",
    "Tool",
    "ToolCall",
    "ToolChoice",
    "ToolType",
    "TransformerMetadata",
    "Usage",
]
