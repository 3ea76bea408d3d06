"""
Protocol Transformer

Converts LLM API traffic between vendor wire formats (OpenAI Chat
Completions, OpenAI Responses, Anthropic Messages, Gemini and
OpenAI-compatible vendors) through one canonical model, for requests,
responses, SSE streams and errors.
"""

from protocol_transformer.base import InboundTransformer, OutboundTransformer
from protocol_transformer.canonical import Message, Request, Response, Usage
from protocol_transformer.errors import (
    InternalError,
    InvalidModelError,
    InvalidRequestError,
    StreamStateError,
    TransformError,
    UnsupportedOperationError,
    UpstreamError,
)
from protocol_transformer.formats import APIFormat
from protocol_transformer.pipeline import TransformPipeline
from protocol_transformer.registry import TransformerRegistry, build_registry

__version__ = "0.1.0"
__all__ = [
    # Interfaces
    "InboundTransformer",
    "OutboundTransformer",
    "APIFormat",
    # Canonical types
    "Message",
    "Request",
    "Response",
    "Usage",
    # Errors
    "InternalError",
    "InvalidModelError",
    "InvalidRequestError",
    "StreamStateError",
    "TransformError",
    "UnsupportedOperationError",
    "UpstreamError",
    # Composition
    "TransformPipeline",
    "TransformerRegistry",
    "build_registry",
]
