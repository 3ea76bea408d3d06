"""
Gemini generateContent format (Gemini API and Vertex AI).
"""

from protocol_transformer.gemini.aggregator import aggregate_gemini_chunks
from protocol_transformer.gemini.convert import GeminiDecoder, GeminiEncoder
from protocol_transformer.gemini.inbound import GeminiInbound
from protocol_transformer.gemini.inbound_stream import GeminiStreamEncoder
from protocol_transformer.gemini.outbound import GeminiConfig, GeminiOutbound, GeminiPlatform
from protocol_transformer.gemini.outbound_stream import GeminiStreamDecoder

__all__ = [
    "GeminiConfig",
    "GeminiDecoder",
    "GeminiEncoder",
    "GeminiInbound",
    "GeminiOutbound",
    "GeminiPlatform",
    "GeminiStreamDecoder",
    "GeminiStreamEncoder",
    "aggregate_gemini_chunks",
]
