"""
Anthropic Messages format (direct, Bedrock, Vertex and compatible hosts).
"""

from protocol_transformer.anthropic.aggregator import AnthropicMessageAccumulator, aggregate_anthropic_chunks
from protocol_transformer.anthropic.convert import AnthropicMessagesDecoder, AnthropicMessagesEncoder
from protocol_transformer.anthropic.inbound import AnthropicInbound
from protocol_transformer.anthropic.inbound_stream import AnthropicStreamEncoder
from protocol_transformer.anthropic.outbound import AnthropicConfig, AnthropicOutbound, AnthropicPlatform
from protocol_transformer.anthropic.outbound_stream import AnthropicStreamDecoder

__all__ = [
    "AnthropicConfig",
    "AnthropicInbound",
    "AnthropicMessageAccumulator",
    "AnthropicMessagesDecoder",
    "AnthropicMessagesEncoder",
    "AnthropicOutbound",
    "AnthropicPlatform",
    "AnthropicStreamDecoder",
    "AnthropicStreamEncoder",
    "aggregate_anthropic_chunks",
]
