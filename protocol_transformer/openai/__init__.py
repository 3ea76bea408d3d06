"""
OpenAI Chat Completions format and OpenAI-compatible vendors.
"""

from protocol_transformer.openai.aggregator import ChatCompletionAccumulator, aggregate_chat_chunks
from protocol_transformer.openai.compatible import VENDOR_PROFILES, CompatibleOutbound, VendorProfile
from protocol_transformer.openai.convert import OpenAIChatDecoder, OpenAIChatEncoder
from protocol_transformer.openai.inbound import OpenAIInbound
from protocol_transformer.openai.outbound import OpenAIConfig, OpenAIOutbound, OpenAIPlatform

__all__ = [
    "VENDOR_PROFILES",
    "ChatCompletionAccumulator",
    "CompatibleOutbound",
    "OpenAIChatDecoder",
    "OpenAIChatEncoder",
    "OpenAIConfig",
    "OpenAIInbound",
    "OpenAIOutbound",
    "OpenAIPlatform",
    "VendorProfile",
    "aggregate_chat_chunks",
]
