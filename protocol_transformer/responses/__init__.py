"""
OpenAI Responses API format.
"""

from protocol_transformer.responses.aggregator import ResponsesAccumulator, aggregate_responses_chunks
from protocol_transformer.responses.convert import ResponsesDecoder, ResponsesEncoder
from protocol_transformer.responses.inbound import ResponsesInbound
from protocol_transformer.responses.inbound_stream import ResponsesStreamEncoder
from protocol_transformer.responses.outbound import ResponsesConfig, ResponsesOutbound
from protocol_transformer.responses.outbound_stream import ResponsesStreamDecoder

__all__ = [
    "ResponsesAccumulator",
    "ResponsesConfig",
    "ResponsesDecoder",
    "ResponsesEncoder",
    "ResponsesInbound",
    "ResponsesOutbound",
    "ResponsesStreamDecoder",
    "ResponsesStreamEncoder",
    "aggregate_responses_chunks",
]
