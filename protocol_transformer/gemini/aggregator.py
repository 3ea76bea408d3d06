"""
Gemini Stream Aggregation

Folds Gemini stream chunks into one GenerateContentResponse by decoding
them to canonical chunks and accumulating those.
"""

from typing import Any, Dict, List, Optional, Tuple

from protocol_transformer.canonical.metadata import MetadataKey
from protocol_transformer.canonical.types import ResponseMeta
from protocol_transformer.errors import InvalidRequestError
from protocol_transformer.gemini.convert import GeminiDecoder, GeminiEncoder
from protocol_transformer.httpmodels import StreamEvent, dump_json
from protocol_transformer.openai.aggregator import ChatCompletionAccumulator
from protocol_transformer.streams import load_event


def aggregate_gemini_chunks(chunks: List[StreamEvent]) -> Tuple[bytes, ResponseMeta]:
    """
    Aggregate Gemini stream chunks into a GenerateContentResponse body.

    Args:
        chunks: SSE events in arrival order

    Returns:
        Tuple of (GenerateContentResponse JSON bytes, ResponseMeta)
    """
    if not chunks:
        raise InvalidRequestError("empty stream chunks")

    decoder = GeminiDecoder()
    accumulator = ChatCompletionAccumulator()
    grounding: Optional[Dict[str, Any]] = None
    tool_index = 0
    for event in chunks:
        if event.is_done:
            continue
        payload = load_event(event)
        if not isinstance(payload, dict) or payload.get("error"):
            continue
        chunk, tool_index = decoder.decode_response(payload, stream=True, tool_index_offset=tool_index)
        for choice in chunk.choices:
            grounding = choice.transformer_metadata.get(MetadataKey.GEMINI_GROUNDING_METADATA) or grounding
        accumulator.add(chunk)

    response = accumulator.build()
    if grounding is not None and response.choices:
        response.choices[0].transformer_metadata.set(MetadataKey.GEMINI_GROUNDING_METADATA, grounding)
    body = dump_json(GeminiEncoder().encode_response(response))
    return body, ResponseMeta(id=response.id, usage=response.usage)
