"""
OpenAI Chat Completions Inbound Transformer

Lets the gateway accept /v1/chat/completions calls.
"""

import logging
from typing import AsyncIterator, List, Tuple

from protocol_transformer.base import InboundTransformer
from protocol_transformer.canonical.types import Request, Response, ResponseMeta
from protocol_transformer.errors import InvalidRequestError, TransformError
from protocol_transformer.formats import APIFormat
from protocol_transformer.httpmodels import (
    HttpErrorResponse,
    HttpRequest,
    HttpResponse,
    StreamEvent,
    json_error,
    json_response,
    read_json_body,
)
from protocol_transformer.openai.aggregator import aggregate_chat_chunks
from protocol_transformer.openai.convert import OpenAIChatDecoder, OpenAIChatEncoder
from protocol_transformer.streams import done_event, json_event

logger = logging.getLogger(__name__)


def openai_error_response(error: Exception) -> HttpErrorResponse:
    """
    Render an error in the OpenAI envelope: {"error": {message, type, code}}.

    Shared by the Chat Completions and Responses inbound transformers.
    """
    if isinstance(error, TransformError):
        return json_error(error.to_dict(), error.status_code)
    logger.error("Unexpected error while transforming: %s", error)
    return json_error(
        {"error": {"message": str(error) or "internal server error", "type": "internal_server_error", "code": "internal_error"}},
        500,
    )


class OpenAIInbound(InboundTransformer):
    """OpenAI Chat Completions inbound transformer."""

    def __init__(self):
        self.decoder = OpenAIChatDecoder()
        self.encoder = OpenAIChatEncoder()

    @property
    def api_format(self) -> APIFormat:
        return APIFormat.OPENAI_CHAT_COMPLETION

    def transform_request(self, http_request: HttpRequest) -> Request:
        payload = read_json_body(http_request)
        if not payload.get("model"):
            raise InvalidRequestError("model is required")
        if not payload.get("messages"):
            raise InvalidRequestError("messages are required")

        request = self.decoder.decode_request(payload)
        request.api_format = self.api_format.value
        return request

    def transform_response(self, response: Response) -> HttpResponse:
        return json_response(self.encoder.encode_response(response))

    async def transform_stream(self, stream: AsyncIterator[Response]) -> AsyncIterator[StreamEvent]:
        async for chunk in stream:
            if chunk.is_done:
                yield done_event()
                continue
            yield json_event(self.encoder.encode_response(chunk))

    def aggregate_stream_chunks(self, chunks: List[StreamEvent]) -> Tuple[bytes, ResponseMeta]:
        return aggregate_chat_chunks(chunks)

    def transform_error(self, error: Exception) -> HttpErrorResponse:
        return openai_error_response(error)
