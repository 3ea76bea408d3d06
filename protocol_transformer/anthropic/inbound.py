"""
Anthropic Messages Inbound Transformer

Lets the gateway accept /v1/messages calls from Anthropic clients.
"""

import logging
from typing import AsyncIterator, List, Tuple

from protocol_transformer.anthropic.aggregator import aggregate_anthropic_chunks
from protocol_transformer.anthropic.convert import AnthropicMessagesDecoder, AnthropicMessagesEncoder
from protocol_transformer.anthropic.inbound_stream import AnthropicStreamEncoder
from protocol_transformer.base import InboundTransformer
from protocol_transformer.canonical.types import Request, Response, ResponseMeta
from protocol_transformer.errors import InvalidRequestError, TransformError, UpstreamError
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

logger = logging.getLogger(__name__)

# Canonical error types without an Anthropic counterpart
_ERROR_TYPES = {
    "internal_error": "api_error",
    "invalid_model_error": "invalid_request_error",
}


def anthropic_error_response(error: Exception) -> HttpErrorResponse:
    """Render an error as `{"type": "error", "error": {type, message}, "request_id"}`."""
    if isinstance(error, UpstreamError):
        error_type = error.detail.type or "api_error"
        request_id = error.detail.request_id
    elif isinstance(error, TransformError):
        error_type = _ERROR_TYPES.get(error.error_type, error.error_type)
        request_id = ""
    else:
        logger.error("Unexpected error while transforming: %s", error)
        return json_error(
            {"type": "error", "error": {"type": "api_error", "message": str(error) or "internal server error"},
             "request_id": ""},
            500,
        )

    return json_error(
        {"type": "error", "error": {"type": error_type, "message": error.message}, "request_id": request_id},
        error.status_code,
    )


class AnthropicInbound(InboundTransformer):
    """Anthropic Messages inbound transformer."""

    def __init__(self):
        self.decoder = AnthropicMessagesDecoder()
        self.encoder = AnthropicMessagesEncoder()

    @property
    def api_format(self) -> APIFormat:
        return APIFormat.ANTHROPIC_MESSAGE

    def transform_request(self, http_request: HttpRequest) -> Request:
        payload = read_json_body(http_request)
        if not payload.get("model"):
            raise InvalidRequestError("model is required")
        if not payload.get("messages"):
            raise InvalidRequestError("messages are required")
        max_tokens = payload.get("max_tokens")
        if not isinstance(max_tokens, int) or isinstance(max_tokens, bool) or max_tokens <= 0:
            raise InvalidRequestError("max_tokens is required and must be positive")

        request = self.decoder.decode_request(payload)
        request.api_format = self.api_format.value
        return request

    def transform_response(self, response: Response) -> HttpResponse:
        return json_response(self.encoder.encode_response(response))

    def transform_stream(self, stream: AsyncIterator[Response]) -> AsyncIterator[StreamEvent]:
        return AnthropicStreamEncoder(stream)

    def aggregate_stream_chunks(self, chunks: List[StreamEvent]) -> Tuple[bytes, ResponseMeta]:
        return aggregate_anthropic_chunks(chunks)

    def transform_error(self, error: Exception) -> HttpErrorResponse:
        return anthropic_error_response(error)

    def transform_stream_error(self, error: Exception) -> StreamEvent:
        return StreamEvent(data=self.transform_error(error).body, type="error")
