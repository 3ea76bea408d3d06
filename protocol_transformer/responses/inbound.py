"""
OpenAI Responses API Inbound Transformer

Lets the gateway accept /v1/responses calls.
"""

from typing import AsyncIterator, List, Tuple

from protocol_transformer.base import InboundTransformer
from protocol_transformer.canonical.types import Request, Response, ResponseMeta
from protocol_transformer.errors import InvalidRequestError
from protocol_transformer.formats import APIFormat
from protocol_transformer.httpmodels import (
    HttpErrorResponse,
    HttpRequest,
    HttpResponse,
    StreamEvent,
    json_response,
    read_json_body,
)
from protocol_transformer.openai.inbound import openai_error_response
from protocol_transformer.responses.aggregator import aggregate_responses_chunks
from protocol_transformer.responses.convert import ResponsesDecoder, ResponsesEncoder
from protocol_transformer.responses.inbound_stream import ResponsesStreamEncoder


class ResponsesInbound(InboundTransformer):
    """OpenAI Responses API inbound transformer."""

    def __init__(self):
        self.decoder = ResponsesDecoder()
        self.encoder = ResponsesEncoder()

    @property
    def api_format(self) -> APIFormat:
        return APIFormat.OPENAI_RESPONSES

    def transform_request(self, http_request: HttpRequest) -> Request:
        payload = read_json_body(http_request)
        if not payload.get("model"):
            raise InvalidRequestError("model is required")
        if payload.get("input") is None or payload.get("input") in ("", []):
            raise InvalidRequestError("input is required")

        request = self.decoder.decode_request(payload)
        request.api_format = self.api_format.value
        return request

    def transform_response(self, response: Response) -> HttpResponse:
        return json_response(self.encoder.encode_response(response))

    def transform_stream(self, stream: AsyncIterator[Response]) -> AsyncIterator[StreamEvent]:
        return ResponsesStreamEncoder(stream)

    def aggregate_stream_chunks(self, chunks: List[StreamEvent]) -> Tuple[bytes, ResponseMeta]:
        return aggregate_responses_chunks(chunks)

    def transform_error(self, error: Exception) -> HttpErrorResponse:
        return openai_error_response(error)
