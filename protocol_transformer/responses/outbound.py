"""
OpenAI Responses API Outbound Transformer

Builds /v1/responses requests for OpenAI and parses what it returns.
"""

import logging
from typing import AsyncIterator, List, Optional, Tuple

import httpx

from protocol_transformer.base import OutboundTransformer
from protocol_transformer.canonical.metadata import MetadataKey, TransformerMetadata
from protocol_transformer.canonical.types import Request, Response, ResponseMeta
from protocol_transformer.errors import InternalError, UpstreamError
from protocol_transformer.formats import APIFormat
from protocol_transformer.httpmodels import (
    AuthConfig,
    AuthType,
    HttpErrorResponse,
    HttpRequest,
    HttpResponse,
    StreamEvent,
    dump_json,
)
from protocol_transformer.openai.convert import parse_openai_error, upstream_error_from_payload
from protocol_transformer.openai.outbound import DEFAULT_OPENAI_BASE_URL, check_chat_request
from protocol_transformer.responses.aggregator import aggregate_responses_chunks
from protocol_transformer.responses.convert import ResponsesDecoder, ResponsesEncoder
from protocol_transformer.responses.outbound_stream import ResponsesStreamDecoder
from protocol_transformer.upstream import UpstreamConfig

logger = logging.getLogger(__name__)


class ResponsesConfig(UpstreamConfig):
    """Responses API upstream settings"""


class ResponsesOutbound(OutboundTransformer):
    """OpenAI Responses API outbound transformer."""

    def __init__(self, config: Optional[ResponsesConfig] = None):
        self.config = config or ResponsesConfig(base_url=DEFAULT_OPENAI_BASE_URL)
        if not self.config.base_url:
            self.config.base_url = DEFAULT_OPENAI_BASE_URL
        self.encoder = ResponsesEncoder()
        self.decoder = ResponsesDecoder()

    @property
    def api_format(self) -> APIFormat:
        return APIFormat.OPENAI_RESPONSES

    def transform_request(self, request: Request) -> HttpRequest:
        check_chat_request(request)
        metadata = TransformerMetadata()
        tool = request.image_generation_tool()
        if tool is not None and tool.image_generation is not None and tool.image_generation.output_format:
            metadata.set(MetadataKey.IMAGE_OUTPUT_FORMAT, tool.image_generation.output_format)

        url = self.config.request_url("/responses", version="v1")
        logger.debug("Responses outbound request to %s (model=%s)", url, request.model)
        return HttpRequest(
            method="POST",
            url=url,
            headers=httpx.Headers({"Content-Type": "application/json", "Accept": "application/json"}),
            body=dump_json(self.encoder.encode_request(request)),
            auth=AuthConfig(type=AuthType.BEARER, api_key=self.config.api_key),
            transformer_metadata=metadata,
        )

    def transform_response(self, http_response: HttpResponse) -> Response:
        if http_response.is_error:
            raise self.transform_error(HttpErrorResponse.from_response(http_response))
        if not http_response.body:
            raise InternalError("response body is empty")

        try:
            payload = http_response.json()
        except ValueError as e:
            raise InternalError(f"failed to decode upstream response: {e}") from e
        if not isinstance(payload, dict):
            raise InternalError("upstream response is not a JSON object")
        if payload.get("error") and not payload.get("output"):
            raise upstream_error_from_payload(payload)

        metadata = http_response.request.transformer_metadata if http_response.request else None
        return self.decoder.decode_response(payload, metadata)

    def transform_stream(self, stream: AsyncIterator[StreamEvent]) -> AsyncIterator[Response]:
        return ResponsesStreamDecoder(stream)

    def aggregate_stream_chunks(self, chunks: List[StreamEvent]) -> Tuple[bytes, ResponseMeta]:
        return aggregate_responses_chunks(chunks)

    def transform_error(self, error: HttpErrorResponse) -> UpstreamError:
        return parse_openai_error(error)
