"""
OpenAI Chat Completions Outbound Transformer

Builds upstream requests for OpenAI and Azure OpenAI and parses what they
return, including Images API responses for image-generation requests.
"""

import logging
from enum import Enum
from typing import AsyncIterator, List, Optional, Tuple

import httpx
from pydantic import Field

from protocol_transformer.base import OutboundTransformer
from protocol_transformer.canonical.metadata import MetadataKey
from protocol_transformer.canonical.types import Request, RequestType, Response, ResponseMeta
from protocol_transformer.errors import InternalError, InvalidRequestError, UnsupportedOperationError, UpstreamError
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
from protocol_transformer.openai.aggregator import aggregate_chat_chunks
from protocol_transformer.openai.convert import (
    OpenAIChatDecoder,
    OpenAIChatEncoder,
    parse_openai_error,
    upstream_error_from_payload,
)
from protocol_transformer.openai.images import IMAGE_GENERATION_FORMAT, build_image_request, parse_image_response
from protocol_transformer.streams import load_event
from protocol_transformer.upstream import UpstreamConfig

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_AZURE_API_VERSION = "2025-04-01-preview"


class OpenAIPlatform(str, Enum):
    OPENAI = "openai"
    AZURE = "azure"


class OpenAIConfig(UpstreamConfig):
    """OpenAI / Azure OpenAI upstream settings"""

    # Platform
    platform: OpenAIPlatform = Field(OpenAIPlatform.OPENAI, description="Platform")
    # Azure API version
    api_version: str = Field(DEFAULT_AZURE_API_VERSION, description="Azure API Version")


def check_chat_request(request: Request) -> None:
    """
    Reject requests a chat endpoint cannot serve.

    Raises:
        UnsupportedOperationError: For embedding and rerank requests
        InvalidRequestError: When model or messages are missing
    """
    if request.request_type not in (RequestType.CHAT.value, ""):
        raise UnsupportedOperationError(f"{request.request_type} is not supported on a chat endpoint")
    if not request.model:
        raise InvalidRequestError("model is required")
    if not request.messages:
        raise InvalidRequestError("messages are required")


class OpenAIOutbound(OutboundTransformer):
    """OpenAI Chat Completions outbound transformer."""

    def __init__(self, config: Optional[OpenAIConfig] = None, encoder: Optional[OpenAIChatEncoder] = None):
        self.config = config or OpenAIConfig(base_url=DEFAULT_OPENAI_BASE_URL)
        if not self.config.base_url:
            self.config.base_url = DEFAULT_OPENAI_BASE_URL
        self.encoder = encoder or OpenAIChatEncoder()
        self.decoder = OpenAIChatDecoder()

    @property
    def api_format(self) -> APIFormat:
        return APIFormat.OPENAI_CHAT_COMPLETION

    def _url_base(self) -> str:
        """Endpoint prefix that /chat/completions and /images/* are appended to."""
        base = self.config.base_url
        if self.config.platform == OpenAIPlatform.AZURE:
            if base.endswith("/openai/v1"):
                return base
            if base.endswith("/openai"):
                return base + "/v1"
            return base + "/openai/v1"
        return self.config.endpoint("", version="v1")

    def _auth(self) -> AuthConfig:
        if self.config.platform == OpenAIPlatform.AZURE:
            return AuthConfig(type=AuthType.API_KEY, api_key=self.config.api_key, header_key="api-key")
        return AuthConfig(type=AuthType.BEARER, api_key=self.config.api_key)

    def _query(self) -> dict:
        if self.config.platform == OpenAIPlatform.AZURE:
            return {"api-version": self.config.api_version}
        return {}

    def transform_request(self, request: Request) -> HttpRequest:
        check_chat_request(request)
        headers = httpx.Headers({"Accept": "application/json"})

        if request.is_image_generation():
            if self.config.platform == OpenAIPlatform.AZURE:
                raise UnsupportedOperationError("image generation is not supported on Azure OpenAI")
            http_request = build_image_request(request, self._url_base(), headers)
            http_request.auth = self._auth()
            return http_request

        headers["Content-Type"] = "application/json"
        if self.config.platform == OpenAIPlatform.AZURE:
            url = self._url_base() + "/chat/completions"
        else:
            url = self.config.request_url("/chat/completions", version="v1")
        query = self._query()
        if query:
            url += "?" + str(httpx.QueryParams(query))
        logger.debug("OpenAI outbound request to %s (model=%s)", url, request.model)

        return HttpRequest(
            method="POST",
            url=url,
            headers=headers,
            body=dump_json(self.encoder.encode_request(request)),
            auth=self._auth(),
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
        if payload.get("error"):
            raise upstream_error_from_payload(payload)

        metadata = http_response.request.transformer_metadata if http_response.request else None
        if metadata and metadata.get(MetadataKey.OUTBOUND_FORMAT_TYPE) == IMAGE_GENERATION_FORMAT:
            return parse_image_response(payload, metadata)
        return self.decoder.decode_response(payload)

    async def transform_stream(self, stream: AsyncIterator[StreamEvent]) -> AsyncIterator[Response]:
        async for event in stream:
            if event.is_done:
                yield Response.done()
                continue
            payload = load_event(event)
            if not isinstance(payload, dict):
                continue
            if payload.get("error"):
                raise upstream_error_from_payload(payload)
            yield self.decoder.decode_response(payload)

    def aggregate_stream_chunks(self, chunks: List[StreamEvent]) -> Tuple[bytes, ResponseMeta]:
        return aggregate_chat_chunks(chunks)

    def transform_error(self, error: HttpErrorResponse) -> UpstreamError:
        return parse_openai_error(error)
