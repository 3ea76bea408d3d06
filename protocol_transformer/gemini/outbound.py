"""
Gemini Outbound Transformer

Builds generateContent / streamGenerateContent requests for the Gemini API
and Vertex AI, and parses what they return.
"""

import logging
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Tuple

import httpx
from pydantic import Field, model_validator

from protocol_transformer.base import OutboundTransformer
from protocol_transformer.canonical.types import Request, Response, ResponseMeta
from protocol_transformer.errors import InternalError, UpstreamError
from protocol_transformer.formats import APIFormat
from protocol_transformer.gemini.aggregator import aggregate_gemini_chunks
from protocol_transformer.gemini.convert import (
    GeminiDecoder,
    GeminiEncoder,
    parse_gemini_error,
    upstream_error_from_chunk,
)
from protocol_transformer.gemini.outbound_stream import GeminiStreamDecoder
from protocol_transformer.httpmodels import (
    AuthConfig,
    AuthType,
    HttpErrorResponse,
    HttpRequest,
    HttpResponse,
    StreamEvent,
    dump_json,
)
from protocol_transformer.openai.outbound import check_chat_request
from protocol_transformer.upstream import UpstreamConfig

logger = logging.getLogger(__name__)

DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_GEMINI_API_VERSION = "v1beta"
CLOUDFLARE_GATEWAY_PREFIX = "https://gateway.ai.cloudflare.com"


class GeminiPlatform(str, Enum):
    GEMINI = "gemini"
    VERTEX = "vertex"


class GeminiConfig(UpstreamConfig):
    """Gemini upstream settings"""

    # Platform
    platform: GeminiPlatform = Field(GeminiPlatform.GEMINI, description="Platform")
    # API version path segment
    api_version: str = Field("", description="API Version")
    # Reasoning effort -> thinking budget overrides
    effort_budgets: Optional[Dict[str, int]] = Field(None, description="Reasoning Effort Budgets")

    @model_validator(mode="after")
    def split_version(self) -> "GeminiConfig":
        """A version suffix on the base URL wins over the configured version."""
        if not self.base_url:
            self.base_url = DEFAULT_GEMINI_BASE_URL
        for version in ("v1beta", "v1"):
            if not self.raw_url and self.base_url.endswith("/" + version):
                self.base_url = self.base_url[: -len(version) - 1]
                self.api_version = version
                break
        if not self.api_version:
            self.api_version = DEFAULT_GEMINI_API_VERSION
        return self


class GeminiOutbound(OutboundTransformer):
    """Gemini generateContent outbound transformer."""

    def __init__(self, config: Optional[GeminiConfig] = None):
        self.config = config or GeminiConfig()
        self.encoder = GeminiEncoder(effort_budgets=self.config.effort_budgets)
        self.decoder = GeminiDecoder()

    @property
    def api_format(self) -> APIFormat:
        return APIFormat.GEMINI_CONTENTS

    def transform_request(self, request: Request) -> HttpRequest:
        check_chat_request(request)
        url = self._url(request)
        auth = None
        if self.config.api_key:
            auth = AuthConfig(type=AuthType.API_KEY, api_key=self.config.api_key, header_key="x-goog-api-key")

        logger.debug("Gemini outbound request to %s (model=%s)", url, request.model)
        return HttpRequest(
            method="POST",
            url=url,
            headers=httpx.Headers({"Content-Type": "application/json", "Accept": "application/json"}),
            body=dump_json(self.encoder.encode_request(request)),
            auth=auth,
        )

    def _url(self, request: Request) -> str:
        action = "streamGenerateContent?alt=sse" if request.is_stream else "generateContent"
        base = self.config.base_url
        if self.config.raw_url:
            return f"{base}/models/{request.model}:{action}"
        if self.config.platform == GeminiPlatform.VERTEX:
            if base.startswith(CLOUDFLARE_GATEWAY_PREFIX):
                return f"{base}/publishers/google/models/{request.model}:{action}"
            return f"{base}/v1/publishers/google/models/{request.model}:{action}"
        return f"{base}/{self.config.api_version}/models/{request.model}:{action}"

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
            raise upstream_error_from_chunk(payload)
        response, _ = self.decoder.decode_response(payload)
        return response

    def transform_stream(self, stream: AsyncIterator[StreamEvent]) -> AsyncIterator[Response]:
        return GeminiStreamDecoder(stream)

    def aggregate_stream_chunks(self, chunks: List[StreamEvent]) -> Tuple[bytes, ResponseMeta]:
        return aggregate_gemini_chunks(chunks)

    def transform_error(self, error: HttpErrorResponse) -> UpstreamError:
        return parse_gemini_error(error)
