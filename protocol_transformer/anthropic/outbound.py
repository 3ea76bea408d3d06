"""
Anthropic Messages Outbound Transformer

Builds upstream requests for Anthropic and the platforms that host Claude
(AWS Bedrock, Google Vertex AI) or expose an Anthropic-compatible endpoint,
and parses what they return.
"""

import logging
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Tuple

import httpx
from pydantic import Field

from protocol_transformer.anthropic.aggregator import aggregate_anthropic_chunks
from protocol_transformer.anthropic.convert import (
    AnthropicMessagesDecoder,
    AnthropicMessagesEncoder,
    parse_anthropic_error,
)
from protocol_transformer.anthropic.outbound_stream import AnthropicStreamDecoder
from protocol_transformer.base import OutboundTransformer
from protocol_transformer.canonical.types import Request, RequestType, Response, ResponseMeta, ToolType
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
from protocol_transformer.upstream import UpstreamConfig
from protocol_transformer.usage import UsagePlatform

logger = logging.getLogger(__name__)

DEFAULT_ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"
BEDROCK_ANTHROPIC_VERSION = "bedrock-2023-05-31"
VERTEX_ANTHROPIC_VERSION = "vertex-2023-10-16"
WEB_SEARCH_BETA = "web-search-2025-03-05"


class AnthropicPlatform(str, Enum):
    DIRECT = "direct"
    BEDROCK = "bedrock"
    VERTEX = "vertex"
    # Anthropic-compatible hosts
    LONGCAT = "longcat"
    MOONSHOT = "moonshot"
    DEEPSEEK = "deepseek"
    DOUBAO = "doubao"
    ZHIPU = "zhipu"

    @property
    def usage_platform(self) -> UsagePlatform:
        """Anthropic itself excludes cache tokens from input_tokens; compatible hosts include them."""
        if self in (AnthropicPlatform.DIRECT, AnthropicPlatform.BEDROCK, AnthropicPlatform.VERTEX):
            return UsagePlatform.EXCLUDES_CACHE
        return UsagePlatform.INCLUDES_CACHE


class AnthropicConfig(UpstreamConfig):
    """Anthropic upstream settings"""

    # Platform
    platform: AnthropicPlatform = Field(AnthropicPlatform.DIRECT, description="Platform")
    # Vertex AI project and region
    project_id: str = Field("", description="Vertex Project ID")
    region: str = Field("", description="Region")
    # Reasoning effort -> thinking budget overrides
    effort_budgets: Optional[Dict[str, int]] = Field(None, description="Reasoning Effort Budgets")


class AnthropicOutbound(OutboundTransformer):
    """Anthropic Messages outbound transformer."""

    def __init__(self, config: Optional[AnthropicConfig] = None):
        self.config = config or AnthropicConfig(base_url=DEFAULT_ANTHROPIC_BASE_URL)
        if not self.config.base_url and self.config.platform == AnthropicPlatform.DIRECT:
            self.config.base_url = DEFAULT_ANTHROPIC_BASE_URL
        self.encoder = AnthropicMessagesEncoder(effort_budgets=self.config.effort_budgets)
        self.decoder = AnthropicMessagesDecoder()

    @property
    def api_format(self) -> APIFormat:
        return APIFormat.ANTHROPIC_MESSAGE

    @property
    def usage_platform(self) -> UsagePlatform:
        return self.config.platform.usage_platform

    def _validate(self, request: Request) -> None:
        if request.request_type not in (RequestType.CHAT.value, ""):
            raise UnsupportedOperationError(f"{request.request_type} is not supported by Anthropic")
        if not request.model:
            raise InvalidRequestError("model is required")
        if not request.messages:
            raise InvalidRequestError("messages are required")
        if request.max_tokens is not None and request.max_tokens <= 0:
            raise InvalidRequestError("max_tokens must be positive")

    def transform_request(self, request: Request) -> HttpRequest:
        self._validate(request)
        payload = self.encoder.encode_request(request)
        headers = httpx.Headers({"Content-Type": "application/json", "Accept": "application/json"})
        web_search = any(t.type == ToolType.WEB_SEARCH.value for t in request.tools)
        platform = self.config.platform

        if platform == AnthropicPlatform.BEDROCK:
            url = self._bedrock_url(request)
            payload.pop("model", None)
            payload.pop("stream", None)
            payload["anthropic_version"] = BEDROCK_ANTHROPIC_VERSION
            if web_search:
                payload["anthropic_beta"] = [WEB_SEARCH_BETA]
            auth = AuthConfig(type=AuthType.BEARER, api_key=self.config.api_key)
        elif platform == AnthropicPlatform.VERTEX:
            url = self._vertex_url(request)
            payload.pop("model", None)
            payload["anthropic_version"] = VERTEX_ANTHROPIC_VERSION
            # Vertex credentials are attached by the transport
            auth = None
        else:
            url = self.config.endpoint("/messages", version="v1")
            headers["anthropic-version"] = ANTHROPIC_VERSION
            if web_search and platform == AnthropicPlatform.DIRECT:
                headers["anthropic-beta"] = WEB_SEARCH_BETA
            if platform == AnthropicPlatform.LONGCAT:
                auth = AuthConfig(type=AuthType.BEARER, api_key=self.config.api_key)
            else:
                auth = AuthConfig(type=AuthType.API_KEY, api_key=self.config.api_key, header_key="X-API-Key")

        logger.debug("Anthropic outbound request to %s (platform=%s, model=%s)", url, platform.value, request.model)
        return HttpRequest(method="POST", url=url, headers=headers, body=dump_json(payload), auth=auth)

    def _bedrock_url(self, request: Request) -> str:
        base = self.config.base_url
        if not base:
            if not self.config.region:
                raise InvalidRequestError("bedrock requires a base_url or a region")
            base = f"https://bedrock-runtime.{self.config.region}.amazonaws.com"
        action = "invoke-with-response-stream" if request.is_stream else "invoke"
        return f"{base}/model/{request.model}/{action}"

    def _vertex_url(self, request: Request) -> str:
        if not self.config.project_id or not self.config.region:
            raise InvalidRequestError("vertex requires project_id and region")
        base = self.config.base_url or f"https://{self.config.region}-aiplatform.googleapis.com"
        action = "streamRawPredict" if request.is_stream else "rawPredict"
        return (
            f"{base}/v1/projects/{self.config.project_id}/locations/{self.config.region}"
            f"/publishers/anthropic/models/{request.model}:{action}"
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
        if payload.get("type") == "error":
            raise parse_anthropic_error(HttpErrorResponse(status_code=500, body=http_response.body))
        return self.decoder.decode_response(payload, self.usage_platform)

    def transform_stream(self, stream: AsyncIterator[StreamEvent]) -> AsyncIterator[Response]:
        return AnthropicStreamDecoder(stream, self.usage_platform)

    def aggregate_stream_chunks(self, chunks: List[StreamEvent]) -> Tuple[bytes, ResponseMeta]:
        return aggregate_anthropic_chunks(chunks, self.usage_platform)

    def transform_error(self, error: HttpErrorResponse) -> UpstreamError:
        return parse_anthropic_error(error)
