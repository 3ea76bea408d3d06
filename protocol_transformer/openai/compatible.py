"""
OpenAI-Compatible Vendors

Vendors that speak the Chat Completions wire format with small deviations:
their own base URLs, their own reasoning switches, and whether assistant
reasoning must be echoed back. Each vendor is a profile; the transformer
wraps the OpenAI outbound transformer and applies the profile around it.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Tuple

import httpx

from protocol_transformer.base import OutboundTransformer
from protocol_transformer.canonical.types import Request, Response, ResponseMeta
from protocol_transformer.errors import UnsupportedOperationError, UpstreamError
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
from protocol_transformer.openai.convert import OpenAIChatEncoder
from protocol_transformer.openai.outbound import OpenAIConfig, OpenAIOutbound, check_chat_request
from protocol_transformer.reasoning import EFFORT_NONE

logger = logging.getLogger(__name__)

PayloadAdapter = Callable[[Dict[str, Any], Request], None]


def _openrouter_reasoning(payload: Dict[str, Any], request: Request) -> None:
    """OpenRouter takes a unified `reasoning` object; effort wins over budget."""
    effort = payload.pop("reasoning_effort", None)
    if effort:
        payload["reasoning"] = {"effort": effort}
    elif request.reasoning_budget is not None:
        payload["reasoning"] = {"max_tokens": request.reasoning_budget}


def _thinking_switch(payload: Dict[str, Any], request: Request) -> None:
    """Doubao and Zhipu toggle reasoning with `thinking.type`."""
    effort = payload.pop("reasoning_effort", None)
    if effort == EFFORT_NONE:
        payload["thinking"] = {"type": "disabled"}
    elif effort or request.reasoning_budget is not None:
        payload["thinking"] = {"type": "enabled"}


@dataclass(frozen=True)
class VendorProfile:
    """Static description of an OpenAI-compatible vendor."""
    name: str
    base_url: str
    # False when the base URL already ends with the vendor's own version segment
    versioned: bool = True
    # Echo assistant reasoning_content back in follow-up requests
    include_reasoning: bool = False
    # Chat requests with "image" modality stay on /chat/completions
    chat_image_generation: bool = False
    adapt_payload: Optional[PayloadAdapter] = None


VENDOR_PROFILES: Mapping[str, VendorProfile] = MappingProxyType({
    "deepseek": VendorProfile(name="deepseek", base_url="https://api.deepseek.com"),
    "moonshot": VendorProfile(name="moonshot", base_url="https://api.moonshot.cn/v1", include_reasoning=True),
    "openrouter": VendorProfile(
        name="openrouter",
        base_url="https://openrouter.ai/api/v1",
        chat_image_generation=True,
        adapt_payload=_openrouter_reasoning,
    ),
    "doubao": VendorProfile(
        name="doubao",
        base_url="https://ark.cn-beijing.volces.com/api/v3",
        versioned=False,
        adapt_payload=_thinking_switch,
    ),
    "zhipu": VendorProfile(
        name="zhipu",
        base_url="https://open.bigmodel.cn/api/paas/v4",
        versioned=False,
        adapt_payload=_thinking_switch,
    ),
    "xai": VendorProfile(name="xai", base_url="https://api.x.ai/v1"),
    "siliconflow": VendorProfile(name="siliconflow", base_url="https://api.siliconflow.cn/v1"),
})


class CompatibleOutbound(OutboundTransformer):
    """Outbound transformer for an OpenAI-compatible vendor."""

    def __init__(self, vendor: str, api_key: str = "", base_url: Optional[str] = None):
        """
        Args:
            vendor: Key of VENDOR_PROFILES
            api_key: Vendor API key
            base_url: Override of the vendor's default base URL
        """
        if vendor not in VENDOR_PROFILES:
            raise ValueError(f"Unknown OpenAI-compatible vendor: {vendor}")
        self.profile = VENDOR_PROFILES[vendor]
        config = OpenAIConfig(
            base_url=base_url or self.profile.base_url,
            api_key=api_key,
            versioned=self.profile.versioned,
        )
        self.encoder = OpenAIChatEncoder(include_reasoning=self.profile.include_reasoning)
        self.openai = OpenAIOutbound(config, encoder=self.encoder)

    @property
    def api_format(self) -> APIFormat:
        return APIFormat.OPENAI_CHAT_COMPLETION

    def transform_request(self, request: Request) -> HttpRequest:
        check_chat_request(request)
        if request.is_image_generation() and not self.profile.chat_image_generation:
            raise UnsupportedOperationError(f"image generation is not supported by {self.profile.name}")

        payload = self.encoder.encode_request(request)
        if request.is_image_generation():
            payload["modalities"] = ["image", "text"]
        if self.profile.adapt_payload is not None:
            self.profile.adapt_payload(payload, request)

        url = self.openai.config.request_url("/chat/completions", version="v1")
        logger.debug("%s outbound request to %s (model=%s)", self.profile.name, url, request.model)
        return HttpRequest(
            method="POST",
            url=url,
            headers=httpx.Headers({"Content-Type": "application/json", "Accept": "application/json"}),
            body=dump_json(payload),
            auth=AuthConfig(type=AuthType.BEARER, api_key=self.openai.config.api_key),
        )

    def transform_response(self, http_response: HttpResponse) -> Response:
        return self.openai.transform_response(http_response)

    def transform_stream(self, stream: AsyncIterator[StreamEvent]) -> AsyncIterator[Response]:
        return self.openai.transform_stream(stream)

    def aggregate_stream_chunks(self, chunks: List[StreamEvent]) -> Tuple[bytes, ResponseMeta]:
        return self.openai.aggregate_stream_chunks(chunks)

    def transform_error(self, error: HttpErrorResponse) -> UpstreamError:
        return self.openai.transform_error(error)
