"""
Transformer Registry

Format-keyed lookup of inbound transformers and name-keyed lookup of
outbound transformers. A registry is built once at start-up with
build_registry() and handed to whoever needs it; it is never mutated.
"""

import logging
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Union

from protocol_transformer.anthropic import AnthropicInbound, AnthropicOutbound
from protocol_transformer.base import InboundTransformer, OutboundTransformer
from protocol_transformer.errors import UnsupportedOperationError
from protocol_transformer.formats import APIFormat
from protocol_transformer.gemini import GeminiInbound, GeminiOutbound
from protocol_transformer.openai import OpenAIInbound, OpenAIOutbound
from protocol_transformer.responses import ResponsesInbound, ResponsesOutbound

logger = logging.getLogger(__name__)


def _format_key(key: Union[APIFormat, str]) -> str:
    return key.value if isinstance(key, APIFormat) else key


class TransformerRegistry:
    """
    Read-only registry of transformers.

    Inbound transformers are keyed by the APIFormat they accept. Outbound
    transformers are keyed by an upstream name, which defaults to the
    APIFormat value of the outbound for the built-in vendors.
    """

    def __init__(
        self,
        inbound: Mapping[APIFormat, InboundTransformer],
        outbound: Mapping[str, OutboundTransformer],
    ):
        self._inbound = MappingProxyType({APIFormat(k): v for k, v in inbound.items()})
        self._outbound = MappingProxyType({_format_key(k): v for k, v in outbound.items()})

    @property
    def inbound_formats(self) -> List[APIFormat]:
        return list(self._inbound)

    @property
    def outbound_names(self) -> List[str]:
        return list(self._outbound)

    def inbound(self, api_format: Union[APIFormat, str]) -> InboundTransformer:
        """
        Get the inbound transformer for a wire format.

        Raises:
            UnsupportedOperationError: When no transformer accepts the format
        """
        if not isinstance(api_format, APIFormat):
            try:
                api_format = APIFormat.from_string(api_format)
            except ValueError as e:
                raise UnsupportedOperationError(str(e)) from e
        transformer = self._inbound.get(api_format)
        if transformer is None:
            raise UnsupportedOperationError(f"no inbound transformer for {api_format.value}")
        return transformer

    def outbound(self, name: Union[APIFormat, str]) -> OutboundTransformer:
        """
        Get the outbound transformer registered under `name`.

        Raises:
            UnsupportedOperationError: When nothing is registered under the name
        """
        transformer = self._outbound.get(_format_key(name))
        if transformer is None:
            raise UnsupportedOperationError(f"no outbound transformer named {_format_key(name)}")
        return transformer

    def with_outbound(self, name: Union[APIFormat, str], transformer: OutboundTransformer) -> "TransformerRegistry":
        """Return a new registry with `transformer` added under `name`."""
        outbound: Dict[str, OutboundTransformer] = dict(self._outbound)
        outbound[_format_key(name)] = transformer
        return TransformerRegistry(self._inbound, outbound)


def build_registry(outbound: Optional[Mapping[str, OutboundTransformer]] = None) -> TransformerRegistry:
    """
    Build the registry with every built-in inbound transformer.

    Args:
        outbound: Configured upstreams by name. Built-in outbound transformers
            with default configuration are registered under their APIFormat
            value unless a name here overrides them.

    Returns:
        TransformerRegistry: The immutable registry
    """
    inbound: Dict[APIFormat, InboundTransformer] = {}
    for transformer in (OpenAIInbound(), ResponsesInbound(), AnthropicInbound(), GeminiInbound()):
        inbound[transformer.api_format] = transformer

    outbounds: Dict[str, OutboundTransformer] = {}
    for default in (OpenAIOutbound(), ResponsesOutbound(), AnthropicOutbound(), GeminiOutbound()):
        outbounds[default.api_format.value] = default
    for name, transformer in (outbound or {}).items():
        outbounds[_format_key(name)] = transformer

    logger.debug("Transformer registry built: inbound=%s outbound=%s",
                 [f.value for f in inbound], list(outbounds))
    return TransformerRegistry(inbound, outbounds)
