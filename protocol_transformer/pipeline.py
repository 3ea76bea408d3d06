"""
Transform Pipeline

Pairs one inbound and one outbound transformer so a caller speaking one
vendor format can be served by an upstream speaking another. The pipeline
never performs I/O: the caller sends the HttpRequest it returns and feeds
back what the upstream answered.
"""

import logging
from typing import AsyncIterable, AsyncIterator, List, Tuple, Union

from protocol_transformer.base import InboundTransformer, OutboundTransformer
from protocol_transformer.canonical.types import Request, ResponseMeta
from protocol_transformer.errors import TransformError
from protocol_transformer.formats import APIFormat
from protocol_transformer.httpmodels import HttpErrorResponse, HttpRequest, HttpResponse, StreamEvent
from protocol_transformer.registry import TransformerRegistry

logger = logging.getLogger(__name__)


class TransformPipeline:
    """Client format <-> canonical <-> upstream format."""

    def __init__(self, inbound: InboundTransformer, outbound: OutboundTransformer):
        self.inbound = inbound
        self.outbound = outbound

    @classmethod
    def from_registry(
        cls,
        registry: TransformerRegistry,
        inbound_format: Union[APIFormat, str],
        outbound_name: Union[APIFormat, str],
    ) -> "TransformPipeline":
        return cls(registry.inbound(inbound_format), registry.outbound(outbound_name))

    def transform_request(self, http_request: HttpRequest) -> Tuple[Request, HttpRequest]:
        """
        Convert a client request into the upstream request.

        Returns:
            Tuple of (canonical request, upstream HttpRequest)
        """
        request = self.inbound.transform_request(http_request)
        logger.debug(
            "Routing %s request for %s to %s",
            self.inbound.api_format.value, request.model, self.outbound.api_format.value,
        )
        return request, self.outbound.transform_request(request)

    def transform_response(self, http_response: HttpResponse) -> HttpResponse:
        """Convert a complete upstream response into the client's format."""
        return self.inbound.transform_response(self.outbound.transform_response(http_response))

    async def transform_stream(self, events: AsyncIterable[StreamEvent]) -> AsyncIterator[StreamEvent]:
        """
        Transcode upstream SSE events into the client's SSE events.

        An error raised while streaming ends the stream with one error event
        in the client's format.
        """
        stream = self.inbound.transform_stream(self.outbound.transform_stream(events))
        try:
            async for event in stream:
                yield event
        except TransformError as e:
            logger.warning("Stream aborted: %s", e.message)
            yield self.inbound.transform_stream_error(e)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    def aggregate_stream_chunks(self, chunks: List[StreamEvent]) -> Tuple[bytes, ResponseMeta]:
        """Fold the client-format events produced by transform_stream into one body."""
        return self.inbound.aggregate_stream_chunks(chunks)

    def transform_error(self, error: Union[Exception, HttpErrorResponse]) -> HttpErrorResponse:
        """
        Render an error for the client.

        Args:
            error: An exception raised by any stage, or an upstream error
                response not yet parsed
        """
        if isinstance(error, HttpErrorResponse):
            error = self.outbound.transform_error(error)
        return self.inbound.transform_error(error)
