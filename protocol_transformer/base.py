"""
Transformer Base Classes

Defines the abstract interface every vendor transformer implements.
Inbound transformers let the gateway impersonate a vendor toward a caller;
outbound transformers let it call a vendor as upstream.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Tuple

from protocol_transformer.canonical.types import Request, Response, ResponseMeta
from protocol_transformer.errors import UpstreamError
from protocol_transformer.formats import APIFormat
from protocol_transformer.httpmodels import HttpErrorResponse, HttpRequest, HttpResponse, StreamEvent


class InboundTransformer(ABC):
    """Abstract interface for the client-facing side of a vendor format."""

    @property
    @abstractmethod
    def api_format(self) -> APIFormat:
        """The wire format this transformer speaks."""
        pass

    @abstractmethod
    def transform_request(self, http_request: HttpRequest) -> Request:
        """
        Convert a client HTTP request into a canonical request.

        Args:
            http_request: Request as received from the client

        Returns:
            Request: Canonical request

        Raises:
            InvalidRequestError: If the body is malformed or misses required fields
        """
        pass

    @abstractmethod
    def transform_response(self, response: Response) -> HttpResponse:
        """
        Render a canonical response as this vendor's HTTP response.

        Args:
            response: Canonical response

        Returns:
            HttpResponse: Response for the client
        """
        pass

    @abstractmethod
    def transform_stream(self, stream: AsyncIterator[Response]) -> AsyncIterator[StreamEvent]:
        """
        Transcode canonical stream chunks into this vendor's SSE events.

        Args:
            stream: Canonical chunks, ending with the done sentinel

        Returns:
            AsyncIterator[StreamEvent]: Events for the client
        """
        pass

    @abstractmethod
    def aggregate_stream_chunks(self, chunks: List[StreamEvent]) -> Tuple[bytes, ResponseMeta]:
        """
        Fold the events produced by transform_stream into a final response body.

        Args:
            chunks: Events in emission order

        Returns:
            Tuple of (response body bytes, ResponseMeta)
        """
        pass

    @abstractmethod
    def transform_error(self, error: Exception) -> HttpErrorResponse:
        """
        Render any error in this vendor's native error envelope.

        Args:
            error: Error raised anywhere in the pipeline

        Returns:
            HttpErrorResponse: Status and body for the client
        """
        pass

    def transform_stream_error(self, error: Exception) -> StreamEvent:
        """Render an error raised mid-stream as a final SSE event."""
        return StreamEvent(data=self.transform_error(error).body)


class OutboundTransformer(ABC):
    """Abstract interface for the upstream-facing side of a vendor format."""

    @property
    @abstractmethod
    def api_format(self) -> APIFormat:
        """The wire format this transformer speaks."""
        pass

    @abstractmethod
    def transform_request(self, request: Request) -> HttpRequest:
        """
        Build the upstream HTTP request for a canonical request.

        Args:
            request: Canonical request

        Returns:
            HttpRequest: Request for the transport to send

        Raises:
            InvalidRequestError: If required fields are missing
            UnsupportedOperationError: If this upstream cannot serve the request
        """
        pass

    @abstractmethod
    def transform_response(self, http_response: HttpResponse) -> Response:
        """
        Parse an upstream HTTP response.

        Args:
            http_response: Response received by the transport

        Returns:
            Response: Canonical response

        Raises:
            UpstreamError: If the upstream answered with an error status
        """
        pass

    @abstractmethod
    def transform_stream(self, stream: AsyncIterator[StreamEvent]) -> AsyncIterator[Response]:
        """
        Transcode upstream SSE events into canonical chunks.

        Args:
            stream: Upstream events

        Returns:
            AsyncIterator[Response]: Canonical chunks, ending with the done sentinel
        """
        pass

    @abstractmethod
    def aggregate_stream_chunks(self, chunks: List[StreamEvent]) -> Tuple[bytes, ResponseMeta]:
        """
        Fold upstream events into this vendor's final response body.

        Args:
            chunks: Upstream events in arrival order

        Returns:
            Tuple of (response body bytes, ResponseMeta)
        """
        pass

    @abstractmethod
    def transform_error(self, error: HttpErrorResponse) -> UpstreamError:
        """
        Parse an upstream error body.

        Args:
            error: Upstream status and body

        Returns:
            UpstreamError: Canonical error carrying the vendor detail
        """
        pass
