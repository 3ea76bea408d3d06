"""
Gemini Inbound Transformer

Lets the gateway accept /v1beta/models/{model}:generateContent and
:streamGenerateContent calls. The model and the stream flag come from the
request path, not the body.
"""

import logging
from typing import AsyncIterator, List, Tuple

from protocol_transformer.base import InboundTransformer
from protocol_transformer.canonical.types import Request, Response, ResponseMeta
from protocol_transformer.errors import InvalidRequestError, TransformError
from protocol_transformer.formats import APIFormat
from protocol_transformer.gemini.aggregator import aggregate_gemini_chunks
from protocol_transformer.gemini.convert import GeminiDecoder, GeminiEncoder
from protocol_transformer.gemini.inbound_stream import GeminiStreamEncoder
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

GENERATE_ACTION = "generateContent"
STREAM_GENERATE_ACTION = "streamGenerateContent"

# HTTP status -> google.rpc.Code name
_GRPC_STATUS = {
    400: "INVALID_ARGUMENT",
    401: "UNAUTHENTICATED",
    403: "PERMISSION_DENIED",
    404: "NOT_FOUND",
    409: "ALREADY_EXISTS",
    429: "RESOURCE_EXHAUSTED",
    500: "INTERNAL",
    501: "UNIMPLEMENTED",
    503: "UNAVAILABLE",
}


class InvalidRequestURLError(InvalidRequestError):
    """Raised when the request path does not name a model and a generate action."""

    def __init__(self, path: str):
        super().__init__(f"invalid request path: {path}", code="invalid_request_url")
        self.status_code = 404


def grpc_status(status_code: int) -> str:
    return _GRPC_STATUS.get(status_code, "UNKNOWN")


def gemini_error_response(error: Exception) -> HttpErrorResponse:
    """Render an error as `{"error": {code, message, status}}`."""
    if isinstance(error, TransformError):
        status_code, message = error.status_code, error.message
    else:
        logger.error("Unexpected error while transforming: %s", error)
        status_code, message = 500, "Internal Server Error"
    return json_error(
        {"error": {"code": status_code, "message": message, "status": grpc_status(status_code)}},
        status_code,
    )


def parse_request_path(path: str) -> Tuple[str, bool]:
    """
    Extract the model and the stream flag from `.../models/{model}:{action}`.

    Raises:
        InvalidRequestURLError: When the last path segment is not `{model}:{action}`
    """
    model, sep, action = path.rstrip("/").rsplit("/", 1)[-1].partition(":")
    if not sep or not model:
        raise InvalidRequestURLError(path)
    if action == GENERATE_ACTION:
        return model, False
    if action == STREAM_GENERATE_ACTION:
        return model, True
    raise InvalidRequestURLError(path)


class GeminiInbound(InboundTransformer):
    """Gemini generateContent inbound transformer."""

    def __init__(self):
        self.decoder = GeminiDecoder()
        self.encoder = GeminiEncoder()

    @property
    def api_format(self) -> APIFormat:
        return APIFormat.GEMINI_CONTENTS

    def transform_request(self, http_request: HttpRequest) -> Request:
        model, stream = parse_request_path(http_request.path)
        logger.debug("Gemini inbound request (model=%s, stream=%s)", model, stream)
        payload = read_json_body(http_request)
        if not payload.get("contents"):
            raise InvalidRequestError("contents are required")

        request = self.decoder.decode_request(payload)
        request.model = model
        request.stream = stream
        request.api_format = self.api_format.value
        return request

    def transform_response(self, response: Response) -> HttpResponse:
        http_response = json_response(self.encoder.encode_response(response))
        http_response.headers["Cache-Control"] = "no-cache"
        return http_response

    def transform_stream(self, stream: AsyncIterator[Response]) -> AsyncIterator[StreamEvent]:
        return GeminiStreamEncoder(stream)

    def aggregate_stream_chunks(self, chunks: List[StreamEvent]) -> Tuple[bytes, ResponseMeta]:
        return aggregate_gemini_chunks(chunks)

    def transform_error(self, error: Exception) -> HttpErrorResponse:
        return gemini_error_response(error)
