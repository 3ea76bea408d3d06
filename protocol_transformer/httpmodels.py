"""
HTTP Boundary Types

Plain value objects exchanged with the external transport. The transformers
never perform I/O; they build requests for the transport to send and parse
what it received.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from protocol_transformer.canonical.metadata import TransformerMetadata
from protocol_transformer.errors import InvalidRequestError


class AuthType(str, Enum):
    BEARER = "bearer"
    API_KEY = "api_key"


@dataclass
class AuthConfig:
    """Credential placement for an upstream request."""
    type: AuthType = AuthType.BEARER
    api_key: str = ""
    # Header used for API_KEY auth, e.g. "X-API-Key"
    header_key: Optional[str] = None

    def apply(self, headers: httpx.Headers) -> None:
        """Write the credential into `headers`."""
        if not self.api_key:
            return
        if self.type == AuthType.BEARER:
            headers["Authorization"] = f"Bearer {self.api_key}"
        else:
            headers[self.header_key or "X-API-Key"] = self.api_key


@dataclass
class MultipartFile:
    """A file field of a multipart form body."""
    field_name: str
    filename: str
    content_type: str
    data: bytes


@dataclass
class HttpRequest:
    """HTTP request, either received from a client or to be sent upstream."""
    method: str = "POST"
    url: str = ""
    # Path of an inbound request, used where the path carries the model (Gemini)
    path: str = ""
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""
    query: Dict[str, str] = field(default_factory=dict)
    auth: Optional[AuthConfig] = None
    # Multipart body (image edits); when set, `body` holds the encoded form
    form: Dict[str, str] = field(default_factory=dict)
    files: List[MultipartFile] = field(default_factory=list)
    transformer_metadata: TransformerMetadata = field(default_factory=TransformerMetadata)

    def __post_init__(self):
        if not isinstance(self.headers, httpx.Headers):
            self.headers = httpx.Headers(self.headers)

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    def json(self) -> Any:
        return json.loads(self.body)


@dataclass
class HttpResponse:
    """HTTP response returned by an upstream vendor or built for a client."""
    status_code: int = 200
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""
    request: Optional[HttpRequest] = None

    def __post_init__(self):
        if not isinstance(self.headers, httpx.Headers):
            self.headers = httpx.Headers(self.headers)

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400

    def json(self) -> Any:
        return json.loads(self.body)


@dataclass
class HttpErrorResponse:
    """Error status and body, either from upstream or rendered for a client."""
    status_code: int = 500
    body: bytes = b""
    headers: httpx.Headers = field(default_factory=httpx.Headers)

    def __post_init__(self):
        if not isinstance(self.headers, httpx.Headers):
            self.headers = httpx.Headers(self.headers)

    @property
    def status(self) -> str:
        return httpx.codes.get_reason_phrase(self.status_code)

    @classmethod
    def from_response(cls, response: HttpResponse) -> "HttpErrorResponse":
        return cls(status_code=response.status_code, body=response.body, headers=response.headers)


@dataclass
class StreamEvent:
    """One SSE event: optional event type tag plus raw data payload."""
    data: bytes = b""
    type: str = ""
    id: Optional[str] = None

    @property
    def is_done(self) -> bool:
        return self.data.strip() == b"[DONE]"


def json_response(payload: Any, status_code: int = 200) -> HttpResponse:
    """Build a JSON HTTP response."""
    return HttpResponse(
        status_code=status_code,
        headers=httpx.Headers({"Content-Type": "application/json"}),
        body=dump_json(payload),
    )


def json_error(payload: Any, status_code: int) -> HttpErrorResponse:
    """Build a JSON error response."""
    return HttpErrorResponse(
        status_code=status_code,
        headers=httpx.Headers({"Content-Type": "application/json"}),
        body=dump_json(payload),
    )


def dump_json(payload: Any) -> bytes:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def read_json_body(http_request: HttpRequest) -> Dict[str, Any]:
    """
    Decode the JSON object body of a client request.

    Raises:
        InvalidRequestError: If the body is empty, not JSON, or not an object
    """
    if not http_request.body:
        raise InvalidRequestError("request body is empty")

    content_type = http_request.content_type
    if content_type and "application/json" not in content_type.lower():
        raise InvalidRequestError(f"unsupported content type: {content_type}")

    try:
        payload = json.loads(http_request.body)
    except ValueError as e:
        raise InvalidRequestError(f"failed to decode request body: {e}") from e

    if not isinstance(payload, dict):
        raise InvalidRequestError("request body must be a JSON object")
    return payload
