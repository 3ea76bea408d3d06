"""
Error Definitions

Shared error taxonomy raised by every converter and transformer.
Inbound transformers render these into their own vendor's error envelope.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import httpx


class TransformError(Exception):
    """
    Transformation Base Exception

    Base class for all errors raised while converting between wire formats,
    containing error message, type, code and the HTTP status a caller should see.
    """

    def __init__(
        self,
        message: str,
        error_type: str = "api_error",
        code: str = "internal_error",
        details: Optional[dict[str, Any]] = None,
        status_code: int = 500,
    ):
        """
        Initialize exception

        Args:
            message: Error message
            error_type: Error type
            code: Error code
            details: Extra error details
            status_code: HTTP status code
        """
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.code = code
        self.details = details or {}
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary format (OpenAI error envelope)

        Returns:
            dict: Error information dictionary
        """
        result = {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "code": self.code,
            }
        }
        if self.details:
            result["error"]["details"] = self.details
        return result


class InvalidRequestError(TransformError):
    """
    Invalid Request Error

    Raised when a request is malformed or misses a required field.
    Always raised before any network call is made.
    """

    def __init__(
        self,
        message: str,
        code: str = "invalid_request",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            error_type="invalid_request_error",
            code=code,
            details=details,
            status_code=400,
        )


class InvalidModelError(TransformError):
    """
    Invalid Model Error

    Raised when the requested model cannot be routed.
    """

    def __init__(
        self,
        message: str,
        code: str = "invalid_model",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            error_type="invalid_model_error",
            code=code,
            details=details,
            status_code=422,
        )


class UnsupportedOperationError(InvalidRequestError):
    """
    Unsupported Operation Error

    Raised when a converter is asked for something it cannot express,
    e.g. embeddings on a chat-only path or streaming image generation.
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message=message, code="unsupported_operation", details=details)


class InternalError(TransformError):
    """
    Internal Error

    Raised when a payload cannot be serialized or parsed.
    """

    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            error_type="internal_error",
            code=code,
            details=details,
            status_code=500,
        )


class StreamStateError(InternalError):
    """Raised when content arrives for a stream that was already finalized."""

    def __init__(self, message: str = "stream already finalized"):
        super().__init__(message=message, code="stream_finalized")


@dataclass
class ErrorDetail:
    """Structured error reported by an upstream vendor."""

    message: str = ""
    type: str = ""
    code: str = ""
    param: str = ""
    request_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"message": self.message, "type": self.type}
        if self.code:
            result["code"] = self.code
        if self.param:
            result["param"] = self.param
        return result


class UpstreamError(TransformError):
    """
    Upstream Error

    Raised when a vendor answers with a 4xx/5xx status or embeds an error
    payload in its stream. Carries the vendor status and parsed detail.
    """

    def __init__(self, status_code: int, detail: Optional[ErrorDetail] = None):
        self.detail = detail or ErrorDetail()
        super().__init__(
            message=self.detail.message or httpx.codes.get_reason_phrase(status_code),
            error_type=self.detail.type or "api_error",
            code=self.detail.code or "upstream_error",
            status_code=status_code,
        )

    def __str__(self) -> str:
        status = httpx.codes.get_reason_phrase(self.status_code) or str(self.status_code)
        text = f"Request failed: {status}, error: {self.detail.message}"
        if self.detail.code:
            text += f", code: {self.detail.code}"
        if self.detail.type:
            text += f", type: {self.detail.type}"
        if self.detail.request_id:
            text += f", request_id: {self.detail.request_id}"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.detail.to_dict()}
