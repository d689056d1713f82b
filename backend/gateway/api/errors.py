"""
OpenAI-style error types for the /v1 endpoints

Every error carries the HTTP status, the OpenAI error `type` and a short
machine-readable `code`. The exception handlers in
gateway.api.exception_handlers render them as:

    {"error": {"message": ..., "type": ..., "code": ...}}
"""
from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base class for errors returned in OpenAI wire format"""
    status_code: int = 500
    error_type: str = "api_error"
    code: str = "internal_error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.headers = headers or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "code": self.code,
            }
        }


class InvalidRequestError(GatewayError):
    status_code = 400
    error_type = "invalid_request_error"
    code = "invalid_request"


class AuthenticationError(GatewayError):
    status_code = 401
    error_type = "authentication_error"
    code = "unauthenticated"


class PermissionDeniedError(GatewayError):
    status_code = 403
    error_type = "permission_error"
    code = "key_deactivated"


class NotFoundError(GatewayError):
    status_code = 404
    error_type = "invalid_request_error"
    code = "not_found"


class RequestTimeoutError(GatewayError):
    status_code = 408
    error_type = "timeout_error"
    code = "timeout"


class RateLimitExceeded(GatewayError):
    """Raised when a key has used up its quota for the current window"""
    status_code = 429
    error_type = "rate_limit_error"
    code = "rate_limit_exceeded"

    def __init__(
        self,
        retry_after: int,
        message: str = "Rate limit exceeded",
        headers: Optional[Dict[str, str]] = None,
    ):
        headers = dict(headers or {})
        headers["Retry-After"] = str(retry_after)
        super().__init__(message, headers=headers)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["error"]["retryAfter"] = self.retry_after
        body["error"]["retry_after"] = self.retry_after
        return body


class InternalError(GatewayError):
    status_code = 500
    error_type = "api_error"
    code = "internal_error"


class UpstreamError(InternalError):
    """The upstream provider failed or returned an unusable response"""


class UpstreamTimeoutError(RequestTimeoutError):
    """The upstream provider did not answer within UPSTREAM_TIMEOUT"""
