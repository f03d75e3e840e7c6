"""
Gatekeeper: Custom Exception Hierarchy
========================================

What:  Application-specific exceptions, one per rejection the pipeline can make.
Why:   Each rejection maps to exactly one HTTP status and one structured body,
       so guards, middleware and exception handlers never disagree on format.
How:   Each exception class carries a user-facing message and an optional
       context dict. `to_response()` renders the public JSON body; context is
       for logs only.
Who:   Raised by guards and services; rendered by the handlers in main.py or
       directly by middleware (Starlette middleware sits outside the app's
       exception handlers).

Exception Hierarchy:
    GatekeeperError (base)                → 500
    ├── AuthenticationRequiredError       → 401 Unauthorized
    ├── AuthorizationDeniedError          → 403 Forbidden
    ├── SuspiciousContentError            → 400 Bad Request
    ├── MalformedInputError               → 400 Bad Request
    ├── PayloadTooLargeError              → 413 Payload Too Large
    ├── RateLimitExceededError            → 429 Too Many Requests
    └── InternalFaultError                → 500 Internal Server Error

Response body:
    {"error": "<label>", "message": "<text>"[, "retryAfter": <seconds>]}

    Nothing else is ever returned: no patterns, no stack traces, no context.
"""

from typing import Any, Dict, Optional

from starlette.responses import JSONResponse


class GatekeeperError(Exception):
    """
    Base exception for all Gatekeeper rejections.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    status_code: int = 500
    error: str = "Internal server error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message}

    def headers(self) -> Dict[str, str]:
        return {}

    def to_response(self) -> JSONResponse:
        """Render the structured JSON error body with the matching status."""
        return JSONResponse(
            status_code=self.status_code,
            content=self.to_body(),
            headers=self.headers() or None,
        )


class AuthenticationRequiredError(GatekeeperError):
    """
    No identity was attached to the request by the upstream authenticator.

    HTTP: 401 Unauthorized
    """

    status_code = 401
    error = "Authentication required"

    def __init__(
        self,
        message: str = "You must be logged in to access this resource",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class AuthorizationDeniedError(GatekeeperError):
    """
    An identity is present but lacks the permission, role or ownership.

    HTTP: 403 Forbidden

    The message may name the required permission(s); it never names the
    caller's own permissions.
    """

    status_code = 403
    error = "Access denied"

    def __init__(
        self,
        message: str = "Insufficient permissions",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class SuspiciousContentError(GatekeeperError):
    """
    A threat signature matched somewhere in the request.

    HTTP: 400 Bad Request

    The matched category is kept in context for the audit log; the client
    only learns that the request was refused.
    """

    status_code = 400
    error = "Bad Request"

    def __init__(
        self,
        message: str = "Request contains suspicious content",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class MalformedInputError(GatekeeperError):
    """The payload could not be decoded or sanitized. HTTP: 400 Bad Request"""

    status_code = 400
    error = "Bad Request"

    def __init__(
        self,
        message: str = "Invalid input data",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PayloadTooLargeError(GatekeeperError):
    """
    Declared Content-Length exceeds the configured request size limit.

    HTTP: 413 Payload Too Large
    """

    status_code = 413
    error = "Payload too large"

    def __init__(
        self,
        limit: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["limit"] = limit
        super().__init__(message=f"Request size exceeds limit of {limit}", context=ctx)
        self.limit = limit


class RateLimitExceededError(GatekeeperError):
    """
    Raised when a client exceeds a rate limit tier.

    HTTP: 429 Too Many Requests

    Response includes:
        - retryAfter: Seconds until the current window resets
        - Retry-After header for HTTP-compliant clients
    """

    status_code = 429
    error = "Rate limit exceeded"

    def __init__(
        self,
        retry_after: int = 60,
        message: str = "Too many requests, please try again later",
        context: Optional[Dict[str, Any]] = None,
        rate_limit_headers: Optional[Dict[str, str]] = None,
    ):
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
        self.rate_limit_headers = rate_limit_headers or {}

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        body["retryAfter"] = self.retry_after
        return body

    def headers(self) -> Dict[str, str]:
        headers = dict(self.rate_limit_headers)
        headers["Retry-After"] = str(self.retry_after)
        return headers


class InternalFaultError(GatekeeperError):
    """
    An unexpected exception escaped a check.

    HTTP: 500 Internal Server Error

    Raised at the boundary of every guard and middleware stage so a single
    faulty check answers 500 instead of tearing down the request task.
    """

    status_code = 500
    error = "Internal server error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
