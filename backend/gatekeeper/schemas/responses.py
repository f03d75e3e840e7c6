"""
Gatekeeper: Response Schemas
==============================

What:  Pydantic models for the bodies this service itself returns.
Why:   Shown in the OpenAPI docs for every guarded route, so clients know the
       error shape without reading code.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    The only error shape Gatekeeper returns.

    Example:
        {"error": "Rate limit exceeded", "message": "Too many requests, please slow down", "retryAfter": 42}
    """

    error: str = Field(description="Short label for the rejection class")
    message: str = Field(description="Human-readable reason")
    retryAfter: Optional[int] = Field(
        default=None,
        description="Seconds until the rate-limit window resets (429 only)",
    )


class HealthResponse(BaseModel):
    status: str = Field(description="Always 'healthy' while the process serves requests")
    version: str = Field(description="Gatekeeper version")
    uptime_seconds: float = Field(description="Seconds since the module loaded")


# Convenience mapping for route decorators: responses=GUARD_RESPONSES
GUARD_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Suspicious or malformed input"},
    401: {"model": ErrorResponse, "description": "No authenticated identity"},
    403: {"model": ErrorResponse, "description": "Permission or ownership denied"},
    413: {"model": ErrorResponse, "description": "Declared body exceeds the size limit"},
    429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
    500: {"model": ErrorResponse, "description": "Internal fault in a check"},
}
