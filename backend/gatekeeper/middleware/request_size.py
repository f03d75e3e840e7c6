"""
Gatekeeper: Request Size Limit Middleware
===========================================

What:  Rejects requests whose declared Content-Length exceeds a limit.
How:   The limit is a human string ("10mb", "512kb", "1.5 gb") parsed once
       when the middleware is built. Only the declared length is checked;
       nothing is read from the body here.

Sharp edge (kept on purpose):
    A limit string that does not parse yields 0 bytes, so every request that
    declares a body is refused with 413. The deployment finds out at once
    (and a warning is logged at startup) instead of silently running with no
    limit at all.
"""

import logging
import re
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from gatekeeper.audit import audit, request_context
from gatekeeper.config import settings
from gatekeeper.exceptions import InternalFaultError, PayloadTooLargeError

logger = logging.getLogger(__name__)

SIZE_UNITS = {
    "b": 1,
    "kb": 1024,
    "mb": 1024 * 1024,
    "gb": 1024 * 1024 * 1024,
}

_SIZE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*([a-z]+)?$")


def parse_size(size: str) -> int:
    """
    Convert "10mb" style strings to bytes.

    Missing unit means bytes; an unknown unit counts as bytes too; anything
    that does not look like "<number>[unit]" is 0.
    """
    match = _SIZE_PATTERN.match(size.strip().lower()) if isinstance(size, str) else None
    if not match:
        return 0
    number, unit = match.groups()
    return int(float(number) * SIZE_UNITS.get(unit or "b", 1))


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limit: Optional[str] = None, **kwargs):
        super().__init__(app, **kwargs)
        self.limit = limit if limit is not None else settings.request_size_limit
        self.limit_bytes = parse_size(self.limit)
        if self.limit_bytes == 0:
            logger.warning(
                "Request size limit %r parses to 0 bytes; every request with a body will be rejected",
                self.limit,
            )

    def exceeds_limit(self, request: Request) -> bool:
        declared = request.headers.get("content-length", "").strip()
        # What: Only plain ASCII digits count as a declared length
        # Why: str.isdigit() accepts "²" and other Unicode digits that int() rejects
        if not (declared.isascii() and declared.isdecimal()):
            return False
        if int(declared) <= self.limit_bytes:
            return False
        audit(
            "Request size limit exceeded",
            logging.WARNING,
            content_length=declared,
            limit=self.limit,
            **request_context(request),
        )
        return True

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            too_large = self.exceeds_limit(request)
        except Exception as exc:
            logger.error("Request size check error: %s", exc, exc_info=True)
            return InternalFaultError("Error checking request size").to_response()

        if too_large:
            return PayloadTooLargeError(limit=self.limit).to_response()
        # Non-numeric lengths are left for the server to refuse
        return await call_next(request)
