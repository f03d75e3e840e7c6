"""
Gatekeeper: Request ID Middleware
===================================

What:  Gives every request a correlation ID, echoed in X-Request-ID.
Why:   Audit records, access lines and the client's error report can be
       joined on one value.
How:   Stored in a ContextVar (coroutine-local) for loggers and audit(),
       and on request.state for handlers.

Client-supplied IDs:
    Accepted only when they look like an ID (letters, digits, "-", "_",
    at most 64 chars). Anything else is replaced, so a header cannot inject
    newlines or markup into the audit log.
"""

import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        supplied = request.headers.get("X-Request-ID", "")
        rid = supplied if _SAFE_REQUEST_ID.match(supplied) else new_request_id()

        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = rid
        return response
