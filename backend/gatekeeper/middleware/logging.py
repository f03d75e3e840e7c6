"""
Gatekeeper: Access Log Middleware
===================================

What:  One log line per request: method, path, status, duration, client,
       identity and request ID.
Why:   Pipeline rejections (400/401/403/413/429) show up next to normal
       traffic, at a level that matches their severity.

What we log vs what we DON'T log (privacy):
    Log:        method, path, status, duration, client address, user id, request ID
    Don't log:  bodies, query values, Authorization/Cookie headers
    Payloads only ever reach the audit log, and only for suspicious requests.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from gatekeeper.audit import client_address
from gatekeeper.middleware.request_id import request_id_var
from gatekeeper.schemas.identity import IDENTITY_STATE_KEY

logger = logging.getLogger("gatekeeper.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    5xx → ERROR, 4xx → WARNING, everything else → INFO.
    /health is not logged.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path == "/health":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        identity = getattr(request.state, IDENTITY_STATE_KEY, None)
        if isinstance(identity, dict):
            user_id = identity.get("id")
        else:
            user_id = getattr(identity, "id", None)
        rid = request_id_var.get("")
        client_ip = client_address(request)

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s user=%s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            user_id if user_id is not None else "anonymous",
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
                "user_id": user_id,
            },
        )
        return response
