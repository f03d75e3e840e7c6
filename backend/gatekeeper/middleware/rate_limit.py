"""
Gatekeeper: Rate Limiting Middleware & Dependencies
=====================================================

What:  Per-client fixed-window rate limiting, in three tiers.
Why:   Protects authentication endpoints from brute force and the API from
       abuse without depending on any external store.
How:   services/rate_limiter.py does the counting. This module decides the
       bucket key and how a refusal is delivered:
         - RateLimitMiddleware applies the general `api` tier to every request
         - `auth_rate_limit` / `strict_rate_limit` are FastAPI dependencies for
           the routes that need a tighter ceiling

Bucket key:
    "<client address>:<identity id>" or "<client address>:anonymous".
    The identity must be attached before this stage runs, so authenticated
    users behind one NAT address each get their own quota.

Quota accounting:
    The hit is counted before anything downstream runs. A request later
    rejected by the threat detector or a guard still consumed one unit.

Response on rate limit:
    HTTP 429 {"error": "Rate limit exceeded", "message": ..., "retryAfter": N}
    Retry-After and RateLimit-* headers.

Production Upgrade Path:
    The store is per process. Behind several workers each worker counts on
    its own, so the effective ceiling is max_requests × workers.
"""

import logging
import time
from typing import Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import HTTPConnection

from gatekeeper.audit import audit, client_address, request_context
from gatekeeper.config import settings
from gatekeeper.exceptions import InternalFaultError, RateLimitExceededError
from gatekeeper.schemas.identity import get_identity
from gatekeeper.services.rate_limiter import (
    Clock,
    FixedWindowStore,
    RateLimitResult,
    RateLimitTier,
)

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"


class RateLimiter:
    """
    One tier bound to its own bucket store.

    Usable directly as a FastAPI dependency:
        @router.post("/login", dependencies=[Depends(auth_rate_limit)])
    """

    def __init__(self, tier: RateLimitTier, store: Optional[FixedWindowStore] = None, clock: Optional[Clock] = None):
        self.tier = tier
        if store is None:
            store = FixedWindowStore(
                tier.window_seconds, tier.max_requests, clock=clock or time.monotonic
            )
        self.store = store

    @staticmethod
    def key_for(request: HTTPConnection) -> str:
        identity = get_identity(request)
        owner = str(identity.id) if identity is not None else ANONYMOUS
        return f"{client_address(request)}:{owner}"

    def check(self, request: HTTPConnection) -> RateLimitResult:
        """
        Count the request; raise RateLimitExceededError when over the ceiling.

        Unexpected faults surface as InternalFaultError, never as a pass.
        """
        try:
            key = self.key_for(request)
            result = self.store.hit(key)
        except Exception as exc:
            logger.error("Rate limiter error: %s", exc, exc_info=True)
            raise InternalFaultError("Error applying rate limit") from exc

        if not result.allowed:
            identity = get_identity(request)
            audit(
                "Rate limit exceeded",
                logging.WARNING,
                tier=self.tier.name,
                user_id=identity.id if identity is not None else ANONYMOUS,
                user_agent=request.headers.get("user-agent"),
                count=result.count,
                limit=result.limit,
                **request_context(request),
            )
            raise RateLimitExceededError(
                retry_after=result.retry_after,
                message=self.tier.message,
                context={"tier": self.tier.name, "key": key},
                rate_limit_headers=result.headers(),
            )
        return result

    async def __call__(self, request: Request, response: Response) -> None:
        result = self.check(request)
        response.headers.update(result.headers())


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies one tier (the `api` tier by default) to every request.

    Excluded paths:
        - /health: Health checks should never be rate-limited
        - /docs, /openapi.json, /redoc: API documentation stays reachable
    """

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}

    def __init__(self, app, limiter: Optional[RateLimiter] = None, **kwargs):
        super().__init__(app, **kwargs)
        self.limiter = limiter or api_rate_limit

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        try:
            result = self.limiter.check(request)
        except (RateLimitExceededError, InternalFaultError) as exc:
            return exc.to_response()

        response = await call_next(request)
        for name, value in result.headers().items():
            response.headers.setdefault(name, value)
        return response


# ══════════════════════════════════════════════════════════════════════════
# Named tiers
# ══════════════════════════════════════════════════════════════════════════

def build_tier(name: str) -> RateLimitTier:
    """Read one tier's (window, max, message) triple from settings."""
    messages = {
        "auth": "Too many authentication attempts, please try again later",
        "api": "Too many API requests, please try again later",
        "strict": "Too many requests, please slow down",
    }
    return RateLimitTier(
        name=name,
        window_seconds=getattr(settings, f"{name}_rate_limit_window"),
        max_requests=getattr(settings, f"{name}_rate_limit_max"),
        message=messages[name],
    )


auth_rate_limit = RateLimiter(build_tier("auth"))
api_rate_limit = RateLimiter(build_tier("api"))
strict_rate_limit = RateLimiter(build_tier("strict"))
