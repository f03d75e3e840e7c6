"""
Gatekeeper: Health Check Route
================================

What:  Liveness endpoint for load balancers and container health checks.
Why:   The pipeline has no external dependencies, so "the process answers"
       is the whole health story.
Note:  Excluded from rate limiting and from the access log.
"""

import time

from fastapi import APIRouter

from gatekeeper import __version__
from gatekeeper.schemas.responses import HealthResponse

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
