"""
Gatekeeper: FastAPI Application Factory
=========================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
       Host applications either mount their routers on it or copy the
       middleware registration into their own factory.
Who:   Called by uvicorn (uvicorn gatekeeper.main:app) and by the test suite.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware Chain (outermost first):                     │
    │  Headers → Request ID → Access Log → CORS → Size Limit   │
    │          → Rate Limit → Hardening                        │
    │                                                          │
    │  Exception Handlers:                                     │
    │  GatekeeperError → its status │ Exception → 500          │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  configure logging, start the audit queue listener
    Shutdown: flush and stop the audit queue listener
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gatekeeper import __version__
from gatekeeper.audit import start_audit_listener, stop_audit_listener
from gatekeeper.config import settings
from gatekeeper.exceptions import GatekeeperError
from gatekeeper.middleware.hardening import RequestHardeningMiddleware
from gatekeeper.middleware.logging import RequestLoggingMiddleware
from gatekeeper.middleware.rate_limit import RateLimiter, RateLimitMiddleware, api_rate_limit
from gatekeeper.middleware.request_id import RequestIDMiddleware, request_id_var
from gatekeeper.middleware.request_size import RequestSizeLimitMiddleware
from gatekeeper.middleware.security_headers import SecurityHeadersMiddleware
from gatekeeper.routes import health

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the whole process.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s

    The audit logger gets its own queue so that writing audit records never
    blocks a request; everything else goes straight to stdout.
    """
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(logging.Formatter(log_format, datefmt="%Y-%m-%dT%H:%M:%S"))

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        handlers=[stream_handler],
        force=True,
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    start_audit_listener(stream_handler)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("%s %s starting up", settings.app_name, __version__)
    logger.info(
        "Rate limits: auth %d/%ds, api %d/%ds, strict %d/%ds",
        settings.auth_rate_limit_max, settings.auth_rate_limit_window,
        settings.api_rate_limit_max, settings.api_rate_limit_window,
        settings.strict_rate_limit_max, settings.strict_rate_limit_window,
    )
    logger.info("Request size limit: %s", settings.request_size_limit)

    yield

    logger.info("%s shutting down", settings.app_name)
    stop_audit_listener()


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exceptions raised by guards and dependencies to responses.

    Handler hierarchy:
        GatekeeperError (and subclasses) → exc.status_code, exc.to_body()
        Exception (fallback)             → 500 Internal Server Error

    Security: context dicts and stack traces are logged, never returned.
    """

    @app.exception_handler(GatekeeperError)
    async def handle_gatekeeper_error(request: Request, exc: GatekeeperError):
        rid = request_id_var.get("")
        if exc.status_code >= 500:
            logger.error("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
        else:
            logger.info("[%s] %s: %s", rid, type(exc).__name__, exc.message)
        return exc.to_response()

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred",
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    api_limiter: Optional[RateLimiter] = None,
    request_size_limit: Optional[str] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        api_limiter: Tier applied by RateLimitMiddleware (default: the shared `api` tier)
        request_size_limit: Overrides settings.request_size_limit (declared and buffered bodies)
    """
    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Request authorization and hardening layer.",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Middleware executes in REVERSE order of addition (last added = outermost).
    app.add_middleware(RequestHardeningMiddleware, body_limit=request_size_limit)
    app.add_middleware(RateLimitMiddleware, limiter=api_limiter or api_rate_limit)
    app.add_middleware(RequestSizeLimitMiddleware, limit=request_size_limit)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "Retry-After",
            "RateLimit-Limit",
            "RateLimit-Remaining",
            "RateLimit-Reset",
        ],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    register_exception_handlers(app)

    app.include_router(health.router)

    return app


app = create_app()
