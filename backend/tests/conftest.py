"""
Gatekeeper: Test Configuration (conftest.py)
==============================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── fake_clock: Manually advanced time source for rate limiter tests
    ├── as_identity: Builds the headers that attach a test identity
    ├── audit_records: Captured gatekeeper.audit log records
    ├── build_app: Factory for a test app (raw ASGI tests)
    ├── build_client: Factory for an AsyncClient over a freshly built app
    └── test_client: AsyncClient over the default test app

Test app:
    create_app() plus:
      - HeaderIdentityMiddleware, standing in for the upstream authenticator.
        It reads X-Test-User-Id / X-Test-Role and attaches an Identity.
      - A router of guarded endpoints exercising every guard.
"""

import logging
import os

import pytest
import pytest_asyncio
from fastapi import APIRouter, Depends, FastAPI, Request
from httpx import ASGITransport, AsyncClient
from starlette.middleware.base import BaseHTTPMiddleware

os.environ["LOG_LEVEL"] = "WARNING"

from gatekeeper.guards import (  # noqa: E402
    get_current_identity,
    require_all_permissions,
    require_any_permission,
    require_ownership,
    require_ownership_or_permission,
    require_permission,
    require_role,
)
from gatekeeper.main import create_app  # noqa: E402
from gatekeeper.middleware.hardening import harden_path_params  # noqa: E402
from gatekeeper.middleware.rate_limit import RateLimiter  # noqa: E402
from gatekeeper.schemas.identity import Identity, attach_identity  # noqa: E402
from gatekeeper.schemas.responses import GUARD_RESPONSES  # noqa: E402
from gatekeeper.services.rate_limiter import RateLimitTier  # noqa: E402
from gatekeeper.services.rbac import Permissions  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Test doubles
# ══════════════════════════════════════════════════════════════════════════

class FakeClock:
    """Callable time source; advance() moves it forward."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class HeaderIdentityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        user_id = request.headers.get("X-Test-User-Id")
        role = request.headers.get("X-Test-Role")
        if user_id is not None and role is not None:
            attach_identity(request, Identity(id=int(user_id), role=role))
        return await call_next(request)


def identity_headers(user_id: int, role: str) -> dict:
    return {"X-Test-User-Id": str(user_id), "X-Test-Role": role}


def make_test_router(login_limiter: RateLimiter) -> APIRouter:
    router = APIRouter(
        prefix="/api",
        dependencies=[Depends(harden_path_params)],
        responses=GUARD_RESPONSES,
    )

    @router.get("/users/{id}")
    async def read_user(id: str, identity: Identity = Depends(require_ownership("id"))):
        return {"id": id, "viewer": identity.id}

    @router.delete("/users/{id}")
    async def delete_user(
        id: str,
        identity: Identity = Depends(require_permission(Permissions.USERS.DELETE_ANY)),
    ):
        return {"deleted": id}

    @router.put("/users/{id}")
    async def update_user(
        id: str,
        identity: Identity = Depends(require_ownership_or_permission(Permissions.USERS.UPDATE_ANY)),
    ):
        return {"updated": id}

    @router.get("/admin")
    async def admin_panel(
        identity: Identity = Depends(
            require_any_permission([Permissions.ADMIN.PANEL, Permissions.ADMIN.LOGS])
        ),
    ):
        return {"ok": True}

    @router.get("/admin/system")
    async def admin_system(
        identity: Identity = Depends(
            require_all_permissions([Permissions.ADMIN.SYSTEM, Permissions.ADMIN.LOGS])
        ),
    ):
        return {"ok": True}

    @router.get("/moderation")
    async def moderation(identity: Identity = Depends(require_role(["moderator", "admin"]))):
        return {"ok": True}

    @router.get("/me")
    async def me(identity: Identity = Depends(get_current_identity)):
        return {"id": identity.id, "role": identity.role}

    @router.post("/echo")
    async def echo(request: Request):
        body = await request.json()
        return {"body": body, "query": dict(request.query_params)}

    @router.get("/echo/{value}")
    async def echo_param(value: str):
        return {"value": value}

    @router.post("/upload")
    async def upload(request: Request):
        data = await request.body()
        return {"size": len(data), "query": dict(request.query_params)}

    @router.post("/login", dependencies=[Depends(login_limiter)])
    async def login():
        return {"ok": True}

    return router


def build_test_app(
    api_limiter: RateLimiter = None,
    login_limiter: RateLimiter = None,
    request_size_limit: str = None,
) -> FastAPI:
    app = create_app(
        api_limiter=api_limiter or RateLimiter(RateLimitTier("api", 900, 1000, "Too many API requests")),
        request_size_limit=request_size_limit,
    )
    app.include_router(
        make_test_router(
            login_limiter or RateLimiter(RateLimitTier("auth", 900, 5, "Too many authentication attempts"))
        )
    )
    # Added last, so it runs first: the identity exists before the pipeline
    app.add_middleware(HeaderIdentityMiddleware)
    return app


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def as_identity():
    """
    Header builder for HeaderIdentityMiddleware.

    Usage:
        await client.get("/api/me", headers=as_identity(5, "user"))
    """
    return identity_headers


@pytest.fixture
def audit_records(caplog):
    """
    Records emitted on the gatekeeper.audit logger during the test.

    Usage:
        assert [r.event for r in audit_records()] == ["Permission granted"]
    """
    caplog.set_level(logging.DEBUG, logger="gatekeeper.audit")

    def records():
        return [r for r in caplog.records if r.name == "gatekeeper.audit"]

    return records


@pytest.fixture
def build_app():
    """Factory for a bare test app, for tests that drive it over raw ASGI."""
    return build_test_app


@pytest_asyncio.fixture
async def build_client():
    """
    Factory fixture: build_client(**build_test_app kwargs) -> AsyncClient.

    Clients are closed when the test finishes.
    """
    clients = []

    async def factory(**kwargs) -> AsyncClient:
        transport = ASGITransport(app=build_test_app(**kwargs))
        client = AsyncClient(transport=transport, base_url="http://test")
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.aclose()


@pytest_asyncio.fixture
async def test_client(build_client):
    return await build_client()
