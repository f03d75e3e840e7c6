"""
Gatekeeper: Authorization Guards
==================================

What:  FastAPI dependency factories that decide whether the attached identity
       may reach a route.
How:   Each factory returns an async dependency. It reads the identity that
       the upstream authenticator attached, asks services/rbac.py, audit-logs
       the decision and either returns the Identity or raises a GatekeeperError
       that the exception handlers in main.py render.

Usage:
    router = APIRouter(
        dependencies=[Depends(harden_path_params)],
        responses=GUARD_RESPONSES,
    )

    @router.delete("/users/{id}")
    async def delete_user(
        id: int,
        identity: Identity = Depends(require_permission(Permissions.USERS.DELETE_ANY)),
    ): ...

Guards:
    require_permission(p)                      one permission
    require_any_permission([p, ...])           at least one
    require_all_permissions([p, ...])          every one
    require_role([r, ...])                     role membership
    require_ownership(id_param)                path id == identity.id
    require_ownership_or_permission(p, id_param)

Fail-safe boundary:
    Anything other than a GatekeeperError escaping a check is logged with its
    traceback and converted to a 500 (InternalFaultError). A buggy check
    denies; it never grants and never crashes the request task.
"""

import logging
from typing import Any, Awaitable, Callable, NoReturn, Optional, Sequence

from fastapi import Request

from gatekeeper.audit import audit, request_context
from gatekeeper.exceptions import (
    AuthenticationRequiredError,
    AuthorizationDeniedError,
    GatekeeperError,
    InternalFaultError,
)
from gatekeeper.schemas.identity import Identity, get_identity
from gatekeeper.services.rbac import (
    OWNERSHIP_BYPASS_ROLES,
    has_all_permissions,
    has_any_permission,
    has_permission,
)

logger = logging.getLogger(__name__)

Guard = Callable[[Request], Awaitable[Identity]]
Check = Callable[[Request], Identity]


def _fail_safe(check: Check, fault_message: str, log_label: str) -> Guard:
    async def dependency(request: Request) -> Identity:
        try:
            return check(request)
        except GatekeeperError:
            # Deliberate 401/403 decisions pass through to the handlers
            raise
        except Exception as exc:
            logger.error("%s: %s", log_label, exc, exc_info=True)
            audit(
                log_label,
                logging.ERROR,
                error=type(exc).__name__,
                **request_context(request),
            )
            raise InternalFaultError(fault_message) from exc

    return dependency


def _authenticated(request: Request, **details: Any) -> Identity:
    identity = get_identity(request)
    if identity is None:
        audit(
            "Permission check failed - no authenticated user",
            logging.WARNING,
            **details,
            **request_context(request),
        )
        raise AuthenticationRequiredError()
    return identity


def _deny(request: Request, event: str, identity: Identity, message: str, **details: Any) -> NoReturn:
    audit(
        event,
        logging.WARNING,
        user_id=identity.id,
        user_role=identity.role,
        **details,
        **request_context(request),
    )
    raise AuthorizationDeniedError(message)


def _grant(request: Request, event: str, identity: Identity, **details: Any) -> Identity:
    audit(
        event,
        logging.INFO,
        user_id=identity.id,
        user_role=identity.role,
        **details,
        **request_context(request),
    )
    return identity


def _parse_resource_id(raw: Any) -> Optional[int]:
    """Path ids are compared as integers; anything else never matches."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        # What: Plain ASCII digits only
        # Why: int() also accepts "5_0", "+5" and "٥", which would let several
        #      spellings of one id pass the comparison
        text = raw.strip()
        if text.isascii() and text.isdecimal():
            return int(text)
    return None


def _owns(request: Request, identity: Identity, id_param: str) -> bool:
    resource_id = _parse_resource_id(request.path_params.get(id_param))
    return resource_id is not None and resource_id == identity.id


# ══════════════════════════════════════════════════════════════════════════
# Permission guards
# ══════════════════════════════════════════════════════════════════════════

def require_permission(permission: str) -> Guard:
    def check(request: Request) -> Identity:
        identity = _authenticated(request, required_permission=permission)
        if not has_permission(identity.role, permission):
            _deny(
                request,
                "Permission denied",
                identity,
                f"Insufficient permissions. Required: {permission}",
                required_permission=permission,
            )
        return _grant(request, "Permission granted", identity, required_permission=permission)

    return _fail_safe(check, "Error checking permissions", "Permission check error")


def require_any_permission(permissions: Sequence[str]) -> Guard:
    required = list(permissions)

    def check(request: Request) -> Identity:
        identity = _authenticated(request, required_permissions=required)
        if not has_any_permission(identity.role, required):
            _deny(
                request,
                "Permission denied - insufficient permissions",
                identity,
                f"Insufficient permissions. Required any of: {', '.join(required)}",
                required_permissions=required,
            )
        return _grant(request, "Permission granted", identity, required_permissions=required)

    return _fail_safe(check, "Error checking permissions", "Permission check error")


def require_all_permissions(permissions: Sequence[str]) -> Guard:
    required = list(permissions)

    def check(request: Request) -> Identity:
        identity = _authenticated(request, required_permissions=required)
        if not has_all_permissions(identity.role, required):
            _deny(
                request,
                "Permission denied - missing required permissions",
                identity,
                f"Insufficient permissions. Required all of: {', '.join(required)}",
                required_permissions=required,
            )
        return _grant(request, "Permission granted", identity, required_permissions=required)

    return _fail_safe(check, "Error checking permissions", "Permission check error")


def require_role(roles: Sequence[str]) -> Guard:
    allowed = list(roles)

    def check(request: Request) -> Identity:
        identity = _authenticated(request, required_roles=allowed)
        if identity.role not in allowed:
            _deny(
                request,
                "Role check failed",
                identity,
                f"Insufficient permissions. Required role(s): {', '.join(allowed)}",
                required_roles=allowed,
            )
        return _grant(request, "Role check passed", identity, required_roles=allowed)

    return _fail_safe(check, "Error checking permissions", "Role check error")


# ══════════════════════════════════════════════════════════════════════════
# Ownership guards
# ══════════════════════════════════════════════════════════════════════════

def require_ownership(id_param: str = "id") -> Guard:
    """
    Allow only the owner of the resource named by a path parameter.

    admin and superadmin bypass the comparison entirely.
    """

    def check(request: Request) -> Identity:
        identity = _authenticated(request, resource_id_param=id_param)
        if identity.role in OWNERSHIP_BYPASS_ROLES:
            return _grant(request, "Ownership bypassed by role", identity)
        if not _owns(request, identity, id_param):
            _deny(
                request,
                "Ownership check failed",
                identity,
                "You can only access your own resources",
                requested_resource_id=request.path_params.get(id_param),
            )
        return _grant(request, "Ownership check passed", identity)

    return _fail_safe(check, "Error checking resource ownership", "Ownership check error")


def require_ownership_or_permission(permission: str, id_param: str = "id") -> Guard:
    def check(request: Request) -> Identity:
        identity = _authenticated(request, required_permission=permission)
        # Permission first: a holder is audited as a permission grant even
        # when it also happens to own the resource
        if has_permission(identity.role, permission):
            return _grant(request, "Permission granted", identity, required_permission=permission)
        if _owns(request, identity, id_param):
            return _grant(request, "Ownership check passed", identity)
        _deny(
            request,
            "Access denied - neither ownership nor permission",
            identity,
            "You can only access your own resources or need higher permissions",
            required_permission=permission,
            requested_resource_id=request.path_params.get(id_param),
        )

    return _fail_safe(check, "Error checking access rights", "Ownership/permission check error")


async def get_current_identity(request: Request) -> Identity:
    """Plain authentication requirement, for handlers that only need the identity."""
    identity = get_identity(request)
    if identity is None:
        raise AuthenticationRequiredError()
    return identity
