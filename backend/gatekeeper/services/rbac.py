"""
Gatekeeper: Permission Catalog & Role Registry
================================================

What:  The compiled-in permission identifiers and the roles that bundle them.
Why:   Every guard in guards.py answers its question by asking this module.
       Keeping the tables here, immutable, means there is exactly one place
       a permission can be granted and no code path that can grant one at
       runtime.
How:   Permissions are plain string constants grouped by resource. Roles are
       frozen dataclasses stored in a read-only mapping (MappingProxyType).
       Matching is exact string equality plus the single wildcard sentinel.

Role table:
    guest       → (nothing)
    user        → profile:read, profile:update, users:read
    moderator   → user + users:read:all, users:update
    admin       → every permission in the catalog
    superadmin  → *  (wildcard: granted every check, even unknown permissions)

Fail-closed:
    An unknown role, a None role or a None permission is never an error; it
    is simply "not granted".
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Tuple

WILDCARD = "*"


class UserPermissions:
    CREATE = "users:create"
    READ = "users:read"
    UPDATE = "users:update"
    DELETE = "users:delete"
    READ_ALL = "users:read:all"
    UPDATE_ANY = "users:update:any"
    DELETE_ANY = "users:delete:any"


class ProfilePermissions:
    READ = "profile:read"
    UPDATE = "profile:update"


class AdminPermissions:
    PANEL = "admin:panel"
    LOGS = "admin:logs"
    SYSTEM = "admin:system"


class Permissions:
    """Namespaced access to the catalog: ``Permissions.USERS.DELETE_ANY``."""

    USERS = UserPermissions
    PROFILE = ProfilePermissions
    ADMIN = AdminPermissions


def _collect(*groups: type) -> Tuple[str, ...]:
    collected: List[str] = []
    for group in groups:
        for name, value in vars(group).items():
            if not name.startswith("_") and isinstance(value, str):
                collected.append(value)
    return tuple(collected)


ALL_PERMISSIONS: Tuple[str, ...] = _collect(
    UserPermissions, ProfilePermissions, AdminPermissions
)


@dataclass(frozen=True)
class Role:
    name: str
    permissions: Tuple[str, ...]
    description: str = ""

    @property
    def is_wildcard(self) -> bool:
        return WILDCARD in self.permissions

    def grants(self, permission: Optional[str]) -> bool:
        # Wildcard wins before the lookup, so superadmin also holds permissions
        # that are not in the catalog yet
        if self.is_wildcard:
            return True
        return permission is not None and permission in self.permissions


_USER_BASE = (
    ProfilePermissions.READ,
    ProfilePermissions.UPDATE,
    UserPermissions.READ,
)

_ROLE_DEFINITIONS = (
    Role("guest", (), "Guest user with no permissions"),
    Role("user", _USER_BASE, "Regular user with basic permissions"),
    Role(
        "moderator",
        _USER_BASE + (UserPermissions.READ_ALL, UserPermissions.UPDATE),
        "Moderator with extended user management permissions",
    ),
    Role(
        "admin",
        (
            ProfilePermissions.READ,
            ProfilePermissions.UPDATE,
            UserPermissions.CREATE,
            UserPermissions.READ,
            UserPermissions.UPDATE,
            UserPermissions.DELETE,
            UserPermissions.READ_ALL,
            UserPermissions.UPDATE_ANY,
            UserPermissions.DELETE_ANY,
            AdminPermissions.PANEL,
            AdminPermissions.LOGS,
            AdminPermissions.SYSTEM,
        ),
        "Administrator with full permissions",
    ),
    Role("superadmin", (WILDCARD,), "Super administrator with unrestricted access"),
)

# Read-only view; the backing dict is not reachable from outside this module.
ROLES: Mapping[str, Role] = MappingProxyType({role.name: role for role in _ROLE_DEFINITIONS})

# Roles that bypass ownership comparisons in guards.require_ownership
OWNERSHIP_BYPASS_ROLES = frozenset({"admin", "superadmin"})


def get_role_info(role_name: Optional[str]) -> Optional[Role]:
    if not isinstance(role_name, str):
        return None
    return ROLES.get(role_name)


def has_permission(role_name: Optional[str], permission: Optional[str]) -> bool:
    """
    True when the role grants the permission.

    Unknown roles deny everything; wildcard roles grant everything.
    """
    role = get_role_info(role_name)
    if role is None:
        return False
    return role.grants(permission)


def has_any_permission(role_name: Optional[str], permissions: Optional[Iterable[str]]) -> bool:
    """True when at least one permission is granted (an empty list grants nothing)."""
    return any(has_permission(role_name, p) for p in permissions or ())


def has_all_permissions(role_name: Optional[str], permissions: Optional[Iterable[str]]) -> bool:
    """
    True when every permission is granted.

    An empty list is vacuously granted to known roles only; an unknown role
    still fails closed.
    """
    if get_role_info(role_name) is None:
        return False
    return all(has_permission(role_name, p) for p in permissions or ())


def get_role_permissions(role_name: Optional[str]) -> Tuple[str, ...]:
    role = get_role_info(role_name)
    return role.permissions if role else ()


def get_available_roles() -> List[str]:
    return list(ROLES.keys())
