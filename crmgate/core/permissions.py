"""Role-based access control: the role→permission table and the checker.

``ROLE_PERMISSIONS`` is the only place a permission is granted. Everything
else asks :class:`PermissionChecker`, which combines the caller's role with
record ownership for tenant-scoped entities (leads, opportunities, accounts,
contacts, activities).
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from crmgate.api.deps import Principal


class Role(StrEnum):
    ADMIN = "Admin"
    MANAGER = "Manager"
    SALES_REP = "Sales Rep"
    VIEWER = "Viewer"


class Permission(StrEnum):
    # Users
    USER_CREATE = "user:create"
    USER_READ = "user:read"
    USER_UPDATE = "user:update"
    USER_DELETE = "user:delete"

    # Leads
    LEAD_CREATE = "lead:create"
    LEAD_READ = "lead:read"
    LEAD_READ_ALL = "lead:read:all"
    LEAD_UPDATE = "lead:update"
    LEAD_UPDATE_ALL = "lead:update:all"
    LEAD_DELETE = "lead:delete"
    LEAD_ASSIGN = "lead:assign"

    # Opportunities
    OPPORTUNITY_CREATE = "opportunity:create"
    OPPORTUNITY_READ = "opportunity:read"
    OPPORTUNITY_READ_ALL = "opportunity:read:all"
    OPPORTUNITY_UPDATE = "opportunity:update"
    OPPORTUNITY_UPDATE_ALL = "opportunity:update:all"
    OPPORTUNITY_DELETE = "opportunity:delete"
    OPPORTUNITY_ASSIGN = "opportunity:assign"

    # Accounts
    ACCOUNT_CREATE = "account:create"
    ACCOUNT_READ = "account:read"
    ACCOUNT_READ_ALL = "account:read:all"
    ACCOUNT_UPDATE = "account:update"
    ACCOUNT_UPDATE_ALL = "account:update:all"
    ACCOUNT_DELETE = "account:delete"

    # Contacts
    CONTACT_CREATE = "contact:create"
    CONTACT_READ = "contact:read"
    CONTACT_READ_ALL = "contact:read:all"
    CONTACT_UPDATE = "contact:update"
    CONTACT_UPDATE_ALL = "contact:update:all"
    CONTACT_DELETE = "contact:delete"

    # Activities
    ACTIVITY_CREATE = "activity:create"
    ACTIVITY_READ = "activity:read"
    ACTIVITY_READ_ALL = "activity:read:all"
    ACTIVITY_UPDATE = "activity:update"
    ACTIVITY_UPDATE_ALL = "activity:update:all"
    ACTIVITY_DELETE = "activity:delete"

    # Reporting
    REPORT_VIEW = "report:view"
    REPORT_EXPORT = "report:export"
    REPORT_ADVANCED = "report:advanced"

    # Settings
    SETTINGS_VIEW = "settings:view"
    SETTINGS_UPDATE = "settings:update"

    # System
    SYSTEM_ADMIN = "system:admin"
    AUDIT_LOG_VIEW = "audit:view"


@dataclass(frozen=True, slots=True)
class EntityPermissions:
    """The own/all permission pairs for one tenant-scoped entity."""

    create: Permission
    read: Permission
    read_all: Permission
    update: Permission
    update_all: Permission
    delete: Permission


def _entity(name: str) -> EntityPermissions:
    return EntityPermissions(
        create=Permission(f"{name}:create"),
        read=Permission(f"{name}:read"),
        read_all=Permission(f"{name}:read:all"),
        update=Permission(f"{name}:update"),
        update_all=Permission(f"{name}:update:all"),
        delete=Permission(f"{name}:delete"),
    )


ENTITY_PERMISSIONS: Mapping[str, EntityPermissions] = MappingProxyType({
    name: _entity(name)
    for name in ("lead", "opportunity", "account", "contact", "activity")
})

P = Permission

_MANAGER: frozenset[Permission] = frozenset({
    P.USER_READ,
    P.LEAD_CREATE, P.LEAD_READ, P.LEAD_READ_ALL, P.LEAD_UPDATE, P.LEAD_UPDATE_ALL,
    P.LEAD_ASSIGN,
    P.OPPORTUNITY_CREATE, P.OPPORTUNITY_READ, P.OPPORTUNITY_READ_ALL,
    P.OPPORTUNITY_UPDATE, P.OPPORTUNITY_UPDATE_ALL, P.OPPORTUNITY_ASSIGN,
    P.ACCOUNT_CREATE, P.ACCOUNT_READ, P.ACCOUNT_READ_ALL, P.ACCOUNT_UPDATE,
    P.ACCOUNT_UPDATE_ALL,
    P.CONTACT_CREATE, P.CONTACT_READ, P.CONTACT_READ_ALL, P.CONTACT_UPDATE,
    P.CONTACT_UPDATE_ALL,
    P.ACTIVITY_CREATE, P.ACTIVITY_READ, P.ACTIVITY_READ_ALL, P.ACTIVITY_UPDATE,
    P.ACTIVITY_UPDATE_ALL,
    P.REPORT_VIEW, P.REPORT_EXPORT, P.REPORT_ADVANCED,
    P.SETTINGS_VIEW,
})

_SALES_REP: frozenset[Permission] = frozenset({
    P.LEAD_CREATE, P.LEAD_READ, P.LEAD_UPDATE,
    P.OPPORTUNITY_CREATE, P.OPPORTUNITY_READ, P.OPPORTUNITY_UPDATE,
    P.ACCOUNT_CREATE, P.ACCOUNT_READ, P.ACCOUNT_UPDATE,
    P.CONTACT_CREATE, P.CONTACT_READ, P.CONTACT_UPDATE,
    P.ACTIVITY_CREATE, P.ACTIVITY_READ, P.ACTIVITY_UPDATE,
    P.REPORT_VIEW,
    P.SETTINGS_VIEW,
})

_VIEWER: frozenset[Permission] = frozenset({
    P.LEAD_READ, P.OPPORTUNITY_READ, P.ACCOUNT_READ, P.CONTACT_READ, P.ACTIVITY_READ,
    P.REPORT_VIEW,
})

# Single source of truth. Read-only for the life of the process.
ROLE_PERMISSIONS: Mapping[Role, frozenset[Permission]] = MappingProxyType({
    Role.ADMIN: frozenset(Permission),
    Role.MANAGER: _MANAGER,
    Role.SALES_REP: _SALES_REP,
    Role.VIEWER: _VIEWER,
})

del P


def permissions_for(role: Role) -> frozenset[Permission]:
    """Permissions granted to ``role``. Unknown roles get nothing."""
    if not isinstance(role, Role):
        return frozenset()
    return ROLE_PERMISSIONS.get(role, frozenset())


PERMISSION_LABELS: Mapping[Permission, str] = MappingProxyType({
    Permission.USER_CREATE: "Create Users",
    Permission.USER_READ: "View Users",
    Permission.USER_UPDATE: "Update Users",
    Permission.USER_DELETE: "Delete Users",
    Permission.LEAD_CREATE: "Create Leads",
    Permission.LEAD_READ: "View Own Leads",
    Permission.LEAD_READ_ALL: "View All Leads",
    Permission.LEAD_UPDATE: "Update Own Leads",
    Permission.LEAD_UPDATE_ALL: "Update All Leads",
    Permission.LEAD_DELETE: "Delete Leads",
    Permission.LEAD_ASSIGN: "Assign Leads",
    Permission.OPPORTUNITY_CREATE: "Create Opportunities",
    Permission.OPPORTUNITY_READ: "View Own Opportunities",
    Permission.OPPORTUNITY_READ_ALL: "View All Opportunities",
    Permission.OPPORTUNITY_UPDATE: "Update Own Opportunities",
    Permission.OPPORTUNITY_UPDATE_ALL: "Update All Opportunities",
    Permission.OPPORTUNITY_DELETE: "Delete Opportunities",
    Permission.OPPORTUNITY_ASSIGN: "Assign Opportunities",
    Permission.ACCOUNT_CREATE: "Create Accounts",
    Permission.ACCOUNT_READ: "View Own Accounts",
    Permission.ACCOUNT_READ_ALL: "View All Accounts",
    Permission.ACCOUNT_UPDATE: "Update Own Accounts",
    Permission.ACCOUNT_UPDATE_ALL: "Update All Accounts",
    Permission.ACCOUNT_DELETE: "Delete Accounts",
    Permission.CONTACT_CREATE: "Create Contacts",
    Permission.CONTACT_READ: "View Own Contacts",
    Permission.CONTACT_READ_ALL: "View All Contacts",
    Permission.CONTACT_UPDATE: "Update Own Contacts",
    Permission.CONTACT_UPDATE_ALL: "Update All Contacts",
    Permission.CONTACT_DELETE: "Delete Contacts",
    Permission.ACTIVITY_CREATE: "Create Activities",
    Permission.ACTIVITY_READ: "View Own Activities",
    Permission.ACTIVITY_READ_ALL: "View All Activities",
    Permission.ACTIVITY_UPDATE: "Update Own Activities",
    Permission.ACTIVITY_UPDATE_ALL: "Update All Activities",
    Permission.ACTIVITY_DELETE: "Delete Activities",
    Permission.REPORT_VIEW: "View Reports",
    Permission.REPORT_EXPORT: "Export Reports",
    Permission.REPORT_ADVANCED: "Access Advanced Reports",
    Permission.SETTINGS_VIEW: "View Settings",
    Permission.SETTINGS_UPDATE: "Update Settings",
    Permission.SYSTEM_ADMIN: "System Administration",
    Permission.AUDIT_LOG_VIEW: "View Audit Logs",
})


class PermissionChecker:
    """Answers permission and ownership questions for one principal.

    Every check is a plain boolean. A missing permission is an expected
    outcome; callers turn ``False`` into a 403.
    """

    __slots__ = ("_role", "_user_id", "_granted")

    def __init__(self, role: Role, user_id: uuid.UUID) -> None:
        self._role = role
        self._user_id = user_id
        self._granted = permissions_for(role)

    @classmethod
    def for_principal(cls, principal: Principal) -> PermissionChecker:
        return cls(principal.role, principal.user_id)

    @property
    def role(self) -> Role:
        return self._role

    @property
    def user_id(self) -> uuid.UUID:
        return self._user_id

    def has_permission(self, permission: Permission) -> bool:
        return permission in self._granted

    def has_any_permission(self, permissions: Iterable[Permission]) -> bool:
        return any(self.has_permission(p) for p in permissions)

    def has_all_permissions(self, permissions: Iterable[Permission]) -> bool:
        return all(self.has_permission(p) for p in permissions)

    def can_access_resource(
        self,
        owner_id: uuid.UUID | None,
        required_permission: Permission,
        require_ownership: bool = False,
    ) -> bool:
        if not self.has_permission(required_permission):
            return False
        if not require_ownership:
            return True
        return owner_id == self._user_id

    def can_modify_resource(
        self,
        owner_id: uuid.UUID | None,
        update_own: Permission,
        update_all: Permission,
    ) -> bool:
        """Gate for every update/delete on a tenant-scoped record."""
        if self.has_permission(update_all):
            return True
        return self.has_permission(update_own) and owner_id == self._user_id

    def can_read_resource(self, owner_id: uuid.UUID | None, entity: EntityPermissions) -> bool:
        """Read-side counterpart of :meth:`can_modify_resource`."""
        if self.has_permission(entity.read_all):
            return True
        return self.can_access_resource(owner_id, entity.read, require_ownership=True)

    def is_admin(self) -> bool:
        return self._role == Role.ADMIN

    def is_manager_or_above(self) -> bool:
        return self._role in (Role.ADMIN, Role.MANAGER)
