# auth/permissions.py
"""
Roles and the permissions they grant inside a tenant.
"""

from enum import Enum
from typing import FrozenSet, Union


class UserRole(str, Enum):
    OWNER = "Owner"
    ADMIN = "Admin"
    ACCOUNTANT = "Accountant"
    EDITOR = "Editor"
    VIEWER = "Viewer"


class Permission(str, Enum):
    INVOICES_READ = "invoices_read"
    INVOICES_CREATE = "invoices_create"
    INVOICES_EDIT = "invoices_edit"
    INVOICES_DELETE = "invoices_delete"
    INVOICES_SEND = "invoices_send"
    CLIENTS_READ = "clients_read"
    CLIENTS_MANAGE = "clients_manage"
    SETTINGS_READ = "settings_read"
    SETTINGS_MANAGE = "settings_manage"
    USERS_READ = "users_read"
    USERS_MANAGE = "users_manage"
    REPORTS_VIEW = "reports_view"
    EXPORTS_CREATE = "exports_create"
    DOCUMENTS_PROCESS = "documents_process"
    PEPPOL_MANAGE = "peppol_manage"


ALL_PERMISSIONS: FrozenSet[Permission] = frozenset(Permission)

ROLE_PERMISSIONS = {
    UserRole.OWNER: ALL_PERMISSIONS,
    UserRole.ADMIN: ALL_PERMISSIONS - {Permission.USERS_MANAGE},
    UserRole.ACCOUNTANT: frozenset({
        Permission.INVOICES_READ,
        Permission.INVOICES_CREATE,
        Permission.INVOICES_EDIT,
        Permission.INVOICES_SEND,
        Permission.CLIENTS_READ,
        Permission.CLIENTS_MANAGE,
        Permission.REPORTS_VIEW,
        Permission.EXPORTS_CREATE,
        Permission.DOCUMENTS_PROCESS,
    }),
    UserRole.EDITOR: frozenset({
        Permission.INVOICES_READ,
        Permission.INVOICES_CREATE,
        Permission.INVOICES_EDIT,
        Permission.CLIENTS_READ,
        Permission.REPORTS_VIEW,
        Permission.DOCUMENTS_PROCESS,
    }),
    UserRole.VIEWER: frozenset({
        Permission.INVOICES_READ,
        Permission.CLIENTS_READ,
        Permission.REPORTS_VIEW,
    }),
}


def role_permissions(role: Union[UserRole, str]) -> FrozenSet[Permission]:
    """Permissions granted by a role; unknown roles get none."""
    try:
        return ROLE_PERMISSIONS[UserRole(role)]
    except ValueError:
        return frozenset()


def permission_names(role: Union[UserRole, str]) -> list:
    """Sorted permission values, as stored in the JWT."""
    return sorted(p.value for p in role_permissions(role))
