"""
Closed role and permission vocabulary plus the bootstrap grant table.
"""
from enum import Enum
from typing import Dict, FrozenSet


class RoleName(str, Enum):
    USER = "user"      # customers planning their own projects
    SALES = "sales"
    ADMIN = "admin"


class PermissionName(str, Enum):
    VIEW_PROJECTS = "view projects"
    CREATE_PROJECTS = "create projects"
    EDIT_PROJECTS = "edit projects"
    DELETE_PROJECTS = "delete projects"

    VIEW_LEADS = "view leads"
    CREATE_LEADS = "create leads"
    EDIT_LEADS = "edit leads"
    ASSIGN_LEADS = "assign leads"

    VIEW_APPOINTMENTS = "view appointments"
    CREATE_APPOINTMENTS = "create appointments"
    EDIT_APPOINTMENTS = "edit appointments"
    DELETE_APPOINTMENTS = "delete appointments"

    MANAGE_USERS = "manage users"
    ACCESS_ADMIN_PANEL = "access admin panel"


P = PermissionName

ROLE_PERMISSIONS: Dict[RoleName, FrozenSet[PermissionName]] = {
    RoleName.USER: frozenset({
        P.VIEW_PROJECTS,
        P.CREATE_PROJECTS,
        P.EDIT_PROJECTS,
        P.DELETE_PROJECTS,
        P.VIEW_APPOINTMENTS,
        P.CREATE_APPOINTMENTS,
    }),
    RoleName.SALES: frozenset({
        P.VIEW_PROJECTS,
        P.VIEW_LEADS,
        P.EDIT_LEADS,
        P.ASSIGN_LEADS,
        P.VIEW_APPOINTMENTS,
        P.CREATE_APPOINTMENTS,
        P.EDIT_APPOINTMENTS,
    }),
    RoleName.ADMIN: frozenset(PermissionName),
}

_missing = set(RoleName) - set(ROLE_PERMISSIONS)
if _missing:
    raise RuntimeError(f"Grant table has no entry for roles: {sorted(r.value for r in _missing)}")

# Human-readable reasons used by the authorization gate
ROLE_DENIAL_REASONS: Dict[RoleName, str] = {
    RoleName.USER: "Unauthorized access. Customer account required.",
    RoleName.SALES: "Unauthorized access. Sales privileges required.",
    RoleName.ADMIN: "Unauthorized access. Admin privileges required.",
}

SALES_STAFF = (RoleName.SALES, RoleName.ADMIN)
ADMIN_ONLY = (RoleName.ADMIN,)
