"""
Role/permission store.

Roles and permissions are database rows joined many-to-many; a user's
effective permissions are the union over the roles they hold. Role to
permission lookups go through a process-wide cache which every write in this
module invalidates, both at flush time and when the transaction ends.
"""
import threading
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

import structlog
from sqlalchemy import event
from sqlalchemy.orm import Session

from ..auth.roles import PermissionName, RoleName, ROLE_PERMISSIONS
from ..db import SessionLocal
from ..errors import ConflictError, NotFoundError
from ..models.models import Permission, Role, User


_cache_lock = threading.Lock()
_role_permission_cache: Dict[str, FrozenSet[str]] = {}


def invalidate_cache() -> None:
    with _cache_lock:
        _role_permission_cache.clear()


_DIRTY = "role_permission_cache_dirty"


def _touched(db: Session) -> None:
    # Cleared at flush for reads in this session and again once the
    # outermost transaction commits or rolls back
    db.info[_DIRTY] = True
    invalidate_cache()


@event.listens_for(SessionLocal, "after_transaction_end")
def _clear_after_transaction(session, transaction):
    if transaction.parent is None and session.info.pop(_DIRTY, False):
        invalidate_cache()


def _value(name) -> str:
    return name.value if isinstance(name, (RoleName, PermissionName)) else str(name)


# --- writes ---------------------------------------------------------------

def create_permission(db: Session, name) -> Permission:
    name = _value(name)
    if db.query(Permission).filter(Permission.name == name).first():
        raise ConflictError(f"Permission '{name}' already exists")
    perm = Permission(name=name)
    db.add(perm)
    db.flush()
    _touched(db)
    return perm


def create_role(db: Session, name, description: Optional[str] = None) -> Role:
    name = _value(name)
    if db.query(Role).filter(Role.name == name).first():
        raise ConflictError(f"Role '{name}' already exists")
    role = Role(name=name, description=description)
    db.add(role)
    db.flush()
    _touched(db)
    return role


def get_role(db: Session, name) -> Role:
    role = db.query(Role).filter(Role.name == _value(name)).first()
    if not role:
        raise NotFoundError(f"Role '{_value(name)}' not found")
    return role


def grant(db: Session, role, permissions: Iterable) -> Role:
    """Add permissions to a role; grants already present are left alone."""
    if not isinstance(role, Role):
        role = get_role(db, role)
    held = {p.name for p in role.permissions}
    for name in permissions:
        name = _value(name)
        if name in held:
            continue
        perm = db.query(Permission).filter(Permission.name == name).first()
        if not perm:
            raise NotFoundError(f"Permission '{name}' not found")
        role.permissions.append(perm)
        held.add(name)
    db.flush()
    _touched(db)
    return role


def revoke(db: Session, role, permissions: Iterable) -> Role:
    if not isinstance(role, Role):
        role = get_role(db, role)
    names = {_value(n) for n in permissions}
    role.permissions = [p for p in role.permissions if p.name not in names]
    db.flush()
    _touched(db)
    return role


def assign_role(db: Session, user: User, role) -> User:
    if not isinstance(role, Role):
        role = get_role(db, role)
    if role not in user.roles:
        user.roles.append(role)
        db.flush()
    return user


def sync_roles(db: Session, user: User, roles: Iterable) -> User:
    """Replace the user's roles with exactly the given ones."""
    user.roles = [r if isinstance(r, Role) else get_role(db, r) for r in roles]
    db.flush()
    return user


# --- reads ----------------------------------------------------------------

def _permissions_for_role(role: Role) -> FrozenSet[str]:
    with _cache_lock:
        cached = _role_permission_cache.get(role.name)
    if cached is not None:
        return cached
    perms = frozenset(p.name for p in role.permissions)
    with _cache_lock:
        _role_permission_cache[role.name] = perms
    return perms


def roles_of(user: User) -> List[str]:
    return sorted(r.name for r in user.roles)


def permissions_of(user: User) -> Set[str]:
    result: Set[str] = set()
    for role in user.roles:
        result |= _permissions_for_role(role)
    return result


def has_role(user: User, role) -> bool:
    return _value(role) in {r.name for r in user.roles}


def has_any_role(user: User, roles: Iterable) -> bool:
    held = {r.name for r in user.roles}
    return any(_value(r) in held for r in roles)


def has_permission(user: User, permission) -> bool:
    return _value(permission) in permissions_of(user)


# --- bootstrap ------------------------------------------------------------

ROLE_DESCRIPTIONS = {
    RoleName.USER: "Customer planning solar projects",
    RoleName.SALES: "Sales staff working leads",
    RoleName.ADMIN: "Administrator",
}


def seed_roles(db: Session) -> Dict[str, int]:
    """
    Create the three roles, every permission and the fixed grants.
    Existing names are skipped and missing grants added, so it can be re-run.
    Caller commits.
    """
    log = structlog.get_logger()
    created = {"permissions": 0, "roles": 0, "grants": 0}

    perms: Dict[str, Permission] = {p.name: p for p in db.query(Permission).all()}
    for name in PermissionName:
        if name.value in perms:
            continue
        perm = Permission(name=name.value)
        db.add(perm)
        perms[name.value] = perm
        created["permissions"] += 1
        log.info("seed_permission_created", permission=name.value)
    db.flush()

    for role_name, granted in ROLE_PERMISSIONS.items():
        role = db.query(Role).filter(Role.name == role_name.value).first()
        if not role:
            role = Role(name=role_name.value, description=ROLE_DESCRIPTIONS.get(role_name))
            db.add(role)
            created["roles"] += 1
            log.info("seed_role_created", role=role_name.value)
        held = {p.name for p in role.permissions}
        for perm_name in sorted(p.value for p in granted):
            if perm_name not in held:
                role.permissions.append(perms[perm_name])
                created["grants"] += 1
    db.flush()
    _touched(db)
    return created
