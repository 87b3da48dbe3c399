import pytest

from solarcrm.auth.roles import PermissionName, RoleName, ROLE_PERMISSIONS
from solarcrm.auth.security import evaluate
from solarcrm.db import SessionLocal
from solarcrm.errors import ConflictError
from solarcrm.models.models import Permission, Role, User
from solarcrm.services import company_settings, permissions


def _grants(db):
    return {
        r.name: {p.name for p in r.permissions}
        for r in db.query(Role).all()
    }


def test_seed_defines_exactly_three_roles_with_grant_table(db):
    grants = _grants(db)
    assert set(grants) == {"user", "sales", "admin"}
    for role, perms in ROLE_PERMISSIONS.items():
        assert grants[role.value] == {p.value for p in perms}
    assert "create leads" not in grants["sales"]
    assert "view leads" not in grants["user"]
    assert len(grants["admin"]) == len(PermissionName)


def test_seed_is_idempotent(db):
    before_roles = db.query(Role).count()
    before_perms = db.query(Permission).count()
    before_grants = _grants(db)

    created = permissions.seed_roles(db)
    db.commit()

    assert created == {"permissions": 0, "roles": 0, "grants": 0}
    assert db.query(Role).count() == before_roles
    assert db.query(Permission).count() == before_perms
    assert _grants(db) == before_grants


def test_seed_adds_missing_grants(db):
    sales = permissions.get_role(db, RoleName.SALES)
    permissions.revoke(db, sales, [PermissionName.VIEW_LEADS])
    db.commit()
    assert "view leads" not in {p.name for p in sales.permissions}

    created = permissions.seed_roles(db)
    db.commit()
    assert created["grants"] == 1
    assert "view leads" in {p.name for p in sales.permissions}


def test_duplicate_names_raise_conflict(db):
    with pytest.raises(ConflictError):
        permissions.create_role(db, "sales")
    with pytest.raises(ConflictError):
        permissions.create_permission(db, PermissionName.VIEW_LEADS)


def test_names_are_case_sensitive(db):
    role = permissions.create_role(db, "Sales")
    db.commit()
    assert role.name == "Sales"
    assert db.query(Role).filter(Role.name == "sales").count() == 1


def test_role_membership_is_exact(make_user):
    user = make_user(RoleName.SALES)
    assert permissions.has_role(user, RoleName.SALES)
    assert permissions.has_any_role(user, [RoleName.ADMIN, RoleName.SALES])
    assert not permissions.has_role(user, RoleName.ADMIN)
    assert not permissions.has_any_role(user, [RoleName.ADMIN, RoleName.USER])


def test_effective_permissions_are_union_of_roles(db, make_user):
    user = make_user(RoleName.USER)
    permissions.assign_role(db, user, RoleName.SALES)
    db.commit()
    held = permissions.permissions_of(user)
    assert "create projects" in held  # from user
    assert "assign leads" in held  # from sales
    assert "manage users" not in held
    assert permissions.roles_of(user) == ["sales", "user"]


def test_user_without_roles_holds_nothing(db):
    user = User(name="Nobody", email="nobody@example.com", password_hash="x")
    db.add(user)
    db.commit()
    assert permissions.permissions_of(user) == set()
    decision = evaluate(user, PermissionName.VIEW_PROJECTS)
    assert not decision.allowed
    assert decision.status_code == 403


def test_cache_is_invalidated_on_grant(db, make_user):
    user = make_user(RoleName.USER)
    assert not permissions.has_permission(user, PermissionName.VIEW_LEADS)

    permissions.grant(db, RoleName.USER, [PermissionName.VIEW_LEADS])
    db.commit()

    assert permissions.has_permission(user, PermissionName.VIEW_LEADS)


def test_cache_is_invalidated_on_revoke(db, make_user):
    user = make_user(RoleName.SALES)
    assert permissions.has_permission(user, PermissionName.ASSIGN_LEADS)

    permissions.revoke(db, RoleName.SALES, [PermissionName.ASSIGN_LEADS])
    db.commit()

    assert not permissions.has_permission(user, PermissionName.ASSIGN_LEADS)


def test_evaluate_without_actor_is_unauthenticated():
    decision = evaluate(None, RoleName.ADMIN)
    assert not decision.allowed
    assert decision.unauthenticated


def test_admin_is_not_implicitly_sales(make_user):
    admin = make_user(RoleName.ADMIN)
    denied = evaluate(admin, RoleName.SALES)
    assert not denied.allowed
    assert denied.reason == "Unauthorized access. Sales privileges required."
    assert evaluate(admin, (RoleName.SALES, RoleName.ADMIN)).allowed


def test_evaluate_reasons(make_user):
    sales = make_user(RoleName.SALES)
    decision = evaluate(sales, (RoleName.ADMIN,))
    assert decision.status_code == 403
    assert decision.reason == "Unauthorized access. Admin privileges required."

    assert evaluate(sales, PermissionName.EDIT_LEADS).allowed
    missing = evaluate(sales, PermissionName.MANAGE_USERS)
    assert not missing.allowed
    assert "manage users" in missing.reason


def test_rolled_back_grant_does_not_stay_cached(db, make_user):
    user = make_user(RoleName.USER)
    permissions.grant(db, RoleName.USER, [PermissionName.VIEW_LEADS])
    assert permissions.has_permission(user, PermissionName.VIEW_LEADS)

    db.rollback()

    assert not permissions.has_permission(user, PermissionName.VIEW_LEADS)


def test_reader_during_open_grant_sees_it_after_commit(db, make_user):
    user = make_user(RoleName.USER)
    permissions.grant(db, RoleName.USER, [PermissionName.VIEW_LEADS])

    # another request caches the committed grants while the write is still open
    other = SessionLocal()
    try:
        assert not permissions.has_permission(other.get(User, user.id), PermissionName.VIEW_LEADS)
    finally:
        other.close()

    db.commit()

    fresh = SessionLocal()
    try:
        assert permissions.has_permission(fresh.get(User, user.id), PermissionName.VIEW_LEADS)
    finally:
        fresh.close()


def test_rolled_back_company_setting_is_not_served(db):
    company_settings.set_value(db, "company_name", "Entwurf GmbH")
    assert company_settings.get(db, "company_name") == "Entwurf GmbH"

    db.rollback()

    assert company_settings.get(db, "company_name") == "Solar Lead Generator"
