import os
import tempfile

# Settings are read at import time, so point them at a throwaway database first
_tmpdir = tempfile.mkdtemp(prefix="solarcrm-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmpdir, 'test.db')}"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ.pop("SMTP_HOST", None)

import pytest
from fastapi.testclient import TestClient

from solarcrm.auth.roles import RoleName
from solarcrm.auth.security import create_access_token
from solarcrm.db import Base, SessionLocal, engine
from solarcrm.main import app
from solarcrm.services import company_settings, email_templates, permissions, users


@pytest.fixture(autouse=True)
def _fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    permissions.invalidate_cache()
    company_settings.clear_cache()
    db = SessionLocal()
    try:
        permissions.seed_roles(db)
        email_templates.seed_templates(db)
        db.commit()
    finally:
        db.close()
    yield
    permissions.invalidate_cache()
    company_settings.clear_cache()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role=RoleName.USER, name=None, email=None, password="secret-password"):
        counter["n"] += 1
        n = counter["n"]
        user = users.create_user(
            db,
            name=name or f"{role.value.title()} {n}",
            email=email or f"{role.value}{n}@example.com",
            password=password,
            role=role,
        )
        db.commit()
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(RoleName.ADMIN, name="Ada Admin")


@pytest.fixture
def sales(make_user):
    return make_user(RoleName.SALES, name="Sam Sales")


@pytest.fixture
def customer(make_user):
    return make_user(RoleName.USER, name="Carla Customer")


def bearer(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


@pytest.fixture
def auth():
    return bearer
