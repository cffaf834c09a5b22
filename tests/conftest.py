# tests/conftest.py
"""
Shared fixtures for the Dokus test suite.

The environment is set before any project import so config.py picks up an
in-memory database, no rate limiting and no background workers.
"""

import os
import sys
import tempfile

project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["PEPPOL_POLLING_ENABLED"] = "false"
os.environ["DOCUMENT_PROCESSING_ENABLED"] = "false"
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-enough-entropy-0123456789")
os.environ.setdefault("UPLOAD_FOLDER", tempfile.mkdtemp(prefix="dokus-uploads-"))

import pytest

from auth.models import Tenant, TenantMembership, User
from auth.permissions import UserRole, permission_names
from auth.security import create_access_token, get_password_hash
from database.connection import Base, SessionLocal, engine
import database.init_db  # noqa: F401  (registers every model)
from tenants.models import TenantSettings

TEST_PASSWORD = "Str0ng!Passw0rd"


@pytest.fixture
def db():
    """Fresh schema per test on the shared in-memory engine."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def make_user(db, email: str, first_name: str = "Test", last_name: str = "User") -> User:
    user = User(
        email=email,
        hashed_password=get_password_hash(TEST_PASSWORD),
        first_name=first_name,
        last_name=last_name,
    )
    db.add(user)
    db.flush()
    return user


def make_tenant(db, name: str = "Acme BV", vat_number: str = "BE0123456749") -> Tenant:
    tenant = Tenant(name=name, email="billing@acme.be", vat_number=vat_number)
    db.add(tenant)
    db.flush()
    db.add(TenantSettings(tenant_id=tenant.id, company_name=name, company_vat_number=vat_number))
    db.flush()
    return tenant


def add_member(db, tenant: Tenant, user: User, role: UserRole) -> TenantMembership:
    membership = TenantMembership(tenant_id=tenant.id, user_id=user.id, role=role.value)
    db.add(membership)
    db.flush()
    return membership


def token_for(user: User, tenant: Tenant = None, role: UserRole = UserRole.OWNER) -> str:
    claims = {"sub": str(user.id), "email": user.email, "name": user.full_name}
    if tenant is not None:
        claims.update({"tenant_id": tenant.id, "role": role.value, "permissions": permission_names(role)})
    token, _, _ = create_access_token(claims)
    return token


@pytest.fixture
def tenant(db):
    tenant = make_tenant(db)
    db.commit()
    return tenant


@pytest.fixture
def owner(db, tenant):
    user = make_user(db, "owner@acme.be", "Olivia", "Owner")
    add_member(db, tenant, user, UserRole.OWNER)
    db.commit()
    return user


@pytest.fixture
def auth_headers(owner, tenant):
    return {"Authorization": f"Bearer {token_for(owner, tenant)}"}


@pytest.fixture
def client(db):
    """TestClient without the lifespan (tables come from the db fixture)."""
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app, raise_server_exceptions=False)
