"""
Pytest configuration and fixtures for testing.

Provides:
- An in-memory SQLite database per test (StaticPool, foreign keys on)
- A TestClient with the session and storage dependencies overridden
- Identity-provider tokens minted with PyJWT
- A small tenant: one company, two sites, departments, types and equipment
"""

import os
import time

# Settings are read at import time; configure them before importing the app
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["STORAGE_PROVIDER"] = "local"
os.environ["AUTH_JWT_SECRET"] = "test-secret"
os.environ["AUTH_JWT_AUDIENCE"] = "authenticated"
os.environ["SUPER_ADMIN_EMAIL"] = "root@example.com"
os.environ["RATE_LIMIT"] = "100000/minute"
os.environ["TZ_DEFAULT"] = "America/Vancouver"

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from equiptrack.config import settings
from equiptrack.db import Base, get_db, enable_sqlite_foreign_keys
from equiptrack.main import app
from equiptrack.models.models import (
    AccessGrant,
    Company,
    Department,
    Equipment,
    EquipmentType,
    Profile,
    Site,
)
from equiptrack.storage.local_provider import LocalStorageProvider
from equiptrack.storage.provider import get_storage


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", enable_sqlite_foreign_keys)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    """Session shared by the test body and the API under test."""
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage(tmp_path):
    return LocalStorageProvider(str(tmp_path / "storage"))


@pytest.fixture
def client(db, storage):
    def _get_db():
        try:
            yield db
        finally:
            # mirrors closing the request session: uncommitted work is discarded
            db.rollback()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


# ============================================================================
# Auth helpers
# ============================================================================

def make_token(subject: str, email: str, expires_in: int = 3600, secret: str = None, **claims) -> str:
    now = int(time.time())
    payload = {
        "sub": subject,
        "email": email,
        "aud": "authenticated",
        "iat": now,
        "exp": now + expires_in,
    }
    payload.update(claims)
    return jwt.encode(payload, secret or settings.auth_jwt_secret, algorithm="HS256")


def auth_headers(profile: Profile) -> dict:
    return {"Authorization": f"Bearer {make_token(profile.auth_user_id, profile.email)}"}


# ============================================================================
# Tenant Fixtures
# ============================================================================

def add_profile(db, email, role, company=None, grants=()):
    profile = Profile(
        auth_user_id=f"sub-{email}",
        email=email,
        display_name=email.split("@")[0].title(),
        role=role,
        company_id=company.id if company is not None else None,
    )
    db.add(profile)
    db.flush()
    for grant in grants:
        db.add(AccessGrant(profile_id=profile.id, **grant))
    db.commit()
    return profile


@pytest.fixture
def company(db):
    company = Company(name="Acme Labs", subscription_level=4, subscription_active=True)
    db.add(company)
    db.commit()
    return company


@pytest.fixture
def other_company(db):
    company = Company(name="Globex", subscription_level=1, subscription_active=True)
    db.add(company)
    db.commit()
    return company


@pytest.fixture
def site(db, company):
    site = Site(company_id=company.id, name="North Plant")
    db.add(site)
    db.commit()
    return site


@pytest.fixture
def site_b(db, company):
    site = Site(company_id=company.id, name="South Plant")
    db.add(site)
    db.commit()
    return site


@pytest.fixture
def department(db, site):
    department = Department(site_id=site.id, name="Quality")
    db.add(department)
    db.commit()
    return department


@pytest.fixture
def department_b(db, site_b):
    department = Department(site_id=site_b.id, name="Maintenance")
    db.add(department)
    db.commit()
    return department


@pytest.fixture
def logger_type(db, company):
    eq_type = EquipmentType(
        company_id=company.id,
        name="Temperature Logger",
        requires_calibration=True,
        calibration_frequency_months=12,
    )
    db.add(eq_type)
    db.commit()
    return eq_type


@pytest.fixture
def laptop_type(db, company):
    eq_type = EquipmentType(company_id=company.id, name="Laptop", requires_calibration=False)
    db.add(eq_type)
    db.commit()
    return eq_type


def add_equipment(db, company, eq_type, department=None, number=None, serial=None, **fields):
    equipment = Equipment(
        company_id=company.id,
        equipment_type_id=eq_type.id,
        department_id=department.id if department is not None else None,
        make=fields.pop("make", "Fluke"),
        model=fields.pop("model", "971"),
        serial_number=serial or f"SN-{number or 'X'}",
        equipment_number=number,
        **fields,
    )
    db.add(equipment)
    db.commit()
    return equipment


@pytest.fixture
def equipment_a(db, company, logger_type, department):
    return add_equipment(db, company, logger_type, department, number="A-100", serial="SN-A")


@pytest.fixture
def equipment_b(db, company, logger_type, department):
    return add_equipment(db, company, logger_type, department, number="B-200", serial="SN-B")


@pytest.fixture
def equipment_south(db, company, logger_type, department_b):
    return add_equipment(db, company, logger_type, department_b, number="S-300", serial="SN-S")


@pytest.fixture
def super_admin(db):
    return add_profile(db, "root@example.com", "super_admin")


@pytest.fixture
def company_admin(db, company):
    return add_profile(db, "admin@acme.test", "company_admin", company)


@pytest.fixture
def manager(db, company, site):
    """Equipment manager with a site-level grant on the north plant."""
    return add_profile(db, "manager@acme.test", "equipment_manager", company, grants=[{"site_id": site.id}])


@pytest.fixture
def member(db, company, site, department):
    """Plain user with a department-level grant."""
    return add_profile(
        db, "user@acme.test", "user", company,
        grants=[{"site_id": site.id, "department_id": department.id}],
    )
