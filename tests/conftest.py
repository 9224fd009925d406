"""
BountyHub - Test Configuration

Pytest fixtures for authentication testing.
Provides test database, client, audit sink and user fixtures.
"""

import os

# Settings are read once at import; configure them before importing the app.
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("BCRYPT_WORK_FACTOR", "4")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine, select
from sqlalchemy.pool import StaticPool

from bountyhub.app import app
from bountyhub.audit.sink import AuditSink
from bountyhub.auth.database import get_session_factory
from bountyhub.auth.device import ClientInfo
from bountyhub.auth.models import AuditLog, User, Role, utcnow
from bountyhub.auth.password import hash_password


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite:///:memory:"

RESEARCHER_EMAIL = "a@test.com"
RESEARCHER_PASSWORD = "Abc12345!"
ORGANIZATION_EMAIL = "org@test.com"
ORGANIZATION_PASSWORD = "OrgPass123!"
ADMIN_EMAIL = "admin@test.com"
ADMIN_PASSWORD = "AdminPass123!"

BROWSER_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@pytest.fixture(scope="function")
def test_engine():
    """Create a fresh test database engine for each test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Import models to register them
    from bountyhub.auth.models import User, Session, RefreshToken, AuditLog  # noqa: F401

    SQLModel.metadata.create_all(engine)

    yield engine

    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """Create a database session for testing."""
    with Session(test_engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture(scope="function")
def audit_sink(test_engine) -> AuditSink:
    return AuditSink(get_session_factory(test_engine))


@pytest.fixture(scope="function")
def client_info() -> ClientInfo:
    return ClientInfo(ip_address="127.0.0.1", user_agent=BROWSER_UA)


@pytest.fixture(scope="function")
def client(test_engine, audit_sink) -> Generator[TestClient, None, None]:
    """
    Test client bound to the per-test engine.

    The lifespan is not entered, so app.state set here is what the
    routes see.
    """
    app.state.db_engine = test_engine
    app.state.db_session_factory = get_session_factory(test_engine)
    app.state.audit_sink = audit_sink

    yield TestClient(app, headers={"User-Agent": BROWSER_UA})


def _make_user(db_session, email, password, role, is_active=True) -> User:
    now = utcnow()
    user = User(
        email=email,
        password_hash=hash_password(password) if password else None,
        role=role,
        is_active=is_active,
        created_at=now,
        updated_at=now,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def test_researcher(db_session) -> User:
    """Active researcher: a@test.com / Abc12345!"""
    return _make_user(db_session, RESEARCHER_EMAIL, RESEARCHER_PASSWORD, Role.RESEARCHER)


@pytest.fixture(scope="function")
def pending_organization(db_session) -> User:
    """Organization awaiting admin approval."""
    return _make_user(
        db_session, ORGANIZATION_EMAIL, ORGANIZATION_PASSWORD, Role.ORGANIZATION, is_active=False
    )


@pytest.fixture(scope="function")
def test_admin(db_session) -> User:
    return _make_user(db_session, ADMIN_EMAIL, ADMIN_PASSWORD, Role.ADMIN)


@pytest.fixture(scope="function")
def inactive_researcher(db_session) -> User:
    return _make_user(
        db_session, "inactive@test.com", "InactivePass123", Role.RESEARCHER, is_active=False
    )


@pytest.fixture(scope="function")
def passwordless_researcher(db_session) -> User:
    return _make_user(db_session, "sso@test.com", None, Role.RESEARCHER)


def login_user(client: TestClient, email: str, password: str, role: str = "researcher") -> dict:
    """Helper function to login and return the response body plus refresh cookie."""
    response = client.post(
        f"/api/v1/auth/login/{role}",
        json={"email": email, "password": password},
    )
    if response.status_code != 200:
        return None
    body = response.json()
    body["refresh_token"] = response.cookies.get("refreshToken")
    return body


def auth_headers(access_token: str) -> dict:
    """Create authorization headers for authenticated requests."""
    return {"Authorization": f"Bearer {access_token}"}


def refresh_with(client: TestClient, refresh_token: str):
    """POST /refresh presenting exactly this refresh token."""
    client.cookies.clear()
    return client.post(
        "/api/v1/auth/refresh",
        headers={"Cookie": f"refreshToken={refresh_token}"},
    )


def audit_rows(db_session, action: str = None) -> list:
    db_session.expire_all()
    statement = select(AuditLog).order_by(AuditLog.seq)
    if action:
        statement = statement.where(AuditLog.action == action)
    return list(db_session.exec(statement).all())
