"""
Root test configuration and fixtures.

Every test gets its own in-memory SQLite control plane, its own data source
registry and its own app, so nothing leaks between tests.

All pipeline components share one frozen clock (fixture `now`) so day
counts are exact. The clock is captured from real time because PyJWT
checks expiry against the wall clock.
"""

import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ.setdefault("ENV", "test")

TEST_JWT_SECRET = "test-signing-secret-that-is-at-least-32-bytes-long"
TEST_WEBHOOK_SECRET = "whsec_test_billing_webhook_secret"
TEST_PASSWORD = "correct horse battery staple"


@pytest.fixture
def now() -> datetime:
    """Frozen 'now' shared by tokens and billing."""
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def clock(now) -> Callable[[], datetime]:
    return lambda: now


@pytest.fixture
def db_engine():
    """SQLite in-memory control-plane database with all tables."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from stockroom.db_base import Base
    from stockroom.models import tenant, user, purchase, billing_event  # noqa: F401

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    from stockroom.config.settings import Settings

    return Settings(
        jwt_secret=TEST_JWT_SECRET,
        billing_webhook_secret=TEST_WEBHOOK_SECRET,
        billing_lookup_timeout_seconds=1.0,
    )


@pytest.fixture
def make_tenant(session_factory):
    """Factory for tenants. Returns the tenant id."""
    from stockroom.models.tenant import Tenant

    def _make(
        trial_end: Optional[datetime] = None,
        subscription_active: bool = False,
        current_period_end: Optional[datetime] = None,
        store_database: Optional[str] = None,
        name: Optional[str] = None,
        payment_customer_id: Optional[str] = None,
    ) -> str:
        session = session_factory()
        try:
            tenant = Tenant(
                name=name or f"company-{uuid.uuid4().hex[:8]}",
                trial_start=(trial_end - timedelta(days=14)) if trial_end else None,
                trial_end=trial_end,
                subscription_active=subscription_active,
                current_period_end=current_period_end,
                store_database=store_database,
                payment_customer_id=payment_customer_id,
            )
            session.add(tenant)
            session.commit()
            return tenant.id
        finally:
            session.close()

    return _make


@pytest.fixture
def make_user(session_factory):
    """Factory for users. Returns the username."""
    from stockroom.auth.passwords import hash_password
    from stockroom.models.user import User

    password_hash = hash_password(TEST_PASSWORD)

    def _make(
        username: Optional[str] = None,
        tenant_id: Optional[str] = None,
        enabled: bool = True,
        role: str = "ROLE_USER",
    ) -> str:
        username = username or f"user-{uuid.uuid4().hex[:8]}"
        session = session_factory()
        try:
            session.add(User(
                username=username,
                email=f"{username}@example.com",
                password_hash=password_hash,
                tenant_id=tenant_id,
                enabled=enabled,
                role=role,
            ))
            session.commit()
            return username
        finally:
            session.close()

    return _make


@pytest.fixture
def registry():
    from stockroom.tenancy.router import DataSourceRegistry

    reg = DataSourceRegistry()
    yield reg
    reg.dispose_all()


@pytest.fixture
def app(settings, session_factory, registry, clock):
    from stockroom.app import create_app
    from stockroom.config.access_policy import AccessPolicy

    return create_app(
        settings=settings,
        session_factory=session_factory,
        registry=registry,
        policy=AccessPolicy(),
        clock=clock,
    )


@pytest.fixture
def client(app):
    """TestClient over https so Secure cookies round-trip."""
    return TestClient(app, base_url="https://testserver")


@pytest.fixture
def token_service(app):
    return app.state.token_service


def cookie_header(access_token: Optional[str] = None, refresh_token: Optional[str] = None) -> dict:
    """Build a Cookie header carrying the given tokens."""
    parts = []
    if access_token:
        parts.append(f"AccessToken={access_token}")
    if refresh_token:
        parts.append(f"RefreshToken={refresh_token}")
    return {"Cookie": "; ".join(parts)}
