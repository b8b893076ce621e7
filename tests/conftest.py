import os
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add the parent directory to the path so we can import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

# settings are read at import time
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["NONCE_BACKEND"] = "memory"

from eth_account import Account
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from proofquest_auth.core.deps import get_db
from proofquest_auth.core.security import SessionIssuer, get_session_issuer
from proofquest_auth.db.base import Base
from proofquest_auth.main import app
from proofquest_auth.models import User  # noqa: F401
from proofquest_auth.services.siwe_nonce_store import InMemoryNonceRegistry, get_nonce_registry
from tests.helpers import ALICE_KEY, BOB_KEY, TEST_SECRET, FrozenClock


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def registry(clock) -> InMemoryNonceRegistry:
    return InMemoryNonceRegistry(ttl_seconds=600, clock=clock)


@pytest.fixture
def issuer(clock) -> SessionIssuer:
    return SessionIssuer(secret=TEST_SECRET, clock=clock)


@pytest.fixture
def alice():
    return Account.from_key(ALICE_KEY)


@pytest.fixture
def bob():
    return Account.from_key(BOB_KEY)


@pytest.fixture
def db_session():
    """Create a fresh in-memory database session for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def client(db_session, registry, issuer):
    """TestClient wired to the per-test database, registry and issuer."""

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_nonce_registry] = lambda: registry
    app.dependency_overrides[get_session_issuer] = lambda: issuer
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
