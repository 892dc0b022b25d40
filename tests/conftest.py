"""
Shared pytest fixtures.

The application reads its configuration at import time, so the environment is
pointed at a throwaway SQLite file and all external providers are disabled
before anything from ``humanizer`` is imported.
"""

import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="humanizer-tests-")
os.environ["DATA_DIR"] = _TEST_DIR
os.environ["SQLITE_PATH"] = os.path.join(_TEST_DIR, "test.db")
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["ADMIN_API_KEY"] = "admin-test-key"
os.environ["AUTH_JWT_SECRET"] = "jwt-test-secret-with-enough-bytes-for-hs256"
for _key in (
    "DATABASE_URL",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "DEEPSEEK_API_KEY",
    "PERPLEXITY_API_KEY",
    "GPTZERO_API_KEY",
    "PUBLIC_BASE_URL",
    "API_PREFIX",
    "ROOT_PATH",
    "CHUNK_WINDOW_WORDS",
    "CHUNK_OVERLAP_WORDS",
    "AUTH_JWKS_URL",
    "AUTH_JWT_ISSUER",
    "AUTH_JWT_AUDIENCE",
):
    os.environ.pop(_key, None)

from datetime import datetime  # noqa: E402

import pytest  # noqa: E402

import humanizer.models  # noqa: E402,F401
from humanizer.core.database import Base, SessionLocal, engine, init_db  # noqa: E402
from humanizer.models import UserAccount  # noqa: E402

TEST_USER_ID = "user-1"
TEST_USER_EMAIL = "writer@example.com"


@pytest.fixture(autouse=True)
def reset_database():
    """Give every test an empty schema."""
    Base.metadata.drop_all(bind=engine)
    init_db()
    yield


@pytest.fixture
def db():
    """Provide a session bound to the test database."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    """Create an account with a given balance."""

    def _make(user_id: str = TEST_USER_ID, balance: int = 0, email: str | None = None) -> UserAccount:
        account = UserAccount(
            id=user_id,
            email=email,
            token_balance=balance,
            created_at=datetime.utcnow(),
        )
        db.add(account)
        db.commit()
        return account

    return _make


@pytest.fixture
def balance_of(db):
    """Read a balance with a fresh query, bypassing the identity map."""

    def _balance(user_id: str = TEST_USER_ID) -> int:
        db.expire_all()
        value = db.query(UserAccount.token_balance).filter(UserAccount.id == user_id).scalar()
        return int(value or 0)

    return _balance


@pytest.fixture
def client():
    """TestClient with authentication replaced by a fixed user."""
    from fastapi.testclient import TestClient

    from humanizer.core.auth import UserContext, get_current_user, get_optional_user
    from humanizer.main import app

    def _user() -> UserContext:
        return UserContext(user_id=TEST_USER_ID, email=TEST_USER_EMAIL, claims={"sub": TEST_USER_ID})

    app.dependency_overrides[get_current_user] = _user
    app.dependency_overrides[get_optional_user] = _user
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def guest_client():
    """TestClient for an anonymous visitor (no Authorization header)."""
    from fastapi.testclient import TestClient

    from humanizer.core.auth import get_optional_user
    from humanizer.main import app

    app.dependency_overrides[get_optional_user] = lambda: None
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
