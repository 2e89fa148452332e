import os
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure background jobs stay disabled during tests
os.environ.setdefault("ENABLE_BACKGROUND_JOBS", "false")

from reelstream.database import Base, get_db
from reelstream.main import app
from reelstream.repositories.base import ROLE_ADMIN, ROLE_USER
from reelstream.repositories.memory import InMemoryMovieRepository, InMemoryUserRepository
from reelstream.repositories.sql import SqlMovieRepository, SqlUserRepository
from reelstream.services.storage_service import LocalObjectStorage
from reelstream.utils.dependencies import get_login_throttle, get_storage
from reelstream.utils.rate_limiter import LoginThrottle
from reelstream.utils.security import hash_password

SQLALCHEMY_DATABASE_URL = "sqlite://"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session():
    """Provide a clean database session for each test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory(db_session):
    return TestingSessionLocal


@pytest.fixture
def storage(tmp_path):
    return LocalObjectStorage(root=str(tmp_path / "storage"), url_ttl_seconds=600, chunk_size=4)


@pytest.fixture
def throttle():
    return LoginThrottle(max_attempts=3, window_seconds=60)


@pytest.fixture
def client(db_session, storage, throttle, monkeypatch):
    """FastAPI test client with database, storage and throttle overridden."""

    def override_get_db():
        test_db = TestingSessionLocal()
        try:
            yield test_db
        finally:
            test_db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_login_throttle] = lambda: throttle
    monkeypatch.setenv("ENABLE_BACKGROUND_JOBS", "false")

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ============================================
# Repositories
# ============================================

@pytest.fixture
def movie_repo():
    return InMemoryMovieRepository()


@pytest.fixture
def user_repo():
    return InMemoryUserRepository()


@pytest.fixture
def sql_movies(db_session):
    return SqlMovieRepository(db_session)


@pytest.fixture
def sql_users(db_session):
    return SqlUserRepository(db_session)


# ============================================
# Accounts
# ============================================

def create_account(db_session, email, password="secret1", role=ROLE_USER, display_name="Test User"):
    return SqlUserRepository(db_session).create(email, hash_password(password), display_name=display_name, role=role)


def bearer(client, email, password="secret1"):
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def user_headers(client, db_session):
    create_account(db_session, "viewer@example.com")
    return bearer(client, "viewer@example.com")


@pytest.fixture
def admin_headers(client, db_session):
    create_account(db_session, "admin@example.com", role=ROLE_ADMIN, display_name="Admin")
    return bearer(client, "admin@example.com")
