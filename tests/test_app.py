from reelstream.migrations.create_all_tables import bootstrap_admin
from reelstream.utils.security import verify_password

from conftest import create_account


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["background_jobs"] is False


def test_security_headers(client):
    response = client.get("/")

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert "default-src 'self'" in response.headers["Content-Security-Policy"]
    assert "Strict-Transport-Security" not in response.headers


def test_error_responses_carry_cors_headers(client):
    response = client.get("/api/auth/me", headers={"Origin": "http://localhost:5173"})

    assert response.status_code == 401
    assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"


def test_bootstrap_admin_creates_account(db_session, session_factory):
    user = bootstrap_admin(" Boss@Example.com ", "secret1", session_factory=session_factory)

    assert user.email == "boss@example.com"
    assert user.is_admin is True
    assert verify_password("secret1", user.password_hash)


def test_bootstrap_admin_promotes_existing_user(db_session, session_factory):
    existing = create_account(db_session, "boss@example.com")

    user = bootstrap_admin("boss@example.com", "ignored1", session_factory=session_factory)

    assert user.id == existing.id
    assert user.is_admin is True
    assert verify_password("secret1", user.password_hash)
