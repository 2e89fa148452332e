from datetime import timedelta

import pytest

from reelstream.models.user import AuthSession, User
from reelstream.services.email_service import EmailService
from reelstream.utils.security import verify_password
from reelstream.utils.timeutils import utcnow

from conftest import bearer, create_account


def signup(client, email="a@b.com", password="secret1", display_name="Ann"):
    return client.post(
        "/api/auth/signup",
        json={"email": email, "password": password, "display_name": display_name},
    )


# ==================== SIGN-UP ====================

def test_signup_creates_user_and_signs_in(client):
    response = signup(client)

    assert response.status_code == 201
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["email"] == "a@b.com"
    assert body["user"]["role"] == "user"
    assert body["user"]["is_admin"] is False

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["watchlist"] == []
    assert me.json()["history"] == []
    assert me.json()["user"]["preferences"] == {}


def test_signup_sends_no_email(client, monkeypatch):
    sent = []
    monkeypatch.setattr(EmailService, "_send_email", classmethod(lambda cls, *args: sent.append(args)))

    assert signup(client, email="quiet@example.com").status_code == 201
    assert sent == []


def test_signup_stores_hashed_password(client, db_session):
    signup(client, email="hash@example.com", password="secret1")

    db_session.expire_all()
    user = db_session.query(User).filter(User.email == "hash@example.com").one()
    assert user.password_hash != "secret1"
    assert verify_password("secret1", user.password_hash)


def test_signup_rejects_invalid_email(client):
    response = signup(client, email="not-an-email")

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid email address"


def test_signup_rejects_short_password(client):
    response = signup(client, password="abc")

    assert response.status_code == 400
    assert response.json()["detail"] == "Password must be at least 6 characters"


def test_signup_rejects_duplicate_email(client):
    assert signup(client).status_code == 201

    response = signup(client, email="A@B.com")

    assert response.status_code == 409
    assert response.json()["detail"] == "Email is already in use"


# ==================== SIGN-IN ====================

def test_login_with_wrong_password_creates_no_session(client, db_session):
    create_account(db_session, "a@b.com", password="secret1")

    response = client.post("/api/auth/login", json={"email": "a@b.com", "password": "wrong-one"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"
    db_session.expire_all()
    assert db_session.query(AuthSession).count() == 0


def test_login_with_unknown_email_uses_same_message(client, db_session):
    response = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "secret1"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


def test_login_success_records_last_login(client, db_session):
    create_account(db_session, "a@b.com")

    response = client.post("/api/auth/login", json={"email": "a@b.com", "password": "secret1"})

    assert response.status_code == 200
    assert response.json()["user"]["last_login_at"] is not None
    db_session.expire_all()
    assert db_session.query(AuthSession).count() == 1


def test_login_is_throttled_after_repeated_failures(client, db_session, throttle):
    create_account(db_session, "a@b.com")

    for _ in range(throttle.max_attempts):
        assert client.post("/api/auth/login", json={"email": "a@b.com", "password": "nope-nope"}).status_code == 401

    # Even the right password is refused while throttled
    response = client.post("/api/auth/login", json={"email": "a@b.com", "password": "secret1"})

    assert response.status_code == 429
    assert response.json()["detail"] == "Too many failed login attempts. Please try again later"


def test_successful_login_clears_failures(client, db_session, throttle):
    create_account(db_session, "a@b.com")

    for _ in range(throttle.max_attempts - 1):
        client.post("/api/auth/login", json={"email": "a@b.com", "password": "nope-nope"})
    assert client.post("/api/auth/login", json={"email": "a@b.com", "password": "secret1"}).status_code == 200

    assert throttle.is_blocked("a@b.com") is False


# ==================== SESSIONS ====================

def test_logout_revokes_token(client, db_session):
    create_account(db_session, "a@b.com")
    headers = bearer(client, "a@b.com")

    assert client.post("/api/auth/logout", headers=headers).status_code == 200

    response = client.get("/api/auth/me", headers=headers)
    assert response.status_code == 401
    assert response.json()["detail"] == "Session expired"


def test_me_requires_token(client):
    response = client.get("/api/auth/me")

    assert response.status_code == 401


def test_garbage_token_is_rejected(client, db_session):
    response = client.get("/api/auth/me", headers={"Authorization": "Bearer not.a.jwt"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token"


# ==================== PROFILE ====================

def test_profile_update_cannot_change_role(client, user_headers):
    response = client.patch(
        "/api/users/me/profile",
        json={"display_name": "New Name", "role": "admin"},
        headers=user_headers,
    )

    assert response.status_code == 200
    assert response.json()["display_name"] == "New Name"
    assert response.json()["role"] == "user"


def test_preferences_are_merged(client, user_headers):
    client.patch("/api/users/me/preferences", json={"preferences": {"theme": "dark"}}, headers=user_headers)

    response = client.patch(
        "/api/users/me/preferences",
        json={"preferences": {"autoplay": False}},
        headers=user_headers,
    )

    assert response.status_code == 200
    assert response.json()["preferences"] == {"theme": "dark", "autoplay": False}


# ==================== ROLES ====================

def test_non_admin_cannot_change_roles(client, db_session, user_headers):
    other = create_account(db_session, "other@example.com")

    response = client.put(f"/api/admin/users/{other.id}/role", json={"role": "admin"}, headers=user_headers)

    assert response.status_code == 403


def test_admin_can_promote_user(client, db_session, admin_headers):
    other = create_account(db_session, "other@example.com")

    response = client.put(f"/api/admin/users/{other.id}/role", json={"role": "admin"}, headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["role"] == "admin"
    assert response.json()["is_admin"] is True


def test_role_change_for_unknown_user(client, admin_headers):
    response = client.put("/api/admin/users/missing/role", json={"role": "user"}, headers=admin_headers)

    assert response.status_code == 404
    assert response.json()["detail"] == "User not found"


# ==================== SESSION REVOCATION ====================

@pytest.mark.parametrize("repo_fixture", ["user_repo", "sql_users"])
def test_revoke_user_sessions_only_touches_active_sessions(request, db_session, repo_fixture):
    users = request.getfixturevalue(repo_fixture)
    if repo_fixture == "sql_users":
        user_id = create_account(db_session, "owner@example.com").id
        other_id = create_account(db_session, "other@example.com").id
    else:
        user_id, other_id = "u1", "u2"
    expires = utcnow() + timedelta(hours=1)
    first = users.create_session(user_id, expires)
    second = users.create_session(user_id, expires)
    other = users.create_session(other_id, expires)
    users.revoke_session(first.id, utcnow())

    assert users.revoke_user_sessions(user_id, utcnow()) == 1
    assert users.get_session(second.id).revoked_at is not None
    assert users.get_session(other.id).revoked_at is None
    assert users.revoke_user_sessions(user_id, utcnow()) == 0
