from datetime import timedelta

from reelstream.models.password_reset_token import PasswordResetToken
from reelstream.models.user import User
from reelstream.services import password_reset_service
from reelstream.services.password_reset_service import PasswordResetService
from reelstream.utils.security import hash_password, verify_password
from reelstream.utils.timeutils import utcnow

from conftest import bearer, create_account


def capture_reset_email(monkeypatch):
    captured = {}

    def fake_send(cls, recipient, reset_link):
        captured["recipient"] = recipient
        captured["link"] = reset_link

    monkeypatch.setattr(
        password_reset_service.EmailService,
        "send_password_reset_email",
        classmethod(fake_send),
    )
    monkeypatch.setattr(password_reset_service, "PASSWORD_RESET_URL", "http://frontend/reset-password")
    return captured


def request_token(client, monkeypatch, email):
    captured = capture_reset_email(monkeypatch)
    response = client.post("/api/auth/forgot-password", json={"email": email})
    assert response.status_code == 202
    return captured["link"].rstrip("/").split("/")[-1]


def test_forgot_password_creates_token_and_sends_email(client, db_session, monkeypatch):
    user = create_account(db_session, "user@example.com")
    captured = capture_reset_email(monkeypatch)

    response = client.post("/api/auth/forgot-password", json={"email": "User@Example.com"})

    assert response.status_code == 202
    assert captured["recipient"] == user.email
    assert captured["link"].startswith("http://frontend/reset-password/")

    db_session.expire_all()
    tokens = db_session.query(PasswordResetToken).all()
    assert len(tokens) == 1
    assert tokens[0].user_id == user.id
    assert tokens[0].used_at is None


def test_forgot_password_for_unknown_email_reveals_nothing(client, db_session, monkeypatch):
    captured = capture_reset_email(monkeypatch)

    response = client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})

    assert response.status_code == 202
    assert captured == {}
    assert db_session.query(PasswordResetToken).count() == 0


def test_full_reset_flow_updates_password_and_consumes_token(client, db_session, monkeypatch):
    user = create_account(db_session, "user@example.com", password="OldPass123!")
    raw_token = request_token(client, monkeypatch, user.email)

    reset_response = client.post("/api/auth/reset-password", json={
        "token": raw_token,
        "new_password": "NewPass123!",
        "confirm_password": "NewPass123!",
    })

    assert reset_response.status_code == 200
    db_session.expire_all()

    updated_user = db_session.get(User, user.id)
    assert verify_password("NewPass123!", updated_user.password_hash)

    tokens = db_session.query(PasswordResetToken).all()
    assert len(tokens) == 1
    assert tokens[0].used_at is not None

    # Token cannot be used twice
    again = client.post("/api/auth/reset-password", json={
        "token": raw_token,
        "new_password": "Other123!",
        "confirm_password": "Other123!",
    })
    assert again.status_code == 400


def test_reset_signs_out_existing_sessions(client, db_session, monkeypatch):
    create_account(db_session, "user@example.com", password="OldPass123!")
    headers = bearer(client, "user@example.com", password="OldPass123!")
    raw_token = request_token(client, monkeypatch, "user@example.com")

    client.post("/api/auth/reset-password", json={
        "token": raw_token,
        "new_password": "NewPass123!",
        "confirm_password": "NewPass123!",
    })

    assert client.get("/api/auth/me", headers=headers).status_code == 401
    assert client.post("/api/auth/login", json={"email": "user@example.com", "password": "NewPass123!"}).status_code == 200


def test_reset_password_with_invalid_token_fails(client, db_session):
    user = create_account(db_session, "user@example.com", password="KeepPass123!")

    response = client.post("/api/auth/reset-password", json={
        "token": "x" * 48,
        "new_password": "AnotherPass123!",
        "confirm_password": "AnotherPass123!",
    })

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid or expired reset token."

    db_session.expire_all()
    fresh_user = db_session.get(User, user.id)
    assert verify_password("KeepPass123!", fresh_user.password_hash)


def test_reset_password_mismatch_is_rejected(client, db_session):
    response = client.post("/api/auth/reset-password", json={
        "token": "x" * 48,
        "new_password": "AnotherPass123!",
        "confirm_password": "Different123!",
    })

    assert response.status_code == 422


def test_too_many_active_tokens(client, db_session, monkeypatch):
    create_account(db_session, "user@example.com")
    capture_reset_email(monkeypatch)

    for _ in range(password_reset_service.RESET_TOKEN_MAX_ACTIVE):
        assert client.post("/api/auth/forgot-password", json={"email": "user@example.com"}).status_code == 202

    response = client.post("/api/auth/forgot-password", json={"email": "user@example.com"})

    assert response.status_code == 429


def test_purge_expired_tokens(db_session):
    user = create_account(db_session, "user@example.com")
    db_session.add(PasswordResetToken(
        user_id=user.id,
        token_hash="a" * 64,
        expires_at=utcnow() - timedelta(minutes=1),
    ))
    db_session.add(PasswordResetToken(
        user_id=user.id,
        token_hash="b" * 64,
        expires_at=utcnow() + timedelta(minutes=10),
    ))
    db_session.commit()

    removed = PasswordResetService.purge_expired_tokens(db_session)
    db_session.commit()

    assert removed == 1
    assert db_session.query(PasswordResetToken).count() == 1


def test_reset_goes_through_the_given_user_repository(db_session, user_repo, monkeypatch):
    captured = capture_reset_email(monkeypatch)
    user = user_repo.create("reader@example.com", hash_password("old-secret"))
    session = user_repo.create_session(user.id, utcnow() + timedelta(hours=1))

    PasswordResetService.request_reset(db_session, user_repo, "Reader@Example.com", "10.0.0.1")
    token = captured["link"].rstrip("/").split("/")[-1]
    PasswordResetService.reset_password(db_session, user_repo, token, "new-secret")

    assert verify_password("new-secret", user_repo.get(user.id).password_hash)
    assert user_repo.get_session(session.id).revoked_at is not None
    assert db_session.query(PasswordResetToken).one().used_at is not None
