from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
import logging

from email_validator import EmailNotValidError, validate_email
from fastapi import HTTPException, status

from reelstream.repositories.base import (
    ROLE_ADMIN,
    ROLE_USER,
    DuplicateEmailError,
    NotFoundError,
    UserRecord,
    UserRepository,
)
from reelstream.utils.rate_limiter import LoginThrottle, login_throttle
from reelstream.utils.security import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    BCRYPT_MAX_BYTES,
    create_access_token,
    decode_token,
    hash_password,
    verify_password,
)
from reelstream.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
ROLES = (ROLE_ADMIN, ROLE_USER)

INVALID_CREDENTIALS = "Invalid email or password"
TOO_MANY_ATTEMPTS = "Too many failed login attempts. Please try again later"
EMAIL_IN_USE = "Email is already in use"
INVALID_EMAIL = "Invalid email address"
WEAK_PASSWORD = "Password must be at least 6 characters"

# Profile fields a user may change on their own account
PROFILE_FIELDS = ("display_name", "photo_url")


@dataclass
class UserSession:
    """The signed-in user for one request, resolved from the bearer token."""
    user: UserRecord
    session_id: str
    expires_at: datetime

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def is_admin(self) -> bool:
        return self.user.is_admin


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class AuthService:

    @staticmethod
    def normalize_email(email: str) -> str:
        return (email or "").strip().lower()

    @staticmethod
    def validate_password(password: str) -> None:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=WEAK_PASSWORD)
        # Validate password length for bcrypt (max 72 bytes)
        if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Password cannot be longer than 72 bytes",
            )

    @classmethod
    def signup(cls, users: UserRepository, email: str, password: str, display_name: str = "") -> Dict[str, Any]:
        try:
            email = validate_email(cls.normalize_email(email), check_deliverability=False).normalized
        except EmailNotValidError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_EMAIL)
        cls.validate_password(password)

        if users.get_by_email(email):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=EMAIL_IN_USE)

        try:
            user = users.create(email, hash_password(password), display_name=display_name.strip(), role=ROLE_USER)
        except DuplicateEmailError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=EMAIL_IN_USE)

        logger.info(f"User signed up: {user.id}")
        return cls._start_session(users, user)

    @classmethod
    def login(
        cls,
        users: UserRepository,
        email: str,
        password: str,
        throttle: LoginThrottle = login_throttle,
    ) -> Dict[str, Any]:
        email = cls.normalize_email(email)

        if throttle.is_blocked(email):
            logger.warning(f"Login throttled for {email}")
            raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=TOO_MANY_ATTEMPTS)

        user = users.get_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            throttle.record_failure(email)
            logger.warning(f"Login failed for {email}")
            raise _unauthorized(INVALID_CREDENTIALS)

        throttle.clear(email)
        user = users.update(user.id, {"last_login_at": utcnow()})
        return cls._start_session(users, user)

    @staticmethod
    def _start_session(users: UserRepository, user: UserRecord) -> Dict[str, Any]:
        expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
        session = users.create_session(user.id, utcnow() + expires_delta)
        access_token = create_access_token(
            data={"sub": user.id, "sid": session.id},
            expires_delta=expires_delta,
        )
        return {
            "access_token": access_token,
            "token_type": "bearer",
            "expires_in": ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            "user": user,
        }

    @staticmethod
    def resolve_session(users: UserRepository, token: str) -> UserSession:
        payload = decode_token(token)
        if payload is None or payload.get("type") != "access":
            raise _unauthorized("Invalid token")

        session = users.get_session(payload.get("sid", ""))
        if session is None or session.user_id != payload.get("sub"):
            raise _unauthorized("Invalid token")
        if session.revoked_at is not None or session.expires_at <= utcnow():
            raise _unauthorized("Session expired")

        user = users.get(session.user_id)
        if user is None:
            raise _unauthorized("User not found")

        return UserSession(user=user, session_id=session.id, expires_at=session.expires_at)

    @staticmethod
    def logout(users: UserRepository, session: UserSession) -> None:
        users.revoke_session(session.session_id, utcnow())
        logger.info(f"User signed out: {session.user_id}")

    @staticmethod
    def update_profile(users: UserRepository, session: UserSession, changes: Dict[str, Any]) -> UserRecord:
        # Role is never writable through the profile
        allowed = {key: value for key, value in changes.items() if key in PROFILE_FIELDS and value is not None}
        if not allowed:
            return session.user
        return users.update(session.user_id, allowed)

    @staticmethod
    def update_preferences(users: UserRepository, session: UserSession, preferences: Dict[str, Any]) -> UserRecord:
        return users.merge_preferences(session.user_id, preferences)

    @staticmethod
    def set_role(users: UserRepository, actor: UserSession, user_id: str, role: str) -> UserRecord:
        if not actor.is_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
        if role not in ROLES:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Role must be one of: {', '.join(ROLES)}")
        try:
            user = users.update(user_id, {"role": role})
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        logger.info(f"Role of user {user_id} set to {role} by {actor.user_id}")
        return user

    @staticmethod
    def get_profile(users: UserRepository, session: UserSession, history_limit: int = 50) -> Dict[str, Any]:
        """Current user with watchlist and recent history"""
        return {
            "user": session.user,
            "watchlist": users.get_watchlist(session.user_id),
            "history": users.get_history(session.user_id, limit=history_limit),
        }
