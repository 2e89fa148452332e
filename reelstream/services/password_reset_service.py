"""
Password reset: single-use, expiring tokens delivered by email.

Only the SHA-256 digest of a token is stored. Requests for unknown emails
look exactly like successful ones to the caller.
"""
from datetime import timedelta
from typing import Optional
import hashlib
import logging
import os
import secrets

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from reelstream.models.password_reset_token import PasswordResetToken
from reelstream.repositories.base import UserRepository
from reelstream.services.email_service import EmailService
from reelstream.utils.security import hash_password
from reelstream.utils.timeutils import ensure_aware, utcnow

logger = logging.getLogger(__name__)

RESET_TOKEN_TTL_MINUTES = int(os.getenv("RESET_TOKEN_TTL_MINUTES", "30"))
RESET_TOKEN_MAX_ACTIVE = int(os.getenv("RESET_TOKEN_MAX_ACTIVE", "3"))
PASSWORD_RESET_URL = os.getenv("PASSWORD_RESET_URL", "http://localhost:5173/reset-password")

INVALID_RESET_TOKEN = "Invalid or expired reset token."
TOO_MANY_RESET_REQUESTS = "Too many password reset requests. Please try again later."


def _digest(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def _reset_link(raw_token: str) -> str:
    return f"{PASSWORD_RESET_URL.rstrip('/')}/{raw_token}"


class PasswordResetService:

    @staticmethod
    def purge_expired_tokens(db: Session) -> int:
        """Delete expired tokens; the caller commits"""
        return db.query(PasswordResetToken).filter(
            PasswordResetToken.expires_at <= utcnow()
        ).delete(synchronize_session=False)

    @staticmethod
    def _active_tokens(db: Session, user_id: str):
        return db.query(PasswordResetToken).filter(
            PasswordResetToken.user_id == user_id,
            PasswordResetToken.used_at.is_(None),
            PasswordResetToken.expires_at > utcnow(),
        )

    @classmethod
    def request_reset(
        cls, db: Session, users: UserRepository, email: str, client_ip: Optional[str] = None
    ) -> None:
        cls.purge_expired_tokens(db)
        user = users.get_by_email(email.strip().lower())
        if user is None:
            db.commit()
            return

        if cls._active_tokens(db, user.id).count() >= RESET_TOKEN_MAX_ACTIVE:
            db.commit()
            raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=TOO_MANY_RESET_REQUESTS)

        raw_token = secrets.token_urlsafe(48)
        db.add(PasswordResetToken(
            user_id=user.id,
            token_hash=_digest(raw_token),
            expires_at=utcnow() + timedelta(minutes=RESET_TOKEN_TTL_MINUTES),
            requested_ip=client_ip,
        ))

        # The token is only kept if the email actually went out
        try:
            EmailService.send_password_reset_email(user.email, _reset_link(raw_token))
        except HTTPException:
            db.rollback()
            raise
        db.commit()
        logger.info(f"Password reset requested for user {user.id}")

    @classmethod
    def reset_password(cls, db: Session, users: UserRepository, token: str, new_password: str) -> None:
        now = utcnow()
        record = db.query(PasswordResetToken).filter(
            PasswordResetToken.token_hash == _digest(token),
            PasswordResetToken.used_at.is_(None),
        ).first()
        if record is None or ensure_aware(record.expires_at) < now:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_RESET_TOKEN)

        if users.get(record.user_id) is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_RESET_TOKEN)

        # Consume this token and every other outstanding one for the account
        cls._active_tokens(db, record.user_id).update({"used_at": now}, synchronize_session=False)
        record.used_at = now
        db.commit()

        users.update(record.user_id, {"password_hash": hash_password(new_password)})
        revoked = users.revoke_user_sessions(record.user_id, now)
        logger.info(f"Password reset completed for user {record.user_id}, {revoked} sessions signed out")
