from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from reelstream.database import get_db
from reelstream.repositories.base import MovieRepository, UserRepository
from reelstream.repositories.sql import SqlMovieRepository, SqlUserRepository
from reelstream.services.auth_service import AuthService, UserSession
from reelstream.services.storage_service import LocalObjectStorage, storage
from reelstream.utils.rate_limiter import LoginThrottle, login_throttle

security = HTTPBearer(auto_error=False)


def get_movie_repository(db: Session = Depends(get_db)) -> MovieRepository:
    return SqlMovieRepository(db)


def get_user_repository(db: Session = Depends(get_db)) -> UserRepository:
    return SqlUserRepository(db)


def get_storage() -> LocalObjectStorage:
    return storage


def get_login_throttle() -> LoginThrottle:
    return login_throttle


def get_optional_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    users: UserRepository = Depends(get_user_repository),
) -> Optional[UserSession]:
    """Signed-in session if a bearer token was sent; anonymous otherwise"""
    if credentials is None:
        return None
    return AuthService.resolve_session(users, credentials.credentials)


def get_current_session(session: Optional[UserSession] = Depends(get_optional_session)) -> UserSession:
    if session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return session


def require_admin(session: UserSession = Depends(get_current_session)) -> UserSession:
    if not session.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return session
