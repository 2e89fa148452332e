from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session
from reelstream.database import get_db
from reelstream.repositories.base import UserRepository
from reelstream.schemas.auth import (
    SignUpRequest,
    LoginRequest,
    TokenResponse,
    ForgotPasswordRequest,
    ResetPasswordRequest,
    MessageResponse,
)
from reelstream.schemas.user import MeResponse
from reelstream.services.auth_service import AuthService, UserSession
from reelstream.services.password_reset_service import PasswordResetService
from reelstream.utils.dependencies import (
    get_current_session,
    get_login_throttle,
    get_user_repository,
)
from reelstream.utils.rate_limiter import LoginThrottle

# Define router
router = APIRouter(prefix="/api/auth", tags=["Authentication"])


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def signup(payload: SignUpRequest, users: UserRepository = Depends(get_user_repository)):
    """Create an account and sign in"""
    return AuthService.signup(users, payload.email, payload.password, payload.display_name)


@router.post("/login", response_model=TokenResponse)
def login(
    credentials: LoginRequest,
    users: UserRepository = Depends(get_user_repository),
    throttle: LoginThrottle = Depends(get_login_throttle),
):
    """Login with email and password"""
    return AuthService.login(users, credentials.email, credentials.password, throttle)


@router.post("/logout", response_model=MessageResponse)
def logout(
    session: UserSession = Depends(get_current_session),
    users: UserRepository = Depends(get_user_repository),
):
    AuthService.logout(users, session)
    return {"message": "Signed out"}


@router.get("/me", response_model=MeResponse)
def get_me(
    session: UserSession = Depends(get_current_session),
    users: UserRepository = Depends(get_user_repository),
):
    """Current user with role, preferences, watchlist and watch history"""
    return AuthService.get_profile(users, session)


@router.post("/forgot-password", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
def forgot_password(
    payload: ForgotPasswordRequest,
    request: Request,
    db: Session = Depends(get_db),
    users: UserRepository = Depends(get_user_repository),
):
    """Request a password reset link."""
    client_ip = request.client.host if request.client else None
    PasswordResetService.request_reset(db, users, payload.email, client_ip)
    return {"message": "If an account exists for that email, we sent reset instructions."}


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    payload: ResetPasswordRequest,
    db: Session = Depends(get_db),
    users: UserRepository = Depends(get_user_repository),
):
    """Complete password reset with a valid token."""
    PasswordResetService.reset_password(db, users, payload.token, payload.new_password)
    return {"message": "Password reset successful. You can now log in with your new password."}
