from pydantic import BaseModel, EmailStr, Field, field_validator, ConfigDict, ValidationInfo
from datetime import datetime
from typing import Any, Dict, Optional

from reelstream.schemas.validation import SafeStringMixin


def ensure_password_length(password: str) -> str:
    """bcrypt only looks at the first 72 bytes"""
    if len(password.encode('utf-8')) > 72:
        raise ValueError('Password cannot be longer than 72 bytes')
    return password


# Email and password rules are enforced by AuthService so that
# errors carry the exact user-facing messages.
class SignUpRequest(BaseModel, SafeStringMixin):
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=255)
    display_name: str = Field("", max_length=100)

    @field_validator('display_name')
    @classmethod
    def clean_display_name(cls, v):
        return cls.strip_tags(v)


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=255)


class UserResponse(BaseModel):
    id: str
    email: str
    display_name: str
    photo_url: str = ""
    role: str
    is_admin: bool
    preferences: Dict[str, Any] = {}
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=32, max_length=255)
    new_password: str = Field(..., min_length=6)
    confirm_password: str = Field(..., min_length=6)

    @field_validator('new_password')
    @classmethod
    def validate_new_password(cls, v):
        return ensure_password_length(v)

    @field_validator('confirm_password')
    @classmethod
    def confirm_matches(cls, v, info: ValidationInfo):
        new_password = info.data.get('new_password')
        if new_password and v != new_password:
            raise ValueError('Passwords do not match')
        return v


class MessageResponse(BaseModel):
    message: str
