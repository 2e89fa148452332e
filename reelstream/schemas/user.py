from pydantic import BaseModel, Field, field_validator, ConfigDict
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from reelstream.schemas.auth import UserResponse
from reelstream.schemas.movie import MovieResponse
from reelstream.schemas.validation import SafeStringMixin


class ProfileUpdate(BaseModel, SafeStringMixin):
    """Role is deliberately absent: it can only be changed by an admin"""
    model_config = ConfigDict(extra='ignore')

    display_name: Optional[str] = Field(None, max_length=100)
    photo_url: Optional[str] = Field(None, max_length=1024)

    @field_validator('display_name')
    @classmethod
    def clean_display_name(cls, v):
        return cls.strip_tags(v) if v is not None else v

    @field_validator('photo_url')
    @classmethod
    def clean_photo_url(cls, v):
        return cls.validate_no_script(v) if v else v


class PreferencesUpdate(BaseModel):
    preferences: Dict[str, Any]


class WatchlistItemResponse(BaseModel):
    movie_id: str
    title: str
    poster: Optional[str] = None
    added_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class HistoryItemResponse(BaseModel):
    movie_id: str
    title: str
    poster: Optional[str] = None
    watched_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class MovieReference(BaseModel):
    movie_id: str = Field(..., min_length=1, max_length=64)


class WatchlistStatus(BaseModel):
    movie_id: str
    in_watchlist: bool


class MeResponse(BaseModel):
    user: UserResponse
    watchlist: List[WatchlistItemResponse]
    history: List[HistoryItemResponse]


class RoleUpdate(BaseModel):
    role: Literal['admin', 'user']


class UserListResponse(BaseModel):
    items: List[UserResponse]
    total: int


class AdminOverviewResponse(BaseModel):
    total_movies: int
    total_users: int
    total_views: int
    recent_uploads: List[MovieResponse]
