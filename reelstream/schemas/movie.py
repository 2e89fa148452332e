from pydantic import BaseModel, Field, field_validator, ConfigDict
from datetime import datetime
from typing import Any, Dict, List, Optional

from reelstream.schemas.validation import SafeStringMixin

CONTENT_RATING_PATTERN = r'^(G|PG|PG-13|R|NC-17)$'


class MovieFields(BaseModel, SafeStringMixin):
    """Shared validation for create and update payloads"""

    @field_validator('title', check_fields=False)
    @classmethod
    def clean_title(cls, v):
        if v is None:
            raise ValueError("Title is required")
        v = cls.strip_tags(v)
        if not v:
            raise ValueError("Title is required")
        return v

    @field_validator('genre', 'director', 'language', check_fields=False)
    @classmethod
    def clean_plain(cls, v):
        return cls.strip_tags(v) if v is not None else v

    @field_validator('description', check_fields=False)
    @classmethod
    def clean_description(cls, v):
        return cls.clean_text(v) if v is not None else v

    @field_validator('poster', 'video', check_fields=False)
    @classmethod
    def check_reference(cls, v):
        return cls.validate_no_script(v) if v else v

    @field_validator('cast', check_fields=False)
    @classmethod
    def clean_cast(cls, v):
        if v is None:
            return v
        return [name for name in (cls.strip_tags(n) for n in v) if name]


class MovieCreate(MovieFields):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field("", max_length=5000)
    genre: Optional[str] = Field(None, max_length=100)
    year: Optional[int] = Field(None, ge=1888, le=2100)
    duration: Optional[int] = Field(None, ge=1, le=1000)
    rating: Optional[str] = Field(None, pattern=CONTENT_RATING_PATTERN)
    poster: Optional[str] = Field(None, max_length=1024)
    video: Optional[str] = Field(None, max_length=1024)
    director: Optional[str] = Field(None, max_length=255)
    language: Optional[str] = Field(None, max_length=50)
    release_date: Optional[str] = Field(None, max_length=20)
    cast: List[str] = []
    featured: bool = False


class MovieUpdate(MovieFields):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    genre: Optional[str] = Field(None, max_length=100)
    year: Optional[int] = Field(None, ge=1888, le=2100)
    duration: Optional[int] = Field(None, ge=1, le=1000)
    rating: Optional[str] = Field(None, pattern=CONTENT_RATING_PATTERN)
    poster: Optional[str] = Field(None, max_length=1024)
    video: Optional[str] = Field(None, max_length=1024)
    director: Optional[str] = Field(None, max_length=255)
    language: Optional[str] = Field(None, max_length=50)
    release_date: Optional[str] = Field(None, max_length=20)
    cast: Optional[List[str]] = None
    featured: Optional[bool] = None

    @field_validator('cast', 'featured')
    @classmethod
    def reject_null(cls, v):
        # Omit a field to leave it unchanged; these columns cannot be cleared
        if v is None:
            raise ValueError("Field cannot be null")
        return v


class RatingCreate(BaseModel, SafeStringMixin):
    score: int = Field(..., ge=1, le=5)
    comment: str = Field("", max_length=1000)

    @field_validator('comment')
    @classmethod
    def clean_comment(cls, v):
        return cls.clean_text(v)


class RatingResponse(BaseModel):
    user_id: str
    score: int
    comment: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class MovieResponse(BaseModel):
    id: str
    title: str
    description: str = ""
    genre: Optional[str] = None
    year: Optional[int] = None
    duration: Optional[int] = None
    rating: Optional[str] = None
    poster: Optional[str] = None
    poster_url: Optional[str] = None
    has_video: bool = False
    director: Optional[str] = None
    language: Optional[str] = None
    release_date: Optional[str] = None
    cast: List[str] = []
    featured: bool = False
    views: int = 0
    downloads: int = 0
    average_rating: Optional[float] = None
    ratings: List[RatingResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class MoviePageResponse(BaseModel):
    items: List[MovieResponse]
    has_more: bool
    next_cursor: Optional[str] = None


class GenreResponse(BaseModel):
    id: str
    name: str
    count: int


class VideoUrlResponse(BaseModel):
    movie_id: str
    url: str
    expires_in: int


class CounterResponse(BaseModel):
    id: str
    views: int
    downloads: int


class SimilarMoviesResponse(BaseModel):
    items: List[Dict[str, Any]]
