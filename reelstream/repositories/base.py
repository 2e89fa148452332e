"""
Repository interfaces for the catalog and user stores.

Services depend on these abstractions only. ``sql.py`` implements them on
SQLAlchemy; ``memory.py`` keeps everything in dictionaries for tests and
local experiments.

All methods return plain records (dataclasses), never ORM instances.
"""
from abc import ABC, abstractmethod
from base64 import urlsafe_b64decode, urlsafe_b64encode
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import binascii

# Fields a catalog query may sort on
SORTABLE_FIELDS = (
    "created_at",
    "updated_at",
    "title",
    "year",
    "views",
    "downloads",
    "average_rating",
    "duration",
)

# Upper bound used for prefix range queries on titles
PREFIX_SENTINEL = "\uf8ff"

ROLE_ADMIN = "admin"
ROLE_USER = "user"


class RepositoryError(Exception):
    """Base error raised by repository implementations."""


class InvalidCursorError(RepositoryError):
    """The pagination cursor does not identify an existing record."""


class NotFoundError(RepositoryError):
    """The addressed record does not exist."""


class DuplicateEmailError(RepositoryError):
    """A user with this email already exists."""


# ==================== RECORDS ====================

@dataclass
class RatingRecord:
    user_id: str
    score: int
    comment: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class MovieRecord:
    id: str
    title: str
    description: str = ""
    genre: Optional[str] = None
    year: Optional[int] = None
    duration: Optional[int] = None
    rating: Optional[str] = None
    poster: Optional[str] = None
    video: Optional[str] = None
    director: Optional[str] = None
    language: Optional[str] = None
    release_date: Optional[str] = None
    cast: List[str] = field(default_factory=list)
    featured: bool = False
    views: int = 0
    downloads: int = 0
    average_rating: Optional[float] = None
    ratings: List[RatingRecord] = field(default_factory=list)
    last_viewed_at: Optional[datetime] = None
    last_downloaded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class UserRecord:
    id: str
    email: str
    password_hash: str
    display_name: str = ""
    photo_url: str = ""
    role: str = ROLE_USER
    preferences: Dict[str, Any] = field(default_factory=dict)
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


@dataclass
class WatchlistItem:
    movie_id: str
    title: str
    poster: Optional[str] = None
    added_at: Optional[datetime] = None


@dataclass
class HistoryItem:
    movie_id: str
    title: str
    poster: Optional[str] = None
    watched_at: Optional[datetime] = None


@dataclass
class SessionRecord:
    id: str
    user_id: str
    expires_at: datetime
    created_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None


# ==================== QUERIES ====================

@dataclass
class MovieQuery:
    """Catalog query: one optional filter set, one sort key, one page."""
    genre: Optional[str] = None
    year: Optional[int] = None
    search: Optional[str] = None
    sort_field: str = "created_at"
    sort_direction: str = "desc"
    page_size: int = 12
    cursor: Optional[str] = None

    @property
    def descending(self) -> bool:
        return self.sort_direction == "desc"


@dataclass
class MoviePage:
    items: List[MovieRecord]
    has_more: bool
    next_cursor: Optional[str] = None


def encode_cursor(movie_id: str) -> str:
    """Opaque cursor pointing at the last item of a page."""
    return urlsafe_b64encode(movie_id.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> str:
    padded = cursor + "=" * (-len(cursor) % 4)
    try:
        return urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        raise InvalidCursorError(cursor)


def build_page(items: List[MovieRecord], page_size: int) -> MoviePage:
    """A full page means more results may exist."""
    has_more = len(items) == page_size
    next_cursor = encode_cursor(items[-1].id) if has_more and items else None
    return MoviePage(items=items, has_more=has_more, next_cursor=next_cursor)


# ==================== INTERFACES ====================

class MovieRepository(ABC):

    @abstractmethod
    def get(self, movie_id: str) -> Optional[MovieRecord]:
        ...

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> MovieRecord:
        ...

    @abstractmethod
    def update(self, movie_id: str, changes: Dict[str, Any]) -> MovieRecord:
        """Apply ``changes`` and bump ``updated_at``. Raises NotFoundError."""

    @abstractmethod
    def delete(self, movie_id: str) -> bool:
        ...

    @abstractmethod
    def query(self, query: MovieQuery) -> MoviePage:
        ...

    @abstractmethod
    def find(
        self,
        *,
        featured: Optional[bool] = None,
        genre: Optional[str] = None,
        genre_prefix: Optional[str] = None,
        title_prefix: Optional[str] = None,
        year: Optional[int] = None,
        director: Optional[str] = None,
        exclude_director: Optional[str] = None,
        exclude_id: Optional[str] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[MovieRecord]:
        """Unpaginated lookup used by home page rows and related movies."""

    @abstractmethod
    def count(self) -> int:
        ...

    @abstractmethod
    def total_views(self) -> int:
        ...

    @abstractmethod
    def increment_counter(self, movie_id: str, counter: str) -> MovieRecord:
        """Atomically add one to ``views`` or ``downloads``. Raises NotFoundError."""

    @abstractmethod
    def upsert_rating(self, movie_id: str, user_id: str, score: int, comment: str = "") -> MovieRecord:
        """Insert or replace the user's rating and refresh ``average_rating``."""

    @abstractmethod
    def get_collection(self, name: str) -> Optional[Dict[str, Any]]:
        ...


class UserRepository(ABC):

    @abstractmethod
    def get(self, user_id: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    def get_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    def create(self, email: str, password_hash: str, display_name: str = "", role: str = ROLE_USER) -> UserRecord:
        """Raises DuplicateEmailError when the email is taken."""

    @abstractmethod
    def update(self, user_id: str, changes: Dict[str, Any]) -> UserRecord:
        ...

    @abstractmethod
    def merge_preferences(self, user_id: str, preferences: Dict[str, Any]) -> UserRecord:
        ...

    @abstractmethod
    def list_users(self, role: Optional[str] = None, limit: int = 100, offset: int = 0) -> List[UserRecord]:
        ...

    @abstractmethod
    def count_users(self, role: Optional[str] = None) -> int:
        ...

    # Watchlist: atomic primitives, no read-modify-write of the whole list

    @abstractmethod
    def add_to_watchlist(self, user_id: str, item: WatchlistItem) -> bool:
        """Insert if absent. Returns False when the movie was already listed."""

    @abstractmethod
    def remove_from_watchlist(self, user_id: str, movie_id: str) -> bool:
        """Delete if present. Returns False when nothing was removed."""

    @abstractmethod
    def get_watchlist(self, user_id: str) -> List[WatchlistItem]:
        ...

    @abstractmethod
    def in_watchlist(self, user_id: str, movie_id: str) -> bool:
        ...

    # Watch history

    @abstractmethod
    def record_watch(self, user_id: str, item: HistoryItem) -> HistoryItem:
        """Insert, or refresh the existing entry for the same movie."""

    @abstractmethod
    def get_history(self, user_id: str, limit: int = 50) -> List[HistoryItem]:
        ...

    # Sessions

    @abstractmethod
    def create_session(self, user_id: str, expires_at: datetime) -> SessionRecord:
        ...

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        ...

    @abstractmethod
    def revoke_session(self, session_id: str, revoked_at: datetime) -> bool:
        ...

    @abstractmethod
    def revoke_user_sessions(self, user_id: str, revoked_at: datetime) -> int:
        """Revoke every active session of the user. Returns the number revoked."""

    @abstractmethod
    def purge_sessions(self, now: datetime) -> int:
        """Delete expired or revoked sessions. Returns the number removed."""
