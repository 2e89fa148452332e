"""
Dictionary-backed repositories with the same semantics as the SQL ones.
"""
from copy import deepcopy
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional
from threading import RLock

from reelstream.models.movie import new_id
from reelstream.repositories.base import (
    ROLE_USER,
    DuplicateEmailError,
    HistoryItem,
    InvalidCursorError,
    MoviePage,
    MovieQuery,
    MovieRecord,
    MovieRepository,
    NotFoundError,
    RatingRecord,
    SessionRecord,
    UserRecord,
    UserRepository,
    WatchlistItem,
    build_page,
    decode_cursor,
)
from reelstream.repositories.sql import COUNTERS, MOVIE_FIELDS, USER_FIELDS
from reelstream.utils.timeutils import utcnow


def _has_prefix(value: Optional[str], prefix: str) -> bool:
    return value is not None and value.startswith(prefix)


class InMemoryMovieRepository(MovieRepository):

    def __init__(self, movies: Optional[List[MovieRecord]] = None, collections: Optional[Dict[str, Any]] = None):
        self._lock = RLock()
        self._movies: Dict[str, MovieRecord] = {}
        self._collections: Dict[str, Dict[str, Any]] = dict(collections or {})
        for movie in movies or []:
            self._movies[movie.id] = deepcopy(movie)

    def get(self, movie_id: str) -> Optional[MovieRecord]:
        movie = self._movies.get(movie_id)
        return deepcopy(movie) if movie else None

    def create(self, data: Dict[str, Any]) -> MovieRecord:
        now = utcnow()
        fields = {key: value for key, value in data.items() if key in MOVIE_FIELDS}
        fields["cast"] = list(fields.get("cast") or [])
        movie = MovieRecord(id=new_id(), created_at=now, updated_at=now, **fields)
        with self._lock:
            self._movies[movie.id] = movie
        return deepcopy(movie)

    def update(self, movie_id: str, changes: Dict[str, Any]) -> MovieRecord:
        with self._lock:
            movie = self._movies.get(movie_id)
            if movie is None:
                raise NotFoundError(movie_id)
            fields = {key: value for key, value in changes.items() if key in MOVIE_FIELDS}
            movie = replace(movie, updated_at=utcnow(), **fields)
            self._movies[movie_id] = movie
            return deepcopy(movie)

    def delete(self, movie_id: str) -> bool:
        with self._lock:
            return self._movies.pop(movie_id, None) is not None

    def query(self, query: MovieQuery) -> MoviePage:
        field = query.sort_field
        movies = [m for m in self._movies.values() if getattr(m, field) is not None]
        if query.genre:
            movies = [m for m in movies if m.genre == query.genre]
        if query.year is not None:
            movies = [m for m in movies if m.year == query.year]
        if query.search:
            movies = [m for m in movies if _has_prefix(m.title, query.search)]

        movies.sort(key=lambda m: (getattr(m, field), m.id), reverse=query.descending)

        if query.cursor:
            last = self._movies.get(decode_cursor(query.cursor))
            if last is None or getattr(last, field) is None:
                raise InvalidCursorError(query.cursor)
            anchor = (getattr(last, field), last.id)
            if query.descending:
                movies = [m for m in movies if (getattr(m, field), m.id) < anchor]
            else:
                movies = [m for m in movies if (getattr(m, field), m.id) > anchor]

        return build_page([deepcopy(m) for m in movies[:query.page_size]], query.page_size)

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
        movies = list(self._movies.values())
        if featured is not None:
            movies = [m for m in movies if m.featured == featured]
        if genre is not None:
            movies = [m for m in movies if m.genre == genre]
        if genre_prefix:
            movies = [m for m in movies if _has_prefix(m.genre, genre_prefix)]
        if title_prefix:
            movies = [m for m in movies if _has_prefix(m.title, title_prefix)]
        if year is not None:
            movies = [m for m in movies if m.year == year]
        if director is not None:
            movies = [m for m in movies if m.director == director]
        if exclude_director is not None:
            movies = [m for m in movies if m.director is not None and m.director != exclude_director]
        if exclude_id is not None:
            movies = [m for m in movies if m.id != exclude_id]

        if order_by:
            present = [m for m in movies if getattr(m, order_by) is not None]
            missing = [m for m in movies if getattr(m, order_by) is None]
            present.sort(key=lambda m: (getattr(m, order_by), m.id), reverse=descending)
            movies = present + missing
        else:
            movies.sort(key=lambda m: (m.created_at, m.id))

        if limit is not None:
            movies = movies[:limit]
        return [deepcopy(m) for m in movies]

    def count(self) -> int:
        return len(self._movies)

    def total_views(self) -> int:
        return sum(m.views for m in self._movies.values())

    def increment_counter(self, movie_id: str, counter: str) -> MovieRecord:
        if counter not in COUNTERS:
            raise ValueError(f"Unknown counter: {counter}")
        with self._lock:
            movie = self._movies.get(movie_id)
            if movie is None:
                raise NotFoundError(movie_id)
            setattr(movie, counter, getattr(movie, counter) + 1)
            setattr(movie, COUNTERS[counter], utcnow())
            return deepcopy(movie)

    def upsert_rating(self, movie_id: str, user_id: str, score: int, comment: str = "") -> MovieRecord:
        with self._lock:
            movie = self._movies.get(movie_id)
            if movie is None:
                raise NotFoundError(movie_id)
            now = utcnow()
            for rating in movie.ratings:
                if rating.user_id == user_id:
                    rating.score = score
                    rating.comment = comment
                    rating.updated_at = now
                    break
            else:
                movie.ratings.append(RatingRecord(user_id, score, comment, now, now))
            movie.average_rating = round(sum(r.score for r in movie.ratings) / len(movie.ratings), 2)
            movie.updated_at = now
            return deepcopy(movie)

    def get_collection(self, name: str) -> Optional[Dict[str, Any]]:
        collection = self._collections.get(name)
        return deepcopy(collection) if collection is not None else None

    def set_collection(self, name: str, data: Dict[str, Any]) -> None:
        self._collections[name] = deepcopy(data)


class InMemoryUserRepository(UserRepository):

    def __init__(self):
        self._lock = RLock()
        self._users: Dict[str, UserRecord] = {}
        self._watchlists: Dict[str, Dict[str, WatchlistItem]] = {}
        self._history: Dict[str, Dict[str, HistoryItem]] = {}
        self._sessions: Dict[str, SessionRecord] = {}

    def _require(self, user_id: str) -> UserRecord:
        user = self._users.get(user_id)
        if user is None:
            raise NotFoundError(user_id)
        return user

    def get(self, user_id: str) -> Optional[UserRecord]:
        user = self._users.get(user_id)
        return deepcopy(user) if user else None

    def get_by_email(self, email: str) -> Optional[UserRecord]:
        for user in self._users.values():
            if user.email == email:
                return deepcopy(user)
        return None

    def create(self, email: str, password_hash: str, display_name: str = "", role: str = ROLE_USER) -> UserRecord:
        with self._lock:
            if any(u.email == email for u in self._users.values()):
                raise DuplicateEmailError(email)
            now = utcnow()
            user = UserRecord(
                id=new_id(),
                email=email,
                password_hash=password_hash,
                display_name=display_name,
                role=role,
                created_at=now,
                updated_at=now,
            )
            self._users[user.id] = user
            return deepcopy(user)

    def update(self, user_id: str, changes: Dict[str, Any]) -> UserRecord:
        with self._lock:
            user = self._require(user_id)
            for key, value in changes.items():
                if key in USER_FIELDS:
                    setattr(user, key, value)
            user.updated_at = utcnow()
            return deepcopy(user)

    def merge_preferences(self, user_id: str, preferences: Dict[str, Any]) -> UserRecord:
        with self._lock:
            user = self._require(user_id)
            user.preferences = {**user.preferences, **preferences}
            user.updated_at = utcnow()
            return deepcopy(user)

    def list_users(self, role: Optional[str] = None, limit: int = 100, offset: int = 0) -> List[UserRecord]:
        users = [u for u in self._users.values() if role is None or u.role == role]
        users.sort(key=lambda u: (u.created_at, u.id), reverse=True)
        return [deepcopy(u) for u in users[offset:offset + limit]]

    def count_users(self, role: Optional[str] = None) -> int:
        return sum(1 for u in self._users.values() if role is None or u.role == role)

    def add_to_watchlist(self, user_id: str, item: WatchlistItem) -> bool:
        with self._lock:
            entries = self._watchlists.setdefault(user_id, {})
            if item.movie_id in entries:
                return False
            entries[item.movie_id] = replace(item, added_at=item.added_at or utcnow())
            return True

    def remove_from_watchlist(self, user_id: str, movie_id: str) -> bool:
        with self._lock:
            return self._watchlists.get(user_id, {}).pop(movie_id, None) is not None

    def get_watchlist(self, user_id: str) -> List[WatchlistItem]:
        return [deepcopy(i) for i in self._watchlists.get(user_id, {}).values()]

    def in_watchlist(self, user_id: str, movie_id: str) -> bool:
        return movie_id in self._watchlists.get(user_id, {})

    def record_watch(self, user_id: str, item: HistoryItem) -> HistoryItem:
        with self._lock:
            entry = replace(item, watched_at=item.watched_at or utcnow())
            self._history.setdefault(user_id, {})[item.movie_id] = entry
            return deepcopy(entry)

    def get_history(self, user_id: str, limit: int = 50) -> List[HistoryItem]:
        entries = sorted(self._history.get(user_id, {}).values(), key=lambda i: i.watched_at, reverse=True)
        return [deepcopy(i) for i in entries[:limit]]

    def create_session(self, user_id: str, expires_at: datetime) -> SessionRecord:
        session = SessionRecord(id=new_id(), user_id=user_id, expires_at=expires_at, created_at=utcnow())
        with self._lock:
            self._sessions[session.id] = session
        return deepcopy(session)

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        session = self._sessions.get(session_id)
        return deepcopy(session) if session else None

    def revoke_session(self, session_id: str, revoked_at: datetime) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.revoked_at is not None:
                return False
            session.revoked_at = revoked_at
            return True

    def revoke_user_sessions(self, user_id: str, revoked_at: datetime) -> int:
        with self._lock:
            active = [
                s for s in self._sessions.values()
                if s.user_id == user_id and s.revoked_at is None
            ]
            for session in active:
                session.revoked_at = revoked_at
            return len(active)

    def purge_sessions(self, now: datetime) -> int:
        with self._lock:
            stale = [
                s.id for s in self._sessions.values()
                if s.expires_at <= now or s.revoked_at is not None
            ]
            for session_id in stale:
                del self._sessions[session_id]
            return len(stale)
