"""
SQLAlchemy implementations of the repository interfaces.

One repository instance wraps one request-scoped ``Session``; every write
commits before returning.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from reelstream.models import (
    AuthSession,
    Movie,
    MovieCollection,
    MovieRating,
    User,
    WatchHistoryEntry,
    WatchlistEntry,
)
from reelstream.repositories.base import (
    PREFIX_SENTINEL,
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
from reelstream.utils.timeutils import ensure_aware, utcnow

logger = logging.getLogger(__name__)

MOVIE_FIELDS = (
    "title",
    "description",
    "genre",
    "year",
    "duration",
    "rating",
    "poster",
    "video",
    "director",
    "language",
    "release_date",
    "cast",
    "featured",
)

USER_FIELDS = ("display_name", "photo_url", "role", "last_login_at", "password_hash")

COUNTERS = {
    "views": "last_viewed_at",
    "downloads": "last_downloaded_at",
}


def _movie_record(movie: Movie) -> MovieRecord:
    return MovieRecord(
        id=movie.id,
        title=movie.title,
        description=movie.description or "",
        genre=movie.genre,
        year=movie.year,
        duration=movie.duration,
        rating=movie.rating,
        poster=movie.poster,
        video=movie.video,
        director=movie.director,
        language=movie.language,
        release_date=movie.release_date,
        cast=list(movie.cast or []),
        featured=bool(movie.featured),
        views=movie.views or 0,
        downloads=movie.downloads or 0,
        average_rating=movie.average_rating,
        ratings=[
            RatingRecord(
                user_id=r.user_id,
                score=r.score,
                comment=r.comment or "",
                created_at=ensure_aware(r.created_at),
                updated_at=ensure_aware(r.updated_at),
            )
            for r in movie.ratings
        ],
        last_viewed_at=ensure_aware(movie.last_viewed_at),
        last_downloaded_at=ensure_aware(movie.last_downloaded_at),
        created_at=ensure_aware(movie.created_at),
        updated_at=ensure_aware(movie.updated_at),
    )


def _user_record(user: User) -> UserRecord:
    return UserRecord(
        id=user.id,
        email=user.email,
        password_hash=user.password_hash,
        display_name=user.display_name or "",
        photo_url=user.photo_url or "",
        role=user.role or ROLE_USER,
        preferences=dict(user.preferences or {}),
        last_login_at=ensure_aware(user.last_login_at),
        created_at=ensure_aware(user.created_at),
        updated_at=ensure_aware(user.updated_at),
    )


def _session_record(session: AuthSession) -> SessionRecord:
    return SessionRecord(
        id=session.id,
        user_id=session.user_id,
        expires_at=ensure_aware(session.expires_at),
        created_at=ensure_aware(session.created_at),
        revoked_at=ensure_aware(session.revoked_at),
    )


class SqlMovieRepository(MovieRepository):

    def __init__(self, db: Session):
        self.db = db

    def _get_model(self, movie_id: str) -> Movie:
        movie = self.db.get(Movie, movie_id)
        if movie is None:
            raise NotFoundError(movie_id)
        return movie

    def get(self, movie_id: str) -> Optional[MovieRecord]:
        movie = self.db.get(Movie, movie_id)
        return _movie_record(movie) if movie else None

    def create(self, data: Dict[str, Any]) -> MovieRecord:
        now = utcnow()
        movie = Movie(
            **{key: value for key, value in data.items() if key in MOVIE_FIELDS},
            views=0,
            downloads=0,
            created_at=now,
            updated_at=now,
        )
        if movie.cast is None:
            movie.cast = []
        self.db.add(movie)
        self.db.commit()
        self.db.refresh(movie)
        logger.info(f"Movie created: {movie.id} ({movie.title})")
        return _movie_record(movie)

    def update(self, movie_id: str, changes: Dict[str, Any]) -> MovieRecord:
        movie = self._get_model(movie_id)
        for key, value in changes.items():
            if key in MOVIE_FIELDS:
                setattr(movie, key, value)
        movie.updated_at = utcnow()
        self.db.commit()
        self.db.refresh(movie)
        return _movie_record(movie)

    def delete(self, movie_id: str) -> bool:
        movie = self.db.get(Movie, movie_id)
        if movie is None:
            return False
        self.db.delete(movie)
        self.db.commit()
        return True

    def query(self, query: MovieQuery) -> MoviePage:
        column = getattr(Movie, query.sort_field)
        q = self.db.query(Movie)

        if query.genre:
            q = q.filter(Movie.genre == query.genre)
        if query.year is not None:
            q = q.filter(Movie.year == query.year)
        if query.search:
            q = q.filter(Movie.title >= query.search, Movie.title <= query.search + PREFIX_SENTINEL)

        # Records without the sort field never show up in a sorted listing
        q = q.filter(column.isnot(None))

        if query.cursor:
            last = self.db.get(Movie, decode_cursor(query.cursor))
            if last is None or getattr(last, query.sort_field) is None:
                raise InvalidCursorError(query.cursor)
            last_value = getattr(last, query.sort_field)
            if query.descending:
                q = q.filter(or_(column < last_value, and_(column == last_value, Movie.id < last.id)))
            else:
                q = q.filter(or_(column > last_value, and_(column == last_value, Movie.id > last.id)))

        if query.descending:
            q = q.order_by(column.desc(), Movie.id.desc())
        else:
            q = q.order_by(column.asc(), Movie.id.asc())

        movies = q.limit(query.page_size).all()
        return build_page([_movie_record(m) for m in movies], query.page_size)

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
        q = self.db.query(Movie)
        if featured is not None:
            q = q.filter(Movie.featured == featured)
        if genre is not None:
            q = q.filter(Movie.genre == genre)
        if genre_prefix:
            q = q.filter(Movie.genre >= genre_prefix, Movie.genre <= genre_prefix + PREFIX_SENTINEL)
        if title_prefix:
            q = q.filter(Movie.title >= title_prefix, Movie.title <= title_prefix + PREFIX_SENTINEL)
        if year is not None:
            q = q.filter(Movie.year == year)
        if director is not None:
            q = q.filter(Movie.director == director)
        if exclude_director is not None:
            q = q.filter(Movie.director != exclude_director)
        if exclude_id is not None:
            q = q.filter(Movie.id != exclude_id)
        if order_by:
            column = getattr(Movie, order_by)
            q = q.order_by(column.desc() if descending else column.asc(), Movie.id)
        else:
            q = q.order_by(Movie.created_at, Movie.id)
        if limit is not None:
            q = q.limit(limit)
        return [_movie_record(m) for m in q.all()]

    def count(self) -> int:
        return self.db.query(func.count(Movie.id)).scalar() or 0

    def total_views(self) -> int:
        return self.db.query(func.coalesce(func.sum(Movie.views), 0)).scalar() or 0

    def increment_counter(self, movie_id: str, counter: str) -> MovieRecord:
        if counter not in COUNTERS:
            raise ValueError(f"Unknown counter: {counter}")
        column = getattr(Movie, counter)
        stamp = getattr(Movie, COUNTERS[counter])

        updated = (
            self.db.query(Movie)
            .filter(Movie.id == movie_id)
            .update({column: column + 1, stamp: utcnow()}, synchronize_session=False)
        )
        if not updated:
            self.db.rollback()
            raise NotFoundError(movie_id)
        self.db.commit()
        return _movie_record(self._get_model(movie_id))

    def upsert_rating(self, movie_id: str, user_id: str, score: int, comment: str = "") -> MovieRecord:
        movie = self._get_model(movie_id)

        existing = self.db.query(MovieRating).filter(
            MovieRating.movie_id == movie_id,
            MovieRating.user_id == user_id,
        ).first()
        if existing:
            existing.score = score
            existing.comment = comment
            existing.updated_at = utcnow()
        else:
            self.db.add(MovieRating(movie_id=movie_id, user_id=user_id, score=score, comment=comment))
        try:
            self.db.flush()
        except IntegrityError:
            # Another request inserted the same rating first
            self.db.rollback()
            self.db.query(MovieRating).filter(
                MovieRating.movie_id == movie_id,
                MovieRating.user_id == user_id,
            ).update({"score": score, "comment": comment, "updated_at": utcnow()}, synchronize_session=False)
            movie = self._get_model(movie_id)

        average = self.db.query(func.avg(MovieRating.score)).filter(
            MovieRating.movie_id == movie_id
        ).scalar()
        movie.average_rating = round(float(average), 2) if average is not None else None
        movie.updated_at = utcnow()
        self.db.commit()
        self.db.refresh(movie)
        return _movie_record(movie)

    def get_collection(self, name: str) -> Optional[Dict[str, Any]]:
        collection = self.db.get(MovieCollection, name)
        return dict(collection.data or {}) if collection else None


class SqlUserRepository(UserRepository):

    def __init__(self, db: Session):
        self.db = db

    def _get_model(self, user_id: str) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError(user_id)
        return user

    def get(self, user_id: str) -> Optional[UserRecord]:
        user = self.db.get(User, user_id)
        return _user_record(user) if user else None

    def get_by_email(self, email: str) -> Optional[UserRecord]:
        user = self.db.query(User).filter(User.email == email).first()
        return _user_record(user) if user else None

    def create(self, email: str, password_hash: str, display_name: str = "", role: str = ROLE_USER) -> UserRecord:
        now = utcnow()
        user = User(
            email=email,
            password_hash=password_hash,
            display_name=display_name,
            photo_url="",
            role=role,
            preferences={},
            created_at=now,
            updated_at=now,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateEmailError(email)
        self.db.refresh(user)
        return _user_record(user)

    def update(self, user_id: str, changes: Dict[str, Any]) -> UserRecord:
        user = self._get_model(user_id)
        for key, value in changes.items():
            if key in USER_FIELDS:
                setattr(user, key, value)
        user.updated_at = utcnow()
        self.db.commit()
        self.db.refresh(user)
        return _user_record(user)

    def merge_preferences(self, user_id: str, preferences: Dict[str, Any]) -> UserRecord:
        user = self._get_model(user_id)
        # Reassign so the JSON column is flagged dirty
        user.preferences = {**(user.preferences or {}), **preferences}
        user.updated_at = utcnow()
        self.db.commit()
        self.db.refresh(user)
        return _user_record(user)

    def list_users(self, role: Optional[str] = None, limit: int = 100, offset: int = 0) -> List[UserRecord]:
        q = self.db.query(User)
        if role:
            q = q.filter(User.role == role)
        users = q.order_by(User.created_at.desc(), User.id).offset(offset).limit(limit).all()
        return [_user_record(u) for u in users]

    def count_users(self, role: Optional[str] = None) -> int:
        q = self.db.query(func.count(User.id))
        if role:
            q = q.filter(User.role == role)
        return q.scalar() or 0

    # ==================== WATCHLIST ====================

    def _watchlist_filter(self, user_id: str, movie_id: str):
        return self.db.query(WatchlistEntry).filter(
            WatchlistEntry.user_id == user_id,
            WatchlistEntry.movie_id == movie_id,
        )

    def add_to_watchlist(self, user_id: str, item: WatchlistItem) -> bool:
        if self._watchlist_filter(user_id, item.movie_id).first():
            return False

        self.db.add(WatchlistEntry(
            user_id=user_id,
            movie_id=item.movie_id,
            title=item.title,
            poster=item.poster,
            added_at=item.added_at or utcnow(),
        ))
        try:
            self.db.commit()
        except IntegrityError:
            # Lost the race against a concurrent insert; the entry exists
            self.db.rollback()
            logger.debug(f"Concurrent watchlist insert for user {user_id}, movie {item.movie_id}")
            return False
        return True

    def remove_from_watchlist(self, user_id: str, movie_id: str) -> bool:
        removed = self._watchlist_filter(user_id, movie_id).delete(synchronize_session=False)
        self.db.commit()
        return removed > 0

    def get_watchlist(self, user_id: str) -> List[WatchlistItem]:
        entries = (
            self.db.query(WatchlistEntry)
            .filter(WatchlistEntry.user_id == user_id)
            .order_by(WatchlistEntry.added_at.asc(), WatchlistEntry.id.asc())
            .all()
        )
        return [
            WatchlistItem(
                movie_id=e.movie_id,
                title=e.title,
                poster=e.poster,
                added_at=ensure_aware(e.added_at),
            )
            for e in entries
        ]

    def in_watchlist(self, user_id: str, movie_id: str) -> bool:
        return self._watchlist_filter(user_id, movie_id).first() is not None

    # ==================== HISTORY ====================

    def record_watch(self, user_id: str, item: HistoryItem) -> HistoryItem:
        watched_at = item.watched_at or utcnow()
        values = {"title": item.title, "poster": item.poster, "watched_at": watched_at}

        def refresh_existing() -> int:
            return self.db.query(WatchHistoryEntry).filter(
                WatchHistoryEntry.user_id == user_id,
                WatchHistoryEntry.movie_id == item.movie_id,
            ).update(values, synchronize_session=False)

        if not refresh_existing():
            self.db.add(WatchHistoryEntry(user_id=user_id, movie_id=item.movie_id, **values))
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                refresh_existing()
                self.db.commit()
        else:
            self.db.commit()

        return HistoryItem(movie_id=item.movie_id, title=item.title, poster=item.poster, watched_at=watched_at)

    def get_history(self, user_id: str, limit: int = 50) -> List[HistoryItem]:
        entries = (
            self.db.query(WatchHistoryEntry)
            .filter(WatchHistoryEntry.user_id == user_id)
            .order_by(WatchHistoryEntry.watched_at.desc(), WatchHistoryEntry.id.desc())
            .limit(limit)
            .all()
        )
        return [
            HistoryItem(
                movie_id=e.movie_id,
                title=e.title,
                poster=e.poster,
                watched_at=ensure_aware(e.watched_at),
            )
            for e in entries
        ]

    # ==================== SESSIONS ====================

    def create_session(self, user_id: str, expires_at: datetime) -> SessionRecord:
        session = AuthSession(user_id=user_id, expires_at=expires_at, created_at=utcnow())
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        return _session_record(session)

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        session = self.db.get(AuthSession, session_id)
        return _session_record(session) if session else None

    def revoke_session(self, session_id: str, revoked_at: datetime) -> bool:
        revoked = self.db.query(AuthSession).filter(
            AuthSession.id == session_id,
            AuthSession.revoked_at.is_(None),
        ).update({"revoked_at": revoked_at}, synchronize_session=False)
        self.db.commit()
        return revoked > 0

    def revoke_user_sessions(self, user_id: str, revoked_at: datetime) -> int:
        revoked = self.db.query(AuthSession).filter(
            AuthSession.user_id == user_id,
            AuthSession.revoked_at.is_(None),
        ).update({"revoked_at": revoked_at}, synchronize_session=False)
        self.db.commit()
        return revoked

    def purge_sessions(self, now: datetime) -> int:
        removed = self.db.query(AuthSession).filter(
            or_(AuthSession.expires_at <= now, AuthSession.revoked_at.isnot(None))
        ).delete(synchronize_session=False)
        self.db.commit()
        return removed
