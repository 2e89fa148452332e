from typing import Dict, List
import logging

from fastapi import HTTPException, status

from reelstream.repositories.base import (
    HistoryItem,
    MovieRecord,
    MovieRepository,
    UserRepository,
    WatchlistItem,
)
from reelstream.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50


class WatchlistService:
    """Per-user watchlist and watch history.

    Every mutation is a single atomic repository call, so two concurrent
    requests for the same user cannot overwrite each other's changes.
    """

    @staticmethod
    def _movie(movies: MovieRepository, movie_id: str) -> MovieRecord:
        movie = movies.get(movie_id)
        if movie is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Movie not found")
        return movie

    @classmethod
    def add(cls, users: UserRepository, movies: MovieRepository, user_id: str, movie_id: str) -> bool:
        """Returns False when the movie was already on the list"""
        movie = cls._movie(movies, movie_id)
        added = users.add_to_watchlist(
            user_id,
            WatchlistItem(movie_id=movie.id, title=movie.title, poster=movie.poster, added_at=utcnow()),
        )
        if added:
            logger.info(f"User {user_id} added {movie_id} to watchlist")
        return added

    @staticmethod
    def remove(users: UserRepository, user_id: str, movie_id: str) -> bool:
        removed = users.remove_from_watchlist(user_id, movie_id)
        if removed:
            logger.info(f"User {user_id} removed {movie_id} from watchlist")
        return removed

    @classmethod
    def toggle(cls, users: UserRepository, movies: MovieRepository, user_id: str, movie_id: str) -> Dict[str, bool]:
        if cls.remove(users, user_id, movie_id):
            return {"in_watchlist": False}
        cls.add(users, movies, user_id, movie_id)
        return {"in_watchlist": True}

    @staticmethod
    def list(users: UserRepository, user_id: str) -> List[WatchlistItem]:
        return users.get_watchlist(user_id)

    @staticmethod
    def contains(users: UserRepository, user_id: str, movie_id: str) -> bool:
        return users.in_watchlist(user_id, movie_id)

    @classmethod
    def record_watch(cls, users: UserRepository, movies: MovieRepository, user_id: str, movie_id: str) -> HistoryItem:
        movie = cls._movie(movies, movie_id)
        return users.record_watch(
            user_id,
            HistoryItem(movie_id=movie.id, title=movie.title, poster=movie.poster, watched_at=utcnow()),
        )

    @staticmethod
    def history(users: UserRepository, user_id: str, limit: int = HISTORY_LIMIT) -> List[HistoryItem]:
        return users.get_history(user_id, limit=limit)
