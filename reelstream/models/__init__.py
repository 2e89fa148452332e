"""
Import all models to ensure they are registered with SQLAlchemy
"""
from reelstream.models.movie import Movie, MovieRating, MovieCollection
from reelstream.models.user import User, AuthSession
from reelstream.models.watchlist import WatchlistEntry, WatchHistoryEntry
from reelstream.models.password_reset_token import PasswordResetToken

__all__ = [
    "Movie",
    "MovieRating",
    "MovieCollection",
    "User",
    "AuthSession",
    "WatchlistEntry",
    "WatchHistoryEntry",
    "PasswordResetToken",
]
