from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from reelstream.database import Base


class WatchlistEntry(Base):
    """
    Movie saved by a user for later viewing.
    Title and poster are copied from the movie when the entry is added.
    """
    __tablename__ = "watchlist_entries"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    movie_id = Column(String(32), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    poster = Column(String(1024), nullable=True)
    added_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="watchlist_entries")

    # Ensure one entry per user per movie
    __table_args__ = (
        UniqueConstraint("user_id", "movie_id", name="unique_user_movie_watchlist"),
    )

    def __repr__(self):
        return f"<WatchlistEntry(user_id={self.user_id}, movie_id={self.movie_id})>"


class WatchHistoryEntry(Base):
    """Most recent viewing of a movie by a user."""
    __tablename__ = "watch_history_entries"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    movie_id = Column(String(32), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    poster = Column(String(1024), nullable=True)
    watched_at = Column(DateTime(timezone=True), nullable=False, index=True)

    user = relationship("User", back_populates="history_entries")

    __table_args__ = (
        UniqueConstraint("user_id", "movie_id", name="unique_user_movie_history"),
    )

    def __repr__(self):
        return f"<WatchHistoryEntry(user_id={self.user_id}, movie_id={self.movie_id})>"
