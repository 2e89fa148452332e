import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from reelstream.database import Base


def new_id() -> str:
    return uuid.uuid4().hex


class Movie(Base):
    __tablename__ = "movies"

    id = Column(String(32), primary_key=True, default=new_id)
    title = Column(String(255), nullable=False, index=True)
    description = Column(Text, default="")
    genre = Column(String(100), index=True)
    year = Column(Integer, index=True)
    duration = Column(Integer)  # minutes
    rating = Column(String(10))  # content rating: G, PG, PG-13, R, NC-17
    poster = Column(String(1024))  # "posters/..." storage path or external URL
    video = Column(String(1024))  # "movies/..." storage path or external URL
    director = Column(String(255), index=True)
    language = Column(String(10))
    release_date = Column(String(10))
    cast = Column(JSON, default=list)  # list of names
    featured = Column(Boolean, default=False, index=True)

    views = Column(Integer, default=0, nullable=False)
    downloads = Column(Integer, default=0, nullable=False)
    average_rating = Column(Float, nullable=True)
    last_viewed_at = Column(DateTime(timezone=True), nullable=True)
    last_downloaded_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    ratings = relationship(
        "MovieRating",
        back_populates="movie",
        cascade="all, delete-orphan",
        order_by="MovieRating.created_at",
    )

    def __repr__(self):
        return f"<Movie(id={self.id}, title={self.title})>"


class MovieRating(Base):
    """One rating per user per movie; re-rating replaces score and comment."""
    __tablename__ = "movie_ratings"

    id = Column(Integer, primary_key=True, index=True)
    movie_id = Column(String(32), ForeignKey("movies.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    score = Column(Integer, nullable=False)
    comment = Column(Text, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    movie = relationship("Movie", back_populates="ratings")

    __table_args__ = (
        UniqueConstraint("movie_id", "user_id", name="unique_movie_user_rating"),
    )


class MovieCollection(Base):
    """
    Precomputed lookup documents keyed by name (e.g. "byGenre").
    Maintained outside this service; read-only here.
    """
    __tablename__ = "movie_collections"

    name = Column(String(100), primary_key=True)
    data = Column(JSON, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
