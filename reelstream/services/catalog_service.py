"""
Catalog Service
Browsing, search and engagement operations over the movie collection
"""
from typing import Any, Dict, List, Optional
import logging
import re

from fastapi import HTTPException, status

from reelstream.repositories.base import (
    SORTABLE_FIELDS,
    InvalidCursorError,
    MoviePage,
    MovieQuery,
    MovieRecord,
    MovieRepository,
    NotFoundError,
)
from reelstream.services.storage_service import LocalObjectStorage

logger = logging.getLogger(__name__)

GENRES = ["Action", "Adventure", "Comedy", "Drama", "Horror", "Sci-Fi", "Thriller", "Romance", "Documentary"]
CONTENT_RATINGS = ["G", "PG", "PG-13", "R", "NC-17"]

SORT_DIRECTIONS = ("asc", "desc")
SEARCH_CATEGORIES = ("all", "title", "genre", "year")

MIN_PAGE_SIZE = 1
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 12

QUICK_SEARCH_LIMIT = 5
BY_GENRE_COLLECTION = "byGenre"
GENRE_SCAN_LIMIT = 100

MOVIE_NOT_FOUND = "Movie not found"


def genre_slug(name: str) -> str:
    return re.sub(r"\s+", "-", name.lower())


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=MOVIE_NOT_FOUND)


class CatalogService:

    @staticmethod
    def list_movies(
        movies: MovieRepository,
        genre: Optional[str] = None,
        year: Optional[int] = None,
        search: Optional[str] = None,
        sort_field: str = "created_at",
        sort_direction: str = "desc",
        page_size: int = DEFAULT_PAGE_SIZE,
        cursor: Optional[str] = None,
    ) -> MoviePage:
        """One page of the catalog; pass ``next_cursor`` back to continue."""
        if sort_field not in SORTABLE_FIELDS:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid sort field. Allowed: {', '.join(SORTABLE_FIELDS)}",
            )
        if sort_direction not in SORT_DIRECTIONS:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Sort direction must be asc or desc")
        if not MIN_PAGE_SIZE <= page_size <= MAX_PAGE_SIZE:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Page size must be between {MIN_PAGE_SIZE} and {MAX_PAGE_SIZE}",
            )

        query = MovieQuery(
            genre=genre or None,
            year=year,
            search=search or None,
            sort_field=sort_field,
            sort_direction=sort_direction,
            page_size=page_size,
            cursor=cursor or None,
        )
        try:
            return movies.query(query)
        except InvalidCursorError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid cursor")

    @staticmethod
    def get_movie(movies: MovieRepository, movie_id: str) -> MovieRecord:
        movie = movies.get(movie_id)
        if movie is None:
            raise _not_found()
        return movie

    @staticmethod
    def quick_search(
        movies: MovieRepository,
        term: str,
        category: str = "all",
        limit: int = QUICK_SEARCH_LIMIT,
    ) -> List[MovieRecord]:
        """Suggestions for the search box"""
        term = (term or "").strip()
        if not term:
            return []

        if category == "title":
            return movies.find(title_prefix=term, limit=limit)
        if category == "genre":
            return movies.find(genre_prefix=term, limit=limit)
        if category == "year":
            if not term.isdigit():
                return []
            return movies.find(year=int(term), limit=limit)
        if category != "all":
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Category must be one of: {', '.join(SEARCH_CATEGORIES)}",
            )

        # Mixed: three title matches plus two genre matches (for the default limit)
        title_limit = (limit * 3 + 4) // 5
        results = movies.find(title_prefix=term, limit=title_limit)
        genre_quota = len(results) + limit - title_limit
        seen = {m.id for m in results}
        for movie in movies.find(genre_prefix=term, limit=limit):
            if len(results) >= genre_quota:
                break
            if movie.id not in seen:
                results.append(movie)
                seen.add(movie.id)
        return results

    # ==================== HOME PAGE ROWS ====================

    @staticmethod
    def featured(movies: MovieRepository, count: int = 5) -> List[MovieRecord]:
        return movies.find(featured=True, limit=count)

    @staticmethod
    def trending(movies: MovieRepository, count: int = 10) -> List[MovieRecord]:
        return movies.find(order_by="views", descending=True, limit=count)

    @staticmethod
    def recent(movies: MovieRepository, count: int = 10) -> List[MovieRecord]:
        return movies.find(order_by="created_at", descending=True, limit=count)

    @staticmethod
    def genres(movies: MovieRepository) -> List[Dict[str, Any]]:
        """Distinct genres of a sample of the catalog with per-genre counts"""
        counts: Dict[str, int] = {}
        for movie in movies.find(limit=GENRE_SCAN_LIMIT):
            if movie.genre:
                counts[movie.genre] = counts.get(movie.genre, 0) + 1
        return [{"id": genre_slug(name), "name": name, "count": count} for name, count in counts.items()]

    # ==================== DETAIL PAGE ====================

    @classmethod
    def related(cls, movies: MovieRepository, movie_id: str, limit: int = 6) -> List[MovieRecord]:
        """Same director first, then same genre by other directors"""
        movie = cls.get_movie(movies, movie_id)

        if not movie.director:
            if not movie.genre:
                return []
            return movies.find(genre=movie.genre, exclude_id=movie.id, limit=limit)

        related = movies.find(director=movie.director, exclude_id=movie.id, limit=limit)
        if len(related) < limit and movie.genre:
            related += movies.find(
                genre=movie.genre,
                exclude_director=movie.director,
                exclude_id=movie.id,
                limit=limit - len(related),
            )
        return related

    @classmethod
    def similar(cls, movies: MovieRepository, movie_id: str, limit: int = 6) -> List[Dict[str, Any]]:
        """Summaries from the precomputed by-genre collection"""
        movie = cls.get_movie(movies, movie_id)
        by_genre = movies.get_collection(BY_GENRE_COLLECTION) or {}
        entries = by_genre.get(movie.genre) or []
        return [e for e in entries if isinstance(e, dict) and e.get("id") != movie_id][:limit]

    # ==================== ENGAGEMENT ====================

    @staticmethod
    def record_view(movies: MovieRepository, movie_id: str) -> MovieRecord:
        try:
            return movies.increment_counter(movie_id, "views")
        except NotFoundError:
            raise _not_found()

    @staticmethod
    def record_download(movies: MovieRepository, movie_id: str) -> MovieRecord:
        try:
            return movies.increment_counter(movie_id, "downloads")
        except NotFoundError:
            raise _not_found()

    @staticmethod
    def rate(movies: MovieRepository, movie_id: str, user_id: str, score: int, comment: str = "") -> MovieRecord:
        try:
            movie = movies.upsert_rating(movie_id, user_id, score, comment)
        except NotFoundError:
            raise _not_found()
        logger.info(f"User {user_id} rated movie {movie_id}: {score}")
        return movie

    @classmethod
    def video_url(cls, movies: MovieRepository, storage: LocalObjectStorage, movie_id: str) -> Dict[str, Any]:
        """Playable URL for the movie's video"""
        movie = cls.get_movie(movies, movie_id)
        url = storage.resolve_url(movie.video)
        if not url:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not available")
        return {"movie_id": movie.id, "url": url, "expires_in": int(storage.url_ttl.total_seconds())}
