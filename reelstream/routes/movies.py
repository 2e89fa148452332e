from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional

from reelstream.repositories.base import MovieRecord, MovieRepository
from reelstream.schemas.movie import (
    CounterResponse,
    GenreResponse,
    MoviePageResponse,
    MovieResponse,
    RatingCreate,
    SimilarMoviesResponse,
    VideoUrlResponse,
)
from reelstream.services.auth_service import UserSession
from reelstream.services.catalog_service import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    MIN_PAGE_SIZE,
    CatalogService,
)
from reelstream.services.storage_service import LocalObjectStorage
from reelstream.utils.dependencies import get_current_session, get_movie_repository, get_storage

router = APIRouter(prefix="/api/movies", tags=["Movies"])


def serialize_movie(movie: MovieRecord, storage: LocalObjectStorage) -> MovieResponse:
    """Response model with the poster resolved to a fetchable URL"""
    return MovieResponse.model_validate(movie).model_copy(update={
        "poster_url": storage.resolve_url(movie.poster),
        "has_video": bool(movie.video),
    })


def serialize_movies(movies: List[MovieRecord], storage: LocalObjectStorage) -> List[MovieResponse]:
    return [serialize_movie(m, storage) for m in movies]


def _counters(movie: MovieRecord) -> dict:
    return {"id": movie.id, "views": movie.views, "downloads": movie.downloads}


# ============================================
# Browse & Search
# ============================================

@router.get("", response_model=MoviePageResponse)
def list_movies(
    genre: Optional[str] = Query(None, max_length=100, description="Exact genre"),
    year: Optional[int] = Query(None, ge=1888, le=2100, description="Release year"),
    search: Optional[str] = Query(None, max_length=200, description="Title prefix (case-sensitive)"),
    sort_field: str = Query("created_at", description="Field to sort on"),
    sort_direction: str = Query("desc", description="asc or desc"),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=MIN_PAGE_SIZE, le=MAX_PAGE_SIZE),
    cursor: Optional[str] = Query(None, max_length=512, description="next_cursor of the previous page"),
    movies: MovieRepository = Depends(get_movie_repository),
    storage: LocalObjectStorage = Depends(get_storage),
):
    """
    Filtered, sorted, cursor-paginated catalog listing

    - Only one filter field is applied on top of the title search
    - Movies without a value for the sort field are left out
    - **has_more** is true when the page came back full
    """
    page = CatalogService.list_movies(
        movies,
        genre=genre,
        year=year,
        search=search,
        sort_field=sort_field,
        sort_direction=sort_direction,
        page_size=page_size,
        cursor=cursor,
    )
    return {
        "items": serialize_movies(page.items, storage),
        "has_more": page.has_more,
        "next_cursor": page.next_cursor,
    }


@router.get("/quick-search", response_model=List[MovieResponse])
def quick_search(
    q: str = Query(..., min_length=1, max_length=200),
    category: str = Query("all", description="all, title, genre or year"),
    movies: MovieRepository = Depends(get_movie_repository),
    storage: LocalObjectStorage = Depends(get_storage),
):
    return serialize_movies(CatalogService.quick_search(movies, q, category), storage)


# ============================================
# Home Page Rows
# ============================================

@router.get("/featured", response_model=List[MovieResponse])
def featured_movies(
    count: int = Query(5, ge=1, le=50),
    movies: MovieRepository = Depends(get_movie_repository),
    storage: LocalObjectStorage = Depends(get_storage),
):
    return serialize_movies(CatalogService.featured(movies, count), storage)


@router.get("/trending", response_model=List[MovieResponse])
def trending_movies(
    count: int = Query(10, ge=1, le=50),
    movies: MovieRepository = Depends(get_movie_repository),
    storage: LocalObjectStorage = Depends(get_storage),
):
    """Most viewed first"""
    return serialize_movies(CatalogService.trending(movies, count), storage)


@router.get("/recent", response_model=List[MovieResponse])
def recent_movies(
    count: int = Query(10, ge=1, le=50),
    movies: MovieRepository = Depends(get_movie_repository),
    storage: LocalObjectStorage = Depends(get_storage),
):
    return serialize_movies(CatalogService.recent(movies, count), storage)


@router.get("/genres", response_model=List[GenreResponse])
def get_genres(movies: MovieRepository = Depends(get_movie_repository)):
    return CatalogService.genres(movies)


# ============================================
# Movie Details
# ============================================

@router.get("/{movie_id}", response_model=MovieResponse)
def get_movie(
    movie_id: str,
    movies: MovieRepository = Depends(get_movie_repository),
    storage: LocalObjectStorage = Depends(get_storage),
):
    return serialize_movie(CatalogService.get_movie(movies, movie_id), storage)


@router.get("/{movie_id}/related", response_model=List[MovieResponse])
def related_movies(
    movie_id: str,
    limit: int = Query(6, ge=1, le=24),
    movies: MovieRepository = Depends(get_movie_repository),
    storage: LocalObjectStorage = Depends(get_storage),
):
    """Same director first, then same genre"""
    return serialize_movies(CatalogService.related(movies, movie_id, limit), storage)


@router.get("/{movie_id}/similar", response_model=SimilarMoviesResponse)
def similar_movies(movie_id: str, movies: MovieRepository = Depends(get_movie_repository)):
    return {"items": CatalogService.similar(movies, movie_id)}


@router.get("/{movie_id}/stream", response_model=VideoUrlResponse)
def stream_url(
    movie_id: str,
    movies: MovieRepository = Depends(get_movie_repository),
    storage: LocalObjectStorage = Depends(get_storage),
):
    """Time-limited URL for the movie's video"""
    return CatalogService.video_url(movies, storage, movie_id)


# ============================================
# Engagement
# ============================================

@router.post("/{movie_id}/views", response_model=CounterResponse)
def record_view(movie_id: str, movies: MovieRepository = Depends(get_movie_repository)):
    return _counters(CatalogService.record_view(movies, movie_id))


@router.post("/{movie_id}/download", response_model=VideoUrlResponse)
def download_movie(
    movie_id: str,
    session: UserSession = Depends(get_current_session),
    movies: MovieRepository = Depends(get_movie_repository),
    storage: LocalObjectStorage = Depends(get_storage),
):
    """Count a download and hand out the video URL (signed-in users only)"""
    link = CatalogService.video_url(movies, storage, movie_id)
    CatalogService.record_download(movies, movie_id)
    return link


@router.post("/{movie_id}/ratings", response_model=MovieResponse, status_code=status.HTTP_200_OK)
def rate_movie(
    movie_id: str,
    payload: RatingCreate,
    session: UserSession = Depends(get_current_session),
    movies: MovieRepository = Depends(get_movie_repository),
    storage: LocalObjectStorage = Depends(get_storage),
):
    """Rate 1-5; rating again replaces your previous score and comment"""
    movie = CatalogService.rate(movies, movie_id, session.user_id, payload.score, payload.comment)
    return serialize_movie(movie, storage)
