"""
Admin Routes
Catalog content management, user roles, dashboard overview and background
job controls

All endpoints require an admin session (require_admin dependency)
"""

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile, status
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ValidationError
from datetime import datetime, timezone
from typing import Optional, Type
import logging

from reelstream.repositories.base import MovieRepository, UserRepository
from reelstream.routes.movies import serialize_movie, serialize_movies
from reelstream.schemas.auth import UserResponse
from reelstream.schemas.movie import MovieCreate, MovieResponse, MovieUpdate
from reelstream.schemas.user import AdminOverviewResponse, RoleUpdate, UserListResponse
from reelstream.services.admin_service import AdminService, AssetUpload
from reelstream.services.auth_service import AuthService, UserSession
from reelstream.services.background_jobs import background_jobs
from reelstream.services.storage_service import LocalObjectStorage
from reelstream.utils.dependencies import get_movie_repository, get_storage, get_user_repository, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])


def _parse(schema: Type[BaseModel], raw: str) -> BaseModel:
    """Validate the JSON ``data`` form field of a multipart request"""
    try:
        return schema.model_validate_json(raw)
    except ValidationError as e:
        raise RequestValidationError(e.errors())


def _asset(upload: Optional[UploadFile]) -> Optional[AssetUpload]:
    if upload is None or not upload.filename:
        return None
    return AssetUpload(filename=upload.filename, stream=upload.file, size=upload.size)


def _log_progress(transferred: int, total: Optional[int]) -> None:
    if total:
        logger.debug(f"Upload progress: {transferred * 100 // total}% ({transferred}/{total} bytes)")


# ============================================
# Dashboard
# ============================================

@router.get("/overview", response_model=AdminOverviewResponse)
def get_overview(
    session: UserSession = Depends(require_admin),
    movies: MovieRepository = Depends(get_movie_repository),
    users: UserRepository = Depends(get_user_repository),
    storage: LocalObjectStorage = Depends(get_storage),
):
    """Totals for movies, users and views plus the latest uploads"""
    overview = AdminService.overview(movies, users)
    overview["recent_uploads"] = serialize_movies(overview["recent_uploads"], storage)
    return overview


# ============================================
# Movies
# ============================================

@router.post("/movies", response_model=MovieResponse, status_code=status.HTTP_201_CREATED)
def create_movie(
    data: str = Form(..., description="Movie fields as a JSON object"),
    poster: Optional[UploadFile] = File(None),
    video: Optional[UploadFile] = File(None),
    session: UserSession = Depends(require_admin),
    movies: MovieRepository = Depends(get_movie_repository),
    storage: LocalObjectStorage = Depends(get_storage),
):
    """
    Add a movie with optional poster and video files

    - **data**: JSON with title, description, genre, year, duration, rating...
    - **poster** / **video**: uploaded files; or put external URLs in data
    """
    payload = _parse(MovieCreate, data)
    movie = AdminService.create_movie(
        movies,
        storage,
        payload.model_dump(),
        poster=_asset(poster),
        video=_asset(video),
        on_progress=_log_progress,
    )
    logger.info(f"Admin {session.user_id} created movie {movie.id}")
    return serialize_movie(movie, storage)


@router.patch("/movies/{movie_id}", response_model=MovieResponse)
def update_movie(
    movie_id: str,
    data: str = Form("{}", description="Changed movie fields as a JSON object"),
    poster: Optional[UploadFile] = File(None),
    video: Optional[UploadFile] = File(None),
    session: UserSession = Depends(require_admin),
    movies: MovieRepository = Depends(get_movie_repository),
    storage: LocalObjectStorage = Depends(get_storage),
):
    """Update fields; uploaded files replace the stored poster/video"""
    payload = _parse(MovieUpdate, data)
    movie = AdminService.update_movie(
        movies,
        storage,
        movie_id,
        payload.model_dump(exclude_unset=True),
        poster=_asset(poster),
        video=_asset(video),
        on_progress=_log_progress,
    )
    return serialize_movie(movie, storage)


@router.delete("/movies/{movie_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_movie(
    movie_id: str,
    session: UserSession = Depends(require_admin),
    movies: MovieRepository = Depends(get_movie_repository),
    storage: LocalObjectStorage = Depends(get_storage),
):
    """Delete the movie and its stored poster/video"""
    AdminService.delete_movie(movies, storage, movie_id)
    logger.info(f"Admin {session.user_id} deleted movie {movie_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================
# Users
# ============================================

@router.get("/users", response_model=UserListResponse)
def list_users(
    role: Optional[str] = Query(None, pattern="^(admin|user)$"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: UserSession = Depends(require_admin),
    users: UserRepository = Depends(get_user_repository),
):
    return AdminService.list_users(users, role=role, limit=limit, offset=offset)


@router.put("/users/{user_id}/role", response_model=UserResponse)
def set_user_role(
    user_id: str,
    payload: RoleUpdate,
    session: UserSession = Depends(require_admin),
    users: UserRepository = Depends(get_user_repository),
):
    """Grant or revoke admin rights"""
    return AuthService.set_role(users, session, user_id, payload.role)


# ============================================
# Settings & Jobs
# ============================================

@router.get("/settings", status_code=status.HTTP_200_OK)
def get_settings(
    session: UserSession = Depends(require_admin),
    storage: LocalObjectStorage = Depends(get_storage),
):
    """Read-only runtime settings"""
    return AdminService.settings(storage)


@router.get("/jobs/status", status_code=status.HTTP_200_OK)
def get_jobs_status(session: UserSession = Depends(require_admin)):
    return background_jobs.get_job_stats()


@router.post("/jobs/{job_id}/run", status_code=status.HTTP_200_OK)
def run_job(job_id: str, session: UserSession = Depends(require_admin)):
    """Run a housekeeping job immediately"""
    stats = background_jobs.run_job(job_id)
    if stats is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job '{job_id}' not found")
    return {
        "job": job_id,
        "triggered_at": datetime.now(timezone.utc).isoformat(),
        "triggered_by": session.user.email,
        **stats,
    }
