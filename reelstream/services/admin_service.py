"""
Admin Service
Catalog content management (movies and their poster/video assets), dashboard
overview and runtime settings
"""
from dataclasses import dataclass
from typing import Any, BinaryIO, Dict, List, Optional
import logging
import os

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from reelstream.repositories.base import (
    ROLE_USER,
    MovieRecord,
    MovieRepository,
    NotFoundError,
    UserRecord,
    UserRepository,
)
from reelstream.services.background_jobs import background_jobs
from reelstream.services.catalog_service import CONTENT_RATINGS, GENRES, MOVIE_NOT_FOUND
from reelstream.services.storage_service import (
    POSTER_FOLDER,
    VIDEO_FOLDER,
    LocalObjectStorage,
    ProgressCallback,
    StorageError,
    is_owned,
)
from reelstream.utils import rate_limiter, security

logger = logging.getLogger(__name__)

UPLOAD_FAILED = "Failed to upload file. Please try again."
SAVE_FAILED = "Failed to save movie. Please try again."
DELETE_FAILED = "Failed to delete movie. Please try again."

RECENT_UPLOADS = 5


@dataclass
class AssetUpload:
    """A file to store: original name, readable binary stream, size if known"""
    filename: str
    stream: BinaryIO
    size: Optional[int] = None


class AdminService:

    # ==================== STORAGE HELPERS ====================

    @staticmethod
    def _store(
        storage: LocalObjectStorage,
        folder: str,
        upload: AssetUpload,
        on_progress: Optional[ProgressCallback],
    ) -> str:
        path = storage.build_path(folder, upload.filename)
        try:
            return storage.upload(path, upload.stream, upload.size, on_progress)
        except StorageError as e:
            logger.error(f"Upload of {upload.filename} failed: {e}")
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=UPLOAD_FAILED)

    @staticmethod
    def _discard(storage: LocalObjectStorage, reference: Optional[str]) -> None:
        """Best-effort removal of an owned asset; external URLs are left alone"""
        if not is_owned(reference):
            return
        try:
            storage.delete(reference)
        except StorageError as e:
            logger.warning(f"Could not delete asset {reference}: {e}")

    @classmethod
    def _store_assets(
        cls,
        storage: LocalObjectStorage,
        poster: Optional[AssetUpload],
        video: Optional[AssetUpload],
        on_progress: Optional[ProgressCallback],
    ) -> Dict[str, str]:
        stored: Dict[str, str] = {}
        try:
            if poster is not None:
                stored["poster"] = cls._store(storage, POSTER_FOLDER, poster, on_progress)
            if video is not None:
                stored["video"] = cls._store(storage, VIDEO_FOLDER, video, on_progress)
        except HTTPException:
            for path in stored.values():
                cls._discard(storage, path)
            raise
        return stored

    # ==================== MOVIES ====================

    @classmethod
    def create_movie(
        cls,
        movies: MovieRepository,
        storage: LocalObjectStorage,
        data: Dict[str, Any],
        poster: Optional[AssetUpload] = None,
        video: Optional[AssetUpload] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> MovieRecord:
        stored = cls._store_assets(storage, poster, video, on_progress)
        try:
            movie = movies.create({**data, **stored})
        except SQLAlchemyError as e:
            logger.error(f"Saving movie '{data.get('title')}' failed: {e}", exc_info=True)
            for path in stored.values():
                cls._discard(storage, path)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=SAVE_FAILED)
        return movie

    @classmethod
    def update_movie(
        cls,
        movies: MovieRepository,
        storage: LocalObjectStorage,
        movie_id: str,
        changes: Dict[str, Any],
        poster: Optional[AssetUpload] = None,
        video: Optional[AssetUpload] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> MovieRecord:
        current = movies.get(movie_id)
        if current is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=MOVIE_NOT_FOUND)

        stored = cls._store_assets(storage, poster, video, on_progress)
        changes = {**changes, **stored}
        try:
            movie = movies.update(movie_id, changes)
        except NotFoundError:
            for path in stored.values():
                cls._discard(storage, path)
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=MOVIE_NOT_FOUND)
        except SQLAlchemyError as e:
            logger.error(f"Updating movie {movie_id} failed: {e}", exc_info=True)
            for path in stored.values():
                cls._discard(storage, path)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=SAVE_FAILED)

        # Replaced assets are only removed once the new document is saved
        for field in ("poster", "video"):
            old = getattr(current, field)
            if field in changes and changes[field] != old:
                cls._discard(storage, old)

        logger.info(f"Movie updated: {movie_id}")
        return movie

    @classmethod
    def delete_movie(cls, movies: MovieRepository, storage: LocalObjectStorage, movie_id: str) -> None:
        movie = movies.get(movie_id)
        if movie is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=MOVIE_NOT_FOUND)

        cls._discard(storage, movie.poster)
        cls._discard(storage, movie.video)

        try:
            movies.delete(movie_id)
        except SQLAlchemyError as e:
            logger.error(f"Deleting movie {movie_id} failed: {e}", exc_info=True)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=DELETE_FAILED)
        logger.info(f"Movie deleted: {movie_id}")

    # ==================== DASHBOARD ====================

    @staticmethod
    def overview(movies: MovieRepository, users: UserRepository) -> Dict[str, Any]:
        return {
            "total_movies": movies.count(),
            "total_users": users.count_users(role=ROLE_USER),
            "total_views": movies.total_views(),
            "recent_uploads": movies.find(order_by="created_at", descending=True, limit=RECENT_UPLOADS),
        }

    @staticmethod
    def list_users(
        users: UserRepository,
        role: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        items: List[UserRecord] = users.list_users(role=role, limit=limit, offset=offset)
        return {"items": items, "total": users.count_users(role=role)}

    @staticmethod
    def settings(storage: LocalObjectStorage) -> Dict[str, Any]:
        """Read-only runtime configuration plus background job status"""
        return {
            "environment": os.getenv("ENVIRONMENT", "development"),
            "storage_dir": str(storage.root),
            "media_url_ttl_seconds": int(storage.url_ttl.total_seconds()),
            "upload_chunk_size": storage.chunk_size,
            "access_token_expire_minutes": security.ACCESS_TOKEN_EXPIRE_MINUTES,
            "login_max_attempts": rate_limiter.LOGIN_MAX_ATTEMPTS,
            "login_window_seconds": rate_limiter.LOGIN_WINDOW_SECONDS,
            "genres": GENRES,
            "content_ratings": CONTENT_RATINGS,
            "jobs": background_jobs.get_job_stats(),
        }
