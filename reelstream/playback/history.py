"""Glue between the playback controller and the rest of the app."""
from typing import Optional
import logging

from sqlalchemy.exc import SQLAlchemyError

from reelstream.repositories.base import HistoryItem, MovieRecord, RepositoryError, UserRepository
from reelstream.services.storage_service import LocalObjectStorage, StorageError, is_owned
from reelstream.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class WatchHistoryReporter:
    """``on_watched`` callback that writes a watch-history entry.

    Anonymous viewers (no user id) are not recorded. A failed write is logged
    and playback carries on.
    """

    def __init__(self, users: UserRepository, user_id: Optional[str], movie: MovieRecord):
        self.users = users
        self.user_id = user_id
        self.movie = movie
        self.recorded: Optional[HistoryItem] = None

    def __call__(self) -> None:
        if not self.user_id:
            return
        try:
            self.recorded = self.users.record_watch(
                self.user_id,
                HistoryItem(
                    movie_id=self.movie.id,
                    title=self.movie.title,
                    poster=self.movie.poster,
                    watched_at=utcnow(),
                ),
            )
        except (RepositoryError, SQLAlchemyError) as e:
            logger.error(f"Error updating watch history for user {self.user_id}: {e}")


def storage_resolver(storage: LocalObjectStorage):
    """Source resolver: stored paths become signed URLs, external URLs pass through."""

    async def resolve(reference: str) -> str:
        if is_owned(reference) and not storage.exists(reference):
            raise StorageError(f"Object not found: {reference}")
        url = storage.resolve_url(reference)
        if not url:
            raise StorageError("Empty video reference")
        return url

    return resolve
