"""
Object storage for poster and video assets

Objects live under STORAGE_DIR on the local filesystem and are addressed by
relative paths such as ``posters/1718000000000-cover.jpg``. Clients never read
the directory directly: they get a signed, time-limited URL served by the
media route.
"""
from datetime import timedelta
from pathlib import Path
from typing import BinaryIO, Callable, Optional
from urllib.parse import quote
import logging
import os
import re
import time

from dotenv import load_dotenv

from reelstream.utils.security import create_media_token, decode_token

load_dotenv()

logger = logging.getLogger(__name__)

STORAGE_DIR = os.getenv("STORAGE_DIR", "./storage")
MEDIA_URL_PREFIX = os.getenv("MEDIA_URL_PREFIX", "/api/media")
MEDIA_URL_TTL_SECONDS = int(os.getenv("MEDIA_URL_TTL_SECONDS", "3600"))
UPLOAD_CHUNK_SIZE = int(os.getenv("UPLOAD_CHUNK_SIZE", str(1024 * 1024)))

POSTER_FOLDER = "posters"
VIDEO_FOLDER = "movies"
OWNED_PREFIXES = (f"{POSTER_FOLDER}/", f"{VIDEO_FOLDER}/")

ProgressCallback = Callable[[int, Optional[int]], None]

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class StorageError(Exception):
    """Raised when an object cannot be written, read or deleted."""


def is_owned(reference: Optional[str]) -> bool:
    """True for paths this service manages; external URLs are never owned."""
    return bool(reference) and reference.startswith(OWNED_PREFIXES)


class LocalObjectStorage:

    def __init__(
        self,
        root: str = STORAGE_DIR,
        url_prefix: str = MEDIA_URL_PREFIX,
        url_ttl_seconds: int = MEDIA_URL_TTL_SECONDS,
        chunk_size: int = UPLOAD_CHUNK_SIZE,
    ):
        self.root = Path(root).resolve()
        self.url_prefix = url_prefix.rstrip("/")
        self.url_ttl = timedelta(seconds=url_ttl_seconds)
        self.chunk_size = chunk_size

    @staticmethod
    def build_path(folder: str, filename: str) -> str:
        """``<folder>/<epoch-ms>-<filename>``"""
        name = _UNSAFE_CHARS.sub("_", os.path.basename(filename or "")).strip("._") or "upload"
        return f"{folder}/{int(time.time() * 1000)}-{name}"

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if target == self.root or self.root not in target.parents:
            raise StorageError(f"Invalid storage path: {path}")
        return target

    def exists(self, path: str) -> bool:
        try:
            return self._resolve(path).is_file()
        except StorageError:
            return False

    def local_path(self, path: str) -> Path:
        target = self._resolve(path)
        if not target.is_file():
            raise StorageError(f"Object not found: {path}")
        return target

    def upload(
        self,
        path: str,
        stream: BinaryIO,
        total_bytes: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """Copy ``stream`` to ``path`` chunk by chunk, reporting progress after each chunk"""
        target = self._resolve(path)
        transferred = 0
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as out:
                while True:
                    chunk = stream.read(self.chunk_size)
                    if not chunk:
                        break
                    out.write(chunk)
                    transferred += len(chunk)
                    if on_progress:
                        on_progress(transferred, total_bytes)
        except OSError as e:
            target.unlink(missing_ok=True)
            logger.error(f"Upload to {path} failed after {transferred} bytes: {e}")
            raise StorageError(f"Failed to upload {path}") from e

        logger.info(f"Stored {path} ({transferred} bytes)")
        return path

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink()
        except FileNotFoundError as e:
            raise StorageError(f"Object not found: {path}") from e
        except OSError as e:
            raise StorageError(f"Failed to delete {path}") from e
        logger.info(f"Deleted {path}")

    def download_url(self, path: str) -> str:
        token = create_media_token(path, self.url_ttl)
        return f"{self.url_prefix}/{quote(path)}?token={token}"

    def resolve_url(self, reference: Optional[str]) -> Optional[str]:
        """Storage paths become signed URLs; external URLs pass through"""
        if not reference:
            return None
        if is_owned(reference):
            return self.download_url(reference)
        return reference

    @staticmethod
    def verify_token(path: str, token: str) -> bool:
        payload = decode_token(token)
        return bool(payload) and payload.get("type") == "media" and payload.get("path") == path


storage = LocalObjectStorage()
