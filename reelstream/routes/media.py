from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import FileResponse

from reelstream.services.storage_service import LocalObjectStorage, StorageError, is_owned
from reelstream.utils.dependencies import get_storage

router = APIRouter(prefix="/api/media", tags=["Media"])


@router.get("/{path:path}")
def get_media(
    path: str,
    token: str = Query(..., min_length=1),
    storage: LocalObjectStorage = Depends(get_storage),
):
    """Serve a stored poster or video through a signed, expiring URL"""
    if not is_owned(path) or not storage.verify_token(path, token):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired media link")
    try:
        local_path = storage.local_path(path)
    except StorageError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Media not found")
    return FileResponse(local_path)
