"""Signed GET/PUT access to objects held by the local storage backend."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import FileResponse

from video_queue.api.dependencies import get_service
from video_queue.api.schemas import envelope
from video_queue.objects import InvalidStoragePathError, LocalObjectStorage
from video_queue.queue.services import VideoQueueService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_local_storage(service: VideoQueueService = Depends(get_service)) -> LocalObjectStorage:
    if not isinstance(service.storage, LocalObjectStorage):
        raise HTTPException(
            status_code=404,
            detail="Objects are served by the configured storage backend.",
        )
    return service.storage


def _authorized_path(  # noqa: PLR0913
    storage: LocalObjectStorage,
    *,
    method: str,
    bucket: str,
    path: str,
    expires: int,
    signature: str,
) -> Path:
    try:
        target = storage.object_path(bucket=bucket, path=path)
    except InvalidStoragePathError as error:
        raise HTTPException(status_code=404, detail="Object not found.") from error
    if not storage.verify_signature(
        method=method,
        bucket=bucket,
        path=path,
        expires=expires,
        signature=signature,
    ):
        raise HTTPException(status_code=403, detail="Signature is invalid or expired.")
    return target


@router.get("/{bucket}/{path:path}")
def download_object(
    bucket: str,
    path: str,
    expires: int = Query(...),
    signature: str = Query(...),
    storage: LocalObjectStorage = Depends(get_local_storage),
) -> FileResponse:
    target = _authorized_path(
        storage,
        method="GET",
        bucket=bucket,
        path=path,
        expires=expires,
        signature=signature,
    )
    if not target.is_file():
        raise HTTPException(status_code=404, detail="Object not found.")
    return FileResponse(target)


@router.put("/{bucket}/{path:path}")
async def upload_object(
    request: Request,
    bucket: str,
    path: str,
    expires: int = Query(...),
    signature: str = Query(...),
    storage: LocalObjectStorage = Depends(get_local_storage),
) -> dict[str, Any]:
    target = _authorized_path(
        storage,
        method="PUT",
        bucket=bucket,
        path=path,
        expires=expires,
        signature=signature,
    )
    body = await request.body()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(body)
    logger.info("Stored object %s/%s (%d bytes)", bucket, path, len(body))
    return envelope({"bucket": bucket, "storage_path": path, "size": len(body)})
