"""Operator routes: enqueue, inspect, retry, delete, reconcile."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from video_queue.api.auth import require_admin
from video_queue.api.dependencies import get_service
from video_queue.api.schemas import EnqueueRequest, GroupVideoStatusRequest, envelope
from video_queue.queue.models import EnqueueItem, TaskStatus
from video_queue.queue.services import VideoQueueService

router = APIRouter(dependencies=[Depends(require_admin)])


@router.post("/tasks/add")
def add_tasks(
    body: EnqueueRequest,
    service: VideoQueueService = Depends(get_service),
) -> dict[str, Any]:
    task_ids = service.enqueue_tasks(
        group_id=body.group_id,
        items=[
            EnqueueItem(
                photo_id=entry.photo_id,
                prompt=entry.prompt,
                repeat_count=entry.repeat_count,
            )
            for entry in body.tasks
        ],
    )
    return envelope({"group_id": body.group_id, "task_ids": task_ids, "count": len(task_ids)})


@router.get("/tasks/queue")
def queue_snapshot(
    group_id: str | None = None,
    photo_id: str | None = None,
    status: TaskStatus | None = None,
    limit: int | None = Query(default=None, ge=1, le=1000),
    service: VideoQueueService = Depends(get_service),
) -> dict[str, Any]:
    """Reconciled queue view: counts per status and tasks newest first."""

    snapshot = service.queue_snapshot(
        group_id=group_id,
        photo_id=photo_id,
        status=status,
        limit=limit,
    )
    return envelope(snapshot)


@router.post("/tasks/reconcile")
def reconcile(service: VideoQueueService = Depends(get_service)) -> dict[str, Any]:
    return envelope({"reclaimed": service.reconcile()})


@router.get("/tasks/{task_id}")
def inspect_task(task_id: str, service: VideoQueueService = Depends(get_service)) -> dict[str, Any]:
    return envelope(service.get_task_details(task_id=task_id))


@router.post("/tasks/{task_id}/retry")
def retry_task(
    task_id: str,
    force: bool = False,
    service: VideoQueueService = Depends(get_service),
) -> dict[str, Any]:
    return envelope(service.retry_task(task_id=task_id, force=force))


@router.delete("/tasks/{task_id}")
def delete_task(task_id: str, service: VideoQueueService = Depends(get_service)) -> dict[str, Any]:
    removed = service.delete_task(task_id=task_id)
    return envelope({"task_id": removed.task_id, "deleted": True})


@router.get("/groups/{group_id}/tasks")
def group_tasks(group_id: str, service: VideoQueueService = Depends(get_service)) -> dict[str, Any]:
    return envelope(service.group_tasks(group_id=group_id))


@router.patch("/groups/{group_id}/video")
def set_group_video_status(
    group_id: str,
    body: GroupVideoStatusRequest,
    service: VideoQueueService = Depends(get_service),
) -> dict[str, Any]:
    return envelope(
        service.set_group_video_status(group_id=group_id, video_status=body.video_status),
    )


@router.delete("/groups/{group_id}")
def delete_group(group_id: str, service: VideoQueueService = Depends(get_service)) -> dict[str, Any]:
    deleted = service.delete_group(group_id=group_id)
    return envelope(
        {
            "group_id": deleted.group.group_id,
            "deleted_photos": len(deleted.photo_storage_paths),
            "deleted_videos": len(deleted.video_storage_paths),
        },
    )
