"""Routes called by generation workers."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from video_queue.api.auth import require_worker
from video_queue.api.dependencies import get_service
from video_queue.api.schemas import (
    HeartbeatRequest,
    NextTaskRequest,
    PresignRequest,
    ReportRequest,
    envelope,
)
from video_queue.queue.errors import InvalidPayloadError
from video_queue.queue.services import VideoQueueService

router = APIRouter(dependencies=[Depends(require_worker)])


@router.post("/next-task")
def next_task(
    body: NextTaskRequest,
    service: VideoQueueService = Depends(get_service),
) -> dict[str, Any]:
    """Lease the oldest eligible task, or return ``data: null`` when idle."""

    assignment = service.request_task(
        worker_id=body.worker_id,
        lease_duration_seconds=body.lease_duration_seconds,
    )
    return envelope(assignment)


@router.post("/heartbeat")
def heartbeat(
    body: HeartbeatRequest,
    service: VideoQueueService = Depends(get_service),
) -> dict[str, Any]:
    leased_until = service.heartbeat(
        task_id=body.task_id,
        worker_id=body.worker_id,
        extend_seconds=body.extend_seconds,
    )
    return envelope({"task_id": body.task_id, "leased_until": leased_until})


@router.post("/report")
def report(
    body: ReportRequest,
    service: VideoQueueService = Depends(get_service),
) -> dict[str, Any]:
    task = service.report_result(
        task_id=body.task_id,
        worker_id=body.worker_id,
        outcome=body.status,
        artifact_ref=body.video_storage_path,
        error_message=body.error_message,
        external_operation_id=body.external_operation_id,
    )
    return envelope(
        {
            "task_id": task.task_id,
            "status": task.status,
            "generated_video_url": task.generated_video_url,
            "retry_count": task.retry_count,
        },
    )


@router.post("/presign")
def presign(
    body: PresignRequest,
    service: VideoQueueService = Depends(get_service),
) -> dict[str, Any]:
    if body.operation == "download":
        signed = service.presign_download(storage_path=body.storage_path or "")
    else:
        if not body.task_id:
            raise InvalidPayloadError("task_id is required for upload.")
        signed = service.presign_upload(task_id=body.task_id, file_extension=body.file_extension)
    return envelope(signed)
