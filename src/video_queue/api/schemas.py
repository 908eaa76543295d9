"""Request bodies and the JSON response envelope."""

from __future__ import annotations

from typing import Any, Literal

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from video_queue.queue.models import GroupVideoStatus, ReportOutcome


class NextTaskRequest(BaseModel):
    worker_id: str = Field(min_length=1)
    lease_duration_seconds: int | None = None


class HeartbeatRequest(BaseModel):
    task_id: str = Field(min_length=1)
    worker_id: str = Field(min_length=1)
    extend_seconds: int | None = None


class ReportRequest(BaseModel):
    task_id: str = Field(min_length=1)
    worker_id: str = Field(min_length=1)
    status: ReportOutcome
    video_storage_path: str | None = None
    error_message: str | None = None
    external_operation_id: str | None = None


class PresignRequest(BaseModel):
    operation: Literal["download", "upload"]
    storage_path: str | None = None
    task_id: str | None = None
    file_extension: str = "mp4"


class EnqueueEntry(BaseModel):
    photo_id: str
    prompt: str
    repeat_count: int = 1


class EnqueueRequest(BaseModel):
    group_id: str = Field(min_length=1)
    tasks: list[EnqueueEntry] = Field(min_length=1)


class GroupVideoStatusRequest(BaseModel):
    video_status: GroupVideoStatus | None


def envelope(data: Any = None) -> dict[str, Any]:
    """Successful response body."""

    return {"success": True, "data": jsonable_encoder(data), "error": None}


def error_envelope(message: str, *, code: str, **extra: Any) -> dict[str, Any]:
    return {"success": False, "data": None, "error": message, "code": code, **extra}
