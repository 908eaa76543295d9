"""Read models for photo groups and photos."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from video_queue.queue.models import GroupVideoStatus


@dataclass(slots=True)
class GroupView:
    group_id: str
    name: str
    video_status: GroupVideoStatus | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class PhotoView:
    photo_id: str
    group_id: str
    storage_path: str
    file_name: str
    created_at: datetime


@dataclass(slots=True)
class DeletedGroup:
    """What was removed with a group, so stored objects can be cleaned up."""

    group: GroupView
    photo_storage_paths: list[str]
    video_storage_paths: list[str]
