"""Domain models for the video task queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ReportOutcome(str, Enum):
    """Terminal outcomes a worker may report."""

    COMPLETED = "completed"
    FAILED = "failed"


class GroupVideoStatus(str, Enum):
    """Coarse aggregate status of all tasks that belong to a group."""

    PENDING = "pending"
    REQUESTED = "requested"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class EnqueueItem:
    """One photo+prompt pair to be generated ``repeat_count`` times."""

    photo_id: str
    prompt: str
    repeat_count: int = 1


@dataclass(slots=True)
class TaskView:
    """Readable task view for API, CLI, and tests."""

    task_id: str
    group_id: str
    photo_id: str
    prompt: str
    status: TaskStatus
    worker_id: str | None
    leased_until: datetime | None
    retry_count: int
    processing_started_at: datetime | None
    processing_completed_at: datetime | None
    error_message: str | None
    generated_video_url: str | None
    video_storage_path: str | None
    external_operation_id: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskAssignment:
    """Work payload handed to a worker on a successful claim."""

    task_id: str
    group_id: str
    photo_id: str
    prompt: str
    leased_until: datetime
    photo_storage_path: str
    retry_count: int
    reclaimed: bool = False


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task details with event stream."""

    task: TaskView
    events: list[TaskEventView]


@dataclass(slots=True)
class ExpiredLease:
    """A processing task whose lease was observed to be in the past."""

    task_id: str
    group_id: str
    worker_id: str | None
    leased_until: datetime


@dataclass(slots=True)
class QueueStats:
    """Task counts per status."""

    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @classmethod
    def from_counts(cls, counts: dict[TaskStatus, int]) -> QueueStats:
        return cls(
            total=sum(counts.values()),
            pending=counts.get(TaskStatus.PENDING, 0),
            processing=counts.get(TaskStatus.PROCESSING, 0),
            completed=counts.get(TaskStatus.COMPLETED, 0),
            failed=counts.get(TaskStatus.FAILED, 0),
        )


@dataclass(slots=True)
class QueueSnapshot:
    """Reconciled view of the queue for operators."""

    stats: QueueStats
    tasks: list[TaskView]
    reclaimed: int = 0


@dataclass(slots=True)
class PhotoTasks:
    """Tasks generated from one photo."""

    photo_id: str
    photo_storage_path: str
    tasks: list[TaskView]


@dataclass(slots=True)
class GroupTasksView:
    """All tasks of a group, grouped per photo."""

    group_id: str
    video_status: GroupVideoStatus | None
    stats: QueueStats
    photos: list[PhotoTasks]


@dataclass(slots=True)
class PresignedUrl:
    """Time-limited URL for one object."""

    url: str
    bucket: str
    storage_path: str
    expires_at: datetime
