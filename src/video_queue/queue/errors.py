"""Queue error taxonomy.

Every class maps to one distinguishable outcome for callers. Transient store
failures are not wrapped: they surface as SQLAlchemy ``OperationalError`` and
callers are expected to back off and retry.
"""

from __future__ import annotations


class QueueError(Exception):
    """Base class for queue outcomes that are reported to callers."""


class TaskNotFoundError(QueueError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class GroupNotFoundError(QueueError):
    def __init__(self, group_id: str) -> None:
        super().__init__(f"Group not found: {group_id}")
        self.group_id = group_id


class PhotoNotFoundError(QueueError):
    def __init__(self, photo_ids: list[str]) -> None:
        super().__init__(f"Photos not found: {', '.join(photo_ids)}")
        self.photo_ids = photo_ids


class LeaseMismatchError(QueueError):
    """Caller is not the current lease holder of the task."""

    def __init__(self, task_id: str, worker_id: str) -> None:
        super().__init__(f"Worker {worker_id!r} does not hold the lease on task {task_id}")
        self.task_id = task_id
        self.worker_id = worker_id


class InvalidPayloadError(QueueError):
    """Request is well-formed but violates an operation precondition."""


class RetryCeilingExceededError(QueueError):
    def __init__(self, task_id: str, retry_count: int, ceiling: int) -> None:
        super().__init__(
            f"Task {task_id} reached the retry ceiling ({retry_count}/{ceiling}); "
            "use a forced retry to override.",
        )
        self.task_id = task_id
        self.retry_count = retry_count
        self.ceiling = ceiling


class TaskStateConflictError(QueueError):
    """Task is not in a state that allows the requested transition."""
