"""Terminal transitions reported by workers."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime

from video_queue.objects import InvalidStoragePathError, ObjectStorage
from video_queue.queue.errors import (
    InvalidPayloadError,
    LeaseMismatchError,
    TaskNotFoundError,
    TaskStateConflictError,
)
from video_queue.queue.models import ReportOutcome, TaskStatus, TaskView
from video_queue.queue.repository import QueueRepository
from video_queue.queue.rollup import PostCommitHook, run_post_commit_hooks
from video_queue.storage.common import utc_now

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Unknown error"


class ReportHandler:
    """Applies ``completed``/``failed`` reports from the lease holder only."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: QueueRepository,
        storage: ObjectStorage,
        videos_bucket: str,
        video_url_ttl_seconds: int,
        hooks: Sequence[PostCommitHook] = (),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.storage = storage
        self.videos_bucket = videos_bucket
        self.video_url_ttl_seconds = video_url_ttl_seconds
        self.hooks = tuple(hooks)
        self.clock = clock

    def report_result(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        worker_id: str,
        outcome: ReportOutcome,
        artifact_ref: str | None = None,
        error_message: str | None = None,
        external_operation_id: str | None = None,
    ) -> TaskView:
        task = self.repository.get_task(task_id=task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if task.worker_id != worker_id:
            raise LeaseMismatchError(task_id, worker_id)
        if task.status != TaskStatus.PROCESSING:
            raise TaskStateConflictError(
                f"Task {task_id} is already {task.status.value}; the report was ignored.",
            )

        now = self.clock()
        if outcome == ReportOutcome.COMPLETED:
            storage_path = (artifact_ref or "").strip()
            if not storage_path:
                raise InvalidPayloadError("video_storage_path is required for completed reports.")
            try:
                video_url = self.storage.signed_download_url(
                    bucket=self.videos_bucket,
                    path=storage_path,
                    expires_in=self.video_url_ttl_seconds,
                )
            except InvalidStoragePathError as error:
                raise InvalidPayloadError(str(error)) from error
            applied = self.repository.complete_task(
                task_id=task_id,
                worker_id=worker_id,
                generated_video_url=video_url,
                video_storage_path=storage_path,
                external_operation_id=external_operation_id,
                now=now,
            )
        else:
            applied = self.repository.fail_task(
                task_id=task_id,
                worker_id=worker_id,
                error_message=(error_message or "").strip() or DEFAULT_ERROR_MESSAGE,
                now=now,
            )

        if not applied:
            self._raise_rejected(task_id=task_id, worker_id=worker_id)

        logger.info("Task %s reported %s by worker %s", task_id, outcome.value, worker_id)
        run_post_commit_hooks(self.hooks, task.group_id)
        updated = self.repository.get_task(task_id=task_id)
        if updated is None:
            raise TaskNotFoundError(task_id)
        return updated

    def _raise_rejected(self, *, task_id: str, worker_id: str) -> None:
        """The guarded update matched nothing: explain why."""

        current = self.repository.get_task(task_id=task_id)
        if current is None:
            raise TaskNotFoundError(task_id)
        if current.worker_id != worker_id:
            raise LeaseMismatchError(task_id, worker_id)
        raise TaskStateConflictError(
            f"Task {task_id} is already {current.status.value}; the report was ignored.",
        )
