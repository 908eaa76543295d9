"""Heartbeat handling and the lease expiry predicate."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from video_queue.queue.errors import (
    InvalidPayloadError,
    LeaseMismatchError,
    TaskNotFoundError,
    TaskStateConflictError,
)
from video_queue.queue.models import TaskStatus
from video_queue.queue.repository import QueueRepository
from video_queue.storage.common import utc_now

logger = logging.getLogger(__name__)

LEASE_EXPIRED_MESSAGE = "Lease expired before the worker reported a result."

_MAX_HEARTBEAT_ATTEMPTS = 5


def lease_expiry(*, now: datetime, seconds: int) -> datetime:
    return now + timedelta(seconds=seconds)


def extended_expiry(*, current: datetime | None, now: datetime, extend_seconds: int) -> datetime:
    """New expiry for a heartbeat; never earlier than the current one."""

    base = now if current is None or current < now else current
    return base + timedelta(seconds=extend_seconds)


class LeaseManager:
    """Extends leases for their current holders."""

    def __init__(
        self,
        *,
        repository: QueueRepository,
        default_extend_seconds: int,
        max_extend_seconds: int,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.default_extend_seconds = default_extend_seconds
        self.max_extend_seconds = max_extend_seconds
        self.clock = clock

    def heartbeat(
        self,
        *,
        task_id: str,
        worker_id: str,
        extend_seconds: int | None = None,
    ) -> datetime:
        """Extend the lease held by ``worker_id``; return the new expiry."""

        extend = self.default_extend_seconds if extend_seconds is None else extend_seconds
        if extend <= 0 or extend > self.max_extend_seconds:
            raise InvalidPayloadError(
                f"extend_seconds must be between 1 and {self.max_extend_seconds}, got {extend}.",
            )

        for _ in range(_MAX_HEARTBEAT_ATTEMPTS):
            task = self.repository.get_task(task_id=task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if task.status != TaskStatus.PROCESSING or task.worker_id != worker_id:
                logger.info(
                    "Rejected heartbeat for task %s from worker %s (status=%s holder=%s)",
                    task_id,
                    worker_id,
                    task.status.value,
                    task.worker_id,
                )
                raise LeaseMismatchError(task_id, worker_id)
            if task.leased_until is None:
                raise LeaseMismatchError(task_id, worker_id)

            now = self.clock()
            new_expiry = extended_expiry(current=task.leased_until, now=now, extend_seconds=extend)
            if self.repository.extend_lease(
                task_id=task_id,
                worker_id=worker_id,
                observed_leased_until=task.leased_until,
                new_leased_until=new_expiry,
                now=now,
            ):
                logger.debug("Lease on task %s extended to %s", task_id, new_expiry.isoformat())
                return new_expiry

        raise TaskStateConflictError(
            f"Lease on task {task_id} kept changing concurrently; retry the heartbeat.",
        )
