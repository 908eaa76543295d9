"""Hands the oldest eligible task to a requesting worker."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from video_queue.queue.errors import InvalidPayloadError
from video_queue.queue.leases import lease_expiry
from video_queue.queue.models import TaskAssignment
from video_queue.queue.repository import QueueRepository
from video_queue.storage.common import utc_now

logger = logging.getLogger(__name__)


class Dispatcher:
    """FIFO dispatch with exclusive leases.

    Eligible tasks are ``pending`` ones and ``processing`` ones whose lease is
    in the past, in both cases only while ``retry_count`` is under the
    ceiling. Two concurrent requests never receive the same task.
    """

    def __init__(
        self,
        *,
        repository: QueueRepository,
        default_lease_seconds: int,
        max_lease_seconds: int,
        retry_ceiling: int,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.default_lease_seconds = default_lease_seconds
        self.max_lease_seconds = max_lease_seconds
        self.retry_ceiling = retry_ceiling
        self.clock = clock

    def request_task(
        self,
        *,
        worker_id: str,
        lease_duration_seconds: int | None = None,
    ) -> TaskAssignment | None:
        if not worker_id.strip():
            raise InvalidPayloadError("worker_id must not be empty.")
        lease_seconds = (
            self.default_lease_seconds if lease_duration_seconds is None else lease_duration_seconds
        )
        if lease_seconds <= 0 or lease_seconds > self.max_lease_seconds:
            raise InvalidPayloadError(
                "lease_duration_seconds must be between 1 and "
                f"{self.max_lease_seconds}, got {lease_seconds}.",
            )

        now = self.clock()
        assignment = self.repository.claim_next_task(
            worker_id=worker_id,
            now=now,
            leased_until=lease_expiry(now=now, seconds=lease_seconds),
            retry_ceiling=self.retry_ceiling,
        )
        if assignment is None:
            logger.debug("No eligible task for worker %s", worker_id)
            return None
        logger.info(
            "Task %s leased to worker %s until %s%s",
            assignment.task_id,
            worker_id,
            assignment.leased_until.isoformat(),
            " (reclaimed expired lease)" if assignment.reclaimed else "",
        )
        return assignment
