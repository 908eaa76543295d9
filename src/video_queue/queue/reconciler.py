"""Sweeps processing tasks whose lease has lapsed into ``failed``."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from video_queue.queue.errors import QueueError
from video_queue.queue.leases import LEASE_EXPIRED_MESSAGE
from video_queue.queue.repository import QueueRepository
from video_queue.queue.rollup import PostCommitHook, run_post_commit_hooks
from video_queue.storage.common import utc_now

logger = logging.getLogger(__name__)


class Reconciler:
    """Makes lease expiry visible to operators.

    A task reclaimed by the dispatcher before a sweep never becomes
    ``failed``; the sweep only moves rows it observed as expired and that are
    still unchanged at write time.
    """

    def __init__(
        self,
        *,
        repository: QueueRepository,
        hooks: Sequence[PostCommitHook] = (),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.hooks = tuple(hooks)
        self.clock = clock

    def reconcile(self) -> int:
        """Fail expired leases; return how many tasks were moved."""

        now = self.clock()
        expired = self.repository.list_expired_leases(now=now)
        moved = 0
        groups: list[str] = []
        for lease in expired:
            if not self.repository.expire_lease(
                lease=lease,
                error_message=LEASE_EXPIRED_MESSAGE,
                now=now,
            ):
                continue
            moved += 1
            if lease.group_id not in groups:
                groups.append(lease.group_id)
            logger.warning(
                "Lease on task %s (worker %s) expired at %s",
                lease.task_id,
                lease.worker_id,
                lease.leased_until.isoformat(),
            )
        for group_id in groups:
            run_post_commit_hooks(self.hooks, group_id)
        return moved


async def run_periodic_reconcile(
    reconciler: Reconciler,
    *,
    interval_seconds: int,
    stop_event: asyncio.Event,
) -> None:
    """Reconcile every ``interval_seconds`` until ``stop_event`` is set."""

    while not stop_event.is_set():
        try:
            moved = await asyncio.to_thread(reconciler.reconcile)
        except (SQLAlchemyError, QueueError, RuntimeError, ValueError):
            logger.exception("Periodic reconcile failed")
        else:
            if moved:
                logger.info("Periodic reconcile failed %d expired leases", moved)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except TimeoutError:
            continue
