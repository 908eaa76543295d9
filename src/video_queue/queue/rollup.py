"""Group video status rollup, run after terminal task transitions."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError

from video_queue.catalog.repository import CatalogRepository
from video_queue.queue.errors import QueueError
from video_queue.queue.models import GroupVideoStatus, TaskStatus
from video_queue.queue.repository import QueueRepository

logger = logging.getLogger(__name__)

PostCommitHook = Callable[[str], None]


def rollup_status(counts: dict[TaskStatus, int]) -> GroupVideoStatus | None:
    """Aggregate status implied by task counts, or ``None`` to leave it unchanged."""

    total = sum(counts.values())
    if total == 0:
        return None
    if counts.get(TaskStatus.COMPLETED, 0) == total:
        return GroupVideoStatus.COMPLETED
    if counts.get(TaskStatus.PROCESSING, 0) > 0:
        return GroupVideoStatus.PROCESSING
    return None


class GroupStatusRollup:
    """Post-commit hook recomputing ``photo_groups.video_status``."""

    def __init__(self, *, repository: QueueRepository, catalog: CatalogRepository) -> None:
        self.repository = repository
        self.catalog = catalog

    def __call__(self, group_id: str) -> None:
        status = rollup_status(self.repository.count_by_status(group_id=group_id))
        if status is None:
            return
        group = self.catalog.get_group(group_id=group_id)
        if group is None or group.video_status == status:
            return
        self.catalog.set_video_status(group_id=group_id, video_status=status)
        logger.info("Group %s video status -> %s", group_id, status.value)


def run_post_commit_hooks(hooks: Iterable[PostCommitHook], group_id: str) -> None:
    """Run hooks for a group; failures are logged and never propagate."""

    for hook in hooks:
        try:
            hook(group_id)
        except (SQLAlchemyError, QueueError, RuntimeError, ValueError):
            logger.exception("Post-commit hook failed for group %s", group_id)
