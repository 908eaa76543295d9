"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from video_queue.catalog.repository import CatalogRepository
from video_queue.config import ApiSettings, QueueSettings, Settings, StorageSettings
from video_queue.queue.models import EnqueueItem
from video_queue.queue.repository import QueueRepository
from video_queue.queue.services import VideoQueueService

WORKER_KEY = "worker-secret"
ADMIN_TOKEN = "admin-secret"
SIGNING_SECRET = "signing-secret"
GROUP_ID = "group-1"
PHOTO_IDS = ("photo-1", "photo-2")


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 19, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


def build_settings(tmp_path: Path, **queue_overrides: int) -> Settings:
    return Settings(
        db_path=tmp_path / "queue.db",
        queue=QueueSettings(reconcile_interval_seconds=0, **queue_overrides),
        storage=StorageSettings(
            local_root=tmp_path / "objects",
            public_base_url="http://testserver/objects",
            signing_secret=SIGNING_SECRET,
        ),
        api=ApiSettings(worker_api_key=WORKER_KEY, admin_api_token=ADMIN_TOKEN),
    )


def seed_catalog(
    db_path: Path,
    *,
    group_id: str = GROUP_ID,
    photo_ids: tuple[str, ...] = PHOTO_IDS,
) -> None:
    queue_repository = QueueRepository(db_path)
    queue_repository.init_schema()
    queue_repository.close()
    catalog = CatalogRepository(db_path)
    catalog.create_group(name=f"Group {group_id}", group_id=group_id)
    for photo_id in photo_ids:
        catalog.add_photo(
            group_id=group_id,
            storage_path=f"{group_id}/{photo_id}.jpg",
            photo_id=photo_id,
        )
    catalog.close()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return build_settings(tmp_path)


@pytest.fixture()
def service(settings: Settings, clock: FakeClock) -> Iterator[VideoQueueService]:
    queue_service = VideoQueueService.from_settings(settings, clock=clock)
    seed_catalog(settings.db_path)
    try:
        yield queue_service
    finally:
        queue_service.close()


@pytest.fixture()
def enqueue_one(service: VideoQueueService, clock: FakeClock):
    """Enqueue a single task for ``photo-1`` and return its id."""

    def _enqueue(prompt: str = "slow zoom", photo_id: str = PHOTO_IDS[0]) -> str:
        (task_id,) = service.enqueue_tasks(
            group_id=GROUP_ID,
            items=[EnqueueItem(photo_id=photo_id, prompt=prompt)],
        )
        clock.advance(1)
        return task_id

    return _enqueue
