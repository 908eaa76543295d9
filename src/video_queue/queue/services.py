"""Use-case services for the video task queue."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime, timedelta

from video_queue.catalog.models import DeletedGroup, GroupView, PhotoView
from video_queue.catalog.repository import CatalogRepository
from video_queue.config import Settings
from video_queue.objects import (
    InvalidStoragePathError,
    ObjectStorage,
    ObjectStorageError,
    build_object_storage,
)
from video_queue.queue.dispatcher import Dispatcher
from video_queue.queue.errors import (
    GroupNotFoundError,
    InvalidPayloadError,
    PhotoNotFoundError,
    TaskNotFoundError,
)
from video_queue.queue.leases import LeaseManager
from video_queue.queue.models import (
    EnqueueItem,
    GroupTasksView,
    GroupVideoStatus,
    PhotoTasks,
    PresignedUrl,
    QueueSnapshot,
    QueueStats,
    ReportOutcome,
    TaskAssignment,
    TaskDetails,
    TaskStatus,
    TaskView,
)
from video_queue.queue.reconciler import Reconciler
from video_queue.queue.reporting import ReportHandler
from video_queue.queue.repository import QueueRepository
from video_queue.queue.rollup import GroupStatusRollup
from video_queue.storage.common import utc_now

logger = logging.getLogger(__name__)

_FILE_EXTENSION_RE = re.compile(r"^[A-Za-z0-9]{1,8}$")


class VideoQueueService:
    """Wires dispatcher, leases, reconciler, and reports over one store."""

    def __init__(
        self,
        *,
        repository: QueueRepository,
        catalog: CatalogRepository,
        storage: ObjectStorage,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.catalog = catalog
        self.storage = storage
        self.settings = settings
        self.clock = clock

        hooks = (GroupStatusRollup(repository=repository, catalog=catalog),)
        queue_settings = settings.queue
        self.dispatcher = Dispatcher(
            repository=repository,
            default_lease_seconds=queue_settings.default_lease_seconds,
            max_lease_seconds=queue_settings.max_lease_seconds,
            retry_ceiling=queue_settings.retry_ceiling,
            clock=clock,
        )
        self.leases = LeaseManager(
            repository=repository,
            default_extend_seconds=queue_settings.default_heartbeat_seconds,
            max_extend_seconds=queue_settings.max_lease_seconds,
            clock=clock,
        )
        self.reconciler = Reconciler(repository=repository, hooks=hooks, clock=clock)
        self.reporter = ReportHandler(
            repository=repository,
            storage=storage,
            videos_bucket=settings.storage.videos_bucket,
            video_url_ttl_seconds=settings.storage.video_url_ttl_seconds,
            hooks=hooks,
            clock=clock,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        storage: ObjectStorage | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> VideoQueueService:
        """Open repositories, apply migrations, and build the storage backend."""

        repository = QueueRepository(
            settings.db_path,
            sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
        repository.init_schema()
        catalog = CatalogRepository(
            settings.db_path,
            sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
        return cls(
            repository=repository,
            catalog=catalog,
            storage=storage or build_object_storage(settings.storage, clock=clock),
            settings=settings,
            clock=clock,
        )

    def close(self) -> None:
        self.repository.close()
        self.catalog.close()

    # Worker operations

    def request_task(
        self,
        *,
        worker_id: str,
        lease_duration_seconds: int | None = None,
    ) -> TaskAssignment | None:
        return self.dispatcher.request_task(
            worker_id=worker_id,
            lease_duration_seconds=lease_duration_seconds,
        )

    def heartbeat(
        self,
        *,
        task_id: str,
        worker_id: str,
        extend_seconds: int | None = None,
    ) -> datetime:
        return self.leases.heartbeat(
            task_id=task_id,
            worker_id=worker_id,
            extend_seconds=extend_seconds,
        )

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
        return self.reporter.report_result(
            task_id=task_id,
            worker_id=worker_id,
            outcome=outcome,
            artifact_ref=artifact_ref,
            error_message=error_message,
            external_operation_id=external_operation_id,
        )

    def presign_download(self, *, storage_path: str) -> PresignedUrl:
        """Signed read URL for a source photo."""

        if not storage_path.strip():
            raise InvalidPayloadError("storage_path is required for download.")
        return self._presign(
            sign=self.storage.signed_download_url,
            bucket=self.settings.storage.photos_bucket,
            storage_path=storage_path.strip(),
            ttl_seconds=self.settings.storage.photo_url_ttl_seconds,
        )

    def presign_upload(self, *, task_id: str, file_extension: str = "mp4") -> PresignedUrl:
        """Signed upload URL for the generated video of ``task_id``."""

        extension = file_extension.strip().lstrip(".").lower() or "mp4"
        if not _FILE_EXTENSION_RE.match(extension):
            raise InvalidPayloadError(f"Unsupported file extension: {file_extension!r}")
        if self.repository.get_task(task_id=task_id) is None:
            raise TaskNotFoundError(task_id)
        return self._presign(
            sign=self.storage.signed_upload_url,
            bucket=self.settings.storage.videos_bucket,
            storage_path=f"videos/{task_id}.{extension}",
            ttl_seconds=self.settings.storage.upload_url_ttl_seconds,
        )

    # Admin operations

    def reconcile(self) -> int:
        return self.reconciler.reconcile()

    def enqueue_tasks(self, *, group_id: str, items: list[EnqueueItem]) -> list[str]:
        """Validate and enqueue; return created task ids in creation order."""

        if not items:
            raise InvalidPayloadError("At least one task entry is required.")
        for item in items:
            if not item.photo_id.strip():
                raise InvalidPayloadError("photo_id must not be empty.")
            if not item.prompt.strip():
                raise InvalidPayloadError(f"Prompt must not be empty (photo_id={item.photo_id}).")
            if item.repeat_count < 1:
                raise InvalidPayloadError(
                    f"repeat_count must be >= 1, got {item.repeat_count} "
                    f"(photo_id={item.photo_id}).",
                )

        if self.catalog.get_group(group_id=group_id) is None:
            raise GroupNotFoundError(group_id)
        photo_ids = [item.photo_id for item in items]
        photos = self.catalog.get_photos(photo_ids=photo_ids)
        missing = sorted({photo_id for photo_id in photo_ids if photo_id not in photos})
        if missing:
            raise PhotoNotFoundError(missing)
        foreign = sorted({p.photo_id for p in photos.values() if p.group_id != group_id})
        if foreign:
            raise InvalidPayloadError(
                f"Photos do not belong to group {group_id}: {', '.join(foreign)}",
            )

        created = self.repository.enqueue_tasks(
            group_id=group_id,
            items=[
                EnqueueItem(
                    photo_id=item.photo_id,
                    prompt=item.prompt.strip(),
                    repeat_count=item.repeat_count,
                )
                for item in items
            ],
            now=self.clock(),
        )
        logger.info("Enqueued %d tasks for group %s", len(created), group_id)
        return [task.task_id for task in created]

    def retry_task(self, *, task_id: str, force: bool = False) -> TaskView:
        task = self.repository.retry_task(
            task_id=task_id,
            retry_ceiling=self.settings.queue.retry_ceiling,
            force=force,
            now=self.clock(),
        )
        logger.info("Task %s re-queued%s", task_id, " (forced)" if force else "")
        return task

    def delete_task(self, *, task_id: str) -> TaskView:
        removed = self.repository.delete_task(task_id=task_id)
        if removed.video_storage_path:
            self._delete_objects_quietly(
                bucket=self.settings.storage.videos_bucket,
                paths=[removed.video_storage_path],
            )
        logger.info("Task %s deleted", task_id)
        return removed

    def get_task_details(self, *, task_id: str) -> TaskDetails:
        details = self.repository.get_task_details(task_id=task_id)
        if details is None:
            raise TaskNotFoundError(task_id)
        return details

    def queue_snapshot(
        self,
        *,
        group_id: str | None = None,
        photo_id: str | None = None,
        status: TaskStatus | None = None,
        limit: int | None = None,
    ) -> QueueSnapshot:
        """Reconcile expired leases, then report counts and tasks newest first."""

        reclaimed = self.reconcile()
        counts = self.repository.count_by_status(
            status=status,
            group_id=group_id,
            photo_id=photo_id,
        )
        tasks = self.repository.list_tasks(
            status=status,
            group_id=group_id,
            photo_id=photo_id,
            limit=limit,
        )
        return QueueSnapshot(stats=QueueStats.from_counts(counts), tasks=tasks, reclaimed=reclaimed)

    def queue_stats(self, *, group_id: str | None = None) -> QueueStats:
        self.reconcile()
        return QueueStats.from_counts(self.repository.count_by_status(group_id=group_id))

    def group_tasks(self, *, group_id: str) -> GroupTasksView:
        self.reconcile()
        group = self.catalog.get_group(group_id=group_id)
        if group is None:
            raise GroupNotFoundError(group_id)
        photos = self.catalog.list_group_photos(group_id=group_id)
        tasks = self.repository.list_tasks(group_id=group_id, oldest_first=True)
        by_photo: dict[str, list[TaskView]] = {photo.photo_id: [] for photo in photos}
        for task in tasks:
            by_photo.setdefault(task.photo_id, []).append(task)
        storage_paths = {photo.photo_id: photo.storage_path for photo in photos}
        return GroupTasksView(
            group_id=group_id,
            video_status=group.video_status,
            stats=QueueStats.from_counts(self.repository.count_by_status(group_id=group_id)),
            photos=[
                PhotoTasks(
                    photo_id=photo_id,
                    photo_storage_path=storage_paths.get(photo_id, ""),
                    tasks=photo_tasks,
                )
                for photo_id, photo_tasks in by_photo.items()
            ],
        )

    def set_group_video_status(
        self,
        *,
        group_id: str,
        video_status: GroupVideoStatus | None,
    ) -> GroupView:
        return self.catalog.set_video_status(
            group_id=group_id,
            video_status=video_status,
            now=self.clock(),
        )

    def delete_group(self, *, group_id: str) -> DeletedGroup:
        deleted = self.catalog.delete_group(group_id=group_id)
        self._delete_objects_quietly(
            bucket=self.settings.storage.photos_bucket,
            paths=deleted.photo_storage_paths,
        )
        self._delete_objects_quietly(
            bucket=self.settings.storage.videos_bucket,
            paths=deleted.video_storage_paths,
        )
        return deleted

    def create_group(self, *, name: str, group_id: str | None = None) -> GroupView:
        if not name.strip():
            raise InvalidPayloadError("Group name must not be empty.")
        return self.catalog.create_group(name=name.strip(), group_id=group_id, now=self.clock())

    def add_photo(
        self,
        *,
        group_id: str,
        storage_path: str,
        file_name: str = "",
        photo_id: str | None = None,
    ) -> PhotoView:
        if not storage_path.strip():
            raise InvalidPayloadError("storage_path must not be empty.")
        return self.catalog.add_photo(
            group_id=group_id,
            storage_path=storage_path.strip(),
            file_name=file_name,
            photo_id=photo_id,
            now=self.clock(),
        )

    def _presign(
        self,
        *,
        sign: Callable[..., str],
        bucket: str,
        storage_path: str,
        ttl_seconds: int,
    ) -> PresignedUrl:
        expires_at = self.clock() + timedelta(seconds=ttl_seconds)
        try:
            url = sign(bucket=bucket, path=storage_path, expires_in=ttl_seconds)
        except InvalidStoragePathError as error:
            raise InvalidPayloadError(str(error)) from error
        return PresignedUrl(
            url=url,
            bucket=bucket,
            storage_path=storage_path,
            expires_at=expires_at,
        )

    def _delete_objects_quietly(self, *, bucket: str, paths: list[str]) -> None:
        if not paths:
            return
        try:
            self.storage.delete_objects(bucket=bucket, paths=paths)
        except ObjectStorageError:
            logger.exception("Failed to delete %d objects from %s", len(paths), bucket)
