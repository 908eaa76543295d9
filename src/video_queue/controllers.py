"""Controllers for video-queue CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import rich_click as click

from video_queue.config import Settings
from video_queue.queue.errors import QueueError
from video_queue.queue.models import EnqueueItem, QueueStats, TaskStatus
from video_queue.queue.services import VideoQueueService


@dataclass(slots=True)
class EnqueueCommand:
    """CLI input for enqueueing generation tasks."""

    db_path: Path | None
    group_id: str
    photo_ids: tuple[str, ...]
    prompt: str
    repeat_count: int


@dataclass(slots=True)
class ListTasksCommand:
    db_path: Path | None
    status: str | None
    group_id: str | None
    photo_id: str | None
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class RetryTaskCommand:
    db_path: Path | None
    task_id: str
    force: bool


@dataclass(slots=True)
class DeleteTaskCommand:
    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class QueueMaintenanceCommand:
    """CLI input for reconcile and stats."""

    db_path: Path | None
    group_id: str | None = None


@dataclass(slots=True)
class CreateGroupCommand:
    db_path: Path | None
    name: str
    group_id: str | None


@dataclass(slots=True)
class AddPhotoCommand:
    db_path: Path | None
    group_id: str
    storage_path: str
    file_name: str
    photo_id: str | None


class QueueCliController:
    """Runs queue and catalog commands and renders them as text lines."""

    def enqueue(self, command: EnqueueCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            task_ids = service.enqueue_tasks(
                group_id=command.group_id,
                items=[
                    EnqueueItem(
                        photo_id=photo_id,
                        prompt=command.prompt,
                        repeat_count=command.repeat_count,
                    )
                    for photo_id in command.photo_ids
                ],
            )
        return [f"Enqueued tasks: {len(task_ids)}", *(f"  {task_id}" for task_id in task_ids)]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            snapshot = service.queue_snapshot(
                status=_parse_status(command.status),
                group_id=command.group_id,
                photo_id=command.photo_id,
                limit=command.limit,
            )

        lines = [f"Tasks: {snapshot.stats.total} (showing {len(snapshot.tasks)})"]
        if snapshot.reclaimed:
            lines.append(f"Expired leases failed: {snapshot.reclaimed}")
        for task in snapshot.tasks:
            leased = task.leased_until.isoformat() if task.leased_until is not None else "-"
            lines.append(
                f"  {task.task_id} status={task.status.value} group={task.group_id} "
                f"photo={task.photo_id} retries={task.retry_count} "
                f"worker={task.worker_id or '-'} leased_until={leased}",
            )
        return lines

    def inspect_task(self, command: InspectTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            details = service.get_task_details(task_id=command.task_id)

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Group: {task.group_id}",
            f"Photo: {task.photo_id}",
            f"Status: {task.status.value}",
            f"Retries: {task.retry_count}",
            f"Worker: {task.worker_id or '-'}",
            f"Leased until: {task.leased_until.isoformat() if task.leased_until else '-'}",
            f"Error: {task.error_message or '-'}",
            f"Video: {task.video_storage_path or '-'}",
            f"Prompt: {task.prompt}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def retry_task(self, command: RetryTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            task = service.retry_task(task_id=command.task_id, force=command.force)
        return [f"Task re-queued: {task.task_id} (retries={task.retry_count})"]

    def delete_task(self, command: DeleteTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            service.delete_task(task_id=command.task_id)
        return [f"Task deleted: {command.task_id}"]

    def reconcile(self, command: QueueMaintenanceCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            moved = service.reconcile()
        return [f"Expired leases failed: {moved}"]

    def stats(self, command: QueueMaintenanceCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            stats = service.queue_stats(group_id=command.group_id)
        return _render_stats(stats, group_id=command.group_id)

    def create_group(self, command: CreateGroupCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            group = service.create_group(name=command.name, group_id=command.group_id)
        return [f"Group created: {group.group_id} ({group.name})"]

    def add_photo(self, command: AddPhotoCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            photo = service.add_photo(
                group_id=command.group_id,
                storage_path=command.storage_path,
                file_name=command.file_name,
                photo_id=command.photo_id,
            )
        return [f"Photo added: {photo.photo_id} -> {photo.storage_path}"]


def _render_stats(stats: QueueStats, *, group_id: str | None) -> list[str]:
    scope = f"group {group_id}" if group_id else "all groups"
    return [
        f"Queue stats ({scope}):",
        f"  total={stats.total}",
        f"  pending={stats.pending}",
        f"  processing={stats.processing}",
        f"  completed={stats.completed}",
        f"  failed={stats.failed}",
    ]


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


@contextmanager
def _service(settings: Settings) -> Iterator[VideoQueueService]:
    try:
        settings.validate_for_queue()
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    service = VideoQueueService.from_settings(settings)
    try:
        yield service
    except QueueError as error:
        raise click.ClickException(str(error)) from error
    finally:
        service.close()
