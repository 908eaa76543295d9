"""CLI entrypoint for video-queue."""

import logging
from pathlib import Path

import rich_click as click
import uvicorn

from video_queue import __version__
from video_queue.api import create_app
from video_queue.config import Settings
from video_queue.controllers import (
    AddPhotoCommand,
    CreateGroupCommand,
    DeleteTaskCommand,
    EnqueueCommand,
    InspectTaskCommand,
    ListTasksCommand,
    QueueCliController,
    QueueMaintenanceCommand,
    RetryTaskCommand,
)

click.rich_click.USE_MARKDOWN = True
QUEUE_CONTROLLER = QueueCliController()

_STATUS_CHOICES = click.Choice(["pending", "processing", "completed", "failed"])


@click.group()
@click.version_option(version=__version__, prog_name="video-queue")
def video_queue() -> None:
    """Lease-based video generation task queue."""


@video_queue.command("serve")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--host", default=None, help="Bind host (default: VIDEO_QUEUE_API_HOST).")
@click.option("--port", type=int, default=None, help="Bind port (default: VIDEO_QUEUE_API_PORT).")
def serve(db_path: Path | None, host: str | None, port: int | None) -> None:
    """Run the worker and admin HTTP API."""

    settings = Settings.from_env(db_path=db_path)
    logging.basicConfig(
        level=settings.api.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        app = create_app(settings)
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    uvicorn.run(
        app,
        host=host or settings.api.host,
        port=port or settings.api.port,
        log_level=settings.api.log_level.lower(),
    )


@video_queue.group()
def queue() -> None:
    """Task queue commands."""


@queue.command("enqueue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--group-id", required=True, help="Photo group id.")
@click.option(
    "--photo-id",
    "photo_ids",
    multiple=True,
    required=True,
    help="Photo id. Can be repeated.",
)
@click.option("--prompt", required=True, help="Generation prompt.")
@click.option(
    "--repeat-count",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Tasks to create per photo.",
)
def queue_enqueue(  # noqa: PLR0913
    db_path: Path | None,
    group_id: str,
    photo_ids: tuple[str, ...],
    prompt: str,
    repeat_count: int,
) -> None:
    """Enqueue video generation tasks for photos of one group."""

    _emit_lines(
        QUEUE_CONTROLLER.enqueue(
            EnqueueCommand(
                db_path=db_path,
                group_id=group_id,
                photo_ids=photo_ids,
                prompt=prompt,
                repeat_count=repeat_count,
            ),
        ),
    )


@queue.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--status", type=_STATUS_CHOICES, default=None, help="Filter by status.")
@click.option("--group-id", default=None, help="Filter by group id.")
@click.option("--photo-id", default=None, help="Filter by photo id.")
@click.option("--limit", type=click.IntRange(min=1), default=50, show_default=True)
def queue_list(
    db_path: Path | None,
    status: str | None,
    group_id: str | None,
    photo_id: str | None,
    limit: int,
) -> None:
    """Reconcile expired leases, then list tasks newest first."""

    _emit_lines(
        QUEUE_CONTROLLER.list_tasks(
            ListTasksCommand(
                db_path=db_path,
                status=status,
                group_id=group_id,
                photo_id=photo_id,
                limit=limit,
            ),
        ),
    )


@queue.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def queue_inspect(db_path: Path | None, task_id: str) -> None:
    """Show one task with its event history."""

    _emit_lines(QUEUE_CONTROLLER.inspect_task(InspectTaskCommand(db_path=db_path, task_id=task_id)))


@queue.command("retry")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
@click.option(
    "--force",
    is_flag=True,
    default=False,
    help="Retry even at the retry ceiling and reset the retry counter.",
)
def queue_retry(db_path: Path | None, task_id: str, force: bool) -> None:
    """Manually re-queue a failed task."""

    _emit_lines(
        QUEUE_CONTROLLER.retry_task(RetryTaskCommand(db_path=db_path, task_id=task_id, force=force)),
    )


@queue.command("delete")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def queue_delete(db_path: Path | None, task_id: str) -> None:
    """Delete a task and its generated video."""

    _emit_lines(QUEUE_CONTROLLER.delete_task(DeleteTaskCommand(db_path=db_path, task_id=task_id)))


@queue.command("reconcile")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def queue_reconcile(db_path: Path | None) -> None:
    """Fail processing tasks whose lease has expired."""

    _emit_lines(QUEUE_CONTROLLER.reconcile(QueueMaintenanceCommand(db_path=db_path)))


@queue.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--group-id", default=None, help="Limit to one group.")
def queue_stats(db_path: Path | None, group_id: str | None) -> None:
    """Task counts per status."""

    _emit_lines(
        QUEUE_CONTROLLER.stats(QueueMaintenanceCommand(db_path=db_path, group_id=group_id)),
    )


@video_queue.group()
def catalog() -> None:
    """Photo group commands."""


@catalog.command("create-group")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--name", required=True, help="Group name.")
@click.option("--group-id", default=None, help="Explicit group id (default: random UUID).")
def catalog_create_group(db_path: Path | None, name: str, group_id: str | None) -> None:
    """Create a photo group."""

    _emit_lines(
        QUEUE_CONTROLLER.create_group(
            CreateGroupCommand(db_path=db_path, name=name, group_id=group_id),
        ),
    )


@catalog.command("add-photo")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--group-id", required=True, help="Photo group id.")
@click.option("--storage-path", required=True, help="Object path in the photos bucket.")
@click.option("--file-name", default="", help="Original file name.")
@click.option("--photo-id", default=None, help="Explicit photo id (default: random UUID).")
def catalog_add_photo(
    db_path: Path | None,
    group_id: str,
    storage_path: str,
    file_name: str,
    photo_id: str | None,
) -> None:
    """Register a photo of a group."""

    _emit_lines(
        QUEUE_CONTROLLER.add_photo(
            AddPhotoCommand(
                db_path=db_path,
                group_id=group_id,
                storage_path=storage_path,
                file_name=file_name,
                photo_id=photo_id,
            ),
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    video_queue()
