"""Persistent task store for the video generation queue."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from sqlalchemy import and_, func, or_
from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, col, select

from video_queue.queue.errors import (
    RetryCeilingExceededError,
    TaskNotFoundError,
    TaskStateConflictError,
)
from video_queue.queue.models import (
    EnqueueItem,
    ExpiredLease,
    GroupVideoStatus,
    TaskAssignment,
    TaskDetails,
    TaskEventView,
    TaskStatus,
    TaskView,
)
from video_queue.storage.alembic_runner import upgrade_head
from video_queue.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_optional_utc,
    to_utc_aware_datetime,
    utc_now,
)
from video_queue.storage.sqlmodel_models import Photo, PhotoGroup, VideoTask, VideoTaskEvent


class QueueRepository:
    """Queue persistence facade backed by SQLModel + SQLite.

    Every state transition is a conditional ``UPDATE`` whose ``WHERE`` clause
    restates the expected pre-transition state. A row count other than 1
    means a concurrent writer got there first and nothing was changed.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def enqueue_tasks(
        self,
        *,
        group_id: str,
        items: list[EnqueueItem],
        now: datetime | None = None,
    ) -> list[TaskView]:
        """Create ``repeat_count`` pending rows per item and mark the group requested.

        Runs in one transaction; callers validate the group and photos first.
        """

        now = now or utc_now()
        rows: list[VideoTask] = []
        with Session(self.engine) as session:
            for item in items:
                for _ in range(item.repeat_count):
                    row = VideoTask(
                        task_id=str(uuid4()),
                        group_id=group_id,
                        photo_id=item.photo_id,
                        prompt=item.prompt,
                        status=TaskStatus.PENDING.value,
                        retry_count=0,
                        created_at=to_db_datetime(now),
                        updated_at=to_db_datetime(now),
                    )
                    session.add(row)
                    rows.append(row)
            session.exec(
                sa_update(PhotoGroup)
                .where(col(PhotoGroup.group_id) == group_id)
                .values(
                    video_status=GroupVideoStatus.REQUESTED.value,
                    updated_at=to_db_datetime(now),
                )
                .execution_options(synchronize_session=False),
            )
            session.flush()
            for row in rows:
                self._add_event(
                    session=session,
                    task_id=row.task_id,
                    event_type="enqueued",
                    status_from=None,
                    status_to=TaskStatus.PENDING,
                    details={"group_id": group_id, "photo_id": row.photo_id},
                    now=now,
                )
            session.commit()
            for row in rows:
                session.refresh(row)
            return [_to_task_view(row) for row in rows]

    def claim_next_task(
        self,
        *,
        worker_id: str,
        now: datetime,
        leased_until: datetime,
        retry_ceiling: int,
    ) -> TaskAssignment | None:
        """Atomically claim the oldest dispatch-eligible task."""

        while True:
            with Session(self.engine) as session:
                candidate = session.exec(
                    select(VideoTask)
                    .where(dispatch_eligible(now=now, retry_ceiling=retry_ceiling))
                    .order_by(col(VideoTask.created_at).asc(), col(VideoTask.task_id).asc())
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                previous = TaskStatus(candidate.status)
                previous_worker_id = candidate.worker_id
                result = session.exec(
                    sa_update(VideoTask)
                    .where(
                        col(VideoTask.task_id) == candidate.task_id,
                        dispatch_eligible(now=now, retry_ceiling=retry_ceiling),
                    )
                    .values(
                        status=TaskStatus.PROCESSING.value,
                        worker_id=worker_id,
                        leased_until=to_db_datetime(leased_until),
                        processing_started_at=to_db_datetime(now),
                        processing_completed_at=None,
                        updated_at=to_db_datetime(now),
                    )
                    .execution_options(synchronize_session=False),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                claimed = self._select_task(session=session, task_id=candidate.task_id)
                photo = session.exec(
                    select(Photo).where(Photo.photo_id == claimed.photo_id),
                ).one()
                reclaimed = previous == TaskStatus.PROCESSING
                self._add_event(
                    session=session,
                    task_id=claimed.task_id,
                    event_type="claimed",
                    status_from=previous,
                    status_to=TaskStatus.PROCESSING,
                    details={
                        "worker_id": worker_id,
                        "leased_until": to_utc_aware_datetime(leased_until).isoformat(),
                        "reclaimed_from": previous_worker_id if reclaimed else None,
                    },
                    now=now,
                )
                session.commit()
                return TaskAssignment(
                    task_id=claimed.task_id,
                    group_id=claimed.group_id,
                    photo_id=claimed.photo_id,
                    prompt=claimed.prompt,
                    leased_until=to_utc_aware_datetime(leased_until),
                    photo_storage_path=photo.storage_path,
                    retry_count=claimed.retry_count,
                    reclaimed=reclaimed,
                )

    def extend_lease(
        self,
        *,
        task_id: str,
        worker_id: str,
        observed_leased_until: datetime,
        new_leased_until: datetime,
        now: datetime,
    ) -> bool:
        """Move the lease expiry if the caller still holds the observed lease."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(VideoTask)
                .where(
                    col(VideoTask.task_id) == task_id,
                    col(VideoTask.worker_id) == worker_id,
                    col(VideoTask.status) == TaskStatus.PROCESSING.value,
                    col(VideoTask.leased_until) == to_db_datetime(observed_leased_until),
                )
                .values(
                    leased_until=to_db_datetime(new_leased_until),
                    updated_at=to_db_datetime(now),
                )
                .execution_options(synchronize_session=False),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def complete_task(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        worker_id: str,
        generated_video_url: str,
        video_storage_path: str,
        external_operation_id: str | None,
        now: datetime,
    ) -> bool:
        """Mark a task held by ``worker_id`` as completed."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(VideoTask)
                .where(
                    col(VideoTask.task_id) == task_id,
                    col(VideoTask.worker_id) == worker_id,
                    col(VideoTask.status) == TaskStatus.PROCESSING.value,
                )
                .values(
                    status=TaskStatus.COMPLETED.value,
                    leased_until=None,
                    generated_video_url=generated_video_url,
                    video_storage_path=video_storage_path,
                    external_operation_id=external_operation_id,
                    error_message=None,
                    processing_completed_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                )
                .execution_options(synchronize_session=False),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="completed",
                status_from=TaskStatus.PROCESSING,
                status_to=TaskStatus.COMPLETED,
                details={"worker_id": worker_id, "video_storage_path": video_storage_path},
                now=now,
            )
            session.commit()
            return True

    def fail_task(
        self,
        *,
        task_id: str,
        worker_id: str,
        error_message: str,
        now: datetime,
    ) -> bool:
        """Mark a task held by ``worker_id`` as failed and count the attempt."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(VideoTask)
                .where(
                    col(VideoTask.task_id) == task_id,
                    col(VideoTask.worker_id) == worker_id,
                    col(VideoTask.status) == TaskStatus.PROCESSING.value,
                )
                .values(
                    status=TaskStatus.FAILED.value,
                    retry_count=col(VideoTask.retry_count) + 1,
                    error_message=error_message,
                    worker_id=None,
                    leased_until=None,
                    processing_completed_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                )
                .execution_options(synchronize_session=False),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="failed",
                status_from=TaskStatus.PROCESSING,
                status_to=TaskStatus.FAILED,
                details={"worker_id": worker_id, "error_message": error_message},
                now=now,
            )
            session.commit()
            return True

    def list_expired_leases(self, *, now: datetime) -> list[ExpiredLease]:
        """Return processing tasks whose lease expiry is in the past."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(VideoTask)
                .where(
                    col(VideoTask.status) == TaskStatus.PROCESSING.value,
                    col(VideoTask.leased_until).is_not(None),
                    col(VideoTask.leased_until) < to_db_datetime(now),
                )
                .order_by(col(VideoTask.leased_until).asc()),
            ).all()
        return [
            ExpiredLease(
                task_id=row.task_id,
                group_id=row.group_id,
                worker_id=row.worker_id,
                leased_until=to_utc_aware_datetime(row.leased_until),
            )
            for row in rows
            if row.leased_until is not None
        ]

    def expire_lease(self, *, lease: ExpiredLease, error_message: str, now: datetime) -> bool:
        """Fail one task whose lease was observed expired; retry_count is untouched."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(VideoTask)
                .where(
                    col(VideoTask.task_id) == lease.task_id,
                    col(VideoTask.status) == TaskStatus.PROCESSING.value,
                    col(VideoTask.leased_until) == to_db_datetime(lease.leased_until),
                )
                .values(
                    status=TaskStatus.FAILED.value,
                    error_message=error_message,
                    worker_id=None,
                    leased_until=None,
                    processing_completed_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                )
                .execution_options(synchronize_session=False),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=lease.task_id,
                event_type="lease_expired",
                status_from=TaskStatus.PROCESSING,
                status_to=TaskStatus.FAILED,
                details={
                    "worker_id": lease.worker_id,
                    "leased_until": lease.leased_until.isoformat(),
                },
                now=now,
            )
            session.commit()
            return True

    def retry_task(
        self,
        *,
        task_id: str,
        retry_ceiling: int,
        force: bool = False,
        now: datetime | None = None,
    ) -> TaskView:
        """Manual operator retry for failed tasks.

        A non-forced retry keeps ``retry_count`` and refuses tasks at the
        ceiling. A forced retry also resets ``retry_count`` so the task
        becomes dispatch-eligible again.
        """

        now = now or utc_now()
        with Session(self.engine) as session:
            row = session.exec(
                select(VideoTask).where(VideoTask.task_id == task_id),
            ).one_or_none()
            if row is None:
                raise TaskNotFoundError(task_id)
            if row.status != TaskStatus.FAILED.value:
                raise TaskStateConflictError(
                    f"Only failed tasks can be retried, got {row.status}.",
                )
            previous_retry_count = row.retry_count
            if previous_retry_count >= retry_ceiling and not force:
                raise RetryCeilingExceededError(task_id, previous_retry_count, retry_ceiling)

            result = session.exec(
                sa_update(VideoTask)
                .where(
                    col(VideoTask.task_id) == task_id,
                    col(VideoTask.status) == TaskStatus.FAILED.value,
                    col(VideoTask.retry_count) == previous_retry_count,
                )
                .values(
                    status=TaskStatus.PENDING.value,
                    retry_count=0 if force else previous_retry_count,
                    error_message=None,
                    worker_id=None,
                    leased_until=None,
                    processing_started_at=None,
                    processing_completed_at=None,
                    updated_at=to_db_datetime(now),
                )
                .execution_options(synchronize_session=False),
            )
            if result.rowcount != 1:
                session.rollback()
                raise TaskStateConflictError(
                    "Task state changed concurrently while retrying; "
                    f"please retry command (task_id={task_id}).",
                )
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="manual_retry",
                status_from=TaskStatus.FAILED,
                status_to=TaskStatus.PENDING,
                details={"force": force, "previous_retry_count": previous_retry_count},
                now=now,
            )
            session.commit()
            return _to_task_view(self._select_task(session=session, task_id=task_id))

    def delete_task(self, *, task_id: str) -> TaskView:
        """Remove a task and its events; return the removed row."""

        with Session(self.engine) as session:
            row = session.exec(
                select(VideoTask).where(VideoTask.task_id == task_id),
            ).one_or_none()
            if row is None:
                raise TaskNotFoundError(task_id)
            removed = _to_task_view(row)
            session.exec(
                sa_delete(VideoTask)
                .where(col(VideoTask.task_id) == task_id)
                .execution_options(synchronize_session=False),
            )
            session.commit()
        return removed

    def get_task(self, *, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(VideoTask).where(VideoTask.task_id == task_id),
            ).one_or_none()
            return _to_task_view(row) if row is not None else None

    def get_task_details(self, *, task_id: str) -> TaskDetails | None:
        """Return task details with event stream."""

        with Session(self.engine) as session:
            task = session.exec(
                select(VideoTask).where(VideoTask.task_id == task_id),
            ).one_or_none()
            if task is None:
                return None
            event_rows = session.exec(
                select(VideoTaskEvent)
                .where(VideoTaskEvent.task_id == task_id)
                .order_by(col(VideoTaskEvent.created_at).asc(), col(VideoTaskEvent.id).asc()),
            ).all()

        events: list[TaskEventView] = []
        for row in event_rows:
            details = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                TaskEventView(
                    event_id=row.id or 0,
                    task_id=row.task_id,
                    event_type=row.event_type,
                    status_from=TaskStatus(row.status_from) if row.status_from else None,
                    status_to=TaskStatus(row.status_to) if row.status_to else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return TaskDetails(task=_to_task_view(task), events=events)

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        group_id: str | None = None,
        photo_id: str | None = None,
        limit: int | None = None,
        oldest_first: bool = False,
    ) -> list[TaskView]:
        """List tasks newest first (or oldest first), optionally filtered."""

        with Session(self.engine) as session:
            order = (
                (col(VideoTask.created_at).asc(), col(VideoTask.task_id).asc())
                if oldest_first
                else (col(VideoTask.created_at).desc(), col(VideoTask.task_id).desc())
            )
            statement = select(VideoTask).where(
                *_task_filters(status=status, group_id=group_id, photo_id=photo_id),
            )
            statement = statement.order_by(*order)
            if limit is not None:
                statement = statement.limit(limit)
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def count_by_status(
        self,
        *,
        status: TaskStatus | None = None,
        group_id: str | None = None,
        photo_id: str | None = None,
    ) -> dict[TaskStatus, int]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(VideoTask.status, func.count())
                .where(*_task_filters(status=status, group_id=group_id, photo_id=photo_id))
                .group_by(VideoTask.status),
            ).all()
        return {TaskStatus(task_status): int(count) for task_status, count in rows}

    def _select_task(self, *, session: Session, task_id: str) -> VideoTask:
        return session.exec(
            select(VideoTask)
            .where(VideoTask.task_id == task_id)
            .execution_options(populate_existing=True),
        ).one()

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
        now: datetime,
    ) -> None:
        session.add(
            VideoTaskEvent(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(now),
            ),
        )


def dispatch_eligible(*, now: datetime, retry_ceiling: int) -> ColumnElement[bool]:
    """SQL predicate: pending or lease-expired processing, under the retry ceiling."""

    db_now = to_db_datetime(now)
    return and_(
        or_(
            col(VideoTask.status) == TaskStatus.PENDING.value,
            and_(
                col(VideoTask.status) == TaskStatus.PROCESSING.value,
                col(VideoTask.leased_until).is_not(None),
                col(VideoTask.leased_until) < db_now,
            ),
        ),
        col(VideoTask.retry_count) < retry_ceiling,
    )


def _task_filters(
    *,
    status: TaskStatus | None,
    group_id: str | None,
    photo_id: str | None,
) -> list[ColumnElement[bool]]:
    filters: list[ColumnElement[bool]] = []
    if status is not None:
        filters.append(col(VideoTask.status) == status.value)
    if group_id is not None:
        filters.append(col(VideoTask.group_id) == group_id)
    if photo_id is not None:
        filters.append(col(VideoTask.photo_id) == photo_id)
    return filters


def _to_task_view(row: VideoTask) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        group_id=row.group_id,
        photo_id=row.photo_id,
        prompt=row.prompt,
        status=TaskStatus(row.status),
        worker_id=row.worker_id,
        leased_until=to_optional_utc(row.leased_until),
        retry_count=row.retry_count,
        processing_started_at=to_optional_utc(row.processing_started_at),
        processing_completed_at=to_optional_utc(row.processing_completed_at),
        error_message=row.error_message,
        generated_video_url=row.generated_video_url,
        video_storage_path=row.video_storage_path,
        external_operation_id=row.external_operation_id,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
