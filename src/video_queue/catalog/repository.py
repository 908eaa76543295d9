"""SQLModel repository for photo groups and photos."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from video_queue.catalog.models import DeletedGroup, GroupView, PhotoView
from video_queue.queue.errors import GroupNotFoundError
from video_queue.queue.models import GroupVideoStatus
from video_queue.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from video_queue.storage.sqlmodel_models import Photo, PhotoGroup, VideoTask

logger = logging.getLogger(__name__)


class CatalogRepository:
    """Groups own photos; deleting a group cascades to its photos and tasks."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def create_group(
        self,
        *,
        name: str,
        group_id: str | None = None,
        now: datetime | None = None,
    ) -> GroupView:
        now = to_db_datetime(now or utc_now())
        row = PhotoGroup(
            group_id=group_id or str(uuid4()),
            name=name,
            video_status=None,
            created_at=now,
            updated_at=now,
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_group_view(row)

    def add_photo(
        self,
        *,
        group_id: str,
        storage_path: str,
        file_name: str = "",
        photo_id: str | None = None,
        now: datetime | None = None,
    ) -> PhotoView:
        now = to_db_datetime(now or utc_now())
        with Session(self.engine) as session:
            group = session.exec(
                select(PhotoGroup).where(PhotoGroup.group_id == group_id),
            ).one_or_none()
            if group is None:
                raise GroupNotFoundError(group_id)
            row = Photo(
                photo_id=photo_id or str(uuid4()),
                group_id=group_id,
                storage_path=storage_path,
                file_name=file_name or Path(storage_path).name,
                created_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_photo_view(row)

    def get_group(self, *, group_id: str) -> GroupView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(PhotoGroup).where(PhotoGroup.group_id == group_id),
            ).one_or_none()
            return _to_group_view(row) if row is not None else None

    def get_photos(self, *, photo_ids: list[str]) -> dict[str, PhotoView]:
        """Return found photos keyed by id; missing ids are simply absent."""

        if not photo_ids:
            return {}
        with Session(self.engine) as session:
            rows = session.exec(
                select(Photo).where(col(Photo.photo_id).in_(sorted(set(photo_ids)))),
            ).all()
        return {row.photo_id: _to_photo_view(row) for row in rows}

    def list_group_photos(self, *, group_id: str) -> list[PhotoView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Photo)
                .where(Photo.group_id == group_id)
                .order_by(col(Photo.created_at).asc(), col(Photo.photo_id).asc()),
            ).all()
        return [_to_photo_view(row) for row in rows]

    def set_video_status(
        self,
        *,
        group_id: str,
        video_status: GroupVideoStatus | None,
        now: datetime | None = None,
    ) -> GroupView:
        """Overwrite the group's aggregate video status."""

        now = to_db_datetime(now or utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(PhotoGroup)
                .where(col(PhotoGroup.group_id) == group_id)
                .values(
                    video_status=video_status.value if video_status is not None else None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False),
            )
            if result.rowcount != 1:
                session.rollback()
                raise GroupNotFoundError(group_id)
            session.commit()
            row = session.exec(
                select(PhotoGroup)
                .where(PhotoGroup.group_id == group_id)
                .execution_options(populate_existing=True),
            ).one()
            return _to_group_view(row)

    def delete_group(self, *, group_id: str) -> DeletedGroup:
        """Delete a group with its photos and tasks in one transaction."""

        with Session(self.engine) as session:
            group = session.exec(
                select(PhotoGroup).where(PhotoGroup.group_id == group_id),
            ).one_or_none()
            if group is None:
                raise GroupNotFoundError(group_id)
            removed = _to_group_view(group)
            photo_paths = list(
                session.exec(select(Photo.storage_path).where(Photo.group_id == group_id)).all(),
            )
            video_paths = [
                path
                for path in session.exec(
                    select(VideoTask.video_storage_path).where(VideoTask.group_id == group_id),
                ).all()
                if path
            ]
            session.exec(
                sa_delete(PhotoGroup)
                .where(col(PhotoGroup.group_id) == group_id)
                .execution_options(synchronize_session=False),
            )
            session.commit()
        logger.info(
            "Deleted group %s (%d photos, %d stored videos)",
            group_id,
            len(photo_paths),
            len(video_paths),
        )
        return DeletedGroup(
            group=removed,
            photo_storage_paths=photo_paths,
            video_storage_paths=video_paths,
        )


def _to_group_view(row: PhotoGroup) -> GroupView:
    return GroupView(
        group_id=row.group_id,
        name=row.name,
        video_status=GroupVideoStatus(row.video_status) if row.video_status else None,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_photo_view(row: Photo) -> PhotoView:
    return PhotoView(
        photo_id=row.photo_id,
        group_id=row.group_id,
        storage_path=row.storage_path,
        file_name=row.file_name,
        created_at=to_utc_aware_datetime(row.created_at),
    )
