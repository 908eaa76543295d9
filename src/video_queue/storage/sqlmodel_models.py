"""SQLModel ORM tables for the queue and photo catalog."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class PhotoGroup(SQLModel, table=True):
    __tablename__ = "photo_groups"  # type: ignore[bad-override]

    group_id: str = Field(primary_key=True)
    name: str
    video_status: str | None = Field(default=None, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Photo(SQLModel, table=True):
    __tablename__ = "photos"  # type: ignore[bad-override]

    photo_id: str = Field(primary_key=True)
    group_id: str = Field(
        sa_column=Column(
            ForeignKey("photo_groups.group_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    storage_path: str
    file_name: str = ""
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class VideoTask(SQLModel, table=True):
    __tablename__ = "video_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_video_tasks_dispatch", "status", "retry_count", "created_at"),
        Index("idx_video_tasks_lease", "status", "leased_until"),
    )

    task_id: str = Field(primary_key=True)
    group_id: str = Field(
        sa_column=Column(
            ForeignKey("photo_groups.group_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    photo_id: str = Field(
        sa_column=Column(
            ForeignKey("photos.photo_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(index=True)
    worker_id: str | None = Field(default=None, index=True)
    leased_until: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    retry_count: int = Field(default=0)
    processing_started_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    processing_completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    generated_video_url: str | None = Field(default=None, sa_column=Column(Text))
    video_storage_path: str | None = None
    external_operation_id: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class VideoTaskEvent(SQLModel, table=True):
    __tablename__ = "video_task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_video_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("video_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    event_type: str = Field(index=True)
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
