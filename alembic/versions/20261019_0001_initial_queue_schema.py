"""Initial photo catalog and video task queue schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "photo_groups",
        sa.Column("group_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("video_status", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("group_id"),
    )

    op.create_table(
        "photos",
        sa.Column("photo_id", sa.String(), nullable=False),
        sa.Column("group_id", sa.String(), nullable=False),
        sa.Column("storage_path", sa.String(), nullable=False),
        sa.Column("file_name", sa.String(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["photo_groups.group_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("photo_id"),
    )

    op.create_table(
        "video_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("group_id", sa.String(), nullable=False),
        sa.Column("photo_id", sa.String(), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("leased_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("generated_video_url", sa.Text(), nullable=True),
        sa.Column("video_storage_path", sa.String(), nullable=True),
        sa.Column("external_operation_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["photo_groups.group_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["photo_id"], ["photos.photo_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("task_id"),
    )

    op.create_table(
        "video_task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["video_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_photo_groups_video_status", "photo_groups", ["video_status"])
    op.create_index("ix_photos_group_id", "photos", ["group_id"])
    op.create_index("ix_video_tasks_group_id", "video_tasks", ["group_id"])
    op.create_index("ix_video_tasks_photo_id", "video_tasks", ["photo_id"])
    op.create_index("ix_video_tasks_status", "video_tasks", ["status"])
    op.create_index("ix_video_tasks_worker_id", "video_tasks", ["worker_id"])
    op.create_index(
        "idx_video_tasks_dispatch",
        "video_tasks",
        ["status", "retry_count", "created_at"],
    )
    op.create_index("idx_video_tasks_lease", "video_tasks", ["status", "leased_until"])
    op.create_index("ix_video_task_events_task_id", "video_task_events", ["task_id"])
    op.create_index("ix_video_task_events_event_type", "video_task_events", ["event_type"])
    op.create_index(
        "idx_video_task_events_task_time",
        "video_task_events",
        ["task_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_table("video_task_events")
    op.drop_table("video_tasks")
    op.drop_table("photos")
    op.drop_table("photo_groups")
