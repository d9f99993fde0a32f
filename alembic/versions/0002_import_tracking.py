"""Add import progress, job and course lock tables."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0002_import_tracking"
down_revision = "0001_curriculum_schema"
branch_labels = None
depends_on = None

_COUNTERS = (
    "total_modules",
    "processed_modules",
    "total_subjects",
    "processed_subjects",
    "total_lessons",
    "processed_lessons",
    "total_tests",
    "processed_tests",
)


def upgrade() -> None:
    """Apply import tracking schema."""
    op.create_table(
        "import_progress",
        sa.Column("import_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("course_id", sa.String(length=36), nullable=True),
        sa.Column("job_id", sa.String(length=36), nullable=True),
        sa.Column("current_step", sa.String(length=255), nullable=False),
        sa.Column("current_item", sa.Text(), nullable=True),
        sa.Column("phase", sa.String(length=16), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("percentage", sa.Integer(), nullable=True),
        *(
            sa.Column(name, sa.Integer(), nullable=False, server_default="0")
            for name in _COUNTERS
        ),
        sa.Column("errors_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("import_id"),
    )
    op.create_index("ix_import_progress_user_id", "import_progress", ["user_id"])
    op.create_index("ix_import_progress_course_id", "import_progress", ["course_id"])

    op.create_table(
        "drive_import_jobs",
        sa.Column("job_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("course_id", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"]),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("ix_drive_import_jobs_user_id", "drive_import_jobs", ["user_id"])
    op.create_index("ix_drive_import_jobs_course_id", "drive_import_jobs", ["course_id"])

    op.create_table(
        "course_import_locks",
        sa.Column("course_id", sa.String(length=36), nullable=False),
        sa.Column("import_id", sa.String(length=36), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"]),
        sa.PrimaryKeyConstraint("course_id"),
    )


def downgrade() -> None:
    """Revert import tracking schema."""
    op.drop_table("course_import_locks")

    op.drop_index("ix_drive_import_jobs_course_id", table_name="drive_import_jobs")
    op.drop_index("ix_drive_import_jobs_user_id", table_name="drive_import_jobs")
    op.drop_table("drive_import_jobs")

    op.drop_index("ix_import_progress_course_id", table_name="import_progress")
    op.drop_index("ix_import_progress_user_id", table_name="import_progress")
    op.drop_table("import_progress")
