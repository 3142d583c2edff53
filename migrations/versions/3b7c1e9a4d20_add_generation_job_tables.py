"""add generation job tables

Revision ID: 3b7c1e9a4d20
Revises:
Create Date: 2026-10-19 09:12:31.118204

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7c1e9a4d20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


JOB_TABLES = (
    "cartoonize_jobs",
    "auto_story_jobs",
    "image_generation_jobs",
    "storybook_jobs",
    "scene_generation_jobs",
)


def _lifecycle_columns(table: str) -> list:
    """Columns and constraints shared by every job table."""
    return [
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=True, comment="Owning user"),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="pending",
            comment="pending|processing|completed|failed|cancelled",
        ),
        sa.Column(
            "progress",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Progress percentage 0-100",
        ),
        sa.Column("current_step", sa.Text, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        # Timestamps
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        # Constraints
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name=f"{table}_status_check",
        ),
        sa.CheckConstraint(
            "progress BETWEEN 0 AND 100", name=f"{table}_progress_check"
        ),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "cartoonize_jobs",
        *_lifecycle_columns("cartoonize_jobs"),
        sa.Column(
            "original_image_data",
            sa.Text,
            nullable=True,
            comment="Prompt or source description",
        ),
        sa.Column("style", sa.Text, nullable=True),
        sa.Column("original_cloudinary_url", sa.Text, nullable=True),
        sa.Column("generated_image_url", sa.Text, nullable=True),
        sa.Column("final_cloudinary_url", sa.Text, nullable=True),
    )

    op.create_table(
        "auto_story_jobs",
        *_lifecycle_columns("auto_story_jobs"),
        sa.Column("genre", sa.Text, nullable=True),
        sa.Column("character_description", sa.Text, nullable=True),
        sa.Column("cartoon_image_url", sa.Text, nullable=True),
        sa.Column("audience", sa.Text, nullable=True),
        sa.Column("storybook_entry_id", sa.String(36), nullable=True),
        sa.Column("generated_story", sa.Text, nullable=True),
    )

    op.create_table(
        "image_generation_jobs",
        *_lifecycle_columns("image_generation_jobs"),
        sa.Column("image_prompt", sa.Text, nullable=True),
        sa.Column("character_description", sa.Text, nullable=True),
        sa.Column("emotion", sa.Text, nullable=True),
        sa.Column("audience", sa.Text, nullable=True),
        sa.Column("is_reused_image", sa.Boolean, nullable=True),
        sa.Column("cartoon_image", sa.Text, nullable=True),
        sa.Column("style", sa.Text, nullable=True),
        sa.Column("generated_image_url", sa.Text, nullable=True),
        sa.Column("final_prompt_used", sa.Text, nullable=True),
    )

    op.create_table(
        "storybook_jobs",
        *_lifecycle_columns("storybook_jobs"),
        sa.Column("title", sa.Text, nullable=True),
        sa.Column("story", sa.Text, nullable=True),
        sa.Column("character_image", sa.Text, nullable=True),
        sa.Column("pages", sa.JSON, nullable=True),
        sa.Column("audience", sa.Text, nullable=True),
        sa.Column("is_reused_image", sa.Boolean, nullable=True),
        sa.Column("storybook_entry_id", sa.String(36), nullable=True),
        sa.Column("processed_pages", sa.JSON, nullable=True),
    )

    op.create_table(
        "scene_generation_jobs",
        *_lifecycle_columns("scene_generation_jobs"),
        sa.Column("story", sa.Text, nullable=True),
        sa.Column("character_image", sa.Text, nullable=True),
        sa.Column("audience", sa.Text, nullable=True),
        sa.Column("character_description", sa.Text, nullable=True),
        sa.Column("generated_scenes", sa.JSON, nullable=True),
    )

    # Pending scans filter by status and order by created_at
    for table in JOB_TABLES:
        op.create_index(
            f"ix_{table}_status_created_at", table, ["status", "created_at"]
        )
        op.create_index(f"ix_{table}_user_id", table, ["user_id"])


def downgrade() -> None:
    """Downgrade schema."""
    for table in reversed(JOB_TABLES):
        op.drop_table(table)
