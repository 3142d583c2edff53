"""
Per-kind job tables for generation jobs.

Each job kind lives in its own table. All tables share the common lifecycle
columns from JobColumnsMixin and add the kind-specific input/result columns.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from worker.infra.database import Base


class JobKind(str, Enum):
    """Closed set of generation job kinds."""

    STORYBOOK = "storybook"
    AUTO_STORY = "auto-story"
    SCENES = "scenes"
    CARTOONIZE = "cartoonize"
    IMAGE_GENERATION = "image-generation"


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class JobColumnsMixin:
    """Lifecycle columns present in every job table."""

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str | None] = mapped_column(
        String(36), nullable=True, comment="Owning user"
    )
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="pending|processing|completed|failed|cancelled",
    )
    progress: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Progress percentage 0-100"
    )
    current_step: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @declared_attr.directive
    def __table_args__(cls) -> tuple[Any, ...]:
        table = cls.__tablename__
        return (
            CheckConstraint(
                "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
                name=f"{table}_status_check",
            ),
            CheckConstraint(
                "progress BETWEEN 0 AND 100", name=f"{table}_progress_check"
            ),
            Index(f"ix_{table}_status_created_at", "status", "created_at"),
            Index(f"ix_{table}_user_id", "user_id"),
        )


class CartoonizeJob(JobColumnsMixin, Base):
    __tablename__ = "cartoonize_jobs"

    original_image_data: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Prompt or source description"
    )
    style: Mapped[str | None] = mapped_column(Text, nullable=True)
    original_cloudinary_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    generated_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    final_cloudinary_url: Mapped[str | None] = mapped_column(Text, nullable=True)


class AutoStoryJob(JobColumnsMixin, Base):
    __tablename__ = "auto_story_jobs"

    genre: Mapped[str | None] = mapped_column(Text, nullable=True)
    character_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    cartoon_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    audience: Mapped[str | None] = mapped_column(Text, nullable=True)
    storybook_entry_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    generated_story: Mapped[str | None] = mapped_column(Text, nullable=True)


class ImageGenerationJob(JobColumnsMixin, Base):
    __tablename__ = "image_generation_jobs"

    image_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    character_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    emotion: Mapped[str | None] = mapped_column(Text, nullable=True)
    audience: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_reused_image: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    cartoon_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    style: Mapped[str | None] = mapped_column(Text, nullable=True)
    generated_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    final_prompt_used: Mapped[str | None] = mapped_column(Text, nullable=True)


class StorybookJob(JobColumnsMixin, Base):
    __tablename__ = "storybook_jobs"

    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    story: Mapped[str | None] = mapped_column(Text, nullable=True)
    character_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    pages: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)
    audience: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_reused_image: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    storybook_entry_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    processed_pages: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)


class SceneGenerationJob(JobColumnsMixin, Base):
    __tablename__ = "scene_generation_jobs"

    story: Mapped[str | None] = mapped_column(Text, nullable=True)
    character_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    audience: Mapped[str | None] = mapped_column(Text, nullable=True)
    character_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    generated_scenes: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)
