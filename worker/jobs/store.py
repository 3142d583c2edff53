"""
Job store and kind router.

Translates between the unified JobView and the per-kind job tables. The kind
of a job cannot be derived from its id, so every id-based operation probes the
kind tables in a fixed order until it finds the row. Storage errors are logged
and reported as ``False``/``None``/``[]``; they never escape this module.
"""

import math
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from worker.config.logging import get_logger
from worker.core.exceptions import StoreError
from worker.infra.database import Base
from worker.jobs import tracker
from worker.jobs.models import (
    TERMINAL_STATUSES,
    AutoStoryJob,
    CartoonizeJob,
    ImageGenerationJob,
    JobKind,
    JobStatus,
    SceneGenerationJob,
    StorybookJob,
)
from worker.jobs.schemas import (
    INPUT_MODELS,
    RESULT_MODELS,
    JobFilter,
    JobStatsResponse,
    JobView,
)

logger = get_logger(__name__)

_STATUS_VALUES = frozenset(status.value for status in JobStatus)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything we write is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class KindCodec:
    """Maps one job kind to its table and converts its payload columns."""

    def __init__(
        self,
        kind: JobKind,
        table: type[Base],
        initial_step: str,
        input_columns: dict[str, str],
        result_columns: dict[str, str],
        result_marker: str,
    ):
        self.kind = kind
        self.table = table
        self.initial_step = initial_step
        self.input_columns = input_columns
        self.result_columns = result_columns
        self.result_marker = result_marker

    @property
    def table_name(self) -> str:
        return self.table.__tablename__

    def input_to_row(self, data: BaseModel) -> dict[str, Any]:
        return {
            column: getattr(data, field) for field, column in self.input_columns.items()
        }

    def row_to_input(self, row: Any) -> BaseModel:
        values = {
            field: getattr(row, column)
            for field, column in self.input_columns.items()
            if getattr(row, column) is not None
        }
        return INPUT_MODELS[self.kind].model_validate(values)

    def result_to_row(self, result: BaseModel) -> dict[str, Any]:
        return {
            column: getattr(result, field)
            for field, column in self.result_columns.items()
        }

    def row_to_result(self, row: Any) -> BaseModel | None:
        if getattr(row, self.result_marker) is None:
            return None
        values = {
            field: getattr(row, column)
            for field, column in self.result_columns.items()
            if getattr(row, column) is not None
        }
        return RESULT_MODELS[self.kind].model_validate(values)


class CartoonizeCodec(KindCodec):
    """A cached cartoon is recorded by copying its url to final_cloudinary_url."""

    def result_to_row(self, result: BaseModel) -> dict[str, Any]:
        values = {"generated_image_url": result.url}
        if result.cached:
            values["final_cloudinary_url"] = result.url
        return values

    def row_to_result(self, row: Any) -> BaseModel | None:
        if row.generated_image_url is None:
            return None
        return RESULT_MODELS[self.kind].model_validate(
            {"url": row.generated_image_url, "cached": bool(row.final_cloudinary_url)}
        )


class ImageGenerationCodec(KindCodec):
    def row_to_result(self, row: Any) -> BaseModel | None:
        if row.generated_image_url is None:
            return None
        return RESULT_MODELS[self.kind].model_validate(
            {
                "url": row.generated_image_url,
                "prompt_used": row.final_prompt_used or row.image_prompt,
                "reused": bool(row.is_reused_image),
            }
        )


# Dict order is the probe order used to resolve an id to its kind
CODECS: dict[JobKind, KindCodec] = {
    JobKind.CARTOONIZE: CartoonizeCodec(
        kind=JobKind.CARTOONIZE,
        table=CartoonizeJob,
        initial_step="Initializing image cartoonization",
        input_columns={
            "prompt": "original_image_data",
            "style": "style",
            "image_url": "original_cloudinary_url",
        },
        result_columns={"url": "generated_image_url"},
        result_marker="generated_image_url",
    ),
    JobKind.AUTO_STORY: KindCodec(
        kind=JobKind.AUTO_STORY,
        table=AutoStoryJob,
        initial_step="Initializing auto-story generation",
        input_columns={
            "genre": "genre",
            "character_description": "character_description",
            "cartoon_image_url": "cartoon_image_url",
            "audience": "audience",
        },
        result_columns={
            "storybook_id": "storybook_entry_id",
            "generated_story": "generated_story",
        },
        result_marker="storybook_entry_id",
    ),
    JobKind.IMAGE_GENERATION: ImageGenerationCodec(
        kind=JobKind.IMAGE_GENERATION,
        table=ImageGenerationJob,
        initial_step="Initializing image generation",
        input_columns={
            "image_prompt": "image_prompt",
            "character_description": "character_description",
            "emotion": "emotion",
            "audience": "audience",
            "is_reused_image": "is_reused_image",
            "cartoon_image": "cartoon_image",
            "style": "style",
        },
        result_columns={
            "url": "generated_image_url",
            "prompt_used": "final_prompt_used",
        },
        result_marker="generated_image_url",
    ),
    JobKind.STORYBOOK: KindCodec(
        kind=JobKind.STORYBOOK,
        table=StorybookJob,
        initial_step="Initializing storybook generation",
        input_columns={
            "title": "title",
            "story": "story",
            "character_image": "character_image",
            "pages": "pages",
            "audience": "audience",
            "is_reused_image": "is_reused_image",
        },
        result_columns={
            "storybook_id": "storybook_entry_id",
            "pages": "processed_pages",
        },
        result_marker="storybook_entry_id",
    ),
    JobKind.SCENES: KindCodec(
        kind=JobKind.SCENES,
        table=SceneGenerationJob,
        initial_step="Initializing scene generation",
        input_columns={
            "story": "story",
            "character_image": "character_image",
            "audience": "audience",
        },
        result_columns={
            "pages": "generated_scenes",
            "character_description": "character_description",
        },
        result_marker="generated_scenes",
    ),
}

_missing_codecs = set(JobKind) - set(CODECS)
if _missing_codecs:
    raise RuntimeError(f"No store codec for job kinds: {sorted(_missing_codecs)}")


def utc_now() -> datetime:
    return datetime.now(UTC)


class JobStore:
    """Single point of translation between JobView and the per-kind tables."""

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utc_now,
        default_max_retries: int = 3,
    ):
        self._sessions = sessions
        self._clock = clock
        self.default_max_retries = default_max_retries

    @property
    def kind_count(self) -> int:
        return len(CODECS)

    def _to_view(self, codec: KindCodec, row: Any) -> JobView:
        return JobView(
            id=row.id,
            kind=codec.kind,
            status=JobStatus(row.status or JobStatus.PENDING.value),
            progress=row.progress or 0,
            current_step=row.current_step,
            owner_id=row.user_id,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
            started_at=_aware(row.started_at),
            completed_at=_aware(row.completed_at),
            error_message=row.error_message,
            retry_count=row.retry_count or 0,
            max_retries=(
                row.max_retries if row.max_retries is not None else self.default_max_retries
            ),
            input_data=codec.row_to_input(row),
            result_data=codec.row_to_result(row),
        )

    async def _probe(self, codec: KindCodec, job_id: str) -> JobView | None:
        try:
            async with self._sessions() as session:
                result = await session.execute(
                    select(codec.table).where(codec.table.id == job_id)
                )
                row = result.scalar_one_or_none()
                return self._to_view(codec, row) if row is not None else None
        except (SQLAlchemyError, PydanticValidationError) as e:
            raise StoreError("Get job", codec.table_name, e) from e

    async def _resolve(self, job_id: str) -> tuple[KindCodec, JobView] | None:
        for codec in CODECS.values():
            try:
                job = await self._probe(codec, job_id)
            except StoreError as e:
                logger.error(
                    "Job lookup failed",
                    job_id=job_id,
                    table=e.table,
                    error=str(e.cause),
                )
                continue
            if job is not None:
                return codec, job
        return None

    async def find_by_id(self, job_id: str) -> JobView | None:
        """Find a job in whichever kind table holds it."""
        resolved = await self._resolve(job_id)
        if resolved is None:
            logger.info("Job not found", job_id=job_id)
            return None
        return resolved[1]

    async def _write(
        self, codec: KindCodec, job_id: str, values: dict[str, Any], operation: str
    ) -> bool:
        try:
            async with self._sessions() as session:
                result = await session.execute(
                    update(codec.table).where(codec.table.id == job_id).values(**values)
                )
                await session.commit()
                return result.rowcount > 0
        except SQLAlchemyError as e:
            error = StoreError(operation, codec.table_name, e)
            logger.error(
                "Job write failed",
                operation=operation,
                job_id=job_id,
                table=codec.table_name,
                error=str(error),
            )
            return False

    async def _select_many(
        self,
        codec: KindCodec,
        operation: str,
        *,
        status: JobStatus | None,
        owner_id: str | None,
        limit: int,
        oldest_first: bool,
    ) -> list[JobView]:
        table = codec.table
        query = select(table)
        if status is not None:
            query = query.where(table.status == status.value)
        if owner_id:
            query = query.where(table.user_id == owner_id)
        order = table.created_at.asc() if oldest_first else table.created_at.desc()
        query = query.order_by(order).limit(limit)

        try:
            async with self._sessions() as session:
                result = await session.execute(query)
                return [self._to_view(codec, row) for row in result.scalars().all()]
        except (SQLAlchemyError, PydanticValidationError) as e:
            error = StoreError(operation, codec.table_name, e)
            logger.error(
                "Job listing failed",
                operation=operation,
                table=codec.table_name,
                error=str(error),
            )
            return []

    def _codecs_for(self, job_filter: JobFilter) -> list[KindCodec]:
        if job_filter.kind is not None:
            return [CODECS[job_filter.kind]]
        return list(CODECS.values())

    async def create(
        self,
        kind: JobKind,
        input_data: BaseModel,
        owner_id: str | None = None,
        max_retries: int | None = None,
    ) -> str | None:
        """Insert a pending job into its kind table and return the new id."""
        codec = CODECS[kind]
        job_id = str(uuid4())
        now = self._clock()
        row = codec.table(
            id=job_id,
            user_id=owner_id,
            status=JobStatus.PENDING.value,
            progress=0,
            current_step=codec.initial_step,
            retry_count=0,
            max_retries=(
                max_retries if max_retries is not None else self.default_max_retries
            ),
            created_at=now,
            updated_at=now,
            **codec.input_to_row(input_data),
        )

        try:
            async with self._sessions() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Job create failed",
                kind=kind.value,
                table=codec.table_name,
                error=str(StoreError("Create job", codec.table_name, e)),
            )
            return None

        logger.info("Job created", job_id=job_id, kind=kind.value, owner_id=owner_id)
        return job_id

    async def list_pending(
        self, job_filter: JobFilter | None = None, limit: int = 50
    ) -> list[JobView]:
        """
        Pending jobs, approximately oldest first.

        Each kind table contributes up to ceil(limit / kind_count) rows; the
        merged list is re-sorted by created_at and truncated to ``limit``.
        """
        job_filter = job_filter or JobFilter()
        per_kind = math.ceil(limit / self.kind_count)

        jobs: list[JobView] = []
        for codec in self._codecs_for(job_filter):
            jobs.extend(
                await self._select_many(
                    codec,
                    "Get pending jobs",
                    status=JobStatus.PENDING,
                    owner_id=job_filter.owner_id,
                    limit=per_kind,
                    oldest_first=True,
                )
            )

        jobs.sort(key=lambda job: job.created_at)
        selected = jobs[:limit]
        logger.debug("Retrieved pending jobs", count=len(selected))
        return selected

    async def list_jobs(self, job_filter: JobFilter | None = None) -> list[JobView]:
        """Jobs across every kind table, newest first."""
        job_filter = job_filter or JobFilter()
        per_kind = math.ceil(job_filter.limit / self.kind_count)

        jobs: list[JobView] = []
        for codec in self._codecs_for(job_filter):
            jobs.extend(
                await self._select_many(
                    codec,
                    "Get jobs",
                    status=job_filter.status,
                    owner_id=job_filter.owner_id,
                    limit=per_kind,
                    oldest_first=False,
                )
            )

        jobs.sort(key=lambda job: job.created_at, reverse=True)
        return jobs[: job_filter.limit]

    async def update_progress(
        self, job_id: str, progress: int, current_step: str | None = None
    ) -> bool:
        resolved = await self._resolve(job_id)
        if resolved is None:
            logger.error("Cannot update progress - job not found", job_id=job_id)
            return False

        codec, job = resolved
        values = tracker.progress_update(job, progress, current_step, self._clock())
        if values is None:
            logger.warning(
                "Ignoring progress for terminal job",
                job_id=job_id,
                status=job.status.value,
            )
            return False

        written = await self._write(codec, job_id, values, "Update job progress")
        if written:
            logger.debug(
                "Updated job progress", job_id=job_id, progress=values["progress"]
            )
        return written

    async def mark_completed(self, job_id: str, result: BaseModel | None) -> bool:
        resolved = await self._resolve(job_id)
        if resolved is None:
            logger.error("Cannot mark completed - job not found", job_id=job_id)
            return False

        codec, job = resolved
        values = tracker.completion_update(job, self._clock())
        if values is None:
            logger.info("Job already completed", job_id=job_id)
            return True

        if job.status == JobStatus.CANCELLED:
            logger.warning("Completing a cancelled job", job_id=job_id)

        if result is not None:
            values.update(codec.result_to_row(result))

        written = await self._write(codec, job_id, values, "Mark job completed")
        if written:
            logger.info("Marked job completed", job_id=job_id, kind=codec.kind.value)
        return written

    async def mark_failed(
        self, job_id: str, error_message: str, retryable: bool = False
    ) -> bool:
        resolved = await self._resolve(job_id)
        if resolved is None:
            logger.error("Cannot mark failed - job not found", job_id=job_id)
            return False

        codec, job = resolved
        transition = tracker.failure_update(
            job, error_message, retryable, self._clock()
        )
        if transition is None:
            logger.warning(
                "Ignoring failure for finished job",
                job_id=job_id,
                status=job.status.value,
                error=error_message,
            )
            return False

        written = await self._write(codec, job_id, transition.values, "Mark job failed")
        if written:
            logger.info(
                "Job scheduled for retry" if transition.requeued else "Job marked as failed",
                job_id=job_id,
                retry_count=transition.values["retry_count"],
                max_retries=job.max_retries,
                error=error_message,
            )
        return written

    async def requeue_interrupted(self, job_id: str, reason: str) -> bool:
        """Put a job cut short by shutdown back to pending without using a retry."""
        resolved = await self._resolve(job_id)
        if resolved is None:
            logger.error("Cannot requeue - job not found", job_id=job_id)
            return False

        codec, job = resolved
        values = tracker.interruption_update(job, reason, self._clock())
        if values is None:
            logger.info(
                "Interrupted job already finished", job_id=job_id, status=job.status.value
            )
            return False

        written = await self._write(codec, job_id, values, "Requeue interrupted job")
        if written:
            logger.info(
                "Requeued interrupted job", job_id=job_id, retry_count=job.retry_count
            )
        return written

    async def cancel(self, job_id: str) -> bool:
        resolved = await self._resolve(job_id)
        if resolved is None:
            logger.error("Cannot cancel - job not found", job_id=job_id)
            return False

        codec, job = resolved
        values = tracker.cancel_update(job, self._clock())
        if values is None:
            logger.warning(
                "Cannot cancel job in terminal state",
                job_id=job_id,
                status=job.status.value,
            )
            return False

        written = await self._write(codec, job_id, values, "Cancel job")
        if written:
            logger.info("Cancelled job", job_id=job_id)
        return written

    async def get_stats(self, owner_id: str | None = None) -> JobStatsResponse:
        """Count jobs per status across every kind table."""
        stats = JobStatsResponse()
        for codec in CODECS.values():
            table = codec.table
            query = select(table.status, func.count(table.id)).group_by(table.status)
            if owner_id:
                query = query.where(table.user_id == owner_id)

            try:
                async with self._sessions() as session:
                    rows = (await session.execute(query)).all()
            except SQLAlchemyError as e:
                logger.error(
                    "Job stats failed",
                    table=codec.table_name,
                    error=str(StoreError("Get stats", codec.table_name, e)),
                )
                continue

            kind_total = 0
            for status, count in rows:
                kind_total += count
                if status in _STATUS_VALUES:
                    setattr(stats, status, getattr(stats, status) + count)
            stats.total += kind_total
            stats.by_kind[codec.kind.value] = kind_total

        return stats

    async def cleanup_old_jobs(self, older_than_days: int = 30) -> int:
        """Delete terminal jobs created before the retention cutoff."""
        cutoff = self._clock() - timedelta(days=older_than_days)
        terminal = [status.value for status in TERMINAL_STATUSES]

        total = 0
        for codec in CODECS.values():
            table = codec.table
            try:
                async with self._sessions() as session:
                    result = await session.execute(
                        delete(table).where(
                            table.created_at < cutoff, table.status.in_(terminal)
                        )
                    )
                    await session.commit()
                    total += result.rowcount or 0
            except SQLAlchemyError as e:
                logger.error(
                    "Job cleanup failed",
                    table=codec.table_name,
                    error=str(StoreError("Clean up old jobs", codec.table_name, e)),
                )

        if total > 0:
            logger.info(
                "Cleaned up old jobs", deleted_count=total, retention_days=older_than_days
            )
        return total
