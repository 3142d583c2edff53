"""
Job service: the external contract for creating and inspecting jobs.
"""

from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from worker.config.logging import get_logger
from worker.core.exceptions import ValidationError
from worker.jobs.models import JobKind
from worker.jobs.schemas import INPUT_MODELS, JobFilter, JobStatsResponse, JobView
from worker.jobs.store import JobStore

logger = get_logger(__name__)


class JobService:
    """Create, read, list and cancel generation jobs."""

    def __init__(self, store: JobStore, cleanup_after_days: int = 30):
        self.store = store
        self.cleanup_after_days = cleanup_after_days

    def parse_input(self, kind: JobKind, data: dict[str, Any]) -> BaseModel:
        """Validate raw input against the kind's input model."""
        try:
            return INPUT_MODELS[kind].model_validate({**data, "kind": kind.value})
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid input for {kind.value} job",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

    async def create(
        self,
        kind: JobKind,
        input_data: BaseModel,
        owner_id: str | None = None,
        max_retries: int | None = None,
    ) -> str | None:
        """
        Create a pending job.

        Returns:
            The new job id, or None when the job could not be stored
        """
        job_id = await self.store.create(kind, input_data, owner_id, max_retries)
        if job_id is None:
            logger.error("Job creation failed", kind=kind.value, owner_id=owner_id)
        return job_id

    async def get(self, job_id: str) -> JobView | None:
        return await self.store.find_by_id(job_id)

    async def list(self, job_filter: JobFilter | None = None) -> list[JobView]:
        return await self.store.list_jobs(job_filter)

    async def cancel(self, job_id: str) -> bool:
        """Cancel a pending or processing job. A running handler is not stopped."""
        return await self.store.cancel(job_id)

    async def stats(self, owner_id: str | None = None) -> JobStatsResponse:
        return await self.store.get_stats(owner_id)

    async def cleanup(self, older_than_days: int | None = None) -> int:
        """Delete terminal jobs older than the retention window."""
        days = older_than_days if older_than_days is not None else self.cleanup_after_days
        return await self.store.cleanup_old_jobs(days)
