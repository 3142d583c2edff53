"""
Job API endpoints.

Create, inspect, list and cancel generation jobs. Execution happens in the
background processor; these endpoints only touch the store.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from worker.config.logging import get_logger
from worker.core.exceptions import NotFoundError, create_success_response
from worker.jobs.models import JobKind, JobStatus
from worker.jobs.schemas import JobCreateRequest, JobCreateResponse, JobFilter
from worker.jobs.service import JobService

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_job_service(request: Request) -> JobService:
    """Return the job service constructed by the application lifespan."""
    return request.app.state.job_service


@router.post("", response_model=dict)
async def create_job(
    job_request: JobCreateRequest,
    service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """Create a pending generation job."""

    input_data = service.parse_input(job_request.kind, job_request.input_data)
    job_id = await service.create(
        job_request.kind,
        input_data,
        owner_id=job_request.owner_id,
        max_retries=job_request.max_retries,
    )

    if job_id is None:
        raise HTTPException(status_code=503, detail="Failed to create job")

    logger.info("Job created via API", job_id=job_id, kind=job_request.kind.value)

    response = JobCreateResponse(
        job_id=job_id, kind=job_request.kind, status=JobStatus.PENDING
    )
    return create_success_response(data=response.model_dump(mode="json"))


@router.get("", response_model=dict)
async def list_jobs(
    owner_id: str | None = Query(default=None, description="Filter by owner"),
    kind: JobKind | None = Query(default=None, description="Filter by job kind"),
    status: JobStatus | None = Query(default=None, description="Filter by status"),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """List jobs across all kinds, newest first."""

    job_filter = JobFilter(owner_id=owner_id, kind=kind, status=status, limit=limit)
    jobs = await service.list(job_filter)

    return create_success_response(
        data={
            "jobs": [job.model_dump(mode="json") for job in jobs],
            "count": len(jobs),
            "limit": limit,
        }
    )


@router.get("/stats", response_model=dict)
async def get_job_stats(
    owner_id: str | None = Query(default=None, description="Filter by owner"),
    service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """Job counts per status and per kind."""

    stats = await service.stats(owner_id)
    return create_success_response(data=stats.model_dump())


@router.post("/cleanup", response_model=dict)
async def cleanup_jobs(
    older_than_days: int | None = Query(
        default=None, ge=1, description="Retention in days"
    ),
    service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """Delete terminal jobs older than the retention window."""

    deleted = await service.cleanup(older_than_days)
    return create_success_response(data={"deleted": deleted})


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: str,
    service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """Get a specific job by ID."""

    job = await service.get(job_id)
    if job is None:
        raise NotFoundError("Job not found", details={"job_id": job_id})

    return create_success_response(data=job.model_dump(mode="json"))


@router.post("/{job_id}/cancel", response_model=dict)
async def cancel_job(
    job_id: str,
    service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """Cancel a pending or processing job."""

    if not await service.cancel(job_id):
        raise HTTPException(
            status_code=404, detail="Job not found or not eligible for cancellation"
        )

    logger.info("Job cancelled via API", job_id=job_id)
    return create_success_response(data={"success": True, "job_id": job_id})
