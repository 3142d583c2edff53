"""
Job state machine.

    pending --(progress > 0)--> processing --(success)--> completed
    processing --(retryable failure)--> pending
    processing --(terminal failure)--> failed
    processing --(shutdown)--> pending
    pending | processing --(cancel)--> cancelled

Every function here is pure: it takes the current job record and returns the
column values to write, or ``None`` when the transition is not allowed. The
store owns the actual writes.
"""

from datetime import datetime
from typing import Any, NamedTuple

from worker.jobs.models import JobStatus
from worker.jobs.schemas import JobView

COMPLETED_STEP = "Completed successfully"
FAILED_STEP = "Failed after retries"
CANCELLED_STEP = "Cancelled by user"
INTERRUPTED_STEP = "Requeued after processor shutdown"


class FailureTransition(NamedTuple):
    values: dict[str, Any]
    requeued: bool


def clamp_progress(progress: int) -> int:
    return max(0, min(100, int(progress)))


def retry_step(retry_count: int, max_retries: int) -> str:
    return f"Retrying ({retry_count}/{max_retries})"


def progress_update(
    job: JobView, progress: int, step: str | None, now: datetime
) -> dict[str, Any] | None:
    """Column values for a progress report, or None if the job is terminal."""
    if job.is_terminal:
        return None

    value = clamp_progress(progress)
    if job.status == JobStatus.PROCESSING:
        # progress never moves backwards while processing
        value = max(value, job.progress)

    values: dict[str, Any] = {"progress": value, "updated_at": now}
    if step:
        values["current_step"] = step

    if value > 0:
        values["status"] = JobStatus.PROCESSING.value
        if job.started_at is None:
            values["started_at"] = now

    return values


def completion_update(job: JobView, now: datetime) -> dict[str, Any] | None:
    """Column values for a successful finish, or None if already completed."""
    if job.status == JobStatus.COMPLETED:
        return None

    values: dict[str, Any] = {
        "status": JobStatus.COMPLETED.value,
        "progress": 100,
        "current_step": COMPLETED_STEP,
        "completed_at": now,
        "updated_at": now,
    }
    if job.started_at is None:
        values["started_at"] = now
    return values


def failure_update(
    job: JobView, message: str, retryable: bool, now: datetime
) -> FailureTransition | None:
    """
    Column values for a failed run, or None if the job already finished.

    The job goes back to pending only when retry was requested, the job was
    not cancelled meanwhile, and ``retry_count + 1 <= max_retries``. Otherwise
    it becomes terminally failed; when retries were exhausted the stored
    retry_count is capped at max_retries. A cancelled job may still be marked
    failed.
    """
    if job.status in (JobStatus.COMPLETED, JobStatus.FAILED):
        return None

    new_count = job.retry_count + 1
    exhausted = new_count > job.max_retries
    can_retry = retryable and not exhausted and job.status != JobStatus.CANCELLED

    if can_retry:
        return FailureTransition(
            values={
                "status": JobStatus.PENDING.value,
                "progress": 0,
                "retry_count": new_count,
                "current_step": retry_step(new_count, job.max_retries),
                "error_message": message,
                "updated_at": now,
            },
            requeued=True,
        )

    stored_count = min(new_count, job.max_retries) if retryable and exhausted else new_count
    return FailureTransition(
        values={
            "status": JobStatus.FAILED.value,
            "retry_count": stored_count,
            "current_step": FAILED_STEP,
            "error_message": message,
            "completed_at": now,
            "updated_at": now,
        },
        requeued=False,
    )


def interruption_update(
    job: JobView, message: str, now: datetime
) -> dict[str, Any] | None:
    """
    Column values for a run cut short by processor shutdown.

    The job goes back to pending without spending a retry. None if the job is
    already terminal.
    """
    if job.is_terminal:
        return None

    return {
        "status": JobStatus.PENDING.value,
        "progress": 0,
        "current_step": INTERRUPTED_STEP,
        "error_message": message,
        "updated_at": now,
    }


def cancel_update(job: JobView, now: datetime) -> dict[str, Any] | None:
    """Column values for an external cancel, or None if the job is terminal."""
    if job.status not in (JobStatus.PENDING, JobStatus.PROCESSING):
        return None

    return {
        "status": JobStatus.CANCELLED.value,
        "current_step": CANCELLED_STEP,
        "completed_at": now,
        "updated_at": now,
    }
