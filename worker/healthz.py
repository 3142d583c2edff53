from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from worker.config.settings import Settings, SettingsDep
from worker.core.exceptions import create_success_response
from worker.infra.database import get_session

router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class ProcessorStatus(BaseModel):
    """In-process job processor status."""

    enabled: bool
    running: bool = False
    status: str = "disabled"
    message: str | None = None
    active_jobs: int = 0
    capacity: int = 0
    metrics: dict[str, Any] | None = None


@router.get("/healthz", response_model=dict)
async def health_check(
    request: Request,
    settings: Settings = SettingsDep,
    session: AsyncSession = Depends(get_session),
):
    """Health check endpoint with database and processor status."""

    timestamp = datetime.now(UTC).isoformat()

    db_health = await _check_database_health(session)
    processor_status = _check_processor(request)

    overall_ok = db_health.connected and processor_status.status != "unhealthy"

    health_data = {
        "ok": overall_ok,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": timestamp,
        "database": db_health.model_dump(),
        "processor": processor_status.model_dump(),
    }

    return create_success_response(data=health_data)


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))


def _check_processor(request: Request) -> ProcessorStatus:
    processor = getattr(request.app.state, "processor", None)
    if processor is None:
        return ProcessorStatus(enabled=False)

    snapshot = processor.snapshot()
    return ProcessorStatus(
        enabled=True,
        running=snapshot["running"],
        status=snapshot["health"]["status"],
        message=snapshot["health"]["message"],
        active_jobs=snapshot["active_jobs"],
        capacity=snapshot["capacity"],
        metrics=snapshot["metrics"],
    )
