from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from worker.config.logging import get_logger, setup_logging
from worker.config.settings import Settings, get_settings, settings
from worker.core.exceptions import (
    RequestContextMiddleware,
    WorkerException,
    general_exception_handler,
    http_exception_handler,
    worker_exception_handler,
)
from worker.healthz import router as health_router
from worker.infra.database import Database
from worker.jobs.collaborators import build_collaborator
from worker.jobs.processor import JobProcessor
from worker.jobs.registry_init import build_handler_registry
from worker.jobs.routes import router as jobs_router
from worker.jobs.service import JobService
from worker.jobs.store import JobStore

logger = get_logger(__name__)


def build_lifespan(app_settings: Settings):
    """Lifespan that wires database, store, handlers, processor and service."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database = Database(app_settings)
        if app_settings.database_auto_create:
            await database.create_all()

        store = JobStore(
            database.SessionLocal, default_max_retries=app_settings.default_max_retries
        )
        collaborator = build_collaborator(app_settings)
        handlers = build_handler_registry(collaborator)

        processor = None
        if app_settings.processor_enabled:
            processor = JobProcessor(store, handlers, app_settings)

        app.state.database = database
        app.state.job_store = store
        app.state.processor = processor
        app.state.job_service = JobService(
            store, cleanup_after_days=app_settings.job_cleanup_after_days
        )

        if processor is not None:
            processor.start()

        try:
            yield
        finally:
            if processor is not None:
                await processor.stop()
            aclose = getattr(collaborator, "aclose", None)
            if aclose is not None:
                await aclose()
            await database.close()
            logger.info("Worker shut down")

    return lifespan


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app_settings = app_settings or settings

    # Initialize structured logging
    setup_logging(app_settings)

    app = FastAPI(
        title=app_settings.app_name,
        description="Background generation job orchestration",
        version=app_settings.version,
        debug=app_settings.debug,
        lifespan=build_lifespan(app_settings),
        # All endpoints are under the /v1/ prefix
        openapi_url="/v1/openapi.json" if app_settings.debug else None,
        docs_url="/v1/docs" if app_settings.debug else None,
        redoc_url="/v1/redoc" if app_settings.debug else None,
    )

    if app_settings is not settings:
        app.dependency_overrides[get_settings] = lambda: app_settings

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if app_settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(WorkerException, worker_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "worker.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
