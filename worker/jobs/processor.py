"""
Bounded in-process job processor.

Periodically scans the store for pending jobs, admits up to
``max_concurrent_jobs`` of them and runs each one as its own asyncio task.
Delivery is at-least-once: there is no cross-process claim, so two processors
sharing a database can run the same job.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from worker.config.logging import bind_job_context, get_logger
from worker.config.settings import Settings
from worker.core.exceptions import JobTimeoutError
from worker.core.registries import JobHandlerRegistry
from worker.jobs.classifier import classify_failure, should_retry
from worker.jobs.handlers import ProgressReporter
from worker.jobs.metrics import ProcessorHealth, ProcessorMetrics
from worker.jobs.models import JobKind, JobStatus
from worker.jobs.schemas import JobView

logger = get_logger(__name__)

STARTING_STEP = "Starting generation job"


@dataclass
class AdmittedJob:
    job_id: str
    kind: JobKind
    start_time: float
    collaborators: set[str] = field(default_factory=set)


@dataclass
class ScanResult:
    skipped: bool = False
    reason: str | None = None
    fetched: int = 0
    admitted: list[str] = field(default_factory=list)


class JobProcessor:
    """
    Scan, admit and dispatch generation jobs.

    The admission map is only mutated synchronously between awaits, so it
    never holds more than ``max_concurrent_jobs`` entries.
    """

    def __init__(
        self,
        store: Any,
        handlers: JobHandlerRegistry,
        settings: Settings,
        metrics: ProcessorMetrics | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.handlers = handlers
        self.settings = settings
        self.metrics = metrics or ProcessorMetrics()
        self._clock = clock
        self._admitted: dict[str, AdmittedJob] = {}
        self._tasks: set[asyncio.Task] = set()
        self._loops: list[asyncio.Task] = []
        self._scanning = False
        self.running = False

    @property
    def capacity(self) -> int:
        return self.settings.max_concurrent_jobs

    @property
    def active_jobs(self) -> dict[str, AdmittedJob]:
        return dict(self._admitted)

    @property
    def in_flight(self) -> set[asyncio.Task]:
        return set(self._tasks)

    async def scan_once(self) -> ScanResult:
        """Fetch pending jobs and dispatch as many as there are free slots."""
        if self._scanning:
            return ScanResult(skipped=True, reason="scan already running")
        if len(self._admitted) >= self.capacity:
            logger.debug("At capacity, skipping scan", active=len(self._admitted))
            return ScanResult(skipped=True, reason="at capacity")

        self._scanning = True
        try:
            jobs = await self.store.list_pending(limit=self.settings.job_fetch_batch_size)
            result = ScanResult(fetched=len(jobs))

            for job in jobs:
                if job.id in self._admitted:
                    continue
                if len(self._admitted) >= self.capacity:
                    break
                self._admit(job)
                result.admitted.append(job.id)

            self.metrics.record_peak(len(self._admitted))
            if result.admitted:
                logger.info(
                    "Dispatched jobs",
                    job_ids=result.admitted,
                    active=len(self._admitted),
                    capacity=self.capacity,
                )
            return result
        except Exception as e:
            logger.exception("Job scan failed", error=str(e))
            return ScanResult(skipped=True, reason="scan failed")
        finally:
            self._scanning = False

    def _admit(self, job: JobView) -> None:
        entry = AdmittedJob(job_id=job.id, kind=job.kind, start_time=self._clock())
        self._admitted[job.id] = entry
        task = asyncio.create_task(self._run_job(job, entry), name=f"job-{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_job(self, job: JobView, entry: AdmittedJob) -> None:
        bind_job_context(job.id, job.kind.value)
        collaborator: str | None = None
        try:
            if job.status == JobStatus.PENDING:
                if not await self.store.update_progress(job.id, 1, STARTING_STEP):
                    logger.info("Job no longer runnable, skipping", job_id=job.id)
                    return

            handler = self.handlers.get(job.kind.value)
            collaborator = handler.collaborator_name
            entry.collaborators.add(collaborator)
            self.metrics.record_usage(collaborator)

            reporter = ProgressReporter(self.store, job.id)
            result = await asyncio.wait_for(
                handler.handle(job, reporter), timeout=self.settings.job_timeout_s
            )

            if not await self.store.mark_completed(job.id, result):
                logger.error("Could not record job completion", job_id=job.id)
            self.metrics.record_success()
            logger.info("Job completed", job_id=job.id, kind=job.kind.value)

        except asyncio.CancelledError:
            logger.warning("Job interrupted by processor shutdown", job_id=job.id)
            await self.store.requeue_interrupted(job.id, "Interrupted by processor shutdown")
            raise

        except Exception as e:
            error: Exception = e
            if isinstance(e, TimeoutError) and not str(e):
                error = JobTimeoutError(
                    f"Job timed out after {self.settings.job_timeout_s}s",
                    collaborator=collaborator,
                )
            await self._record_failure(job, error, collaborator)

        finally:
            if self._admitted.get(job.id) is entry:
                del self._admitted[job.id]

    async def _record_failure(
        self, job: JobView, error: Exception, collaborator: str | None
    ) -> None:
        classification = classify_failure(error, collaborator)
        retryable = should_retry(classification.category)
        message = str(error) or error.__class__.__name__

        self.metrics.record_failure(classification.category, collaborator)
        logger.warning(
            "Job failed",
            job_id=job.id,
            kind=job.kind.value,
            category=classification.category.value,
            matched_rule=classification.matched_rule,
            retryable=retryable,
            error=message,
        )

        if not await self.store.mark_failed(job.id, message, retryable=retryable):
            logger.error("Could not record job failure", job_id=job.id)

    def sweep_stale(self, now: float | None = None) -> list[str]:
        """
        Drop admission entries older than the stale threshold.

        Bookkeeping only: the job's task keeps running.
        """
        now = self._clock() if now is None else now
        threshold = self.settings.stale_job_threshold_s
        stale = [
            job_id
            for job_id, entry in self._admitted.items()
            if now - entry.start_time > threshold
        ]
        for job_id in stale:
            del self._admitted[job_id]

        if stale:
            logger.warning(
                "Cleared stale admission entries", job_ids=stale, threshold_s=threshold
            )
        return stale

    def get_health(self, now: float | None = None) -> ProcessorHealth:
        return self.metrics.health(len(self._admitted), self.capacity, now)

    def is_healthy(self) -> bool:
        return self.get_health().is_healthy

    def snapshot(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "active_jobs": len(self._admitted),
            "capacity": self.capacity,
            "health": self.get_health().to_dict(),
            "metrics": self.metrics.snapshot(),
        }

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight jobs. Returns False if some are still running."""
        if not self._tasks:
            return True
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        return not pending

    def start(self) -> None:
        """Start the scan, stale sweep and health loops in the background."""
        if self.running:
            raise RuntimeError("Processor is already running")

        self.running = True
        self._loops = [
            asyncio.create_task(self._scan_loop(), name="job-scan"),
            asyncio.create_task(self._stale_sweep_loop(), name="job-stale-sweep"),
            asyncio.create_task(self._health_loop(), name="job-health"),
        ]
        logger.info(
            "Started job processor",
            capacity=self.capacity,
            scan_interval_s=self.settings.job_scan_interval_s,
            job_timeout_s=self.settings.job_timeout_s,
        )

    async def stop(self) -> None:
        """Stop the loops and give in-flight jobs a grace period to finish."""
        if not self.running:
            return

        logger.info("Stopping job processor", active_jobs=len(self._tasks))
        self.running = False
        for loop in self._loops:
            loop.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []

        if not await self.drain(timeout=self.settings.graceful_shutdown_s):
            remaining = list(self._tasks)
            logger.warning("Cancelling unfinished jobs", active_jobs=len(remaining))
            for task in remaining:
                task.cancel()
            await asyncio.gather(*remaining, return_exceptions=True)

    async def _scan_loop(self) -> None:
        await asyncio.sleep(self.settings.initial_scan_delay_s)
        while self.running:
            try:
                health = self.get_health()
                if health.is_healthy:
                    await self.scan_once()
                else:
                    logger.warning(
                        "Processor unhealthy, skipping job scan", **health.to_dict()
                    )
            except Exception:
                logger.exception("Error in scan loop")
            await asyncio.sleep(self.settings.job_scan_interval_s)

    async def _stale_sweep_loop(self) -> None:
        while self.running:
            await asyncio.sleep(self.settings.stale_sweep_interval_s)
            self.sweep_stale()

    async def _health_loop(self) -> None:
        while self.running:
            await asyncio.sleep(self.settings.health_recovery_interval_s)
            self.metrics.check_auto_recovery()
