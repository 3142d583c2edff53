import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from worker.config.settings import Settings
from worker.infra.database import Database
from worker.jobs import tracker
from worker.jobs.collaborators import StubGenerationCollaborator
from worker.jobs.models import JobKind, JobStatus
from worker.jobs.schemas import JobView
from worker.jobs.store import JobStore


class FakeClock:
    """UTC clock that moves forward one second every time it is read."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryJobStore:
    """Store double for processor tests. Applies the same state transitions."""

    def __init__(self):
        self.jobs: dict[str, JobView] = {}
        self.progress_calls: list[tuple[str, int, str | None]] = []
        self._clock = FakeClock()
        self._counter = 0

    def add(self, input_data, status: JobStatus = JobStatus.PENDING, **fields) -> JobView:
        self._counter += 1
        now = self._clock()
        job = JobView(
            id=f"job-{self._counter}",
            kind=JobKind(input_data.kind),
            status=status,
            created_at=now,
            updated_at=now,
            input_data=input_data,
            **fields,
        )
        self.jobs[job.id] = job
        return job

    def _apply(self, job_id: str, values: dict) -> None:
        values = dict(values)
        if "status" in values:
            values["status"] = JobStatus(values["status"])
        self.jobs[job_id] = self.jobs[job_id].model_copy(update=values)

    async def list_pending(self, job_filter=None, limit: int = 50) -> list[JobView]:
        pending = [j for j in self.jobs.values() if j.status == JobStatus.PENDING]
        return sorted(pending, key=lambda j: j.created_at)[:limit]

    async def find_by_id(self, job_id: str) -> JobView | None:
        return self.jobs.get(job_id)

    async def update_progress(self, job_id: str, progress: int, step: str | None = None) -> bool:
        self.progress_calls.append((job_id, progress, step))
        job = self.jobs.get(job_id)
        if job is None:
            return False
        values = tracker.progress_update(job, progress, step, self._clock())
        if values is None:
            return False
        self._apply(job_id, values)
        return True

    async def mark_completed(self, job_id: str, result) -> bool:
        job = self.jobs.get(job_id)
        if job is None:
            return False
        values = tracker.completion_update(job, self._clock())
        if values is None:
            return True
        values["result_data"] = result
        self._apply(job_id, values)
        return True

    async def mark_failed(self, job_id: str, message: str, retryable: bool = False) -> bool:
        job = self.jobs.get(job_id)
        if job is None:
            return False
        transition = tracker.failure_update(job, message, retryable, self._clock())
        if transition is None:
            return False
        self._apply(job_id, transition.values)
        return True

    async def requeue_interrupted(self, job_id: str, reason: str) -> bool:
        job = self.jobs.get(job_id)
        if job is None:
            return False
        values = tracker.interruption_update(job, reason, self._clock())
        if values is None:
            return False
        self._apply(job_id, values)
        return True

    async def cancel(self, job_id: str) -> bool:
        job = self.jobs.get(job_id)
        if job is None:
            return False
        values = tracker.cancel_update(job, self._clock())
        if values is None:
            return False
        self._apply(job_id, values)
        return True


class GatedCollaborator:
    """Collaborator that blocks until released, then returns stub results."""

    name = "ai"

    def __init__(self):
        self.tokens: asyncio.Queue = asyncio.Queue()
        self.started: list[str] = []
        self._stub = StubGenerationCollaborator()

    def release(self, count: int = 1) -> None:
        for _ in range(count):
            self.tokens.put_nowait(None)

    async def generate(self, data, progress):
        self.started.append(data.kind)
        await progress(40, "Waiting for release")
        await self.tokens.get()
        return await self._stub.generate(data, progress)


class FailingCollaborator:
    name = "ai"

    def __init__(self, error: Exception):
        self.error = error
        self.calls = 0

    async def generate(self, data, progress):
        self.calls += 1
        raise self.error


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll until predicate() is true."""

    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}",
        database_auto_create=True,
        processor_enabled=False,
        max_concurrent_jobs=5,
        job_timeout_s=5.0,
        graceful_shutdown_s=2,
    )


@pytest.fixture
async def database(test_settings):
    db = Database(test_settings)
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(database, clock) -> JobStore:
    return JobStore(database.SessionLocal, clock=clock)


@pytest.fixture
def memory_store() -> InMemoryJobStore:
    return InMemoryJobStore()
