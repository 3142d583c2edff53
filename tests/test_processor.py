import asyncio

import pytest
from conftest import FailingCollaborator, GatedCollaborator, wait_until

from worker.config.settings import Settings
from worker.core.exceptions import AIServiceError
from worker.jobs.metrics import ProcessorMetrics
from worker.jobs.models import JobStatus
from worker.jobs.processor import STARTING_STEP, JobProcessor
from worker.jobs.registry_init import build_handler_registry
from worker.jobs.schemas import CartoonizeInput, CartoonizeResult, SceneInput
from worker.jobs.tracker import COMPLETED_STEP, FAILED_STEP, INTERRUPTED_STEP


def make_processor(store, collaborator, clock=None, **overrides) -> JobProcessor:
    options = {"max_concurrent_jobs": 5, "job_timeout_s": 5.0, "graceful_shutdown_s": 1}
    options.update(overrides)
    kwargs = {"clock": clock} if clock is not None else {}
    return JobProcessor(
        store,
        build_handler_registry(collaborator),
        Settings(**options),
        metrics=ProcessorMetrics(),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_admission_is_capped_and_refills(memory_store):
    jobs = [memory_store.add(CartoonizeInput(prompt=f"fox {i}")) for i in range(6)]
    collaborator = GatedCollaborator()
    processor = make_processor(memory_store, collaborator)

    first = await processor.scan_once()

    assert first.admitted == [job.id for job in jobs[:5]]
    assert len(processor.active_jobs) == 5
    assert processor.metrics.concurrent_peak == 5

    second = await processor.scan_once()
    assert second.skipped is True
    assert second.reason == "at capacity"
    assert jobs[5].id not in processor.active_jobs

    collaborator.release(1)
    await wait_until(lambda: len(processor.active_jobs) == 4)

    third = await processor.scan_once()
    assert third.admitted == [jobs[5].id]
    assert len(processor.active_jobs) == 5

    collaborator.release(5)
    assert await processor.drain(timeout=2) is True
    assert processor.active_jobs == {}
    assert all(
        memory_store.jobs[job.id].status == JobStatus.COMPLETED for job in jobs
    )
    assert processor.metrics.successful == 6
    assert processor.metrics.concurrent_peak == 5


@pytest.mark.asyncio
async def test_successful_job_reports_progress_and_result(memory_store):
    job = memory_store.add(CartoonizeInput(prompt="a fox"))
    collaborator = GatedCollaborator()
    collaborator.release(1)
    processor = make_processor(memory_store, collaborator)

    await processor.scan_once()
    await processor.drain(timeout=2)

    stored = memory_store.jobs[job.id]
    assert stored.status == JobStatus.COMPLETED
    assert stored.progress == 100
    assert stored.current_step == COMPLETED_STEP
    assert isinstance(stored.result_data, CartoonizeResult)
    assert memory_store.progress_calls[0] == (job.id, 1, STARTING_STEP)
    assert processor.metrics.collaborator_usage == {"ai": 1}


@pytest.mark.asyncio
async def test_already_admitted_jobs_are_not_dispatched_twice(memory_store):
    job = memory_store.add(CartoonizeInput(prompt="a fox"))
    collaborator = GatedCollaborator()
    processor = make_processor(memory_store, collaborator)

    await processor.scan_once()
    # job went back to pending while its task is still admitted
    memory_store.jobs[job.id] = memory_store.jobs[job.id].model_copy(
        update={"status": JobStatus.PENDING}
    )
    again = await processor.scan_once()

    assert again.admitted == []
    collaborator.release(1)
    await processor.drain(timeout=2)
    assert collaborator.started == ["cartoonize"]


@pytest.mark.asyncio
async def test_cancel_in_flight_does_not_stop_handler(memory_store):
    job = memory_store.add(CartoonizeInput(prompt="a fox"))
    collaborator = GatedCollaborator()
    processor = make_processor(memory_store, collaborator)

    await processor.scan_once()
    await wait_until(lambda: collaborator.started)

    assert await memory_store.cancel(job.id) is True
    assert memory_store.jobs[job.id].status == JobStatus.CANCELLED

    collaborator.release(1)
    await processor.drain(timeout=2)

    # the handler ran to completion and its write landed last
    assert memory_store.jobs[job.id].status == JobStatus.COMPLETED
    assert processor.metrics.successful == 1


@pytest.mark.asyncio
async def test_validation_failure_is_not_retried(memory_store):
    job = memory_store.add(CartoonizeInput(prompt="", image_url=None))
    collaborator = GatedCollaborator()
    processor = make_processor(memory_store, collaborator)

    await processor.scan_once()
    await processor.drain(timeout=2)

    stored = memory_store.jobs[job.id]
    assert stored.status == JobStatus.FAILED
    assert stored.retry_count == 1
    assert stored.current_step == FAILED_STEP
    assert "prompt or image_url is required" in stored.error_message
    assert collaborator.started == []
    assert processor.metrics.failures.by_category == {"validation": 1}


@pytest.mark.asyncio
async def test_ai_service_failure_is_requeued(memory_store):
    job = memory_store.add(SceneInput(story="A story"))
    collaborator = FailingCollaborator(AIServiceError("OpenAI overloaded"))
    processor = make_processor(memory_store, collaborator)

    await processor.scan_once()
    await processor.drain(timeout=2)

    stored = memory_store.jobs[job.id]
    assert stored.status == JobStatus.PENDING
    assert stored.retry_count == 1
    assert stored.progress == 0
    assert stored.current_step == "Retrying (1/3)"
    assert stored.error_message == "OpenAI overloaded"
    assert processor.metrics.failed == 1
    assert processor.metrics.failures.by_collaborator == {"ai": 1}


@pytest.mark.asyncio
async def test_retries_until_budget_is_spent(memory_store):
    job = memory_store.add(SceneInput(story="A story"), max_retries=2)
    collaborator = FailingCollaborator(RuntimeError("supabase connection reset"))
    processor = make_processor(memory_store, collaborator)

    for _ in range(3):
        await processor.scan_once()
        await processor.drain(timeout=2)

    stored = memory_store.jobs[job.id]
    assert collaborator.calls == 3
    assert stored.status == JobStatus.FAILED
    assert stored.retry_count == 2
    assert (await processor.scan_once()).admitted == []


@pytest.mark.asyncio
async def test_timeout_is_terminal(memory_store):
    job = memory_store.add(CartoonizeInput(prompt="a fox"))
    collaborator = GatedCollaborator()
    processor = make_processor(memory_store, collaborator, job_timeout_s=0.05)

    await processor.scan_once()
    await processor.drain(timeout=2)

    stored = memory_store.jobs[job.id]
    assert stored.status == JobStatus.FAILED
    assert stored.error_message == "Job timed out after 0.05s"
    assert processor.metrics.timeouts == 1
    assert processor.active_jobs == {}


@pytest.mark.asyncio
async def test_stale_sweep_only_touches_bookkeeping(memory_store):
    now = [1000.0]
    job = memory_store.add(CartoonizeInput(prompt="a fox"))
    collaborator = GatedCollaborator()
    processor = make_processor(memory_store, collaborator, clock=lambda: now[0])

    await processor.scan_once()
    assert processor.sweep_stale(now=1500.0) == []

    stale = processor.sweep_stale(now=1601.0)

    assert stale == [job.id]
    assert processor.active_jobs == {}
    assert len(processor.in_flight) == 1

    collaborator.release(1)
    await processor.drain(timeout=2)
    assert memory_store.jobs[job.id].status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_readmitted_entry_survives_old_task(memory_store):
    now = [0.0]
    job = memory_store.add(CartoonizeInput(prompt="a fox"))
    collaborator = GatedCollaborator()
    processor = make_processor(memory_store, collaborator, clock=lambda: now[0])

    await processor.scan_once()
    processor.sweep_stale(now=700.0)
    memory_store.jobs[job.id] = memory_store.jobs[job.id].model_copy(
        update={"status": JobStatus.PENDING}
    )
    await processor.scan_once()
    assert job.id in processor.active_jobs

    collaborator.release(1)
    await wait_until(lambda: len(processor.in_flight) == 1)
    assert job.id in processor.active_jobs

    collaborator.release(1)
    await processor.drain(timeout=2)
    assert processor.active_jobs == {}


@pytest.mark.asyncio
async def test_start_and_stop_run_the_scan_loop(memory_store):
    job = memory_store.add(CartoonizeInput(prompt="a fox"))
    collaborator = GatedCollaborator()
    collaborator.release(1)
    processor = make_processor(
        memory_store,
        collaborator,
        initial_scan_delay_s=0.0,
        job_scan_interval_s=0.01,
    )

    processor.start()
    with pytest.raises(RuntimeError, match="already running"):
        processor.start()

    await wait_until(lambda: memory_store.jobs[job.id].status == JobStatus.COMPLETED)
    await processor.stop()

    assert processor.running is False
    assert processor.snapshot()["metrics"]["successful"] == 1


@pytest.mark.asyncio
async def test_stop_requeues_jobs_that_outlive_the_grace_period(memory_store):
    job = memory_store.add(CartoonizeInput(prompt="a fox"))
    collaborator = GatedCollaborator()
    processor = make_processor(
        memory_store,
        collaborator,
        initial_scan_delay_s=0.0,
        job_scan_interval_s=10.0,
        graceful_shutdown_s=0,
    )

    processor.start()
    await wait_until(lambda: collaborator.started)
    await processor.stop()

    stored = memory_store.jobs[job.id]
    assert stored.status == JobStatus.PENDING
    assert stored.retry_count == 0
    assert stored.progress == 0
    assert stored.current_step == INTERRUPTED_STEP
    assert processor.in_flight == set()


@pytest.mark.asyncio
async def test_shutdown_does_not_spend_the_last_attempt(memory_store):
    job = memory_store.add(CartoonizeInput(prompt="a fox"), max_retries=0)
    collaborator = GatedCollaborator()
    processor = make_processor(
        memory_store,
        collaborator,
        initial_scan_delay_s=0.0,
        job_scan_interval_s=10.0,
        graceful_shutdown_s=0,
    )

    processor.start()
    await wait_until(lambda: collaborator.started)
    await processor.stop()

    stored = memory_store.jobs[job.id]
    assert stored.status == JobStatus.PENDING
    assert stored.retry_count == 0
    assert processor.metrics.failed == 0


@pytest.mark.asyncio
async def test_job_cancelled_before_dispatch_is_not_run(memory_store):
    job = memory_store.add(CartoonizeInput(prompt="a fox"))
    collaborator = GatedCollaborator()
    collaborator.release(1)
    processor = make_processor(memory_store, collaborator)

    scan = await processor.scan_once()
    assert scan.admitted == [job.id]
    # the job task has not started yet
    assert await memory_store.cancel(job.id) is True

    assert await processor.drain(timeout=2) is True

    stored = memory_store.jobs[job.id]
    assert stored.status == JobStatus.CANCELLED
    assert stored.progress == 0
    assert collaborator.started == []
    assert processor.active_jobs == {}
    assert processor.metrics.successful == 0
    assert processor.metrics.failed == 0


@pytest.mark.asyncio
async def test_unhealthy_processor_skips_scans(memory_store):
    memory_store.add(CartoonizeInput(prompt="a fox"))
    collaborator = GatedCollaborator()
    processor = make_processor(
        memory_store,
        collaborator,
        initial_scan_delay_s=0.0,
        job_scan_interval_s=0.01,
    )
    for _ in range(3):
        processor.metrics.record_failure(AIServiceError.category, "ai")
    assert processor.is_healthy() is False

    processor.start()
    await asyncio.sleep(0.05)
    await processor.stop()

    assert collaborator.started == []
