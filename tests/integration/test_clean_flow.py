"""Integration scenarios: stubbing and cleaning through the bundled queue."""

from __future__ import annotations

import asyncio

import pytest

from jobmock import JobMock, JobState, RecordingStub
from jobmock.engine import Queue
from jobmock.stores.memory import MemoryStore

POLL_INTERVAL = 0.01


def _mock() -> JobMock:
    return JobMock({"poll_interval": POLL_INTERVAL})


async def _total(queue: Queue) -> int:
    counts = await asyncio.gather(
        queue.inactive_count(),
        queue.active_count(),
        queue.complete_count(),
        queue.failed_count(),
    )
    return sum(counts)


async def _inactive_job(mock: JobMock) -> None:
    await mock.queue.create("enqueued job for cleanup").save()


async def _active_job(mock: JobMock) -> None:
    started = asyncio.Event()
    mock.stub("active job for cleanup", lambda job, done: started.set())
    await mock.queue.create("active job for cleanup").save()
    await asyncio.wait_for(started.wait(), 2)


async def _completed_job(mock: JobMock) -> None:
    mock.stub("completed job for cleanup")
    job = await mock.queue.create("completed job for cleanup").save()
    assert await job.settled(timeout=2) == JobState.COMPLETE


async def _failed_job(mock: JobMock) -> None:
    mock.stub("failed job for cleanup", lambda job, done: done(Exception("Oops!")))
    job = await mock.queue.create("failed job for cleanup").save()
    assert await job.settled(timeout=2) == JobState.FAILED


@pytest.mark.integration
def test_clean_removes_jobs_in_every_state() -> None:
    async def _run() -> None:
        async with _mock() as mock:
            await mock.clean()
            await _inactive_job(mock)
            await _active_job(mock)
            await _inactive_job(mock)
            await _completed_job(mock)
            await _failed_job(mock)
            await _completed_job(mock)
            await _failed_job(mock)

            assert await _total(mock.queue) == 7
            assert await mock.queue.active_count() == 1

            await mock.clean()
            assert await _total(mock.queue) == 0
            assert await mock.queue.count_jobs() == 0

    asyncio.run(_run())


@pytest.mark.integration
def test_clean_frees_kind_held_by_stuck_handler() -> None:
    async def _run() -> None:
        async with _mock() as mock:
            started = asyncio.Event()
            mock.stub("k", lambda job, done: started.set())
            await mock.queue.create("k").save()
            await asyncio.wait_for(started.wait(), 2)

            await mock.clean()
            assert await mock.queue.count_jobs() == 0

            stub = mock.stub("k")
            job = await mock.queue.create("k").save()
            assert await job.settled(timeout=1) == JobState.COMPLETE
            assert stub.handler.call_count == 1

    asyncio.run(_run())


@pytest.mark.integration
def test_failing_stub_fails_job() -> None:
    async def _run() -> None:
        async with _mock() as mock:
            mock.stub("X", lambda job, done: done(Exception("Oops!")))
            job = await mock.queue.create("X").save()
            assert await job.settled(timeout=2) == JobState.FAILED
            assert job.error == "Oops!"
            assert await mock.queue.complete_count() == 0

    asyncio.run(_run())


@pytest.mark.integration
def test_stubbed_job_calls_through_handlers() -> None:
    async def _run() -> None:
        async with _mock() as mock:
            stub = mock.stub("job process stub")
            job = await mock.queue.create("job process stub").save()
            assert await job.settled(timeout=2) == JobState.COMPLETE
            assert stub.handler.called

            recorder = RecordingStub()
            mock.stub("job process stub", recorder)
            job = await mock.queue.create("job process stub").save()
            assert await job.settled(timeout=2) == JobState.COMPLETE
            assert recorder.call_count == 1
            assert stub.handler.call_count == 1

            replaced = RecordingStub()
            current = mock.stub("job process stub")
            current.handler = replaced
            job = await mock.queue.create("job process stub").save()
            assert await job.settled(timeout=2) == JobState.COMPLETE
            assert replaced.call_count == 1
            assert recorder.call_count == 1

    asyncio.run(_run())


@pytest.mark.integration
def test_released_kind_completes_without_handler() -> None:
    async def _run() -> None:
        async with _mock() as mock:
            stub = mock.stub("released")
            stub.release()
            jobs = [await mock.queue.create("released").save() for _ in range(3)]
            for job in jobs:
                assert await job.settled(timeout=2) == JobState.COMPLETE
            assert stub.handler.call_count == 0

    asyncio.run(_run())


@pytest.mark.integration
def test_stubs_survive_across_cleans_on_shared_queue() -> None:
    async def _run() -> None:
        queue = Queue(MemoryStore(prefix="shared"), poll_interval=POLL_INTERVAL)
        first = JobMock(queue=queue)
        first.stub("alpha")
        await first.clean()

        second = JobMock(queue=queue, registry=first.registry)
        recorder = RecordingStub()
        second.stub("alpha", recorder)
        job = await queue.create("alpha").save()
        assert await job.settled(timeout=2) == JobState.COMPLETE
        assert recorder.call_count == 1
        await second.clean()
        assert await queue.count_jobs() == 0
        await queue.close(timeout=0)

    asyncio.run(_run())
