"""Dispatch loop delivering queued jobs to their process handlers.

The worker claims inactive jobs for every kind that has a process handler,
bounded by that kind's concurrency, and runs each handler as its own task.
It is started lazily by the queue once an event loop is running and stopped
through :meth:`Worker.stop`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
from asyncio import Task
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from . import metrics
from .contracts import JobState
from .events.local import JOB_TOPIC_TEMPLATE

if TYPE_CHECKING:  # pragma: no cover
    from .engine import Job, Queue

logger = logging.getLogger(__name__)


class Worker:
    def __init__(self, queue: "Queue", *, poll_interval: float = 0.05) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be greater than 0")
        self.queue = queue
        self.poll_interval = poll_interval
        self._stop: asyncio.Event | None = None
        self._wakeup: asyncio.Event | None = None
        self._loop_task: Task[None] | None = None
        self._tasks: set[Task[None]] = set()
        self._by_job: dict[int, Task[None]] = {}
        self._active: defaultdict[str, int] = defaultdict(int)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"Worker(prefix={self.queue.prefix!r}, running={self.running}, active={dict(self._active)})"

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def start(self) -> None:
        """Start the dispatch loop on the running event loop."""

        if self.running:
            return
        self._stop = asyncio.Event()
        self._wakeup = asyncio.Event()
        self._loop_task = asyncio.create_task(self.run())
        logger.info("worker started: prefix=%s", self.queue.prefix)

    def wake(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()

    async def run(self) -> None:
        assert self._stop is not None and self._wakeup is not None
        backoff = self.poll_interval
        while not self._stop.is_set():
            self._wakeup.clear()
            try:
                claimed = await self._claim_round()
                backoff = self.poll_interval
            except Exception as exc:
                logger.warning(
                    "claim failed, backing off for %.2fs: %s",
                    backoff,
                    exc,
                    exc_info=True,
                )
                await asyncio.sleep(self._jitter(backoff))
                backoff = min(backoff * 2, 30)
                continue
            if not claimed:
                await self._idle()

    async def stop(self, timeout: float | None = None) -> None:
        """Stop claiming and wait up to ``timeout`` seconds for in-flight handlers.

        Handlers still running afterwards are cancelled; their jobs stay active.
        """

        if self._stop is None:
            return
        self._stop.set()
        self.wake()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.info("cancelling %d in-flight handlers on shutdown", len(pending))
        for task in pending:
            task.cancel()
        results = await asyncio.gather(*pending, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning("Task raised during shutdown: %s", result, exc_info=result)
        logger.info("worker stopped: prefix=%s", self.queue.prefix)

    def abandon(self, job_id: int) -> bool:
        """Cancel the handler still running for a removed job, freeing its slot."""

        task = self._by_job.pop(job_id, None)
        if task is None or task.done() or task is asyncio.current_task():
            return False
        logger.debug("abandoning handler for removed job %s", job_id)
        task.cancel()
        return True

    async def _claim_round(self) -> int:
        claimed = 0
        for kind, concurrency in self.queue.processors():
            free = concurrency - self._active[kind]
            if free <= 0:
                continue
            rows = await self.queue.store.claim(kind, limit=free)
            for row in rows:
                claimed += 1
                self._active[kind] += 1
                task = asyncio.create_task(self._run_row(row))
                self._tasks.add(task)
                self._by_job[row["id"]] = task
                task.add_done_callback(self._tasks.discard)
        return claimed

    async def _idle(self) -> None:
        assert self._wakeup is not None
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _run_row(self, row: dict[str, Any]) -> None:
        kind = row["kind"]
        try:
            await self._execute_row(row)
        except asyncio.CancelledError:
            logger.info("handler for job %s cancelled", row["id"])
            raise
        except Exception as exc:
            logger.warning("job %s could not be finalised: %s", row["id"], exc, exc_info=True)
        finally:
            self._active[kind] -= 1
            self._by_job.pop(row["id"], None)
            self.wake()

    async def _execute_row(self, row: dict[str, Any]) -> None:
        job = self.queue.job_from_row(row)
        handler = self.queue.handler_for(job.kind)
        if handler is None:  # pragma: no cover - claims only cover registered kinds
            await self._finish(job, None, f"no process handler for kind {job.kind!r}")
            return

        finished: asyncio.Future[tuple[Any, Any]] = asyncio.get_running_loop().create_future()

        def done(error: Any = None, result: Any = None) -> None:
            if finished.cancelled():
                logger.debug("done() called for abandoned job %s; ignoring", job.id)
                return
            if finished.done():
                logger.warning("done() called more than once for job %s; ignoring", job.id)
                return
            finished.set_result((error, result))

        logger.debug("delivering job %s: kind=%s", job.id, job.kind)
        try:
            outcome = handler(job, done)
            if inspect.isawaitable(outcome):
                await outcome
            error, result = await finished
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error, result = exc, None
        await self._finish(job, result, error)

    async def _finish(self, job: "Job", result: Any, error: Any) -> None:
        state = JobState.COMPLETE if error is None else JobState.FAILED
        message = None if error is None else str(error)
        if not await self.queue.store.finish(job.id, state, result=result, error=message):
            logger.debug("job %s was removed before it finished", job.id)
            return
        job.state, job.result, job.error = state, result, message
        metrics.jobs_processed.labels(state=state).inc()
        logger.debug("job %s %s: kind=%s error=%s", job.id, state, job.kind, message)
        await self.queue.event_bus.publish(
            JOB_TOPIC_TEMPLATE.format(job_id=job.id, event=state),
            {
                "id": job.id,
                "kind": job.kind,
                "state": state,
                "error": message,
                "result": result,
            },
        )

    @staticmethod
    def _jitter(value: float) -> float:
        return value * (0.8 + random.random() * 0.4)
