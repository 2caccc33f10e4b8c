"""Bundled in-process queue engine the mock drives.

:class:`Queue` implements :class:`~jobmock.contracts.QueueEngine` on top of a
:class:`~jobmock.contracts.JobStore`. It accepts one process handler per kind
for its whole lifetime, exactly like the queues the mock is meant to stand in
front of.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from typing import Any, Awaitable, Callable, Iterator, Mapping

from sqlalchemy.ext.asyncio import create_async_engine

from .config import MockOptions
from .contracts import (
    DuplicateProcessorError,
    JobHandle,
    JobState,
    JobStore,
    ProcessHandler,
    QueueEngine,
)
from .events.local import JOB_TOPIC_TEMPLATE, LocalEventBus
from .stores.memory import MemoryStore
from .stores.sql.store import SQLStore
from .worker import Worker

KIND_PATTERN = re.compile(r"[A-Za-z0-9_. -]+")
JOB_EVENTS = (JobState.COMPLETE, JobState.FAILED)
REMOVED_EVENT = "removed"
logger = logging.getLogger(__name__)


class Job(JobHandle):
    """A job created through or listed from a :class:`Queue`."""

    def __init__(
        self,
        queue: "Queue",
        kind: str,
        data: dict | None = None,
        *,
        job_id: int | None = None,
        state: str | None = None,
    ) -> None:
        self.queue = queue
        self.kind = kind
        self.data = dict(data or {})
        self.id = job_id
        self.state = state
        self.error: str | None = None
        self.result: Any = None
        self._pending: list[tuple[str, Callable[[dict], Awaitable[None]]]] = []

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"Job(id={self.id}, kind={self.kind!r}, state={self.state!r})"

    @classmethod
    def from_row(cls, queue: "Queue", row: Mapping[str, Any]) -> "Job":
        job = cls(queue, row["kind"], row.get("data"), job_id=row["id"])
        job._apply(row)
        return job

    def on(self, event: str, callback: Callable[[Any], Any]) -> "Job":
        """Call ``callback`` when the job completes or fails.

        ``complete`` callbacks receive the handler's result, ``failed``
        callbacks the error message. Callbacks may be coroutine functions.
        """

        if event not in JOB_EVENTS:
            raise ValueError(f"unsupported job event: {event}")

        async def _subscriber(payload: dict) -> None:
            self._apply(payload)
            value = payload["result"] if event == JobState.COMPLETE else payload["error"]
            outcome = callback(value)
            if inspect.isawaitable(outcome):
                await outcome

        if self.id is None:
            self._pending.append((event, _subscriber))
        else:
            self.queue.event_bus.subscribe(self._topic(event), _subscriber)
        return self

    async def save(self) -> "Job":
        """Persist a new job as ``inactive`` and hand it to the worker."""

        if self.id is not None:
            return self
        self.id = await self.queue.store.insert(self.kind, self.data)
        self.state = JobState.INACTIVE
        for event, subscriber in self._pending:
            self.queue.event_bus.subscribe(self._topic(event), subscriber)
        self._pending.clear()
        self.queue.job_enqueued(self)
        return self

    async def refresh(self) -> "Job":
        self._apply(await self.queue.store.get(self._require_id()))
        return self

    async def settled(self, timeout: float | None = None) -> str:
        """Wait until the job completes or fails and return that state.

        Raises:
            KeyError: If the job is removed before it settles.
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """

        job_id = self._require_id()
        outcome: asyncio.Future[str] = asyncio.get_running_loop().create_future()

        async def _resolve(payload: dict) -> None:
            if not outcome.done():
                self._apply(payload)
                outcome.set_result(payload["state"])

        async def _gone(payload: dict) -> None:
            if not outcome.done():
                outcome.set_exception(KeyError(job_id))

        subscriptions = [(self._topic(event), _resolve) for event in JOB_EVENTS]
        subscriptions.append((self._topic(REMOVED_EVENT), _gone))
        for topic, subscriber in subscriptions:
            self.queue.event_bus.subscribe(topic, subscriber)
        try:
            await self.refresh()
            if self.state in JobState.TERMINAL:
                return self.state
            self.state = await asyncio.wait_for(outcome, timeout)
            return self.state
        finally:
            for topic, subscriber in subscriptions:
                self.queue.event_bus.unsubscribe(topic, subscriber)
            logger.debug("job %s settled wait finished: state=%s", job_id, self.state)

    async def remove(self) -> None:
        await self.queue.remove_job(self._require_id())

    def _topic(self, event: str) -> str:
        return JOB_TOPIC_TEMPLATE.format(job_id=self.id, event=event)

    def _require_id(self) -> int:
        if self.id is None:
            raise RuntimeError("job has not been saved")
        return self.id

    def _apply(self, row: Mapping[str, Any]) -> None:
        self.state = row.get("state", self.state)
        self.error = row.get("error", self.error)
        self.result = row.get("result", self.result)


class Queue(QueueEngine):
    """Job queue with install-once process handlers.

    Parameters:
        store: Persistence for jobs, already scoped to ``prefix``.
        prefix: Key namespace; defaults to the store's prefix.
        poll_interval: Seconds the worker idles between empty claim rounds.
        event_bus: Bus used for job lifecycle events.
    """

    def __init__(
        self,
        store: JobStore,
        *,
        prefix: str | None = None,
        poll_interval: float = 0.05,
        event_bus: LocalEventBus | None = None,
    ) -> None:
        self.store = store
        self.prefix = prefix or store.prefix
        self.event_bus = event_bus or LocalEventBus()
        self.worker = Worker(self, poll_interval=poll_interval)
        self._processors: dict[str, tuple[ProcessHandler, int]] = {}

    def __repr__(self) -> str:
        return f"Queue(prefix={self.prefix!r}, kinds={sorted(self._processors)})"

    def process(self, kind: str, handler: ProcessHandler, *, concurrency: int = 1) -> None:
        """Install the process handler for ``kind``.

        Raises:
            DuplicateProcessorError: If ``kind`` already has a handler.
            ValueError: If ``kind`` has invalid characters or ``concurrency``
                is not positive.
        """

        if not KIND_PATTERN.fullmatch(kind):
            raise ValueError(
                "kind must contain only alphanumerics, spaces, dash, underscore, or dot"
            )
        if concurrency <= 0:
            raise ValueError("concurrency must be greater than 0")
        if kind in self._processors:
            raise DuplicateProcessorError(f"process handler already registered for kind: {kind}")
        self._processors[kind] = (handler, concurrency)
        logger.info(
            "process handler registered: kind=%s concurrency=%s prefix=%s",
            kind,
            concurrency,
            self.prefix,
        )
        self._ensure_worker()

    def handler_for(self, kind: str) -> ProcessHandler | None:
        entry = self._processors.get(kind)
        return entry[0] if entry else None

    def processors(self) -> Iterator[tuple[str, int]]:
        for kind, (_, concurrency) in list(self._processors.items()):
            yield kind, concurrency

    def create(self, kind: str, data: dict | None = None) -> Job:
        if not KIND_PATTERN.fullmatch(kind):
            raise ValueError(
                "kind must contain only alphanumerics, spaces, dash, underscore, or dot"
            )
        return Job(self, kind, data)

    def job_from_row(self, row: Mapping[str, Any]) -> Job:
        return Job.from_row(self, row)

    def job_enqueued(self, job: Job) -> None:
        logger.debug("job enqueued: id=%s kind=%s", job.id, job.kind)
        self._ensure_worker()
        self.worker.wake()

    async def get_job(self, job_id: int) -> Job:
        return self.job_from_row(await self.store.get(job_id))

    async def count_jobs(self) -> int:
        return await self.store.count()

    async def card(self, state: str) -> int:
        if state not in JobState.ALL:
            raise ValueError(f"unknown job state: {state}")
        return await self.store.count(state)

    async def inactive_count(self) -> int:
        return await self.card(JobState.INACTIVE)

    async def active_count(self) -> int:
        return await self.card(JobState.ACTIVE)

    async def complete_count(self) -> int:
        return await self.card(JobState.COMPLETE)

    async def failed_count(self) -> int:
        return await self.card(JobState.FAILED)

    async def list_range(self, start: int, end: int, order: str = "asc") -> list[Job]:
        rows = await self.store.range(start, end, order)
        return [self.job_from_row(row) for row in rows]

    async def remove_job(self, job_id: int) -> None:
        """Delete ``job_id``, cancel a handler still running for it and wake its waiters."""

        removed = await self.store.remove(job_id)
        self.worker.abandon(job_id)
        removed_topic = JOB_TOPIC_TEMPLATE.format(job_id=job_id, event=REMOVED_EVENT)
        await self.event_bus.publish(removed_topic, {"id": job_id, "state": None})
        for event in (*JOB_EVENTS, REMOVED_EVENT):
            self.event_bus.discard(JOB_TOPIC_TEMPLATE.format(job_id=job_id, event=event))
        logger.debug("job removed: id=%s existed=%s", job_id, removed)

    async def start(self) -> None:
        await self.store.prepare()
        self._ensure_worker()

    async def shutdown(self, timeout: float | None = 5.0) -> None:
        """Stop the worker, cancelling handlers still running after ``timeout``."""

        await self.worker.stop(timeout)

    async def close(self, timeout: float | None = 5.0) -> None:
        await self.shutdown(timeout)
        await self.store.close()

    async def __aenter__(self) -> "Queue":
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def _ensure_worker(self) -> None:
        if not self._processors or self.worker.running:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self.worker.start()


def create_queue(options: MockOptions | Mapping[str, Any] | None = None) -> Queue:
    """Build a queue from ``options``: SQL-backed when a DSN is set, else in memory."""

    opts = MockOptions.coerce(options)
    if opts.dsn:
        store: JobStore = SQLStore(create_async_engine(opts.dsn), prefix=opts.prefix)
    else:
        store = MemoryStore(prefix=opts.prefix)
    logger.debug("queue created: prefix=%s store=%s", opts.prefix, type(store).__name__)
    return Queue(store, prefix=opts.prefix, poll_interval=opts.poll_interval)
