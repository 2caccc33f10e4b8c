"""Remove every job of a queue regardless of its state."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter

from . import metrics
from .contracts import JobHandle, QueueEngine

logger = logging.getLogger(__name__)


class QueueDrainer:
    """Drains a queue through its counting and listing primitives.

    Counting and listing failures abort the drain before any removal is
    issued. Removals run concurrently and a failing one never prevents the
    others from being attempted; the first failure in listing order is raised
    once every removal has settled.
    """

    def __init__(self, queue: QueueEngine) -> None:
        self.queue = queue

    async def drain(self) -> None:
        start = perf_counter()
        try:
            count = await self.queue.count_jobs()
            jobs = await self.queue.list_range(0, count, "asc")
            logger.debug("draining %s jobs: prefix=%s", len(jobs), self.queue.prefix)
            results = await asyncio.gather(
                *(self._remove(job) for job in jobs), return_exceptions=True
            )
        finally:
            metrics.drain_latency.observe(perf_counter() - start)

        errors = [result for result in results if isinstance(result, BaseException)]
        removed = len(results) - len(errors)
        metrics.jobs_removed.inc(removed)
        if not errors:
            logger.info("clean removed %s jobs: prefix=%s", removed, self.queue.prefix)
            return
        metrics.removal_failures.inc(len(errors))
        for error in errors[1:]:
            logger.warning("additional removal failure suppressed: %r", error)
        logger.warning(
            "clean removed %s of %s jobs; %s removals failed: prefix=%s",
            removed,
            len(results),
            len(errors),
            self.queue.prefix,
        )
        raise errors[0]

    @staticmethod
    async def _remove(job: JobHandle) -> None:
        await job.remove()
