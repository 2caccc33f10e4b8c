"""Test-suite facade: stub job processing and drain the queue between tests."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Callable, Mapping

from .config import MockOptions
from .contracts import ProcessHandler, QueueEngine
from .drainer import QueueDrainer
from .engine import Queue, create_queue
from .registry import JobStub, StubRegistry

logger = logging.getLogger(__name__)

CleanCallback = Callable[[BaseException | None], Any]


class JobMock:
    """Front-end handed to test suites.

    Parameters:
        options: :class:`MockOptions` or a mapping such as ``{"prefix": "x"}``;
            the prefix defaults to ``"kue-mock"``.
        queue: Existing queue to drive instead of building one from options.
        registry: Existing stub registry, e.g. to share stubs between facades
            over the same queue.
    """

    def __init__(
        self,
        options: MockOptions | Mapping[str, Any] | None = None,
        *,
        queue: QueueEngine | None = None,
        registry: StubRegistry | None = None,
    ) -> None:
        self.options = MockOptions.coerce(options)
        self.queue = queue if queue is not None else create_queue(self.options)
        if registry is not None and registry.queue is not self.queue:
            raise ValueError("registry is bound to a different queue")
        self.registry = registry or StubRegistry(self.queue)
        self.drainer = QueueDrainer(self.queue)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"JobMock(prefix={self.queue.prefix!r}, stubbed={sorted(self.registry.installed_kinds)})"

    def stub(self, kind: str, implementation: ProcessHandler | None = None) -> JobStub:
        """Route jobs of ``kind`` to ``implementation``, or a recording no-op."""

        return self.registry.register(kind, implementation)

    def unstub(self, stub: JobStub) -> bool:
        return self.registry.release(stub)

    def clean(self, callback: CleanCallback | None = None) -> "asyncio.Future[None]":
        """Remove every job of every state; must be called with a running loop.

        The returned future resolves with ``None`` once every job is removed
        and raises the first failure otherwise. ``callback`` receives ``None``
        or that failure when the drain settles.
        """

        future = asyncio.ensure_future(self.drainer.drain())
        if callback is not None:
            future.add_done_callback(partial(_notify, callback))
        return future

    async def start(self) -> None:
        if isinstance(self.queue, Queue):
            await self.queue.start()

    async def close(self, timeout: float | None = None) -> None:
        """Shut the queue down, cancelling handlers still running after ``timeout``."""

        if not isinstance(self.queue, Queue):
            return
        await self.queue.close(self.options.shutdown_timeout if timeout is None else timeout)

    async def __aenter__(self) -> "JobMock":
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()


def _notify(callback: CleanCallback, future: "asyncio.Future[None]") -> None:
    if future.cancelled():
        callback(asyncio.CancelledError())
        return
    error = future.exception()
    if error is not None:
        logger.debug("clean failed; notifying callback: %r", error)
    callback(error)
