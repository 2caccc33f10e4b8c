"""Stub registry sharing one process handler slot per job kind.

Queues accept a single process handler per kind for their whole lifetime and
offer no way to unregister it. The registry installs one bridging handler per
kind and resolves the stub to call when a job is delivered, so tests can
restub or release a kind as often as they like.
"""

from __future__ import annotations

import logging
from typing import Any

from . import metrics
from .contracts import DoneCallback, JobHandle, ProcessHandler, QueueEngine

logger = logging.getLogger(__name__)


class RecordingStub:
    """Process handler that records its calls and signals completion.

    ``wraps`` delegates the call to another handler while still recording it.
    Without ``wraps`` the stub calls ``done(error, result)`` straight away.
    """

    def __init__(
        self,
        wraps: ProcessHandler | None = None,
        *,
        error: Any = None,
        result: Any = None,
    ) -> None:
        self.wraps = wraps
        self.error = error
        self.result = result
        self.calls: list[tuple[JobHandle, DoneCallback]] = []

    def __call__(self, job: JobHandle, done: DoneCallback):
        self.calls.append((job, done))
        if self.wraps is not None:
            return self.wraps(job, done)
        done(self.error, self.result)
        return None

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def called(self) -> bool:
        return bool(self.calls)

    @property
    def jobs(self) -> list[JobHandle]:
        return [job for job, _ in self.calls]

    def reset(self) -> None:
        self.calls.clear()

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"RecordingStub(call_count={self.call_count}, wraps={self.wraps!r})"


class JobStub:
    """The current processing behaviour for one job kind.

    ``handler`` may be reassigned at any time; the next delivered job uses the
    new value.
    """

    def __init__(
        self,
        kind: str,
        handler: ProcessHandler | None = None,
        *,
        registry: "StubRegistry | None" = None,
    ) -> None:
        self.kind = kind
        self.handler: ProcessHandler = handler if handler is not None else RecordingStub()
        self._registry = registry

    def release(self) -> bool:
        """Stop routing jobs of this kind here if this is still the current stub."""

        if self._registry is None:
            return False
        return self._registry.release(self)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"JobStub(kind={self.kind!r}, handler={self.handler!r})"


class StubRegistry:
    """Maps job kinds to their current :class:`JobStub`.

    ``installed_kinds`` only ever grows: once a bridge is installed with the
    queue it stays there. The mapping of current stubs changes independently
    on restub and release.
    """

    def __init__(self, queue: QueueEngine) -> None:
        self.queue = queue
        self._current: dict[str, JobStub] = {}
        self._installed: set[str] = set()

    @property
    def installed_kinds(self) -> frozenset[str]:
        return frozenset(self._installed)

    def current(self, kind: str) -> JobStub | None:
        return self._current.get(kind)

    def register(self, kind: str, handler: ProcessHandler | None = None) -> JobStub:
        """Make a new stub the current one for ``kind`` and return it."""

        if kind not in self._installed:
            self.queue.process(kind, self._bridge(kind))
            self._installed.add(kind)
            metrics.bridge_installs.inc()
            logger.debug("installed bridge handler: kind=%s prefix=%s", kind, self.queue.prefix)
        stub = JobStub(kind, handler, registry=self)
        replaced = kind in self._current
        self._current[kind] = stub
        metrics.stub_registrations.inc()
        logger.debug("stub registered: kind=%s replaced=%s", kind, replaced)
        return stub

    def release(self, stub: JobStub) -> bool:
        """Drop ``stub`` if it is still current; stale or repeated releases are no-ops."""

        if self._current.get(stub.kind) is not stub:
            return False
        del self._current[stub.kind]
        logger.debug("stub released: kind=%s", stub.kind)
        return True

    def _bridge(self, kind: str) -> ProcessHandler:
        def dispatch(job: JobHandle, done: DoneCallback):
            stub = self._current.get(kind)
            if stub is None:
                metrics.noop_deliveries.inc()
                logger.debug("no stub for kind=%s; completing job %s as a no-op", kind, job.id)
                done()
                return None
            return stub.handler(job, done)

        dispatch.__qualname__ = f"StubRegistry.bridge[{kind}]"
        return dispatch
