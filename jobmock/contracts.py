"""Core contracts shared by the mock facade, the stub registry and engines.

The shim only ever talks to a queue through :class:`QueueEngine` and
:class:`JobHandle`. Concrete engines persist jobs through a :class:`JobStore`.
These are explicit abstract base classes so an engine adapter fails at
definition time when it misses part of the API.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Protocol


class JobState:
    """Lifecycle states a persisted job can be in."""

    INACTIVE = "inactive"
    ACTIVE = "active"
    COMPLETE = "complete"
    FAILED = "failed"

    ALL = (INACTIVE, ACTIVE, COMPLETE, FAILED)
    TERMINAL = (COMPLETE, FAILED)


class DuplicateProcessorError(RuntimeError):
    """Raised when a second process handler is registered for a kind."""


class DoneCallback(Protocol):
    """Completion callback handed to process handlers."""

    def __call__(self, error: Any = None, result: Any = None) -> None: ...


ProcessHandler = Callable[["JobHandle", DoneCallback], "Awaitable[Any] | None"]


class JobHandle(ABC):
    """A single persisted job as seen by the shim."""

    id: int | None
    kind: str

    @abstractmethod
    async def remove(self) -> None:
        """Delete the job from the queue; raise on failure."""


class QueueEngine(ABC):
    """The subset of a job queue the shim relies on."""

    prefix: str

    @abstractmethod
    def process(self, kind: str, handler: ProcessHandler) -> None:
        """Install ``handler`` for ``kind``.

        Engines accept exactly one handler per kind for their whole lifetime
        and must raise :class:`DuplicateProcessorError` on a second call.
        """

    @abstractmethod
    async def count_jobs(self) -> int:
        """Return the number of persisted jobs across every state."""

    @abstractmethod
    async def list_range(self, start: int, end: int, order: str = "asc") -> list[JobHandle]:
        """Return handles for jobs at indices ``start`` to ``end`` inclusive."""


class JobStore(ABC):
    """Persistence used by the bundled :class:`~jobmock.engine.Queue`.

    A store is bound to a single key prefix. Rows are plain dicts holding at
    least ``id``, ``kind``, ``data``, ``state``, ``error`` and ``result``.
    """

    prefix: str

    @abstractmethod
    async def insert(self, kind: str, data: dict) -> int:
        """Persist a new ``inactive`` job and return its identifier."""

    @abstractmethod
    async def get(self, job_id: int) -> dict:
        """Return the row for ``job_id`` or raise :class:`KeyError`."""

    @abstractmethod
    async def claim(self, kind: str, *, limit: int = 1) -> list[dict]:
        """Move up to ``limit`` inactive jobs of ``kind`` to ``active``."""

    @abstractmethod
    async def finish(
        self,
        job_id: int,
        state: str,
        *,
        result: Any = None,
        error: str | None = None,
    ) -> bool:
        """Record a terminal state; return ``False`` if the job is gone."""

    @abstractmethod
    async def count(self, state: str | None = None) -> int:
        """Count jobs, optionally restricted to ``state``."""

    @abstractmethod
    async def range(self, start: int, end: int, order: str = "asc") -> list[dict]:
        """Return rows ordered by id, sliced to ``start``..``end`` inclusive."""

    @abstractmethod
    async def remove(self, job_id: int) -> bool:
        """Delete ``job_id``; return ``False`` when it did not exist."""

    @abstractmethod
    async def prepare(self) -> None:
        """Create whatever the store needs before first use."""

    @abstractmethod
    async def check_connection(self) -> None:
        """Raise if the store cannot be reached."""

    async def close(self) -> None:
        """Release held resources."""
