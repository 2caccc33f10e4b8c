"""In-memory job store."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from itertools import count
from typing import Any, Dict, List

from ..contracts import JobState, JobStore


UTC = timezone.utc


@dataclass
class _Job:
    id: int
    kind: str
    created_at: datetime
    updated_at: datetime
    data: dict = field(default_factory=dict)
    state: str = JobState.INACTIVE
    started_at: datetime | None = None
    finished_at: datetime | None = None
    result: Any = None
    error: str | None = None


class MemoryStore(JobStore):
    def __init__(self, *, prefix: str = "q") -> None:
        self.prefix = prefix
        self._jobs: Dict[int, _Job] = {}
        self._ids = count(1)
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"MemoryStore(prefix={self.prefix!r}, jobs={len(self._jobs)})"

    async def insert(self, kind: str, data: dict) -> int:
        async with self._lock:
            now = datetime.now(UTC)
            job = _Job(
                id=next(self._ids),
                kind=kind,
                created_at=now,
                updated_at=now,
                data=dict(data),
            )
            self._jobs[job.id] = job
            return job.id

    async def get(self, job_id: int) -> dict:
        async with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                raise KeyError(job_id)
            return asdict(job)

    async def claim(self, kind: str, *, limit: int = 1) -> List[dict]:
        async with self._lock:
            now = datetime.now(UTC)
            candidates = sorted(
                (
                    job
                    for job in self._jobs.values()
                    if job.kind == kind and job.state == JobState.INACTIVE
                ),
                key=lambda j: j.id,
            )
            claimed: List[dict] = []
            for job in candidates[:limit]:
                job.state = JobState.ACTIVE
                job.started_at = now
                job.updated_at = now
                claimed.append(asdict(job))
            return claimed

    async def finish(
        self,
        job_id: int,
        state: str,
        *,
        result: Any = None,
        error: str | None = None,
    ) -> bool:
        if state not in JobState.TERMINAL:
            raise ValueError(f"not a terminal state: {state}")
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            now = datetime.now(UTC)
            job.state = state
            job.result = result
            job.error = error
            job.finished_at = now
            job.updated_at = now
            return True

    async def count(self, state: str | None = None) -> int:
        async with self._lock:
            if state is None:
                return len(self._jobs)
            return sum(1 for job in self._jobs.values() if job.state == state)

    async def range(self, start: int, end: int, order: str = "asc") -> List[dict]:
        if order not in {"asc", "desc"}:
            raise ValueError("order must be 'asc' or 'desc'")
        async with self._lock:
            ordered = sorted(self._jobs.values(), key=lambda j: j.id, reverse=order == "desc")
            return [asdict(job) for job in ordered[start : end + 1]]

    async def remove(self, job_id: int) -> bool:
        async with self._lock:
            return self._jobs.pop(job_id, None) is not None

    async def prepare(self) -> None:
        return None

    async def check_connection(self) -> None:
        return None
