"""SQL job store implemented with SQLAlchemy async sessions."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import Any, Awaitable, Callable, List

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from sqlalchemy.exc import DBAPIError

from .schema import QueueJobs, metadata
from ...contracts import JobState, JobStore

UTC = timezone.utc
logger = logging.getLogger(__name__)


class SQLStore(JobStore):
    """Stores jobs in the ``queue_jobs`` table, scoped to one ``prefix``.

    Every statement filters on the prefix, so queues with different prefixes
    can share a database without seeing each other's jobs.
    """

    def __init__(self, engine: AsyncEngine, *, prefix: str = "q") -> None:
        self.engine = engine
        self.prefix = prefix
        self.sessionmaker = async_sessionmaker(engine, expire_on_commit=False)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"SQLStore(engine={self.engine.url!s}, prefix={self.prefix!r})"

    async def insert(self, kind: str, data: dict) -> int:
        now = datetime.now(UTC)
        async with self.sessionmaker() as session:
            res = await session.execute(
                QueueJobs.insert().values(
                    prefix=self.prefix,
                    kind=kind,
                    data=data,
                    state=JobState.INACTIVE,
                    created_at=now,
                    updated_at=now,
                )
            )
            await session.commit()
            return int(res.inserted_primary_key[0])

    async def get(self, job_id: int) -> dict:
        async with self.sessionmaker() as session:
            row = (
                await session.execute(
                    select(QueueJobs)
                    .where(QueueJobs.c.prefix == self.prefix)
                    .where(QueueJobs.c.id == job_id)
                )
            ).mappings().first()
            if not row:
                raise KeyError(job_id)
            return dict(row)

    async def claim(self, kind: str, *, limit: int = 1) -> List[dict]:
        picked: list[dict] = []
        async with self.sessionmaker() as session:
            rows = (
                await session.execute(
                    select(QueueJobs)
                    .where(QueueJobs.c.prefix == self.prefix)
                    .where(QueueJobs.c.kind == kind)
                    .where(QueueJobs.c.state == JobState.INACTIVE)
                    .order_by(QueueJobs.c.id.asc())
                    .limit(limit)
                )
            ).mappings().all()
            now = datetime.now(UTC)
            for row in rows:
                res = await session.execute(
                    update(QueueJobs)
                    .where(QueueJobs.c.id == row["id"])
                    .where(QueueJobs.c.state == JobState.INACTIVE)
                    .values(state=JobState.ACTIVE, started_at=now, updated_at=now)
                )
                if res.rowcount:
                    picked.append(
                        dict(row, state=JobState.ACTIVE, started_at=now, updated_at=now)
                    )
            await session.commit()
        return picked

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

        async def _op() -> bool:
            async with self.sessionmaker() as session:
                try:
                    now = datetime.now(UTC)
                    res = await session.execute(
                        update(QueueJobs)
                        .where(QueueJobs.c.prefix == self.prefix)
                        .where(QueueJobs.c.id == job_id)
                        .values(
                            state=state,
                            result=result,
                            error=error,
                            finished_at=now,
                            updated_at=now,
                        )
                    )
                    await session.commit()
                    return bool(res.rowcount)
                except Exception:
                    await session.rollback()
                    raise

        return await self._retry_with_backoff(_op)

    async def count(self, state: str | None = None) -> int:
        query = select(func.count()).select_from(QueueJobs).where(QueueJobs.c.prefix == self.prefix)
        if state is not None:
            query = query.where(QueueJobs.c.state == state)
        async with self.sessionmaker() as session:
            result = await session.execute(query)
            return int(result.scalar() or 0)

    async def range(self, start: int, end: int, order: str = "asc") -> List[dict]:
        if order not in {"asc", "desc"}:
            raise ValueError("order must be 'asc' or 'desc'")
        if end < start:
            return []
        ordering = QueueJobs.c.id.asc() if order == "asc" else QueueJobs.c.id.desc()
        async with self.sessionmaker() as session:
            rows = (
                await session.execute(
                    select(QueueJobs)
                    .where(QueueJobs.c.prefix == self.prefix)
                    .order_by(ordering)
                    .offset(start)
                    .limit(end - start + 1)
                )
            ).mappings().all()
            return [dict(row) for row in rows]

    async def remove(self, job_id: int) -> bool:
        async def _op() -> bool:
            async with self.sessionmaker() as session:
                try:
                    res = await session.execute(
                        delete(QueueJobs)
                        .where(QueueJobs.c.prefix == self.prefix)
                        .where(QueueJobs.c.id == job_id)
                    )
                    await session.commit()
                    return bool(res.rowcount)
                except Exception:
                    await session.rollback()
                    raise

        return await self._retry_with_backoff(_op)

    async def prepare(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def check_connection(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def close(self) -> None:
        await self.engine.dispose()

    async def _retry_with_backoff(
        self,
        func: Callable[[], Awaitable[Any]],
        *,
        attempts: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 2.0,
    ) -> Any:
        delay = base_delay
        for attempt in range(1, attempts + 1):
            try:
                return await func()
            except (DBAPIError, ConnectionError) as exc:
                if attempt == attempts:
                    raise
                logger.warning(
                    "Transient store error on attempt %s/%s; retrying in %.2fs",
                    attempt,
                    attempts,
                    delay,
                    exc_info=exc,
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, max_delay)
