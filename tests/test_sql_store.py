"""Tests for the SQL store using a synchronous SQLite engine wrapper."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from jobmock.contracts import JobState
from jobmock.stores.sql.store import SQLStore
from jobmock.stores.sql.schema import metadata


class _AsyncSessionWrapper:
    def __init__(self, sync_session):
        self._session = sync_session

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._session.close()

    async def execute(self, statement, params=None):
        return self._session.execute(statement, params or {})

    async def commit(self) -> None:
        self._session.commit()

    async def rollback(self) -> None:
        self._session.rollback()


def _make_engine():
    sync_engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata.create_all(sync_engine)
    return sync_engine


def _make_store(sync_engine=None, *, prefix: str = "sql-test") -> SQLStore:
    sync_engine = sync_engine or _make_engine()
    SyncSession = sessionmaker(sync_engine, future=True)
    store = object.__new__(SQLStore)
    store.engine = SimpleNamespace(dialect=sync_engine.dialect)
    store.prefix = prefix
    store.sessionmaker = lambda: _AsyncSessionWrapper(SyncSession())
    return store


def test_sql_store_end_to_end() -> None:
    async def _run() -> None:
        store = _make_store()
        first = await store.insert("alpha", {"idx": 1})
        second = await store.insert("alpha", {"idx": 2})
        third = await store.insert("beta", {"idx": 3})
        assert first < second < third

        row = await store.get(first)
        assert row["state"] == JobState.INACTIVE
        assert row["data"] == {"idx": 1}

        claimed = await store.claim("alpha", limit=5)
        assert [row["data"]["idx"] for row in claimed] == [1, 2]
        assert all(row["state"] == JobState.ACTIVE for row in claimed)
        assert await store.claim("alpha") == []

        assert await store.finish(first, JobState.COMPLETE, result={"ok": True})
        assert await store.finish(second, JobState.FAILED, error="nope")
        assert not await store.finish(9999, JobState.COMPLETE)

        done = await store.get(first)
        failed = await store.get(second)
        assert done["state"] == JobState.COMPLETE and done["result"] == {"ok": True}
        assert failed["state"] == JobState.FAILED and failed["error"] == "nope"

        assert await store.count() == 3
        assert await store.count(JobState.INACTIVE) == 1
        assert [row["id"] for row in await store.range(0, 3)] == [first, second, third]
        assert [row["id"] for row in await store.range(0, 0, "desc")] == [third]
        assert await store.range(2, 1) == []

        assert await store.remove(first) is True
        assert await store.remove(first) is False
        assert await store.count() == 2

    asyncio.run(_run())


def test_sql_store_get_missing() -> None:
    async def _run() -> None:
        with pytest.raises(KeyError):
            await _make_store().get(12345)

    asyncio.run(_run())


def test_sql_store_prefixes_are_isolated() -> None:
    async def _run() -> None:
        engine = _make_engine()
        suite = _make_store(engine, prefix="suite")
        prod = _make_store(engine, prefix="production")
        own = await suite.insert("alpha", {})
        foreign = await prod.insert("alpha", {})

        assert await suite.count() == 1
        assert [row["id"] for row in await suite.range(0, 10)] == [own]
        assert await suite.claim("alpha", limit=5) != []
        assert (await prod.get(foreign))["state"] == JobState.INACTIVE
        assert await suite.remove(foreign) is False
        with pytest.raises(KeyError):
            await suite.get(foreign)
        assert await prod.count() == 1

    asyncio.run(_run())


def test_sql_store_retries_transient_errors(monkeypatch) -> None:
    async def _run() -> None:
        store = _make_store()
        attempts: list[int] = []

        async def _no_sleep(_delay: float) -> None:
            return None

        monkeypatch.setattr("jobmock.stores.sql.store.asyncio.sleep", _no_sleep)

        async def flaky() -> str:
            attempts.append(1)
            if len(attempts) < 3:
                raise DBAPIError("stmt", {}, Exception("connection reset"))
            return "ok"

        assert await store._retry_with_backoff(flaky) == "ok"
        assert len(attempts) == 3

        async def always_broken() -> None:
            raise ConnectionError("gone")

        with pytest.raises(ConnectionError):
            await store._retry_with_backoff(always_broken, attempts=2)

    asyncio.run(_run())


def test_sql_store_rejects_bad_arguments() -> None:
    async def _run() -> None:
        store = _make_store()
        with pytest.raises(ValueError):
            await store.finish(1, JobState.ACTIVE)
        with pytest.raises(ValueError):
            await store.range(0, 1, "sideways")

    asyncio.run(_run())
