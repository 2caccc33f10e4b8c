"""Entry-point for the ``jobmock`` console script."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine

from .config import DEFAULT_PREFIX
from .contracts import JobState
from .drainer import QueueDrainer
from .engine import Queue
from .stores.sql import SQLStore


class CLIError(RuntimeError):
    """Raised when the CLI fails to reach or configure the queue store."""


def _configure_logging(level_name: str) -> None:
    numeric = logging.getLevelName(level_name.upper())
    if not isinstance(numeric, int):  # pragma: no cover - guarded by argparse choices
        raise CLIError(f"Unknown log level: {level_name}")
    logging.basicConfig(level=numeric, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


async def _count(queue: Queue) -> None:
    total = await queue.count_jobs()
    print(f"total: {total}")
    for state in JobState.ALL:
        print(f"{state}: {await queue.card(state)}")


async def _clean(queue: Queue) -> None:
    before = await queue.count_jobs()
    await QueueDrainer(queue).drain()
    after = await queue.count_jobs()
    print(f"drained prefix {queue.prefix!r}: {before} jobs before, {after} after")


COMMANDS = {"count": _count, "clean": _clean}


async def _run(args: argparse.Namespace) -> None:
    _configure_logging(args.log_level)
    try:
        engine = create_async_engine(args.dsn)
    except SQLAlchemyError as exc:
        raise CLIError(f"Failed to create engine for DSN {args.dsn!r}: {exc}") from exc

    try:
        store = SQLStore(engine, prefix=args.prefix)
        queue = Queue(store, prefix=args.prefix)
        try:
            if args.create_schema:
                await store.prepare()
            await store.check_connection()
        except SQLAlchemyError as exc:
            raise CLIError(f"Cannot reach store at {args.dsn!r}: {exc}") from exc
        try:
            await COMMANDS[args.command](queue)
        except SQLAlchemyError as exc:
            raise CLIError(f"{args.command} failed: {exc}") from exc
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Inspect or drain a jobmock queue")
    parser.add_argument("--dsn", required=True, help="SQLAlchemy async DSN")
    parser.add_argument("--prefix", default=DEFAULT_PREFIX, help="Queue key prefix")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create the queue_jobs table before running the command",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
        help="Root logging level",
    )
    parser.add_argument("command", choices=sorted(COMMANDS))
    args = parser.parse_args(argv)
    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:  # pragma: no cover - CLI convenience
        print("Interrupted", file=sys.stderr)
        raise SystemExit(130)
    except CLIError as exc:
        print(f"jobmock: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    except Exception as exc:  # pragma: no cover - defensive
        print(f"jobmock: unexpected failure: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc


if __name__ == "__main__":  # pragma: no cover
    main()
