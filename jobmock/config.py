"""Configuration for :class:`jobmock.JobMock` and the bundled queue."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Any, Mapping

DEFAULT_PREFIX = "kue-mock"
logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MockOptions:
    """Options used to build the mock queue.

    Parameters:
        prefix: Namespace for the queue's backing keys so mock usage does not
            collide with a production queue sharing the same backend.
        dsn: SQLAlchemy async DSN; an in-memory store is used when omitted.
        poll_interval: Seconds the worker idles between empty claims.
        shutdown_timeout: Seconds :meth:`JobMock.close` waits for in-flight
            handlers before cancelling them.
    """

    prefix: str = DEFAULT_PREFIX
    dsn: str | None = None
    poll_interval: float = 0.05
    shutdown_timeout: float = 0.0

    def __post_init__(self) -> None:
        if not self.prefix:
            self.prefix = DEFAULT_PREFIX
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be greater than 0")
        if self.shutdown_timeout < 0:
            raise ValueError("shutdown_timeout must not be negative")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any] | None) -> "MockOptions":
        """Build options from a plain mapping such as ``{"prefix": "tests"}``."""

        if not values:
            return cls()
        known = {field.name for field in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            logger.warning("ignoring unknown mock options: %s", ", ".join(unknown))
        return cls(**{key: value for key, value in values.items() if key in known})

    @classmethod
    def coerce(cls, options: "MockOptions | Mapping[str, Any] | None") -> "MockOptions":
        if isinstance(options, cls):
            return options
        return cls.from_mapping(options)
