"""Minimal in-process event bus for job lifecycle notifications."""

from __future__ import annotations

import asyncio
from collections import defaultdict
import logging
from typing import Awaitable, Callable, DefaultDict, List

JOB_TOPIC_TEMPLATE = "job.{job_id}.{event}"
logger = logging.getLogger(__name__)

Subscriber = Callable[[dict], Awaitable[None]]


class LocalEventBus:
    """Fire-and-forget bus storing subscribers in-memory."""

    def __init__(self) -> None:
        self._subs: DefaultDict[str, List[Subscriber]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Subscriber) -> None:
        self._subs[topic].append(handler)

    def unsubscribe(self, topic: str, handler: Subscriber) -> None:
        handlers = self._subs.get(topic)
        if not handlers or handler not in handlers:
            return
        handlers.remove(handler)
        if not handlers:
            del self._subs[topic]

    def discard(self, topic: str) -> None:
        self._subs.pop(topic, None)

    async def publish(self, topic: str, payload: dict) -> None:
        results = await asyncio.gather(
            *(handler(payload) for handler in list(self._subs.get(topic, ()))),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error("Event handler failed for %s", topic, exc_info=result)
