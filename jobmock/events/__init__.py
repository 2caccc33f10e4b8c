"""Event bus implementations."""

from .local import JOB_TOPIC_TEMPLATE, LocalEventBus

__all__ = ["JOB_TOPIC_TEMPLATE", "LocalEventBus"]
