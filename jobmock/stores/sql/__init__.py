"""SQL store helpers."""

from .schema import QueueJobs, metadata
from .store import SQLStore

__all__ = ["SQLStore", "QueueJobs", "metadata"]
