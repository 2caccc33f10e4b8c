"""Jobmock: stub job processing and drain job queues in test suites."""

from .config import DEFAULT_PREFIX, MockOptions
from .contracts import DuplicateProcessorError, JobHandle, JobState, QueueEngine
from .drainer import QueueDrainer
from .engine import Job, Queue, create_queue
from .mock import JobMock
from .registry import JobStub, RecordingStub, StubRegistry

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_PREFIX",
    "DuplicateProcessorError",
    "Job",
    "JobHandle",
    "JobMock",
    "JobState",
    "JobStub",
    "MockOptions",
    "Queue",
    "QueueDrainer",
    "QueueEngine",
    "RecordingStub",
    "StubRegistry",
    "create_queue",
    "__version__",
]
