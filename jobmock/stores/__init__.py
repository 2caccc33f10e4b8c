"""Job store implementations."""

from .memory import MemoryStore
from .sql.store import SQLStore

__all__ = ["MemoryStore", "SQLStore"]
