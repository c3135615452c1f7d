"""State store implementations."""

from .file import FileStore
from .memory import MemoryStore

__all__ = ["FileStore", "MemoryStore"]
