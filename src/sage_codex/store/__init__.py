"""Row stores for Sage Codex."""

from .base import ContentKind, SessionStore
from .memory import MemoryStore
from .sql import SqlStore

__all__ = ["ContentKind", "MemoryStore", "SessionStore", "SqlStore"]
