"""Scoped memory: session, tool, tool_user, tool_org, user and org buckets."""

from toolsmith.memory.ephemeral import EphemeralMemoryAdapter
from toolsmith.memory.scope import MemoryScope, normalize_scope
from toolsmith.memory.store import MemoryStore, MemoryWriteResult, get_memory_store

__all__ = [
    "EphemeralMemoryAdapter",
    "MemoryScope",
    "MemoryStore",
    "MemoryWriteResult",
    "get_memory_store",
    "normalize_scope",
]
