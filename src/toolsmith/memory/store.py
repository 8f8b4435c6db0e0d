"""Scoped key/value memory.

Two error policies live side by side here:

- ``load`` propagates adapter errors; a failed read is visible to the caller.
- ``save`` and ``delete`` are best-effort and return a MemoryWriteResult
  instead of raising. A memory outage must never fail a build or an
  action execution.

Scope normalization runs before every operation. The adapter is built
lazily, once per store, after the memory tables have been ensured.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import structlog

from toolsmith.config import settings
from toolsmith.core.cache import TTLCache
from toolsmith.memory.adapter import MemoryAdapter
from toolsmith.memory.ephemeral import EphemeralMemoryAdapter
from toolsmith.memory.scope import MemoryScope, normalize_scope

logger = structlog.get_logger()

AdapterFactory = Callable[[], Awaitable[MemoryAdapter]]


@dataclass(frozen=True)
class MemoryWriteResult:
    ok: bool
    error: str | None = None


async def create_default_adapter() -> MemoryAdapter:
    """SQL adapter when a database is configured, else process-local memory."""
    if not settings.database_url:
        logger.warning("memory_ephemeral_adapter", reason="database_url missing")
        return EphemeralMemoryAdapter()

    from toolsmith.db.session import get_admin_session_factory, get_session_factory
    from toolsmith.memory.sql import SqlMemoryAdapter, ensure_memory_tables

    try:
        await ensure_memory_tables()
    except Exception as e:
        # Persistence may still fail later; reads will surface it.
        logger.warning("memory_bootstrap_failed", error=str(e))
    return SqlMemoryAdapter(get_session_factory(), get_admin_session_factory())


class MemoryStore:
    def __init__(
        self,
        adapter_factory: AdapterFactory | None = None,
        cache_ttl_s: float | None = None,
    ) -> None:
        self._adapter_factory = adapter_factory or create_default_adapter
        self._adapter: MemoryAdapter | None = None
        self._lock = asyncio.Lock()
        self._cache: TTLCache[Any] = TTLCache(
            settings.memory_cache_ttl_s if cache_ttl_s is None else cache_ttl_s
        )

    async def adapter(self) -> MemoryAdapter:
        if self._adapter is not None:
            return self._adapter
        async with self._lock:
            if self._adapter is None:
                self._adapter = await self._adapter_factory()
                logger.info("memory_adapter_ready", adapter=type(self._adapter).__name__)
        return self._adapter

    def set_adapter_factory(self, factory: AdapterFactory | None) -> None:
        self._adapter_factory = factory or create_default_adapter
        self._adapter = None
        self._cache.invalidate()

    # ═══════════════════════════════════════════════════════════════════════
    # OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════

    async def load(self, scope: MemoryScope, namespace: str, key: str) -> Any:
        """Return the stored value or None. Adapter and scope errors propagate."""
        normalized = normalize_scope(scope)
        cache_key = (normalized.bucket, namespace, key)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return copy.deepcopy(cached)
        adapter = await self.adapter()
        value = await adapter.get(normalized, namespace, key)
        if value is not None:
            self._cache.set(cache_key, copy.deepcopy(value))
        return value

    async def save(self, scope: MemoryScope, namespace: str, key: str, value: Any) -> MemoryWriteResult:
        try:
            normalized = normalize_scope(scope)
            self._cache.invalidate((normalized.bucket, namespace, key))
            adapter = await self.adapter()
            await adapter.set(normalized, namespace, key, value)
        except Exception as e:
            logger.error("memory_persistence_failed", scope=scope.type, namespace=namespace, key=key, error=str(e))
            return MemoryWriteResult(ok=False, error=str(e))
        return MemoryWriteResult(ok=True)

    async def delete(self, scope: MemoryScope, namespace: str, key: str) -> MemoryWriteResult:
        try:
            normalized = normalize_scope(scope)
            self._cache.invalidate((normalized.bucket, namespace, key))
            adapter = await self.adapter()
            await adapter.delete(normalized, namespace, key)
        except Exception as e:
            logger.error("memory_delete_failed", scope=scope.type, namespace=namespace, key=key, error=str(e))
            return MemoryWriteResult(ok=False, error=str(e))
        return MemoryWriteResult(ok=True)


_store: MemoryStore | None = None


def get_memory_store() -> MemoryStore:
    """Get or create the process-wide memory store."""
    global _store
    if _store is None:
        _store = MemoryStore()
    return _store
