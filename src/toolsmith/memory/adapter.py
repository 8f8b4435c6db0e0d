"""Storage interface the memory store depends on."""

from __future__ import annotations

from typing import Any, Protocol

from toolsmith.memory.scope import MemoryScope


class MemoryAdapter(Protocol):
    async def get(self, scope: MemoryScope, namespace: str, key: str) -> Any: ...

    async def set(self, scope: MemoryScope, namespace: str, key: str, value: Any) -> None: ...

    async def delete(self, scope: MemoryScope, namespace: str, key: str) -> None: ...
