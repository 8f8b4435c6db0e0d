"""Process-local memory adapter, used when no database is configured."""

from __future__ import annotations

import copy
from typing import Any

from toolsmith.memory.scope import MemoryScope


class EphemeralMemoryAdapter:
    def __init__(self) -> None:
        self._values: dict[tuple, Any] = {}

    async def get(self, scope: MemoryScope, namespace: str, key: str) -> Any:
        return copy.deepcopy(self._values.get((scope.bucket, namespace, key)))

    async def set(self, scope: MemoryScope, namespace: str, key: str, value: Any) -> None:
        self._values[(scope.bucket, namespace, key)] = copy.deepcopy(value)

    async def delete(self, scope: MemoryScope, namespace: str, key: str) -> None:
        self._values.pop((scope.bucket, namespace, key), None)

    def __len__(self) -> int:
        return len(self._values)
