"""Integration runtime interface.

One runtime per provider. A runtime turns an opaque access token into an
auth context, exposes its callable capabilities by id and may enforce
capability-level permissions. The executor only ever talks to this
interface, never to a provider SDK directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Protocol, runtime_checkable

import structlog

from toolsmith.core.errors import PermissionDeniedError, RuntimeNotFoundError
from toolsmith.core.trace import ExecutionTracer

logger = structlog.get_logger()

AuthContext = dict[str, Any]
CapabilityHandler = Callable[[dict[str, Any], AuthContext, ExecutionTracer], Awaitable[Any]]

# Grants are "*", "<integration>:*" or "<integration>:<capability>".
DEFAULT_PERMISSIONS: tuple[str, ...] = ("*",)


@dataclass
class Capability:
    id: str
    integration_id: str
    execute: CapabilityHandler
    auto_resolved_params: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class IntegrationRuntime(Protocol):
    id: str
    capabilities: dict[str, Capability]

    async def resolve_context(self, token: str) -> AuthContext: ...

    def get_capability(self, capability_id: str) -> Capability | None: ...


def has_permission(granted: Iterable[str], integration_id: str, capability_id: str) -> bool:
    for grant in granted:
        if grant in ("*", f"{integration_id}:*", f"{integration_id}:{capability_id}"):
            return True
    return False


class BaseRuntime:
    """Shared plumbing: capability lookup and an opt-in permission check."""

    id: str = ""
    enforce_permissions: bool = False

    def __init__(self) -> None:
        self.capabilities: dict[str, Capability] = {}

    def register(self, capability: Capability) -> None:
        self.capabilities[capability.id] = capability

    def get_capability(self, capability_id: str) -> Capability | None:
        return self.capabilities.get(capability_id)

    def check_permissions(self, capability_id: str, permissions: Iterable[str]) -> None:
        if not self.enforce_permissions:
            return
        if not has_permission(permissions, self.id, capability_id):
            logger.warning("permission_denied", integration=self.id, capability=capability_id)
            raise PermissionDeniedError(self.id, capability_id)

    async def resolve_context(self, token: str) -> AuthContext:
        return {"token": token}


class RuntimeRegistry:
    """Integration id -> runtime."""

    def __init__(self, runtimes: Iterable[IntegrationRuntime] = ()) -> None:
        self._runtimes: dict[str, IntegrationRuntime] = {}
        for runtime in runtimes:
            self.register(runtime)

    def register(self, runtime: IntegrationRuntime, integration_id: str | None = None) -> None:
        self._runtimes[integration_id or runtime.id] = runtime

    def get(self, integration_id: str) -> IntegrationRuntime:
        runtime = self._runtimes.get(integration_id)
        if runtime is None:
            raise RuntimeNotFoundError(integration_id)
        return runtime

    def __contains__(self, integration_id: str) -> bool:
        return integration_id in self._runtimes

    @property
    def integration_ids(self) -> list[str]:
        return sorted(self._runtimes)
