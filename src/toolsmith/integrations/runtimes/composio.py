"""Generic runtime that executes any capability through Composio.

Capability ids come in three shapes:

- curated ids (``github_repos_list``), mapped through STATIC_TO_COMPOSIO
- synthesized ids (``github:GITHUB_LIST_COMMITS``) from the action registry
- bare provider action names (``GITHUB_LIST_COMMITS``)

The provider action name is resolved registry first, then by id shape.
The auth "token" is the Composio entity id.
"""

from __future__ import annotations

import functools
import re
import time
from typing import TYPE_CHECKING, Any

import structlog

from toolsmith.core.trace import ExecutionTracer
from toolsmith.integrations.composio_client import ComposioClient, get_composio_client
from toolsmith.integrations.health import integration_health
from toolsmith.integrations.runtime import AuthContext, BaseRuntime, Capability
from toolsmith.registry.catalog import STATIC_TO_COMPOSIO, normalize_action_name

if TYPE_CHECKING:
    from toolsmith.registry.actions import ActionRegistry

logger = structlog.get_logger()

_PROVIDER_ACTION_NAME = re.compile(r"^[A-Z][A-Z0-9_]+$")

_GITHUB_SEARCH = "GITHUB_SEARCH_ISSUES_AND_PULL_REQUESTS"


def _integration_of(capability_id: str) -> str:
    if ":" in capability_id:
        return capability_id.split(":", 1)[0]
    if _PROVIDER_ACTION_NAME.match(capability_id):
        return capability_id.split("_", 1)[0].lower()
    return capability_id.split("_", 1)[0]


class ComposioRuntime(BaseRuntime):
    id = "composio"

    def __init__(
        self,
        client: ComposioClient | None = None,
        registry: ActionRegistry | None = None,
    ) -> None:
        super().__init__()
        self._client = client
        self._registry = registry
        for capability_id in STATIC_TO_COMPOSIO:
            self.register(self._make_capability(capability_id))

    @property
    def client(self) -> ComposioClient:
        if self._client is None:
            self._client = get_composio_client()
        return self._client

    def _make_capability(self, capability_id: str) -> Capability:
        return Capability(
            id=capability_id,
            integration_id=_integration_of(capability_id),
            execute=functools.partial(self._execute, capability_id),
        )

    def get_capability(self, capability_id: str) -> Capability | None:
        found = self.capabilities.get(capability_id)
        if found is not None:
            return found
        action_part = capability_id.split(":", 1)[1] if ":" in capability_id else capability_id
        if not _PROVIDER_ACTION_NAME.match(action_part):
            return None
        capability = self._make_capability(capability_id)
        self.register(capability)
        return capability

    async def resolve_context(self, token: str) -> AuthContext:
        return {"entity_id": token}

    async def resolve_action_name(self, capability_id: str) -> str:
        resolved: str | None = None
        if self._registry is not None:
            try:
                resolved = await self._registry.resolve_capability_name(capability_id)
            except Exception as e:
                logger.warning("composio_registry_resolve_failed", capability=capability_id, error=str(e))
        if resolved:
            return resolved
        if ":" in capability_id:
            return normalize_action_name(capability_id.split(":", 1)[1])
        return STATIC_TO_COMPOSIO.get(capability_id) or normalize_action_name(capability_id)

    async def _execute(
        self,
        capability_id: str,
        params: dict[str, Any],
        context: AuthContext,
        tracer: ExecutionTracer,
    ) -> Any:
        entity_id = context.get("entity_id")
        if not entity_id:
            raise ValueError("Composio execution requires entity_id in context")

        action_name = await self.resolve_action_name(capability_id)
        arguments = dict(params)

        # Listing repository issues needs owner/repo; without them search instead.
        if action_name == "GITHUB_LIST_REPOSITORY_ISSUES" and not (
            arguments.get("owner") and arguments.get("repo")
        ):
            action_name = _GITHUB_SEARCH
            arguments.pop("owner", None)
            arguments.pop("repo", None)
        if action_name == _GITHUB_SEARCH and not arguments.get("q"):
            arguments["q"] = "is:issue is:open"

        integration_id = _integration_of(capability_id)
        health = integration_health(integration_id)
        started = time.monotonic()
        status = "success"
        try:
            async with health.track():
                return await self.client.execute_action(entity_id, action_name, arguments)
        except Exception:
            status = "error"
            raise
        finally:
            tracer.log_integration_access(
                integration_id,
                capability_id,
                params=arguments,
                status=status,  # type: ignore[arg-type]
                latency_ms=(time.monotonic() - started) * 1000,
                metadata={"provider_action": action_name},
                health=health.snapshot(),
            )
