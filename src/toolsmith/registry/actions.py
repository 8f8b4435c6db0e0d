"""Action registry: what can be called for an integration.

Resolution order for ``get_actions_for_integration``:

1. In-process TTL cache (5 minutes by default)
2. Durable store, accepted when no row is stale per its own TTL
3. Dynamic discovery against the provider, synthesized, classified and
   persisted

Discovery failures degrade to an empty result for that integration.
Without an entity id there is nothing to discover with, so stale
durable rows are served as-is.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

import structlog
from sqlalchemy import select

from toolsmith.config import settings
from toolsmith.core.cache import TTLCache
from toolsmith.db.models import BrokerCapability
from toolsmith.db.session import SessionFactory
from toolsmith.registry.catalog import get_capability
from toolsmith.registry.classifier import classify_action_type
from toolsmith.registry.synthesizer import Synthesizer
from toolsmith.spec.models import ActionType

logger = structlog.get_logger()

_PROVIDER_ACTION_NAME = re.compile(r"^[A-Z][A-Z0-9_]+$")

# Integration id -> provider app name where they differ.
PROVIDER_APP_NAMES: dict[str, str] = {
    "slack": "slackbot",
    "google": "gmail",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@dataclass
class RegisteredAction:
    id: str
    integration_id: str
    display_name: str
    action_type: ActionType
    description: str = ""
    provider_action_name: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)
    output_schema: dict[str, Any] = field(default_factory=dict)
    resource: str = "unknown"
    required_scopes: list[str] = field(default_factory=list)
    discovered_at: datetime = field(default_factory=_utcnow)
    ttl_hours: int = 24

    def is_stale(self, now: datetime) -> bool:
        return now - _aware(self.discovered_at) > timedelta(hours=self.ttl_hours)

    @classmethod
    def from_row(cls, row: BrokerCapability) -> RegisteredAction:
        return cls(
            id=row.capability_id,
            integration_id=row.integration_id,
            display_name=row.display_name,
            description=row.description or "",
            action_type=row.action_type,  # type: ignore[arg-type]
            provider_action_name=row.provider_action_name or "",
            input_schema=row.input_schema or {},
            output_schema=row.output_schema or {},
            resource=row.resource or "unknown",
            required_scopes=list(row.required_scopes or []),
            discovered_at=_aware(row.discovered_at),
            ttl_hours=row.ttl_hours or 24,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# COLLABORATORS
# ═══════════════════════════════════════════════════════════════════════════════

class ActionStore(Protocol):
    async def load(self, integration_id: str) -> list[RegisteredAction]: ...

    async def get(self, capability_id: str) -> RegisteredAction | None: ...

    async def upsert(self, actions: list[RegisteredAction]) -> None: ...


class ActionDiscovery(Protocol):
    async def fetch_action_descriptors(self, entity_id: str, app_name: str) -> list[Any]: ...


class SqlActionStore:
    """``broker_capabilities`` table, keyed by (integration_id, capability_id)."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def load(self, integration_id: str) -> list[RegisteredAction]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(BrokerCapability)
                .where(BrokerCapability.integration_id == integration_id)
                .order_by(BrokerCapability.display_name)
            )
            return [RegisteredAction.from_row(row) for row in result.scalars().all()]

    async def get(self, capability_id: str) -> RegisteredAction | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(BrokerCapability).where(BrokerCapability.capability_id == capability_id).limit(1)
            )
            row = result.scalar_one_or_none()
            return RegisteredAction.from_row(row) if row else None

    async def upsert(self, actions: list[RegisteredAction]) -> None:
        if not actions:
            return
        async with self._session_factory() as db:
            for action in actions:
                result = await db.execute(
                    select(BrokerCapability).where(
                        BrokerCapability.integration_id == action.integration_id,
                        BrokerCapability.capability_id == action.id,
                    )
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = BrokerCapability(
                        integration_id=action.integration_id,
                        capability_id=action.id,
                    )
                    db.add(row)
                row.display_name = action.display_name
                row.description = action.description
                row.action_type = action.action_type
                row.required_scopes = action.required_scopes
                row.input_schema = action.input_schema
                row.output_schema = action.output_schema
                row.provider_action_name = action.provider_action_name
                row.resource = action.resource
                row.discovered_at = action.discovered_at
                row.ttl_hours = action.ttl_hours
            await db.commit()


# ═══════════════════════════════════════════════════════════════════════════════
# REGISTRY
# ═══════════════════════════════════════════════════════════════════════════════

class ActionRegistry:
    def __init__(
        self,
        store: ActionStore,
        discovery: ActionDiscovery | None = None,
        *,
        cache_ttl_s: float | None = None,
        ttl_hours: int | None = None,
        now: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._discovery = discovery
        self._now = now
        self.ttl_hours = ttl_hours if ttl_hours is not None else settings.action_ttl_hours
        self._cache: TTLCache[list[RegisteredAction]] = TTLCache(
            cache_ttl_s if cache_ttl_s is not None else settings.action_cache_ttl_s,
            clock=monotonic,
        )
        self._synthesizer = Synthesizer()

    async def get_actions_for_integration(
        self,
        integration_id: str,
        *,
        force_refresh: bool = False,
        entity_id: str | None = None,
    ) -> list[RegisteredAction]:
        key = integration_id.lower()

        if not force_refresh:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        stored = await self._store.load(key)
        if stored and not force_refresh:
            now = self._now()
            if not any(a.is_stale(now) for a in stored):
                self._cache.set(key, stored)
                return stored
            logger.info("action_registry_stale", integration=key, actions=len(stored))

        if not entity_id:
            if stored:
                self._cache.set(key, stored)
                return stored
            return []

        discovered = await self.discover_and_persist(integration_id, entity_id)
        self._cache.set(key, discovered)
        return discovered

    async def get_actions_for_integrations(
        self,
        integration_ids: list[str],
        *,
        entity_id: str | None = None,
    ) -> dict[str, list[RegisteredAction]]:
        """Fan out per integration; one failure does not fail the others."""
        results = await asyncio.gather(
            *(self.get_actions_for_integration(i, entity_id=entity_id) for i in integration_ids),
            return_exceptions=True,
        )
        out: dict[str, list[RegisteredAction]] = {}
        for integration_id, result in zip(integration_ids, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "action_registry_lookup_failed",
                    integration=integration_id,
                    error=str(result),
                )
                continue
            out[integration_id] = result
        return out

    async def get_action(self, capability_id: str) -> RegisteredAction | None:
        return await self._store.get(capability_id)

    async def discover_and_persist(self, integration_id: str, entity_id: str) -> list[RegisteredAction]:
        if self._discovery is None:
            return []
        app_name = PROVIDER_APP_NAMES.get(integration_id.lower(), integration_id.lower())
        try:
            descriptors = await self._discovery.fetch_action_descriptors(entity_id, app_name)
        except Exception as e:
            logger.error(
                "action_discovery_failed",
                integration=integration_id,
                error=str(e),
            )
            return []
        if not descriptors:
            return []

        now = self._now()
        actions = [
            RegisteredAction(
                id=cap.id,
                integration_id=integration_id.lower(),
                display_name=cap.name,
                description=cap.description,
                action_type=classify_action_type(cap.type, cap.name),
                provider_action_name=cap.original_action_id,
                input_schema=cap.parameters,
                resource=cap.resource,
                discovered_at=now,
                ttl_hours=self.ttl_hours,
            )
            for cap in self._synthesizer.synthesize(descriptors, integration_id.lower())
        ]
        await self._store.upsert(actions)
        logger.info("actions_discovered", integration=integration_id, count=len(actions))
        return actions

    async def resolve_capability_name(self, capability_id: str) -> str | None:
        """Provider-native action name for a capability id, or None."""
        stored = await self._store.get(capability_id)
        if stored is not None and stored.provider_action_name:
            return stored.provider_action_name

        action_part = capability_id.split(":", 1)[1] if ":" in capability_id else capability_id
        if _PROVIDER_ACTION_NAME.match(action_part):
            return action_part
        return None

    async def capability_lookup(
        self,
        integration_ids: list[str],
        *,
        entity_id: str | None = None,
    ) -> Callable[[str], Any]:
        """Synchronous lookup over the catalog plus registered actions, for the compiler."""
        registered = await self.get_actions_for_integrations(integration_ids, entity_id=entity_id)
        by_id = {a.id: a for actions in registered.values() for a in actions}

        def lookup(capability_id: str) -> Any:
            return get_capability(capability_id) or by_id.get(capability_id)

        return lookup

    def invalidate(self, integration_id: str | None = None) -> None:
        self._cache.invalidate(integration_id.lower() if integration_id else None)
