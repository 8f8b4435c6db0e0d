"""Integration readiness: are the integrations a tool needs connected, and healthy?"""

from __future__ import annotations

import uuid
from typing import Any, Iterable, Protocol

import structlog
from sqlalchemy import select

from toolsmith.core.errors import IntegrationNotConnectedError
from toolsmith.db.models import IntegrationConnection
from toolsmith.db.session import SessionFactory
from toolsmith.integrations.composio_client import ComposioClient
from toolsmith.integrations.health import health_report
from toolsmith.integrations.tokens import ComposioEntityTokenProvider
from toolsmith.registry.actions import PROVIDER_APP_NAMES
from toolsmith.spec.models import ToolSpecification

logger = structlog.get_logger()


class ConnectionLister(Protocol):
    async def list_connected(self, org_id: str) -> set[str]: ...


class SqlConnectionLister:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def list_connected(self, org_id: str) -> set[str]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(IntegrationConnection.integration_id).where(
                    IntegrationConnection.org_id == uuid.UUID(str(org_id)),
                    IntegrationConnection.status == "active",
                )
            )
            return {row for row in result.scalars().all()}


class ComposioConnectionLister:
    def __init__(
        self,
        client: ComposioClient,
        entities: ComposioEntityTokenProvider | None = None,
    ) -> None:
        self._client = client
        self._entities = entities or ComposioEntityTokenProvider()
        self._app_to_integration = {app: integration for integration, app in PROVIDER_APP_NAMES.items()}

    async def list_connected(self, org_id: str) -> set[str]:
        entity_id = await self._entities.get_valid_access_token(org_id, "composio")
        apps = await self._client.get_connected_apps(entity_id)
        return {self._app_to_integration.get(app, app) for app in apps}


def required_integrations(spec: ToolSpecification) -> list[str]:
    return list(dict.fromkeys([i.id for i in spec.integrations] + [a.integration_id for a in spec.actions]))


def check_integration_readiness(spec: ToolSpecification, connected: Iterable[str]) -> None:
    """Raise IntegrationNotConnectedError naming missing integrations and the actions they block."""
    connected_ids = set(connected)
    missing = [integration_id for integration_id in required_integrations(spec) if integration_id not in connected_ids]
    if not missing:
        return
    blocking = [a.id for a in spec.actions if a.integration_id in missing]
    logger.warning("integrations_not_connected", missing=missing, blocking_actions=blocking)
    raise IntegrationNotConnectedError(missing, blocking)


def integration_health_report(spec: ToolSpecification) -> dict[str, dict[str, Any]]:
    """Current health per required integration, with the actions a degraded one blocks."""
    report = health_report(required_integrations(spec))
    for integration_id, health in report.items():
        if health["status"] == "degraded":
            health["blocking_actions"] = [a.id for a in spec.actions if a.integration_id == integration_id]
    return report
