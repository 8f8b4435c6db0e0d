"""Tests for integration readiness checks."""

from __future__ import annotations

import uuid

import pytest

from conftest import ORG_ID, build_spec
from toolsmith.core.errors import IntegrationNotConnectedError
from toolsmith.db.models import IntegrationConnection
from toolsmith.integrations.health import integration_health
from toolsmith.integrations.readiness import (
    ComposioConnectionLister,
    SqlConnectionLister,
    check_integration_readiness,
    integration_health_report,
)
from toolsmith.spec.models import ToolSpecification


class _Apps:
    def __init__(self, apps: list[str]) -> None:
        self.apps = apps
        self.entities: list[str] = []

    async def get_connected_apps(self, entity_id: str) -> list[str]:
        self.entities.append(entity_id)
        return self.apps


class TestCheckIntegrationReadiness:
    def test_all_connected(self):
        check_integration_readiness(ToolSpecification.parse(build_spec()), {"github", "slack", "linear"})

    def test_missing_names_blocking_actions(self):
        with pytest.raises(IntegrationNotConnectedError) as exc_info:
            check_integration_readiness(ToolSpecification.parse(build_spec()), ["github"])
        assert exc_info.value.integration_ids == ["slack"]
        assert exc_info.value.blocking_actions == ["notify"]

    def test_nothing_connected(self):
        with pytest.raises(IntegrationNotConnectedError) as exc_info:
            check_integration_readiness(ToolSpecification.parse(build_spec()), [])
        assert exc_info.value.integration_ids == ["github", "slack"]
        assert exc_info.value.blocking_actions == ["list_issues", "create_issue", "notify"]


class TestConnectionListers:
    @pytest.mark.asyncio
    async def test_sql_lists_active_only(self, session_factory):
        other_org = uuid.uuid4()
        async with session_factory() as db:
            db.add_all([
                IntegrationConnection(org_id=uuid.UUID(ORG_ID), integration_id="github", status="active"),
                IntegrationConnection(org_id=uuid.UUID(ORG_ID), integration_id="slack", status="reauth_required"),
                IntegrationConnection(org_id=other_org, integration_id="linear", status="active"),
            ])
            await db.commit()

        assert await SqlConnectionLister(session_factory).list_connected(ORG_ID) == {"github"}

    @pytest.mark.asyncio
    async def test_composio_maps_app_names(self):
        apps = _Apps(["github", "slackbot", "gmail"])
        lister = ComposioConnectionLister(apps)  # type: ignore[arg-type]
        assert await lister.list_connected(ORG_ID) == {"github", "slack", "google"}
        assert apps.entities == [f"toolsmith_org_{ORG_ID}"]


class TestIntegrationHealthReport:
    def test_uncalled_integrations_are_healthy(self):
        report = integration_health_report(ToolSpecification.parse(build_spec()))
        assert set(report) == {"github", "slack"}
        assert all(entry["status"] == "healthy" for entry in report.values())

    def test_degraded_integration_names_blocked_actions(self):
        for _ in range(5):
            integration_health("github").record(False)
        report = integration_health_report(ToolSpecification.parse(build_spec()))
        assert report["github"]["status"] == "degraded"
        assert report["github"]["blocking_actions"] == ["list_issues", "create_issue"]
        assert "blocking_actions" not in report["slack"]
