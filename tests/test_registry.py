"""Tests for the action registry, discovery synthesis and classification."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from toolsmith.registry.actions import ActionRegistry, RegisteredAction, SqlActionStore
from toolsmith.registry.catalog import capabilities_for_integration, get_capability, normalize_action_name
from toolsmith.registry.classifier import classify_action_type
from toolsmith.registry.synthesizer import Synthesizer, infer_operation_type, infer_resource

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
ENTITY = "toolsmith_org_acme"

DESCRIPTORS = [
    {"slug": "GITHUB_LIST_REPOSITORY_ISSUES", "description": "List issues", "parameters": {"owner": {"type": "string"}}},
    {"slug": "GITHUB_CREATE_AN_ISSUE", "description": "Create an issue"},
    {"name": "SLACKBOT_SEND_MESSAGE"},
    {"slug": "GITHUB_LIST_REPOSITORY_ISSUES"},
    {"description": "no name at all"},
]


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

class FakeStore:
    def __init__(self, rows: list[RegisteredAction] | None = None) -> None:
        self.rows = list(rows or [])
        self.loads = 0
        self.upserts: list[list[RegisteredAction]] = []

    async def load(self, integration_id: str) -> list[RegisteredAction]:
        self.loads += 1
        return [r for r in self.rows if r.integration_id == integration_id]

    async def get(self, capability_id: str) -> RegisteredAction | None:
        return next((r for r in self.rows if r.id == capability_id), None)

    async def upsert(self, actions: list[RegisteredAction]) -> None:
        self.upserts.append(actions)
        ids = {a.id for a in actions}
        self.rows = [r for r in self.rows if r.id not in ids] + list(actions)


class FakeDiscovery:
    def __init__(self, descriptors: list | Exception) -> None:
        self.descriptors = descriptors
        self.calls: list[tuple[str, str]] = []

    async def fetch_action_descriptors(self, entity_id: str, app_name: str) -> list:
        self.calls.append((entity_id, app_name))
        if isinstance(self.descriptors, Exception):
            raise self.descriptors
        return self.descriptors


class FakeMonotonic:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _row(capability_id: str, integration_id: str = "github", age: timedelta = timedelta(hours=1)) -> RegisteredAction:
    return RegisteredAction(
        id=capability_id,
        integration_id=integration_id,
        display_name=capability_id.split(":")[-1],
        action_type="READ",
        provider_action_name=capability_id.split(":")[-1],
        discovered_at=NOW - age,
    )


def _registry(store, discovery=None, monotonic=None) -> ActionRegistry:
    return ActionRegistry(
        store,
        discovery,
        cache_ttl_s=300,
        ttl_hours=24,
        now=lambda: NOW,
        monotonic=monotonic or FakeMonotonic(),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Classification and synthesis
# ─────────────────────────────────────────────────────────────────────────────

class TestClassifier:
    def test_declared_type_wins(self):
        assert classify_action_type("create", "SLACKBOT_SEND_MESSAGE") == "WRITE"
        assert classify_action_type("delete", "anything") == "MUTATE"
        assert classify_action_type("list", "post_list") == "READ"

    def test_name_heuristics(self):
        assert classify_action_type("other", "SLACKBOT_SEND_MESSAGE") == "NOTIFY"
        assert classify_action_type(None, "add_label") == "WRITE"
        assert classify_action_type(None, "edit_page") == "MUTATE"
        assert classify_action_type(None, "remove_member") == "MUTATE"

    def test_unknown_is_read(self):
        assert classify_action_type(None, "fetch_conversation_history") == "READ"
        assert classify_action_type(None, None) == "READ"


class TestSynthesizer:
    def test_operation_type(self):
        assert infer_operation_type("GITHUB_LIST_COMMITS") == "list"
        assert infer_operation_type("NOTION_GET_ALL_PAGES") == "list"
        assert infer_operation_type("GITHUB_GET_A_REPOSITORY") == "get"
        assert infer_operation_type("GITHUB_CREATE_AN_ISSUE") == "create"
        assert infer_operation_type("LINEAR_PATCH_TEAM") == "update"
        assert infer_operation_type("ASANA_REMOVE_TAG") == "delete"
        assert infer_operation_type("SLACKBOT_SEND_MESSAGE") == "other"

    def test_resource(self):
        assert infer_resource("GITHUB_LIST_COMMITS") == "list"
        assert infer_resource("issues_list") == "issues"
        assert infer_resource("ping") == "ping"

    def test_synthesize_dedupes_and_skips_nameless(self):
        capabilities = Synthesizer().synthesize(DESCRIPTORS, "github")
        assert [c.id for c in capabilities] == [
            "github:GITHUB_LIST_REPOSITORY_ISSUES",
            "github:GITHUB_CREATE_AN_ISSUE",
            "github:SLACKBOT_SEND_MESSAGE",
        ]
        assert capabilities[0].parameters == {"owner": {"type": "string"}}
        assert capabilities[0].original_action_id == "GITHUB_LIST_REPOSITORY_ISSUES"
        assert capabilities[2].description == ""


class TestCatalog:
    def test_get_capability(self):
        capability = get_capability("github_commits_list")
        assert capability is not None
        assert capability.required_filters == ("repo",)
        assert get_capability("slack_post_message").action_type == "NOTIFY"
        assert get_capability("nope_list") is None

    def test_mapping_only_ids_are_reads(self):
        capability = get_capability("github_pull_request_get")
        assert capability is not None
        assert capability.integration_id == "github"
        assert capability.action_type == "READ"

    def test_capabilities_for_integration(self):
        ids = {c.id for c in capabilities_for_integration("slack")}
        assert ids == {"slack_channels_list", "slack_messages_list", "slack_post_message"}

    def test_normalize_action_name(self):
        assert normalize_action_name("NOTION_SEARCH") == "NOTION_SEARCH_NOTION_PAGE"
        assert normalize_action_name("SLACK_SEND_MESSAGE") == "SLACKBOT_SEND_MESSAGE"
        assert normalize_action_name("GITHUB_LIST_COMMITS") == "GITHUB_LIST_COMMITS"
        assert normalize_action_name("CUSTOM_THING") == "CUSTOM_THING"


# ─────────────────────────────────────────────────────────────────────────────
# Registry resolution
# ─────────────────────────────────────────────────────────────────────────────

class TestActionRegistry:
    @pytest.mark.asyncio
    async def test_fresh_store_rows_are_served_and_cached(self):
        store = FakeStore([_row("github:GITHUB_LIST_COMMITS")])
        discovery = FakeDiscovery(DESCRIPTORS)
        registry = _registry(store, discovery)

        first = await registry.get_actions_for_integration("GitHub", entity_id=ENTITY)
        second = await registry.get_actions_for_integration("github", entity_id=ENTITY)
        assert [a.id for a in first] == ["github:GITHUB_LIST_COMMITS"]
        assert second is first
        assert store.loads == 1
        assert discovery.calls == []

    @pytest.mark.asyncio
    async def test_cache_expires(self):
        clock = FakeMonotonic()
        store = FakeStore([_row("github:GITHUB_LIST_COMMITS")])
        registry = _registry(store, monotonic=clock)
        await registry.get_actions_for_integration("github")
        clock.now = 301
        await registry.get_actions_for_integration("github")
        assert store.loads == 2

    @pytest.mark.asyncio
    async def test_any_stale_row_triggers_discovery(self):
        store = FakeStore([
            _row("github:GITHUB_LIST_COMMITS"),
            _row("github:GITHUB_GET_A_REPOSITORY", age=timedelta(hours=30)),
        ])
        discovery = FakeDiscovery(DESCRIPTORS[:2])
        registry = _registry(store, discovery)

        actions = await registry.get_actions_for_integration("github", entity_id=ENTITY)
        assert discovery.calls == [(ENTITY, "github")]
        assert [a.id for a in actions] == ["github:GITHUB_LIST_REPOSITORY_ISSUES", "github:GITHUB_CREATE_AN_ISSUE"]
        assert [a.action_type for a in actions] == ["READ", "WRITE"]
        assert all(a.discovered_at == NOW and a.ttl_hours == 24 for a in actions)
        assert store.upserts == [actions]

    @pytest.mark.asyncio
    async def test_stale_rows_served_without_entity(self):
        store = FakeStore([_row("github:GITHUB_LIST_COMMITS", age=timedelta(days=3))])
        discovery = FakeDiscovery(DESCRIPTORS)
        registry = _registry(store, discovery)
        actions = await registry.get_actions_for_integration("github")
        assert [a.id for a in actions] == ["github:GITHUB_LIST_COMMITS"]
        assert discovery.calls == []

    @pytest.mark.asyncio
    async def test_empty_without_entity(self):
        assert await _registry(FakeStore(), FakeDiscovery(DESCRIPTORS)).get_actions_for_integration("github") == []

    @pytest.mark.asyncio
    async def test_provider_app_name_mapping(self):
        discovery = FakeDiscovery([{"slug": "SLACKBOT_SEND_MESSAGE"}])
        registry = _registry(FakeStore(), discovery)
        actions = await registry.get_actions_for_integration("slack", entity_id=ENTITY)
        assert discovery.calls == [(ENTITY, "slackbot")]
        assert actions[0].id == "slack:SLACKBOT_SEND_MESSAGE"
        assert actions[0].action_type == "NOTIFY"

    @pytest.mark.asyncio
    async def test_discovery_failure_degrades_to_empty(self):
        registry = _registry(FakeStore(), FakeDiscovery(RuntimeError("composio down")))
        assert await registry.get_actions_for_integration("github", entity_id=ENTITY) == []

    @pytest.mark.asyncio
    async def test_force_refresh_skips_cache_and_store(self):
        store = FakeStore([_row("github:GITHUB_LIST_COMMITS")])
        discovery = FakeDiscovery(DESCRIPTORS[:1])
        registry = _registry(store, discovery)
        await registry.get_actions_for_integration("github", entity_id=ENTITY)
        refreshed = await registry.get_actions_for_integration("github", force_refresh=True, entity_id=ENTITY)
        assert [a.id for a in refreshed] == ["github:GITHUB_LIST_REPOSITORY_ISSUES"]
        assert len(discovery.calls) == 1

    @pytest.mark.asyncio
    async def test_invalidate(self):
        store = FakeStore([_row("github:GITHUB_LIST_COMMITS")])
        registry = _registry(store)
        await registry.get_actions_for_integration("github")
        registry.invalidate("GitHub")
        await registry.get_actions_for_integration("github")
        assert store.loads == 2

    @pytest.mark.asyncio
    async def test_fan_out_isolates_failures(self):
        class FlakyStore(FakeStore):
            async def load(self, integration_id: str) -> list[RegisteredAction]:
                if integration_id == "slack":
                    raise RuntimeError("db hiccup")
                return await super().load(integration_id)

        registry = _registry(FlakyStore([_row("github:GITHUB_LIST_COMMITS")]))
        result = await registry.get_actions_for_integrations(["github", "slack"])
        assert list(result) == ["github"]

    @pytest.mark.asyncio
    async def test_resolve_capability_name(self):
        store = FakeStore([_row("github:GITHUB_LIST_COMMITS")])
        registry = _registry(store)
        assert await registry.resolve_capability_name("github:GITHUB_LIST_COMMITS") == "GITHUB_LIST_COMMITS"
        assert await registry.resolve_capability_name("linear:LINEAR_LIST_LINEAR_TEAMS") == "LINEAR_LIST_LINEAR_TEAMS"
        assert await registry.resolve_capability_name("github_issues_list") is None

    @pytest.mark.asyncio
    async def test_capability_lookup_prefers_catalog(self):
        registry = _registry(FakeStore([_row("github:GITHUB_LIST_COMMITS")]))
        lookup = await registry.capability_lookup(["github"])
        assert lookup("github_issues_list").resource == "issues"
        assert lookup("github:GITHUB_LIST_COMMITS").provider_action_name == "GITHUB_LIST_COMMITS"
        assert lookup("github:UNKNOWN") is None


# ─────────────────────────────────────────────────────────────────────────────
# SQL store
# ─────────────────────────────────────────────────────────────────────────────

class TestSqlActionStore:
    @pytest.mark.asyncio
    async def test_upsert_and_load(self, session_factory):
        store = SqlActionStore(session_factory)
        await store.upsert([_row("github:GITHUB_LIST_COMMITS"), _row("slack:SLACKBOT_SEND_MESSAGE", "slack")])
        updated = _row("github:GITHUB_LIST_COMMITS")
        updated.description = "List commits on a repository"
        await store.upsert([updated])

        rows = await store.load("github")
        assert len(rows) == 1
        assert rows[0].description == "List commits on a repository"
        assert rows[0].discovered_at.tzinfo is not None
        assert not rows[0].is_stale(NOW)

        fetched = await store.get("slack:SLACKBOT_SEND_MESSAGE")
        assert fetched is not None
        assert fetched.integration_id == "slack"
        assert await store.get("slack:MISSING") is None

    @pytest.mark.asyncio
    async def test_registry_persists_discovery(self, session_factory):
        store = SqlActionStore(session_factory)
        registry = _registry(store, FakeDiscovery(DESCRIPTORS[:2]))
        await registry.get_actions_for_integration("github", entity_id=ENTITY)
        action = await registry.get_action("github:GITHUB_CREATE_AN_ISSUE")
        assert action is not None
        assert action.action_type == "WRITE"
        assert action.description == "Create an issue"
