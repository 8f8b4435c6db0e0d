"""Tests for spec parsing, validation, compilation and workflow ordering."""

from __future__ import annotations

import copy

import pytest

from conftest import TOOL_ID, build_spec
from toolsmith.core.errors import SpecCompileError, WorkflowCycleError
from toolsmith.registry.catalog import CatalogCapability, get_capability
from toolsmith.spec.compiler import (
    ArtifactCache,
    compile_spec,
    compose_lookups,
    spec_hash,
    validate_spec,
)
from toolsmith.spec.graph import topological_order
from toolsmith.spec.models import ToolSpecification, WorkflowSpec


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _workflow(nodes: list[str], edges: list[tuple[str, str]]) -> WorkflowSpec:
    return WorkflowSpec.model_validate({
        "id": "wf",
        "nodes": [{"id": n, "type": "transform"} for n in nodes],
        "edges": [{"from": a, "to": b} for a, b in edges],
    })


def _codes(report) -> list[str]:
    return [issue.code for issue in report.errors]


# ─────────────────────────────────────────────────────────────────────────────
# Parsing
# ─────────────────────────────────────────────────────────────────────────────

class TestParsing:
    def test_camel_case_wire_format(self):
        spec = ToolSpecification.parse(build_spec())
        action = spec.find_action("list_issues")
        assert action is not None
        assert action.integration_id == "github"
        assert action.reducer_id == "set_issues"
        assert spec.initial_fetch.limit == 5

    def test_edge_from_alias(self):
        spec = ToolSpecification.parse(build_spec())
        edge = spec.find_workflow("sync").edges[0]
        assert (edge.from_, edge.to) == ("fetch", "has_issues")

    def test_to_wire_uses_camel_case(self):
        wire = ToolSpecification.parse(build_spec()).to_wire()
        assert "initialFetch" in wire
        assert wire["actions"][0]["capabilityId"] == "github_issues_list"
        assert wire["workflows"][0]["edges"][0]["from"] == "fetch"

    def test_malformed_spec_raises_compile_error(self):
        spec = build_spec()
        spec["actions"][0]["type"] = "EXPLODE"
        with pytest.raises(SpecCompileError) as exc_info:
            ToolSpecification.parse(spec)
        assert exc_info.value.code == "malformed_spec"
        assert "actions" in exc_info.value.path

    def test_unmodelled_keys_are_dropped(self):
        spec = build_spec()
        spec["actions"][0]["permissions"] = ["repo"]
        spec["entities"][0]["supportedActions"] = ["list"]
        wire = ToolSpecification.parse(spec).to_wire()
        assert "identifiers" not in wire["entities"][0]
        assert "supportedActions" not in wire["entities"][0]
        assert "permissions" not in wire["actions"][0]
        assert wire["actions"][0]["writesToState"] is True

    def test_parse_is_identity_for_models(self):
        spec = ToolSpecification.parse(build_spec())
        assert ToolSpecification.parse(spec) is spec


# ─────────────────────────────────────────────────────────────────────────────
# Validation (collects everything)
# ─────────────────────────────────────────────────────────────────────────────

class TestValidateSpec:
    def test_valid_spec(self):
        report = validate_spec(build_spec())
        assert report.valid
        assert report.to_dict() == {"valid": True, "errors": []}

    def test_collects_every_error(self):
        spec = build_spec(entities=[], integrations=[{"id": "github"}])
        spec["actions"][0]["reducerId"] = "nope"
        report = validate_spec(spec)
        codes = _codes(report)
        assert "missing_entities" in codes
        assert "unknown_integration" in codes  # notify is a slack action
        assert "missing_reference" in codes
        assert len(report.errors) >= 3

    def test_entity_requirements(self):
        spec = build_spec(entities=[{"name": " ", "fields": [], "sourceIntegration": ""}])
        report = validate_spec(spec)
        entity_errors = [e for e in report.errors if e.path == "entities.0"]
        assert len(entity_errors) == 3

    def test_unknown_capability(self):
        spec = build_spec()
        spec["actions"][0]["capabilityId"] = "github_teleport"
        assert "unknown_capability" in _codes(validate_spec(spec))

    def test_capability_mismatch(self):
        spec = build_spec()
        spec["actions"][0]["capabilityId"] = "slack_channels_list"
        assert "capability_mismatch" in _codes(validate_spec(spec))

    def test_duplicate_action_ids(self):
        spec = build_spec()
        spec["actions"].append(copy.deepcopy(spec["actions"][0]))
        assert "duplicate_id" in _codes(validate_spec(spec))

    def test_workflow_cycle_reported(self):
        spec = build_spec()
        spec["workflows"][0]["edges"].append({"from": "announce", "to": "fetch"})
        assert "workflow_cycle" in _codes(validate_spec(spec))

    def test_trigger_and_view_references(self):
        spec = build_spec()
        spec["triggers"][0]["workflowId"] = "ghost"
        spec["views"][0]["source"]["entity"] = "ticket"
        spec["views"][0]["actions"] = ["ghost_action"]
        report = validate_spec(spec)
        paths = {e.path for e in report.errors}
        assert "triggers.nightly" in paths
        assert "views.issues_table" in paths
        assert _codes(report).count("missing_reference") == 3

    def test_malformed_spec_is_one_error(self):
        report = validate_spec({"actions": "not a list"})
        assert not report.valid
        assert _codes(report) == ["malformed_spec"]


# ─────────────────────────────────────────────────────────────────────────────
# Compilation (strict)
# ─────────────────────────────────────────────────────────────────────────────

class TestCompileSpec:
    def test_compiles_valid_spec(self):
        artifact = compile_spec(build_spec())
        assert artifact.tool_id == TOOL_ID
        assert set(artifact.actions) == {"list_issues", "create_issue", "notify"}
        assert set(artifact.reducers) == {"set_issues", "append_issues"}
        assert artifact.workflow_orders["sync"] == ("fetch", "has_issues", "pause", "announce")
        assert len(artifact.spec_hash) == 64

    def test_duplicates_checked_before_references(self):
        spec = build_spec()
        dup = copy.deepcopy(spec["actions"][0])
        dup["capabilityId"] = "does_not_exist"
        spec["actions"].append(dup)
        with pytest.raises(SpecCompileError) as exc_info:
            compile_spec(spec)
        assert exc_info.value.code == "duplicate_id"

    def test_unregistered_integration(self):
        spec = build_spec(integrations=[{"id": "github"}])
        with pytest.raises(SpecCompileError) as exc_info:
            compile_spec(spec)
        assert exc_info.value.code == "unknown_integration"
        assert exc_info.value.path == "actions.notify"

    def test_unknown_reducer(self):
        spec = build_spec()
        spec["actions"][2]["reducerId"] = "ghost"
        with pytest.raises(SpecCompileError, match="unknown reducer ghost"):
            compile_spec(spec)

    def test_workflow_missing_action(self):
        spec = build_spec()
        spec["workflows"][0]["nodes"][0]["actionId"] = "ghost"
        with pytest.raises(SpecCompileError, match="references missing action ghost"):
            compile_spec(spec)

    def test_action_node_without_action_id(self):
        spec = build_spec()
        del spec["workflows"][0]["nodes"][3]["actionId"]
        assert not validate_spec(spec).valid
        with pytest.raises(SpecCompileError) as exc_info:
            compile_spec(spec)
        assert exc_info.value.code == "missing_reference"
        assert exc_info.value.path == "workflows.sync.nodes.announce"

    def test_cycle_raises(self):
        spec = build_spec()
        spec["workflows"][0]["edges"].append({"from": "announce", "to": "fetch"})
        with pytest.raises(WorkflowCycleError):
            compile_spec(spec)

    def test_dangling_edge(self):
        spec = build_spec()
        spec["workflows"][0]["edges"].append({"from": "announce", "to": "nowhere"})
        with pytest.raises(SpecCompileError) as exc_info:
            compile_spec(spec)
        assert exc_info.value.code == "dangling_edge"

    def test_custom_capability_lookup(self):
        spec = build_spec()
        spec["actions"][0]["capabilityId"] = "github:GITHUB_LIST_COMMITS"
        custom = {"github:GITHUB_LIST_COMMITS": CatalogCapability("github:GITHUB_LIST_COMMITS", "github", "commits")}
        artifact = compile_spec(spec, compose_lookups(get_capability, custom.get))
        assert artifact.actions["list_issues"].capability_id == "github:GITHUB_LIST_COMMITS"

    def test_artifact_is_read_only(self):
        artifact = compile_spec(build_spec())
        with pytest.raises(TypeError):
            artifact.actions["extra"] = artifact.actions["notify"]  # type: ignore[index]

    def test_compile_does_not_mutate_input_model(self):
        spec = ToolSpecification.parse(build_spec())
        artifact = compile_spec(spec)
        assert artifact.spec is not spec
        assert artifact.spec == spec

    def test_to_dict_carries_optional_blocks(self):
        spec = build_spec(dataReadiness={"requiredEntities": ["issue"], "minimumRecords": 2})
        out = compile_spec(spec).to_dict()
        assert out["dataReadiness"] == {"requiredEntities": ["issue"], "minimumRecords": 2}
        assert "automations" not in out
        assert out["specHash"]


# ─────────────────────────────────────────────────────────────────────────────
# Hashing and the artifact cache
# ─────────────────────────────────────────────────────────────────────────────

class TestSpecHash:
    def test_hash_is_stable(self):
        assert spec_hash(build_spec()) == spec_hash(build_spec())

    def test_key_order_and_alias_spelling_do_not_matter(self):
        spec = build_spec()
        reordered = dict(reversed(list(spec.items())))
        reordered["actions"] = [
            {**a, "integration_id": a["integrationId"]} for a in spec["actions"]
        ]
        for a in reordered["actions"]:
            del a["integrationId"]
        assert spec_hash(reordered) == spec_hash(spec)

    def test_content_change_changes_hash(self):
        assert spec_hash(build_spec(name="Renamed")) != spec_hash(build_spec())

    def test_compile_hash_matches_spec_hash(self):
        assert compile_spec(build_spec()).spec_hash == spec_hash(build_spec())


class TestArtifactCache:
    def test_unchanged_spec_reuses_artifact(self):
        cache = ArtifactCache()
        first = cache.get_or_compile(build_spec())
        second = cache.get_or_compile(build_spec())
        assert first is second
        assert len(cache) == 1

    def test_changed_spec_recompiles(self):
        cache = ArtifactCache()
        first = cache.get_or_compile(build_spec())
        second = cache.get_or_compile(build_spec(name="Other"))
        assert first is not second
        assert len(cache) == 2

    def test_lru_bound(self):
        cache = ArtifactCache(max_entries=2)
        for name in ("a", "b", "c"):
            cache.get_or_compile(build_spec(name=name))
        assert len(cache) == 2

    def test_compile_errors_are_not_cached(self):
        cache = ArtifactCache()
        bad = build_spec(integrations=[{"id": "github"}])
        with pytest.raises(SpecCompileError):
            cache.get_or_compile(bad)
        assert len(cache) == 0


# ─────────────────────────────────────────────────────────────────────────────
# Topological order
# ─────────────────────────────────────────────────────────────────────────────

class TestTopologicalOrder:
    def test_every_edge_respected(self):
        workflow = _workflow(["d", "c", "b", "a"], [("a", "b"), ("b", "c"), ("a", "d"), ("c", "d")])
        order = [n.id for n in topological_order(workflow)]
        assert order == ["a", "b", "c", "d"]

    def test_ties_follow_declaration_order(self):
        workflow = _workflow(["x", "y", "z"], [])
        assert [n.id for n in topological_order(workflow)] == ["x", "y", "z"]

    def test_cycle(self):
        workflow = _workflow(["a", "b"], [("a", "b"), ("b", "a")])
        with pytest.raises(WorkflowCycleError) as exc_info:
            topological_order(workflow)
        assert exc_info.value.workflow_id == "wf"
        assert exc_info.value.code == "workflow_cycle"

    def test_self_loop_is_a_cycle(self):
        with pytest.raises(WorkflowCycleError):
            topological_order(_workflow(["a"], [("a", "a")]))

    def test_edge_to_unknown_node(self):
        with pytest.raises(SpecCompileError) as exc_info:
            topological_order(_workflow(["a"], [("a", "ghost")]))
        assert exc_info.value.code == "dangling_edge"
