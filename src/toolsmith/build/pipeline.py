"""Tool build cycle.

Compile -> readiness -> sequential seeding of READ actions -> data
quality gate -> goal/render decision -> READY or DEGRADED.

Seeding runs one action at a time. A failing action is recorded and the
pass moves on; only when every read action fails does the build end
DEGRADED. Evidence and the build log are written to memory best-effort.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from toolsmith.build.state_machine import BuildState, BuildStateMachine
from toolsmith.config import settings
from toolsmith.core.errors import IntegrationNotConnectedError, SpecCompileError
from toolsmith.core.trace import ExecutionTracer
from toolsmith.integrations.readiness import (
    ConnectionLister,
    check_integration_readiness,
    integration_health_report,
)
from toolsmith.integrations.runtime import RuntimeRegistry
from toolsmith.integrations.tokens import TokenProvider
from toolsmith.memory.scope import MemoryScope
from toolsmith.memory.store import MemoryStore
from toolsmith.quality.answer_contract import (
    AnswerContract,
    FetchedOutput,
    GateResult,
    normalize_rows,
    validate_fetched_data,
)
from toolsmith.quality.goal import (
    Decision,
    GoalPlan,
    GoalSatisfactionResult,
    IntentContract,
    decide_rendering,
    evaluate_goal_satisfaction,
    evaluate_relevance_gate,
)
from toolsmith.runtime.executor import ActionExecutor
from toolsmith.spec.compiler import ArtifactCache, CapabilityLookup, CompiledArtifact
from toolsmith.spec.models import ActionSpec, ToolSpecification
from toolsmith.state.store import StateStore

logger = structlog.get_logger()


@dataclass
class ActionFailure:
    action_id: str
    error: str


@dataclass
class BuildOutcome:
    state: BuildState
    artifact: CompiledArtifact | None = None
    outputs: list[FetchedOutput] = field(default_factory=list)
    failures: list[ActionFailure] = field(default_factory=list)
    gate: GateResult | None = None
    goal: GoalSatisfactionResult | None = None
    decision: Decision | None = None
    log: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None
    integration_health: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def has_data(self) -> bool:
        return any(normalize_rows(entry.output) or _is_scalar_data(entry.output) for entry in self.outputs)


def _is_scalar_data(output: Any) -> bool:
    return output is not None and not isinstance(output, (list, dict))


def select_read_actions(spec: ToolSpecification) -> list[ActionSpec]:
    """READ actions in declaration order, the initial-fetch action first."""
    reads = [action for action in spec.actions if action.type == "READ"]
    initial = spec.initial_fetch
    if initial is not None:
        first = next((a for a in spec.actions if a.id == initial.action_id), None)
        if first is not None:
            reads = [first] + [a for a in reads if a.id != first.id]
    return reads


class ToolBuilder:
    def __init__(
        self,
        runtimes: RuntimeRegistry,
        tokens: TokenProvider,
        state_store: StateStore,
        memory: MemoryStore | None = None,
        *,
        connections: ConnectionLister | None = None,
        artifacts: ArtifactCache | None = None,
        capability_lookup: CapabilityLookup | None = None,
    ) -> None:
        self.runtimes = runtimes
        self.tokens = tokens
        self.state_store = state_store
        self.memory = memory
        self.connections = connections
        self.artifacts = artifacts or ArtifactCache()
        self.capability_lookup = capability_lookup

    async def build(
        self,
        spec: ToolSpecification | dict[str, Any],
        prompt: str,
        *,
        org_id: str,
        user_id: str | None = None,
        goal_plan: GoalPlan | None = None,
        intent_contract: IntentContract | None = None,
        answer_contract: AnswerContract | None = None,
    ) -> BuildOutcome:
        parsed = ToolSpecification.parse(spec)
        machine = BuildStateMachine(parsed.id)
        try:
            artifact = self.artifacts.get_or_compile(parsed, self.capability_lookup)
        except SpecCompileError as e:
            machine.transition(BuildState.INTENT_PARSED, "Specification received")
            machine.degrade(f"Specification rejected: {e}")
            await self._save_build_log(parsed.id, org_id, machine)
            raise
        machine.transition(BuildState.INTENT_PARSED, f"Compiled {artifact.spec_hash[:12]}")

        health = integration_health_report(parsed)
        degraded = [integration_id for integration_id, h in health.items() if h["status"] == "degraded"]
        machine.transition(
            BuildState.VALIDATING_INTEGRATIONS,
            "Checking integration connections"
            + (f" (degraded: {', '.join(degraded)})" if degraded else ""),
            level="warning" if degraded else "info",
        )
        if self.connections is not None:
            try:
                connected = await self.connections.list_connected(org_id)
                check_integration_readiness(parsed, connected)
            except IntegrationNotConnectedError as e:
                machine.degrade(f"{e} (blocking: {', '.join(e.blocking_actions) or 'none'})")
                await self._save_build_log(artifact.tool_id, org_id, machine)
                return BuildOutcome(
                    machine.state, artifact, log=machine.to_records(), error=str(e), integration_health=health,
                )

        executor = ActionExecutor(
            artifact,
            self.runtimes,
            self.tokens,
            self.state_store,
            self.memory,
            org_id=org_id,
            user_id=user_id,
        )
        machine.transition(BuildState.FETCHING_DATA, "Seeding data from read actions")
        outputs, failures, statuses = await self._seed(executor, parsed, org_id)

        machine.transition(
            BuildState.DATA_READY,
            f"{len(outputs)} action(s) returned data, {len(failures)} failed",
            level="warning" if failures else "info",
        )
        gate = validate_fetched_data(outputs, answer_contract)
        relevance = evaluate_relevance_gate(gate.outputs, intent_contract) if gate.outputs else None
        outcome = BuildOutcome(machine.state, artifact, gate.outputs, failures, gate, integration_health=health)
        outcome.goal = evaluate_goal_satisfaction(
            prompt,
            has_data=outcome.has_data,
            goal_plan=goal_plan,
            intent_contract=intent_contract,
            relevance=relevance,
            integration_statuses=statuses,
        )
        outcome.decision = decide_rendering(prompt, outcome.goal)

        machine.transition(BuildState.BUILDING_VIEWS, f"Rendering {len(parsed.views)} view(s)")
        reads_attempted = len(outputs) + len(failures)
        if reads_attempted and not outputs:
            machine.degrade("Every read action failed")
        else:
            machine.transition(BuildState.READY, "Tool ready" if outcome.has_data else "Tool ready with no data")

        outcome.state = machine.state
        outcome.log = machine.to_records()
        await self._save_build_log(artifact.tool_id, org_id, machine)
        logger.info(
            "tool_built",
            tool_id=artifact.tool_id,
            state=machine.state.value,
            actions_ok=len(outputs),
            actions_failed=len(failures),
            decision=outcome.decision.kind,
        )
        return outcome

    # ═══════════════════════════════════════════════════════════════════════
    # SEEDING
    # ═══════════════════════════════════════════════════════════════════════

    async def _seed(
        self,
        executor: ActionExecutor,
        spec: ToolSpecification,
        org_id: str,
    ) -> tuple[list[FetchedOutput], list[ActionFailure], dict[str, dict[str, Any]]]:
        limit = spec.initial_fetch.limit if spec.initial_fetch else settings.initial_fetch_limit
        outputs: list[FetchedOutput] = []
        failures: list[ActionFailure] = []
        statuses: dict[str, dict[str, Any]] = {}
        tracer = ExecutionTracer.start("create")

        for action in select_read_actions(spec):
            try:
                result = await executor.execute(action.id, {"limit": limit}, tracer=tracer)
            except Exception as e:
                logger.warning("seed_action_failed", action_id=action.id, error=str(e))
                failures.append(ActionFailure(action.id, str(e)))
                continue

            warnings = [event for event in result.events if event["type"] == "integration_warning"]
            if warnings:
                payload = warnings[0]["payload"]
                statuses[payload["integration"]] = {
                    "status": payload["status"],
                    "reason": payload.get("reason"),
                    "required": True,
                }
                failures.append(ActionFailure(action.id, payload["status"]))
                continue

            outputs.append(FetchedOutput(action.id, result.output))
            await self._save_evidence(spec.id, org_id, action.id, result.output)

        tracer.finish("success" if outputs or not failures else "failure")
        return outputs, failures, statuses

    async def _save_evidence(self, tool_id: str, org_id: str, action_id: str, output: Any) -> None:
        if self.memory is None:
            return
        await self.memory.save(
            MemoryScope.tool_org(tool_id, org_id),
            settings.memory_namespace,
            "data_evidence",
            {
                "action_id": action_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "sample": output,
            },
        )

    async def _save_build_log(self, tool_id: str, org_id: str, machine: BuildStateMachine) -> None:
        if self.memory is None:
            return
        await self.memory.save(
            MemoryScope.tool_org(tool_id, org_id),
            settings.memory_namespace,
            "build_logs",
            {"state": machine.state.value, "entries": machine.to_records()},
        )
