"""Runtime action executor.

Runs one action of a compiled tool:

    1. resolve the action from the artifact            ActionNotFoundError
    2. approval gate (unless dry run)                  ApprovalRequiredError
    3. resolve the integration's runtime + capability  RuntimeNotFoundError / CapabilityNotFoundError
    4. dry run short-circuit for non-READ actions
    5. open an execution run record (when a recorder is configured)
    6. token -> auth context -> permission check -> auto-resolved params -> execute
    7. reducer -> persist state, only for writes_to_state actions
                                                       StateStoreError propagates
    8. best-effort memory write of the output
    9. close the run record and return {state, output, events}

Before the first state write a tool's state is its declared
``state.initial``.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from typing import Any, Iterable

import structlog

from toolsmith.config import settings
from toolsmith.core.errors import (
    ActionNotFoundError,
    ApprovalRequiredError,
    CapabilityNotFoundError,
    IntegrationAuthError,
    StateStoreError,
)
from toolsmith.core.trace import ActionExecution, ExecutionTracer, StateMutation, sanitize_log_data
from toolsmith.integrations.runtime import DEFAULT_PERMISSIONS, AuthContext, Capability, RuntimeRegistry
from toolsmith.integrations.tokens import TokenProvider
from toolsmith.memory.scope import MemoryScope
from toolsmith.memory.store import MemoryStore
from toolsmith.runtime.reducers import apply_reducer
from toolsmith.runtime.runs import ExecutionRunRecorder, RunHandle, RunStatus, run_log_entry
from toolsmith.spec.compiler import CompiledArtifact
from toolsmith.spec.models import ActionSpec
from toolsmith.state.store import StateStore

logger = structlog.get_logger()

# Integrations whose expired tokens are reported as a warning event
# instead of failing the action.
REAUTH_WARNING_INTEGRATIONS = frozenset({"slack"})


@dataclass
class ExecutionResult:
    state: dict[str, Any]
    output: Any
    events: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.state, "output": self.output, "events": self.events}


def _record_count(output: Any) -> int:
    if isinstance(output, list):
        return len(output)
    return 1 if output else 0


def _resolve_params(params: dict[str, Any], capability: Capability, context: AuthContext) -> None:
    """Fill the capability's auto-resolved params from the auth context when the caller left them out."""
    for name in capability.auto_resolved_params:
        if params.get(name) is None and context.get(name) is not None:
            params[name] = context[name]


class ActionExecutor:
    def __init__(
        self,
        artifact: CompiledArtifact,
        runtimes: RuntimeRegistry,
        tokens: TokenProvider,
        state_store: StateStore,
        memory: MemoryStore | None = None,
        *,
        org_id: str,
        user_id: str | None = None,
        permissions: Iterable[str] = DEFAULT_PERMISSIONS,
        runs: ExecutionRunRecorder | None = None,
    ) -> None:
        self.artifact = artifact
        self.runtimes = runtimes
        self.tokens = tokens
        self.state_store = state_store
        self.memory = memory
        self.org_id = org_id
        self.user_id = user_id
        self.permissions = tuple(permissions)
        self.runs = runs

    @property
    def tool_id(self) -> str:
        return self.artifact.tool_id

    async def load_state(self) -> dict[str, Any]:
        """Persisted state, or a copy of the declared initial state before the first write."""
        state = await self.state_store.load(self.tool_id, self.org_id)
        if state:
            return state
        return copy.deepcopy(self.artifact.spec.state.initial)

    async def execute(
        self,
        action_id: str,
        input: dict[str, Any] | None = None,
        *,
        dry_run: bool = False,
        tracer: ExecutionTracer | None = None,
        trigger_id: str | None = None,
        record_run: bool = True,
    ) -> ExecutionResult:
        params = dict(input or {})
        action = self.artifact.actions.get(action_id)
        if action is None:
            raise ActionNotFoundError(action_id)
        if action.requires_approval and params.get("approved") is not True and not dry_run:
            raise ApprovalRequiredError(action_id)

        runtime = self.runtimes.get(action.integration_id)
        capability = runtime.get_capability(action.capability_id)
        if capability is None:
            raise CapabilityNotFoundError(action.integration_id, action.capability_id)

        if dry_run and action.type != "READ":
            logger.info("action_dry_run", action_id=action_id, type=action.type)
            return ExecutionResult(
                state={},
                output={
                    "dry_run": True,
                    "message": "Action skipped in dry-run mode",
                    "input": sanitize_log_data(params),
                },
            )

        run: RunHandle | None = None
        if record_run and self.runs is not None:
            run = await self._start_run(self.runs, action, params, trigger_id)
        owns_tracer = tracer is None
        tracer = tracer or ExecutionTracer.start("run")
        started = time.monotonic()
        try:
            token = await self.tokens.get_valid_access_token(self.org_id, action.integration_id)
            context = await runtime.resolve_context(token)
            check = getattr(runtime, "check_permissions", None)
            if check is not None:
                check(action.capability_id, self.permissions)
            _resolve_params(params, capability, context)
            output = await capability.execute(params, context, tracer)
        except IntegrationAuthError as e:
            tracer.log_action_execution(ActionExecution(action_id, "error", error=str(e)))
            if owns_tracer:
                tracer.finish("failure", str(e))
            warn = action.integration_id in REAUTH_WARNING_INTEGRATIONS
            await self._finish_run(
                run, "completed" if warn else "failed",
                run_log_entry(f"{action.id}:auth_required", "warning", error=str(e)),
            )
            if warn:
                logger.warning("integration_reauth_required", action_id=action_id, integration=action.integration_id)
                return ExecutionResult(state={}, output=None, events=[{
                    "type": "integration_warning",
                    "payload": {
                        "integration": action.integration_id,
                        "status": "reauth_required",
                        "reason": e.reason,
                        "user_action_required": True,
                    },
                }])
            raise
        except Exception as e:
            duration_ms = (time.monotonic() - started) * 1000
            tracer.log_action_execution(ActionExecution(action_id, "error", duration_ms=duration_ms, error=str(e)))
            if owns_tracer:
                tracer.finish("failure", str(e))
            logger.error("action_failed", action_id=action_id, capability=action.capability_id, error=str(e))
            await self._finish_run(run, "failed", run_log_entry(f"{action.id}:error", "error", error=str(e)))
            raise

        duration_ms = round((time.monotonic() - started) * 1000, 1)
        tracer.log_action_execution(ActionExecution(
            action_id,
            "success",
            duration_ms=duration_ms,
            records=_record_count(output),
        ))

        try:
            state = await self._apply_state(action, output, tracer)
        except StateStoreError as e:
            await self._finish_run(run, "failed", run_log_entry(f"{action.id}:state_error", "error", error=str(e)))
            raise
        await self._remember(action, output)
        await self._finish_run(run, "completed", run_log_entry(
            f"{action.id}:done", "done",
            action_id=action.id,
            integration_id=action.integration_id,
            capability_id=action.capability_id,
            duration_ms=duration_ms,
            output=output,
        ), state_snapshot=state)

        if owns_tracer:
            tracer.finish("success")
        logger.info("action_executed", action_id=action_id, records=_record_count(output))
        events = [{"type": event, "payload": {"action_id": action.id, "output": output}} for event in action.emits]
        return ExecutionResult(state=state, output=output, events=events)

    # ═══════════════════════════════════════════════════════════════════════
    # STATE, MEMORY AND RUN RECORDS
    # ═══════════════════════════════════════════════════════════════════════

    async def _apply_state(self, action: ActionSpec, output: Any, tracer: ExecutionTracer) -> dict[str, Any]:
        current = await self.load_state()
        if not (action.reducer_id and action.writes_to_state):
            return current
        new_state = apply_reducer(self.artifact.reducers, action.reducer_id, current, output)
        await self.state_store.save(self.tool_id, self.org_id, new_state)
        reducer = self.artifact.reducers[action.reducer_id]
        tracer.log_state_mutation(StateMutation(reducer.id, reducer.type, reducer.target))
        return new_state

    async def _remember(self, action: ActionSpec, output: Any) -> None:
        if self.memory is None:
            return
        key = f"action.{action.id}.last_output"
        scopes = [MemoryScope.tool_org(self.tool_id, self.org_id)]
        if self.user_id:
            scopes.append(MemoryScope.tool_user(self.tool_id, self.user_id))
        for scope in scopes:
            result = await self.memory.save(scope, settings.memory_namespace, key, output)
            if not result.ok:
                logger.warning("action_memory_write_skipped", action_id=action.id, scope=scope.type)

    async def _start_run(
        self,
        runs: ExecutionRunRecorder,
        action: ActionSpec,
        params: dict[str, Any],
        trigger_id: str | None,
    ) -> RunHandle:
        run = await runs.start(
            tool_id=self.tool_id,
            org_id=self.org_id,
            action_id=action.id,
            trigger_id=trigger_id or "manual",
            input=params,
            state_snapshot=await self.load_state(),
        )
        await runs.update(run, status="running", current_step=action.id, entry=run_log_entry(
            f"{action.id}:start", "running",
            action_id=action.id,
            integration_id=action.integration_id,
            capability_id=action.capability_id,
            input=params,
        ))
        return run

    async def _finish_run(
        self,
        run: RunHandle | None,
        status: RunStatus,
        entry: dict[str, Any],
        state_snapshot: dict[str, Any] | None = None,
    ) -> None:
        if run is None or self.runs is None:
            return
        await self.runs.update(run, status=status, entry=entry, state_snapshot=state_snapshot)
