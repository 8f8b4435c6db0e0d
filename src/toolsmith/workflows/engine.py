"""Workflow engine.

Runs a workflow's nodes one at a time in topological order:

    action     execute the node's action; input is the run input merged
               with any earlier result stored under the node id
    condition  resolve a dot-path against the tool state (persisted, else
               state.initial); a missing value, False, zero or "" ends
               the run. Empty lists and dicts let it continue
    wait       sleep max(0, wait_ms)
    transform  keep an earlier result for the node, else pass the input

There is no retry inside the engine; an action failure ends the run.
With a run recorder on the executor, each workflow run is one
execution run record with a log entry per action node.
See ``toolsmith.workflows.retry`` for the per-workflow retry policy.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

import structlog

from toolsmith.core.errors import WorkflowNodeError, WorkflowNotFoundError
from toolsmith.core.trace import ExecutionTracer
from toolsmith.runtime.executor import ActionExecutor
from toolsmith.runtime.runs import RunHandle, RunStatus, run_log_entry
from toolsmith.spec.graph import topological_order
from toolsmith.spec.models import WorkflowNode, WorkflowSpec

logger = structlog.get_logger()

Sleep = Callable[[float], Awaitable[Any]]


def resolve_state_path(state: dict[str, Any], path: str | None) -> Any:
    if not path:
        return None
    current: Any = state
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
    return current


def condition_holds(value: Any) -> bool:
    """Empty lists and dicts hold; only None, False, zero and "" do not."""
    if value is None:
        return False
    if isinstance(value, (bool, int, float, str)):
        return bool(value)
    return True


class WorkflowEngine:
    def __init__(self, executor: ActionExecutor, sleep: Sleep = asyncio.sleep) -> None:
        self.executor = executor
        self._sleep = sleep

    def get_workflow(self, workflow_id: str) -> WorkflowSpec:
        workflow = self.executor.artifact.workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    async def run(
        self,
        workflow_id: str,
        input: dict[str, Any] | None = None,
        *,
        trigger_id: str | None = None,
        results: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute the workflow and return outputs keyed by node id.

        ``results`` seeds node outputs from an earlier attempt: an action
        node merges a dict result into its input, a transform node keeps it.
        """
        workflow = self.get_workflow(workflow_id)
        order = topological_order(workflow)
        nodes = self._run_nodes(workflow, order, input or {}, dict(results or {}), trigger_id)
        if workflow.timeout_ms:
            return await asyncio.wait_for(nodes, timeout=workflow.timeout_ms / 1000)
        return await nodes

    async def _run_nodes(
        self,
        workflow: WorkflowSpec,
        order: list[WorkflowNode],
        input: dict[str, Any],
        results: dict[str, Any],
        trigger_id: str | None,
    ) -> dict[str, Any]:
        executor = self.executor
        tracer = ExecutionTracer.start("run")
        record = await self._start_record(workflow, input, trigger_id)
        logger.info("workflow_started", workflow_id=workflow.id, nodes=[n.id for n in order])

        try:
            for node in order:
                await self._record(record, current_step=node.id)
                if node.type == "action":
                    if not node.action_id:
                        raise WorkflowNodeError(workflow.id, node.id, "missing actionId")
                    prior = results.get(node.id)
                    node_input = {**input, **(prior if isinstance(prior, dict) else {})}
                    started = time.monotonic()
                    try:
                        result = await executor.execute(
                            node.action_id, node_input, tracer=tracer, trigger_id=trigger_id, record_run=False,
                        )
                    except Exception as e:
                        await self._record(record, entry=run_log_entry(
                            f"{node.id}:failed", "failed",
                            action_id=node.action_id,
                            duration_ms=round((time.monotonic() - started) * 1000, 1),
                            error=str(e),
                        ))
                        raise
                    results[node.id] = result.output
                    await self._record(record, entry=run_log_entry(
                        f"{node.id}:done", "done",
                        action_id=node.action_id,
                        duration_ms=round((time.monotonic() - started) * 1000, 1),
                        output=result.output,
                    ))
                elif node.type == "condition":
                    state = await executor.load_state()
                    if not condition_holds(resolve_state_path(state, node.condition)):
                        logger.info("workflow_condition_stopped", workflow_id=workflow.id, node_id=node.id)
                        await self._record(record, entry=run_log_entry(
                            f"{node.id}:stopped", "stopped", condition=node.condition,
                        ))
                        break
                elif node.type == "wait":
                    wait_ms = max(0.0, node.wait_ms or 0)
                    if wait_ms > 0:
                        await self._sleep(wait_ms / 1000)
                elif node.type == "transform":
                    if results.get(node.id) is None:
                        results[node.id] = input
        except (Exception, asyncio.CancelledError) as e:
            tracer.finish("failure", str(e) or type(e).__name__)
            logger.error("workflow_failed", workflow_id=workflow.id, error=str(e) or type(e).__name__)
            await self._record(record, status="failed")
            raise

        tracer.finish("success")
        logger.info("workflow_completed", workflow_id=workflow.id, completed=list(results))
        await self._record(record, status="completed", current_step="completed", final_state=True)
        return results

    # ═══════════════════════════════════════════════════════════════════════
    # RUN RECORDS
    # ═══════════════════════════════════════════════════════════════════════

    async def _start_record(
        self,
        workflow: WorkflowSpec,
        input: dict[str, Any],
        trigger_id: str | None,
    ) -> RunHandle | None:
        runs = self.executor.runs
        if runs is None:
            return None
        record = await runs.start(
            tool_id=self.executor.tool_id,
            org_id=self.executor.org_id,
            workflow_id=workflow.id,
            trigger_id=trigger_id,
            input=input,
            state_snapshot=await self.executor.load_state(),
        )
        await runs.update(record, status="running", current_step="start")
        return record

    async def _record(
        self,
        record: RunHandle | None,
        *,
        status: RunStatus | None = None,
        current_step: str | None = None,
        entry: dict[str, Any] | None = None,
        final_state: bool = False,
    ) -> None:
        runs = self.executor.runs
        if record is None or runs is None:
            return
        snapshot = await self.executor.load_state() if final_state else None
        await runs.update(record, status=status, current_step=current_step, entry=entry, state_snapshot=snapshot)
