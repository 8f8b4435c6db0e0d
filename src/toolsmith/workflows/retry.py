"""Workflow retry: the declared retry policy around a whole run, and re-running a recorded run."""

from __future__ import annotations

from typing import Any

import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_fixed

from toolsmith.core.errors import (
    ApprovalRequiredError,
    ExecutionRunNotFoundError,
    IntegrationUnavailableError,
    PermissionDeniedError,
    SpecCompileError,
    WorkflowNotFoundError,
)
from toolsmith.workflows.engine import WorkflowEngine

logger = structlog.get_logger()

# Structural, permission and degraded-integration failures are never retried.
_NON_RETRYABLE = (
    SpecCompileError,
    PermissionDeniedError,
    ApprovalRequiredError,
    WorkflowNotFoundError,
    IntegrationUnavailableError,
)


def _retryable(exc: BaseException) -> bool:
    return not isinstance(exc, _NON_RETRYABLE)


async def run_with_retry_policy(
    engine: WorkflowEngine,
    workflow_id: str,
    input: dict[str, Any] | None = None,
    *,
    trigger_id: str | None = None,
) -> dict[str, Any]:
    policy = engine.get_workflow(workflow_id).retry_policy

    def _log_retry(retry_state: Any) -> None:
        logger.warning(
            "workflow_retry",
            workflow_id=workflow_id,
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()),
        )

    async for attempt in AsyncRetrying(
        retry=retry_if_exception(_retryable),
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=wait_fixed(policy.backoff_ms / 1000),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            return await engine.run(workflow_id, input, trigger_id=trigger_id)
    raise AssertionError("unreachable")


async def retry_recorded_run(engine: WorkflowEngine, run_id: str) -> Any:
    """Re-run a recorded action or workflow run with its original input.

    The new run is recorded under trigger ``retry:<run_id>``.
    """
    executor = engine.executor
    if executor.runs is None:
        raise ExecutionRunNotFoundError(run_id, "cannot be retried without a run recorder")
    run = await executor.runs.get(run_id, tool_id=executor.tool_id, org_id=executor.org_id)
    if run is None:
        raise ExecutionRunNotFoundError(run_id)

    trigger_id = f"retry:{run.id}"
    await executor.runs.mark_retried(run.id)
    logger.info("execution_run_retry", run_id=str(run.id), action_id=run.action_id, workflow_id=run.workflow_id)
    if run.action_id:
        return await executor.execute(run.action_id, dict(run.input or {}), trigger_id=trigger_id)
    if run.workflow_id:
        return await run_with_retry_policy(engine, run.workflow_id, dict(run.input or {}), trigger_id=trigger_id)
    raise ExecutionRunNotFoundError(run_id, "has no action or workflow to retry")
