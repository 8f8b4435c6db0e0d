"""Typed error taxonomy.

Categories:
    (a) structural compile errors: SpecCompileError, WorkflowCycleError
    (b) permission / auth errors : PermissionDeniedError, IntegrationAuthError
    (c) integration call failures: IntegrationCallError
    (d) persistence failures     : StateStoreError, MemoryAdapterError
Lookup misses (unknown action, runtime, reducer ...) are hard errors too.
"""

from __future__ import annotations

from typing import Literal

from toolsmith.core import ToolsmithError


class SpecCompileError(ToolsmithError):
    """A structural violation in a tool specification. Never retried."""

    def __init__(self, message: str, *, code: str = "invalid_spec", path: str = "") -> None:
        super().__init__(message)
        self.code = code
        self.path = path


class WorkflowCycleError(SpecCompileError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(
            f"Workflow {workflow_id} has cycles",
            code="workflow_cycle",
            path=f"workflows.{workflow_id}",
        )
        self.workflow_id = workflow_id


class PermissionDeniedError(ToolsmithError):
    """Capability-level denial. Callers should prompt for reconnection or approval."""

    def __init__(self, integration_id: str, capability_id: str) -> None:
        super().__init__(f"Permission denied for {integration_id}:{capability_id}")
        self.integration_id = integration_id
        self.capability_id = capability_id


class IntegrationAuthError(ToolsmithError):
    def __init__(self, integration_id: str, reason: str = "token_unavailable") -> None:
        super().__init__(f"Authentication unavailable for {integration_id}: {reason}")
        self.integration_id = integration_id
        self.reason = reason


class IntegrationCallError(ToolsmithError):
    def __init__(self, integration_id: str, capability_id: str, message: str) -> None:
        super().__init__(f"{integration_id}:{capability_id} failed: {message}")
        self.integration_id = integration_id
        self.capability_id = capability_id


class IntegrationUnavailableError(IntegrationCallError):
    """The integration is degraded after repeated failures; calls are refused until it recovers."""

    def __init__(self, integration_id: str, retry_after_s: float) -> None:
        super().__init__(integration_id, "*", f"integration degraded, retry in {retry_after_s:.0f}s")
        self.retry_after_s = retry_after_s


class IntegrationNotConnectedError(ToolsmithError):
    def __init__(self, integration_ids: list[str], blocking_actions: list[str]) -> None:
        super().__init__(
            "Integrations not connected: " + ", ".join(integration_ids)
        )
        self.integration_ids = integration_ids
        self.blocking_actions = blocking_actions


class ActionNotFoundError(ToolsmithError):
    def __init__(self, action_id: str) -> None:
        super().__init__(f"Action {action_id} not found")
        self.action_id = action_id


class ApprovalRequiredError(ToolsmithError):
    def __init__(self, action_id: str) -> None:
        super().__init__(f"Action {action_id} requires approval")
        self.action_id = action_id


class RuntimeNotFoundError(ToolsmithError):
    def __init__(self, integration_id: str) -> None:
        super().__init__(f"Runtime not found for integration {integration_id}")
        self.integration_id = integration_id


class CapabilityNotFoundError(ToolsmithError):
    def __init__(self, integration_id: str, capability_id: str) -> None:
        super().__init__(f"Capability {capability_id} not found for {integration_id}")
        self.integration_id = integration_id
        self.capability_id = capability_id


class ReducerNotFoundError(ToolsmithError):
    def __init__(self, reducer_id: str) -> None:
        super().__init__(f"Reducer {reducer_id} not found")
        self.reducer_id = reducer_id


class WorkflowNotFoundError(ToolsmithError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class WorkflowNodeError(ToolsmithError):
    def __init__(self, workflow_id: str, node_id: str, message: str) -> None:
        super().__init__(f"Workflow {workflow_id} node {node_id}: {message}")
        self.workflow_id = workflow_id
        self.node_id = node_id


class ExecutionRunNotFoundError(ToolsmithError):
    def __init__(self, run_id: str, reason: str = "not found") -> None:
        super().__init__(f"Execution run {run_id} {reason}")
        self.run_id = run_id


class StateStoreError(ToolsmithError):
    """State persistence failed on every path. Always propagated."""


class MemoryScopeError(ToolsmithError):
    """A memory scope could not be normalized."""


class MemoryAdapterError(ToolsmithError):
    def __init__(
        self,
        kind: Literal["missing_table", "unknown"],
        message: str,
        *,
        table: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.table = table


class IllegalTransitionError(ToolsmithError):
    def __init__(self, current: str, target: str, allowed: list[str]) -> None:
        super().__init__(
            f"Illegal build transition: {current} -> {target}. "
            f"Allowed from {current}: [{', '.join(allowed)}]"
        )
        self.current = current
        self.target = target
