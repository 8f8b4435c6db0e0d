"""Execution tracing for tool runs.

Every action execution (or build cycle) gets an ExecutionTracer with a
unique trace_id. Runtimes record each integration call on it; the
executor records action executions and state mutations. At the end of
the run the full trace is emitted as a structured log event.

Usage::

    tracer = ExecutionTracer.start("run")
    output = await capability.execute(params, context, tracer)
    tracer.finish("success")
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

import structlog

logger = structlog.get_logger()

TraceMode = Literal["create", "modify", "run"]
CallStatus = Literal["success", "error"]

_REDACT_MARKERS = ("token", "secret", "password", "authorization", "api_key")


def sanitize_log_data(value: Any, depth: int = 0) -> Any:
    """Truncate and redact a value before it goes into logs or run records."""
    if depth > 3:
        return "[truncated]"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value[:500]
    if isinstance(value, (list, tuple)):
        return [sanitize_log_data(item, depth + 1) for item in list(value)[:10]]
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for key, val in value.items():
            if any(marker in str(key).lower() for marker in _REDACT_MARKERS):
                out[key] = "[redacted]"
                continue
            out[key] = sanitize_log_data(val, depth + 1)
        return out
    return str(value)


@dataclass
class IntegrationAccess:
    integration_id: str
    capability_id: str
    params: dict[str, Any]
    status: CallStatus
    latency_ms: float
    metadata: dict[str, Any] = field(default_factory=dict)
    health: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "integration_id": self.integration_id,
            "capability_id": self.capability_id,
            "params": sanitize_log_data(self.params),
            "status": self.status,
            "latency_ms": self.latency_ms,
            **self.metadata,
            **({"health": self.health} if self.health is not None else {}),
        }


@dataclass
class ActionExecution:
    action_id: str
    status: CallStatus
    duration_ms: float = 0.0
    records: int = 0
    error: str | None = None


@dataclass
class StateMutation:
    reducer_id: str
    reducer_type: str
    target: str


class ExecutionTracer:
    """Per-run trace collector handed to every capability call."""

    def __init__(self, mode: TraceMode, trace_id: str | None = None) -> None:
        self.trace_id = trace_id or uuid.uuid4().hex[:12]
        self.mode = mode
        self.started_at = datetime.now(timezone.utc)
        self._origin = time.monotonic()

        self.integrations_accessed: list[IntegrationAccess] = []
        self.actions_executed: list[ActionExecution] = []
        self.state_mutations: list[StateMutation] = []
        self.outcome: Literal["success", "failure"] = "failure"
        self.failure_reason: str | None = None

    @classmethod
    def start(cls, mode: TraceMode = "run", trace_id: str | None = None) -> ExecutionTracer:
        tracer = cls(mode, trace_id)
        structlog.contextvars.bind_contextvars(trace_id=tracer.trace_id)
        return tracer

    def log_integration_access(
        self,
        integration_id: str,
        capability_id: str,
        *,
        params: dict[str, Any] | None = None,
        status: CallStatus,
        latency_ms: float,
        metadata: dict[str, Any] | None = None,
        health: dict[str, Any] | None = None,
    ) -> None:
        self.integrations_accessed.append(
            IntegrationAccess(
                integration_id=integration_id,
                capability_id=capability_id,
                params=params or {},
                status=status,
                latency_ms=round(latency_ms, 1),
                metadata=metadata or {},
                health=health,
            )
        )

    def log_action_execution(self, execution: ActionExecution) -> None:
        self.actions_executed.append(execution)

    def log_state_mutation(self, mutation: StateMutation) -> None:
        self.state_mutations.append(mutation)

    @property
    def degraded_integrations(self) -> list[str]:
        return list(dict.fromkeys(
            a.integration_id for a in self.integrations_accessed
            if a.health is not None and a.health.get("status") == "degraded"
        ))

    @property
    def total_ms(self) -> float:
        return round((time.monotonic() - self._origin) * 1000, 1)

    def finish(
        self,
        outcome: Literal["success", "failure"],
        reason: str | None = None,
    ) -> dict[str, Any]:
        self.outcome = outcome
        self.failure_reason = reason
        record = self.to_dict()

        logger.info(
            "execution_trace",
            trace_id=self.trace_id,
            mode=self.mode,
            outcome=outcome,
            total_ms=self.total_ms,
            integration_calls=len(self.integrations_accessed),
            actions=len(self.actions_executed),
            state_mutations=len(self.state_mutations),
            degraded=self.degraded_integrations or None,
            failure_reason=reason,
        )
        structlog.contextvars.unbind_contextvars("trace_id")
        return record

    def explain(self) -> str:
        """One-line human summary of what the run touched."""
        if self.outcome == "failure" and self.failure_reason:
            return f"I failed to complete the request. Reason: {self.failure_reason}"

        parts: list[str] = []
        sources = list(dict.fromkeys(a.integration_id for a in self.integrations_accessed))
        if sources:
            parts.append(f"I accessed {', '.join(sources)}.")
        if self.state_mutations:
            parts.append(f"I updated {len(self.state_mutations)} state variables.")
        return " ".join(parts) if parts else "I processed your request."

    def to_dict(self) -> dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "mode": self.mode,
            "started_at": self.started_at.isoformat(),
            "total_ms": self.total_ms,
            "outcome": self.outcome,
            "failure_reason": self.failure_reason,
            "integrations_accessed": [a.to_dict() for a in self.integrations_accessed],
            "degraded_integrations": self.degraded_integrations,
            "actions_executed": [
                {
                    "action_id": a.action_id,
                    "status": a.status,
                    "duration_ms": a.duration_ms,
                    "records": a.records,
                    "error": a.error,
                }
                for a in self.actions_executed
            ],
            "state_mutations": [
                {"reducer_id": m.reducer_id, "type": m.reducer_type, "target": m.target}
                for m in self.state_mutations
            ],
        }
