"""Execution run records.

Each recorded action or workflow run is one ``execution_runs`` row:
pending -> running -> completed | failed, with an ordered step log and a
snapshot of the tool state. Writes go through the admin session and are
best-effort: a failed write is logged and the run carries on. Reads
(``get``, ``list_runs``) propagate database errors.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

import structlog
from sqlalchemy import select

from toolsmith.core.trace import sanitize_log_data
from toolsmith.db.models import ExecutionRun
from toolsmith.db.session import SessionFactory, get_admin_session_factory

logger = structlog.get_logger()

RunStatus = Literal["pending", "running", "blocked", "completed", "failed"]


def run_log_entry(entry_id: str, status: str, **fields: Any) -> dict[str, Any]:
    entry = {"id": entry_id, "timestamp": datetime.now(timezone.utc).isoformat(), "status": status}
    for key, value in fields.items():
        if value is not None:
            entry[key] = sanitize_log_data(value) if key in ("input", "output") else value
    return entry


@dataclass
class RunHandle:
    """In-flight run. ``id`` is None when the row could not be created."""

    id: uuid.UUID | None
    status: RunStatus = "pending"
    logs: list[dict[str, Any]] = field(default_factory=list)


class ExecutionRunRecorder:
    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory or get_admin_session_factory()

    async def start(
        self,
        *,
        tool_id: str,
        org_id: str,
        action_id: str | None = None,
        workflow_id: str | None = None,
        trigger_id: str | None = None,
        input: dict[str, Any] | None = None,
        state_snapshot: dict[str, Any] | None = None,
    ) -> RunHandle:
        try:
            async with self._session_factory() as db:
                row = ExecutionRun(
                    org_id=uuid.UUID(str(org_id)),
                    tool_id=uuid.UUID(str(tool_id)),
                    trigger_id=trigger_id,
                    action_id=action_id,
                    workflow_id=workflow_id,
                    input=sanitize_log_data(input or {}),
                    status="pending",
                    state_snapshot=state_snapshot or {},
                    retries=0,
                    logs=[],
                )
                db.add(row)
                await db.commit()
                run_id = row.id
        except Exception as e:
            logger.warning(
                "execution_run_create_failed",
                tool_id=tool_id,
                action_id=action_id,
                workflow_id=workflow_id,
                error=str(e),
            )
            return RunHandle(None)
        return RunHandle(run_id)

    async def update(
        self,
        handle: RunHandle,
        *,
        status: RunStatus | None = None,
        current_step: str | None = None,
        entry: dict[str, Any] | None = None,
        state_snapshot: dict[str, Any] | None = None,
    ) -> None:
        if entry is not None:
            handle.logs.append(entry)
        if status is not None:
            handle.status = status
        if handle.id is None:
            return

        try:
            async with self._session_factory() as db:
                row = await db.get(ExecutionRun, handle.id)
                if row is None:
                    logger.warning("execution_run_missing", run_id=str(handle.id))
                    return
                row.status = handle.status
                row.logs = list(handle.logs)
                if current_step is not None:
                    row.current_step = current_step
                if state_snapshot is not None:
                    row.state_snapshot = state_snapshot
                row.updated_at = datetime.now(timezone.utc)
                await db.commit()
        except Exception as e:
            logger.warning("execution_run_update_failed", run_id=str(handle.id), status=handle.status, error=str(e))

    async def mark_retried(self, run_id: uuid.UUID) -> None:
        try:
            async with self._session_factory() as db:
                row = await db.get(ExecutionRun, run_id)
                if row is not None:
                    row.retries = (row.retries or 0) + 1
                    row.updated_at = datetime.now(timezone.utc)
                    await db.commit()
        except Exception as e:
            logger.warning("execution_run_update_failed", run_id=str(run_id), error=str(e))

    async def get(self, run_id: str | uuid.UUID, *, tool_id: str, org_id: str) -> ExecutionRun | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ExecutionRun).where(
                    ExecutionRun.id == uuid.UUID(str(run_id)),
                    ExecutionRun.tool_id == uuid.UUID(str(tool_id)),
                    ExecutionRun.org_id == uuid.UUID(str(org_id)),
                )
            )
            return result.scalar_one_or_none()

    async def list_runs(self, tool_id: str, org_id: str, limit: int = 20) -> list[ExecutionRun]:
        """Most recent runs first."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(ExecutionRun)
                .where(
                    ExecutionRun.tool_id == uuid.UUID(str(tool_id)),
                    ExecutionRun.org_id == uuid.UUID(str(org_id)),
                )
                .order_by(ExecutionRun.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
