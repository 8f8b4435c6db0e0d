"""TriggerScheduler: APScheduler-backed trigger dispatch for one tool.

``cron`` triggers are scheduled on an AsyncIOScheduler; every other
trigger type (webhook, integration_event, state_condition) is fired on
demand through ``fire``. A trigger dispatches either its action, via
the ActionExecutor, or its workflow, under the workflow's retry policy.
Disabled triggers are never scheduled or fired.
"""

from __future__ import annotations

from typing import Any

import structlog
from apscheduler.events import EVENT_JOB_MISSED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from toolsmith.config import settings
from toolsmith.core.errors import SpecCompileError
from toolsmith.runtime.executor import ActionExecutor
from toolsmith.spec.models import TriggerSpec
from toolsmith.workflows.engine import WorkflowEngine, condition_holds, resolve_state_path
from toolsmith.workflows.retry import run_with_retry_policy

logger = structlog.get_logger()


def validate_cron_expression(expr: str) -> str | None:
    """Return None if valid, error message if invalid."""
    try:
        CronTrigger.from_crontab(expr)
        return None
    except (ValueError, TypeError) as e:
        return str(e)


def cron_expression(trigger: TriggerSpec) -> str:
    expr = trigger.condition.get("cron") or trigger.condition.get("schedule") or ""
    return str(expr).strip()


class TriggerScheduler:
    def __init__(self, engine: WorkflowEngine, scheduler: AsyncIOScheduler | None = None) -> None:
        self.engine = engine
        self.scheduler = scheduler or AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": settings.scheduler_misfire_grace_s,
            }
        )
        self.scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)
        self._running = False

    @property
    def executor(self) -> ActionExecutor:
        return self.engine.executor

    @property
    def triggers(self) -> dict[str, TriggerSpec]:
        return dict(self.executor.artifact.triggers)

    @staticmethod
    def _on_job_missed(event: Any) -> None:
        logger.warning(
            "trigger_job_missed",
            job_id=event.job_id,
            scheduled_run_time=str(event.scheduled_run_time),
        )

    def job_id(self, trigger: TriggerSpec) -> str:
        return f"{self.executor.tool_id}:{trigger.id}"

    # ═══════════════════════════════════════════════════════════════════════
    # SCHEDULING
    # ═══════════════════════════════════════════════════════════════════════

    def schedule_all(self) -> int:
        """Schedule every enabled cron trigger; returns how many were scheduled."""
        count = 0
        for trigger in self.triggers.values():
            if trigger.type != "cron" or not trigger.enabled:
                continue
            self.schedule(trigger)
            count += 1
        return count

    def schedule(self, trigger: TriggerSpec) -> None:
        expr = cron_expression(trigger)
        error = validate_cron_expression(expr) if expr else "missing cron expression"
        if error:
            raise SpecCompileError(
                f"Trigger {trigger.id} has an invalid cron expression: {error}",
                code="invalid_cron",
                path=f"triggers.{trigger.id}.condition",
            )
        tz = trigger.condition.get("timezone") or None
        self.scheduler.add_job(
            self.fire,
            trigger=CronTrigger.from_crontab(expr, timezone=tz),
            args=[trigger.id],
            id=self.job_id(trigger),
            name=trigger.name or trigger.id,
            replace_existing=True,
        )
        logger.info("trigger_scheduled", trigger_id=trigger.id, schedule=expr, timezone=tz or "server")

    def start(self) -> int:
        count = self.schedule_all()
        self.scheduler.start()
        self._running = True
        logger.info("trigger_scheduler_started", jobs=count)
        return count

    def stop(self) -> None:
        if self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("trigger_scheduler_stopped")

    def list_jobs(self) -> list[dict[str, Any]]:
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
            }
            for job in self.scheduler.get_jobs()
        ]

    # ═══════════════════════════════════════════════════════════════════════
    # DISPATCH
    # ═══════════════════════════════════════════════════════════════════════

    async def fire(self, trigger_id: str, payload: dict[str, Any] | None = None) -> Any:
        """Dispatch a trigger's action or workflow. Returns None when skipped."""
        trigger = self.triggers.get(trigger_id)
        if trigger is None:
            raise SpecCompileError(f"Trigger {trigger_id} not found", code="missing_reference", path="triggers")
        if not trigger.enabled:
            logger.info("trigger_disabled_skipped", trigger_id=trigger_id)
            return None

        if trigger.type == "state_condition":
            state = await self.executor.load_state()
            if not condition_holds(resolve_state_path(state, trigger.condition.get("path"))):
                logger.info("trigger_condition_unmet", trigger_id=trigger_id)
                return None

        input = {**(payload or {}), "trigger_id": trigger.id}
        logger.info("trigger_fired", trigger_id=trigger.id, type=trigger.type)
        if trigger.workflow_id:
            return await run_with_retry_policy(self.engine, trigger.workflow_id, input, trigger_id=trigger.id)
        if trigger.action_id:
            return await self.executor.execute(trigger.action_id, input, trigger_id=trigger.id)
        logger.warning("trigger_without_target", trigger_id=trigger.id)
        return None
