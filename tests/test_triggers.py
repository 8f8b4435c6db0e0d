"""Tests for trigger scheduling and dispatch."""

from __future__ import annotations

import pytest

from conftest import ORG_ID, TOOL_ID, build_spec
from toolsmith.core.errors import SpecCompileError
from toolsmith.runtime.executor import ActionExecutor, ExecutionResult
from toolsmith.spec.compiler import compile_spec
from toolsmith.triggers.scheduler import TriggerScheduler, cron_expression, validate_cron_expression
from toolsmith.workflows.engine import WorkflowEngine


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

async def _no_sleep(seconds: float) -> None:
    return None


def _scheduler(spec: dict, runtimes, tokens, state_store) -> TriggerScheduler:
    executor = ActionExecutor(compile_spec(spec), runtimes, tokens, state_store, org_id=ORG_ID)
    return TriggerScheduler(WorkflowEngine(executor, sleep=_no_sleep))


def _spec_with_cron(expr: str) -> dict:
    spec = build_spec()
    spec["triggers"][0]["condition"] = {"cron": expr}
    return spec


# ─────────────────────────────────────────────────────────────────────────────
# Cron expressions
# ─────────────────────────────────────────────────────────────────────────────

class TestCronValidation:
    def test_valid(self):
        assert validate_cron_expression("0 9 * * 1-5") is None
        assert validate_cron_expression("*/15 * * * *") is None

    def test_invalid(self):
        assert validate_cron_expression("every morning") is not None
        assert validate_cron_expression("61 * * * *") is not None

    def test_expression_from_schedule_key(self):
        spec = build_spec()
        spec["triggers"][0]["condition"] = {"schedule": " 0 8 * * * "}
        trigger = compile_spec(spec).triggers["nightly"]
        assert cron_expression(trigger) == "0 8 * * *"


# ─────────────────────────────────────────────────────────────────────────────
# Scheduling
# ─────────────────────────────────────────────────────────────────────────────

class TestScheduling:
    def test_only_enabled_cron_triggers_are_scheduled(self, runtimes, tokens, state_store):
        scheduler = _scheduler(build_spec(), runtimes, tokens, state_store)
        assert scheduler.schedule_all() == 1
        assert [job["id"] for job in scheduler.list_jobs()] == [f"{TOOL_ID}:nightly"]

    @pytest.mark.asyncio
    async def test_rescheduling_replaces_job(self, runtimes, tokens, state_store):
        scheduler = _scheduler(build_spec(), runtimes, tokens, state_store)
        scheduler.start()
        try:
            scheduler.schedule_all()
            jobs = scheduler.list_jobs()
            assert len(jobs) == 1
            assert jobs[0]["next_run"] is not None
        finally:
            scheduler.stop()

    def test_invalid_cron_rejected(self, runtimes, tokens, state_store):
        scheduler = _scheduler(_spec_with_cron("every morning"), runtimes, tokens, state_store)
        with pytest.raises(SpecCompileError) as exc_info:
            scheduler.schedule_all()
        assert exc_info.value.code == "invalid_cron"
        assert exc_info.value.path == "triggers.nightly.condition"

    def test_missing_cron_rejected(self, runtimes, tokens, state_store):
        spec = build_spec()
        spec["triggers"][0]["condition"] = {}
        scheduler = _scheduler(spec, runtimes, tokens, state_store)
        with pytest.raises(SpecCompileError, match="missing cron expression"):
            scheduler.schedule_all()

    @pytest.mark.asyncio
    async def test_start_and_stop(self, runtimes, tokens, state_store):
        scheduler = _scheduler(build_spec(), runtimes, tokens, state_store)
        assert scheduler.start() == 1
        assert scheduler.scheduler.running
        scheduler.stop()
        scheduler.stop()


# ─────────────────────────────────────────────────────────────────────────────
# Dispatch
# ─────────────────────────────────────────────────────────────────────────────

class TestFire:
    @pytest.mark.asyncio
    async def test_unknown_trigger(self, runtimes, tokens, state_store):
        scheduler = _scheduler(build_spec(), runtimes, tokens, state_store)
        with pytest.raises(SpecCompileError):
            await scheduler.fire("ghost")

    @pytest.mark.asyncio
    async def test_disabled_trigger_is_skipped(self, runtimes, tokens, state_store, slack):
        scheduler = _scheduler(build_spec(), runtimes, tokens, state_store)
        assert await scheduler.fire("paused_hook", {"text": "hi"}) is None
        assert slack.calls == []

    @pytest.mark.asyncio
    async def test_workflow_trigger(self, runtimes, tokens, state_store, slack):
        scheduler = _scheduler(build_spec(), runtimes, tokens, state_store)
        results = await scheduler.fire("nightly", {"text": "Morning digest"})
        assert list(results) == ["fetch", "announce"]
        assert slack.calls[0][1] == {"text": "Morning digest", "trigger_id": "nightly"}

    @pytest.mark.asyncio
    async def test_state_condition_unmet(self, runtimes, tokens, state_store, slack):
        spec = build_spec()
        spec["state"]["initial"] = {}
        scheduler = _scheduler(spec, runtimes, tokens, state_store)
        assert await scheduler.fire("on_issues", {"text": "hi"}) is None
        assert slack.calls == []

    @pytest.mark.asyncio
    async def test_state_condition_false_value_is_unmet(self, runtimes, tokens, state_store, slack):
        await state_store.save(TOOL_ID, ORG_ID, {"issues": 0})
        scheduler = _scheduler(build_spec(), runtimes, tokens, state_store)
        assert await scheduler.fire("on_issues", {"text": "hi"}) is None
        assert slack.calls == []

    @pytest.mark.asyncio
    async def test_state_condition_holds_for_initial_empty_list(self, runtimes, tokens, state_store, slack):
        scheduler = _scheduler(build_spec(), runtimes, tokens, state_store)
        result = await scheduler.fire("on_issues", {"text": "tracking"})
        assert result.output["ok"] is True

    @pytest.mark.asyncio
    async def test_state_condition_met_runs_action(self, runtimes, tokens, state_store, slack):
        await state_store.save(TOOL_ID, ORG_ID, {"issues": [{"id": 1}]})
        scheduler = _scheduler(build_spec(), runtimes, tokens, state_store)
        result = await scheduler.fire("on_issues", {"text": "1 open issue"})
        assert isinstance(result, ExecutionResult)
        assert result.output["ok"] is True
        assert slack.calls[0][1]["trigger_id"] == "on_issues"
