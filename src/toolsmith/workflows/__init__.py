"""Workflow DAG execution."""

from toolsmith.workflows.engine import WorkflowEngine
from toolsmith.workflows.retry import retry_recorded_run, run_with_retry_policy

__all__ = ["WorkflowEngine", "retry_recorded_run", "run_with_retry_policy"]
