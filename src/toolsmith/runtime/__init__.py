"""Action execution: executor, state reducers and run records."""

from toolsmith.runtime.executor import ActionExecutor, ExecutionResult
from toolsmith.runtime.reducers import apply_reducer
from toolsmith.runtime.runs import ExecutionRunRecorder

__all__ = ["ActionExecutor", "ExecutionResult", "ExecutionRunRecorder", "apply_reducer"]
