from .builder import build_tasks
from .types import ExecutionTask, InputSpec, TaskBuildError

__all__ = ["build_tasks", "ExecutionTask", "InputSpec", "TaskBuildError"]
