from .dispatch import is_single_task, run_tasks
from .parallel import effective_limit, run_parallel
from .sequential import run_sequential
from .summary import exit_code, single_task_exit_code, summarize
from .types import RunHooks, Summary, TaskCancelledError, TaskResult

__all__ = [
    "is_single_task",
    "run_tasks",
    "run_parallel",
    "run_sequential",
    "effective_limit",
    "summarize",
    "exit_code",
    "single_task_exit_code",
    "RunHooks",
    "Summary",
    "TaskResult",
    "TaskCancelledError",
]
