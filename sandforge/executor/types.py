from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from sandforge.sandbox.types import ExecutionResult
from sandforge.tasks.types import ExecutionTask


@dataclass(frozen=True)
class TaskResult:
    task: ExecutionTask
    result: ExecutionResult | None = None
    error: Exception | None = None
    create_duration_s: float = 0.0
    exec_duration_s: float = 0.0
    total_duration_s: float = 0.0

    @property
    def failed(self) -> bool:
        return self.error is not None or (
            self.result is not None and self.result.error is not None
        )


@dataclass(frozen=True)
class Summary:
    total: int
    succeeded: int
    failed: int
    duration_s: float | None = None


@dataclass(frozen=True)
class RunHooks:
    """
    Callbacks a runner uses to report progress while tasks execute.

    on_line: live output line of a task, (task, is_stderr, text). Only used
        when streaming is enabled.
    on_result: a finished task, called from a single consumer thread in
        completion order. Only used by the parallel runner when not streaming.
    on_kept_alive: ids of the sandboxes left running because of keep-alive.
    """

    on_line: Callable[[ExecutionTask, bool, str], None] | None = None
    on_result: Callable[[TaskResult], None] | None = None
    on_kept_alive: Callable[[list[str]], None] | None = None


class TaskCancelledError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*(args or ("task cancelled before it started",)))
