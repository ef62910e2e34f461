from __future__ import annotations

import threading

from sandforge.config.types import RunConfig
from sandforge.sandbox.types import SandboxProvider
from sandforge.tasks.types import ExecutionTask

from .parallel import run_parallel
from .sequential import run_sequential
from .types import RunHooks, TaskResult


def is_single_task(tasks: list[ExecutionTask], config: RunConfig) -> bool:
    return len(tasks) == 1 and config.repeat <= 1


def run_tasks(
    tasks: list[ExecutionTask],
    config: RunConfig,
    provider: SandboxProvider,
    *,
    cancel: threading.Event | None = None,
    hooks: RunHooks = RunHooks(),
) -> list[TaskResult]:
    if config.parallel:
        return run_parallel(tasks, config, provider, cancel=cancel, hooks=hooks)
    return run_sequential(tasks, config, provider, cancel=cancel, hooks=hooks)
