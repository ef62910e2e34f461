from __future__ import annotations

import dataclasses
import logging
import threading

from sandforge.config.types import RunConfig
from sandforge.sandbox.types import SandboxError, SandboxProvider
from sandforge.tasks.types import ExecutionTask

from .sandboxes import acquire_sandbox, destroy_sandboxes, execute_task, keep_alive
from .types import RunHooks, TaskCancelledError, TaskResult

logger = logging.getLogger(__name__)


def run_sequential(
    tasks: list[ExecutionTask],
    config: RunConfig,
    provider: SandboxProvider,
    *,
    cancel: threading.Event | None = None,
    hooks: RunHooks = RunHooks(),
) -> list[TaskResult]:
    """
    Run every task, in order, inside one shared sandbox.

    The sandbox is not reset between tasks, so files and interpreter state
    left behind by one task are visible to the next. Its creation time is
    charged to the first task only.
    """
    if not tasks:
        return []

    try:
        sandbox, create_duration = acquire_sandbox(config, provider)
    except SandboxError as exc:
        logger.debug("sandbox unavailable, failing %d task(s): %s", len(tasks), exc)
        return [TaskResult(task, error=exc) for task in tasks]
    except Exception as exc:
        logger.exception("sandbox unavailable, failing %d task(s)", len(tasks))
        return [TaskResult(task, error=exc) for task in tasks]

    # An existing instance belongs to the user and is never destroyed here
    created = not config.instance
    if created and config.keep_alive:
        keep_alive([sandbox], provider, hooks.on_kept_alive)

    results: list[TaskResult] = []
    try:
        for i, task in enumerate(tasks):
            if cancel is not None and cancel.is_set():
                logger.debug("task %d cancelled before start", task.id)
                results.append(TaskResult(task, error=TaskCancelledError()))
                continue

            result = execute_task(sandbox, task, config, hooks.on_line)
            if i == 0 and create_duration > 0:
                result = dataclasses.replace(
                    result,
                    create_duration_s=create_duration,
                    total_duration_s=create_duration + result.exec_duration_s,
                )
            results.append(result)
    finally:
        if created and not config.keep_alive:
            destroy_sandboxes([sandbox])

    return results
