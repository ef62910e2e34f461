from __future__ import annotations

import logging
import time
from typing import Callable

from sandforge.config.types import RunConfig
from sandforge.sandbox.types import Sandbox, SandboxError, SandboxProvider
from sandforge.tasks.types import ExecutionTask

from .types import TaskResult

logger = logging.getLogger(__name__)

LineCallback = Callable[[ExecutionTask, bool, str], None]


def acquire_sandbox(config: RunConfig, provider: SandboxProvider) -> tuple[Sandbox, float]:
    """
    Connect to the configured instance or create a fresh sandbox.

    Returns the sandbox and the creation time in seconds, which is 0 for an
    existing instance.
    """
    if config.instance:
        return provider.connect(config.instance), 0.0

    start = time.monotonic()
    sandbox = provider.create(config.tool)
    return sandbox, time.monotonic() - start


def execute_task(
    sandbox: Sandbox,
    task: ExecutionTask,
    config: RunConfig,
    on_line: LineCallback | None = None,
) -> TaskResult:
    logger.debug("task %d (%s) running in %s", task.id, task.source, sandbox.sandbox_id)

    on_stdout = on_stderr = None
    if config.stream and on_line is not None:
        def on_stdout(text: str) -> None:
            on_line(task, False, text)

        def on_stderr(text: str) -> None:
            on_line(task, True, text)

    start = time.monotonic()
    try:
        result = sandbox.run_code(
            task.code, config.language, on_stdout=on_stdout, on_stderr=on_stderr
        )
    except SandboxError as exc:
        duration = time.monotonic() - start
        return TaskResult(task, error=exc, exec_duration_s=duration, total_duration_s=duration)
    except Exception as exc:
        logger.exception("task %d failed unexpectedly in %s", task.id, sandbox.sandbox_id)
        duration = time.monotonic() - start
        return TaskResult(task, error=exc, exec_duration_s=duration, total_duration_s=duration)

    duration = time.monotonic() - start
    return TaskResult(task, result=result, exec_duration_s=duration, total_duration_s=duration)


def destroy_sandboxes(sandboxes: list[Sandbox]) -> None:
    for sandbox in sandboxes:
        try:
            sandbox.kill()
        except Exception as exc:
            # The remote side expires the instance on its own timeout
            logger.warning("could not destroy sandbox %s: %s", sandbox.sandbox_id, exc)


def keep_alive(
    sandboxes: list[Sandbox],
    provider: SandboxProvider,
    on_kept_alive: Callable[[list[str]], None] | None,
) -> None:
    for sandbox in sandboxes:
        provider.remember(sandbox)
    if sandboxes and on_kept_alive is not None:
        on_kept_alive([sandbox.sandbox_id for sandbox in sandboxes])
