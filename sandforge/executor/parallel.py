from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from sandforge.config.types import RunConfig
from sandforge.sandbox.types import Sandbox, SandboxError, SandboxProvider
from sandforge.tasks.types import ExecutionTask

from .sandboxes import destroy_sandboxes, execute_task, keep_alive
from .types import RunHooks, TaskCancelledError, TaskResult

logger = logging.getLogger(__name__)


def effective_limit(max_parallel: int, task_count: int) -> int:
    if max_parallel <= 0 or max_parallel > task_count:
        return task_count
    return max_parallel


class _BatchState:
    """State shared by every worker of one parallel batch."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.sandboxes: list[Sandbox] = []
        self.succeeded = 0
        self.failed = 0

    def track(self, sandbox: Sandbox) -> None:
        with self._lock:
            self.sandboxes.append(sandbox)

    def record(self, result: TaskResult) -> None:
        with self._lock:
            if result.failed:
                self.failed += 1
            else:
                self.succeeded += 1


class _ProgressSink:
    """Single consumer thread that hands finished results to `on_result` in arrival order."""

    _CLOSED = object()

    def __init__(self, on_result: Callable[[TaskResult], None]):
        self._queue: queue.Queue = queue.Queue()
        self._on_result = on_result
        self._thread = threading.Thread(
            target=self._drain, name="sandforge-progress", daemon=True
        )
        self._thread.start()

    def put(self, result: TaskResult) -> None:
        self._queue.put(result)

    def close(self) -> None:
        self._queue.put(self._CLOSED)
        self._thread.join()

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            if item is self._CLOSED:
                return
            self._on_result(item)


def run_parallel(
    tasks: list[ExecutionTask],
    config: RunConfig,
    provider: SandboxProvider,
    *,
    cancel: threading.Event | None = None,
    hooks: RunHooks = RunHooks(),
) -> list[TaskResult]:
    """
    Run every task in its own freshly created sandbox, at most
    `effective_limit(config.max_parallel, len(tasks))` at a time.

    The returned list is aligned with `tasks` whatever order the tasks finish
    in. Sandboxes are destroyed once all tasks are done, or left running and
    reported through `hooks.on_kept_alive` with keep-alive.
    """
    if not tasks:
        return []

    if cancel is None:
        cancel = threading.Event()

    limit = effective_limit(config.max_parallel, len(tasks))
    results: list[TaskResult | None] = [None] * len(tasks)
    state = _BatchState()

    sink = None
    if hooks.on_result is not None and not config.stream:
        sink = _ProgressSink(hooks.on_result)

    def run_one(idx: int, task: ExecutionTask) -> None:
        result = _run_in_new_sandbox(task, config, provider, cancel, state, hooks)
        # Each worker owns exactly one slot
        results[idx] = result
        state.record(result)
        if sink is not None:
            sink.put(result)

    logger.debug("running %d task(s), %d at a time", len(tasks), limit)
    try:
        # The pool size is the admission gate: at most `limit` tasks are
        # creating a sandbox or running code at any moment.
        with ThreadPoolExecutor(max_workers=limit, thread_name_prefix="sandforge-task") as pool:
            futures = [pool.submit(run_one, idx, task) for idx, task in enumerate(tasks)]
            try:
                for future in futures:
                    future.result()
            except KeyboardInterrupt:
                logger.debug("interrupted, not starting remaining tasks")
                cancel.set()
                raise
    finally:
        if sink is not None:
            sink.close()

        if config.keep_alive:
            keep_alive(state.sandboxes, provider, hooks.on_kept_alive)
        else:
            destroy_sandboxes(state.sandboxes)

    logger.debug("batch finished: %d succeeded, %d failed", state.succeeded, state.failed)
    return results


def _run_in_new_sandbox(
    task: ExecutionTask,
    config: RunConfig,
    provider: SandboxProvider,
    cancel: threading.Event,
    state: _BatchState,
    hooks: RunHooks,
) -> TaskResult:
    if cancel.is_set():
        logger.debug("task %d cancelled before start", task.id)
        return TaskResult(task, error=TaskCancelledError())

    start = time.monotonic()
    try:
        sandbox = provider.create(config.tool)
    except SandboxError as exc:
        logger.debug("task %d: %s", task.id, exc)
        return TaskResult(task, error=exc, total_duration_s=time.monotonic() - start)
    except Exception as exc:
        logger.exception("task %d: sandbox creation failed unexpectedly", task.id)
        return TaskResult(task, error=exc, total_duration_s=time.monotonic() - start)

    create_duration = time.monotonic() - start
    state.track(sandbox)

    result = execute_task(sandbox, task, config, hooks.on_line)
    return TaskResult(
        task,
        result=result.result,
        error=result.error,
        create_duration_s=create_duration,
        exec_duration_s=result.exec_duration_s,
        total_duration_s=time.monotonic() - start,
    )
