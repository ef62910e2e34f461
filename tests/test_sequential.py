from __future__ import annotations

import threading

from conftest import FakeProvider

from sandforge.config.types import RunConfig
from sandforge.executor.sequential import run_sequential
from sandforge.executor.summary import summarize
from sandforge.executor.types import RunHooks, TaskCancelledError
from sandforge.sandbox.types import SandboxCreateError
from sandforge.tasks.types import ExecutionTask


def _tasks(*codes: str) -> list[ExecutionTask]:
    return [
        ExecutionTask(id=i, code=code, source="<code>", instance_no=i, total_instances=len(codes))
        for i, code in enumerate(codes, start=1)
    ]


def test_repeat_three_reuses_one_sandbox() -> None:
    provider = FakeProvider(create_delay=0.01)
    tasks = _tasks("a", "b", "c")

    results = run_sequential(tasks, RunConfig(repeat=3), provider)

    assert len(results) == 3
    assert [r.task.id for r in results] == [1, 2, 3]
    assert provider.create_calls == 1
    assert provider.sandboxes[0].executed == ["a", "b", "c"]
    assert provider.kills == 1

    assert results[0].create_duration_s > 0
    assert results[0].total_duration_s >= results[0].create_duration_s
    assert all(r.create_duration_s == 0 for r in results[1:])

    summary, code = summarize(results)
    assert (summary.succeeded, summary.failed) == (3, 0)
    assert code == 0


def test_creation_failure_fails_every_task_without_running() -> None:
    provider = FakeProvider(fail_all=True)
    tasks = _tasks("a", "b")

    results = run_sequential(tasks, RunConfig(), provider)

    assert len(results) == 2
    assert all(isinstance(r.error, SandboxCreateError) for r in results)
    assert results[0].error is results[1].error
    assert all(r.total_duration_s == 0 for r in results)
    assert provider.sandboxes == []

    _, code = summarize(results)
    assert code == 2


def test_task_failures_do_not_stop_later_tasks() -> None:
    provider = FakeProvider()
    tasks = _tasks("a", "transport", "raise ValueError", "d")

    results = run_sequential(tasks, RunConfig(), provider)

    assert provider.sandboxes[0].executed == ["a", "transport", "raise ValueError", "d"]
    assert [r.failed for r in results] == [False, True, True, False]
    assert results[1].error is not None
    assert results[2].result.error.name == "ValueError"

    summary, code = summarize(results)
    assert (summary.total, summary.succeeded, summary.failed) == (4, 2, 2)
    assert code == 1



def test_unexpected_run_error_does_not_stop_later_tasks() -> None:
    provider = FakeProvider()

    results = run_sequential(_tasks("t1", "crash", "t3"), RunConfig(), provider)

    assert len(results) == 3
    assert provider.sandboxes[0].executed == ["t1", "crash", "t3"]
    assert [r.failed for r in results] == [False, True, False]
    assert isinstance(results[1].error, RuntimeError)
    assert provider.kills == 1


def test_unexpected_creation_error_fails_every_task() -> None:
    provider = FakeProvider(crash_creates={1})

    results = run_sequential(_tasks("a", "b"), RunConfig(), provider)

    assert all(isinstance(r.error, RuntimeError) for r in results)
    assert provider.sandboxes == []

def test_keep_alive_skips_destroy_and_reports_instance() -> None:
    provider = FakeProvider()
    reported: list[list[str]] = []

    run_sequential(
        _tasks("a", "b"),
        RunConfig(keep_alive=True),
        provider,
        hooks=RunHooks(on_kept_alive=reported.append),
    )

    assert provider.kills == 0
    assert provider.remembered == ["sbx-1"]
    assert reported == [["sbx-1"]]


def test_existing_instance_is_connected_not_created_or_destroyed() -> None:
    provider = FakeProvider()

    results = run_sequential(_tasks("a"), RunConfig(instance="sbx-existing"), provider)

    assert provider.create_calls == 0
    assert provider.connected == ["sbx-existing"]
    assert provider.kills == 0
    assert results[0].create_duration_s == 0


def test_connect_failure_fails_every_task() -> None:
    provider = FakeProvider()

    results = run_sequential(_tasks("a", "b"), RunConfig(instance="missing"), provider)

    assert all(r.failed for r in results)
    assert "missing" in str(results[0].error)


def test_stream_forwards_lines_in_task_order() -> None:
    provider = FakeProvider()
    lines: list[tuple[int, bool, str]] = []

    run_sequential(
        _tasks("a", "raise KeyError", "c"),
        RunConfig(stream=True),
        provider,
        hooks=RunHooks(on_line=lambda task, is_err, text: lines.append((task.id, is_err, text))),
    )

    assert lines == [(1, False, "a\n"), (2, True, "KeyError incoming\n"), (3, False, "c\n")]


def test_no_stream_callbacks_without_stream_flag() -> None:
    provider = FakeProvider()
    lines: list[str] = []

    run_sequential(
        _tasks("a"),
        RunConfig(),
        provider,
        hooks=RunHooks(on_line=lambda task, is_err, text: lines.append(text)),
    )

    assert lines == []


def test_cancelled_batch_records_remaining_tasks_and_cleans_up() -> None:
    provider = FakeProvider()
    cancel = threading.Event()
    cancel.set()

    results = run_sequential(_tasks("a", "b"), RunConfig(), provider, cancel=cancel)

    assert len(results) == 2
    assert all(isinstance(r.error, TaskCancelledError) for r in results)
    assert provider.sandboxes[0].executed == []
    assert provider.kills == 1


def test_kill_failure_is_not_raised() -> None:
    provider = FakeProvider(kill_fails=True)

    results = run_sequential(_tasks("a"), RunConfig(), provider)

    assert not results[0].failed
    assert provider.kills == 1


def test_empty_task_list() -> None:
    provider = FakeProvider()

    assert run_sequential([], RunConfig(), provider) == []
    assert provider.create_calls == 0
