from __future__ import annotations

import pytest

from sandforge.executor.summary import exit_code, single_task_exit_code, summarize
from sandforge.executor.types import Summary, TaskResult
from sandforge.sandbox.types import ExecutionError, ExecutionResult, SandboxCreateError
from sandforge.tasks.types import ExecutionTask


def _ok(i: int) -> TaskResult:
    return TaskResult(ExecutionTask(i, "x", "<code>"), result=ExecutionResult(stdout=["ok\n"]))


def _exec_failed(i: int) -> TaskResult:
    error = ExecutionError(name="ZeroDivisionError", value="division by zero")
    return TaskResult(ExecutionTask(i, "1/0", "<code>"), result=ExecutionResult(error=error))


def _create_failed(i: int) -> TaskResult:
    return TaskResult(ExecutionTask(i, "x", "<code>"), error=SandboxCreateError("no capacity"))


@pytest.mark.parametrize(
    "results, expected",
    [
        ([_ok(1), _ok(2)], (2, 2, 0, 0)),
        ([_ok(1), _exec_failed(2)], (2, 1, 1, 1)),
        ([_create_failed(1), _ok(2), _ok(3)], (3, 2, 1, 1)),
        ([_create_failed(1), _exec_failed(2)], (2, 0, 2, 2)),
        ([], (0, 0, 0, 0)),
    ],
)
def test_summarize_counts_and_exit_code(results, expected) -> None:
    summary, code = summarize(results)

    assert (summary.total, summary.succeeded, summary.failed, code) == expected


def test_summarize_is_idempotent() -> None:
    results = [_ok(1), _exec_failed(2), _create_failed(3)]

    first = summarize(results, 1.5)
    second = summarize(results, 1.5)

    assert first == second
    assert first[0].duration_s == 1.5


def test_exit_code_law() -> None:
    assert exit_code(Summary(total=4, succeeded=4, failed=0)) == 0
    assert exit_code(Summary(total=4, succeeded=1, failed=3)) == 1
    assert exit_code(Summary(total=4, succeeded=0, failed=4)) == 2


def test_stderr_output_alone_is_not_a_failure() -> None:
    result = TaskResult(
        ExecutionTask(1, "x", "<code>"), result=ExecutionResult(stderr=["warning\n"])
    )

    assert not result.failed
    assert single_task_exit_code(result) == 0


def test_single_task_exit_code() -> None:
    assert single_task_exit_code(_ok(1)) == 0
    assert single_task_exit_code(_exec_failed(1)) == 0
    assert single_task_exit_code(_create_failed(1)) == 1
