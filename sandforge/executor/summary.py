from __future__ import annotations

from .types import Summary, TaskResult

EXIT_OK = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_TOTAL_FAILURE = 2


def summarize(
    results: list[TaskResult], duration_s: float | None = None
) -> tuple[Summary, int]:
    failed = sum(1 for r in results if r.failed)
    summary = Summary(
        total=len(results),
        succeeded=len(results) - failed,
        failed=failed,
        duration_s=duration_s,
    )
    return summary, exit_code(summary)


def exit_code(summary: Summary) -> int:
    if summary.failed == 0:
        return EXIT_OK
    if summary.failed == summary.total:
        return EXIT_TOTAL_FAILURE
    return EXIT_PARTIAL_FAILURE


def single_task_exit_code(result: TaskResult) -> int:
    """
    Exit code when exactly one task ran outside a batch.

    Only a sandbox that could not be reached (creation, connection or
    transport failure) is an error here. An exception raised by the user's
    code is reported but, having no process exit status, exits 0.
    """
    return 1 if result.error is not None else 0
