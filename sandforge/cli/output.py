from __future__ import annotations

import json
import sys
import threading
from datetime import datetime
from typing import Any, TextIO

from sandforge.executor.types import Summary, TaskResult
from sandforge.sandbox.types import (
    CommandResult,
    ExecutionError,
    ExecutionResult,
    FileEntry,
    InstanceInfo,
)
from sandforge.tasks.types import ExecutionTask


class StreamPrinter:
    """Writes live output from concurrently running tasks without tearing lines."""

    def __init__(self, out: TextIO | None = None, err: TextIO | None = None):
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        self._lock = threading.Lock()

    def write_plain(self, task: ExecutionTask, is_stderr: bool, text: str) -> None:
        stream = self.err if is_stderr else self.out
        with self._lock:
            stream.write(text)
            stream.flush()

    def write_prefixed(self, task: ExecutionTask, is_stderr: bool, text: str) -> None:
        stream = self.err if is_stderr else self.out
        prefix = stream_prefix(task)
        with self._lock:
            for line in text.splitlines():
                stream.write(f"{prefix} {line}\n")
            stream.flush()


def stream_prefix(task: ExecutionTask) -> str:
    if task.display_instance:
        return f"[{task.id}:{task.source}#{task.display_instance}]"
    return f"[{task.id}:{task.source}]"


def format_duration(seconds: float) -> str:
    return f"{seconds:.3f}s"


def format_timing(total: float, create: float = 0.0, execute: float = 0.0) -> str:
    if create > 0:
        return (
            f"Time: {format_duration(total)} "
            f"(create: {format_duration(create)}, exec: {format_duration(execute)})"
        )
    return f"Time: {format_duration(total)}"


def timing_dict(total: float, create: float = 0.0, execute: float = 0.0) -> dict[str, float]:
    timing = {"total_s": round(total, 6)}
    if create > 0:
        timing["create_s"] = round(create, 6)
        timing["exec_s"] = round(execute, 6)
    return timing


def print_error(error: ExecutionError, out: TextIO) -> None:
    print(f"{error.name}: {error.value}", file=out)
    if error.traceback:
        print(error.traceback, file=out)


def print_execution(result: ExecutionResult, out: TextIO | None = None, err: TextIO | None = None) -> None:
    out = out or sys.stdout
    err = err or sys.stderr

    for line in result.stdout:
        out.write(line)
    for payload in result.results:
        if "text" in payload:
            print(payload["text"], file=out)
    for line in result.stderr:
        err.write(line)
    if result.error is not None:
        print_error(result.error, err)


def print_task_block(result: TaskResult, show_time: bool = False, out: TextIO | None = None) -> None:
    out = out or sys.stdout
    task = result.task
    status = " [FAILED]" if result.failed else ""

    if task.total_instances > 1:
        header = f"━━━ Task {task.id}: {task.source} ({task.instance_no}/{task.total_instances}){status} ━━━"
    else:
        header = f"━━━ Task {task.id}: {task.source}{status} ━━━"
    print(header, file=out)

    if result.error is not None:
        print("--- error ---", file=out)
        print(str(result.error), file=out)
    elif result.result is not None:
        for line in result.result.stdout:
            out.write(line)
        if result.result.stderr:
            print("--- stderr ---", file=out)
            for line in result.result.stderr:
                out.write(line)
        if result.result.error is not None:
            print("--- error ---", file=out)
            print_error(result.result.error, out)

    if show_time:
        print(
            format_timing(
                result.total_duration_s, result.create_duration_s, result.exec_duration_s
            ),
            file=out,
        )
    print(file=out)
    out.flush()


def format_summary(summary: Summary) -> str:
    line = f"Total: {summary.total}, Succeeded: {summary.succeeded}, Failed: {summary.failed}"
    if summary.duration_s is not None:
        line += f", Time: {format_duration(summary.duration_s)}"
    return line


def print_summary(summary: Summary, out: TextIO | None = None) -> None:
    print(format_summary(summary), file=out or sys.stdout)


def print_kept_alive(instance_ids: list[str], err: TextIO | None = None) -> None:
    err = err or sys.stderr
    if len(instance_ids) == 1:
        print(f"Created instance: {instance_ids[0]} (kept alive)", file=err)
    else:
        print(
            f"Created {len(instance_ids)} instances (kept alive): {', '.join(instance_ids)}",
            file=err,
        )


def error_dict(error: ExecutionError) -> dict[str, str]:
    return {"name": error.name, "value": error.value, "traceback": error.traceback}


def execution_dict(result: ExecutionResult) -> dict[str, Any]:
    return {
        "stdout": list(result.stdout),
        "stderr": list(result.stderr),
        "results": list(result.results),
        "error": error_dict(result.error) if result.error is not None else None,
    }


def task_dict(result: TaskResult, show_time: bool = False) -> dict[str, Any]:
    task = result.task
    doc: dict[str, Any] = {
        "id": task.id,
        "source": task.source,
        "instance": task.instance_no,
        "total_instances": task.total_instances,
        "success": not result.failed,
    }
    if result.error is not None:
        doc["error_message"] = str(result.error)
    elif result.result is not None:
        doc.update(execution_dict(result.result))
    if show_time:
        doc["timing"] = timing_dict(
            result.total_duration_s, result.create_duration_s, result.exec_duration_s
        )
    return doc


def summary_dict(summary: Summary) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "total": summary.total,
        "succeeded": summary.succeeded,
        "failed": summary.failed,
    }
    if summary.duration_s is not None:
        doc["timing"] = timing_dict(summary.duration_s)
    return doc


def command_dict(result: CommandResult) -> dict[str, Any]:
    return {
        "stdout": result.stdout,
        "stderr": result.stderr,
        "exit_code": result.exit_code,
        "error": result.error,
    }


def print_json(doc: dict[str, Any], out: TextIO | None = None) -> None:
    print(json.dumps(doc, indent=2, ensure_ascii=False, default=str), file=out or sys.stdout)


def format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{int(value)}{unit}" if unit == "B" else f"{value:.1f}{unit}"
        value /= 1024
    return f"{size}B"


def format_time_short(moment: datetime | None) -> str:
    return moment.strftime("%Y-%m-%d %H:%M") if moment is not None else "-"


def print_table(headers: list[str], rows: list[list[str]], out: TextIO | None = None) -> None:
    out = out or sys.stdout
    widths = [len(h) for h in headers]
    for row in rows:
        widths = [max(w, len(cell)) for w, cell in zip(widths, row)]

    for line in [headers, *rows]:
        print("  ".join(cell.ljust(w) for cell, w in zip(line, widths)).rstrip(), file=out)


def print_file_entries(entries: list[FileEntry], out: TextIO | None = None) -> None:
    print_table(
        ["TYPE", "SIZE", "PERMISSIONS", "MODIFIED", "NAME"],
        [
            [e.type, format_size(e.size), e.permissions or "-", format_time_short(e.modified), e.name]
            for e in entries
        ],
        out,
    )


def file_entry_dict(entry: FileEntry) -> dict[str, Any]:
    return {
        "name": entry.name,
        "path": entry.path,
        "type": entry.type,
        "size": entry.size,
        "permissions": entry.permissions,
        "modified": entry.modified.isoformat() if entry.modified is not None else None,
    }


def print_instances(instances: list[InstanceInfo], out: TextIO | None = None) -> None:
    print_table(
        ["ID", "TOOL", "STATE", "STARTED", "EXPIRES"],
        [
            [
                i.instance_id,
                i.tool,
                i.state,
                format_time_short(i.started_at),
                format_time_short(i.end_at),
            ]
            for i in instances
        ],
        out,
    )


def instance_dict(instance: InstanceInfo) -> dict[str, Any]:
    return {
        "id": instance.instance_id,
        "tool": instance.tool,
        "state": instance.state,
        "started_at": instance.started_at.isoformat() if instance.started_at else None,
        "expires_at": instance.end_at.isoformat() if instance.end_at else None,
    }
