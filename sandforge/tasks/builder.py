from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Callable, TextIO

from sandforge.config.types import UsageError

from .editor import open_editor
from .types import (
    CODE_SOURCE,
    EDITOR_SOURCE,
    STDIN_SOURCE,
    ExecutionTask,
    InputSpec,
    TaskBuildError,
)

logger = logging.getLogger(__name__)


def build_tasks(
    inputs: InputSpec,
    *,
    stdin: TextIO | None = None,
    editor: Callable[[str], str] = open_editor,
) -> list[ExecutionTask]:
    """
    Turn the user's input into an ordered list of tasks.

    Exactly one source is used, by precedence: literal code, files, piped
    stdin, editor. Every source is repeated `inputs.repeat` times and ids run
    1..N across all produced tasks. An empty list means no code was given.
    """
    if inputs.code and inputs.files:
        raise UsageError("cannot use both -c and -f flags")

    builder = _TaskListBuilder(max(inputs.repeat, 1))

    if inputs.code:
        builder.add(inputs.code, CODE_SOURCE)
        return builder.tasks

    if inputs.files:
        for file in inputs.files:
            try:
                code = Path(file).read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise TaskBuildError(f"failed to read file {file}: {exc}") from exc
            builder.add(code, file)
        return builder.tasks

    stream = sys.stdin if stdin is None else stdin
    if _is_piped(stream):
        try:
            code = stream.read()
        except OSError as exc:
            raise TaskBuildError(f"failed to read from stdin: {exc}") from exc
        if code:
            builder.add(code, STDIN_SOURCE)
        return builder.tasks

    code = editor(inputs.language)
    if code:
        builder.add(code, EDITOR_SOURCE)
    return builder.tasks


def _is_piped(stream: TextIO | None) -> bool:
    if stream is None or stream.closed:
        return False
    try:
        return not stream.isatty()
    except ValueError:
        return False


class _TaskListBuilder:
    def __init__(self, repeat: int):
        self.repeat = repeat
        self.tasks: list[ExecutionTask] = []
        self._next_id = 1

    def add(self, code: str, source: str) -> None:
        for instance_no in range(1, self.repeat + 1):
            self.tasks.append(
                ExecutionTask(
                    id=self._next_id,
                    code=code,
                    source=source,
                    instance_no=instance_no,
                    total_instances=self.repeat,
                )
            )
            self._next_id += 1
        logger.debug("built %d task(s) from %s", self.repeat, source)
