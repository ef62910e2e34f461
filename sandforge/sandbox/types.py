from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol

OutputCallback = Callable[[str], None]


@dataclass(frozen=True)
class ExecutionError:
    name: str
    value: str
    traceback: str = ""


@dataclass(frozen=True)
class ExecutionResult:
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    error: ExecutionError | None = None
    results: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int
    error: str | None = None


@dataclass(frozen=True)
class FileEntry:
    name: str
    path: str
    type: str = "file"
    size: int = 0
    permissions: str = ""
    modified: datetime | None = None

    @property
    def is_dir(self) -> bool:
        return self.type == "dir"


@dataclass(frozen=True)
class InstanceInfo:
    instance_id: str
    tool: str
    state: str
    started_at: datetime | None = None
    end_at: datetime | None = None


class Sandbox(Protocol):
    """A running remote sandbox instance."""

    sandbox_id: str

    def run_code(
        self,
        code: str,
        language: str,
        *,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> ExecutionResult: ...

    def run_command(
        self,
        command: str,
        *,
        cwd: str | None = None,
        envs: dict[str, str] | None = None,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> CommandResult: ...

    def read_file(self, path: str) -> bytes: ...

    def write_file(self, path: str, data: bytes) -> str:
        """Write `data` to `path`, creating parent directories; returns the remote path."""

    def list_files(self, path: str, depth: int = 1) -> list[FileEntry]: ...

    def remove_file(self, path: str) -> None: ...

    def make_dir(self, path: str) -> bool:
        """Create `path` and its parents; False if it already existed."""

    def kill(self) -> None: ...


class SandboxProvider(Protocol):
    """
    Creates new sandboxes or attaches to existing ones.

    `create` is called concurrently from worker threads and must not share
    mutable state between the sandboxes it returns.
    """

    def create(self, tool: str) -> Sandbox: ...

    def connect(self, instance_id: str) -> Sandbox: ...

    def remember(self, sandbox: Sandbox) -> None:
        """Record a kept-alive sandbox so later invocations can connect to it."""

    def list_instances(self) -> list[InstanceInfo]: ...

    def destroy(self, instance_id: str) -> bool:
        """Kill a running instance by id and forget its token; False if it was not found."""


class SandboxError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class SandboxCreateError(SandboxError):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class SandboxConnectError(SandboxError):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class SandboxFileError(SandboxError):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)
