from __future__ import annotations

import threading
import time

import pytest

from sandforge.sandbox.types import (
    CommandResult,
    ExecutionError,
    ExecutionResult,
    FileEntry,
    InstanceInfo,
    SandboxConnectError,
    SandboxCreateError,
    SandboxError,
    SandboxFileError,
)


class FakeSandbox:
    """
    In-memory sandbox. Code is interpreted by convention:
      "raise <Name>"  -> execution error
      "transport"     -> SandboxError from run_code
      "crash"         -> RuntimeError from run_code
      anything else   -> echoed back as one stdout line
    Files live in `provider.files[sandbox_id]`, keyed by absolute path.
    """

    def __init__(self, provider: FakeProvider, sandbox_id: str):
        self.provider = provider
        self.sandbox_id = sandbox_id
        self.executed: list[str] = []
        self.killed = 0

    @property
    def files(self) -> dict[str, bytes]:
        return self.provider.files.setdefault(self.sandbox_id, {})

    def run_code(self, code, language, *, on_stdout=None, on_stderr=None):
        try:
            time.sleep(self.provider.run_delay)
            self.executed.append(code)
            if code == "transport":
                raise SandboxError("connection reset")
            if code == "crash":
                raise RuntimeError("stream closed")
            if code.startswith("raise "):
                name = code.split(" ", 1)[1]
                if on_stderr is not None:
                    on_stderr(f"{name} incoming\n")
                return ExecutionResult(
                    stderr=[f"{name} incoming\n"],
                    error=ExecutionError(name=name, value="boom", traceback="Traceback ..."),
                )
            if on_stdout is not None:
                on_stdout(code + "\n")
            return ExecutionResult(stdout=[code + "\n"], results=[{"text": "42", "is_main_result": True}])
        finally:
            self.provider._leave()

    def run_command(self, command, *, cwd=None, envs=None, on_stdout=None, on_stderr=None):
        self.provider._leave()
        self.executed.append(command)
        exit_code = int(command.split()[-1]) if command.startswith("exit ") else 0
        stdout = f"ran {command} in {cwd or '~'} with {sorted((envs or {}).items())}\n"
        if on_stdout is not None:
            on_stdout(stdout)
        return CommandResult(stdout=stdout, stderr="", exit_code=exit_code)

    def read_file(self, path):
        if path not in self.files:
            raise SandboxFileError(f"failed to read remote file {path}: not found")
        return self.files[path]

    def write_file(self, path, data):
        self.files[path] = bytes(data)
        return path

    def list_files(self, path, depth=1):
        prefix = path.rstrip("/") + "/"
        return [
            FileEntry(name=name[len(prefix):], path=name, size=len(data), permissions="rw-r--r--")
            for name, data in sorted(self.files.items())
            if name.startswith(prefix) and "/" not in name[len(prefix):]
        ]

    def remove_file(self, path):
        if self.files.pop(path, None) is None:
            raise SandboxFileError(f"failed to remove {path}: not found")

    def make_dir(self, path):
        if path in self.provider.dirs:
            return False
        self.provider.dirs.add(path)
        return True

    def kill(self):
        self.killed += 1
        if self.provider.kill_fails:
            raise SandboxError(f"cannot kill {self.sandbox_id}")


class FakeProvider:
    def __init__(
        self,
        *,
        fail_creates: set[int] | None = None,
        crash_creates: set[int] | None = None,
        fail_all: bool = False,
        run_delay: float = 0.0,
        create_delay: float = 0.0,
        kill_fails: bool = False,
    ):
        self.fail_creates = fail_creates or set()
        self.crash_creates = crash_creates or set()
        self.fail_all = fail_all
        self.run_delay = run_delay
        self.create_delay = create_delay
        self.kill_fails = kill_fails

        self._lock = threading.Lock()
        self.create_calls = 0
        self.sandboxes: list[FakeSandbox] = []
        self.connected: list[str] = []
        self.remembered: list[str] = []
        self.destroyed: list[str] = []
        self.files: dict[str, dict[str, bytes]] = {}
        self.dirs: set[str] = set()
        self.active = 0
        self.peak_active = 0

    def create(self, tool):
        with self._lock:
            self.create_calls += 1
            call_no = self.create_calls
            self.active += 1
            self.peak_active = max(self.peak_active, self.active)

        time.sleep(self.create_delay)
        if self.fail_all or call_no in self.fail_creates:
            self._leave()
            raise SandboxCreateError(f"failed to create sandbox: quota exceeded ({tool})")
        if call_no in self.crash_creates:
            self._leave()
            raise RuntimeError("network blip")

        sandbox = FakeSandbox(self, f"sbx-{call_no}")
        with self._lock:
            self.sandboxes.append(sandbox)
        return sandbox

    def connect(self, instance_id):
        if instance_id == "missing":
            raise SandboxConnectError(f"failed to connect to instance {instance_id}")
        with self._lock:
            self.active += 1
            self.peak_active = max(self.peak_active, self.active)
        self.connected.append(instance_id)
        sandbox = FakeSandbox(self, instance_id)
        self.sandboxes.append(sandbox)
        return sandbox

    def remember(self, sandbox):
        self.remembered.append(sandbox.sandbox_id)

    def list_instances(self):
        return [
            InstanceInfo(instance_id=s.sandbox_id, tool="code-interpreter-v1", state="running")
            for s in self.sandboxes
            if not s.killed and s.sandbox_id not in self.destroyed
        ]

    def destroy(self, instance_id):
        if instance_id == "broken":
            raise SandboxError(f"failed to delete instance {instance_id}: forbidden")
        if instance_id == "missing":
            return False
        self.destroyed.append(instance_id)
        return True

    def _leave(self):
        with self._lock:
            self.active = max(self.active - 1, 0)

    @property
    def kills(self) -> int:
        return sum(s.killed for s in self.sandboxes)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()
