"""
Sandbox provider backed by the E2B code interpreter SDK.

Setup:
    pip install e2b-code-interpreter
    export E2B_API_KEY=your_key
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from e2b import (
    AuthenticationException,
    CommandExitException,
    SandboxException,
    ServiceBusyException,
)
from e2b_code_interpreter import Sandbox as CodeSandbox

from sandforge.config.types import Settings

from .token_cache import TokenCache
from .types import (
    CommandResult,
    ExecutionError,
    ExecutionResult,
    FileEntry,
    InstanceInfo,
    OutputCallback,
    SandboxConnectError,
    SandboxCreateError,
    SandboxError,
    SandboxFileError,
)

logger = logging.getLogger(__name__)

# The SDK lets raw transport errors from httpx through on some paths
_SDK_ERRORS = (
    SandboxException,
    AuthenticationException,
    ServiceBusyException,
    httpx.HTTPError,
    OSError,
)

_RESULT_FORMATS = (
    "text",
    "html",
    "markdown",
    "svg",
    "png",
    "jpeg",
    "pdf",
    "latex",
    "json",
    "javascript",
    "data",
    "chart",
)


class E2BSandbox:
    def __init__(self, sandbox: CodeSandbox):
        self._sandbox = sandbox
        self.sandbox_id: str = sandbox.sandbox_id

    def run_code(
        self,
        code: str,
        language: str,
        *,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> ExecutionResult:
        try:
            execution = self._sandbox.run_code(
                code,
                language=language,
                on_stdout=_line_handler(on_stdout),
                on_stderr=_line_handler(on_stderr),
            )
        except _SDK_ERRORS as exc:
            raise SandboxError(f"failed to execute code: {exc}") from exc

        error = None
        if execution.error is not None:
            error = ExecutionError(
                name=execution.error.name,
                value=execution.error.value,
                traceback=execution.error.traceback or "",
            )

        return ExecutionResult(
            stdout=list(execution.logs.stdout),
            stderr=list(execution.logs.stderr),
            error=error,
            results=convert_results(execution.results),
        )

    def run_command(
        self,
        command: str,
        *,
        cwd: str | None = None,
        envs: dict[str, str] | None = None,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> CommandResult:
        try:
            result = self._sandbox.commands.run(
                command,
                cwd=cwd,
                envs=envs,
                user="user",
                on_stdout=on_stdout,
                on_stderr=on_stderr,
            )
        except CommandExitException as exc:
            # Non-zero exit is data for the caller, not a transport failure
            result = exc
        except _SDK_ERRORS as exc:
            raise SandboxError(f"failed to execute command: {exc}") from exc

        return CommandResult(
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.exit_code,
            error=result.error or None,
        )

    def read_file(self, path: str) -> bytes:
        try:
            return bytes(self._sandbox.files.read(path, format="bytes", user="user"))
        except _SDK_ERRORS as exc:
            raise SandboxFileError(f"failed to read remote file {path}: {exc}") from exc

    def write_file(self, path: str, data: bytes) -> str:
        try:
            info = self._sandbox.files.write(path, data, user="user")
        except _SDK_ERRORS as exc:
            raise SandboxFileError(f"failed to upload file to {path}: {exc}") from exc
        return info.path

    def list_files(self, path: str, depth: int = 1) -> list[FileEntry]:
        try:
            entries = self._sandbox.files.list(path, depth=depth, user="user")
        except _SDK_ERRORS as exc:
            raise SandboxFileError(f"failed to list directory {path}: {exc}") from exc

        return [
            FileEntry(
                name=entry.name,
                path=entry.path,
                type=_enum_value(entry.type) or "file",
                size=getattr(entry, "size", 0),
                permissions=getattr(entry, "permissions", ""),
                modified=getattr(entry, "modified_time", None),
            )
            for entry in entries
        ]

    def remove_file(self, path: str) -> None:
        try:
            self._sandbox.files.remove(path, user="user")
        except _SDK_ERRORS as exc:
            raise SandboxFileError(f"failed to remove {path}: {exc}") from exc

    def make_dir(self, path: str) -> bool:
        try:
            return self._sandbox.files.make_dir(path, user="user")
        except _SDK_ERRORS as exc:
            raise SandboxFileError(f"failed to create directory {path}: {exc}") from exc

    def kill(self) -> None:
        try:
            self._sandbox.kill()
        except _SDK_ERRORS as exc:
            raise SandboxError(f"failed to destroy sandbox {self.sandbox_id}: {exc}") from exc
        logger.debug("killed sandbox %s", self.sandbox_id)


class E2BProvider:
    def __init__(self, settings: Settings, token_cache: TokenCache | None = None):
        self.settings = settings
        self.token_cache = token_cache or TokenCache()

    def create(self, tool: str) -> E2BSandbox:
        if not self.settings.api_key:
            raise SandboxCreateError(
                "failed to create sandbox: no API key configured (set E2B_API_KEY or api_key)"
            )

        try:
            sandbox = CodeSandbox.create(
                template=tool,
                api_key=self.settings.api_key,
                domain=self.settings.domain,
                timeout=self.settings.sandbox_timeout,
            )
        except _SDK_ERRORS as exc:
            raise SandboxCreateError(f"failed to create sandbox: {exc}") from exc

        logger.debug("created sandbox %s from tool %s", sandbox.sandbox_id, tool)
        return E2BSandbox(sandbox)

    def connect(self, instance_id: str) -> E2BSandbox:
        token = self.token_cache.get(instance_id) or self.settings.api_key
        if not token:
            raise SandboxConnectError(
                f"access token not found in cache for instance {instance_id}; "
                "recreate the instance or configure an API key"
            )

        try:
            sandbox = CodeSandbox.connect(
                instance_id,
                api_key=token,
                domain=self.settings.domain,
            )
        except _SDK_ERRORS as exc:
            raise SandboxConnectError(
                f"failed to connect to instance {instance_id}: {exc}"
            ) from exc

        logger.debug("connected to sandbox %s", instance_id)
        return E2BSandbox(sandbox)

    def remember(self, sandbox: E2BSandbox) -> None:
        if not self.settings.api_key:
            return
        try:
            self.token_cache.set(sandbox.sandbox_id, self.settings.api_key)
        except OSError as exc:
            # The instance is usable without a cached token
            logger.warning("could not cache token for %s: %s", sandbox.sandbox_id, exc)

    def list_instances(self) -> list[InstanceInfo]:
        self._require_api_key("list instances")
        instances: list[InstanceInfo] = []
        try:
            paginator = CodeSandbox.list(
                api_key=self.settings.api_key, domain=self.settings.domain
            )
            while paginator.has_next:
                for info in paginator.next_items():
                    instances.append(
                        InstanceInfo(
                            instance_id=info.sandbox_id,
                            tool=info.name or info.template_id,
                            state=_enum_value(info.state) or "",
                            started_at=info.started_at,
                            end_at=info.end_at,
                        )
                    )
        except _SDK_ERRORS as exc:
            raise SandboxError(f"failed to list instances: {exc}") from exc
        return instances

    def destroy(self, instance_id: str) -> bool:
        token = self.token_cache.get(instance_id) or self._require_api_key("delete instances")
        try:
            found = CodeSandbox.kill(
                instance_id, api_key=token, domain=self.settings.domain
            )
        except _SDK_ERRORS as exc:
            raise SandboxError(f"failed to delete instance {instance_id}: {exc}") from exc

        self.token_cache.delete(instance_id)
        logger.debug("deleted instance %s (found: %s)", instance_id, found)
        return found

    def _require_api_key(self, action: str) -> str:
        if not self.settings.api_key:
            raise SandboxError(
                f"cannot {action}: no API key configured (set E2B_API_KEY or api_key)"
            )
        return self.settings.api_key


def convert_results(sdk_results: list[Any]) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []
    for sdk_result in sdk_results:
        payload: dict[str, Any] = {}
        for fmt in _RESULT_FORMATS:
            value = getattr(sdk_result, fmt, None)
            if value is not None:
                payload[fmt] = value
        extra = getattr(sdk_result, "extra", None)
        if extra:
            payload["extra"] = extra

        if not payload:
            continue
        payload["is_main_result"] = bool(getattr(sdk_result, "is_main_result", False))
        results.append(payload)
    return results


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _line_handler(callback: OutputCallback | None):
    if callback is None:
        return None

    def handle(message: Any) -> None:
        callback(getattr(message, "line", str(message)))

    return handle
