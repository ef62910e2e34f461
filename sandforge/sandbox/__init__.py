from .token_cache import TokenCache
from .types import (
    CommandResult,
    ExecutionError,
    ExecutionResult,
    FileEntry,
    InstanceInfo,
    Sandbox,
    SandboxConnectError,
    SandboxCreateError,
    SandboxError,
    SandboxFileError,
    SandboxProvider,
)

__all__ = [
    "TokenCache",
    "CommandResult",
    "ExecutionError",
    "ExecutionResult",
    "FileEntry",
    "InstanceInfo",
    "Sandbox",
    "SandboxProvider",
    "SandboxError",
    "SandboxCreateError",
    "SandboxConnectError",
    "SandboxFileError",
]
