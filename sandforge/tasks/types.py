from dataclasses import dataclass, field

CODE_SOURCE = "<code>"
STDIN_SOURCE = "<stdin>"
EDITOR_SOURCE = "<editor>"


@dataclass(frozen=True)
class ExecutionTask:
    id: int
    code: str
    source: str
    instance_no: int = 1
    total_instances: int = 1

    @property
    def display_instance(self) -> int:
        """Instance number to show next to the task, 0 when the source is not repeated."""
        if self.total_instances <= 1:
            return 0
        return self.instance_no


@dataclass(frozen=True)
class InputSpec:
    code: str | None = None
    files: list[str] = field(default_factory=list)
    repeat: int = 1
    language: str = "python"


class TaskBuildError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)
