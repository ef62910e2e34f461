from dataclasses import dataclass

DEFAULT_TOOL = "code-interpreter-v1"
DEFAULT_LANGUAGE = "python"
DEFAULT_SANDBOX_TIMEOUT = 300

OUTPUT_FORMATS = ("text", "json")


@dataclass
class Settings:
    api_key: str | None = None
    domain: str | None = None
    output: str = "text"
    tool: str = DEFAULT_TOOL
    language: str = DEFAULT_LANGUAGE
    sandbox_timeout: int = DEFAULT_SANDBOX_TIMEOUT


@dataclass(frozen=True)
class RunConfig:
    """Options for one `run` invocation, fixed before any task executes."""

    instance: str | None = None
    tool: str = DEFAULT_TOOL
    language: str = DEFAULT_LANGUAGE
    repeat: int = 1
    stream: bool = False
    parallel: bool = False
    max_parallel: int = 0
    keep_alive: bool = False
    show_time: bool = False
    output: str = "text"

    @property
    def is_json(self) -> bool:
        return self.output == "json"

    def validate(self) -> None:
        if self.instance and self.tool != DEFAULT_TOOL:
            raise UsageError("cannot specify both --instance and --tool-name/--tool")

        if self.repeat < 1:
            raise UsageError(f"--repeat must be at least 1, got {self.repeat}")

        if self.repeat > 1 and self.instance:
            raise UsageError(
                "cannot use --repeat with --instance "
                "(existing instance doesn't support multiple executions)"
            )

        if self.parallel and self.instance:
            raise UsageError(
                "cannot use --parallel with --instance "
                "(parallel tasks each run in their own new sandbox)"
            )

        if self.max_parallel < 0:
            raise UsageError(
                f"--max-parallel must be 0 (unlimited) or positive, got {self.max_parallel}"
            )

        if self.output not in OUTPUT_FORMATS:
            raise UsageError(f"unknown output format: {self.output}")


class ConfigError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class UnsupportedConfigFormatError(ConfigError):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class UsageError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)
