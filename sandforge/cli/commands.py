from __future__ import annotations

import argparse
import contextlib
import functools
import logging
import sys
import threading
import time
from pathlib import Path, PurePosixPath
from typing import Callable, Iterator

from sandforge.config import ConfigError, RunConfig, Settings, UsageError, load_settings
from sandforge.config.types import DEFAULT_TOOL
from sandforge.executor import (
    RunHooks,
    is_single_task,
    run_sequential,
    run_tasks,
    single_task_exit_code,
    summarize,
)
from sandforge.executor.sandboxes import acquire_sandbox, destroy_sandboxes, keep_alive
from sandforge.sandbox import Sandbox, SandboxError, SandboxProvider
from sandforge.tasks import ExecutionTask, InputSpec, TaskBuildError, build_tasks

from . import output
from .args import build_parser

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Settings], SandboxProvider]


def run_cli(
    argv: list[str] | None = None,
    provider_factory: ProviderFactory | None = None,
) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
        _configure_logging(args.verbose)

        settings = load_settings(args.config)
        if args.output:
            settings.output = args.output
        factory = provider_factory or _e2b_provider

        match args.command:
            case "run" | "r":
                return cmd_run(args, settings, factory)
            case "exec" | "x":
                return cmd_exec(args, settings, factory)
            case "file" | "f" | "fs":
                return cmd_file(args, settings, factory)
            case "instance" | "i":
                return cmd_instance(args, settings, factory)
            case _:
                return 2

    except (ConfigError, UsageError, TaskBuildError) as exc:
        print(str(exc), file=sys.stderr)
        return 2

    except SandboxError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        return 130


def cmd_run(args: argparse.Namespace, settings: Settings, factory: ProviderFactory) -> int:
    config = RunConfig(
        instance=args.instance,
        tool=_tool_for(args, settings),
        language=args.language or settings.language,
        repeat=args.repeat,
        stream=args.stream,
        parallel=args.parallel,
        max_parallel=args.max_parallel,
        keep_alive=args.keep_alive,
        show_time=args.show_time,
        output=settings.output,
    )
    config.validate()

    tasks = build_tasks(
        InputSpec(
            code=args.code,
            files=list(args.files),
            repeat=config.repeat,
            language=config.language,
        )
    )
    if not tasks:
        raise UsageError("no code provided")

    provider = factory(settings)
    if is_single_task(tasks, config):
        return _run_single(tasks[0], config, provider)
    return _run_multi(tasks, config, provider)


def cmd_exec(args: argparse.Namespace, settings: Settings, factory: ProviderFactory) -> int:
    config = _sandbox_config(args, settings)
    envs = _parse_env(args.env)
    command = " ".join(args.argv)
    provider = factory(settings)

    on_stdout = on_stderr = None
    if config.stream:
        def on_stdout(text: str) -> None:
            sys.stdout.write(text)
            sys.stdout.flush()

        def on_stderr(text: str) -> None:
            sys.stderr.write(text)
            sys.stderr.flush()

    start = time.monotonic()
    with _borrowed_sandbox(config, provider) as (sandbox, create_duration):
        exec_start = time.monotonic()
        result = sandbox.run_command(
            command, cwd=args.cwd, envs=envs, on_stdout=on_stdout, on_stderr=on_stderr
        )
        exec_duration = time.monotonic() - exec_start

    total_duration = time.monotonic() - start
    logger.debug("command exited with %d", result.exit_code)

    if config.is_json:
        doc = output.command_dict(result)
        if config.show_time:
            doc["timing"] = output.timing_dict(total_duration, create_duration, exec_duration)
        output.print_json(doc)
        return result.exit_code

    if not config.stream:
        sys.stdout.write(result.stdout)
        sys.stderr.write(result.stderr)
    if result.error:
        print(result.error, file=sys.stderr)
    if config.show_time:
        print(output.format_timing(total_duration, create_duration, exec_duration), file=sys.stderr)

    return result.exit_code


def cmd_file(args: argparse.Namespace, settings: Settings, factory: ProviderFactory) -> int:
    config = _sandbox_config(args, settings)

    # Local side is checked before any sandbox is created
    data = None
    if args.file_command in ("upload", "up"):
        try:
            data = Path(args.local_path).read_bytes()
        except OSError as exc:
            raise UsageError(f"failed to read local file {args.local_path}: {exc}") from exc

    provider = factory(settings)
    start = time.monotonic()
    with _borrowed_sandbox(config, provider) as (sandbox, create_duration):
        exec_start = time.monotonic()
        doc = _file_operation(args, sandbox, data, config)
        exec_duration = time.monotonic() - exec_start
    total_duration = time.monotonic() - start

    if config.is_json:
        if config.show_time:
            doc["timing"] = output.timing_dict(total_duration, create_duration, exec_duration)
        output.print_json(doc)
    elif config.show_time:
        print(output.format_timing(total_duration, create_duration, exec_duration), file=sys.stderr)
    return 0


def _file_operation(
    args: argparse.Namespace, sandbox: Sandbox, data: bytes | None, config: RunConfig
) -> dict:
    """Run one file subcommand, print its text output, and return its JSON document."""
    match args.file_command:
        case "list" | "ls":
            entries = sandbox.list_files(args.path, depth=args.depth)
            if not config.is_json:
                if entries:
                    output.print_file_entries(entries)
                else:
                    print("Directory is empty", file=sys.stderr)
            return {"path": args.path, "entries": [output.file_entry_dict(e) for e in entries]}

        case "upload" | "up":
            remote = sandbox.write_file(args.remote_path, data)
            if not config.is_json:
                print(f"Uploaded {args.local_path} -> {remote} ({output.format_size(len(data))})")
            return {
                "operation": "upload",
                "path": remote,
                "local_path": args.local_path,
                "size": len(data),
            }

        case "download" | "down":
            content = sandbox.read_file(args.remote_path)
            local = args.local_path or PurePosixPath(args.remote_path).name
            try:
                Path(local).write_bytes(content)
            except OSError as exc:
                raise UsageError(f"failed to write local file {local}: {exc}") from exc
            if not config.is_json:
                print(f"Downloaded {args.remote_path} -> {local} ({output.format_size(len(content))})")
            return {
                "operation": "download",
                "path": args.remote_path,
                "local_path": local,
                "size": len(content),
            }

        case "remove" | "rm":
            for path in args.paths:
                sandbox.remove_file(path)
                if not config.is_json:
                    print(f"Removed: {path}")
            return {"operation": "remove", "paths": list(args.paths)}

        case "mkdir":
            created = sandbox.make_dir(args.path)
            if not config.is_json:
                state = "Created directory" if created else "Directory already exists"
                print(f"{state}: {args.path}")
            return {"operation": "mkdir", "path": args.path, "created": created}

        case "cat":
            content = sandbox.read_file(args.path)
            text = content.decode("utf-8", errors="replace")
            if not config.is_json:
                sys.stdout.write(text)
            return {"path": args.path, "content": text}

    raise UsageError(f"unknown file command: {args.file_command}")


def cmd_instance(args: argparse.Namespace, settings: Settings, factory: ProviderFactory) -> int:
    provider = factory(settings)
    is_json = settings.output == "json"
    start = time.monotonic()
    code = 0

    match args.instance_command:
        case "create" | "start":
            tool = args.tool or settings.tool
            sandbox = provider.create(tool)
            provider.remember(sandbox)
            doc = {"instance_id": sandbox.sandbox_id, "tool": tool}
            if not is_json:
                print(sandbox.sandbox_id)

        case "list" | "ls":
            instances = provider.list_instances()
            if args.short:
                doc = {"ids": [i.instance_id for i in instances]}
            else:
                doc = {"instances": [output.instance_dict(i) for i in instances]}
            if not is_json:
                if not instances:
                    print("No instances found", file=sys.stderr)
                elif args.short:
                    for instance in instances:
                        print(instance.instance_id)
                else:
                    output.print_instances(instances)

        case "delete" | "rm" | "del" | "stop":
            failed = _delete_instances(provider, args.instance_ids, is_json)
            doc = {
                "status": "partial" if failed else "success",
                "deleted": len(args.instance_ids) - len(failed),
                "failed": len(failed),
            }
            if failed:
                doc["failed_ids"] = failed
                code = 1

        case _:
            raise UsageError(f"unknown instance command: {args.instance_command}")

    duration = time.monotonic() - start
    if is_json:
        if args.show_time:
            doc["timing"] = output.timing_dict(duration)
        output.print_json(doc)
    elif args.show_time:
        print(output.format_timing(duration), file=sys.stderr)
    return code


def _delete_instances(provider: SandboxProvider, instance_ids: list[str], quiet: bool) -> list[str]:
    failed: list[str] = []
    for instance_id in instance_ids:
        try:
            found = provider.destroy(instance_id)
        except SandboxError as exc:
            print(f"Failed to delete instance {instance_id}: {exc}", file=sys.stderr)
            failed.append(instance_id)
            continue

        if not found:
            print(f"Instance not found: {instance_id}", file=sys.stderr)
            failed.append(instance_id)
        elif not quiet:
            print(f"Instance deleted: {instance_id}")
    return failed


@contextlib.contextmanager
def _borrowed_sandbox(
    config: RunConfig, provider: SandboxProvider
) -> Iterator[tuple[Sandbox, float]]:
    """
    Connect to `config.instance` or create a temporary sandbox for one command.

    A temporary sandbox is destroyed on exit unless keep-alive is set, in
    which case it is recorded and reported instead. An existing instance is
    left running.
    """
    sandbox, create_duration = acquire_sandbox(config, provider)
    created = not config.instance
    if created and config.keep_alive:
        keep_alive([sandbox], provider, output.print_kept_alive)
    try:
        yield sandbox, create_duration
    finally:
        if created and not config.keep_alive:
            destroy_sandboxes([sandbox])


def _sandbox_config(args: argparse.Namespace, settings: Settings) -> RunConfig:
    if args.instance and args.tool:
        raise UsageError("cannot specify both --instance and --tool-name/--tool")

    return RunConfig(
        instance=args.instance,
        tool=_tool_for(args, settings),
        keep_alive=args.keep_alive,
        stream=getattr(args, "stream", False),
        show_time=args.show_time,
        output=settings.output,
    )


def _run_single(task: ExecutionTask, config: RunConfig, provider: SandboxProvider) -> int:
    printer = output.StreamPrinter()
    kept_alive: list[str] = []

    def on_kept_alive(instance_ids: list[str]) -> None:
        kept_alive.extend(instance_ids)
        output.print_kept_alive(instance_ids)

    hooks = RunHooks(on_line=printer.write_plain, on_kept_alive=on_kept_alive)

    [result] = run_sequential([task], config, provider, hooks=hooks)

    if result.error is not None:
        print(str(result.error), file=sys.stderr)
        return single_task_exit_code(result)

    if config.is_json:
        doc = output.execution_dict(result.result)
        if config.show_time:
            doc["timing"] = output.timing_dict(
                result.total_duration_s, result.create_duration_s, result.exec_duration_s
            )
        if kept_alive:
            doc["instance_id"] = kept_alive[0]
        output.print_json(doc)
        return single_task_exit_code(result)

    if config.stream:
        if result.result.error is not None:
            print("\n--- error ---", file=sys.stderr)
            output.print_error(result.result.error, sys.stderr)
    else:
        output.print_execution(result.result)

    if config.show_time:
        print(
            output.format_timing(
                result.total_duration_s, result.create_duration_s, result.exec_duration_s
            ),
            file=sys.stderr,
        )
    return single_task_exit_code(result)


def _run_multi(tasks: list[ExecutionTask], config: RunConfig, provider: SandboxProvider) -> int:
    printer = output.StreamPrinter()
    progressive = config.parallel and not config.stream and not config.is_json
    hooks = RunHooks(
        on_line=printer.write_prefixed if config.stream else None,
        on_result=(
            functools.partial(output.print_task_block, show_time=config.show_time)
            if progressive
            else None
        ),
        on_kept_alive=output.print_kept_alive,
    )

    cancel = threading.Event()
    start = time.monotonic()
    results = run_tasks(tasks, config, provider, cancel=cancel, hooks=hooks)
    duration = time.monotonic() - start

    summary, code = summarize(results, duration if config.show_time else None)

    if config.stream:
        output.print_summary(summary, sys.stderr)
    elif config.is_json:
        output.print_json(
            {
                "tasks": [output.task_dict(r, config.show_time) for r in results],
                "summary": output.summary_dict(summary),
            }
        )
    else:
        if not progressive:
            for result in results:
                output.print_task_block(result, config.show_time)
        output.print_summary(summary)

    return code


def _tool_for(args: argparse.Namespace, settings: Settings) -> str:
    if args.tool:
        return args.tool
    # The configured default tool must not trip the --instance/--tool check
    return DEFAULT_TOOL if args.instance else settings.tool


def _parse_env(pairs: list[str]) -> dict[str, str]:
    envs: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise UsageError(
                f"invalid environment variable format: {pair} (expected KEY=VALUE)"
            )
        envs[key] = value
    return envs


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _e2b_provider(settings: Settings) -> SandboxProvider:
    # Imported lazily so that argument errors don't pay for the SDK import
    from sandforge.sandbox.e2b import E2BProvider

    return E2BProvider(settings)
