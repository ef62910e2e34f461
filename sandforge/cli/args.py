from __future__ import annotations

import argparse

from sandforge.config.types import OUTPUT_FORMATS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sandforge",
        description="Run code and commands in remote sandboxes",
    )

    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings file (default: ~/.sandforge/config.toml)",
    )
    parser.add_argument(
        "-o",
        "--output",
        choices=OUTPUT_FORMATS,
        default=None,
        help="Output format",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log sandbox lifecycle events to stderr",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        required=True,
    )

    # run
    run = subparsers.add_parser(
        "run",
        aliases=["r"],
        help="Execute code in a sandbox",
        description=(
            "Code is taken from -c, else from one or more -f files, else from "
            "piped stdin, else from $EDITOR."
        ),
    )
    run.add_argument("-c", "--code", default=None, help="Code to execute")
    run.add_argument(
        "-f",
        "--file",
        dest="files",
        action="append",
        default=[],
        help="File containing code to execute (repeatable)",
    )
    _add_sandbox_arguments(run)
    run.add_argument(
        "-l",
        "--language",
        default=None,
        help="Programming language (python, javascript, typescript, r, java, bash)",
    )
    run.add_argument(
        "-n",
        "--repeat",
        type=int,
        default=1,
        help="Run the same code N times",
    )
    run.add_argument(
        "-p",
        "--parallel",
        action="store_true",
        help="Execute tasks in parallel, one sandbox per task (default: sequential)",
    )
    run.add_argument(
        "--max-parallel",
        type=int,
        default=0,
        help="Maximum parallel executions (0 = unlimited)",
    )

    # exec
    exec_ = subparsers.add_parser(
        "exec",
        aliases=["x"],
        help="Execute a shell command in a sandbox",
    )
    exec_.add_argument(
        "argv",
        nargs="+",
        metavar="command",
        help="Shell command and its arguments",
    )
    _add_sandbox_arguments(exec_)
    exec_.add_argument("--cwd", default=None, help="Working directory")
    exec_.add_argument(
        "--env",
        action="append",
        default=[],
        help="Environment variable in KEY=VALUE form (repeatable)",
    )

    _add_file_parser(subparsers)
    _add_instance_parser(subparsers)

    return parser


def _add_file_parser(subparsers) -> None:
    file_ = subparsers.add_parser(
        "file",
        aliases=["f", "fs"],
        help="File operations in a sandbox",
        description=(
            "Operates on an existing instance with -i, otherwise on a temporary "
            "sandbox that is destroyed afterwards unless --keep-alive is given."
        ),
    )
    commands = file_.add_subparsers(dest="file_command", required=True)

    listing = commands.add_parser("list", aliases=["ls"], help="List files in a directory")
    listing.add_argument("path")
    listing.add_argument(
        "--depth",
        type=int,
        default=1,
        help="Directory depth (1 = current dir only)",
    )

    upload = commands.add_parser("upload", aliases=["up"], help="Upload a file to the sandbox")
    upload.add_argument("local_path")
    upload.add_argument("remote_path")

    download = commands.add_parser(
        "download", aliases=["down"], help="Download a file from the sandbox"
    )
    download.add_argument("remote_path")
    download.add_argument(
        "local_path",
        nargs="?",
        default=None,
        help="Local destination (default: basename of the remote path)",
    )

    remove = commands.add_parser(
        "remove", aliases=["rm"], help="Remove files or directories"
    )
    remove.add_argument("paths", nargs="+", metavar="path")

    mkdir = commands.add_parser("mkdir", help="Create a directory")
    mkdir.add_argument("path")

    cat = commands.add_parser("cat", help="Print file contents to stdout")
    cat.add_argument("path")

    for sub in (listing, upload, download, remove, mkdir, cat):
        _add_sandbox_arguments(sub, stream=False)


def _add_instance_parser(subparsers) -> None:
    instance = subparsers.add_parser(
        "instance",
        aliases=["i"],
        help="Manage sandbox instances",
    )
    commands = instance.add_subparsers(dest="instance_command", required=True)

    create = commands.add_parser(
        "create",
        aliases=["start"],
        help="Create an instance that stays alive until deleted or timed out",
    )
    create.add_argument(
        "-t",
        "--tool-name",
        "--tool",
        dest="tool",
        default=None,
        help="Tool to create the instance from",
    )

    listing = commands.add_parser("list", aliases=["ls"], help="List instances")
    listing.add_argument(
        "--short",
        action="store_true",
        help="Only show instance IDs",
    )

    delete = commands.add_parser(
        "delete", aliases=["rm", "del", "stop"], help="Delete instances"
    )
    delete.add_argument("instance_ids", nargs="+", metavar="instance-id")

    for sub in (create, listing, delete):
        sub.add_argument(
            "--time",
            dest="show_time",
            action="store_true",
            help="Print elapsed time",
        )

def _add_sandbox_arguments(parser: argparse.ArgumentParser, *, stream: bool = True) -> None:
    parser.add_argument(
        "-i",
        "--instance",
        default=None,
        help="Existing instance ID to use",
    )
    parser.add_argument(
        "-t",
        "--tool-name",
        "--tool",
        dest="tool",
        default=None,
        help="Tool to use for a temporary instance",
    )
    parser.add_argument(
        "--keep-alive",
        action="store_true",
        help="Keep temporary instances alive after execution",
    )
    if stream:
        parser.add_argument(
            "-s",
            "--stream",
            action="store_true",
            help="Stream output in real time",
        )
    parser.add_argument(
        "--time",
        dest="show_time",
        action="store_true",
        help="Print elapsed time",
    )
