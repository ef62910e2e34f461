import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path

from .types import TaskBuildError

logger = logging.getLogger(__name__)

_FALLBACK_EDITORS = ("vim", "vi", "nano")


def file_extension(language: str) -> str:
    match language:
        case "javascript":
            return ".js"
        case "typescript":
            return ".ts"
        case "bash":
            return ".sh"
        case "r":
            return ".r"
        case "java":
            return ".java"
        case _:
            return ".py"


def editor_template(language: str) -> str:
    match language:
        case "javascript" | "typescript" | "java":
            comment = "// "
        case _:
            comment = "# "

    return (
        f"{comment}sandforge code editor\n"
        f"{comment}Write your {language} code below, save and exit to execute.\n"
        f"{comment}Leave empty or unchanged to cancel.\n"
        "\n"
    )


def find_editor() -> str:
    editor = os.environ.get("EDITOR") or os.environ.get("VISUAL")
    if editor:
        return editor

    for candidate in _FALLBACK_EDITORS:
        if shutil.which(candidate):
            return candidate

    raise TaskBuildError("no editor found: set $EDITOR environment variable")


def open_editor(language: str) -> str:
    """
    Let the user write code in an interactive editor.

    Returns the stripped buffer, or an empty string when the user left it
    empty or did not touch the template.
    """
    editor = find_editor()
    template = editor_template(language)

    fd, tmp_name = tempfile.mkstemp(prefix="sandforge-", suffix=file_extension(language))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(template)

        logger.debug("opening editor %s on %s", editor, tmp_path)
        try:
            # $EDITOR may carry arguments, e.g. "code --wait"
            subprocess.run(f'{editor} "{tmp_path}"', shell=True, check=True)
        except subprocess.CalledProcessError as exc:
            raise TaskBuildError(f"editor exited with error: {exc}") from exc

        try:
            code = tmp_path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise TaskBuildError(f"failed to read edited file: {exc}") from exc
    finally:
        tmp_path.unlink(missing_ok=True)

    if code == "" or code == template.strip():
        return ""
    return code
