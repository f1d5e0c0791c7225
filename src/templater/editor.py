"""External editor round-trip.

Writes text to a temporary file, opens it in the user's editor, waits for the
editor to exit and returns the edited text. The temporary file is removed on
every exit path.
"""

import logging
import os
import platform
import shlex
import subprocess
import tempfile
from pathlib import Path

from templater.errors import EditTemplateError

logger = logging.getLogger(__name__)

__all__ = ["edit_text", "resolve_editor"]


def resolve_editor(configured: str | None = None) -> str:
    """Pick the editor command.

    Order: $VISUAL, $EDITOR, the configured editor, then the platform default.
    """
    for candidate in (os.environ.get("VISUAL"), os.environ.get("EDITOR"), configured):
        if candidate and candidate.strip():
            return candidate
    return "notepad" if platform.system() == "Windows" else "vi"


def edit_text(text: str, editor: str | None = None, suffix: str = ".yaml") -> str:
    """Let the user edit text in an external editor.

    Args:
        text: Initial file contents
        editor: Editor command line; resolved with resolve_editor() when None
        suffix: Temporary file suffix, used by editors for syntax highlighting

    Returns:
        File contents after the editor exits

    Raises:
        EditTemplateError: If the editor cannot start or exits non-zero
    """
    editor = editor or resolve_editor()
    fd, name = tempfile.mkstemp(prefix="templater-", suffix=suffix, text=True)
    temp_path = Path(name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)

        argv = [*shlex.split(editor, posix=platform.system() != "Windows"), str(temp_path)]
        logger.debug(f"Opening editor: {' '.join(argv)}")
        try:
            result = subprocess.run(argv, check=False)
        except OSError as e:
            raise EditTemplateError(f"Failed to open editor '{editor}': {e}") from e

        if result.returncode != 0:
            raise EditTemplateError(f"Editor '{editor}' exited with status {result.returncode}")

        return temp_path.read_text(encoding="utf-8")
    finally:
        temp_path.unlink(missing_ok=True)
