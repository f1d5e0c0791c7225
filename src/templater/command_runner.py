"""Post-expansion command execution.

Commands are plain command lines split on whitespace: the first token is the
executable, the rest are arguments. There is no quoting grammar, so an
argument cannot contain spaces. Each line is handed to the platform shell:

- Windows: ``cmd /C <exe> <args...>``
- elsewhere: ``sh -c "<exe> <args...>"``

Commands run one at a time, in order, in the current working directory,
inheriting stdin/stdout/stderr. The first non-zero exit stops the sequence.

Public API:
    CommandRunner: Run a command sequence with environment overrides
    parse_env_overrides: Parse KEY=VALUE strings
    build_invocation: Platform-specific argv for one command line
    working_directory: Scoped change of the process working directory
"""

import contextlib
import logging
import os
import platform
import subprocess
from collections.abc import Generator, Iterable, Sequence
from pathlib import Path

from templater.errors import CreateTemplateError, InvalidArgumentError

logger = logging.getLogger(__name__)

__all__ = ["CommandRunner", "build_invocation", "parse_env_overrides", "working_directory"]


def parse_env_overrides(pairs: Iterable[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings into a mapping.

    Only the first ``=`` separates key from value, so values may contain ``=``.
    An entry without ``=`` sets that variable to the empty string.

    Raises:
        InvalidArgumentError: If an entry has an empty key
    """
    envs: dict[str, str] = {}
    for pair in pairs:
        key, _, value = pair.partition("=")
        if not key:
            raise InvalidArgumentError(f"environment override must be KEY=VALUE, got '{pair}'")
        envs[key] = value
    return envs


def build_invocation(command_line: str, system: str | None = None) -> list[str]:
    """Build the argv that runs one command line through the platform shell.

    Args:
        command_line: Whitespace-separated command and arguments
        system: platform.system() value; detected when None

    Returns:
        Argument vector for subprocess
    """
    system = system or platform.system()
    command, *args = command_line.split()
    if system == "Windows":
        return ["cmd", "/C", command, *args]
    return ["sh", "-c", " ".join([command, *args])]


@contextlib.contextmanager
def working_directory(path: Path) -> Generator[Path, None, None]:
    """Change the process working directory for the duration of the block.

    The previous directory is restored on every exit path, including
    exceptions raised inside the block.
    """
    previous = Path.cwd()
    os.chdir(path)
    logger.debug(f"Changed working directory to: {path}")
    try:
        yield path
    finally:
        os.chdir(previous)
        logger.debug(f"Restored working directory: {previous}")


class CommandRunner:
    """Run a template's command sequence, failing fast."""

    def __init__(self, env_overrides: dict[str, str] | None = None, system: str | None = None):
        self.env_overrides = dict(env_overrides or {})
        self.system = system or platform.system()

    def _environment(self) -> dict[str, str]:
        env = dict(os.environ)
        env.update(self.env_overrides)
        return env

    def run_one(self, command_line: str) -> None:
        """Run a single command line and wait for it to exit.

        Raises:
            CreateTemplateError: If the command exits non-zero or cannot start
        """
        argv = build_invocation(command_line, self.system)
        logger.debug(f"Running command: {command_line}")
        try:
            result = subprocess.run(argv, env=self._environment(), check=False)
        except OSError as e:
            raise CreateTemplateError(command_line) from e

        if result.returncode != 0:
            logger.debug(f"Command exited with status {result.returncode}: {command_line}")
            raise CreateTemplateError(command_line)

    def run(self, commands: Sequence[str]) -> int:
        """Run commands in order, stopping at the first failure.

        Blank command lines are skipped.

        Returns:
            Number of commands executed
        """
        executed = 0
        for command_line in commands:
            if not command_line.split():
                logger.debug("Skipping blank command line")
                continue
            self.run_one(command_line)
            executed += 1
        return executed
