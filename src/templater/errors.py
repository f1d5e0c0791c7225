"""Error taxonomy for templater.

Every failure raised by the library derives from TemplaterError so the CLI
boundary can catch one type, wrap it with operation context and print the
whole cause chain.

Public API:
    TemplaterError: Base class for all templater errors
    error_chain: Flatten an exception and its causes into message lines
"""

from pathlib import Path

__all__ = [
    "ArchiveNotFoundError",
    "ConfigError",
    "CreateTemplateError",
    "EditTemplateError",
    "InvalidArgumentError",
    "InvalidPatternError",
    "InvalidTemplateDirError",
    "TemplateExistsError",
    "TemplateNotFoundError",
    "TemplaterError",
    "error_chain",
]


class TemplaterError(Exception):
    """Base exception for templater errors."""

    exit_code = 1


class TemplateNotFoundError(TemplaterError):
    """Raised when a template name is not in the metadata store."""

    def __init__(self, name: str):
        super().__init__(f"Template not found: {name}")
        self.name = name


class TemplateExistsError(TemplaterError):
    """Raised when a template name is already taken."""

    def __init__(self, name: str):
        super().__init__(f"Template {name} already exists")
        self.name = name


class InvalidTemplateDirError(TemplaterError):
    """Raised for a missing source directory or an occupied destination."""

    def __init__(self, path: Path | str):
        super().__init__(f"Invalid template directory: {path}")
        self.path = Path(path)


class InvalidArgumentError(TemplaterError):
    """Raised when an operation is called with arguments it cannot use."""

    def __init__(self, message: str):
        super().__init__(f"Invalid argument: {message}")


class InvalidPatternError(TemplaterError):
    """Raised when an ignore pattern cannot be compiled."""

    def __init__(self, pattern: str, reason: str):
        super().__init__(f"Failed to build glob pattern: {pattern} ({reason})")
        self.pattern = pattern


class CreateTemplateError(TemplaterError):
    """Raised when a post-expansion command fails.

    The name predates the command runner; it means "command execution failed".
    """

    def __init__(self, command: str):
        super().__init__(f"Command failed: {command}")
        self.command = command


class EditTemplateError(TemplaterError):
    """Raised when the editor round-trip fails."""

    def __init__(self, message: str):
        super().__init__(f"Failed to edit template: {message}")


class ArchiveNotFoundError(TemplaterError):
    """Raised when a record exists but its archive file does not."""

    def __init__(self, name: str, path: Path):
        super().__init__(f"Archive of template {name} not found: {path}")
        self.name = name
        self.path = path


class ConfigError(TemplaterError):
    """Raised when configuration operations fail."""


def error_chain(error: BaseException) -> list[str]:
    """Return the messages of an exception and every exception it was raised from.

    Follows ``__cause__`` first and falls back to ``__context__`` unless the
    context was suppressed, stopping on cycles.
    """
    lines: list[str] = []
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        lines.append(str(current) or type(current).__name__)
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None
    return lines
