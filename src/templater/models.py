"""Template data model.

TemplateRecord is the unit of persistence in the metadata store. The other
types are transient documents: TemplateDefinition feeds Create, TemplateEdit
is the reduced projection handed to the user's editor.

Record structure:
    name: Template name, also the archive file's base name
    description: Optional human-readable description
    commands: Shell command lines run after expansion, in order
    ignore: Glob patterns excluded when the template was captured
    compressed_size: Archive size in bytes at creation time
    created: Creation timestamp (UTC), never changed afterwards
    used: Last expansion timestamp (UTC), None if never expanded
"""

import enum
import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from templater.errors import EditTemplateError, InvalidArgumentError, TemplaterError

logger = logging.getLogger(__name__)

__all__ = [
    "DefinitionResult",
    "DefinitionStatus",
    "TemplateDefinition",
    "TemplateEdit",
    "TemplateRecord",
    "load_definition",
    "utc_now",
]


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None or isinstance(value, str):
        return value
    raise InvalidArgumentError(f"'{key}' must be a string, got {type(value).__name__}")


def _string_list(data: dict[str, Any], key: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise InvalidArgumentError(f"'{key}' must be a list of strings")
    return list(value)


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class TemplateRecord:
    """Persisted metadata describing one template."""

    name: str
    description: str | None = None
    commands: list[str] = field(default_factory=list)
    ignore: list[str] = field(default_factory=list)
    compressed_size: int = 0
    created: datetime = field(default_factory=utc_now)
    used: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert record to a JSON-compatible dictionary."""
        return {
            "name": self.name,
            "description": self.description,
            "commands": list(self.commands),
            "ignore": list(self.ignore),
            "compressed_size": self.compressed_size,
            "created": self.created.isoformat(),
            "used": self.used.isoformat() if self.used else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TemplateRecord":
        """Create record from dictionary.

        Args:
            data: Dictionary produced by to_dict()

        Returns:
            TemplateRecord instance

        Raises:
            TemplaterError: If required fields are missing or malformed
        """
        try:
            return cls(
                name=data["name"],
                description=data.get("description"),
                commands=list(data.get("commands", [])),
                ignore=list(data.get("ignore", [])),
                compressed_size=int(data["compressed_size"]),
                created=_parse_timestamp(data["created"]),
                used=_parse_timestamp(data["used"]) if data.get("used") else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise TemplaterError(f"Corrupted template record: {e}") from e

    def mark_used(self, now: datetime | None = None) -> None:
        """Advance the last-used timestamp; it never moves backwards."""
        now = now or utc_now()
        if self.used is None or now > self.used:
            self.used = now

    def apply_edit(self, edit: "TemplateEdit") -> "TemplateRecord":
        """Overlay edited fields onto a copy of this record.

        Size, timestamps and ignore patterns are carried over unchanged.
        """
        return replace(
            self,
            name=edit.name,
            description=edit.description,
            commands=list(edit.commands),
        )


@dataclass
class TemplateDefinition:
    """Declarative Create input; every field is optional."""

    name: str | None = None
    description: str | None = None
    commands: list[str] = field(default_factory=list)
    ignore: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "TemplateDefinition":
        """Build a definition from a parsed document.

        Unknown keys are ignored. Missing keys fall back to None or [].

        Raises:
            InvalidArgumentError: If the document is not a mapping or a field
                has the wrong type
        """
        if not isinstance(data, dict):
            raise InvalidArgumentError("definition document must be a mapping")
        return cls(
            name=_optional_str(data, "name"),
            description=_optional_str(data, "description"),
            commands=_string_list(data, "commands"),
            ignore=_string_list(data, "ignore"),
        )


class DefinitionStatus(enum.Enum):
    ABSENT = "absent"
    LOADED = "loaded"
    INVALID = "invalid"


@dataclass
class DefinitionResult:
    """Outcome of loading an optional definition document.

    Distinguishes "no document given" from "document given but unusable" so
    the caller decides explicitly how to continue.
    """

    status: DefinitionStatus
    definition: TemplateDefinition | None = None
    error: str | None = None

    @property
    def loaded(self) -> bool:
        return self.status is DefinitionStatus.LOADED


def load_definition(path: Path | None) -> DefinitionResult:
    """Load a template definition from a YAML or JSON file.

    Files ending in ``.json`` are parsed as JSON, which unlike YAML allows
    tab indentation; everything else is parsed as YAML.

    Args:
        path: Definition file path, or None when none was supplied

    Returns:
        DefinitionResult; never raises for unreadable or invalid files
    """
    if path is None:
        return DefinitionResult(DefinitionStatus.ABSENT)

    try:
        with open(path, encoding="utf-8") as f:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except OSError as e:
        return DefinitionResult(
            DefinitionStatus.INVALID, error=f"Couldn't open definition file {path}: {e}"
        )
    except (ValueError, yaml.YAMLError) as e:
        return DefinitionResult(
            DefinitionStatus.INVALID, error=f"Provided file is not valid definition file: {e}"
        )

    try:
        definition = TemplateDefinition.from_dict(data)
    except InvalidArgumentError as e:
        return DefinitionResult(
            DefinitionStatus.INVALID, error=f"Provided file is not valid definition file: {e}"
        )

    logger.debug(f"Loaded template definition from: {path}")
    return DefinitionResult(DefinitionStatus.LOADED, definition=definition)


@dataclass
class TemplateEdit:
    """The editable projection of a record: name, description and commands."""

    name: str
    description: str | None = None
    commands: list[str] = field(default_factory=list)

    @classmethod
    def from_record(cls, record: TemplateRecord) -> "TemplateEdit":
        return cls(
            name=record.name,
            description=record.description,
            commands=list(record.commands),
        )

    def to_yaml(self) -> str:
        """Serialize for human editing, keeping field order."""
        data = {"name": self.name, "description": self.description, "commands": self.commands}
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)

    @classmethod
    def from_yaml(cls, text: str) -> "TemplateEdit":
        """Parse an edited document.

        Raises:
            EditTemplateError: If the text is not valid YAML or the fields are invalid
        """
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise EditTemplateError(f"edited document is not valid YAML: {e}") from e

        if not isinstance(data, dict):
            raise EditTemplateError("edited document must be a mapping")

        try:
            name = _optional_str(data, "name")
            description = _optional_str(data, "description")
            commands = _string_list(data, "commands")
        except InvalidArgumentError as e:
            raise EditTemplateError(str(e)) from e

        if not name or not name.strip():
            raise EditTemplateError("template name cannot be empty")

        return cls(name=name.strip(), description=description, commands=commands)
