"""Template lifecycle management.

This module captures directories as templates and materializes them again.
Each template is a metadata record in the SQLite store plus one compressed
archive under ``<storage>/archives/<name>.tar.gz``.

Operations:
    create: Capture a directory (optionally merged with a definition file)
    expand: Extract a template into a new directory and run its commands
    list_templates / list_commands / file_tree / inspect: Read-only views
    delete: Remove record and archive
    edit: Edit name/description/commands in an external editor
    check: Find and optionally prune records and archives that lost their pair

Ordering:
- create writes the archive first and inserts the record only after the
  archive is durably in place
- edit re-keys the record first and renames the archive second; if the
  archive rename fails, the record is moved back and the error surfaces
- a crash between the two steps leaves an inconsistency that check() reports
  and check(fix=True) prunes

Security:
- Template name validation (no path traversal)
- Archive extraction with tarfile's data filter
"""

import functools
import logging
import shutil
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from templater.archive import ARCHIVE_SUFFIX, TEMP_SUFFIX, TemplateArchive
from templater.command_runner import CommandRunner, parse_env_overrides, working_directory
from templater.config_manager import TemplaterConfig
from templater.editor import edit_text, resolve_editor
from templater.errors import (
    ArchiveNotFoundError,
    InvalidArgumentError,
    InvalidTemplateDirError,
    TemplateExistsError,
    TemplateNotFoundError,
    TemplaterError,
)
from templater.glob_filter import GlobFilter
from templater.metadata_store import MetadataStore
from templater.models import (
    DefinitionStatus,
    TemplateDefinition,
    TemplateEdit,
    TemplateRecord,
    load_definition,
)
from templater.tree_renderer import render_tree

logger = logging.getLogger(__name__)

__all__ = ["CheckReport", "Inspection", "TemplateManager", "merge_definition"]


def merge_definition(
    source: Path,
    name: str | None,
    description: str | None,
    commands: Sequence[str],
    ignore: Sequence[str],
    definition: TemplateDefinition | None,
) -> TemplateDefinition:
    """Combine explicit Create arguments with an optional definition document.

    An explicit value wins when non-empty, then the definition's value. The
    name finally falls back to the source directory's base name.

    Raises:
        InvalidArgumentError: If no name can be derived
    """
    definition = definition or TemplateDefinition()

    final_name = name or definition.name or source.resolve().name
    if not final_name:
        raise InvalidArgumentError(f"cannot derive a template name from {source}")

    return TemplateDefinition(
        name=final_name,
        description=description or definition.description,
        commands=list(commands) if commands else list(definition.commands),
        ignore=list(ignore) if ignore else list(definition.ignore),
    )


def _require_name(name: str | None, action: str) -> str:
    if not name:
        raise InvalidArgumentError(
            f"You can only {action} for a specific template, please provide --name"
        )
    return name


@dataclass
class Inspection:
    """Result of a list request."""

    records: list[TemplateRecord]
    commands: list[str] | None = None
    tree: list[str] | None = None


@dataclass
class CheckReport:
    """Records without archives and archives without records."""

    missing_archives: list[str] = field(default_factory=list)
    orphan_archives: list[Path] = field(default_factory=list)
    fixed: bool = False

    @property
    def ok(self) -> bool:
        return not self.missing_archives and not self.orphan_archives


class TemplateManager:
    """Create, expand, list, delete and edit templates under one storage root."""

    MAX_NAME_LENGTH = 128
    ARCHIVES_DIRNAME = "archives"
    METADATA_FILENAME = "metadata.db"

    def __init__(self, storage_dir: Path, config: TemplaterConfig | None = None):
        """Open the storage root, creating it if needed.

        Args:
            storage_dir: Directory holding metadata.db and archives/
            config: Settings for compression level and editor
        """
        self.storage_dir = storage_dir
        self.config = config or TemplaterConfig()
        self.archives_dir = storage_dir / self.ARCHIVES_DIRNAME
        try:
            self.archives_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TemplaterError(f"Failed to create storage directory: {e}") from e
        self.store = MetadataStore(storage_dir / self.METADATA_FILENAME)

    def __enter__(self) -> "TemplateManager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self.store.close()

    @classmethod
    def validate_template_name(cls, name: str) -> bool:
        """Validate template name.

        Template names must:
        - Be non-empty and <= MAX_NAME_LENGTH characters
        - Not start with a dot
        - Not contain path separators, ``..`` or control characters

        Args:
            name: Template name to validate

        Returns:
            True if valid, False otherwise
        """
        if not name or len(name) > cls.MAX_NAME_LENGTH:
            return False
        if name.startswith(".") or "/" in name or "\\" in name or ".." in name:
            return False
        return all(ch.isprintable() for ch in name)

    def _require_valid_name(self, name: str) -> None:
        if not self.validate_template_name(name):
            raise InvalidArgumentError(f"Invalid template name: {name!r}")

    def archive_for(self, name: str) -> TemplateArchive:
        return TemplateArchive.for_template(self.archives_dir, name)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(
        self,
        source: Path,
        name: str | None = None,
        description: str | None = None,
        commands: Sequence[str] = (),
        ignore: Sequence[str] = (),
        definition_path: Path | None = None,
        force: bool = False,
    ) -> TemplateRecord:
        """Capture a directory as a template.

        Args:
            source: Directory to capture
            name: Template name (default: definition name, then directory name)
            description: Optional description
            commands: Post-expansion commands
            ignore: Glob patterns excluded from the archive
            definition_path: Optional YAML/JSON definition document
            force: Replace an existing template with the same name

        Returns:
            The stored record

        Raises:
            InvalidTemplateDirError: If source is not a directory
            TemplateExistsError: If the name is taken and force is False
            InvalidPatternError: If an ignore pattern is malformed
            InvalidArgumentError: If the final name is invalid
        """
        if not source.is_dir():
            raise InvalidTemplateDirError(source)

        result = load_definition(definition_path)
        if result.status is DefinitionStatus.INVALID:
            logger.error(f"{result.error}; continuing without definition file")

        config = merge_definition(source, name, description, commands, ignore, result.definition)
        final_name = config.name or ""
        self._require_valid_name(final_name)

        if self.store.contains(final_name) and not force:
            raise TemplateExistsError(final_name)

        path_filter = GlobFilter(config.ignore)

        logger.debug(f"Creating archive file for template: {final_name}")
        archive = self.archive_for(final_name)
        compressed_size = archive.pack(
            source,
            include=path_filter.includes,
            compression_level=self.config.compression_level,
        )

        record = TemplateRecord(
            name=final_name,
            description=config.description,
            commands=config.commands,
            ignore=config.ignore,
            compressed_size=compressed_size,
        )
        self.store.insert(record, overwrite=force)
        logger.debug(f"Finished creating template: {final_name}")
        return record

    # ------------------------------------------------------------------
    # Expand
    # ------------------------------------------------------------------

    def expand(
        self,
        name: str,
        destination: Path | None = None,
        env: Iterable[str] = (),
        create_as: str | None = None,
        no_exec: bool = False,
    ) -> Path:
        """Extract a template into a new directory and run its commands.

        The record's ``used`` timestamp is updated before extraction, so it
        tracks expansion attempts rather than successes.

        Args:
            name: Template name
            destination: Parent directory (default: current directory)
            env: KEY=VALUE overrides for the commands' environment
            create_as: Name of the created directory (default: template name)
            no_exec: Extract only, do not run commands

        Returns:
            Path of the created directory

        Raises:
            TemplateNotFoundError: If the template does not exist
            InvalidTemplateDirError: If the target directory already exists
            ArchiveNotFoundError: If the template's archive is missing
            TemplaterError: If the archive cannot be unpacked; the target
                directory is removed again
            CreateTemplateError: If a command exits non-zero
        """
        env_overrides = parse_env_overrides(env)

        record = self.store.require(name)
        record.mark_used()
        self.store.put(name, record)

        parent = destination if destination is not None else Path.cwd()
        target = (parent / (create_as or name)).absolute()
        if target.exists():
            raise InvalidTemplateDirError(target)

        archive = self.archive_for(name)
        if not archive.exists():
            raise ArchiveNotFoundError(name, archive.path)

        logger.debug(f"Expanding template {name} to {parent}")
        target.mkdir(parents=True)
        logger.debug(f"Creating directory: {target}")
        try:
            archive.unpack(target)
        except TemplaterError:
            # Only the directory created above is removed
            shutil.rmtree(target, ignore_errors=True)
            raise

        if no_exec or not record.commands:
            return target

        with working_directory(target):
            CommandRunner(env_overrides).run(record.commands)
        return target

    # ------------------------------------------------------------------
    # List / inspect
    # ------------------------------------------------------------------

    def list_templates(self, name_filter: str | None = None) -> list[TemplateRecord]:
        """Records whose name contains name_filter, sorted by name."""
        records = self.store.scan()
        if name_filter:
            records = [r for r in records if name_filter in r.name]
        return records

    def list_commands(self, name: str | None) -> list[str]:
        """Commands of exactly one template.

        Raises:
            InvalidArgumentError: If no name is given
            TemplateNotFoundError: If the template does not exist
        """
        name = _require_name(name, "list commands")
        return list(self.store.require(name).commands)

    def file_tree(self, name: str | None) -> list[str]:
        """Rendered file tree of one template's archive, without extracting it.

        Raises:
            InvalidArgumentError: If no name is given
            TemplateNotFoundError: If the template does not exist
            ArchiveNotFoundError: If the archive file is missing
        """
        name = _require_name(name, "display file tree")
        self.store.require(name)
        archive = self.archive_for(name)
        if not archive.exists():
            raise ArchiveNotFoundError(name, archive.path)
        return render_tree(archive.entries())

    def inspect(
        self, name: str | None = None, commands: bool = False, file_tree: bool = False
    ) -> Inspection:
        """Validate a list request up front, then gather everything it asks for."""
        if commands:
            _require_name(name, "list commands")
        if file_tree:
            _require_name(name, "display file tree")

        inspection = Inspection(records=self.list_templates(name))
        if commands:
            inspection.commands = self.list_commands(name)
        if file_tree:
            inspection.tree = self.file_tree(name)
        return inspection

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, name: str) -> TemplateRecord:
        """Delete a template's record, then its archive.

        A missing archive only logs a warning; the record's removal is what
        makes the template deleted.

        Raises:
            TemplateNotFoundError: If the template does not exist
        """
        record = self.store.remove(name)
        if record is None:
            raise TemplateNotFoundError(name)

        archive = self.archive_for(name)
        if archive.remove():
            logger.debug(f"Deleted archive: {archive.path}")
        else:
            logger.warning(f"Archive of template {name} not found")

        logger.debug(f"Deleted template: {name}")
        return record

    # ------------------------------------------------------------------
    # Edit
    # ------------------------------------------------------------------

    def edit(self, name: str, edit_func: Callable[[str], str] | None = None) -> TemplateRecord:
        """Edit a template's name, description and commands.

        Args:
            name: Template name
            edit_func: Receives the YAML document and returns the edited text;
                defaults to opening the user's editor

        Returns:
            The updated record

        Raises:
            TemplateNotFoundError: If the template does not exist
            EditTemplateError: If the editor fails or the result is invalid
            TemplateExistsError: If the new name is already taken
        """
        record = self.store.require(name)

        if edit_func is None:
            edit_func = functools.partial(edit_text, editor=resolve_editor(self.config.editor))

        edited = TemplateEdit.from_yaml(edit_func(TemplateEdit.from_record(record).to_yaml()))
        updated = record.apply_edit(edited)

        if updated.name == name:
            self.store.put(name, updated)
            logger.debug(f"Updated template: {name}")
            return updated

        self._require_valid_name(updated.name)
        self.store.rename(name, updated)

        old_archive = self.archive_for(name)
        new_archive = self.archive_for(updated.name)
        if not old_archive.exists():
            logger.warning(f"Archive of template {name} not found")
        else:
            try:
                old_archive.rename_to(new_archive)
            except OSError as e:
                self.store.rename(updated.name, record)
                raise TemplaterError(
                    f"Failed to rename archive of template {name} to {updated.name}"
                ) from e

        logger.debug(f"Renamed template {name} to {updated.name}")
        return updated

    # ------------------------------------------------------------------
    # Consistency check
    # ------------------------------------------------------------------

    def check(self, fix: bool = False) -> CheckReport:
        """Find records without archives and archives without records.

        Args:
            fix: Remove the dangling records and the stray archive files

        Returns:
            CheckReport describing what was found (and fixed)
        """
        report = CheckReport()
        names = set(self.store.keys())

        for record_name in sorted(names):
            if not self.archive_for(record_name).exists():
                report.missing_archives.append(record_name)

        for path in sorted(self.archives_dir.iterdir()):
            if path.name.endswith(TEMP_SUFFIX):
                report.orphan_archives.append(path)
            elif path.name.endswith(ARCHIVE_SUFFIX):
                if path.name[: -len(ARCHIVE_SUFFIX)] not in names:
                    report.orphan_archives.append(path)

        if fix and not report.ok:
            for record_name in report.missing_archives:
                self.store.remove(record_name)
                logger.info(f"Pruned template without archive: {record_name}")
            for path in report.orphan_archives:
                path.unlink(missing_ok=True)
                logger.info(f"Removed stray archive: {path}")
            report.fixed = True

        return report
