"""CLI entry point for templater.

Commands:
    templater create PATH          # Capture a directory as a template
    templater expand NAME          # Materialize a template into a new directory
    templater list                 # List templates (optionally commands / file tree)
    templater delete NAME          # Delete a template
    templater edit NAME            # Edit name, description and commands
    templater check                # Find records and archives that lost their pair
    templater config show|set      # Inspect or change configuration
"""

import contextlib
import logging
import sys
from collections.abc import Generator
from datetime import datetime
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from templater import __version__
from templater.config_manager import ConfigManager
from templater.errors import TemplaterError, error_chain
from templater.models import TemplateRecord
from templater.template_manager import TemplateManager

logger = logging.getLogger(__name__)

__all__ = ["format_size", "format_timestamp", "main"]


def format_size(num_bytes: int) -> str:
    """Human-readable size with decimal units, e.g. ``1.50 kB``."""
    if num_bytes < 1000:
        return f"{num_bytes} B"
    size = float(num_bytes)
    for unit in ("kB", "MB", "GB", "TB"):
        size /= 1000
        if size < 1000:
            break
    return f"{size:.2f} {unit}"


def format_timestamp(value: datetime | None) -> str:
    """Local time as ``YYYY-MM-DD HH:MM:SS``; None means never."""
    if value is None:
        return "Never"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _templates_table(records: list[TemplateRecord]) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Compressed Size", justify="right")
    table.add_column("Created At")
    table.add_column("Last Used")
    for record in records:
        table.add_row(
            record.name,
            record.description or "No description",
            format_size(record.compressed_size),
            format_timestamp(record.created),
            format_timestamp(record.used),
        )
    return table


def _print_templates(records: list[TemplateRecord]) -> None:
    if not records:
        click.echo("No templates found")
        return
    Console().print(_templates_table(records))


def _print_commands(commands: list[str]) -> None:
    click.echo("Commands:")
    for command in commands:
        click.echo(command)


@contextlib.contextmanager
def _operation(action: str) -> Generator[None, None, None]:
    """Report any failure of ``action`` with its full cause chain and exit 1."""
    try:
        yield
    except (TemplaterError, OSError) as e:
        lines = [f"Failed to {action}", *error_chain(e)]
        click.echo(f"Error: {lines[0]}", err=True)
        for line in lines[1:]:
            click.echo(f"  Caused by: {line}", err=True)
        logger.debug(f"{action} failed", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nOperation cancelled", err=True)
        sys.exit(130)


def _open_manager(ctx: click.Context) -> TemplateManager:
    options: dict[str, Any] = ctx.obj or {}
    config = ConfigManager.load_config(options.get("config"))
    storage_dir = ConfigManager.get_storage_dir(options.get("storage_dir"), options.get("config"))
    logger.debug(f"Using storage directory: {storage_dir}")
    return TemplateManager(storage_dir, config)


@click.group(context_settings={"help_option_names": ["--help", "-h"]})
@click.option("--verbose", "-v", is_flag=True, help="Show detailed progress")
@click.option(
    "--storage-dir",
    type=click.Path(file_okay=False),
    help="Template storage directory (default: platform data dir)",
)
@click.option("--config", type=click.Path(dir_okay=False), help="Config file path")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, verbose: bool, storage_dir: str | None, config: str | None) -> None:
    """templater - capture directories as reusable project templates.

    \b
    EXAMPLES:
        # Capture the current project, skipping build output
        $ templater create . --name rust-cli -i "**/target/**" -c "git init"

        # Create a new project from it and run its commands
        $ templater expand rust-cli --as my-tool -e AUTHOR=me

        # Inspect templates
        $ templater list
        $ templater list --name rust-cli --commands --file-tree
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")
    ctx.obj = {"storage_dir": storage_dir, "config": config}


@main.command(name="create")
@click.argument("path", type=click.Path(path_type=Path))
@click.option("--name", "-n", help="Template name (default: directory name)")
@click.option("--description", "-d", help="Template description")
@click.option("--command", "-c", "commands", multiple=True, help="Command run after expansion")
@click.option("--ignore", "-i", multiple=True, help="Glob pattern to exclude")
@click.option(
    "--definition",
    "-r",
    type=click.Path(path_type=Path),
    help="YAML/JSON definition file with name, description, commands, ignore",
)
@click.option("--force", "-f", is_flag=True, help="Replace an existing template")
@click.pass_context
def create_command(
    ctx: click.Context,
    path: Path,
    name: str | None,
    description: str | None,
    commands: tuple[str, ...],
    ignore: tuple[str, ...],
    definition: Path | None,
    force: bool,
) -> None:
    """Capture a directory as a template.

    \b
    Examples:
        templater create ./my-project
        templater create . -n web -d "Web starter" -c "npm install" -i "**/node_modules/**"
        templater create . -r template.yaml --force
    """
    with _operation("create template"):
        with _open_manager(ctx) as manager:
            record = manager.create(
                path,
                name=name,
                description=description,
                commands=commands,
                ignore=ignore,
                definition_path=definition,
                force=force,
            )
        click.echo(f"Created template: {record.name}")
        click.echo(f"  Size:     {format_size(record.compressed_size)}")
        if record.commands:
            click.echo(f"  Commands: {len(record.commands)}")


@main.command(name="expand")
@click.argument("name")
@click.option("--path", "-p", type=click.Path(path_type=Path), help="Parent directory")
@click.option("--env", "-e", "envs", multiple=True, help="KEY=VALUE for the commands")
@click.option("--as", "-a", "create_as", help="Name of the created directory")
@click.option("--no-exec", "-n", is_flag=True, help="Do not run the template's commands")
@click.pass_context
def expand_command(
    ctx: click.Context,
    name: str,
    path: Path | None,
    envs: tuple[str, ...],
    create_as: str | None,
    no_exec: bool,
) -> None:
    """Create a new directory from a template.

    \b
    Examples:
        templater expand web
        templater expand web --as shop -p ~/projects -e PORT=8080
        templater expand web --no-exec
    """
    with _operation("expand template"):
        with _open_manager(ctx) as manager:
            target = manager.expand(
                name, destination=path, env=envs, create_as=create_as, no_exec=no_exec
            )
        click.echo(f"Expanded template {name} into: {target}")


@main.command(name="list")
@click.option("--name", "-n", help="Show templates whose name contains this text")
@click.option("--commands", "-c", is_flag=True, help="Show the template's commands")
@click.option("--file-tree", "-t", is_flag=True, help="Show the template's file tree")
@click.pass_context
def list_command(ctx: click.Context, name: str | None, commands: bool, file_tree: bool) -> None:
    """List templates.

    --commands and --file-tree require --name with an exact template name.

    \b
    Examples:
        templater list
        templater list --name web
        templater list --name web --commands --file-tree
    """
    with _operation("list templates"):
        with _open_manager(ctx) as manager:
            inspection = manager.inspect(name, commands=commands, file_tree=file_tree)

        _print_templates(inspection.records)
        if inspection.commands is not None:
            _print_commands(inspection.commands)
        if inspection.tree is not None:
            click.echo("File Tree")
            for line in inspection.tree:
                click.echo(line)


@main.command(name="delete")
@click.argument("name")
@click.pass_context
def delete_command(ctx: click.Context, name: str) -> None:
    """Delete a template and its archive."""
    with _operation("delete template"):
        with _open_manager(ctx) as manager:
            manager.delete(name)
        click.echo(f"Deleted template: {name}")


@main.command(name="edit")
@click.argument("name")
@click.pass_context
def edit_command(ctx: click.Context, name: str) -> None:
    """Edit a template's name, description and commands in $EDITOR."""
    with _operation("edit template"):
        with _open_manager(ctx) as manager:
            record = manager.edit(name)
        _print_templates([record])
        _print_commands(record.commands)


@main.command(name="check")
@click.option("--fix", is_flag=True, help="Prune records without archives and stray archives")
@click.pass_context
def check_command(ctx: click.Context, fix: bool) -> None:
    """Check that every template has its archive and vice versa."""
    with _operation("check templates"):
        with _open_manager(ctx) as manager:
            report = manager.check(fix=fix)

    if report.ok:
        click.echo("All templates are consistent")
        return

    for record_name in report.missing_archives:
        click.echo(f"Template without archive: {record_name}")
    for path in report.orphan_archives:
        click.echo(f"Archive without template: {path}")
    if not report.fixed:
        click.echo("\nRun 'templater check --fix' to clean up")
        sys.exit(1)


@main.group(name="config")
def config_group() -> None:
    """Show or change templater configuration."""


@config_group.command(name="show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show the effective configuration."""
    options = ctx.obj or {}
    with _operation("load config"):
        config = ConfigManager.load_config(options.get("config"))
        storage_dir = ConfigManager.get_storage_dir(
            options.get("storage_dir"), options.get("config")
        )
    click.echo(f"Config file:       {ConfigManager.get_config_path(options.get('config'))}")
    click.echo(f"Storage directory: {storage_dir}")
    click.echo(f"Editor:            {config.editor or '(from $VISUAL / $EDITOR)'}")
    click.echo(f"Compression level: {config.compression_level}")


@config_group.command(name="set")
@click.argument("key", type=click.Choice(ConfigManager.KEYS))
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set a configuration value.

    \b
    Examples:
        templater config set editor "code --wait"
        templater config set compression_level 9
    """
    options = ctx.obj or {}
    converted: Any = value
    if key == "compression_level":
        try:
            converted = int(value)
        except ValueError:
            raise click.BadParameter("must be an integer 0-9", param_hint="VALUE") from None

    with _operation("save config"):
        ConfigManager.update_config(options.get("config"), **{key: converted})
    click.echo(f"Set {key} = {converted}")


if __name__ == "__main__":
    main()
