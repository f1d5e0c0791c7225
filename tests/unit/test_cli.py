"""
Unit tests for the templater CLI.

Commands are invoked through click's CliRunner against a temporary storage
directory. Post-expansion commands and the editor are mocked.

Test Coverage:
- create / expand / list / delete / edit / check / config
- Error reporting with the cause chain and exit codes
- Size and timestamp formatting
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from templater import __version__
from templater.cli import format_size, format_timestamp, main
from templater.errors import CreateTemplateError


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def invoke(runner, storage_dir):
    """Invoke the CLI with --storage-dir pointing at temporary storage."""

    def _invoke(*args, **kwargs):
        return runner.invoke(main, ["--storage-dir", str(storage_dir), *args], **kwargs)

    return _invoke


# ============================================================================
# FORMATTING TESTS
# ============================================================================


class TestFormatting:
    """Test human-readable output helpers."""

    @pytest.mark.parametrize(
        "num_bytes,expected",
        [
            (0, "0 B"),
            (999, "999 B"),
            (1000, "1.00 kB"),
            (1536, "1.54 kB"),
            (2_500_000, "2.50 MB"),
            (3_000_000_000, "3.00 GB"),
        ],
    )
    def test_format_size(self, num_bytes, expected):
        assert format_size(num_bytes) == expected

    def test_format_timestamp_never(self):
        assert format_timestamp(None) == "Never"

    def test_format_timestamp_local(self):
        value = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert format_timestamp(value) == value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


# ============================================================================
# GLOBAL OPTION TESTS
# ============================================================================


class TestMain:
    """Test the command group itself."""

    def test_help(self, runner):
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        for command in ["create", "expand", "list", "delete", "edit", "check", "config"]:
            assert command in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_storage_dir_from_environment(self, runner, storage_dir, sample_project):
        result = runner.invoke(main, ["create", str(sample_project), "--name", "web"])

        assert result.exit_code == 0
        assert (storage_dir / "archives" / "web.tar.gz").exists()


# ============================================================================
# CREATE / LIST TESTS
# ============================================================================


class TestCreateCommand:
    """Test templater create."""

    def test_create(self, invoke, sample_project):
        result = invoke("create", str(sample_project), "-n", "web", "-c", "git init", "-c", "make")

        assert result.exit_code == 0
        assert "Created template: web" in result.output
        assert "Commands: 2" in result.output

    def test_create_duplicate_fails(self, invoke, sample_project):
        invoke("create", str(sample_project), "-n", "web")

        result = invoke("create", str(sample_project), "-n", "web")

        assert result.exit_code == 1
        assert "Error: Failed to create template" in result.output
        assert "Caused by: Template web already exists" in result.output

    def test_create_force(self, invoke, sample_project):
        invoke("create", str(sample_project), "-n", "web")

        result = invoke("create", str(sample_project), "-n", "web", "--force")

        assert result.exit_code == 0

    def test_create_missing_directory(self, invoke, tmp_path):
        result = invoke("create", str(tmp_path / "missing"))

        assert result.exit_code == 1
        assert "Invalid template directory" in result.output

    def test_create_bad_pattern(self, invoke, sample_project):
        result = invoke("create", str(sample_project), "-n", "web", "-i", "{oops")

        assert result.exit_code == 1
        assert "Failed to build glob pattern" in result.output


class TestListCommand:
    """Test templater list."""

    def test_list_empty(self, invoke):
        result = invoke("list")

        assert result.exit_code == 0
        assert "No templates found" in result.output

    def test_list_table(self, invoke, sample_project):
        invoke("create", str(sample_project), "-n", "web", "-d", "Web starter")
        invoke("create", str(sample_project), "-n", "cli")

        result = invoke("list")

        assert result.exit_code == 0
        assert "web" in result.output
        assert "Web starter" in result.output
        assert "No description" in result.output
        assert "Never" in result.output

    def test_list_commands_and_tree(self, invoke, sample_project):
        invoke("create", str(sample_project), "-n", "web", "-c", "git init")

        result = invoke("list", "--name", "web", "--commands", "--file-tree")

        assert result.exit_code == 0
        assert "Commands:\ngit init\n" in result.output
        assert "File Tree\n.\n├── README.md\n" in result.output
        assert "        └── app.bin" in result.output

    def test_commands_require_name(self, invoke):
        result = invoke("list", "--commands")

        assert result.exit_code == 1
        assert "please provide --name" in result.output

    def test_unreadable_metadata_database(self, invoke, storage_dir):
        storage_dir.mkdir(parents=True, exist_ok=True)
        (storage_dir / "metadata.db").write_bytes(b"this is not sqlite\x00" * 256)

        result = invoke("list")

        assert result.exit_code == 1
        assert "Error: Failed to list templates" in result.output
        assert "Caused by:" in result.output
        assert "metadata.db" in result.output


# ============================================================================
# EXPAND / DELETE TESTS
# ============================================================================


class TestExpandCommand:
    """Test templater expand."""

    def test_expand(self, invoke, sample_project, tmp_path):
        invoke("create", str(sample_project), "-n", "web")
        parent = tmp_path / "projects"

        result = invoke("expand", "web", "--path", str(parent), "--as", "shop")

        assert result.exit_code == 0
        assert "Expanded template web into:" in result.output
        assert (parent / "shop" / "README.md").exists()

    @patch("templater.template_manager.CommandRunner")
    def test_expand_passes_env(self, mock_runner_cls, invoke, sample_project, tmp_path):
        invoke("create", str(sample_project), "-n", "web", "-c", "make")

        result = invoke(
            "expand", "web", "-p", str(tmp_path), "-e", "A=1", "-e", "B=x=y", "-e", "FLAG"
        )

        assert result.exit_code == 0
        mock_runner_cls.assert_called_once_with({"A": "1", "B": "x=y", "FLAG": ""})

    @patch("templater.template_manager.CommandRunner")
    def test_expand_no_exec(self, mock_runner_cls, invoke, sample_project, tmp_path):
        invoke("create", str(sample_project), "-n", "web", "-c", "make")

        result = invoke("expand", "web", "-p", str(tmp_path), "--no-exec")

        assert result.exit_code == 0
        mock_runner_cls.assert_not_called()

    @patch("templater.template_manager.CommandRunner")
    def test_failed_command_reports_cause(self, mock_runner_cls, invoke, sample_project, tmp_path):
        invoke("create", str(sample_project), "-n", "web", "-c", "false")
        mock_runner_cls.return_value.run.side_effect = CreateTemplateError("false")

        result = invoke("expand", "web", "-p", str(tmp_path))

        assert result.exit_code == 1
        assert "Error: Failed to expand template" in result.output
        assert "Caused by: Command failed: false" in result.output

    def test_truncated_archive_reports_cause(self, invoke, sample_project, storage_dir, tmp_path):
        invoke("create", str(sample_project), "-n", "web")
        archive = storage_dir / "archives" / "web.tar.gz"
        data = archive.read_bytes()
        archive.write_bytes(data[: len(data) // 2])
        parent = tmp_path / "projects"

        result = invoke("expand", "web", "-p", str(parent))

        assert result.exit_code == 1
        assert "Error: Failed to expand template" in result.output
        assert "Caused by: Failed to unpack archive" in result.output
        assert not (parent / "web").exists()

    def test_expand_unknown(self, invoke, tmp_path):
        result = invoke("expand", "ghost", "-p", str(tmp_path))

        assert result.exit_code == 1
        assert "Template not found: ghost" in result.output


class TestDeleteCommand:
    """Test templater delete."""

    def test_delete(self, invoke, sample_project, storage_dir):
        invoke("create", str(sample_project), "-n", "web")

        result = invoke("delete", "web")

        assert result.exit_code == 0
        assert "Deleted template: web" in result.output
        assert not (storage_dir / "archives" / "web.tar.gz").exists()

    def test_delete_unknown(self, invoke):
        result = invoke("delete", "ghost")

        assert result.exit_code == 1
        assert "Template not found: ghost" in result.output


# ============================================================================
# EDIT / CHECK TESTS
# ============================================================================


class TestEditCommand:
    """Test templater edit with a mocked editor."""

    def test_edit_rename(self, invoke, sample_project):
        invoke("create", str(sample_project), "-n", "web")

        with patch(
            "templater.template_manager.edit_text",
            side_effect=lambda text, editor: text.replace("name: web", "name: site"),
        ):
            result = invoke("edit", "web")

        assert result.exit_code == 0
        assert "site" in result.output
        assert "Commands:" in result.output
        assert "Template not found: web" in invoke("list", "--name", "web", "-c").output

    def test_edit_invalid_document(self, invoke, sample_project):
        invoke("create", str(sample_project), "-n", "web")

        with patch(
            "templater.template_manager.edit_text", side_effect=lambda text, editor: "- nope\n"
        ):
            result = invoke("edit", "web")

        assert result.exit_code == 1
        assert "Failed to edit template" in result.output


class TestCheckCommand:
    """Test templater check."""

    def test_check_clean(self, invoke, sample_project):
        invoke("create", str(sample_project), "-n", "web")

        result = invoke("check")

        assert result.exit_code == 0
        assert "All templates are consistent" in result.output

    def test_check_reports_and_fixes(self, invoke, sample_project, storage_dir):
        invoke("create", str(sample_project), "-n", "web")
        (storage_dir / "archives" / "web.tar.gz").unlink()

        result = invoke("check")

        assert result.exit_code == 1
        assert "Template without archive: web" in result.output
        assert "check --fix" in result.output

        fixed = invoke("check", "--fix")
        assert fixed.exit_code == 0
        assert invoke("check").exit_code == 0


# ============================================================================
# CONFIG TESTS
# ============================================================================


class TestConfigCommand:
    """Test templater config."""

    def test_show_defaults(self, runner, storage_dir):
        result = runner.invoke(main, ["config", "show"])

        assert result.exit_code == 0
        assert str(storage_dir) in result.output
        assert "Compression level: 6" in result.output

    def test_set_and_show(self, runner):
        result = runner.invoke(main, ["config", "set", "compression_level", "9"])
        assert result.exit_code == 0
        assert "Set compression_level = 9" in result.output

        shown = runner.invoke(main, ["config", "show"])
        assert "Compression level: 9" in shown.output

    def test_set_editor(self, runner):
        runner.invoke(main, ["config", "set", "editor", "code --wait"])

        shown = runner.invoke(main, ["config", "show"])

        assert "code --wait" in shown.output

    def test_set_non_integer_level(self, runner):
        result = runner.invoke(main, ["config", "set", "compression_level", "high"])

        assert result.exit_code == 2
        assert "must be an integer" in result.output

    def test_set_out_of_range_level(self, runner):
        result = runner.invoke(main, ["config", "set", "compression_level", "12"])

        assert result.exit_code == 1
        assert "Failed to save config" in result.output

    def test_set_unknown_key(self, runner):
        result = runner.invoke(main, ["config", "set", "colour", "blue"])
        assert result.exit_code == 2
