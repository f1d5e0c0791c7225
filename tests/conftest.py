"""
Shared test fixtures and configuration for templater tests.

This module provides common fixtures used across all test types:
- Isolated storage and config locations (never the user's real data dir)
- A sample project directory to capture
- A TemplateManager bound to temporary storage
"""

from pathlib import Path

import pytest

# ============================================================================
# ENVIRONMENT ISOLATION
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Point storage and config at tmp_path and clear editor variables.

    Tests must never read or modify the user's real templates or config.
    """
    monkeypatch.setenv("TEMPLATER_HOME", str(tmp_path / "storage"))
    monkeypatch.setenv("TEMPLATER_CONFIG", str(tmp_path / "config" / "config.toml"))
    monkeypatch.delenv("VISUAL", raising=False)
    monkeypatch.delenv("EDITOR", raising=False)


# ============================================================================
# DIRECTORY FIXTURES
# ============================================================================


@pytest.fixture
def storage_dir(tmp_path):
    """Template storage root (metadata.db + archives/)."""
    return tmp_path / "storage"


@pytest.fixture
def work_dir(tmp_path, monkeypatch):
    """Empty directory used as the current working directory."""
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    return work


@pytest.fixture
def sample_project(tmp_path):
    """Small project tree with sources, docs, build output and a log file.

    Layout:
        sample-project/
            README.md
            notes.LOG
            src/main.py
            target/debug/app.bin
    """
    root = tmp_path / "sample-project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.py").write_text("print('hello')\n")
    (root / "README.md").write_text("# Sample\n")
    (root / "notes.LOG").write_text("debug output\n")
    (root / "target" / "debug").mkdir(parents=True)
    (root / "target" / "debug" / "app.bin").write_bytes(b"\x00\x01\x02")
    return root


@pytest.fixture
def manager(storage_dir):
    """TemplateManager bound to temporary storage."""
    from templater.template_manager import TemplateManager

    with TemplateManager(storage_dir) as m:
        yield m


# ============================================================================
# HELPERS
# ============================================================================


def _snapshot_tree(root: Path) -> dict[str, bytes | None]:
    snapshot: dict[str, bytes | None] = {}
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root).as_posix()
        snapshot[relative] = None if path.is_dir() else path.read_bytes()
    return snapshot


@pytest.fixture
def snapshot_tree():
    """Map each relative path under a root to file bytes (None for directories)."""
    return _snapshot_tree
