"""
Unit tests for the SQLite metadata store.

Test Coverage:
- Insert / get / require / contains
- Overwrite semantics
- Remove returns the removed record
- Atomic rename between keys
- Ordered scan
- Corrupted rows
- SQLite failures wrapped as TemplaterError
"""

import sqlite3
from datetime import datetime, timezone

import pytest

from templater.errors import TemplateExistsError, TemplateNotFoundError, TemplaterError
from templater.metadata_store import MetadataStore
from templater.models import TemplateRecord


@pytest.fixture
def store(tmp_path):
    with MetadataStore(tmp_path / "metadata.db") as s:
        yield s


def make_record(name: str, **overrides) -> TemplateRecord:
    defaults = {
        "description": f"{name} template",
        "commands": ["git init"],
        "ignore": ["*.log"],
        "compressed_size": 1234,
        "created": datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    }
    defaults.update(overrides)
    return TemplateRecord(name=name, **defaults)


# ============================================================================
# INSERT / READ TESTS
# ============================================================================


class TestInsertAndGet:
    """Test storing and reading records."""

    def test_get_missing_returns_none(self, store):
        assert store.get("missing") is None

    def test_insert_then_get(self, store):
        record = make_record("web")
        store.insert(record)

        assert store.get("web") == record
        assert store.contains("web")

    def test_insert_duplicate_raises(self, store):
        store.insert(make_record("web"))

        with pytest.raises(TemplateExistsError, match="Template web already exists"):
            store.insert(make_record("web", description="other"))

        assert store.get("web").description == "web template"

    def test_insert_with_overwrite_replaces(self, store):
        store.insert(make_record("web"))
        store.insert(make_record("web", description="replaced"), overwrite=True)

        assert store.get("web").description == "replaced"

    def test_require_missing_raises(self, store):
        with pytest.raises(TemplateNotFoundError, match="Template not found: ghost"):
            store.require("ghost")

    def test_put_upserts(self, store):
        record = make_record("web")
        store.put("web", record)
        record.mark_used(datetime(2024, 6, 1, tzinfo=timezone.utc))
        store.put("web", record)

        assert store.get("web").used == datetime(2024, 6, 1, tzinfo=timezone.utc)

    def test_records_persist_across_connections(self, tmp_path):
        db_path = tmp_path / "metadata.db"
        with MetadataStore(db_path) as first:
            first.insert(make_record("web"))

        with MetadataStore(db_path) as second:
            assert second.contains("web")

    def test_creates_parent_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "metadata.db"
        with MetadataStore(db_path):
            pass
        assert db_path.exists()


# ============================================================================
# REMOVE / RENAME TESTS
# ============================================================================


class TestRemoveAndRename:
    """Test removing and re-keying records."""

    def test_remove_returns_record(self, store):
        record = make_record("web")
        store.insert(record)

        assert store.remove("web") == record
        assert not store.contains("web")

    def test_remove_missing_returns_none(self, store):
        assert store.remove("missing") is None

    def test_rename_moves_record(self, store):
        store.insert(make_record("old"))

        store.rename("old", make_record("new", description="renamed"))

        assert not store.contains("old")
        assert store.get("new").description == "renamed"

    def test_rename_missing_source_raises(self, store):
        with pytest.raises(TemplateNotFoundError):
            store.rename("old", make_record("new"))
        assert not store.contains("new")

    def test_rename_onto_existing_rolls_back(self, store):
        store.insert(make_record("old"))
        store.insert(make_record("taken"))

        with pytest.raises(TemplateExistsError):
            store.rename("old", make_record("taken", description="clobber"))

        assert store.contains("old")
        assert store.get("taken").description == "taken template"


# ============================================================================
# SCAN TESTS
# ============================================================================


class TestScan:
    """Test listing all records."""

    def test_scan_empty(self, store):
        assert store.scan() == []
        assert store.keys() == []

    def test_scan_ordered_by_name(self, store):
        for name in ["zeta", "alpha", "mid"]:
            store.insert(make_record(name))

        assert [r.name for r in store.scan()] == ["alpha", "mid", "zeta"]
        assert store.keys() == ["alpha", "mid", "zeta"]

    def test_corrupted_row_raises(self, store):
        with store.conn:
            store.conn.execute(
                "INSERT INTO templates (name, record) VALUES (?, ?)", ("bad", "{not json")
            )

        with pytest.raises(TemplaterError, match="Corrupted template record"):
            store.get("bad")


# ============================================================================
# DATABASE FAILURE TESTS
# ============================================================================


class TestDatabaseErrors:
    """SQLite failures surface as TemplaterError."""

    def test_not_a_database_file(self, tmp_path):
        db_path = tmp_path / "metadata.db"
        db_path.write_bytes(b"garbage bytes, not sqlite\x00" * 200)

        with pytest.raises(TemplaterError, match="metadata.db") as exc_info:
            MetadataStore(db_path)

        assert isinstance(exc_info.value.__cause__, sqlite3.DatabaseError)

    def test_query_failure_is_wrapped(self, store):
        with store.conn:
            store.conn.execute("DROP TABLE templates")

        with pytest.raises(TemplaterError, match="Failed to list templates"):
            store.scan()
        with pytest.raises(TemplaterError, match="Failed to read template web"):
            store.get("web")
