"""Template metadata storage with SQLite.

Records are kept in a single key/value table keyed by template name, with the
record serialized as JSON. Each public operation runs in its own transaction,
so single-key inserts, removals and renames are atomic even when several
templater processes share the same store.

Any SQLite failure (corrupted file, locked database, disk error) surfaces as
TemplaterError naming the database path.

Schema:
    templates(name TEXT PRIMARY KEY, record TEXT NOT NULL)
"""

import contextlib
import json
import logging
import sqlite3
from collections.abc import Generator
from pathlib import Path

from templater.errors import TemplateExistsError, TemplateNotFoundError, TemplaterError
from templater.models import TemplateRecord

logger = logging.getLogger(__name__)

__all__ = ["MetadataStore"]


class MetadataStore:
    """Durable mapping from template name to TemplateRecord."""

    def __init__(self, db_path: Path, timeout: float = 5.0):
        """Open (and create if needed) the metadata database.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait for a lock held by another process

        Raises:
            TemplaterError: If the database cannot be opened or is not a
                templater database
        """
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self.conn = sqlite3.connect(str(db_path), timeout=timeout)
        except sqlite3.Error as e:
            raise TemplaterError(f"Failed to open database {db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row

        try:
            self._create_schema()
        except TemplaterError:
            self.conn.close()
            raise

    @contextlib.contextmanager
    def _database_errors(self, action: str) -> Generator[None, None, None]:
        """Translate sqlite3 failures during ``action`` into TemplaterError."""
        try:
            yield
        except sqlite3.Error as e:
            raise TemplaterError(f"Failed to {action} in database {self.db_path}: {e}") from e

    def _create_schema(self) -> None:
        with self._database_errors("create schema"), self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS templates (
                    name TEXT PRIMARY KEY,
                    record TEXT NOT NULL
                )
                """
            )

    def __enter__(self) -> "MetadataStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()

    @staticmethod
    def _decode(row: sqlite3.Row) -> TemplateRecord:
        try:
            data = json.loads(row["record"])
        except json.JSONDecodeError as e:
            raise TemplaterError(f"Corrupted template record '{row['name']}': {e}") from e
        return TemplateRecord.from_dict(data)

    @staticmethod
    def _encode(record: TemplateRecord) -> str:
        return json.dumps(record.to_dict())

    def get(self, name: str) -> TemplateRecord | None:
        with self._database_errors(f"read template {name}"):
            row = self.conn.execute(
                "SELECT name, record FROM templates WHERE name = ?", (name,)
            ).fetchone()
        return self._decode(row) if row else None

    def require(self, name: str) -> TemplateRecord:
        """Like get(), but a missing key raises TemplateNotFoundError."""
        record = self.get(name)
        if record is None:
            raise TemplateNotFoundError(name)
        return record

    def contains(self, name: str) -> bool:
        with self._database_errors(f"look up template {name}"):
            row = self.conn.execute(
                "SELECT 1 FROM templates WHERE name = ?", (name,)
            ).fetchone()
        return row is not None

    def insert(self, record: TemplateRecord, overwrite: bool = False) -> None:
        """Store a record under its own name.

        Raises:
            TemplateExistsError: If the name is taken and overwrite is False
        """
        sql = "INSERT OR REPLACE" if overwrite else "INSERT"
        with self._database_errors(f"store template {record.name}"):
            try:
                with self.conn:
                    self.conn.execute(
                        f"{sql} INTO templates (name, record) VALUES (?, ?)",
                        (record.name, self._encode(record)),
                    )
            except sqlite3.IntegrityError as e:
                raise TemplateExistsError(record.name) from e
        logger.debug(f"Stored metadata for template: {record.name}")

    def put(self, key: str, record: TemplateRecord) -> None:
        """Insert or replace the record stored under ``key``."""
        with self._database_errors(f"store template {key}"), self.conn:
            self.conn.execute(
                "INSERT OR REPLACE INTO templates (name, record) VALUES (?, ?)",
                (key, self._encode(record)),
            )

    def remove(self, name: str) -> TemplateRecord | None:
        """Delete a record and return it, or None if it was absent."""
        with self._database_errors(f"remove template {name}"), self.conn:
            row = self.conn.execute(
                "SELECT name, record FROM templates WHERE name = ?", (name,)
            ).fetchone()
            if row is None:
                return None
            self.conn.execute("DELETE FROM templates WHERE name = ?", (name,))
        logger.debug(f"Deleted template metadata: {name}")
        return self._decode(row)

    def rename(self, old_name: str, record: TemplateRecord) -> None:
        """Move the record stored under ``old_name`` to ``record.name``.

        Both the key change and the new record contents are written in one
        transaction.

        Raises:
            TemplateNotFoundError: If old_name is absent
            TemplateExistsError: If record.name is already taken
        """
        with self._database_errors(f"rename template {old_name}"):
            try:
                with self.conn:
                    cursor = self.conn.execute(
                        "DELETE FROM templates WHERE name = ?", (old_name,)
                    )
                    if cursor.rowcount == 0:
                        raise TemplateNotFoundError(old_name)
                    self.conn.execute(
                        "INSERT INTO templates (name, record) VALUES (?, ?)",
                        (record.name, self._encode(record)),
                    )
            except sqlite3.IntegrityError as e:
                raise TemplateExistsError(record.name) from e
        logger.debug(f"Renamed template metadata {old_name} to {record.name}")

    def scan(self) -> list[TemplateRecord]:
        """All records ordered by name."""
        with self._database_errors("list templates"):
            rows = self.conn.execute(
                "SELECT name, record FROM templates ORDER BY name"
            ).fetchall()
        return [self._decode(row) for row in rows]

    def keys(self) -> list[str]:
        with self._database_errors("list template names"):
            rows = self.conn.execute("SELECT name FROM templates ORDER BY name").fetchall()
        return [row["name"] for row in rows]
