"""Template archive codec.

Each template's files live in one gzip-compressed tar file. Entries are
stored relative to the captured directory: the root as ``.`` and everything
else as ``./<relative path>``, in walk order.

Writes are atomic: the archive is built in a temporary sibling file, fsynced,
and renamed over the final path, so a failed capture never leaves a truncated
archive under a template's name.

Public API:
    TemplateArchive: Pack, unpack and list one template archive
"""

import logging
import os
import tarfile
import zlib
from collections.abc import Callable
from pathlib import Path, PurePosixPath

from templater.errors import TemplaterError
from templater.tree_renderer import TreeEntry
from templater.tree_walker import walk_tree

logger = logging.getLogger(__name__)

__all__ = ["ARCHIVE_SUFFIX", "TEMP_SUFFIX", "TemplateArchive"]

ARCHIVE_SUFFIX = ".tar.gz"
TEMP_SUFFIX = ".tmp"
DEFAULT_COMPRESSION_LEVEL = 6


def _arcname(relative: Path) -> str:
    if not relative.parts:
        return "."
    return "./" + relative.as_posix()


class TemplateArchive:
    """A template's compressed archive file."""

    def __init__(self, path: Path):
        self.path = path

    @classmethod
    def for_template(cls, archives_dir: Path, name: str) -> "TemplateArchive":
        """Archive location derived from the template name."""
        return cls(archives_dir / f"{name}{ARCHIVE_SUFFIX}")

    @property
    def temp_path(self) -> Path:
        return self.path.with_name(self.path.name + TEMP_SUFFIX)

    def exists(self) -> bool:
        return self.path.is_file()

    def size(self) -> int:
        return self.path.stat().st_size

    def pack(
        self,
        source: Path,
        include: Callable[[Path], bool] = lambda _path: True,
        compression_level: int = DEFAULT_COMPRESSION_LEVEL,
    ) -> int:
        """Capture a directory into this archive.

        Args:
            source: Directory to capture
            include: Predicate deciding per walked path whether it is stored
            compression_level: gzip level, 0-9

        Returns:
            Size of the finished archive in bytes

        Raises:
            OSError: If reading the source or writing the archive fails
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.temp_path
        logger.debug(f"Creating archive file: {temp_path}")

        try:
            with open(temp_path, "wb") as raw:
                with tarfile.open(
                    fileobj=raw, mode="w:gz", compresslevel=compression_level
                ) as tar:
                    for path in walk_tree(source):
                        if not include(path):
                            continue
                        self._add_path(tar, path, _arcname(path.relative_to(source)))
                raw.flush()
                os.fsync(raw.fileno())
            temp_path.replace(self.path)
        except Exception:
            # Never leave a partial archive behind
            if temp_path.exists():
                temp_path.unlink()
            raise

        logger.debug(f"Finished creating archive: {self.path}")
        return self.size()

    @staticmethod
    def _add_path(tar: tarfile.TarFile, path: Path, arcname: str) -> None:
        logger.debug(f"Adding path to archive: {arcname}")
        try:
            stat = path.stat()
        except FileNotFoundError:
            logger.warning(f"Skipping broken symlink: {path}")
            return

        if path.is_dir():
            info = tarfile.TarInfo(arcname)
            info.type = tarfile.DIRTYPE
            info.mode = stat.st_mode & 0o7777
            info.mtime = int(stat.st_mtime)
            tar.addfile(info)
            return

        with open(path, "rb") as f:
            info = tar.gettarinfo(arcname=arcname, fileobj=f)
            tar.addfile(info, f)

    def unpack(self, destination: Path) -> None:
        """Extract every entry into an existing directory.

        Uses tarfile's ``data`` filter, which rejects absolute paths and
        links that would land outside the destination.

        Raises:
            TemplaterError: If the archive is corrupted, truncated or holds unsafe
                entries
        """
        try:
            with tarfile.open(self.path, "r:gz") as tar:
                tar.extractall(destination, filter="data")
        except (tarfile.TarError, EOFError, zlib.error) as e:
            raise TemplaterError(f"Failed to unpack archive {self.path}: {e}") from e
        logger.debug(f"Unpacked archive: {self.path}")

    def entries(self) -> list[TreeEntry]:
        """List entries in stored order without extracting any content."""
        try:
            with tarfile.open(self.path, "r:gz") as tar:
                return [
                    TreeEntry(member.name, len(PurePosixPath(member.name).parts), member.isdir())
                    for member in tar.getmembers()
                ]
        except (tarfile.TarError, EOFError, zlib.error) as e:
            raise TemplaterError(f"Failed to read archive {self.path}: {e}") from e

    def remove(self) -> bool:
        """Delete the archive file; returns False if it did not exist."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True

    def rename_to(self, other: "TemplateArchive") -> None:
        """Move this archive to another template's location."""
        self.path.replace(other.path)
        logger.debug(f"Renamed archive {self.path} to {other.path}")
