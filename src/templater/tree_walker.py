"""Deterministic directory traversal.

walk_tree yields the root first, then every descendant depth-first with each
directory's entries sorted by name, so two captures of the same tree produce
archives with the same entry order.
"""

import logging
import os
from collections.abc import Iterator
from pathlib import Path

logger = logging.getLogger(__name__)

__all__ = ["walk_tree"]


def _sorted_children(directory: Path) -> list[os.DirEntry[str]]:
    try:
        with os.scandir(directory) as it:
            return sorted(it, key=lambda entry: entry.name)
    except OSError as e:
        logger.warning(f"Skipping unreadable directory {directory}: {e}")
        return []


def walk_tree(root: Path) -> Iterator[Path]:
    """Walk a directory tree in pre-order.

    Symlinked directories are yielded but not descended into.

    Args:
        root: Directory to walk; yielded paths are ``root`` joined with
            the relative path, so they keep root's absolute/relative form

    Yields:
        Paths in traversal order, starting with ``root`` itself
    """
    yield root
    stack: list[Iterator[os.DirEntry[str]]] = [iter(_sorted_children(root))]
    while stack:
        entry = next(stack[-1], None)
        if entry is None:
            stack.pop()
            continue
        path = Path(entry.path)
        yield path
        try:
            descend = entry.is_dir(follow_symlinks=False)
        except OSError:
            descend = False
        if descend:
            stack.append(iter(_sorted_children(path)))
