"""Box-drawing tree rendering from a flat, ordered entry list.

The renderer only needs entries in traversal order annotated with depth; it
never builds a tree structure. Entries can come from an archive's headers or
from a live directory walk.

Example:
    >>> lines = render_tree([
    ...     TreeEntry("root", 0), TreeEntry("root/a", 1),
    ...     TreeEntry("root/a/b.txt", 2), TreeEntry("root/c.txt", 1),
    ... ])
    >>> print("\\n".join(lines))
    root
    ├── a
    │   └── b.txt
    └── c.txt
"""

from collections.abc import Sequence
from pathlib import Path, PurePosixPath
from typing import NamedTuple

from templater.tree_walker import walk_tree

__all__ = ["BRANCH", "LAST_BRANCH", "TreeEntry", "render_directory_tree", "render_tree"]

BRANCH = "├── "
LAST_BRANCH = "└── "
VERTICAL = "│   "
BLANK = "    "


class TreeEntry(NamedTuple):
    """One archive or directory entry in traversal order."""

    path: str
    depth: int
    is_dir: bool = False

    @property
    def display_name(self) -> str:
        return PurePosixPath(self.path).name or self.path


def _last_sibling_flags(entries: Sequence[TreeEntry]) -> list[bool]:
    """Flag entries with no later sibling before their branch closes."""
    flags = [True] * len(entries)
    pending: set[int] = set()
    for i in range(len(entries) - 1, -1, -1):
        depth = entries[i].depth
        flags[i] = depth not in pending
        pending = {d for d in pending if d < depth}
        pending.add(depth)
    return flags


def render_tree(entries: Sequence[TreeEntry]) -> list[str]:
    """Render entries as tree lines.

    The first entry is the root and is printed bare. An entry followed by a
    deeper entry is treated as a directory even when is_dir is False.
    """
    if not entries:
        return []

    last_flags = _last_sibling_flags(entries)
    lines = [entries[0].display_name]
    stack: list[tuple[str, int]] = [("", entries[0].depth)]

    for i in range(1, len(entries)):
        entry = entries[i]
        while stack and stack[-1][1] >= entry.depth:
            stack.pop()
        prefix = stack[-1][0] if stack else ""
        is_last = last_flags[i]

        lines.append(f"{prefix}{LAST_BRANCH if is_last else BRANCH}{entry.display_name}")

        has_children = i + 1 < len(entries) and entries[i + 1].depth > entry.depth
        if entry.is_dir or has_children:
            stack.append((prefix + (BLANK if is_last else VERTICAL), entry.depth))

    return lines


def render_directory_tree(root: Path) -> list[str]:
    """Render a live directory using the same algorithm as archive trees."""
    entries = []
    for path in walk_tree(root):
        relative = path.relative_to(root)
        depth = len(relative.parts)
        name = root.name if depth == 0 else relative.as_posix()
        entries.append(TreeEntry(name or str(root), depth, path.is_dir()))
    return render_tree(entries)
