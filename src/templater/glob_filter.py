"""Ignore-pattern matching for template capture.

Patterns are shell-style globs compiled case-insensitively and matched
against the full walked path string, not just the basename:

- ``*`` and ``?`` also match ``/``, so ``**/target/**`` excludes a target
  directory's contents at any depth and ``*.log`` excludes log files anywhere
- ``[abc]`` / ``[!abc]`` character classes
- ``{a,b}`` alternation (not nested)
- ``\\`` escapes the next character outside a character class, so ``\\*``
  matches a literal ``*`` and ``\\{`` a literal ``{``. A backslash inside a
  class is an ordinary member of it.

Malformed patterns raise InvalidPatternError at compile time, before any
archive is written.
"""

import fnmatch
import logging
import os
import re
from collections.abc import Iterable
from pathlib import Path

from templater.errors import InvalidPatternError

logger = logging.getLogger(__name__)

__all__ = ["GlobFilter", "compile_pattern"]


def _class_end(pattern: str, start: int) -> int:
    """Return the index of the ``]`` closing the class opened at ``start``, or -1."""
    j = start + 1
    if j < len(pattern) and pattern[j] in "!^":
        j += 1
    if j < len(pattern) and pattern[j] == "]":
        j += 1
    return pattern.find("]", j)


def _literal(char: str) -> str:
    """fnmatch text that matches ``char`` and nothing else."""
    # fnmatch has no escape character; a one-member class is its only literal form
    return f"[{char}]" if char in "*?[" else char


def _read_token(pattern: str, i: int) -> tuple[str, int]:
    """Read an escape, a character class or a plain character at ``i``.

    Returns the fnmatch text for it and the index just past it.
    """
    char = pattern[i]
    if char == "\\":
        if i + 1 == len(pattern):
            raise InvalidPatternError(pattern, "dangling escape at end of pattern")
        return _literal(pattern[i + 1]), i + 2
    if char == "[":
        end = _class_end(pattern, i)
        if end == -1:
            raise InvalidPatternError(pattern, "unclosed character class")
        return pattern[i : end + 1], end + 1
    return char, i + 1


def _read_group(pattern: str, start: int) -> tuple[list[str], int]:
    """Read the ``{a,b}`` group opened at ``start`` into its options."""
    options = [""]
    i = start + 1
    while i < len(pattern):
        char = pattern[i]
        if char == "}":
            return options, i + 1
        if char == "{":
            raise InvalidPatternError(pattern, "nested alternate groups are not allowed")
        if char == ",":
            options.append("")
            i += 1
            continue
        chunk, i = _read_token(pattern, i)
        options[-1] += chunk
    raise InvalidPatternError(pattern, "unclosed alternate group")


def _split_alternation(pattern: str) -> list[str]:
    """Expand the ``{a,b}`` groups and escapes of a pattern into plain globs.

    Raises:
        InvalidPatternError: For unbalanced brackets or braces, or a
            trailing backslash
    """
    alternatives = [""]
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "{":
            options, i = _read_group(pattern, i)
            alternatives = [alt + option for alt in alternatives for option in options]
            continue
        if char == "}":
            raise InvalidPatternError(pattern, "unopened alternate group")
        chunk, i = _read_token(pattern, i)
        alternatives = [alt + chunk for alt in alternatives]
    return alternatives


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile one glob into a case-insensitive regular expression.

    Raises:
        InvalidPatternError: If the pattern is empty or malformed
    """
    if not pattern:
        raise InvalidPatternError(pattern, "empty pattern")

    translated = [fnmatch.translate(alt) for alt in _split_alternation(pattern)]
    try:
        return re.compile("|".join(f"(?:{t})" for t in translated), re.IGNORECASE)
    except re.error as e:
        raise InvalidPatternError(pattern, str(e)) from e


class GlobFilter:
    """Decide per path whether it is excluded from an archive."""

    def __init__(self, patterns: Iterable[str] = ()):
        self.patterns = list(patterns)
        self._matchers = [compile_pattern(p) for p in self.patterns]
        if self.patterns:
            logger.debug(f"Filtering files with ignore patterns: {self.patterns}")

    def __bool__(self) -> bool:
        return bool(self._matchers)

    def is_excluded(self, path: Path | str) -> bool:
        """Return True if any pattern matches the path's string form."""
        text = str(path)
        candidates = [text]
        if os.sep != "/":
            candidates.append(text.replace(os.sep, "/"))
        return any(m.match(c) for m in self._matchers for c in candidates)

    def includes(self, path: Path | str) -> bool:
        return not self.is_excluded(path)
