"""Inclusion rules deciding which paths take part in a sync."""

from __future__ import annotations

import os
from pathlib import PurePath
from typing import Iterable, Union

from pathspec import PathSpec

GLOB_CHARS = frozenset("*?[")

PathLike = Union[str, os.PathLike]


def is_glob_pattern(pattern: str) -> bool:
    return any(c in GLOB_CHARS for c in pattern)


class InclusionFilter:
    """Allow-list of substring patterns.

    An empty pattern set includes everything. Otherwise a path is included
    when any pattern is a substring of its base name. With ``match_dirs``
    the pattern may also be a substring of the containing directory's path,
    which is how a single subfolder is selected for syncing.

    Patterns holding glob characters are also tried as gitignore-style
    wildcards, so ``*.jpg`` selects JPEG files rather than only names that
    literally contain an asterisk.
    """

    def __init__(self, patterns: Iterable[str] = (), match_dirs: bool = False):
        self.patterns = tuple(patterns)
        self.match_dirs = match_dirs
        globs = [p for p in self.patterns if is_glob_pattern(p)]
        self.spec = PathSpec.from_lines("gitwildmatch", globs) if globs else None

    def __bool__(self) -> bool:
        return bool(self.patterns)

    def included(self, path: PathLike) -> bool:
        if not self.patterns:
            return True

        p = PurePath(path)
        name = p.name
        parent = None
        if self.match_dirs:
            parent = "" if str(p.parent) == "." else str(p.parent)

        for pattern in self.patterns:
            if pattern in name:
                return True
            if parent is not None and pattern in parent:
                return True

        if self.spec is None:
            return False
        if self.spec.match_file(name):
            return True
        return self.match_dirs and self.spec.match_file(p.as_posix())


def included(path: PathLike, patterns: Iterable[str], match_dirs: bool = False) -> bool:
    return InclusionFilter(patterns, match_dirs=match_dirs).included(path)
