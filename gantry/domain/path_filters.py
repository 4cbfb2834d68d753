"""Named path filter groups.

Patterns follow the changed-files conventions used by CI workflows:
- ``*`` matches within a single path segment
- ``**`` matches any number of segments (including none)
- ``?`` matches one character other than ``/``
- a pattern without a slash-free wildcard is an exact path
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from gantry.core.models import ChangeSet


@lru_cache(maxsize=512)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a path glob into an anchored regex."""
    parts: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                i += 2
                if i < n and pattern[i] == "/":
                    # "**/" matches zero or more leading directories
                    i += 1
                    parts.append("(?:.*/)?")
                else:
                    parts.append(".*")
                continue
            parts.append("[^/]*")
        elif c == "?":
            parts.append("[^/]")
        else:
            parts.append(re.escape(c))
        i += 1
    return re.compile("^" + "".join(parts) + "$")


def path_matches(path: str, pattern: str) -> bool:
    """Return True if path matches the glob pattern."""
    return glob_to_regex(pattern).match(path) is not None


@dataclass(frozen=True)
class PathFilterGroup:
    """Named set of path glob patterns (e.g. "gpu", "integer")."""

    name: str
    patterns: tuple[str, ...] = field(default_factory=tuple)

    def matches(self, path: str) -> bool:
        return any(path_matches(path, p) for p in self.patterns)

    def matching_paths(self, changes: ChangeSet) -> list[str]:
        return sorted(p for p in changes.paths if self.matches(p))

    def any_changed(self, changes: ChangeSet) -> bool:
        return any(self.matches(p) for p in changes.paths)


def groups_from_mapping(mapping: Mapping[str, Sequence[str]]) -> list[PathFilterGroup]:
    """Build filter groups from a {name: [patterns]} mapping."""
    return [PathFilterGroup(name, tuple(patterns)) for name, patterns in mapping.items()]


def changed_groups(
    groups: Iterable[PathFilterGroup], changes: ChangeSet
) -> dict[str, bool]:
    """Return {group name: any changed} for every group."""
    return {group.name: group.any_changed(changes) for group in groups}
