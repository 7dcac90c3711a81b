"""Include/exclude pattern matching for monitored paths."""

import fnmatch
import re
from typing import Callable, List, Optional

REGEXP_PREFIX = "regexp:"
REGEXP_IGNORE_CASE_PREFIX = "regexpIgnoreCase:"
CONTAINS_PREFIX = "contains:"


def _compile(pattern: str) -> Callable[[str], bool]:
    if pattern.startswith(REGEXP_PREFIX):
        regex = re.compile(pattern[len(REGEXP_PREFIX):])
        return lambda path: regex.search(path) is not None
    if pattern.startswith(REGEXP_IGNORE_CASE_PREFIX):
        regex = re.compile(pattern[len(REGEXP_IGNORE_CASE_PREFIX):], re.IGNORECASE)
        return lambda path: regex.search(path) is not None
    if pattern.startswith(CONTAINS_PREFIX):
        needle = pattern[len(CONTAINS_PREFIX):]
        return lambda path: needle in path
    if any(ch in pattern for ch in "*?["):
        # Globs match either the full path or the last path component
        def match_glob(path: str) -> bool:
            name = path.rstrip("/").rsplit("/", 1)[-1]
            return fnmatch.fnmatch(path, pattern) or fnmatch.fnmatch(name, pattern)
        return match_glob
    return lambda path: path.startswith(pattern)


def _compile_directory(pattern: str) -> Callable[[str], bool]:
    """Return a test for whether a directory may hold paths matching pattern."""
    if pattern.startswith((REGEXP_PREFIX, REGEXP_IGNORE_CASE_PREFIX, CONTAINS_PREFIX)):
        return lambda path: True
    wildcards = [i for i, ch in enumerate(pattern) if ch in "*?["]
    if wildcards and "/" not in pattern:
        # Name-only globs can match at any depth
        return lambda path: True
    literal = pattern[:wildcards[0]] if wildcards else pattern
    return lambda path: path.startswith(literal) or literal.startswith(path)


class FilePatternMatcher:
    """
    Decides whether a path is monitored.

    A path matches when it matches at least one include pattern (or no
    include patterns are configured) and no exclude pattern. Directories
    are only pruned by includes that cannot match anything below them.

    Pattern forms:
    - regexp:<expression>            regular expression search
    - regexpIgnoreCase:<expression>  case-insensitive regular expression
    - contains:<text>                substring
    - anything with * ? or [         glob, against the path or its name
    - anything else                  path prefix
    """

    def __init__(
        self,
        include_patterns: Optional[List[str]] = None,
        exclude_patterns: Optional[List[str]] = None,
    ):
        self.include_patterns = [p.strip() for p in include_patterns or [] if p.strip()]
        self.exclude_patterns = [p.strip() for p in exclude_patterns or [] if p.strip()]
        self._includes = [_compile(p) for p in self.include_patterns]
        self._excludes = [_compile(p) for p in self.exclude_patterns]
        self._directory_includes = [_compile_directory(p) for p in self.include_patterns]

    def matches(self, path: str) -> bool:
        if self._includes and not any(match(path) for match in self._includes):
            return False
        return not any(match(path) for match in self._excludes)

    def matches_directory(self, path: str) -> bool:
        """Return True if the directory at path should be descended into."""
        if self._directory_includes and not any(match(path) for match in self._directory_includes):
            return False
        return not self.is_excluded(path)

    def is_excluded(self, path: str) -> bool:
        """Return True if an exclude pattern matches, ignoring includes."""
        return any(match(path) for match in self._excludes)
