"""Tests for include/exclude pattern matching."""

import pytest

from src.snapwatch.patterns import FilePatternMatcher


class TestFilePatternMatcher:
    """Tests for FilePatternMatcher class."""

    def test_no_patterns_matches_everything(self):
        matcher = FilePatternMatcher()
        assert matcher.matches("/r/anything")
        assert not matcher.is_excluded("/r/anything")

    def test_glob_matches_name(self):
        matcher = FilePatternMatcher(include_patterns=["*.pdf"])
        assert matcher.matches("/r/docs/report.pdf")
        assert not matcher.matches("/r/docs/report.doc")

    def test_prefix(self):
        matcher = FilePatternMatcher(include_patterns=["/r/docs/"])
        assert matcher.matches("/r/docs/a.txt")
        assert not matcher.matches("/r/other/a.txt")

    def test_exclude_wins(self):
        matcher = FilePatternMatcher(include_patterns=["/r/"], exclude_patterns=["contains:/tmp/"])
        assert matcher.matches("/r/a.txt")
        assert not matcher.matches("/r/tmp/a.txt")
        assert matcher.is_excluded("/r/tmp/a.txt")

    def test_regexp(self):
        matcher = FilePatternMatcher(exclude_patterns=[r"regexp:\.bak$"])
        assert not matcher.matches("/r/a.bak")
        assert matcher.matches("/r/a.BAK")

    def test_regexp_ignore_case(self):
        matcher = FilePatternMatcher(exclude_patterns=[r"regexpIgnoreCase:\.bak$"])
        assert not matcher.matches("/r/a.BAK")

    @pytest.mark.parametrize("patterns", [[""], ["  "]])
    def test_blank_patterns_ignored(self, patterns):
        matcher = FilePatternMatcher(include_patterns=patterns)
        assert matcher.include_patterns == []
        assert matcher.matches("/r/a")


class TestDirectoryMatching:
    """Tests for FilePatternMatcher.matches_directory."""

    def test_name_glob_does_not_prune(self):
        matcher = FilePatternMatcher(include_patterns=["*.txt"])
        assert matcher.matches_directory("/r/sub/")
        assert not matcher.matches("/r/sub/b.pdf")

    def test_prefix_prunes_unrelated_directories(self):
        matcher = FilePatternMatcher(include_patterns=["/r/docs/"])
        assert matcher.matches_directory("/r/")
        assert matcher.matches_directory("/r/docs/")
        assert matcher.matches_directory("/r/docs/deep/")
        assert not matcher.matches_directory("/r/other/")

    def test_path_glob_uses_literal_prefix(self):
        matcher = FilePatternMatcher(include_patterns=["/r/docs/*.pdf"])
        assert matcher.matches_directory("/r/docs/sub/")
        assert not matcher.matches_directory("/r/other/")

    def test_exclude_prunes(self):
        matcher = FilePatternMatcher(include_patterns=["*.txt"], exclude_patterns=["contains:/tmp/"])
        assert not matcher.matches_directory("/r/tmp/")
