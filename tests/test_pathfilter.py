"""Tests for the snapshot path filter."""

from __future__ import annotations

import pytest

from claude_profiles.models import SnapshotOptions, SourceEntry
from claude_profiles.pathfilter import PathFilter, split_segments

KEEP = SnapshotOptions()
SKIP = SnapshotOptions(exclude_subtree=True)


@pytest.fixture
def path_filter() -> PathFilter:
    return PathFilter()


class TestSplitSegments:
    def test_both_separators(self):
        assert split_segments(".claude\\projects/a.jsonl") == [".claude", "projects", "a.jsonl"]

    def test_drops_empty_and_dot(self):
        assert split_segments("./.claude//todos/") == [".claude", "todos"]

    def test_empty(self):
        assert split_segments("") == []


class TestSubtreeExclusion:
    """Rule 1: whole-segment match on the subtree name."""

    def test_projects_excluded_when_requested(self, path_filter):
        assert path_filter.should_exclude(".claude/projects/x/session.jsonl", SKIP)

    def test_projects_kept_by_default(self, path_filter):
        assert not path_filter.should_exclude(".claude/projects/x/session.jsonl", KEEP)

    def test_substring_is_not_a_match(self, path_filter):
        """A directory merely starting with the name is kept."""
        assert not path_filter.should_exclude(".claude/projects-old/a.json", SKIP)
        assert not path_filter.should_exclude(".claude/myprojects/a.json", SKIP)

    def test_windows_separators(self, path_filter):
        assert path_filter.should_exclude(".claude\\projects\\a.jsonl", SKIP)


class TestNestedRoot:
    """Rule 2: nested copies of the root directory are always excluded."""

    def test_top_level_root_allowed(self, path_filter):
        assert not path_filter.should_exclude(".claude/settings.json", KEEP)

    def test_index_one_under_home_alias_allowed(self, path_filter):
        assert not path_filter.should_exclude("~/.claude/settings.json", KEEP)

    def test_index_one_under_root_allowed(self, path_filter):
        assert not path_filter.should_exclude(".claude/.claude/settings.json", KEEP)

    def test_index_one_under_other_dir_excluded(self, path_filter):
        assert path_filter.should_exclude("todos/.claude/settings.json", KEEP)

    def test_deeper_nesting_excluded(self, path_filter):
        assert path_filter.should_exclude(".claude/projects/app/.claude/settings.json", KEEP)
        assert path_filter.should_exclude("~/.claude/x/.claude/y", KEEP)

    def test_rule_applies_without_subtree_option(self, path_filter):
        assert path_filter.should_exclude(".claude/a/.claude/b", KEEP)
        assert path_filter.should_exclude(".claude/a/.claude/b", SKIP)


class TestTotality:
    @pytest.mark.parametrize("path", ["", ".", "/", "\\", "~", ".claude", "a/../b"])
    def test_never_raises(self, path_filter, path):
        """Odd inputs give an answer rather than an exception."""
        first = path_filter.should_exclude(path, SKIP)
        assert first == path_filter.should_exclude(path, SKIP)

    def test_none_is_kept(self, path_filter):
        assert path_filter.should_exclude(None, SKIP) is False


class TestEffectiveOptions:
    def test_option_only_applies_to_entries_that_allow_it(self):
        dir_entry = SourceEntry(source_path="~/.claude", archive_name=".claude", can_exclude_subtree=True)
        file_entry = SourceEntry(source_path="~/projects", archive_name="projects")

        assert SKIP.for_entry(dir_entry).exclude_subtree is True
        assert SKIP.for_entry(file_entry).exclude_subtree is False
        assert KEEP.for_entry(dir_entry).exclude_subtree is False

    def test_select_preserves_order(self, path_filter):
        paths = [".claude/b", ".claude/projects/p", ".claude/a", "x/.claude/y"]
        assert path_filter.select(paths, SKIP) == [".claude/b", ".claude/a"]
