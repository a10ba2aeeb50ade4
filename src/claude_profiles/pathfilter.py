"""
Path filter -- decides what belongs in a snapshot.

Works on archive-relative paths such as ``.claude/projects/a.jsonl``.
The same rules gate snapshot contents and file-change notifications,
so a change to an excluded file never triggers a save.
"""

from __future__ import annotations

import re

from .models import SnapshotOptions

_SEPARATORS = re.compile(r"[/\\]")


def split_segments(relative_path: str) -> list[str]:
    """Split a path on either separator, dropping empty and ``.`` parts."""
    return [s for s in _SEPARATORS.split(relative_path or "") if s and s != "."]


class PathFilter:
    """Exclusion rules for snapshot members.

    Args:
        root_name: Directory name of the root container (``.claude``).
        subtree_name: Bulky subtree that may be left out (``projects``).
        home_alias: Token standing for the home directory (``~``).
    """

    def __init__(
        self,
        root_name: str = ".claude",
        subtree_name: str = "projects",
        home_alias: str = "~",
    ):
        self.root_name = root_name
        self.subtree_name = subtree_name
        self.home_alias = home_alias

    def should_exclude(self, relative_path: str, options: SnapshotOptions) -> bool:
        """Return True when the path must not be part of a snapshot.

        1. With subtree exclusion on, any segment naming the subtree
           excludes the path (whole-segment match, not substring).
        2. A segment equal to the root name below the top level marks a
           nested copy of the root and is excluded. A match at index 1
           directly under the home alias or the root itself still
           counts as top level and is allowed.
        """
        segments = split_segments(relative_path)

        if options.exclude_subtree and self.subtree_name in segments:
            return True

        for index, segment in enumerate(segments):
            if segment != self.root_name or index == 0:
                continue
            if index == 1 and segments[0] in (self.home_alias, self.root_name):
                continue
            return True

        return False

    def select(
        self, relative_paths: list[str], options: SnapshotOptions
    ) -> list[str]:
        """Keep the paths that survive the filter, preserving order."""
        return [p for p in relative_paths if not self.should_exclude(p, options)]
