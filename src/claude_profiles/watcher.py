"""
Filesystem watching for watch mode.

One watchdog observer covers every configured source entry:
directories are watched recursively, single files through their
parent directory with events narrowed to the file's name. Each
event path is mapped back to its archive-relative form and run
through the PathFilter, so changes under an excluded subtree or a
nested ``.claude`` never reach the scheduler.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import ProfilesConfig
from .log import TRACE
from .models import SnapshotOptions, SourceEntry
from .pathfilter import PathFilter
from .scheduler import WatchScheduler

logger = logging.getLogger("claude_profiles.watcher")


class SourceChangeHandler(FileSystemEventHandler):
    """Turns file events under one source entry into CHANGE events.

    Args:
        entry: The source entry being watched.
        source: Resolved local path of the entry.
        path_filter: Exclusion rules.
        options: Snapshot options in effect for the watch session.
        scheduler: Receives the change notifications.
    """

    def __init__(
        self,
        entry: SourceEntry,
        source: Path,
        path_filter: PathFilter,
        options: SnapshotOptions,
        scheduler: WatchScheduler,
    ):
        super().__init__()
        self.entry = entry
        self.source = source
        self.path_filter = path_filter
        self.options = options.for_entry(entry)
        self.scheduler = scheduler

    def archive_path(self, event_path: str) -> Optional[str]:
        """Map a local event path to its archive-relative path.

        Returns:
            The archive path, or None if the event is not about this entry.
        """
        path = Path(os.fsdecode(event_path))
        if path == self.source:
            return self.entry.archive_name
        try:
            rel = path.relative_to(self.source)
        except ValueError:
            return None
        return f"{self.entry.archive_name}/{rel.as_posix()}"

    def _handle(self, event_path: str) -> None:
        archive_path = self.archive_path(event_path)
        if archive_path is None:
            return
        if self.path_filter.should_exclude(archive_path, self.options):
            logger.log(TRACE, "Ignoring change to excluded path %s", archive_path)
            return
        self.scheduler.notify_change(str(self.source.parent / archive_path))

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in ("opened", "closed", "closed_no_write"):
            return
        # Directory mtime updates follow every child change.
        if event.is_directory and event.event_type == "modified":
            return
        self._handle(event.src_path)
        dest = getattr(event, "dest_path", "")
        if dest:
            self._handle(dest)


def start_observers(
    entries: list[SourceEntry],
    config: ProfilesConfig,
    path_filter: PathFilter,
    options: SnapshotOptions,
    scheduler: WatchScheduler,
    observer_factory=Observer,
):
    """Schedule watches for every existing source entry and start observing.

    The observer is registered with the scheduler, which stops it on
    shutdown.

    Returns:
        (observer, watched) where ``watched`` lists the entries covered.
    """
    observer = observer_factory()
    watched: list[str] = []

    for entry in entries:
        source = config.expand(entry.source_path)
        handler = SourceChangeHandler(entry, source, path_filter, options, scheduler)
        if source.is_dir():
            observer.schedule(handler, str(source), recursive=True)
        elif source.is_file():
            observer.schedule(handler, str(source.parent), recursive=False)
        else:
            logger.debug("Not watching missing source %s", entry.source_path)
            continue
        watched.append(entry.source_path)

    observer.start()
    scheduler.add_observer(observer)
    return observer, watched
