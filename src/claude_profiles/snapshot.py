"""
Snapshot builder -- the configured sources, filtered and packaged.

Building runs as a small pipeline:

    enumerate  ->  every file under every source entry
    select     ->  drop what the PathFilter excludes
    collect    ->  read the survivors (+ Keychain export on macOS)
    package    ->  deterministic zip bytes + SHA-256 fingerprint

The fingerprint covers the sorted member paths, their bytes in the
same order, and the Keychain record when there is one. Identical
inputs always hash the same, so watch mode can skip no-op saves.
"""

from __future__ import annotations

import hashlib
import io
import json
import logging
import os
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .config import ProfilesConfig
from .credentials import CredentialBridge
from .errors import IncompleteSourceError
from .log import LogContext
from .models import Snapshot, SnapshotOptions, SourceEntry
from .pathfilter import PathFilter

logger = logging.getLogger("claude_profiles.snapshot")

FIXED_TIMESTAMP = (1980, 1, 1, 0, 0, 0)
PATH_SEPARATOR = "|"


@dataclass(frozen=True)
class Candidate:
    """A file found under a source entry, before filtering."""

    archive_path: str
    path: Path
    entry: SourceEntry


@dataclass
class Collected:
    """Everything that goes into one snapshot, read into memory."""

    files: list[tuple[str, bytes]] = field(default_factory=list)
    credential: Optional[dict] = None
    entries_found: list[str] = field(default_factory=list)

    @property
    def paths(self) -> list[str]:
        return [name for name, _ in self.files]


@dataclass
class SizeNode:
    """Directory tree node with accumulated size, for display."""

    name: str
    size: int = 0
    is_dir: bool = False
    children: list["SizeNode"] = field(default_factory=list)


class SnapshotBuilder:
    """Builds snapshots of the configured source entries.

    Args:
        config: Profiles configuration.
        bridge: Credential bridge for the Keychain export.
        path_filter: Exclusion rules. Defaults to one built from config.
    """

    def __init__(
        self,
        config: ProfilesConfig,
        bridge: CredentialBridge,
        path_filter: Optional[PathFilter] = None,
    ):
        self.config = config
        self.bridge = bridge
        self.path_filter = path_filter or PathFilter(
            root_name=config.root_name,
            subtree_name=config.excluded_subtree,
            home_alias=config.home_alias,
        )

    def enumerate(self, entries: list[SourceEntry]) -> list[Candidate]:
        """List every file under every entry. Missing sources are skipped."""
        candidates: list[Candidate] = []
        for entry in entries:
            source = self.config.expand(entry.source_path)
            if source.is_dir():
                for root, _dirs, files in os.walk(source):
                    for fname in files:
                        full_path = Path(root) / fname
                        rel = full_path.relative_to(source).as_posix()
                        candidates.append(
                            Candidate(f"{entry.archive_name}/{rel}", full_path, entry)
                        )
            elif source.is_file():
                candidates.append(Candidate(entry.archive_name, source, entry))
            else:
                logger.debug("Source %s not found, skipping", entry.source_path)
        return candidates

    def select(
        self, candidates: list[Candidate], options: SnapshotOptions
    ) -> list[Candidate]:
        """Apply the PathFilter with each entry's effective options."""
        return [
            c for c in candidates
            if not self.path_filter.should_exclude(
                c.archive_path, options.for_entry(c.entry)
            )
        ]

    def collect(
        self,
        entries: list[SourceEntry],
        options: SnapshotOptions,
        log: Optional[LogContext] = None,
    ) -> Collected:
        """Read the selected files and the Keychain export.

        Unreadable files are skipped with a warning.
        """
        collected = Collected()
        selected = self.select(self.enumerate(entries), options)

        for candidate in sorted(selected, key=lambda c: c.archive_path):
            try:
                data = candidate.path.read_bytes()
            except OSError as exc:
                if log:
                    log.warn(f"Could not read {candidate.path}: {exc}")
                else:
                    logger.warning("Could not read %s: %s", candidate.path, exc)
                continue
            collected.files.append((candidate.archive_path, data))
            if candidate.entry.source_path not in collected.entries_found:
                collected.entries_found.append(candidate.entry.source_path)

        if self.bridge.platform.has_native_store:
            collected.credential = self.bridge.read()

        return collected

    def fingerprint(self, collected: Collected) -> str:
        """SHA-256 over sorted paths, their bytes, then the Keychain record."""
        h = hashlib.sha256()
        ordered = sorted(collected.files, key=lambda item: item[0])
        h.update(PATH_SEPARATOR.join(name for name, _ in ordered).encode("utf-8"))
        for _name, data in ordered:
            h.update(data)
        if collected.credential is not None and self.bridge.platform.has_native_store:
            h.update(json.dumps(collected.credential, sort_keys=True).encode("utf-8"))
        return h.hexdigest()

    def compute_fingerprint(
        self, entries: list[SourceEntry], options: SnapshotOptions
    ) -> str:
        """Fingerprint the current local state without packaging it."""
        return self.fingerprint(self.collect(entries, options))

    def package(self, collected: Collected) -> bytes:
        """Write a deterministic zip of the collected files."""
        members = list(collected.files)
        if collected.credential is not None:
            export = json.dumps(collected.credential, indent=2).encode("utf-8")
            members.append((self.config.native_export_name, export))

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for name, data in sorted(members, key=lambda item: item[0]):
                info = zipfile.ZipInfo(name, date_time=FIXED_TIMESTAMP)
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = 0o600 << 16
                archive.writestr(info, data, compresslevel=9)
        return buffer.getvalue()

    def build(
        self,
        entries: list[SourceEntry],
        options: SnapshotOptions,
        log: Optional[LogContext] = None,
    ) -> Snapshot:
        """Collect, fingerprint and package a snapshot.

        Raises:
            IncompleteSourceError: If no source entry yielded any file.
        """
        collected = self.collect(entries, options, log)
        if not collected.files:
            expected = ", ".join(e.source_path for e in entries)
            raise IncompleteSourceError(
                "No Claude configuration files found to back up",
                hints=[
                    f"Expected: {expected}",
                    "Use Claude at least once to generate config files",
                ],
            )

        if log:
            for entry in entries:
                if entry.source_path not in collected.entries_found:
                    continue
                note = ""
                if options.for_entry(entry).exclude_subtree:
                    note = f" (excluding {self.config.excluded_subtree} folder)"
                log.info(f"Added {entry.source_path}{note}")
            if collected.credential is not None:
                log.info("Added macOS Keychain credentials")
            elif self.bridge.platform.has_native_store:
                log.warn("No credentials found in macOS Keychain")

        data = self.package(collected)
        members = [name for name, _ in collected.files]
        if collected.credential is not None:
            members.append(self.config.native_export_name)

        snapshot = Snapshot(
            data=data,
            size_bytes=len(data),
            fingerprint=self.fingerprint(collected),
            members=tuple(sorted(members)),
        )
        logger.debug(
            "Snapshot built: %d members, %d bytes, fingerprint %s",
            len(members), snapshot.size_bytes, snapshot.fingerprint[:12],
        )
        return snapshot


def directory_sizes(
    path: Path,
    subtree_name: Optional[str] = None,
    max_depth: int = 3,
    _depth: int = 0,
) -> SizeNode:
    """Walk a directory and accumulate sizes for a tree display.

    Args:
        path: Directory to measure.
        subtree_name: Child directory to leave out, if any.
        max_depth: Levels below ``path`` to descend into.

    Returns:
        SizeNode for ``path``. Inaccessible entries are skipped.
    """
    node = SizeNode(name=path.name, is_dir=True)
    if _depth >= max_depth:
        for root, _dirs, files in os.walk(path):
            for fname in files:
                try:
                    node.size += (Path(root) / fname).stat().st_size
                except OSError:
                    continue
        return node
    try:
        children = sorted(path.iterdir(), key=lambda p: p.name)
    except OSError:
        return node

    for child in children:
        if subtree_name and child.name == subtree_name:
            continue
        try:
            if child.is_dir() and not child.is_symlink():
                sub = directory_sizes(child, subtree_name, max_depth, _depth + 1)
                node.children.append(sub)
                node.size += sub.size
            elif child.is_file():
                size = child.stat().st_size
                node.children.append(SizeNode(name=child.name, size=size))
                node.size += size
        except OSError:
            continue
    return node
