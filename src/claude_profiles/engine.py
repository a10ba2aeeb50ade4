"""
Profile engine -- orchestrates snapshot, verification, and transport.

This is the command center. It wires the configured store, the
credential bridge and the snapshot builder together and runs the
operations the CLI exposes:

    claude-profiles --store NAME    ->  verify local -> build -> size check -> upload
    claude-profiles --restore NAME  ->  download -> unpack -> verify -> merge -> credentials
    claude-profiles --watch NAME    ->  verify local -> observe -> debounced saves

Every operation takes a LogContext. Watch-mode saves run the same
store path with a background context so they stay quiet.
"""

from __future__ import annotations

import io
import json
import logging
import shutil
import signal
import tempfile
import threading
import zipfile
from pathlib import Path, PurePosixPath
from typing import Any, Optional

from .config import ProfilesConfig
from .credentials import CredentialBridge, detect_shape, is_usable
from .errors import (
    ExtractionError,
    IntegrityError,
    RemoteStoreError,
    ValidationError,
)
from .log import LogContext
from .models import (
    CredentialShape,
    IssueLevel,
    Snapshot,
    SnapshotOptions,
    SourceEntry,
    VerificationResult,
    is_valid_profile_name,
)
from .remote import FailureKind, ProfileStore, create_store
from .scheduler import WatchScheduler
from .sizeguard import classify, ensure_uploadable, format_bytes, size_error
from .snapshot import SnapshotBuilder
from .verify import verify_local, verify_packaged
from .watcher import start_observers

logger = logging.getLogger("claude_profiles.engine")


class ProfileEngine:
    """Runs profile operations against one store.

    Args:
        config: Profiles configuration.
        store: Remote store. Defaults to the configured backend.
        bridge: Credential bridge. Defaults to the running platform.
        builder: Snapshot builder. Defaults to one built from config.
        log: Default logging context for operations.
    """

    def __init__(
        self,
        config: Optional[ProfilesConfig] = None,
        store: Optional[ProfileStore] = None,
        bridge: Optional[CredentialBridge] = None,
        builder: Optional[SnapshotBuilder] = None,
        log: Optional[LogContext] = None,
    ):
        self.config = config or ProfilesConfig()
        self.store = store or create_store(self.config)
        self.bridge = bridge or CredentialBridge(self.config)
        self.builder = builder or SnapshotBuilder(self.config, self.bridge)
        self.log = log or LogContext()

    @property
    def entries(self) -> list[SourceEntry]:
        return list(self.config.sources)

    @staticmethod
    def validate_name(name: str) -> None:
        """Reject profile names outside ``[a-z0-9-]+``.

        Raises:
            ValidationError: Before any store call is made.
        """
        if not is_valid_profile_name(name or ""):
            raise ValidationError(
                "Profile name must contain only lowercase letters, numbers, and hyphens",
                hints=[f"Invalid profile name: {name!r}", "Example: work, personal-2"],
            )

    # ------------------------------------------------------------------
    # List / delete
    # ------------------------------------------------------------------

    def list_profiles(self, log: Optional[LogContext] = None) -> list[str]:
        """Names of every stored profile, sorted."""
        log = log or self.log
        collection = self.store.find_or_create_collection()
        log.debug(f"Using {self.store.name} collection {collection}")
        return self.store.list_profiles(collection)

    def delete(self, name: str, log: Optional[LogContext] = None) -> None:
        """Remove a stored profile.

        Raises:
            NotFoundError: With the available profile names attached.
        """
        log = log or self.log
        self.validate_name(name)
        log.info(f"Deleting Claude profile: {name}")
        collection = self.store.find_or_create_collection()
        self.store.delete(collection, name)
        log.success(f"Profile '{name}' deleted successfully")

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def _preflight(self, log: LogContext) -> VerificationResult:
        result = verify_local(self.config, self.bridge, log)
        for issue in result.issues:
            if issue.level == IssueLevel.WARNING:
                log.info(f"   {issue}")
        if not result.valid:
            raise IntegrityError(
                "Cannot store profile - local verification failed",
                issues=result.errors,
                hints=["Make sure Claude is installed and you have logged in at least once"],
            )
        return result

    def store_profile(
        self,
        name: str,
        options: Optional[SnapshotOptions] = None,
        log: Optional[LogContext] = None,
    ) -> Snapshot:
        """Snapshot local state and upload it under ``name``.

        The size check runs before any network call.

        Raises:
            ValidationError: Bad name or nothing to back up.
            IntegrityError: Local credentials or config are unusable.
            SizeExceededError: Snapshot too large for the store.
            RemoteStoreError: Upload failed.
        """
        log = log or self.log
        options = options or SnapshotOptions()
        self.validate_name(name)
        log.info(f"Preparing to store Claude profile: {name}")

        self._preflight(log)
        snapshot = self.builder.build(self.entries, options, log)

        report = classify(snapshot.size_bytes, limits=self.config.limits)
        log.info(
            f"Profile size: {format_bytes(report.raw_size)} "
            f"(base64 encoded: {format_bytes(report.upload_size)})"
        )
        ensure_uploadable(
            report, options.exclude_subtree, self.config.limits, self.config.excluded_subtree
        )
        if report.exceeds_web_limit:
            log.warn(
                f"Profile exceeds the web interface limit "
                f"({format_bytes(self.config.limits.web_limit)}); "
                "it is only viewable through the API"
            )
        elif report.is_large_warning:
            log.warn("Large profile, upload may take a while")

        collection = self.store.find_or_create_collection()
        log.info(f"Uploading profile to {self.store.name}...")
        try:
            self.store.upload(collection, name, snapshot.data)
        except RemoteStoreError as exc:
            if exc.kind == FailureKind.TOO_LARGE:
                raise size_error(
                    report,
                    options.exclude_subtree,
                    self.config.limits,
                    self.config.excluded_subtree,
                    prefix="Failed to upload: HTTP 422 - Content too large",
                ) from exc
            raise

        log.success(f"Profile '{name}' stored successfully")
        logger.debug("Stored %s fingerprint=%s", name, snapshot.fingerprint)
        return snapshot

    def save(
        self,
        name: str,
        options: Optional[SnapshotOptions] = None,
        log: Optional[LogContext] = None,
    ) -> Snapshot:
        """Store from watch mode, with console output muted."""
        return self.store_profile(name, options, (log or self.log).background())

    # ------------------------------------------------------------------
    # Restore / verify
    # ------------------------------------------------------------------

    def _extract(self, data: bytes, target: Path) -> list[str]:
        """Unpack snapshot bytes into ``target``.

        Raises:
            ExtractionError: Corrupt archive or a member escaping ``target``.
        """
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                names = archive.namelist()
                for member in names:
                    parts = PurePosixPath(member.replace("\\", "/")).parts
                    if member.startswith(("/", "\\")) or ".." in parts:
                        raise ExtractionError(
                            f"Refusing to extract unsafe archive member: {member}"
                        )
                archive.extractall(target)
        except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError) as exc:
            raise ExtractionError(
                f"Failed to extract profile archive: {exc}",
                hints=["This profile appears to be corrupted or incomplete",
                       "Consider creating a new backup with --store"],
            ) from exc
        return names

    def _download_verified(
        self, name: str, workdir: Path, log: LogContext
    ) -> tuple[Path, VerificationResult]:
        collection = self.store.find_or_create_collection()
        log.info(f"Downloading profile from {self.store.name}...")
        data = self.store.download(collection, name)

        extract_dir = workdir / "extract"
        extract_dir.mkdir()
        members = self._extract(data, extract_dir)
        log.debug(f"Archive holds {len(members)} entries ({format_bytes(len(data))})")

        log.info("Verifying profile integrity...")
        return extract_dir, verify_packaged(extract_dir, self.config, log)

    def verify(self, name: str, log: Optional[LogContext] = None) -> VerificationResult:
        """Download a profile and check it without restoring.

        Raises:
            IntegrityError: If the profile would not restore cleanly.
        """
        log = log or self.log
        self.validate_name(name)
        log.info(f"Verifying Claude profile: {name}")

        with tempfile.TemporaryDirectory(
            prefix="claude-verify-", ignore_cleanup_errors=True
        ) as tmp:
            _root, result = self._download_verified(name, Path(tmp), log)

        for item in result.found:
            log.info(f"   Found: {item}")
        for issue in result.issues:
            if issue.level == IssueLevel.WARNING:
                log.warn(f"   {issue}")
        if not result.valid:
            raise IntegrityError(
                f"Profile '{name}' failed verification",
                issues=result.errors,
                hints=["This profile appears to be corrupted or incomplete",
                       "Consider creating a new backup with --store"],
            )
        log.success(f"Profile '{name}' is valid and ready to restore")
        return result

    def restore(
        self,
        name: str,
        options: Optional[SnapshotOptions] = None,
        log: Optional[LogContext] = None,
    ) -> dict[str, Any]:
        """Download, verify, and merge a profile into the local home.

        Nothing is written locally unless verification passes.

        Returns:
            dict: 'restored' (entries written), 'credentials' (how the
            credential store was updated, or None), 'warnings'.
        """
        log = log or self.log
        options = options or SnapshotOptions()
        self.validate_name(name)
        log.info(f"Preparing to restore Claude profile: {name}")

        with tempfile.TemporaryDirectory(
            prefix="claude-restore-", ignore_cleanup_errors=True
        ) as tmp:
            root, result = self._download_verified(name, Path(tmp), log)
            if not result.valid:
                raise IntegrityError(
                    "Cannot restore profile - verification failed",
                    issues=result.errors,
                    hints=["This profile appears to be corrupted or incomplete",
                           "Consider creating a new backup with --store"],
                )
            log.success("Profile verified successfully")

            log.info("Extracting profile...")
            restored, warnings = self._merge(root, options, log)
            credentials = self._restore_credentials(root, log)

        if credentials is None:
            warnings.append("No credentials found in profile")
            log.warn("No credentials found in profile")
        log.success(f"Profile '{name}' restored successfully")
        return {"restored": restored, "credentials": credentials, "warnings": warnings}

    def _merge(
        self, root: Path, options: SnapshotOptions, log: LogContext
    ) -> tuple[list[str], list[str]]:
        """Copy unpacked entries over the local ones, merging directories."""
        restored: list[str] = []
        warnings: list[str] = []
        subtree = self.config.excluded_subtree

        for entry in self.entries:
            source = root / entry.archive_name
            dest = self.config.expand(entry.source_path)
            effective = options.for_entry(entry)
            try:
                if source.is_dir():
                    dest.parent.mkdir(parents=True, exist_ok=True)
                    ignore = None
                    if effective.exclude_subtree:
                        ignore = _ignore_top_level(source, subtree)
                    shutil.copytree(source, dest, dirs_exist_ok=True, ignore=ignore)
                    note = f" (excluding {subtree})" if effective.exclude_subtree else ""
                    log.info(f"Restored directory{note}: {entry.source_path}")
                elif source.is_file():
                    dest.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(source, dest)
                    log.info(f"Restored file: {entry.source_path}")
                else:
                    continue
                restored.append(entry.source_path)
            except OSError as exc:
                message = f"Could not restore {entry.source_path}: {exc}"
                warnings.append(message)
                log.warn(message)
        return restored, warnings

    def _read_export(self, path: Path, log: LogContext) -> Optional[dict]:
        if not path.is_file():
            return None
        try:
            record = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            log.debug(f"Could not read {path.name}: {exc}")
            return None
        return record if is_usable(record) else None

    def _restore_credentials(self, root: Path, log: LogContext) -> Optional[str]:
        """Write the profile's credentials into the local store.

        The platform's own export is preferred; the other one is
        converted when it is all the profile has.

        Returns:
            Short description of what was restored, or None.
        """
        native = self._read_export(root / self.config.native_export_name, log)
        generic = self._read_export(root / self.config.credentials_file, log)
        platform = self.bridge.platform

        if platform.has_native_store:
            candidates = [(native, "macOS Keychain credentials from macOS profile"),
                          (generic, "Linux credentials converted to macOS Keychain")]
        else:
            candidates = [(generic, "Linux credentials"),
                          (native, "macOS credentials converted to Linux format")]

        for record, description in candidates:
            if record is None:
                continue
            if detect_shape(record) != CredentialShape.WRAPPED:
                log.debug(f"Converting {detect_shape(record).value} credentials to wrapped format")
            if self.bridge.write(record):
                log.info(f"Restored {description}")
                return description
            log.warn(f"Could not write {description}")
        return None

    # ------------------------------------------------------------------
    # Watch
    # ------------------------------------------------------------------

    def watch(
        self,
        name: str,
        options: Optional[SnapshotOptions] = None,
        debounce_seconds: Optional[float] = None,
        log: Optional[LogContext] = None,
        scheduler_factory=WatchScheduler,
        observer_factory=None,
        handle_signals: bool = True,
    ) -> dict[str, Any]:
        """Auto-save ``name`` whenever the source files change.

        Blocks until stopped by a signal or a fatal save error.

        Returns:
            dict: 'saves' (successful saves), 'fatal' (stopped by error).
        """
        log = log or self.log
        options = options or SnapshotOptions()
        self.validate_name(name)
        self._preflight(log)

        watch_config = self.config.watch
        if debounce_seconds is not None:
            watch_config = watch_config.model_copy(
                update={"debounce_seconds": debounce_seconds}
            )

        entries = self.entries
        scheduler = scheduler_factory(
            save=lambda: self.save(name, options, log),
            fingerprint=lambda: self.builder.compute_fingerprint(entries, options),
            config=watch_config,
            log=log,
            poll_keychain=self.bridge.platform.has_native_store,
        )
        scheduler.start()

        kwargs = {"observer_factory": observer_factory} if observer_factory else {}
        observer, watched = start_observers(
            entries, self.config, self.builder.path_filter, options, scheduler, **kwargs
        )

        log.info(f"Watching for changes to profile '{name}'")
        for path in watched:
            log.info(f"   {path}")
        if options.exclude_subtree:
            log.info(f"   (excluding {self.config.excluded_subtree} folder)")
        log.info(
            f"Debounce: {watch_config.debounce_seconds:g}s, "
            f"minimum interval: {watch_config.min_save_interval_seconds:g}s"
        )
        log.info("Press Ctrl+C to stop watching")

        previous = {}
        if handle_signals and threading.current_thread() is threading.main_thread():
            for signum in (signal.SIGINT, signal.SIGTERM):
                previous[signum] = signal.signal(
                    signum, lambda *_args: scheduler.request_stop()
                )
        try:
            fatal = scheduler.run()
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)
            try:
                observer.join(timeout=5)
            except RuntimeError:
                pass

        return {"saves": scheduler.state.save_count, "fatal": fatal}


def _ignore_top_level(root: Path, name: str):
    """shutil.copytree ignore callable dropping ``name`` directly under ``root``."""

    def ignore(directory: str, names: list[str]) -> list[str]:
        if Path(directory) == root and name in names:
            return [name]
        return []

    return ignore
