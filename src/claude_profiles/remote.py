"""
Remote profile stores -- where the snapshots live.

Each store keeps one collection per user holding one blob per
profile, named ``<profile>.zip.base64``. Blob content is the zip
snapshot, base64 encoded as text.

GitHub Gist: driven through the ``gh`` CLI. The collection is a
    secret gist found by its description and created on first use.
Local: a plain directory. For USB drives, NAS mounts, and tests.

Failures are classified from the CLI's diagnostic text into a
closed set of kinds and raised as typed errors. Callers branch on
the error class and ``kind``, never on the raw text.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

import requests

from .config import ProfilesConfig, StoreBackend
from .errors import (
    AuthError,
    ConflictError,
    ExtractionError,
    NotFoundError,
    RemoteStoreError,
    TransientRemoteError,
)
from .models import AuthStatus

logger = logging.getLogger("claude_profiles.remote")

GIST_URL_PATTERN = re.compile(r"https://gist\.github\.com/\S+")

README_NAME = "claude-profiles-readme.md"
README_CONTENT = """# Claude Profiles Backup

This gist stores Claude profile backups as zip files (base64 encoded).

Created by claude-profiles.
Do not edit this gist manually.

## Profiles

Each .zip.base64 file contains a backup of:
- ~/.claude/ directory
- ~/.claude.json
- ~/.claude.json.backup
"""

Runner = Callable[..., subprocess.CompletedProcess]


class FailureKind(str, Enum):
    """Closed set of remote failure classifications."""

    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    AUTH = "auth"
    CONFLICT = "conflict"
    TOO_LARGE = "too_large"
    NETWORK = "network"
    GENERIC = "generic"


# Checked in order; the first match wins.
_FAILURE_PATTERNS: list[tuple[FailureKind, re.Pattern]] = [
    (FailureKind.TOO_LARGE, re.compile(r"\b422\b|too large", re.IGNORECASE)),
    (FailureKind.RATE_LIMITED, re.compile(r"rate limit", re.IGNORECASE)),
    (FailureKind.CONFLICT, re.compile(r"\b409\b|cannot be updated", re.IGNORECASE)),
    (
        FailureKind.AUTH,
        re.compile(
            r"permission|scope|not logged|authenticat|\b401\b|\b403\b|auth login",
            re.IGNORECASE,
        ),
    ),
    (FailureKind.NOT_FOUND, re.compile(r"\b404\b|not found", re.IGNORECASE)),
    (
        FailureKind.NETWORK,
        re.compile(
            r"network|timeout|timed out|could not resolve|connection", re.IGNORECASE
        ),
    ),
]


def classify_failure(text: str) -> FailureKind:
    """Classify diagnostic output from the remote client."""
    for kind, pattern in _FAILURE_PATTERNS:
        if pattern.search(text or ""):
            return kind
    return FailureKind.GENERIC


def raise_for_failure(
    kind: FailureKind,
    action: str,
    detail: str = "",
    auth_status: Optional[AuthStatus] = None,
    available: Optional[list[str]] = None,
) -> None:
    """Raise the typed error for a classified failure.

    Args:
        kind: Classification from classify_failure.
        action: What was being attempted, for the message.
        detail: Raw diagnostic text.
        auth_status: Attached to auth and conflict errors.
        available: Profile names, attached to not-found errors.
    """
    if kind == FailureKind.RATE_LIMITED:
        raise TransientRemoteError(
            f"GitHub API rate limit exceeded while trying to {action}",
            kind=kind, detail=detail,
            hints=["Please wait a few minutes and try again",
                   "Or authenticate with a different account"],
        )
    if kind == FailureKind.NETWORK:
        raise TransientRemoteError(
            f"Network error while trying to {action}",
            kind=kind, detail=detail,
            hints=["Please check your internet connection and try again"],
        )
    if kind == FailureKind.CONFLICT:
        raise ConflictError(
            f"Failed to {action}: HTTP 409 - Gist cannot be updated",
            kind=kind, detail=detail, auth_status=auth_status,
            hints=["Gist may be owned by a different account",
                   "Token may lack write permissions",
                   "Try: gh auth refresh -s gist"],
        )
    if kind == FailureKind.AUTH:
        raise AuthError(
            f"Permission error while trying to {action}",
            kind=kind, detail=detail, auth_status=auth_status,
            hints=["Add gist scope: gh auth refresh -s gist",
                   "Or re-login: gh auth login"],
        )
    if kind == FailureKind.NOT_FOUND:
        raise NotFoundError(f"Not found while trying to {action}", available=available, detail=detail)
    raise RemoteStoreError(
        f"Failed to {action}",
        kind=kind, detail=detail,
        hints=["Check your internet connection",
               "Try: gh gist list --limit 1"],
    )


def parse_auth_status(output: str, returncode: int = 0) -> AuthStatus:
    """Parse ``gh auth status`` output into an AuthStatus."""
    status = AuthStatus(authenticated=returncode == 0, raw_output=output)

    account = re.search(
        r"Logged in to github\.com account (\S+)|Logged in to [\w.]+ as (\S+)", output
    )
    if account:
        status.account = account.group(1) or account.group(2)

    protocol = re.search(r"Git operations protocol:\s*(\w+)", output)
    if protocol:
        status.protocol = protocol.group(1)

    token = re.search(r"Token:\s*(\S+)", output)
    if token:
        status.token = token.group(1)

    scopes_line = re.search(r"Token scopes:\s*(.+)", output)
    if scopes_line:
        line = scopes_line.group(1)
        quoted = re.findall(r"'([^']+)'", line)
        status.scopes = quoted or [s.strip() for s in line.split(",") if s.strip()]
        status.has_gist_scope = "gist" in status.scopes

    return status


def encode_blob(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_blob(text: str) -> bytes:
    """Decode blob text back into archive bytes.

    Raises:
        ExtractionError: If the text is empty or not valid base64.
    """
    text = (text or "").strip()
    if not text:
        raise ExtractionError("Downloaded profile data is empty")
    try:
        return base64.b64decode(text, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ExtractionError(f"Failed to decode profile data: {exc}") from exc


class ProfileStore(ABC):
    """Abstract remote store for profile blobs."""

    def __init__(self, config: ProfilesConfig):
        self.config = config

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable store name."""

    @abstractmethod
    def available(self) -> bool:
        """Check if this store is currently usable."""

    @abstractmethod
    def find_or_create_collection(self) -> str:
        """Locate the profile collection, creating it on first use.

        Returns:
            Collection identifier.
        """

    @abstractmethod
    def list_profiles(self, collection_id: str) -> list[str]:
        """Names of all stored profiles, sorted."""

    @abstractmethod
    def upload(self, collection_id: str, profile: str, data: bytes) -> None:
        """Store a profile's packaged snapshot, replacing any previous one."""

    @abstractmethod
    def download(self, collection_id: str, profile: str) -> bytes:
        """Fetch a profile's packaged snapshot.

        Raises:
            NotFoundError: If the profile does not exist.
        """

    @abstractmethod
    def delete(self, collection_id: str, profile: str) -> None:
        """Remove a profile.

        Raises:
            NotFoundError: If the profile does not exist.
        """

    def auth_status(self) -> Optional[AuthStatus]:
        """Authentication diagnostics, when the store has any."""
        return None

    def _profile_names(self, blob_names: list[str]) -> list[str]:
        suffix = self.config.blob_suffix
        return sorted(n[: -len(suffix)] for n in blob_names if n.endswith(suffix))


class GistStore(ProfileStore):
    """Profiles stored as files of one secret GitHub Gist.

    Args:
        config: Profiles configuration.
        runner: subprocess.run-compatible callable, for testing.
        http_get: requests.get-compatible callable, for testing.
    """

    def __init__(
        self,
        config: ProfilesConfig,
        runner: Optional[Runner] = None,
        http_get: Optional[Callable[..., Any]] = None,
    ):
        super().__init__(config)
        self._runner = runner or subprocess.run
        self._http_get = http_get or requests.get
        self._collection_id: Optional[str] = None

    @property
    def name(self) -> str:
        return "gist"

    def available(self) -> bool:
        return shutil.which("gh") is not None

    def _gh(self, args: list[str], input: Optional[str] = None) -> subprocess.CompletedProcess:
        cmd = ["gh", *args]
        logger.debug("Running: %s", " ".join(cmd))
        try:
            return self._runner(
                cmd, input=input, capture_output=True, text=True, check=False,
            )
        except FileNotFoundError as exc:
            raise RemoteStoreError(
                "GitHub CLI (gh) is not installed",
                detail=str(exc),
                hints=["Install it from https://cli.github.com/",
                       "Then authenticate: gh auth login -s gist"],
            ) from exc

    @staticmethod
    def _output(result: subprocess.CompletedProcess) -> str:
        return f"{result.stdout or ''}{result.stderr or ''}"

    def _fail(
        self,
        result: subprocess.CompletedProcess,
        action: str,
        available: Optional[list[str]] = None,
    ) -> None:
        text = self._output(result)
        kind = classify_failure(text)
        auth = self.auth_status() if kind in (FailureKind.AUTH, FailureKind.CONFLICT) else None
        raise_for_failure(kind, action, detail=text, auth_status=auth, available=available)

    def auth_status(self) -> Optional[AuthStatus]:
        try:
            result = self._gh(["auth", "status"])
        except RemoteStoreError:
            return None
        return parse_auth_status(self._output(result), result.returncode)

    def find_or_create_collection(self) -> str:
        if self._collection_id:
            return self._collection_id

        desc = self.config.collection_description
        query = f'.[] | select(.description == "{desc}") | .id'
        result = self._gh(["api", "/gists", "--paginate", "--jq", query])
        if result.returncode == 0:
            ids = [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]
            if ids:
                self._collection_id = ids[0]
                logger.debug("Found profile gist %s", ids[0])
                return ids[0]
        else:
            kind = classify_failure(self._output(result))
            if kind != FailureKind.NOT_FOUND:
                self._fail(result, "look up the profile gist")

        self._collection_id = self._create_collection()
        return self._collection_id

    def _create_collection(self) -> str:
        logger.info("Creating new secret gist for profile storage")
        with tempfile.TemporaryDirectory(
            prefix="claude-profiles-", ignore_cleanup_errors=True
        ) as tmp:
            readme = Path(tmp) / README_NAME
            readme.write_text(README_CONTENT, encoding="utf-8")
            result = self._gh(
                ["gist", "create", str(readme), "--desc", self.config.collection_description]
            )

        text = self._output(result)
        match = GIST_URL_PATTERN.search(text)
        if result.returncode != 0 and not match:
            self._fail(result, "create the profile gist")
        if match:
            gist_id = match.group(0).rstrip("/").split("/")[-1]
        else:
            gist_id = text.strip().rstrip("/").split("/")[-1]
        if not gist_id:
            raise RemoteStoreError(
                "Could not determine the new gist's id", detail=text
            )
        logger.info("Gist created: %s", gist_id)
        return gist_id

    def _fetch(self, collection_id: str) -> dict:
        result = self._gh(["api", f"/gists/{collection_id}"])
        if result.returncode != 0:
            text = self._output(result)
            if classify_failure(text) == FailureKind.NOT_FOUND:
                # The collection itself is gone, so nothing is available.
                self._collection_id = None
                raise NotFoundError(
                    f"Profile gist {collection_id} not found",
                    available=[],
                    detail=text,
                    hints=["The gist may have been deleted on GitHub",
                           "Run --store to create a new one"],
                )
            self._fail(result, "read the profile gist")
        try:
            return json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise RemoteStoreError(
                "GitHub returned an unreadable gist response", detail=str(exc)
            ) from exc

    def list_profiles(self, collection_id: str) -> list[str]:
        files = self._fetch(collection_id).get("files") or {}
        return self._profile_names(list(files))

    def upload(self, collection_id: str, profile: str, data: bytes) -> None:
        blob = self.config.blob_name(profile)
        with tempfile.TemporaryDirectory(
            prefix="claude-profile-", ignore_cleanup_errors=True
        ) as tmp:
            blob_path = Path(tmp) / blob
            blob_path.write_text(encode_blob(data), encoding="ascii")
            result = self._gh(["gist", "edit", collection_id, "--add", str(blob_path)])

        if result.returncode != 0 and "Added" not in self._output(result):
            self._fail(result, "upload profile")
        logger.debug("Uploaded %s (%d bytes before encoding)", blob, len(data))

    def download(self, collection_id: str, profile: str) -> bytes:
        files = self._fetch(collection_id).get("files") or {}
        blob = self.config.blob_name(profile)
        file_data = files.get(blob)
        if not file_data:
            raise NotFoundError(
                f"Profile '{profile}' not found",
                available=self._profile_names(list(files)),
            )

        if file_data.get("truncated"):
            logger.info(
                "Profile is large (%d KB), downloading from raw URL",
                round((file_data.get("size") or 0) / 1024),
            )
            try:
                resp = self._http_get(file_data["raw_url"], timeout=120)
                resp.raise_for_status()
            except requests.RequestException as exc:
                raise TransientRemoteError(
                    f"Failed to download profile '{profile}' from raw URL",
                    kind=FailureKind.NETWORK, detail=str(exc),
                    hints=["Please check your internet connection and try again"],
                ) from exc
            text = resp.text
        else:
            text = file_data.get("content") or ""

        return decode_blob(text)

    def delete(self, collection_id: str, profile: str) -> None:
        files = self._fetch(collection_id).get("files") or {}
        blob = self.config.blob_name(profile)
        if blob not in files:
            raise NotFoundError(
                f"Profile '{profile}' not found",
                available=self._profile_names(list(files)),
            )
        payload = json.dumps({"files": {blob: None}})
        result = self._gh(
            ["api", f"/gists/{collection_id}", "--method", "PATCH", "--input", "-"],
            input=payload,
        )
        if result.returncode != 0:
            self._fail(result, "delete profile", available=self._profile_names(list(files)))


class LocalStore(ProfileStore):
    """Profiles stored as files in a local directory."""

    def __init__(self, config: ProfilesConfig, root: Optional[Path] = None):
        super().__init__(config)
        self.root = (
            root
            or config.local_store_path
            or config.home_path / ".local" / "share" / "claude-profiles"
        ).expanduser()

    @property
    def name(self) -> str:
        return "local"

    def available(self) -> bool:
        return self.root.exists() or self.root.parent.exists()

    def find_or_create_collection(self) -> str:
        self.root.mkdir(parents=True, exist_ok=True)
        readme = self.root / README_NAME
        if not readme.exists():
            readme.write_text(README_CONTENT, encoding="utf-8")
            logger.info("Created local profile store: %s", self.root)
        return str(self.root)

    def list_profiles(self, collection_id: str) -> list[str]:
        root = Path(collection_id)
        if not root.is_dir():
            return []
        return self._profile_names([p.name for p in root.iterdir() if p.is_file()])

    def upload(self, collection_id: str, profile: str, data: bytes) -> None:
        root = Path(collection_id)
        target = root / self.config.blob_name(profile)
        staging = target.with_name(target.name + ".tmp")
        staging.write_text(encode_blob(data), encoding="ascii")
        staging.replace(target)
        logger.debug("Stored %s in %s", target.name, root)

    def download(self, collection_id: str, profile: str) -> bytes:
        target = Path(collection_id) / self.config.blob_name(profile)
        if not target.is_file():
            raise NotFoundError(
                f"Profile '{profile}' not found",
                available=self.list_profiles(collection_id),
            )
        return decode_blob(target.read_text(encoding="ascii"))

    def delete(self, collection_id: str, profile: str) -> None:
        target = Path(collection_id) / self.config.blob_name(profile)
        if not target.is_file():
            raise NotFoundError(
                f"Profile '{profile}' not found",
                available=self.list_profiles(collection_id),
            )
        target.unlink()


def create_store(config: ProfilesConfig, runner: Optional[Runner] = None) -> ProfileStore:
    """Factory for the configured store.

    Raises:
        ValueError: If the backend is not supported.
    """
    if config.backend == StoreBackend.GIST:
        return GistStore(config, runner=runner)
    if config.backend == StoreBackend.LOCAL:
        return LocalStore(config)
    raise ValueError(f"Unsupported backend: {config.backend}")
