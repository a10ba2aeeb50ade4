"""
Data models for the profile engine.

Pydantic models for snapshots, size reports, verification
results and authentication diagnostics, plus the small enums
shared across modules.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

PROFILE_NAME_PATTERN = re.compile(r"[a-z0-9-]+")


class Platform(str, Enum):
    """Credential storage platforms."""

    DARWIN = "darwin"
    LINUX = "linux"

    @property
    def has_native_store(self) -> bool:
        """Whether credentials live in an OS secret store (Keychain)."""
        return self is Platform.DARWIN


class CredentialShape(str, Enum):
    """Recognized JSON shapes of a stored credential record."""

    WRAPPED = "wrapped"
    FLAT_LEGACY = "flat_legacy"
    BARE = "bare"
    UNKNOWN = "unknown"


class SnapshotOptions(BaseModel):
    """Options that shape a snapshot.

    Attributes:
        exclude_subtree: Leave the bulky optional subtree (projects) out.
    """

    model_config = ConfigDict(frozen=True)

    exclude_subtree: bool = False

    def for_entry(self, entry: "SourceEntry") -> "SnapshotOptions":
        """Effective options for one source entry.

        Subtree exclusion only applies when the entry allows it.
        """
        return SnapshotOptions(
            exclude_subtree=self.exclude_subtree and entry.can_exclude_subtree
        )


class SourceEntry(BaseModel):
    """One configured backup unit.

    Attributes:
        source_path: Local path, ``~`` resolved against the profiles home.
        archive_name: Name of the entry at the archive root.
        can_exclude_subtree: Whether subtree exclusion may apply here.
    """

    source_path: str
    archive_name: str
    can_exclude_subtree: bool = False


class Snapshot(BaseModel):
    """A packaged snapshot, immutable once built."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    size_bytes: int
    fingerprint: str
    members: tuple[str, ...] = ()


class SizeReport(BaseModel):
    """Classification of a packaged snapshot against store ceilings."""

    raw_size: int
    upload_size: int
    within_api_limit: bool
    is_large_warning: bool
    exceeds_web_limit: bool
    exceeds_api_limit: bool


class IssueLevel(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class VerificationIssue(BaseModel):
    """A single finding reported by the verifier."""

    level: IssueLevel = IssueLevel.ERROR
    message: str

    def __str__(self) -> str:
        return self.message


class VerificationResult(BaseModel):
    """Outcome of a local or packaged verification.

    Attributes:
        valid: True when every required item is present and usable.
        issues: Errors and warnings found along the way.
        found: Archive-relative names of items that were present.
    """

    valid: bool = True
    issues: list[VerificationIssue] = Field(default_factory=list)
    found: list[str] = Field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.valid = False
        self.issues.append(VerificationIssue(level=IssueLevel.ERROR, message=message))

    def add_warning(self, message: str) -> None:
        self.issues.append(VerificationIssue(level=IssueLevel.WARNING, message=message))

    @property
    def errors(self) -> list[VerificationIssue]:
        return [i for i in self.issues if i.level == IssueLevel.ERROR]


class AuthStatus(BaseModel):
    """Parsed ``gh auth status`` output for error diagnostics."""

    authenticated: bool = False
    account: Optional[str] = None
    protocol: Optional[str] = None
    token: Optional[str] = None
    scopes: list[str] = Field(default_factory=list)
    has_gist_scope: bool = False
    raw_output: str = ""


class WatchState(BaseModel):
    """Mutable watch-mode bookkeeping, owned by the scheduler."""

    last_save_at: Optional[float] = None
    last_fingerprint: Optional[str] = None
    save_in_progress: bool = False
    pending_save_armed: bool = False
    save_count: int = 0


def is_valid_profile_name(name: str) -> bool:
    """Check a profile name: lowercase letters, digits, hyphens."""
    return bool(name) and PROFILE_NAME_PATTERN.fullmatch(name) is not None
