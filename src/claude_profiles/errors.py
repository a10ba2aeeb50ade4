"""
Error taxonomy for the profile engine.

Every failure the engine can surface is one of these classes.
The CLI catches ProfileError at the top and turns it into a
non-zero exit with the message, hints and diagnostics attached.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import AuthStatus, VerificationIssue


class ProfileError(Exception):
    """Base class for all profile engine failures.

    Args:
        message: Human-readable summary.
        hints: Remediation suggestions, one per line.
    """

    def __init__(self, message: str, hints: Optional[list[str]] = None):
        super().__init__(message)
        self.message = message
        self.hints = list(hints or [])


class ValidationError(ProfileError):
    """Bad profile name or missing essential local files."""


class IncompleteSourceError(ValidationError):
    """No configured source path yielded any file to back up."""


class RemoteStoreError(ProfileError):
    """A remote store call failed.

    Attributes:
        kind: FailureKind value the adapter classified the failure as.
        detail: Raw diagnostic output, kept for verbose logging only.
    """

    def __init__(
        self,
        message: str,
        kind: str = "generic",
        detail: str = "",
        hints: Optional[list[str]] = None,
    ):
        super().__init__(message, hints)
        self.kind = kind
        self.detail = detail


class TransientRemoteError(RemoteStoreError):
    """Rate limit or network trouble. Wait and retry."""


class AuthError(RemoteStoreError):
    """Missing scope, wrong account, or not logged in."""

    def __init__(
        self,
        message: str,
        kind: str = "auth",
        detail: str = "",
        hints: Optional[list[str]] = None,
        auth_status: Optional["AuthStatus"] = None,
    ):
        super().__init__(message, kind=kind, detail=detail, hints=hints)
        self.auth_status = auth_status


class ConflictError(AuthError):
    """HTTP 409: the collection cannot be updated by this account."""


class NotFoundError(RemoteStoreError):
    """The requested profile does not exist remotely."""

    def __init__(
        self,
        message: str,
        available: Optional[list[str]] = None,
        detail: str = "",
        hints: Optional[list[str]] = None,
    ):
        super().__init__(message, kind="not_found", detail=detail, hints=hints)
        self.available = list(available or [])


class SizeExceededError(ProfileError):
    """The packaged snapshot is too large for the remote store.

    Attributes:
        raw_size: Packaged archive size in bytes.
        encoded_size: Estimated (or actual) transport-encoded size.
        limit: The ceiling that was breached, in bytes.
        subtree_excluded: Whether the optional subtree was already left out.
    """

    def __init__(
        self,
        message: str,
        raw_size: int,
        encoded_size: int,
        limit: int,
        subtree_excluded: bool,
        hints: Optional[list[str]] = None,
    ):
        super().__init__(message, hints)
        self.raw_size = raw_size
        self.encoded_size = encoded_size
        self.limit = limit
        self.subtree_excluded = subtree_excluded


class IntegrityError(ProfileError):
    """Verification of a local or downloaded snapshot failed."""

    def __init__(
        self,
        message: str,
        issues: Optional[list["VerificationIssue"]] = None,
        hints: Optional[list[str]] = None,
    ):
        super().__init__(message, hints)
        self.issues = list(issues or [])


class ExtractionError(IntegrityError):
    """A downloaded archive could not be decoded or unpacked."""
