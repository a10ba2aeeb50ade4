"""
Credential bridge -- OAuth records across platforms.

macOS keeps Claude credentials in the Keychain; Linux keeps them
in ~/.claude/.credentials.json. Both now use the wrapped shape:

    {"claudeAiOauth": {"accessToken": ..., "refreshToken": ...,
                       "expiresAt": ..., "scopes": [...],
                       "subscriptionType": ...}}

Older Linux installs wrote a flat snake_case record instead. The
bridge reads and writes either store and converts flat records to
the wrapped shape on the way in.
"""

from __future__ import annotations

import getpass
import json
import logging
import os
import sys
from typing import Any, Optional

import keyring
from keyring.errors import KeyringError

from .config import ProfilesConfig
from .models import CredentialShape, Platform

logger = logging.getLogger("claude_profiles.credentials")

WRAPPER_KEY = "claudeAiOauth"
WRAPPED_FIELDS = ("accessToken", "refreshToken", "expiresAt", "scopes", "subscriptionType")
FLAT_FIELDS = ("access_token", "refresh_token", "expiry_date", "scopes", "subscriptionType")
DEFAULT_SCOPES = ["user:inference"]
DEFAULT_SUBSCRIPTION = "max"


def current_platform() -> Platform:
    """Detect the running platform's credential storage."""
    return Platform.DARWIN if sys.platform == "darwin" else Platform.LINUX


def detect_shape(record: Any) -> CredentialShape:
    """Classify a credential record by the fields it carries."""
    if not isinstance(record, dict):
        return CredentialShape.UNKNOWN
    if isinstance(record.get(WRAPPER_KEY), dict):
        return CredentialShape.WRAPPED
    if "access_token" in record:
        return CredentialShape.FLAT_LEGACY
    if "accessToken" in record:
        return CredentialShape.BARE
    return CredentialShape.UNKNOWN


def convert(
    record: dict,
    target_platform: Platform,
    default_scopes: Optional[list[str]] = None,
    default_subscription: str = DEFAULT_SUBSCRIPTION,
) -> dict:
    """Convert a record to the target platform's canonical shape.

    Both platforms are canonical in the wrapped shape, so only flat
    and bare records change; wrapped and unknown records pass through.
    Converting an already converted record is a no-op.
    """
    shape = detect_shape(record)
    if shape == CredentialShape.FLAT_LEGACY:
        return {
            WRAPPER_KEY: {
                "accessToken": record.get("access_token"),
                "refreshToken": record.get("refresh_token"),
                "expiresAt": record.get("expiry_date") or record.get("expiresAt"),
                "scopes": record.get("scopes") or list(default_scopes or DEFAULT_SCOPES),
                "subscriptionType": record.get("subscriptionType") or default_subscription,
            }
        }
    if shape == CredentialShape.BARE:
        return {WRAPPER_KEY: dict(record)}
    return record


def oauth_block(record: Any) -> Optional[dict]:
    """Return the wrapped OAuth block of a record, resolving flat shapes."""
    shape = detect_shape(record)
    if shape == CredentialShape.UNKNOWN:
        return None
    return convert(record, Platform.LINUX)[WRAPPER_KEY]


def is_usable(record: Any) -> bool:
    """A record is usable when both tokens are non-empty."""
    oauth = oauth_block(record)
    return bool(oauth and oauth.get("accessToken") and oauth.get("refreshToken"))


def describe_fields(record: dict) -> tuple[list[str], list[str]]:
    """List present and missing fields of a record in its own naming.

    Returns:
        (present, missing) field names; wrapped fields are prefixed
        with the wrapper key.
    """
    shape = detect_shape(record)
    if shape == CredentialShape.WRAPPED:
        oauth = record[WRAPPER_KEY]
        names = [(f"{WRAPPER_KEY}.{f}", oauth.get(f)) for f in WRAPPED_FIELDS]
    elif shape == CredentialShape.FLAT_LEGACY:
        names = [(f, record.get(f)) for f in FLAT_FIELDS]
    elif shape == CredentialShape.BARE:
        names = [(f, record.get(f)) for f in WRAPPED_FIELDS]
    elif isinstance(record, dict):
        return sorted(record.keys()), []
    else:
        return [], []
    present = [n for n, v in names if v is not None]
    missing = [n for n, v in names if v is None]
    return present, missing


class CredentialBridge:
    """Reads and writes the platform credential store.

    Args:
        config: Profiles configuration (paths, Keychain service name).
        platform: Platform to route to. Defaults to the running one.
        keyring_backend: Module or object exposing get_password and
            set_password. Defaults to the ``keyring`` package.
    """

    def __init__(
        self,
        config: ProfilesConfig,
        platform: Optional[Platform] = None,
        keyring_backend: Any = keyring,
    ):
        self.config = config
        self.platform = platform or current_platform()
        self._keyring = keyring_backend

    @property
    def _account(self) -> str:
        return os.environ.get("USER") or getpass.getuser()

    def convert(self, record: dict, target_platform: Optional[Platform] = None) -> dict:
        return convert(
            record,
            target_platform or self.platform,
            default_scopes=[self.config.default_scope],
            default_subscription=self.config.default_subscription,
        )

    def read(self, platform: Optional[Platform] = None) -> Optional[dict]:
        """Read the stored credential record.

        Returns:
            The record exactly as stored, or None if absent or unreadable.
        """
        target = platform or self.platform
        if target.has_native_store:
            try:
                raw = self._keyring.get_password(self.config.keychain_service, self._account)
            except KeyringError as exc:
                logger.debug("Keychain read failed: %s", exc)
                return None
        else:
            path = self.config.credentials_path()
            if not path.is_file():
                return None
            try:
                raw = path.read_text(encoding="utf-8")
            except OSError as exc:
                logger.debug("Could not read %s: %s", path, exc)
                return None

        if not raw:
            return None
        try:
            data = json.loads(raw.strip())
        except json.JSONDecodeError as exc:
            logger.debug("Stored credentials are not valid JSON: %s", exc)
            return None
        return data if isinstance(data, dict) else None

    def write(self, record: dict, platform: Optional[Platform] = None) -> bool:
        """Store a credential record in the platform's canonical shape.

        Returns:
            True on success. Failures are logged, never raised.
        """
        target = platform or self.platform
        try:
            data = json.dumps(self.convert(record, target))
        except (TypeError, ValueError) as exc:
            logger.debug("Credential record is not serializable: %s", exc)
            return False

        if target.has_native_store:
            try:
                self._keyring.set_password(self.config.keychain_service, self._account, data)
                return True
            except KeyringError as exc:
                logger.debug("Keychain write failed: %s", exc)
                return False

        path = self.config.credentials_path()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps(json.loads(data), indent=2), encoding="utf-8"
            )
            os.chmod(path, 0o600)
            return True
        except OSError as exc:
            logger.debug("Could not write %s: %s", path, exc)
            return False
