"""
Snapshot verification -- is this state worth storing or restoring?

verify_local runs before a store or watch: the essential local files
must exist and the credential file, if it matters, must hold usable
tokens. verify_packaged runs on an unpacked download: it accepts
either the Keychain export or the credential file, so a profile
saved on one platform restores on the other.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from .config import ProfilesConfig
from .credentials import (
    WRAPPER_KEY,
    CredentialBridge,
    describe_fields,
    detect_shape,
    is_usable,
)
from .log import LogContext
from .models import CredentialShape, VerificationResult

logger = logging.getLogger("claude_profiles.verify")


def _check_credential_file(
    path: Path,
    label: str,
    result: VerificationResult,
    required: bool,
    wrapped_only: bool = False,
    log: Optional[LogContext] = None,
) -> bool:
    """Validate one credential file and record issues.

    Args:
        path: File to read.
        label: Name used in issue messages.
        result: Result to add issues to.
        required: Problems are errors when True, warnings otherwise.
        wrapped_only: Only the wrapped shape is acceptable.

    Returns:
        True if the file holds a usable record.
    """
    add = result.add_error if required else result.add_warning
    try:
        record = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        add(f"{label} is not valid JSON: {exc}")
        return False

    shape = detect_shape(record)
    if wrapped_only and shape != CredentialShape.WRAPPED:
        add(f"{label} missing {WRAPPER_KEY} wrapper object")
        return False
    if shape not in (CredentialShape.WRAPPED, CredentialShape.FLAT_LEGACY):
        add(f"{label} has unrecognized format")
        return False

    present, missing = describe_fields(record)
    fmt = "modern" if shape == CredentialShape.WRAPPED else "legacy (will be converted on restore)"
    if log:
        log.debug(f"{label} format: {fmt}")
        log.debug(f"  Present fields: {', '.join(present)}")

    if not is_usable(record):
        add(f"{label} missing required tokens: {', '.join(missing) or 'empty values'}")
        return False
    if missing:
        result.add_warning(
            f"{label}:\n   Present: {', '.join(present)}\n   Missing: {', '.join(missing)}"
        )
    return True


def verify_local(
    config: ProfilesConfig,
    bridge: CredentialBridge,
    log: Optional[LogContext] = None,
) -> VerificationResult:
    """Check the local state before creating a profile.

    On the native-store platform the file credential check is optional
    and skipped entirely when the Keychain already holds a usable record.
    """
    result = VerificationResult()
    native = bridge.platform.has_native_store

    if log:
        log.info("Verifying local Claude configuration...")

    keychain_ok = False
    if native:
        record = bridge.read()
        keychain_ok = record is not None and is_usable(record)
        if keychain_ok:
            result.found.append(config.native_export_name)
            if log:
                log.info("   Claude Keychain credentials: OK")

    if not keychain_ok:
        cred_path = config.credentials_path()
        required = not native
        if cred_path.is_file():
            result.found.append(config.credentials_file)
            if log:
                log.info("   Claude credentials (file): OK")
            _check_credential_file(
                cred_path, "Credentials", result, required=required, log=log
            )
        elif required:
            result.add_error("Missing required file: Claude credentials (file)")
        else:
            result.add_warning("Missing: Claude credentials (file) (optional)")

    for check in config.checks:
        path = config.home_path / check.archive_name
        present = path.is_dir() if check.directory else path.is_file()
        if present:
            result.found.append(check.archive_name)
            if log:
                log.info(f"   {check.description}: OK")
        elif check.required:
            result.add_error(f"Missing required file: {check.description}")
        else:
            result.add_warning(f"Missing: {check.description} (optional)")

    logger.debug("Local verification: valid=%s issues=%d", result.valid, len(result.issues))
    return result


def verify_packaged(
    root: Path,
    config: ProfilesConfig,
    log: Optional[LogContext] = None,
) -> VerificationResult:
    """Check an unpacked snapshot before restoring it.

    Either credential export satisfies the requirement. Every export
    that is present must parse and carry both tokens.
    """
    result = VerificationResult()

    native_export = root / config.native_export_name
    generic_export = root / config.credentials_file
    has_native = native_export.is_file()
    has_generic = generic_export.is_file()

    if not has_native and not has_generic:
        result.add_error(
            f"Missing: Claude credentials (no {Path(config.credentials_file).name} "
            f"or {config.native_export_name} found)"
        )
    if has_generic:
        result.found.append(config.credentials_file)
        _check_credential_file(
            generic_export,
            f"Linux credentials ({Path(config.credentials_file).name})",
            result, required=True, log=log,
        )
    if has_native:
        result.found.append(config.native_export_name)
        _check_credential_file(
            native_export,
            f"macOS credentials ({config.native_export_name})",
            result, required=True, wrapped_only=True, log=log,
        )

    for check in config.checks:
        path = root / check.archive_name
        if check.directory:
            present = path.is_dir()
        else:
            present = path.is_file()
        if present:
            result.found.append(check.archive_name)
        elif check.required:
            result.add_error(f"Missing: {check.description}")
        else:
            result.add_warning(f"Missing: {check.description} (optional)")

    logger.debug("Packaged verification: valid=%s issues=%d", result.valid, len(result.issues))
    return result
