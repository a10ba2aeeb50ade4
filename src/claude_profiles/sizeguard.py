"""
Size guard -- will this snapshot fit in a gist?

Gist content is uploaded base64 encoded, which inflates it by
about a third. Empirically a 38 MB zip (51 MB encoded) fails with
HTTP 422, so every ceiling here is compared against the encoded
size and the check runs before any network call.
"""

from __future__ import annotations

import math
from typing import Optional

from .config import SizeLimits
from .errors import SizeExceededError
from .models import SizeReport


def format_bytes(size: int) -> str:
    """Render a byte count as B/KB/MB/GB with two decimals at most."""
    if size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    index = 0
    while size >= 1024 ** (index + 1) and index < len(units) - 1:
        index += 1
    value = round(size / (1024 ** index), 2)
    return f"{value:g} {units[index]}"


def classify(
    raw_size: int,
    already_encoded: bool = False,
    limits: Optional[SizeLimits] = None,
) -> SizeReport:
    """Classify a packaged size against the store ceilings.

    Args:
        raw_size: Size in bytes of the packaged archive.
        already_encoded: ``raw_size`` is already the encoded size.
        limits: Ceilings to apply. Defaults to the gist limits.

    Returns:
        SizeReport.
    """
    limits = limits or SizeLimits()
    upload_size = raw_size if already_encoded else math.ceil(raw_size * limits.encoding_overhead)
    return SizeReport(
        raw_size=raw_size,
        upload_size=upload_size,
        within_api_limit=upload_size <= limits.api_limit,
        is_large_warning=upload_size > limits.warning,
        exceeds_web_limit=upload_size > limits.web_limit,
        exceeds_api_limit=upload_size > limits.api_limit,
    )


def size_error(
    report: SizeReport,
    subtree_excluded: bool,
    limits: Optional[SizeLimits] = None,
    subtree_name: str = "projects",
    prefix: str = "Profile too large",
) -> SizeExceededError:
    """Build the SizeExceededError for a report, with the right remediation."""
    limits = limits or SizeLimits()
    message = (
        f"{prefix} ({format_bytes(report.raw_size)} compressed, "
        f"{format_bytes(report.upload_size)} when base64 encoded) - "
        f"GitHub Gist limit is {format_bytes(limits.api_limit)}"
    )
    if subtree_excluded:
        hints = ["Consider manually cleaning up ~/.claude/ directory"]
    else:
        hints = [
            f"Consider using --skip-projects option to exclude the {subtree_name} folder"
        ]
    return SizeExceededError(
        message,
        raw_size=report.raw_size,
        encoded_size=report.upload_size,
        limit=limits.api_limit,
        subtree_excluded=subtree_excluded,
        hints=hints,
    )


def ensure_uploadable(
    report: SizeReport,
    subtree_excluded: bool,
    limits: Optional[SizeLimits] = None,
    subtree_name: str = "projects",
) -> SizeReport:
    """Raise SizeExceededError unless the report is within the API limit."""
    if report.exceeds_api_limit:
        raise size_error(report, subtree_excluded, limits, subtree_name)
    return report
