"""Content-hash change detection for regulatory sources.

Pure helpers used by MonitoringService:
- frequency_window   — check interval for hourly / daily / weekly sources
- content_hash       — SHA-256 hex digest of fetched content
- detect_change      — compare fetched content against the stored hash

Due-source selection and failure counting run as SQL in
RegulatorySourceRepository (list_due, record_failure).
"""

import hashlib
from datetime import datetime, timedelta
from typing import Any

from aumos_compliance_learning.core.domain import DetectedChange

SNIPPET_LENGTH = 500
SUMMARY_LENGTH = 1000
DEFAULT_FAILURE_THRESHOLD = 5

_FREQUENCY_WINDOWS: dict[str, timedelta] = {
    "hourly": timedelta(hours=1),
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
}


def frequency_window(check_frequency: str) -> timedelta:
    """Return the check interval for a frequency, defaulting to daily."""
    return _FREQUENCY_WINDOWS.get(check_frequency, _FREQUENCY_WINDOWS["daily"])


def content_hash(content: str) -> str:
    """SHA-256 hex digest of the content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def detect_change(source: Any, content: str, now: datetime) -> tuple[str, DetectedChange | None]:
    """Compare fetched content against the source's last stored hash.

    The first successful check only establishes the baseline hash.

    Args:
        source: The RegulatorySource that was fetched.
        content: The fetched content.
        now: Detection timestamp.

    Returns:
        Tuple of (new content hash, DetectedChange or None).
    """
    new_hash = content_hash(content)
    previous = source.last_content_hash
    if previous is None or previous == new_hash:
        return new_hash, None
    change = DetectedChange(
        source_id=source.id,
        source_name=source.name,
        url=source.url,
        change_type="modified_content",
        detected_at=now,
        content_hash=new_hash,
        previous_hash=previous,
        snippet=content[:SNIPPET_LENGTH],
    )
    return new_hash, change


def change_summary(source_name: str) -> str:
    """Title used for the update created from a detected change."""
    return f"Content change detected at {source_name}"
