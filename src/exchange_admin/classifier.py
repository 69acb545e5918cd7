"""Inactivity classification policy.

A group is inactive when its last modification is missing or older than the
threshold date. A missing timestamp counts as inactive. Message trace events
are descriptive only and never influence the decision: the trace window is
much shorter than the inactivity threshold.
"""

from datetime import datetime, timedelta

from .models import ActivityRecord
from .normalize import as_utc


def inactivity_threshold(now: datetime, days: int) -> datetime:
    """Return the date before which a modification counts as stale."""
    return as_utc(now) - timedelta(days=days)


def classify(record: ActivityRecord, threshold_date: datetime) -> bool:
    """Decide whether a record is inactive.

    Args:
        record: Fused activity record.
        threshold_date: Modifications before this date are stale.

    Returns:
        bool: True when inactive.
    """
    if record.last_modified is None:
        return True
    return as_utc(record.last_modified) < as_utc(threshold_date)
