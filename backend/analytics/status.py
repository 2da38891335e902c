"""Free-text status classification.

Tracker statuses are configurable per project, so they are never treated as
an enum. ``classify_status`` maps a label to a set of independent flags once;
callers reuse the flags instead of re-matching substrings.
"""

from dataclasses import dataclass
from functools import lru_cache

from analytics.config import (
    CANCELLED_STATUSES,
    CLOSED_STATUSES,
    DEV_STATUSES,
    QA_READY_STATUSES,
    QA_STATUSES,
)


def matches_any(value: str, keywords) -> bool:
    """Case-insensitive substring match of ``value`` against any keyword."""
    text = (value or "").lower()
    if not text:
        return False
    return any(keyword in text for keyword in keywords)


@dataclass(frozen=True)
class StatusFlags:
    is_dev: bool = False
    is_qa_active: bool = False
    is_qa_ready: bool = False
    is_closed: bool = False
    is_cancelled: bool = False

    @property
    def is_strict_closed(self) -> bool:
        """Delivered: closed or done, and not a cancellation."""
        return self.is_closed and not self.is_cancelled

    @property
    def is_final_phase(self) -> bool:
        """Release-ready or delivered, excluding cancellations."""
        return (self.is_qa_ready or self.is_closed) and not self.is_cancelled


@lru_cache(maxsize=512)
def classify_status(label: str) -> StatusFlags:
    return StatusFlags(
        is_dev=matches_any(label, DEV_STATUSES),
        is_qa_active=matches_any(label, QA_STATUSES),
        is_qa_ready=matches_any(label, QA_READY_STATUSES),
        is_closed=matches_any(label, CLOSED_STATUSES),
        is_cancelled=matches_any(label, CANCELLED_STATUSES),
    )


def is_strict_closed(label: str) -> bool:
    return classify_status(label or "").is_strict_closed
