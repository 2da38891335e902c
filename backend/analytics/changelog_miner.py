"""Cycle-time and bounce-back mining from ticket status history."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional

from analytics.business_calendar import business_hours_between
from analytics.config import (
    BOUNCE_FROM_STATUSES,
    CHANGELOG_MAX_WORKERS,
    DELIVERY_END_STATUSES,
    DEV_STATUSES,
)
from analytics.models import parse_date
from analytics.status import matches_any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleWindow:
    dev_start: datetime
    end_at: datetime
    work_hours: int
    assignee_at_start: Optional[str] = None


@dataclass
class TimingResult:
    """Outcome of mining one ticket: timing data or the fetch error."""

    key: str
    window: Optional[CycleWindow] = None
    bounce_backs: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class DeliveryBatch:
    results: dict = field(default_factory=dict)

    @property
    def windows(self) -> dict:
        """Ticket key -> CycleWindow for tickets with a complete cycle."""
        return {
            key: result.window
            for key, result in self.results.items()
            if result.ok and result.window is not None
        }

    @property
    def failures(self) -> int:
        return sum(1 for result in self.results.values() if not result.ok)


def _chronological(events: list) -> list:
    # Timestamps become naive UTC so aware and naive sources sort together.
    # sorted() is stable, so events sharing a timestamp keep source order.
    normalized = []
    for event in events:
        timestamp = parse_date(event.timestamp)
        if timestamp is None:
            continue
        if timestamp is not event.timestamp:
            event = replace(event, timestamp=timestamp)
        normalized.append(event)
    return sorted(normalized, key=lambda event: event.timestamp)


def mine_cycle_window(issue_key: str, events: list,
                      dev_statuses=DEV_STATUSES,
                      end_statuses=DELIVERY_END_STATUSES) -> Optional[CycleWindow]:
    """Find the first dev entry and the first later end entry.

    The assignee at dev start is whoever held the ticket when work began,
    even if it was reassigned afterwards. Returns None unless both ends of the
    window exist.
    """
    ordered = _chronological(events)

    # Before any reassignment the holder is the "from" side of the first one
    current_assignee = None
    for event in ordered:
        if event.field == "assignee":
            current_assignee = event.from_value or None
            break

    dev_start = None
    assignee_at_start = None
    end_at = None

    for event in ordered:
        if event.field == "assignee":
            current_assignee = event.to_value or None
            continue
        if event.field != "status":
            continue

        target = event.to_value or ""
        if dev_start is None:
            if matches_any(target, dev_statuses):
                dev_start = event.timestamp
                assignee_at_start = current_assignee
        elif matches_any(target, end_statuses):
            end_at = event.timestamp
            break

    if dev_start is None or end_at is None:
        logger.debug(f"No complete cycle window for {issue_key}")
        return None

    return CycleWindow(
        dev_start=dev_start,
        end_at=end_at,
        work_hours=business_hours_between(dev_start, end_at),
        assignee_at_start=assignee_at_start,
    )


def count_bounce_backs(events: list,
                       qa_statuses=BOUNCE_FROM_STATUSES,
                       dev_statuses=DEV_STATUSES) -> int:
    """Count QA -> development regressions in a ticket's history."""
    count = 0
    for event in _chronological(events):
        if event.field != "status":
            continue
        if matches_any(event.from_value, qa_statuses) and matches_any(event.to_value, dev_statuses):
            count += 1
    return count


def mine_changelogs(issue_keys, provider,
                    dev_statuses=DEV_STATUSES,
                    end_statuses=DELIVERY_END_STATUSES,
                    qa_statuses=BOUNCE_FROM_STATUSES,
                    max_workers: int = CHANGELOG_MAX_WORKERS) -> DeliveryBatch:
    """Fetch and mine changelogs for many tickets in parallel.

    ``provider`` must expose ``get_changelog(issue_key)``. A failure for one
    ticket (network, timeout, unusable history) is logged and recorded on
    that ticket's result; the rest of the batch carries on.
    """
    keys = list(dict.fromkeys(key for key in issue_keys if key))
    batch = DeliveryBatch()
    if not keys:
        return batch

    def mine_one(issue_key):
        try:
            events = provider.get_changelog(issue_key)
            return TimingResult(
                key=issue_key,
                window=mine_cycle_window(issue_key, events, dev_statuses, end_statuses),
                bounce_backs=count_bounce_backs(events, qa_statuses, dev_statuses),
            )
        except Exception as e:
            logger.warning(f"Changelog mining failed for {issue_key}: {e}")
            return TimingResult(key=issue_key, error=str(e) or type(e).__name__)

    workers = max(1, min(max_workers, len(keys)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {executor.submit(mine_one, key): key for key in keys}
        for future in as_completed(futures):
            result = future.result()
            batch.results[result.key] = result

    if batch.failures:
        logger.warning(f"{batch.failures} of {len(keys)} changelog fetches failed")

    return batch
