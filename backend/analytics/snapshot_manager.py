"""Point-in-time snapshots of closed sprints."""

import json
import logging
from typing import Optional

from analytics.changelog_miner import mine_changelogs
from analytics.config import CHANGELOG_MAX_WORKERS, CLOSED_SPRINTS_PER_TEAM_LIMIT
from analytics.metrics_aggregator import assignee_rollup, delivery_entries, percent, resolve_totals
from analytics.models import SprintSnapshot, format_date, utcnow
from analytics.status import classify_status
from analytics.team_scoping import limit_per_team, team_key_of

logger = logging.getLogger(__name__)


def _dump(value) -> str:
    # Stable key order keeps repeated writes of the same data byte-identical
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _finalize_totals(totals: dict, override: Optional[dict]) -> dict:
    """Merge caller overrides and derive scope and success from the result."""
    merged = dict(totals)
    if override:
        merged.update(override)

    if not override or "scopeTickets" not in override:
        merged["scopeTickets"] = max(
            0,
            (merged.get("plannedTickets") or 0)
            + (merged.get("addedTickets") or 0)
            - (merged.get("removedTickets") or 0),
        )
    if not override or "successPercent" not in override:
        merged["successPercent"] = percent(
            merged.get("finishedTickets") or 0,
            merged["scopeTickets"] or merged.get("totalTickets") or 0,
        )
    return merged


class SnapshotManager:
    """Creates or refreshes the snapshot of a sprint when it closes.

    Closure events may be delivered more than once; every call recomputes the
    snapshot from current data and overwrites the stored one, so repeated
    calls on unchanged data converge on the same content.
    """

    def __init__(self, repository, store, max_workers: int = CHANGELOG_MAX_WORKERS, clock=utcnow):
        self.repository = repository
        self.store = store
        self.max_workers = max_workers
        self._clock = clock

    def _compute_totals(self, sprint) -> dict:
        resolved = resolve_totals(sprint)
        tickets = sprint.tickets
        flags = [classify_status(t.status or "") for t in tickets]

        return {
            "totalTickets": resolved["totalTickets"],
            "plannedTickets": resolved["plannedTickets"],
            "addedTickets": resolved["addedTickets"],
            "removedTickets": resolved["removedTickets"],
            "closedTickets": resolved["closedTickets"],
            "finishedTickets": resolved["closedTickets"],
            "qaDoneTickets": sum(
                1 for f in flags if f.is_qa_ready and not f.is_strict_closed and not f.is_cancelled
            ),
            "bounceBackTickets": sum(1 for t in tickets if t.bounce_back_count > 0),
            "storyPointsTotal": round(resolved["storyPointsTotal"], 1),
            "storyPointsClosed": round(
                sum(t.points for t, f in zip(tickets, flags) if f.is_strict_closed), 1
            ),
        }

    def _compute_timings(self, sprint, changelog_provider) -> tuple:
        """Ticket times, delivery times, worked count and mined bounce-backs.

        A ticket whose changelog cannot be mined simply has no timing row and
        no mined bounce-back count.
        """
        tickets = {t.key: t for t in sprint.tickets if t.key}
        batch = mine_changelogs(tickets.keys(), changelog_provider, max_workers=self.max_workers)
        if batch.failures:
            logger.warning(
                f"Snapshot for sprint {sprint.id}: {batch.failures} changelog fetches failed"
            )

        ticket_times = []
        delivery_rows = []
        worked = 0
        for key, window in sorted(batch.windows.items()):
            ticket = tickets[key]
            assignee = window.assignee_at_start or ticket.assignee_name
            ticket_times.append({
                "key": key,
                "assignee": assignee,
                "storyPoints": ticket.story_points,
                "devStart": format_date(window.dev_start),
                "endAt": format_date(window.end_at),
                "workHours": window.work_hours,
                "bounceBacks": batch.results[key].bounce_backs,
            })
            delivery_rows.append({
                "assignee": assignee,
                "workHours": window.work_hours,
                "carryover": ticket.carryover_count > 0,
            })
            if (
                sprint.start_date is not None
                and sprint.end_date is not None
                and window.dev_start >= sprint.start_date
                and window.end_at <= sprint.end_date
            ):
                worked += 1

        bounce_backs = {
            key: result.bounce_backs for key, result in batch.results.items() if result.ok
        }
        return ticket_times, delivery_entries(delivery_rows), worked, bounce_backs

    def ensure_snapshot(self, sprint_id, changelog_provider=None,
                        totals_override: Optional[dict] = None) -> Optional[SprintSnapshot]:
        """Create or update the snapshot for ``sprint_id``.

        Timing tables are only recomputed when a changelog provider is given;
        otherwise any previously stored tables are kept. Returns None for an
        unknown sprint.
        """
        sprint = self.repository.get_sprint(sprint_id)
        if sprint is None:
            logger.warning(f"Cannot snapshot unknown sprint {sprint_id}")
            return None

        existing = self.store.get(sprint.id)
        totals = self._compute_totals(sprint)
        tickets = sorted((t.to_dict() for t in sprint.tickets), key=lambda t: t["key"])
        assignees = assignee_rollup(sprint.tickets)

        if changelog_provider is not None:
            ticket_times, delivery_times, worked, bounce_backs = self._compute_timings(
                sprint, changelog_provider
            )
            totals["workedTickets"] = worked
            # Mined history replaces the stored per-ticket bounce-back count
            totals["bounceBackTickets"] = sum(
                1 for t in sprint.tickets if bounce_backs.get(t.key, t.bounce_back_count) > 0
            )
            ticket_times_blob = _dump(ticket_times)
            delivery_times_blob = _dump(delivery_times)
        elif existing is not None:
            ticket_times_blob = existing.ticket_times
            delivery_times_blob = existing.delivery_times
            previous = existing.totals_dict()
            if existing.ticket_times is not None:
                for name in ("workedTickets", "bounceBackTickets"):
                    if name in previous:
                        totals[name] = previous[name]
        else:
            ticket_times_blob = None
            delivery_times_blob = None

        snapshot = SprintSnapshot(
            sprint_id=sprint.id,
            name=sprint.name,
            start_date=sprint.start_date,
            end_date=sprint.end_date,
            status=sprint.status,
            totals=_dump(_finalize_totals(totals, totals_override)),
            tickets=_dump(tickets),
            assignees=_dump(assignees),
            delivery_times=delivery_times_blob,
            ticket_times=ticket_times_blob,
        )

        if existing is not None and self._same_content(existing, snapshot):
            logger.debug(f"Snapshot for sprint {sprint.id} unchanged")
            return existing

        snapshot.updated_at = self._clock()
        action = "Updated" if existing is not None else "Created"
        logger.info(f"{action} snapshot for sprint {sprint.id} ({sprint.name})")
        return self.store.upsert(snapshot)

    @staticmethod
    def _same_content(a: SprintSnapshot, b: SprintSnapshot) -> bool:
        fields = ("name", "start_date", "end_date", "status", "totals",
                  "tickets", "assignees", "delivery_times", "ticket_times")
        return all(getattr(a, f) == getattr(b, f) for f in fields)

    def list_reports(self, limit: int = CLOSED_SPRINTS_PER_TEAM_LIMIT) -> list:
        """Most recent snapshots per team, parsed for display."""
        snapshots = limit_per_team(self.store.list_snapshots(), limit)
        reports = []
        for snapshot in snapshots:
            report = snapshot.to_report()
            report["teamKey"] = team_key_of(snapshot.name)
            reports.append(report)
        return reports
