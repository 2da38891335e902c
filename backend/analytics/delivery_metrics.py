"""Delivery metrics computation entry point."""

import copy
import logging
from datetime import datetime
from typing import Optional

from analytics import metrics_aggregator as aggregator
from analytics.cache import NullCache
from analytics.changelog_miner import mine_changelogs
from analytics.config import (
    CHANGELOG_MAX_WORKERS,
    CLOSED_SPRINTS_PER_TEAM_LIMIT,
    METRICS_CACHE_TTL_SECONDS,
    RISK_TOP_N,
)
from analytics.models import (
    CLOSED_SPRINT_STATES,
    SPRINT_ACTIVE,
    SPRINT_BACKLOG,
    utcnow,
)
from analytics.status import classify_status
from analytics.team_scoping import limit_per_team, team_key_of

logger = logging.getLogger(__name__)


class DeliveryMetricsService:
    """Builds the delivery metrics payload from sprint data.

    Collaborators are injected: a sprint repository, an optional snapshot
    store (needed for capacity), an optional changelog provider (needed for
    delivery times) and a cache for recently computed payloads.
    """

    def __init__(self, repository, snapshot_store=None, changelog_provider=None,
                 cache=None, cache_ttl: float = METRICS_CACHE_TTL_SECONDS,
                 max_workers: int = CHANGELOG_MAX_WORKERS):
        self.repository = repository
        self.snapshot_store = snapshot_store
        self.changelog_provider = changelog_provider
        self.cache = cache or NullCache()
        self.cache_ttl = cache_ttl
        self.max_workers = max_workers

    def _load_sprints(self, team_window: int) -> tuple:
        """Active, closed and backlog sprints, each limited per team."""
        active = limit_per_team(self.repository.list_sprints([SPRINT_ACTIVE]), team_window)
        closed = limit_per_team(self.repository.list_sprints(CLOSED_SPRINT_STATES), team_window)
        backlog = self.repository.list_sprints([SPRINT_BACKLOG])
        return active, closed, backlog

    def _load_snapshots(self, sprints: list) -> list:
        if self.snapshot_store is None:
            return []
        snapshots = []
        for sprint in sprints:
            snapshot = self.snapshot_store.get(sprint.id)
            if snapshot is not None:
                snapshots.append(snapshot)
        return snapshots

    def _calculate_delivery_times(self, sprints: list) -> dict:
        """Per-assignee cycle times for delivered tickets of the given sprints.

        Cycle time is attributed to whoever held the ticket when development
        started, falling back to the current assignee.
        """
        delivered = {}
        for sprint in sprints:
            for ticket in sprint.tickets:
                if classify_status(ticket.status or "").is_strict_closed:
                    delivered.setdefault(ticket.key, ticket)

        batch = mine_changelogs(
            delivered.keys(), self.changelog_provider, max_workers=self.max_workers
        )
        windows = batch.windows

        def row_for(ticket):
            window = windows.get(ticket.key)
            if window is None:
                return None
            return {
                "key": ticket.key,
                "assignee": window.assignee_at_start or ticket.assignee_name,
                "workHours": window.work_hours,
                "carryover": ticket.carryover_count > 0,
            }

        by_sprint = []
        for sprint in sprints:
            rows = [row_for(t) for t in sprint.tickets if t.key in windows]
            by_sprint.append({
                "sprintId": sprint.id,
                "sprintName": sprint.name,
                "teamKey": team_key_of(sprint.name),
                "deliveryTimes": aggregator.delivery_entries(rows),
            })

        overall_rows = [row_for(ticket) for ticket in delivered.values()]
        return {
            "deliveryTimes": aggregator.delivery_entries([r for r in overall_rows if r is not None]),
            "deliveryTimesBySprint": by_sprint,
            "deliveryFetchFailures": batch.failures,
        }

    def get_all_metrics(self, team_window: int = CLOSED_SPRINTS_PER_TEAM_LIMIT,
                        include_delivery_times: bool = False,
                        requester: Optional[str] = None,
                        now: Optional[datetime] = None) -> dict:
        """Get all metrics combined for dashboard display.

        Args:
            team_window: Number of most recent sprints kept per team
            include_delivery_times: Mine ticket changelogs for cycle times
                (expensive; ignored without a changelog provider)
            requester: Identity used to partition cached payloads
            now: Reference time; defaults to the current UTC time. Payloads
                computed for an explicit ``now`` are not cached.
        """
        include_delivery_times = bool(include_delivery_times and self.changelog_provider)
        cache_key = ("delivery-metrics", requester, team_window, include_delivery_times)
        use_cache = now is None

        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug(f"Serving cached metrics for {requester or 'anonymous'}")
                return copy.deepcopy(cached)

        now = now or utcnow()
        active, closed, backlog = self._load_sprints(team_window)
        scoped = limit_per_team(active + closed, team_window)

        payload = {
            "generatedAt": now.isoformat(),
            "teamWindow": team_window,
            "activeSprintCount": len(active),
            "activeSprints": [aggregator.sprint_metrics(sprint, now) for sprint in active],
            "riskSignals": aggregator.risk_signals(active, now, top_n=RISK_TOP_N),
            "openBugs": aggregator.bug_aging(scoped, backlog, scoped, now),
            "storyPoints": aggregator.story_point_delta(active, closed),
            "assignees": aggregator.assignee_rankings(active),
            "finishedComparison": aggregator.finished_comparison(active, closed, now),
            "capacity": aggregator.capacity(self._load_snapshots(closed)),
        }

        if include_delivery_times:
            payload.update(self._calculate_delivery_times(closed))

        if use_cache:
            self.cache.put(cache_key, copy.deepcopy(payload), self.cache_ttl)
        return payload
