"""Tests for the delivery metrics service."""

from datetime import datetime
from unittest.mock import Mock

import pytest

from analytics.cache import ExpiringCache
from analytics.delivery_metrics import DeliveryMetricsService
from analytics.repository import InMemorySprintRepository
from analytics.snapshot_manager import SnapshotManager

NOW = datetime(2024, 1, 17)


@pytest.fixture
def changelog_provider(status_event):
    def get_changelog(key):
        if key == "ABC-2":
            raise ConnectionError("connection reset")
        return [
            status_event(datetime(2024, 1, 2), "In Progress", "To Do"),
            status_event(datetime(2024, 1, 4), "Done", "In Progress"),
        ]

    provider = Mock()
    provider.get_changelog.side_effect = get_changelog
    return provider


class TestGetAllMetrics:
    """Test the combined dashboard payload."""

    def test_payload_sections(self, repository, snapshot_store):
        service = DeliveryMetricsService(repository, snapshot_store=snapshot_store)

        data = service.get_all_metrics(now=NOW)

        assert data["generatedAt"] == "2024-01-17T00:00:00"
        assert data["teamWindow"] == 10
        assert data["activeSprintCount"] == 1
        assert data["activeSprints"][0]["id"] == "101"
        assert data["riskSignals"]["totalCount"] == 2
        assert data["storyPoints"]["currentTotal"] == 11.0
        assert data["storyPoints"]["previousTotal"] == 18.0
        assert data["assignees"][0]["name"] == "Alice"
        assert data["capacity"]["bySprint"] == []
        assert "deliveryTimes" not in data

    def test_finished_comparison_uses_previous_sprint(self, repository):
        data = DeliveryMetricsService(repository).get_all_metrics(now=NOW)

        comparison = data["finishedComparison"][0]
        assert comparison["previousSprintId"] == "100"
        assert comparison["finishedTickets"] == 1
        assert comparison["previousFinishedTickets"] == 0
        assert comparison["ticketsDelta"] == 1

    def test_capacity_from_snapshots(self, repository, snapshot_store):
        SnapshotManager(repository, snapshot_store).ensure_snapshot("100")
        service = DeliveryMetricsService(repository, snapshot_store=snapshot_store)

        capacity = service.get_all_metrics(now=NOW)["capacity"]

        assert [s["sprintId"] for s in capacity["bySprint"]] == ["100"]
        assert capacity["byTeam"][0]["teamKey"] == "ABC"

    def test_team_window_limits_closed_sprints(self, make_sprint, snapshot_store):
        sprints = [
            make_sprint(i, f"ABC Sprint {i}", start=datetime(2023, 12, i), end=datetime(2023, 12, i + 10))
            for i in range(1, 4)
        ]
        repository = InMemorySprintRepository(sprints)
        manager = SnapshotManager(repository, snapshot_store)
        for sprint in sprints:
            manager.ensure_snapshot(sprint.id)

        data = DeliveryMetricsService(repository, snapshot_store=snapshot_store).get_all_metrics(
            team_window=2, now=NOW
        )

        assert [s["sprintId"] for s in data["capacity"]["bySprint"]] == ["3", "2"]

    def test_delivery_times_require_provider(self, repository):
        data = DeliveryMetricsService(repository).get_all_metrics(include_delivery_times=True, now=NOW)

        assert "deliveryTimes" not in data

    def test_delivery_times(self, repository, changelog_provider):
        """Only delivered tickets are mined; fetch failures are counted."""
        service = DeliveryMetricsService(repository, changelog_provider=changelog_provider)

        data = service.get_all_metrics(include_delivery_times=True, now=NOW)

        fetched = {call.args[0] for call in changelog_provider.get_changelog.call_args_list}
        assert fetched == {"ABC-1", "ABC-2"}
        assert data["deliveryFetchFailures"] == 1
        assert data["deliveryTimes"] == [{
            "name": "Alice", "ticketCount": 1, "totalHours": 24.0,
            "averageHours": 24.0, "carryoverRate": 0,
        }]
        assert data["deliveryTimesBySprint"][0]["sprintId"] == "100"
        assert data["deliveryTimesBySprint"][0]["deliveryTimes"][0]["name"] == "Alice"


class TestMetricsCache:
    """Test payload caching."""

    def test_repeated_calls_served_from_cache(self, repository):
        wrapped = Mock(wraps=repository)
        service = DeliveryMetricsService(wrapped, cache=ExpiringCache(default_ttl=30))

        first = service.get_all_metrics(requester="alice@example.com")
        calls = wrapped.list_sprints.call_count
        first["activeSprints"].clear()
        second = service.get_all_metrics(requester="alice@example.com")

        assert wrapped.list_sprints.call_count == calls
        assert len(second["activeSprints"]) == 1

    def test_cache_partitioned_by_requester(self, repository):
        wrapped = Mock(wraps=repository)
        service = DeliveryMetricsService(wrapped, cache=ExpiringCache(default_ttl=30))

        service.get_all_metrics(requester="alice@example.com")
        calls = wrapped.list_sprints.call_count
        service.get_all_metrics(requester="bob@example.com")

        assert wrapped.list_sprints.call_count == calls * 2

    def test_explicit_now_bypasses_cache(self, repository):
        wrapped = Mock(wraps=repository)
        service = DeliveryMetricsService(wrapped, cache=ExpiringCache(default_ttl=30))

        service.get_all_metrics(now=NOW)
        calls = wrapped.list_sprints.call_count
        service.get_all_metrics(now=NOW)

        assert wrapped.list_sprints.call_count == calls * 2
