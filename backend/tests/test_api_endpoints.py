"""Tests for API endpoints."""

import pytest
from unittest.mock import Mock, patch


class TestHealth:

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json() == {"status": "ok"}


class TestDeliveryMetricsEndpoint:
    """Test /api/metrics/delivery endpoint."""

    def test_returns_metrics(self, client):
        response = client.get('/api/metrics/delivery')

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["activeSprintCount"] == 1
        assert data["teamWindow"] == 10
        assert {"riskSignals", "openBugs", "storyPoints", "assignees",
                "finishedComparison", "capacity"} <= set(data)

    def test_team_window_param(self, client):
        response = client.get('/api/metrics/delivery?team_window=1')
        assert response.get_json()["data"]["teamWindow"] == 1

    @pytest.mark.parametrize("value", ["abc", "0", "-3"])
    def test_invalid_team_window_uses_default(self, client, value):
        response = client.get(f'/api/metrics/delivery?team_window={value}')
        assert response.get_json()["data"]["teamWindow"] == 10

    def test_delivery_times_without_credentials(self, client):
        response = client.get('/api/metrics/delivery?include_delivery_times=1')

        assert response.status_code == 401
        assert "error" in response.get_json()

    @patch('analytics.jira_changelog.requests.get')
    def test_delivery_times_with_credentials(self, mock_get, client, jira_headers):
        mock_response = Mock()
        mock_response.json.return_value = {"key": "ABC-1", "changelog": {"histories": []}}
        mock_response.raise_for_status.return_value = None
        mock_get.return_value = mock_response

        response = client.get(
            '/api/metrics/delivery?include_delivery_times=true',
            headers=jira_headers
        )

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["deliveryTimes"] == []
        assert data["deliveryFetchFailures"] == 0
        assert mock_get.call_count == 2

    @patch('delivery_api.api.metrics.DeliveryMetricsService.get_all_metrics')
    def test_computation_error(self, mock_metrics, client):
        mock_metrics.side_effect = RuntimeError("boom")

        response = client.get('/api/metrics/delivery')

        assert response.status_code == 500
        assert response.get_json() == {"error": "boom"}


class TestSprintReportEndpoints:
    """Test /api/reports endpoints."""

    def test_create_snapshot(self, client, snapshot_store):
        response = client.post('/api/reports/sprints/100/snapshot')

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["sprintId"] == "100"
        assert data["totals"]["closedTickets"] == 2
        assert data["totals"]["successPercent"] == 50.0
        assert snapshot_store.get("100") is not None

    def test_repeated_snapshot_is_stable(self, client):
        first = client.post('/api/reports/sprints/100/snapshot').get_json()
        second = client.post('/api/reports/sprints/100/snapshot').get_json()

        assert first == second

    def test_snapshot_with_totals_override(self, client):
        response = client.post(
            '/api/reports/sprints/100/snapshot',
            json={"totals": {"plannedTickets": 8, "finishedTickets": 6}}
        )

        totals = response.get_json()["data"]["totals"]
        assert totals["scopeTickets"] == 8
        assert totals["successPercent"] == 75.0

    def test_invalid_totals(self, client):
        response = client.post('/api/reports/sprints/100/snapshot', json={"totals": [1, 2]})
        assert response.status_code == 400

    def test_unknown_sprint(self, client):
        response = client.post('/api/reports/sprints/999/snapshot')

        assert response.status_code == 404
        assert "999" in response.get_json()["error"]

    def test_list_reports(self, client):
        assert client.get('/api/reports/sprints').get_json() == {"data": {"snapshots": []}}

        client.post('/api/reports/sprints/100/snapshot')
        response = client.get('/api/reports/sprints')

        snapshots = response.get_json()["data"]["snapshots"]
        assert len(snapshots) == 1
        assert snapshots[0]["teamKey"] == "ABC"
        assert snapshots[0]["name"] == "ABC Sprint 1"
